"""
Algorand algod gateway: balance lookup, signed-transaction submission, confirmation polling.

- submit() is a single call with no retry: re-broadcasting a signed transaction is only
  safe with a fresh validity window, so retry decisions belong to the caller.
- wait_for_confirmation() polls /v2/transactions/pending/{txid} at a fixed interval and
  returns a timed_out result (not an error) when the deadline passes; the transaction
  may still confirm later.
Config: ALGOD_URL, ALGOD_TOKEN, CONFIRM_POLL_INTERVAL_SEC.
"""

from __future__ import annotations

import base64
import binascii
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from backend_algoswarm.core.exceptions import GatewayError, SubmissionFailed, TransactionRejected
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger(__name__)

CONFIRMATION_CONFIRMED = "confirmed"
CONFIRMATION_TIMED_OUT = "timed_out"

DEFAULT_TIMEOUT_SEC = 10.0
DEFAULT_POLL_INTERVAL_SEC = 1.0
API_TOKEN_HEADER = "X-Algo-API-Token"


@dataclass
class ConfirmationResult:
    """Outcome of wait_for_confirmation: confirmed with a round, or timed out."""

    tx_id: str
    status: str
    confirmation_round: int | None = None

    @property
    def confirmed(self) -> bool:
        return self.status == CONFIRMATION_CONFIRMED

    @property
    def timed_out(self) -> bool:
        return self.status == CONFIRMATION_TIMED_OUT

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_id": self.tx_id,
            "confirmed": self.confirmed,
            "confirmation_round": self.confirmation_round or 0,
            "status": self.status,
        }


def decode_signed_transaction(signed_transaction: str) -> bytes:
    """Signed transactions arrive base64-encoded (msgpack bytes from the wallet)."""
    raw = (signed_transaction or "").strip()
    if not raw:
        raise SubmissionFailed("signed_transaction must be non-empty")
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SubmissionFailed(f"signed_transaction is not valid base64: {e}") from e


class AlgodGateway:
    """Thin algod REST client. Holds no state beyond the HTTP client."""

    def __init__(
        self,
        algod_url: str,
        algod_token: str = "",
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        headers = {API_TOKEN_HEADER: algod_token} if algod_token else {}
        self._client = client or httpx.Client(
            base_url=algod_url.rstrip("/"),
            headers=headers,
            timeout=timeout_sec,
        )
        self._poll_interval_sec = poll_interval_sec
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Any) -> "AlgodGateway":
        return cls(
            settings.algod_url,
            settings.algod_token,
            timeout_sec=settings.http_timeout_sec,
            poll_interval_sec=settings.confirm_poll_interval_sec,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("algod_request_failed", method=method, path=path, error=str(e))
            raise GatewayError(f"algod request failed: {e}") from e

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise GatewayError(f"algod returned non-JSON response (HTTP {resp.status_code})") from e
        if not isinstance(data, dict):
            raise GatewayError("algod returned unexpected payload")
        return data

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            data = resp.json()
            if isinstance(data, dict) and data.get("message"):
                return str(data["message"])
        except ValueError:
            pass
        return resp.text[:200] or f"HTTP {resp.status_code}"

    # --- Accounts ---

    def get_account_info(self, address: str) -> dict[str, Any]:
        resp = self._request("GET", f"/v2/accounts/{address}")
        if resp.status_code != 200:
            raise GatewayError(
                f"account lookup failed: {self._error_message(resp)}",
                http_status=resp.status_code,
            )
        return self._json(resp)

    def get_balance(self, address: str) -> int:
        """Return the account balance in microAlgo."""
        info = self.get_account_info(address)
        return int(info.get("amount", 0))

    # --- Transactions ---

    def submit(self, signed_transaction: str) -> str:
        """Broadcast a base64 signed transaction. Returns the tx id. No retry."""
        raw = decode_signed_transaction(signed_transaction)
        resp = self._request(
            "POST",
            "/v2/transactions",
            content=raw,
            headers={"Content-Type": "application/x-binary"},
        )
        if 400 <= resp.status_code < 500:
            message = self._error_message(resp)
            logger.warning("algod_submit_rejected", http_status=resp.status_code, error=message)
            raise SubmissionFailed(message, http_status=resp.status_code)
        if resp.status_code != 200:
            raise GatewayError(
                f"algod submit failed: {self._error_message(resp)}",
                http_status=resp.status_code,
            )
        tx_id = str(self._json(resp).get("txId") or "").strip()
        if not tx_id:
            raise GatewayError("No transaction ID received")
        logger.info("algod_tx_submitted", tx_id=tx_id)
        return tx_id

    def pending_transaction_info(self, tx_id: str) -> dict[str, Any]:
        resp = self._request("GET", f"/v2/transactions/pending/{tx_id}")
        if resp.status_code == 404:
            return {}
        if resp.status_code != 200:
            raise GatewayError(
                f"pending lookup failed: {self._error_message(resp)}",
                http_status=resp.status_code,
            )
        return self._json(resp)

    def wait_for_confirmation(self, tx_id: str, timeout_sec: float) -> ConfirmationResult:
        """
        Poll until a confirmed round appears, the node reports a pool error
        (TransactionRejected), or timeout_sec elapses (timed_out result).
        Transient poll errors are logged and polling continues.
        """
        deadline = self._clock() + timeout_sec
        while True:
            try:
                info = self.pending_transaction_info(tx_id)
            except GatewayError as e:
                logger.warning("algod_confirm_poll_error", tx_id=tx_id, error=str(e))
                info = {}
            confirmed_round = int(info.get("confirmed-round") or 0)
            if confirmed_round > 0:
                logger.info("algod_tx_confirmed", tx_id=tx_id, confirmation_round=confirmed_round)
                return ConfirmationResult(tx_id, CONFIRMATION_CONFIRMED, confirmed_round)
            pool_error = str(info.get("pool-error") or "").strip()
            if pool_error:
                logger.warning("algod_tx_rejected", tx_id=tx_id, pool_error=pool_error)
                raise TransactionRejected(tx_id, pool_error)
            if self._clock() >= deadline:
                break
            self._sleep(self._poll_interval_sec)
        logger.warning("algod_tx_confirm_timeout", tx_id=tx_id, timeout_sec=timeout_sec)
        return ConfirmationResult(tx_id, CONFIRMATION_TIMED_OUT)
