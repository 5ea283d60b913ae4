"""
Application-level exceptions.

Every domain error carries a stable ``code`` (used as the ``status`` field of
API error bodies) and a ``retryable`` flag telling callers whether the same
request may succeed later without changes. A confirmation timeout is not an
exception: it is the ``timed_out`` confirmation status.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


class AlgoSwarmError(Exception):
    """Base class for domain errors."""

    code = "error"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.code, "error": self.message}
        out.update(self.details)
        return out


class UnknownProtocol(AlgoSwarmError):
    """Protocol name not in the registry. Terminal, never retried."""

    code = "unknown_protocol"

    def __init__(self, protocol_name: str) -> None:
        super().__init__(f"Unknown protocol: {protocol_name}", protocol=protocol_name)
        self.protocol_name = protocol_name


class ValidationFailed(AlgoSwarmError):
    """Pre-flight check rejected the request; caller may retry after changing inputs."""

    code = "validation_failed"

    def __init__(self, reason: str, validation: Any | None = None) -> None:
        details: dict[str, Any] = {}
        if validation is not None and hasattr(validation, "to_dict"):
            details["validation"] = validation.to_dict()
        super().__init__(reason, **details)
        self.reason = reason
        self.validation = validation


class AmountTooSmall(AlgoSwarmError):
    """Net amount after fee and reserve is not positive."""

    code = "amount_too_small"

    def __init__(self, amount: int, overhead: int) -> None:
        super().__init__(
            "Amount too small to cover transaction fees",
            amount=amount,
            overhead=overhead,
        )
        self.amount = amount
        self.overhead = overhead


class GatewayError(AlgoSwarmError):
    """The algod node could not be reached or returned an unexpected response."""

    code = "gateway_error"
    retryable = True


class SubmissionFailed(GatewayError):
    """The node rejected the transaction before broadcast (e.g. malformed payload)."""

    code = "submission_failed"
    retryable = False


class TransactionRejected(GatewayError):
    """The node reported a pool error for a submitted transaction."""

    code = "transaction_rejected"
    retryable = False

    def __init__(self, tx_id: str, pool_error: str) -> None:
        super().__init__(f"Transaction {tx_id} rejected: {pool_error}", tx_id=tx_id, pool_error=pool_error)
        self.tx_id = tx_id
        self.pool_error = pool_error


class TimeLocked(AlgoSwarmError):
    """Withdrawal requested before stake_date + withdrawal_delay_seconds."""

    code = "time_locked"

    def __init__(self, investment_id: int, unlock_at: int) -> None:
        unlock_iso = datetime.fromtimestamp(unlock_at, tz=timezone.utc).isoformat()
        super().__init__(
            f"Withdrawal not yet available. Time lock ends at {unlock_iso}",
            investment_id=investment_id,
            unlock_at=unlock_at,
            unlock_at_iso=unlock_iso,
        )
        self.investment_id = investment_id
        self.unlock_at = unlock_at


class InvestmentNotFound(AlgoSwarmError):
    code = "not_found"

    def __init__(self, investment_id: int, wallet_address: str | None = None) -> None:
        super().__init__(
            "Investment not found or already withdrawn",
            investment_id=investment_id,
        )
        self.investment_id = investment_id
        self.wallet_address = wallet_address


class AlreadyWithdrawn(AlgoSwarmError):
    """Investment was closed by a different withdrawal transaction."""

    code = "already_withdrawn"

    def __init__(self, investment_id: int, withdrawal_tx_id: str | None) -> None:
        super().__init__(
            "Investment already withdrawn by another transaction",
            investment_id=investment_id,
            withdrawal_tx_id=withdrawal_tx_id,
        )
        self.investment_id = investment_id
        self.withdrawal_tx_id = withdrawal_tx_id


class LedgerError(AlgoSwarmError):
    """Database write or read failed after retries."""

    code = "ledger_error"
    retryable = True


class RecordNotFound(AlgoSwarmError):
    """No transaction_history row for the given tx id."""

    code = "not_found"

    def __init__(self, tx_id: str) -> None:
        super().__init__(f"No transaction record for {tx_id}", tx_id=tx_id)
        self.tx_id = tx_id


class PriceUnavailable(AlgoSwarmError):
    """No fresh or cached price for the symbol."""

    code = "price_unavailable"
    retryable = True

    def __init__(self, symbol: str, reason: str = "") -> None:
        message = f"Price unavailable for {symbol}" + (f": {reason}" if reason else "")
        super().__init__(message, symbol=symbol)
        self.symbol = symbol
