"""
Transaction validator: pre-flight checks before a protocol transaction is built or submitted.

Deposits need amount + fee + minimum reserve in the wallet and must sit inside the
protocol's deposit bounds; protocol-specific rules are layered on top and can only
tighten the generic bounds. Withdrawals only need the fee plus the reserve, since the
withdrawn amount comes out of the protocol. Bounds are checked before the balance
fetch so a bad amount is reported without a network call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from backend_algoswarm.core.exceptions import GatewayError
from backend_algoswarm.protocols.registry import (
    KIND_DEPOSIT,
    TRANSACTION_KINDS,
    ProtocolRegistry,
    get_registry,
)
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger(__name__)

MICROALGO_PER_ALGO = 1_000_000


def _algo(amount: int) -> str:
    return f"{amount / MICROALGO_PER_ALGO:g}"


@dataclass
class ValidationResult:
    valid: bool
    reason: str | None = None
    current_balance: int | None = None
    required_balance: int | None = None

    @property
    def remaining_balance_after_tx(self) -> int | None:
        if self.current_balance is None or self.required_balance is None:
            return None
        return self.current_balance - self.required_balance

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"valid": self.valid}
        if self.reason is not None:
            out["reason"] = self.reason
        if self.current_balance is not None:
            out["current_balance"] = self.current_balance
        if self.required_balance is not None:
            out["required_balance"] = self.required_balance
        if self.valid and self.remaining_balance_after_tx is not None:
            out["remaining_balance_after_tx"] = self.remaining_balance_after_tx
        return out


class TransactionValidator:
    """Checks a (protocol, wallet, amount, kind) request against the registry and the wallet balance."""

    def __init__(self, gateway: Any, registry: ProtocolRegistry | None = None) -> None:
        self._gateway = gateway
        self._registry = registry or get_registry()

    def required_balance(self, protocol_name: str, amount: int, kind: str) -> int:
        config = self._registry.get_config(protocol_name)
        overhead = config.fee_microalgo + config.min_balance_microalgo
        return amount + overhead if kind == KIND_DEPOSIT else overhead

    def validate(
        self,
        protocol_name: str,
        wallet_address: str,
        amount: int,
        kind: str = KIND_DEPOSIT,
    ) -> ValidationResult:
        """
        Return a ValidationResult. Raises UnknownProtocol for unknown names and
        ValueError for an unknown kind. Balance fetch failures become valid=False.
        """
        if kind not in TRANSACTION_KINDS:
            raise ValueError(f"kind must be one of {TRANSACTION_KINDS}")
        entry = self._registry.entry(protocol_name)
        config = entry.config
        required = self.required_balance(protocol_name, amount, kind)

        reason = self._check_bounds(entry, amount, kind)
        if reason is not None:
            logger.info(
                "validation_rejected",
                protocol=config.name,
                wallet_id=wallet_address,
                amount=amount,
                kind=kind,
                reason=reason,
            )
            return ValidationResult(valid=False, reason=reason, required_balance=required)

        try:
            current = int(self._gateway.get_balance(wallet_address))
        except GatewayError as e:
            logger.warning("validation_balance_fetch_failed", wallet_id=wallet_address, error=str(e))
            return ValidationResult(
                valid=False,
                reason=f"Could not fetch account information: {e.message}",
                required_balance=required,
            )

        if current < required:
            reason = (
                f"Insufficient balance. Required: {_algo(required)} ALGO, "
                f"Available: {_algo(current)} ALGO"
            )
            logger.info(
                "validation_insufficient_balance",
                protocol=config.name,
                wallet_id=wallet_address,
                current_balance=current,
                required_balance=required,
            )
            return ValidationResult(
                valid=False,
                reason=reason,
                current_balance=current,
                required_balance=required,
            )

        return ValidationResult(valid=True, current_balance=current, required_balance=required)

    @staticmethod
    def _check_bounds(entry: Any, amount: int, kind: str) -> str | None:
        config = entry.config
        if amount <= 0:
            return "Amount must be positive"
        if kind == KIND_DEPOSIT:
            if amount < config.min_deposit:
                return f"Minimum deposit is {_algo(config.min_deposit)} ALGO"
            if amount > config.max_deposit:
                return f"Amount exceeds maximum deposit of {_algo(config.max_deposit)} ALGO"
        for rule in entry.rules:
            reason = rule(kind, amount, config)
            if reason is not None:
                return reason
        return None
