"""
Domain models for ledger entities.

Snapshots returned by the Ledger; built from ORM rows inside a session so callers
never touch detached SQLAlchemy objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

STAKE_ACTIVE = "active"
STAKE_WITHDRAWN = "withdrawn"

TX_PROTOCOL_DEPOSIT = "protocol_deposit"
TX_PROTOCOL_WITHDRAWAL = "protocol_withdrawal"
TX_STAKE = "stake"
TX_WITHDRAW = "withdraw"
TX_PROFIT = "profit"
TRANSACTION_TYPES = (TX_PROTOCOL_DEPOSIT, TX_PROTOCOL_WITHDRAWAL, TX_STAKE, TX_WITHDRAW, TX_PROFIT)

TX_PENDING = "pending"
TX_CONFIRMED = "confirmed"
TX_FAILED = "failed"

REQUEST_PENDING = "pending"
REQUEST_RESOLVED = "resolved"

AUDIT_WITHDRAWAL_ATTEMPT = "withdrawal_attempt"
AUDIT_EMERGENCY_REQUEST = "emergency_request"
AUDIT_RECOVERY_COMPLETE = "recovery_complete"
AUDIT_RECOVERY_FAILED = "recovery_failed"


def iso(ts: int | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class Investment:
    """One funded position in one protocol."""

    id: int
    wallet_address: str
    protocol_name: str
    staked_amount: int
    current_value: int
    stake_status: str
    stake_date: int
    """Unix timestamp (seconds) of the confirmed deposit."""
    withdrawal_delay_seconds: int
    withdrawal_date: int | None = None
    withdrawal_tx_id: str | None = None
    deposit_tx_id: str | None = None
    last_updated: int | None = None

    @property
    def unlock_at(self) -> int:
        return self.stake_date + max(0, self.withdrawal_delay_seconds or 0)

    @property
    def is_active(self) -> bool:
        return self.stake_status == STAKE_ACTIVE

    def withdrawal_available(self, now: float) -> bool:
        """True once now >= stake_date + withdrawal_delay_seconds."""
        return now >= self.unlock_at

    def to_dict(self, now: float | None = None) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "protocol_name": self.protocol_name,
            "staked_amount": self.staked_amount,
            "current_value": self.current_value,
            "stake_status": self.stake_status,
            "stake_date": self.stake_date,
            "withdrawal_delay_seconds": self.withdrawal_delay_seconds,
            "withdrawal_date": self.withdrawal_date,
            "withdrawal_tx_id": self.withdrawal_tx_id,
            "deposit_tx_id": self.deposit_tx_id,
            "unlock_at": self.unlock_at,
            "unlock_at_iso": iso(self.unlock_at),
        }
        if now is not None:
            out["withdrawal_available"] = self.withdrawal_available(now)
        return out


@dataclass
class TransactionRecord:
    """Append-only log entry for an on-chain action."""

    id: int
    wallet_address: str
    transaction_type: str
    amount: int
    algorand_tx_id: str | None
    status: str
    metadata: dict[str, Any] = field(default_factory=dict)
    investment_id: int | None = None
    created_at: int | None = None
    confirmed_at: int | None = None

    @property
    def confirmation_round(self) -> int | None:
        value = self.metadata.get("confirmation_round")
        return int(value) if value is not None else None

    @property
    def protocol_name(self) -> str | None:
        return self.metadata.get("protocol")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "investment_id": self.investment_id,
            "transaction_type": self.transaction_type,
            "amount": self.amount,
            "algorand_tx_id": self.algorand_tx_id,
            "status": self.status,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "confirmed_at": self.confirmed_at,
        }


@dataclass
class ManualRecoveryRequest:
    """Escalation filed when automated recovery fails; resolved by an operator."""

    id: int
    investment_id: int
    wallet_address: str
    protocol_name: str
    amount: int
    status: str
    request_type: str = "emergency_recovery"
    priority: str = "normal"
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "investment_id": self.investment_id,
            "wallet_address": self.wallet_address,
            "protocol_name": self.protocol_name,
            "amount": self.amount,
            "status": self.status,
            "request_type": self.request_type,
            "priority": self.priority,
            "description": self.description,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
        }


@dataclass
class RecoveryAuditEntry:
    id: int
    wallet_address: str
    action_type: str
    success: bool
    investment_id: int | None = None
    protocol_name: str | None = None
    amount: int | None = None
    tx_id: str | None = None
    error_message: str | None = None
    time_lock_override: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "investment_id": self.investment_id,
            "action_type": self.action_type,
            "protocol_name": self.protocol_name,
            "amount": self.amount,
            "tx_id": self.tx_id,
            "success": self.success,
            "error_message": self.error_message,
            "time_lock_override": self.time_lock_override,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
        }
