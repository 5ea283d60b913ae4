"""
SQLAlchemy models for the investment ledger.

investments (keyed by id), transaction_history (append-only, indexed by wallet, unique
algorand_tx_id), protocol_configs (seeded from the registry), manual_recovery_requests
and recovery_audit_log. Works on PostgreSQL (DATABASE_URL) and SQLite.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

from backend_algoswarm.ledger.models import (
    Investment,
    ManualRecoveryRequest,
    RecoveryAuditEntry,
    TransactionRecord,
)

Base = declarative_base()

# Algorand addresses are 58 chars; tx ids 52.
ADDRESS_LEN = 58
TX_ID_LEN = 100


class InvestmentRow(Base):
    """One funded position. Soft-closed via stake_status; never deleted."""

    __tablename__ = "investments"
    __table_args__ = (
        CheckConstraint("current_value >= 0", name="ck_investments_current_value_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(ADDRESS_LEN), nullable=False, index=True)
    protocol_name = Column(String(50), nullable=False)
    staked_amount = Column(BigInteger, nullable=False)
    current_value = Column(BigInteger, nullable=False)
    stake_status = Column(String(20), nullable=False, default="active", index=True)
    stake_date = Column(Integer, nullable=False)  # Unix
    withdrawal_delay_seconds = Column(Integer, nullable=False, default=0)
    withdrawal_date = Column(Integer, nullable=True)
    withdrawal_tx_id = Column(String(TX_ID_LEN), nullable=True)
    deposit_tx_id = Column(String(TX_ID_LEN), nullable=True, unique=True)
    last_updated = Column(Integer, nullable=True)

    def to_model(self) -> Investment:
        return Investment(
            id=self.id,
            wallet_address=self.wallet_address,
            protocol_name=self.protocol_name,
            staked_amount=int(self.staked_amount),
            current_value=int(self.current_value),
            stake_status=self.stake_status,
            stake_date=int(self.stake_date),
            withdrawal_delay_seconds=int(self.withdrawal_delay_seconds or 0),
            withdrawal_date=self.withdrawal_date,
            withdrawal_tx_id=self.withdrawal_tx_id,
            deposit_tx_id=self.deposit_tx_id,
            last_updated=self.last_updated,
        )


class TransactionRow(Base):
    """
    Append-only log of every on-chain action attempted. Written pending right after
    submission, then moved to confirmed or failed.
    """

    __tablename__ = "transaction_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(ADDRESS_LEN), nullable=False, index=True)
    investment_id = Column(Integer, nullable=True, index=True)
    transaction_type = Column(String(30), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    algorand_tx_id = Column(String(TX_ID_LEN), nullable=True, unique=True, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(Integer, nullable=False)
    confirmed_at = Column(Integer, nullable=True)

    def to_model(self) -> TransactionRecord:
        return TransactionRecord(
            id=self.id,
            wallet_address=self.wallet_address,
            investment_id=self.investment_id,
            transaction_type=self.transaction_type,
            amount=int(self.amount),
            algorand_tx_id=self.algorand_tx_id,
            status=self.status,
            metadata=dict(self.metadata_json or {}),
            created_at=self.created_at,
            confirmed_at=self.confirmed_at,
        )


class ProtocolConfigRow(Base):
    """Persisted protocol config; seeded from the registry table on init_db."""

    __tablename__ = "protocol_configs"

    protocol_name = Column(String(50), primary_key=True)
    display_name = Column(String(100), nullable=False)
    app_id = Column(BigInteger, nullable=False)
    deposit_method = Column(String(50), nullable=False)
    withdraw_method = Column(String(50), nullable=False)
    fee_microalgo = Column(BigInteger, nullable=False)
    min_balance_microalgo = Column(BigInteger, nullable=False)
    min_deposit = Column(BigInteger, nullable=False)
    max_deposit = Column(BigInteger, nullable=False)
    withdrawal_delay_seconds = Column(Integer, nullable=False)
    risk_level = Column(String(10), nullable=False)
    asset = Column(String(32), nullable=False)
    estimated_apy = Column(Float, nullable=False, default=0.0)
    updated_at = Column(Integer, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol_name,
            "name": self.display_name,
            "app_id": int(self.app_id),
            "deposit_method": self.deposit_method,
            "withdraw_method": self.withdraw_method,
            "fee_microalgo": int(self.fee_microalgo),
            "min_balance_microalgo": int(self.min_balance_microalgo),
            "min_deposit": int(self.min_deposit),
            "max_deposit": int(self.max_deposit),
            "withdrawal_delay_seconds": int(self.withdrawal_delay_seconds),
            "risk_level": self.risk_level,
            "asset": self.asset,
            "estimated_apy": float(self.estimated_apy or 0.0),
        }


class ManualRecoveryRequestRow(Base):
    __tablename__ = "manual_recovery_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(ADDRESS_LEN), nullable=False, index=True)
    investment_id = Column(Integer, nullable=False, index=True)
    protocol_name = Column(String(50), nullable=False)
    amount = Column(BigInteger, nullable=False)
    request_type = Column(String(20), nullable=False, default="emergency_recovery")
    status = Column(String(20), nullable=False, default="pending", index=True)
    priority = Column(String(10), nullable=False, default="normal")
    description = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(Integer, nullable=False, index=True)

    def to_model(self) -> ManualRecoveryRequest:
        return ManualRecoveryRequest(
            id=self.id,
            investment_id=self.investment_id,
            wallet_address=self.wallet_address,
            protocol_name=self.protocol_name,
            amount=int(self.amount),
            status=self.status,
            request_type=self.request_type,
            priority=self.priority,
            description=self.description,
            metadata=dict(self.metadata_json or {}),
            created_at=self.created_at,
        )


class RecoveryAuditRow(Base):
    """Audit trail of every recovery attempt and outcome."""

    __tablename__ = "recovery_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(ADDRESS_LEN), nullable=False, index=True)
    investment_id = Column(Integer, nullable=True)
    action_type = Column(String(30), nullable=False)
    protocol_name = Column(String(50), nullable=True)
    amount = Column(BigInteger, nullable=True)
    tx_id = Column(String(TX_ID_LEN), nullable=True)
    success = Column(Boolean, nullable=False, default=False, index=True)
    error_message = Column(Text, nullable=True)
    time_lock_override = Column(Boolean, nullable=False, default=False)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(Integer, nullable=False, index=True)

    def to_model(self) -> RecoveryAuditEntry:
        return RecoveryAuditEntry(
            id=self.id,
            wallet_address=self.wallet_address,
            investment_id=self.investment_id,
            action_type=self.action_type,
            protocol_name=self.protocol_name,
            amount=int(self.amount) if self.amount is not None else None,
            tx_id=self.tx_id,
            success=bool(self.success),
            error_message=self.error_message,
            time_lock_override=bool(self.time_lock_override),
            metadata=dict(self.metadata_json or {}),
            created_at=self.created_at,
        )
