"""
Investment ledger: SQLAlchemy tables, dataclass snapshots and the Ledger facade.
"""

from backend_algoswarm.ledger.ledger import FinalizeOutcome, Ledger, RecoveryCompletion
from backend_algoswarm.ledger.models import (
    STAKE_ACTIVE,
    STAKE_WITHDRAWN,
    TX_CONFIRMED,
    TX_FAILED,
    TX_PENDING,
    TX_PROTOCOL_DEPOSIT,
    TX_PROTOCOL_WITHDRAWAL,
    Investment,
    ManualRecoveryRequest,
    RecoveryAuditEntry,
    TransactionRecord,
)
from backend_algoswarm.ledger.retry import RetryPolicy

__all__ = [
    "FinalizeOutcome",
    "Investment",
    "Ledger",
    "ManualRecoveryRequest",
    "RecoveryAuditEntry",
    "RecoveryCompletion",
    "RetryPolicy",
    "STAKE_ACTIVE",
    "STAKE_WITHDRAWN",
    "TX_CONFIRMED",
    "TX_FAILED",
    "TX_PENDING",
    "TX_PROTOCOL_DEPOSIT",
    "TX_PROTOCOL_WITHDRAWAL",
    "TransactionRecord",
]
