"""
Core utilities: domain exceptions and cross-cutting concerns.

Shared by the protocol layer, the lifecycle orchestrator, the recovery
coordinator and the API server.
"""

from backend_algoswarm.core.exceptions import (
    AlgoSwarmError,
    AlreadyWithdrawn,
    AmountTooSmall,
    GatewayError,
    InvestmentNotFound,
    LedgerError,
    PriceUnavailable,
    RecordNotFound,
    SubmissionFailed,
    TimeLocked,
    TransactionRejected,
    UnknownProtocol,
    ValidationFailed,
)

__all__ = [
    "AlgoSwarmError",
    "AlreadyWithdrawn",
    "AmountTooSmall",
    "GatewayError",
    "InvestmentNotFound",
    "LedgerError",
    "PriceUnavailable",
    "RecordNotFound",
    "SubmissionFailed",
    "TimeLocked",
    "TransactionRejected",
    "UnknownProtocol",
    "ValidationFailed",
]
