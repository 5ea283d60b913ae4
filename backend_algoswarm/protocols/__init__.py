"""
Protocol layer: registry, pre-flight validation and unsigned transaction building.
"""

from backend_algoswarm.protocols.builder import TransactionBuilder, UnsignedTransaction
from backend_algoswarm.protocols.registry import (
    KIND_DEPOSIT,
    KIND_WITHDRAW,
    Protocol,
    ProtocolConfig,
    ProtocolRegistry,
    get_config,
    get_registry,
)
from backend_algoswarm.protocols.validator import TransactionValidator, ValidationResult

__all__ = [
    "KIND_DEPOSIT",
    "KIND_WITHDRAW",
    "Protocol",
    "ProtocolConfig",
    "ProtocolRegistry",
    "TransactionBuilder",
    "TransactionValidator",
    "UnsignedTransaction",
    "ValidationResult",
    "get_config",
    "get_registry",
]
