"""
Blockchain gateway: stateless proxy to an Algorand algod node.
"""

from backend_algoswarm.chain.algod_gateway import (
    AlgodGateway,
    ConfirmationResult,
    CONFIRMATION_CONFIRMED,
    CONFIRMATION_TIMED_OUT,
)

__all__ = [
    "AlgodGateway",
    "ConfirmationResult",
    "CONFIRMATION_CONFIRMED",
    "CONFIRMATION_TIMED_OUT",
]
