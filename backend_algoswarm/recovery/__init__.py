"""Fund recovery: standard and emergency withdrawal, completion and status."""

from backend_algoswarm.recovery.coordinator import RecoveryCoordinator

__all__ = ["RecoveryCoordinator"]
