"""Transaction lifecycle: validate, submit, record, confirm."""

from backend_algoswarm.lifecycle.orchestrator import (
    LifecycleResult,
    LifecycleState,
    TransactionOrchestrator,
)

__all__ = ["LifecycleResult", "LifecycleState", "TransactionOrchestrator"]
