"""
Bounded retry policy for ledger access.

Retries a whole unit of work (one session) when the database connection fails,
with exponential backoff. Business errors and integrity errors are never retried.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from backend_algoswarm.core.exceptions import LedgerError
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SEC = 0.5


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(getattr(exc, "connection_invalidated", False))


@dataclass
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_sec: float = DEFAULT_BACKOFF_SEC
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            self.max_attempts = 1
        if self.backoff_sec < 0:
            self.backoff_sec = 0.0

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(max_attempts=settings.db_retry_attempts, backoff_sec=settings.db_retry_backoff_sec)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number attempt+1 (attempt is 0-based)."""
        return self.backoff_sec * (2 ** attempt)

    def run(self, fn: Callable[[], T], *, operation: str) -> T:
        for attempt in range(self.max_attempts):
            try:
                return fn()
            except Exception as e:
                if not _is_transient(e):
                    raise
                if attempt >= self.max_attempts - 1:
                    logger.error(
                        "ledger_retries_exhausted",
                        operation=operation,
                        attempts=self.max_attempts,
                        error=str(e),
                    )
                    raise LedgerError(f"{operation} failed after {self.max_attempts} attempts: {e}") from e
                backoff = self.delay_for(attempt)
                logger.warning(
                    "ledger_operation_retry",
                    operation=operation,
                    attempt=attempt + 1,
                    backoff_sec=round(backoff, 2),
                    error=str(e),
                )
                self.sleep(backoff)
        raise LedgerError(f"{operation} failed")  # unreachable with max_attempts >= 1
