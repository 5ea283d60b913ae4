"""
Application settings.

Typed view over the environment (algod node, database URL, confirmation
timeouts, retry and cache tuning) shared by the API server, the lifecycle
orchestrator and the recovery coordinator.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field

from backend_algoswarm.config.env import (
    env_float,
    env_int,
    env_str,
    get_algod_url,
    get_algorand_network,
    get_database_url,
    load_algoswarm_env,
)

DEFAULT_DEPOSIT_CONFIRM_TIMEOUT_SEC = 60.0
DEFAULT_RECOVERY_CONFIRM_TIMEOUT_SEC = 120.0
DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 1.0
DEFAULT_DB_RETRY_ATTEMPTS = 3
DEFAULT_DB_RETRY_BACKOFF_SEC = 0.5
DEFAULT_PRICE_CACHE_TTL_SEC = 60.0
DEFAULT_PRICE_REFRESH_INTERVAL_SEC = 30.0
DEFAULT_HTTP_TIMEOUT_SEC = 10.0


@dataclass
class Settings:
    """Service configuration (env or explicit)."""

    algorand_network: str = field(default_factory=get_algorand_network)
    algod_url: str = field(default_factory=get_algod_url)
    algod_token: str = field(default_factory=lambda: env_str("ALGOD_TOKEN"))
    database_url: str = field(default_factory=get_database_url)
    http_timeout_sec: float = field(default_factory=lambda: env_float("ALGOD_HTTP_TIMEOUT_SEC", DEFAULT_HTTP_TIMEOUT_SEC))
    deposit_confirm_timeout_sec: float = field(
        default_factory=lambda: env_float("DEPOSIT_CONFIRM_TIMEOUT_SEC", DEFAULT_DEPOSIT_CONFIRM_TIMEOUT_SEC)
    )
    recovery_confirm_timeout_sec: float = field(
        default_factory=lambda: env_float("RECOVERY_CONFIRM_TIMEOUT_SEC", DEFAULT_RECOVERY_CONFIRM_TIMEOUT_SEC)
    )
    confirm_poll_interval_sec: float = field(
        default_factory=lambda: env_float("CONFIRM_POLL_INTERVAL_SEC", DEFAULT_CONFIRM_POLL_INTERVAL_SEC)
    )
    db_retry_attempts: int = field(default_factory=lambda: env_int("DB_RETRY_ATTEMPTS", DEFAULT_DB_RETRY_ATTEMPTS))
    db_retry_backoff_sec: float = field(
        default_factory=lambda: env_float("DB_RETRY_BACKOFF_SEC", DEFAULT_DB_RETRY_BACKOFF_SEC)
    )
    price_cache_ttl_sec: float = field(default_factory=lambda: env_float("PRICE_CACHE_TTL_SEC", DEFAULT_PRICE_CACHE_TTL_SEC))
    price_refresh_interval_sec: float = field(
        default_factory=lambda: env_float("PRICE_REFRESH_INTERVAL_SEC", DEFAULT_PRICE_REFRESH_INTERVAL_SEC)
    )
    coingecko_api_key: str = field(default_factory=lambda: env_str("COINGECKO_API_KEY"))

    def __post_init__(self) -> None:
        if self.confirm_poll_interval_sec <= 0:
            self.confirm_poll_interval_sec = DEFAULT_CONFIRM_POLL_INTERVAL_SEC
        if self.deposit_confirm_timeout_sec <= 0:
            self.deposit_confirm_timeout_sec = DEFAULT_DEPOSIT_CONFIRM_TIMEOUT_SEC
        if self.recovery_confirm_timeout_sec <= 0:
            self.recovery_confirm_timeout_sec = DEFAULT_RECOVERY_CONFIRM_TIMEOUT_SEC
        if self.db_retry_attempts < 1:
            self.db_retry_attempts = 1
        if self.price_refresh_interval_sec < 1.0:
            self.price_refresh_interval_sec = DEFAULT_PRICE_REFRESH_INTERVAL_SEC


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, read from the environment on first call."""
    load_algoswarm_env()
    return Settings()
