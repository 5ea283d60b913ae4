"""
Environment variable loading for AlgoSwarm.

- ALGORAND_NETWORK: mainnet | testnet (default: testnet)
- ALGOD_URL: algod REST endpoint (falls back to the public node for the network)
- ALGOD_TOKEN: X-Algo-API-Token header value (empty for public nodes)
- DATABASE_URL: SQLAlchemy URL; otherwise built from DB_HOST/DB_PORT/DB_NAME/DB_USER/DB_PASSWORD
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

# Project root: config is backend_algoswarm/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

MAINNET_ALGOD_URL = "https://mainnet-api.algonode.cloud"
TESTNET_ALGOD_URL = "https://testnet-api.algonode.cloud"
DEFAULT_SQLITE_URL = "sqlite:///algoswarm.db"


def load_algoswarm_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH)


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or "").strip() or default


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_algorand_network() -> str:
    """
    Return ALGORAND_NETWORK from env: mainnet | testnet.
    Default: testnet.
    """
    load_algoswarm_env()
    raw = env_str("ALGORAND_NETWORK", "testnet").lower()
    return "mainnet" if raw == "mainnet" else "testnet"


def get_algod_url() -> str:
    """
    Resolve the algod URL.
    Order: ALGOD_URL > public node for ALGORAND_NETWORK.
    """
    load_algoswarm_env()
    url = env_str("ALGOD_URL")
    if url:
        return url.rstrip("/")
    return MAINNET_ALGOD_URL if get_algorand_network() == "mainnet" else TESTNET_ALGOD_URL


def get_database_url() -> str:
    """
    Return DATABASE_URL if set; else a Postgres URL from DB_* variables when
    DB_HOST is set; else the local SQLite file.
    """
    load_algoswarm_env()
    url = env_str("DATABASE_URL")
    if url:
        return url
    host = env_str("DB_HOST")
    if host:
        port = env_int("DB_PORT", 5432)
        name = env_str("DB_NAME", "algofi_db")
        user = env_str("DB_USER", "postgres")
        password = env_str("DB_PASSWORD") or env_str("PGPASSWORD", "postgres")
        return f"postgresql+psycopg2://{user}:{password}@{host}:{port}/{name}"
    return DEFAULT_SQLITE_URL


def mask_url(url: str) -> str:
    """Drop credentials and query string from a URL before logging it."""
    base = url.split("?")[0]
    if "@" in base:
        scheme, _, rest = base.partition("://")
        return f"{scheme}://***@{rest.split('@', 1)[1]}"
    return base
