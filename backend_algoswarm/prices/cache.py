"""
USD price cache.

- PriceCache holds one quote per symbol with a TTL against an injected clock.
- get() reloads a stale or missing symbol; when the loader fails, the last quote is
  served and marked stale.
- refresh() reloads every tracked symbol; run_price_refresh_loop calls it on an interval
  from a background thread started in the API lifespan.
- CoinGeckoLoader fetches /simple/price over httpx.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from backend_algoswarm.core.exceptions import GatewayError, PriceUnavailable
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger(__name__)

COINGECKO_BASE = "https://api.coingecko.com/api/v3"
COINGECKO_API_KEY_HEADER = "x-cg-demo-api-key"

SYMBOL_TO_COINGECKO_ID = {
    "ALGO": "algorand",
    "USDC": "usd-coin",
    "USDT": "tether",
    "BTC": "bitcoin",
    "ETH": "ethereum",
}
DEFAULT_SYMBOLS = ("ALGO", "USDC")

PriceLoader = Callable[[list[str]], "dict[str, float]"]


@dataclass
class PriceQuote:
    symbol: str
    price_usd: float
    fetched_at: int
    stale: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price_usd": self.price_usd,
            "fetched_at": self.fetched_at,
            "stale": self.stale,
        }


class CoinGeckoLoader:
    """Loader for PriceCache: symbols in, {symbol: usd_price} out."""

    def __init__(
        self,
        base_url: str = COINGECKO_BASE,
        api_key: str = "",
        *,
        timeout_sec: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        headers = {COINGECKO_API_KEY_HEADER: api_key} if api_key else {}
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout_sec, headers=headers)

    def close(self) -> None:
        self._client.close()

    def __call__(self, symbols: list[str]) -> dict[str, float]:
        ids = {SYMBOL_TO_COINGECKO_ID[s]: s for s in symbols if s in SYMBOL_TO_COINGECKO_ID}
        if not ids:
            return {}
        try:
            resp = self._client.get(
                "/simple/price",
                params={"ids": ",".join(sorted(ids)), "vs_currencies": "usd"},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GatewayError(f"coingecko request failed: {e}") from e
        out: dict[str, float] = {}
        for cg_id, symbol in ids.items():
            usd = (data.get(cg_id) or {}).get("usd")
            if usd is not None:
                out[symbol] = float(usd)
        return out


class PriceCache:
    def __init__(
        self,
        loader: PriceLoader,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
        symbols: tuple[str, ...] = DEFAULT_SYMBOLS,
    ) -> None:
        self._loader = loader
        self._ttl = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._tracked = {s.upper() for s in symbols}
        self._quotes: dict[str, PriceQuote] = {}
        self._lock = threading.Lock()

    def _fresh(self, quote: PriceQuote | None) -> bool:
        return quote is not None and self._clock() - quote.fetched_at < self._ttl

    def get(self, symbol: str) -> PriceQuote:
        """Return a fresh quote, reloading when missing or older than the TTL. Raises PriceUnavailable."""
        symbol = symbol.strip().upper()
        with self._lock:
            quote = self._quotes.get(symbol)
        if self._fresh(quote):
            return quote
        try:
            self._load([symbol])
        except Exception as e:
            logger.warning("price_load_failed", symbol=symbol, error=str(e))
            if quote is not None:
                return PriceQuote(quote.symbol, quote.price_usd, quote.fetched_at, stale=True)
            raise PriceUnavailable(symbol, str(e)) from e
        with self._lock:
            self._tracked.add(symbol)
            quote = self._quotes.get(symbol)
        if quote is None:
            raise PriceUnavailable(symbol)
        return quote

    def refresh(self) -> int:
        """Reload every tracked symbol. Returns the number of quotes updated."""
        with self._lock:
            symbols = sorted(self._tracked)
        return self._load(symbols)

    def snapshot(self) -> list[PriceQuote]:
        with self._lock:
            return list(self._quotes.values())

    def _load(self, symbols: list[str]) -> int:
        prices = self._loader(symbols)
        now = int(self._clock())
        with self._lock:
            for symbol, price in prices.items():
                self._quotes[symbol.upper()] = PriceQuote(symbol.upper(), float(price), now)
        logger.debug("prices_loaded", symbols=sorted(prices), count=len(prices))
        return len(prices)


def run_price_refresh_loop(
    cache: PriceCache,
    interval_sec: float,
    stop_event: threading.Event,
) -> None:
    """Refresh cache every interval_sec until stop_event is set."""
    logger.info("price_refresh_started", interval_sec=interval_sec)
    while not stop_event.is_set():
        try:
            cache.refresh()
        except Exception as e:
            logger.exception("price_refresh_tick_failed", error=str(e))
        deadline = time.monotonic() + interval_sec
        while not stop_event.is_set() and time.monotonic() < deadline:
            stop_event.wait(timeout=min(1.0, max(0, deadline - time.monotonic())))
    logger.info("price_refresh_stopped")
