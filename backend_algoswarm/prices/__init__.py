"""USD price cache with TTL and background refresh."""

from backend_algoswarm.prices.cache import CoinGeckoLoader, PriceCache, PriceQuote, run_price_refresh_loop

__all__ = ["CoinGeckoLoader", "PriceCache", "PriceQuote", "run_price_refresh_loop"]
