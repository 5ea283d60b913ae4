"""
App-scoped service graph and the FastAPI dependency that hands it to routes.

Built once in the lifespan from Settings; tests override get_services.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Request

from backend_algoswarm.chain import AlgodGateway
from backend_algoswarm.config import Settings
from backend_algoswarm.ledger import Ledger, RetryPolicy
from backend_algoswarm.lifecycle import TransactionOrchestrator
from backend_algoswarm.prices import CoinGeckoLoader, PriceCache
from backend_algoswarm.protocols import ProtocolRegistry, TransactionBuilder, TransactionValidator, get_registry
from backend_algoswarm.recovery import RecoveryCoordinator


@dataclass
class Services:
    settings: Settings
    registry: ProtocolRegistry
    ledger: Ledger
    gateway: Any
    validator: TransactionValidator
    builder: TransactionBuilder
    orchestrator: TransactionOrchestrator
    coordinator: RecoveryCoordinator
    prices: PriceCache

    def close(self) -> None:
        close = getattr(self.gateway, "close", None)
        if close is not None:
            close()
        self.ledger.close()


def build_services(
    settings: Settings,
    *,
    gateway: Any | None = None,
    ledger: Ledger | None = None,
    price_loader: Callable[[list[str]], dict[str, float]] | None = None,
    registry: ProtocolRegistry | None = None,
    clock: Callable[[], float] = time.time,
) -> Services:
    """Wire the service graph. Any piece may be injected (tests pass fakes)."""
    registry = registry or get_registry()
    gateway = gateway or AlgodGateway.from_settings(settings)
    ledger = ledger or Ledger(
        settings.database_url,
        retry_policy=RetryPolicy.from_settings(settings),
        clock=clock,
    )
    validator = TransactionValidator(gateway, registry)
    builder = TransactionBuilder(registry)
    orchestrator = TransactionOrchestrator.from_settings(
        settings, gateway, validator, ledger, builder=builder, registry=registry
    )
    coordinator = RecoveryCoordinator(
        ledger, validator, orchestrator, builder=builder, registry=registry, clock=clock
    )
    loader = price_loader or CoinGeckoLoader(api_key=settings.coingecko_api_key, timeout_sec=settings.http_timeout_sec)
    prices = PriceCache(loader, ttl_seconds=settings.price_cache_ttl_sec, clock=clock)
    return Services(
        settings=settings,
        registry=registry,
        ledger=ledger,
        gateway=gateway,
        validator=validator,
        builder=builder,
        orchestrator=orchestrator,
        coordinator=coordinator,
        prices=prices,
    )


def get_services(request: Request) -> Services:
    """Dependency: the app-scoped Services built in the lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialised; app lifespan has not run")
    return services
