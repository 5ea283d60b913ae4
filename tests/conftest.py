"""
Pytest fixtures for AlgoSwarm tests.

Temporary SQLite ledger, an in-memory fake algod gateway, a settable clock, and a
FastAPI TestClient whose get_services dependency is overridden with those fakes.
"""

from __future__ import annotations

import base64
from typing import Any

import pytest

from backend_algoswarm.chain.algod_gateway import (
    CONFIRMATION_CONFIRMED,
    CONFIRMATION_TIMED_OUT,
    ConfirmationResult,
)
from backend_algoswarm.core.exceptions import GatewayError

WALLET = "ALGOSWARMTESTWALLET" + "A" * 39
OTHER_WALLET = "ALGOSWARMOTHERWALLET" + "B" * 38
SIGNED_TX = base64.b64encode(b"signed-transaction-bytes").decode("ascii")

# 2026-01-01T00:00:00Z
T0 = 1_767_225_600


class FakeClock:
    """Callable clock returning a settable Unix time."""

    def __init__(self, now: float = T0) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def set(self, now: float) -> None:
        self.now = float(now)


class FakeGateway:
    """
    Stands in for AlgodGateway. Balances per address; submit hands out queued tx ids
    (or raises submit_error); confirmations are queued results, default confirmed.
    """

    def __init__(self) -> None:
        self.balances: dict[str, int] = {}
        self.balance_error: Exception | None = None
        self.submit_error: Exception | None = None
        self.tx_ids: list[str] = []
        self.confirmations: list[Any] = []
        self.submitted: list[str] = []
        self.waited: list[tuple[str, float]] = []
        self._counter = 0
        self.next_round = 1000

    def get_balance(self, address: str) -> int:
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get(address, 0)

    def submit(self, signed_transaction: str) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(signed_transaction)
        if self.tx_ids:
            return self.tx_ids.pop(0)
        self._counter += 1
        return f"TX{self._counter:04d}"

    def wait_for_confirmation(self, tx_id: str, timeout_sec: float) -> ConfirmationResult:
        self.waited.append((tx_id, timeout_sec))
        outcome = self.confirmations.pop(0) if self.confirmations else CONFIRMATION_CONFIRMED
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == CONFIRMATION_TIMED_OUT:
            return ConfirmationResult(tx_id, CONFIRMATION_TIMED_OUT)
        self.next_round += 1
        return ConfirmationResult(tx_id, CONFIRMATION_CONFIRMED, self.next_round)

    def close(self) -> None:
        pass


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    gw = FakeGateway()
    gw.balances[WALLET] = 1_000_000_000
    return gw


@pytest.fixture
def registry():
    """Fresh registry per test so administrative updates do not leak."""
    from backend_algoswarm.protocols.registry import ProtocolRegistry

    return ProtocolRegistry()


@pytest.fixture
def ledger(tmp_path, clock, registry):
    """Ledger on a temporary SQLite file, tables created and protocol configs seeded."""
    from backend_algoswarm.ledger import Ledger, RetryPolicy

    led = Ledger(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        retry_policy=RetryPolicy(max_attempts=3, backoff_sec=0.0, sleep=lambda s: None),
        clock=clock,
    )
    led.init_db(registry)
    yield led
    led.close()


@pytest.fixture
def validator(gateway, registry):
    from backend_algoswarm.protocols import TransactionValidator

    return TransactionValidator(gateway, registry)


@pytest.fixture
def orchestrator(gateway, validator, ledger, registry):
    from backend_algoswarm.lifecycle import TransactionOrchestrator

    return TransactionOrchestrator(gateway, validator, ledger, registry=registry)


@pytest.fixture
def coordinator(ledger, validator, orchestrator, registry, clock):
    from backend_algoswarm.recovery import RecoveryCoordinator

    return RecoveryCoordinator(ledger, validator, orchestrator, registry=registry, clock=clock)


@pytest.fixture
def price_loader():
    """Loader returning fixed USD prices; set .fail to make it raise."""

    class Loader:
        def __init__(self) -> None:
            self.prices = {"ALGO": 0.25, "USDC": 1.0}
            self.calls: list[list[str]] = []
            self.fail = False

        def __call__(self, symbols: list[str]) -> dict[str, float]:
            self.calls.append(list(symbols))
            if self.fail:
                raise GatewayError("price source down")
            return {s: self.prices[s] for s in symbols if s in self.prices}

    return Loader()


@pytest.fixture
def services(tmp_path, gateway, ledger, registry, clock, price_loader):
    from backend_algoswarm.api_server.dependencies import build_services
    from backend_algoswarm.config import Settings

    settings = Settings(
        algorand_network="testnet",
        algod_url="http://algod.test",
        algod_token="",
        database_url=ledger.url,
    )
    return build_services(
        settings,
        gateway=gateway,
        ledger=ledger,
        price_loader=price_loader,
        registry=registry,
        clock=clock,
    )


@pytest.fixture
def client(services):
    """FastAPI TestClient with get_services overridden. Lifespan is not run."""
    from fastapi.testclient import TestClient

    from backend_algoswarm.api_server.dependencies import get_services
    from backend_algoswarm.api_server.server import app

    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def fund_investment(orchestrator, protocol: str = "algofi", amount: int = 10_000_000, wallet: str = WALLET):
    """Run a confirmed deposit through the orchestrator and return the created Investment."""
    result = orchestrator.execute(protocol, wallet, amount, SIGNED_TX)
    assert result.investment is not None
    return result.investment
