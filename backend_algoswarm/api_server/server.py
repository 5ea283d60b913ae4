"""
FastAPI server for the AlgoSwarm DeFi backend.

- Lifespan builds the service graph from Settings, creates ledger tables, seeds
  protocol configs, and runs the price refresh loop in a background thread.
- Domain errors (AlgoSwarmError) map to JSON {"status": code, "error": message, ...}
  with 400/404/409/502/503 by error class.
"""

from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend_algoswarm import __version__
from backend_algoswarm.api_server.defi import router as defi_router
from backend_algoswarm.api_server.dependencies import build_services
from backend_algoswarm.api_server.prices import router as prices_router
from backend_algoswarm.api_server.recovery import router as recovery_router
from backend_algoswarm.config import get_settings
from backend_algoswarm.config.env import mask_url
from backend_algoswarm.core.exceptions import (
    AlgoSwarmError,
    AlreadyWithdrawn,
    AmountTooSmall,
    GatewayError,
    InvestmentNotFound,
    LedgerError,
    PriceUnavailable,
    RecordNotFound,
    TimeLocked,
    UnknownProtocol,
    ValidationFailed,
)
from backend_algoswarm.prices import run_price_refresh_loop
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger(__name__)

SHUTDOWN_JOIN_TIMEOUT_SEC = 15.0

# Most specific class first; lookup walks the exception's MRO.
ERROR_STATUS: dict[type[AlgoSwarmError], int] = {
    UnknownProtocol: 400,
    ValidationFailed: 400,
    AmountTooSmall: 400,
    InvestmentNotFound: 404,
    RecordNotFound: 404,
    TimeLocked: 409,
    AlreadyWithdrawn: 409,
    GatewayError: 502,
    PriceUnavailable: 503,
    LedgerError: 503,
}


def status_for(exc: AlgoSwarmError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


# -----------------------------------------------------------------------------
# Lifespan: service graph + background price refresh (never blocks API)
# -----------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    services = build_services(settings)
    services.ledger.init_db(services.registry)
    app.state.services = services
    logger.info(
        "api_started",
        network=settings.algorand_network,
        algod_url=settings.algod_url,
        database=mask_url(settings.database_url),
    )

    stop_event = threading.Event()
    thread = threading.Thread(
        target=run_price_refresh_loop,
        args=(services.prices, settings.price_refresh_interval_sec, stop_event),
        name="price-refresh",
        daemon=True,
    )
    thread.start()

    yield

    stop_event.set()
    thread.join(timeout=SHUTDOWN_JOIN_TIMEOUT_SEC)
    if thread.is_alive():
        logger.warning("price_refresh_shutdown_timeout", timeout_sec=SHUTDOWN_JOIN_TIMEOUT_SEC)
    services.close()
    logger.info("api_stopped")


# -----------------------------------------------------------------------------
# App and routes
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Backend AlgoSwarm API",
    description="DeFi protocol transactions and fund recovery on Algorand.",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(defi_router)
app.include_router(recovery_router)
app.include_router(prices_router)


@app.exception_handler(AlgoSwarmError)
async def algoswarm_error_handler(request: Request, exc: AlgoSwarmError) -> JSONResponse:
    status_code = status_for(exc)
    body: dict[str, Any] = exc.to_dict()
    body["retryable"] = exc.retryable
    log = logger.warning if status_code < 500 else logger.error
    log(
        "api_domain_error",
        path=request.url.path,
        http_status=status_code,
        code=exc.code,
        error=exc.message,
    )
    return JSONResponse(status_code=status_code, content=body)


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness probe: API is up."""
    return {"status": "ok"}
