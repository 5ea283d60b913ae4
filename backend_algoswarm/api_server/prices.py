"""FastAPI router: GET /prices/{symbol} from the app-owned price cache."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from backend_algoswarm.api_server.dependencies import Services, get_services

router = APIRouter(prefix="/prices", tags=["prices"])


@router.get("/{symbol}")
def get_price(symbol: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    return services.prices.get(symbol).to_dict()
