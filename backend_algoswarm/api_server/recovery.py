"""
FastAPI router: /recovery/* over the fund recovery coordinator.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from backend_algoswarm.api_server.dependencies import Services, get_services
from backend_algoswarm.api_server.schemas import (
    CompleteRecoveryRequest,
    EmergencyRecoveryRequest,
    WithdrawRequest,
)

router = APIRouter(prefix="/recovery", tags=["recovery"])


@router.get("/investments")
def active_investments(
    wallet: str = Query(..., min_length=1, max_length=64),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    investments = services.coordinator.list_active_investments(wallet)
    return {"investments": investments, "count": len(investments), "status": "success"}


@router.post("/withdraw")
def withdraw(body: WithdrawRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    return services.coordinator.standard_withdraw(
        body.wallet,
        body.investment_id,
        signed_transaction=body.signed_transaction,
    )


@router.post("/emergency")
def emergency(body: EmergencyRecoveryRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    return services.coordinator.emergency_recovery(
        body.wallet,
        body.investment_id,
        override_time_lock=body.override_time_lock,
        signed_transaction=body.signed_transaction,
    )


@router.post("/complete")
def complete(body: CompleteRecoveryRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    return services.coordinator.complete_recovery(
        body.wallet,
        body.investment_id,
        body.tx_id,
        body.confirmation_result.model_dump(),
    )


@router.get("/status")
def status(
    wallet: str = Query(..., min_length=1, max_length=64),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    return services.coordinator.recovery_status(wallet)


@router.get("/requests")
def manual_requests(
    wallet: str = Query(..., min_length=1, max_length=64),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    requests = services.ledger.list_manual_recovery_requests(wallet)
    return {"requests": [r.to_dict() for r in requests], "status": "success"}
