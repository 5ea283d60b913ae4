"""
FastAPI router: /defi/transaction/* and /defi/protocols.

create-deposit / create-withdraw return an unsigned transaction for the wallet to sign;
submit, confirm and complete drive it through the lifecycle orchestrator.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from backend_algoswarm.api_server.dependencies import Services, get_services
from backend_algoswarm.api_server.schemas import (
    CompleteTransactionRequest,
    ConfirmTransactionRequest,
    CreateTransactionRequest,
    SubmitTransactionRequest,
)
from backend_algoswarm.core.exceptions import ValidationFailed
from backend_algoswarm.protocols.registry import KIND_DEPOSIT, KIND_WITHDRAW
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/defi", tags=["defi"])


def _create(services: Services, body: CreateTransactionRequest, kind: str) -> dict[str, Any]:
    validation = services.validator.validate(body.protocol_name, body.wallet, body.amount_microalgo, kind)
    if not validation.valid:
        raise ValidationFailed(validation.reason or "Validation failed", validation)
    unsigned = services.builder.build(body.protocol_name, body.wallet, body.amount_microalgo, kind)
    logger.info(
        "defi_transaction_created",
        protocol=unsigned.protocol,
        kind=kind,
        wallet_id=body.wallet,
        amount=body.amount_microalgo,
        net_amount=unsigned.net_amount,
    )
    return {
        "unsigned_transaction": unsigned.to_dict(),
        "validation": validation.to_dict(),
        "status": "ready_for_signing",
    }


@router.post("/transaction/create-deposit")
def create_deposit(body: CreateTransactionRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    return _create(services, body, KIND_DEPOSIT)


@router.post("/transaction/create-withdraw")
def create_withdraw(body: CreateTransactionRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    return _create(services, body, KIND_WITHDRAW)


@router.post("/transaction/submit")
def submit_transaction(body: SubmitTransactionRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    """Broadcast a signed deposit. Does not wait for confirmation."""
    result = services.orchestrator.submit(
        body.signed_transaction,
        protocol_name=body.protocol_name,
        wallet_address=body.wallet,
        amount=body.amount_microalgo,
        kind=KIND_DEPOSIT,
    )
    return {
        "transaction_id": result.tx_id,
        "status": result.state.value,
        "reconciliation_required": result.reconciliation_required,
    }


@router.post("/transaction/confirm")
def confirm_transaction(body: ConfirmTransactionRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    if body.confirmation_round is not None:
        result = services.orchestrator.finalize(body.tx_id, body.confirmation_round)
    else:
        result = services.orchestrator.confirm(body.tx_id, body.timeout_seconds)
    return result.to_dict()


@router.post("/transaction/complete")
def complete_transaction(body: CompleteTransactionRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    """Validate, submit, record and confirm a signed deposit in one call."""
    result = services.orchestrator.execute(
        body.protocol_name,
        body.wallet,
        body.amount_microalgo,
        body.signed_transaction,
        kind=KIND_DEPOSIT,
        timeout_sec=body.timeout_seconds,
    )
    return result.to_dict()


@router.get("/transactions")
def list_transactions(
    wallet: str = Query(..., min_length=1, max_length=64),
    limit: int = Query(100, ge=1, le=500),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    records = services.ledger.list_transactions(wallet, limit=limit)
    return {"transactions": [r.to_dict() for r in records], "status": "success"}


@router.get("/protocols")
def list_protocols(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {
        "protocols": [c.to_dict() for c in services.registry.list_protocols()],
        "status": "success",
    }
