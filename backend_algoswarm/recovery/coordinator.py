"""
Fund recovery coordinator.

Exit paths for funded positions:
- standard_withdraw: honours the time lock, withdraws current_value (accrued value included).
- emergency_recovery: tries the standard path, and on any failure files exactly one
  ManualRecoveryRequest instead of raising.
- complete_recovery: records a withdrawal confirmed outside the orchestrator; idempotent per tx id.
- recovery_status: per-position recoverability and totals.

Every action appends a row to recovery_audit_log.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any, Callable

from backend_algoswarm.core.exceptions import (
    AlgoSwarmError,
    InvestmentNotFound,
    TimeLocked,
    ValidationFailed,
)
from backend_algoswarm.ledger.models import (
    AUDIT_EMERGENCY_REQUEST,
    AUDIT_RECOVERY_COMPLETE,
    AUDIT_RECOVERY_FAILED,
    AUDIT_WITHDRAWAL_ATTEMPT,
    Investment,
    iso,
)
from backend_algoswarm.lifecycle.orchestrator import LifecycleState
from backend_algoswarm.protocols.builder import TransactionBuilder
from backend_algoswarm.protocols.registry import KIND_WITHDRAW, ProtocolRegistry, get_registry
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger(__name__)

METHOD_STANDARD = "standard_withdrawal"
METHOD_MANUAL_REVIEW = "manual_review_requested"

STATUS_READY_FOR_SIGNING = "ready_for_signing"
STATUS_EMERGENCY_INITIATED = "emergency_recovery_initiated"
STATUS_RECOVERY_COMPLETE = "recovery_complete"
STATUS_RECOVERY_FAILED = "recovery_failed"

SUPPORT_MESSAGE = "Emergency recovery initiated. Our team will review within 24 hours."


class RecoveryCoordinator:
    def __init__(
        self,
        ledger: Any,
        validator: Any,
        orchestrator: Any,
        *,
        builder: TransactionBuilder | None = None,
        registry: ProtocolRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._validator = validator
        self._orchestrator = orchestrator
        self._registry = registry or get_registry()
        self._builder = builder or TransactionBuilder(self._registry)
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_active_investments(self, wallet_address: str) -> list[dict[str, Any]]:
        """Active positions with withdrawal_available and unlock_at computed against now."""
        now = self.now()
        return [inv.to_dict(now) for inv in self._ledger.list_investments(wallet_address)]

    def recovery_status(self, wallet_address: str) -> dict[str, Any]:
        now = self.now()
        positions: list[dict[str, Any]] = []
        for inv in self._ledger.list_investments(wallet_address):
            available = inv.withdrawal_available(now)
            positions.append(
                {
                    "investment_id": inv.id,
                    "protocol": inv.protocol_name,
                    "amount": inv.current_value,
                    "can_withdraw_immediately": available,
                    "time_locked": not available,
                    "estimated_unlock_time": iso(inv.unlock_at) if not available else None,
                    "risk_level": self._registry.assess_risk(inv.protocol_name),
                }
            )
        return {
            "wallet_address": wallet_address,
            "recovery_status": positions,
            "total_recoverable_amount": sum(p["amount"] for p in positions),
            "immediately_available": sum(p["amount"] for p in positions if p["can_withdraw_immediately"]),
            "time_locked_amount": sum(p["amount"] for p in positions if p["time_locked"]),
            "status": "success",
        }

    # -------------------------------------------------------------------------
    # Withdrawal paths
    # -------------------------------------------------------------------------

    def standard_withdraw(
        self,
        wallet_address: str,
        investment_id: int,
        signed_transaction: str | None = None,
        override_time_lock: bool = False,
    ) -> dict[str, Any]:
        """
        Withdraw an active investment's current_value.

        Without a signed transaction, returns the unsigned withdrawal for the wallet to sign.
        With one, runs it through the orchestrator. Raises TimeLocked before unlock_at
        unless override_time_lock is set.
        """
        inv = self._active_investment(wallet_address, investment_id)
        try:
            return self._standard_withdraw(inv, signed_transaction, override_time_lock)
        except AlgoSwarmError as e:
            self._audit(
                inv,
                AUDIT_WITHDRAWAL_ATTEMPT,
                success=False,
                error_message=e.message,
                time_lock_override=override_time_lock,
            )
            raise

    def _standard_withdraw(
        self,
        inv: Investment,
        signed_transaction: str | None,
        override_time_lock: bool,
    ) -> dict[str, Any]:
        now = self.now()
        if not inv.withdrawal_available(now):
            if not override_time_lock:
                logger.info(
                    "recovery_time_locked",
                    investment_id=inv.id,
                    wallet_id=inv.wallet_address,
                    unlock_at=inv.unlock_at,
                )
                raise TimeLocked(inv.id, inv.unlock_at)
            logger.warning("recovery_time_lock_overridden", investment_id=inv.id, wallet_id=inv.wallet_address)

        amount = inv.current_value
        if signed_transaction is None:
            unsigned = self._builder.build_withdraw(inv.protocol_name, inv.wallet_address, amount)
            validation = self._validator.validate(inv.protocol_name, inv.wallet_address, amount, KIND_WITHDRAW)
            if not validation.valid:
                raise ValidationFailed(validation.reason or "Validation failed", validation)
            self._audit(
                inv,
                AUDIT_WITHDRAWAL_ATTEMPT,
                success=True,
                time_lock_override=override_time_lock,
                metadata={"stage": STATUS_READY_FOR_SIGNING},
            )
            return {
                "status": STATUS_READY_FOR_SIGNING,
                "investment_id": inv.id,
                "protocol": inv.protocol_name,
                "amount": amount,
                "withdrawal_transaction": unsigned.to_dict(),
                "validation": validation.to_dict(),
                "time_lock_override": override_time_lock,
            }

        result = self._orchestrator.execute(
            inv.protocol_name,
            inv.wallet_address,
            amount,
            signed_transaction,
            kind=KIND_WITHDRAW,
            investment_id=inv.id,
            metadata={"recovery_type": "standard"},
            override_time_lock=override_time_lock,
        )
        self._audit(
            inv,
            AUDIT_WITHDRAWAL_ATTEMPT,
            success=result.state != LifecycleState.FAILED,
            tx_id=result.tx_id,
            error_message=result.error,
            time_lock_override=override_time_lock,
            metadata={"stage": result.state.value},
        )
        out = result.to_dict()
        out.update({"investment_id": inv.id, "protocol": inv.protocol_name, "amount": amount})
        return out

    def emergency_recovery(
        self,
        wallet_address: str,
        investment_id: int,
        override_time_lock: bool = False,
        signed_transaction: str | None = None,
    ) -> dict[str, Any]:
        """
        Try the standard path; on any failure file a ManualRecoveryRequest and return
        a report with manual_review_requested=True. Raises only InvestmentNotFound and,
        without override_time_lock, TimeLocked.
        """
        inv = self._active_investment(wallet_address, investment_id)
        if not override_time_lock and not inv.withdrawal_available(self.now()):
            self._audit(
                inv,
                AUDIT_EMERGENCY_REQUEST,
                success=False,
                error_message="time lock active",
            )
            raise TimeLocked(inv.id, inv.unlock_at)

        attempts: list[dict[str, Any]] = []
        try:
            result = self.standard_withdraw(
                wallet_address,
                investment_id,
                signed_transaction=signed_transaction,
                override_time_lock=override_time_lock,
            )
            if result.get("status") == LifecycleState.FAILED.value:
                raise ValidationFailed(result.get("error") or "Transaction failed")
            attempts.append({"method": METHOD_STANDARD, "status": result.get("status")})
            result["recovery_attempts"] = attempts
            result["manual_review_requested"] = False
            return result
        except Exception as e:
            message = e.message if isinstance(e, AlgoSwarmError) else str(e)
            if not isinstance(e, AlgoSwarmError):
                logger.exception("emergency_standard_path_error", investment_id=inv.id, error=message)
            attempts.append({"method": METHOD_STANDARD, "error": message})

        request_id: int | None = None
        try:
            request = self._ledger.create_manual_recovery_request(
                inv,
                priority="high" if override_time_lock else "normal",
                description=f"Emergency recovery after failed standard withdrawal: {message}",
                metadata={"override_time_lock": override_time_lock, "attempts": attempts},
            )
            request_id = request.id
            attempts.append({"method": METHOD_MANUAL_REVIEW, "status": "pending_manual_review"})
        except Exception as e:
            logger.exception("manual_recovery_request_failed", investment_id=inv.id, error=str(e))
            attempts.append({"method": "manual_review", "error": str(e)})

        self._audit(
            inv,
            AUDIT_EMERGENCY_REQUEST,
            success=request_id is not None,
            error_message=message,
            time_lock_override=override_time_lock,
            metadata={"manual_request_id": request_id},
        )
        return {
            "status": STATUS_EMERGENCY_INITIATED,
            "investment_id": inv.id,
            "protocol": inv.protocol_name,
            "amount_at_risk": inv.current_value,
            "recovery_attempts": attempts,
            "manual_review_requested": request_id is not None,
            "manual_request_id": request_id,
            "contact_support": SUPPORT_MESSAGE,
        }

    def complete_recovery(
        self,
        wallet_address: str,
        investment_id: int,
        tx_id: str,
        confirmation: Any,
    ) -> dict[str, Any]:
        """
        Record the outcome of a user-submitted recovery transaction.
        confirmation is a ConfirmationResult or a mapping with confirmed/confirmation_round.
        """
        confirmed, confirmation_round = _read_confirmation(confirmation)
        if not confirmed:
            inv = self._ledger.get_investment(investment_id, wallet_address)
            if inv is None:
                raise InvestmentNotFound(investment_id, wallet_address)
            self._audit(
                inv,
                AUDIT_RECOVERY_FAILED,
                success=False,
                tx_id=tx_id,
                error_message="Transaction confirmation failed",
            )
            logger.warning("recovery_failed", investment_id=investment_id, tx_id=tx_id)
            return {
                "status": STATUS_RECOVERY_FAILED,
                "investment_id": investment_id,
                "transaction_id": tx_id,
                "error": "Transaction confirmation failed",
            }

        completion = self._ledger.record_recovery_completion(
            wallet_address,
            investment_id,
            tx_id,
            confirmation_round,
            metadata={"recovery_type": "user_initiated"},
        )
        if completion.changed:
            self._audit(
                completion.investment,
                AUDIT_RECOVERY_COMPLETE,
                success=True,
                tx_id=tx_id,
                amount=completion.record.amount,
            )
            logger.info(
                "recovery_complete",
                investment_id=investment_id,
                tx_id=tx_id,
                amount_recovered=completion.record.amount,
            )
        return {
            "status": STATUS_RECOVERY_COMPLETE,
            "investment_id": investment_id,
            "transaction_id": tx_id,
            "amount_recovered": completion.record.amount,
            "confirmation_round": completion.record.confirmation_round or 0,
            "message": "Funds successfully recovered",
        }

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _active_investment(self, wallet_address: str, investment_id: int) -> Investment:
        inv = self._ledger.get_investment(investment_id, wallet_address)
        if inv is None or not inv.is_active:
            raise InvestmentNotFound(investment_id, wallet_address)
        return inv

    def _audit(
        self,
        inv: Investment,
        action_type: str,
        *,
        success: bool,
        tx_id: str | None = None,
        amount: int | None = None,
        error_message: str | None = None,
        time_lock_override: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            self._ledger.append_audit(
                inv.wallet_address,
                action_type,
                success=success,
                investment_id=inv.id,
                protocol_name=inv.protocol_name,
                amount=amount if amount is not None else inv.current_value,
                tx_id=tx_id,
                error_message=error_message,
                time_lock_override=time_lock_override,
                metadata=metadata,
            )
        except Exception as e:
            logger.exception("recovery_audit_write_failed", investment_id=inv.id, action_type=action_type, error=str(e))


def _read_confirmation(confirmation: Any) -> tuple[bool, int | None]:
    if isinstance(confirmation, Mapping):
        confirmed = bool(confirmation.get("confirmed"))
        round_ = confirmation.get("confirmation_round")
    else:
        confirmed = bool(getattr(confirmation, "confirmed", False))
        round_ = getattr(confirmation, "confirmation_round", None)
    return confirmed, int(round_) if round_ else None
