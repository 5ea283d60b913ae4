"""
Transaction lifecycle orchestrator.

Drives one signed protocol transaction through
Created -> Validated -> Submitted -> Confirmed | Failed | PendingConfirmation:

- Late validation right before broadcast; a rejection writes nothing.
- Submission errors propagate as raised by the gateway; nothing was broadcast, nothing is written.
- The pending record is persisted after submit and before waiting for confirmation.
- A confirmation timeout is a pending_confirmation result, not an error.
- A withdrawal is checked against its investment (owner, protocol, time lock, current_value)
  before broadcast.
- Once the chain decided (confirmed or rejected), ledger failures are logged for
  reconciliation and never undo or re-broadcast anything.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from backend_algoswarm.core.exceptions import (
    AlgoSwarmError,
    InvestmentNotFound,
    TimeLocked,
    TransactionRejected,
    ValidationFailed,
)
from backend_algoswarm.ledger.models import (
    TX_CONFIRMED,
    TX_PROTOCOL_DEPOSIT,
    TX_PROTOCOL_WITHDRAWAL,
    Investment,
    TransactionRecord,
)
from backend_algoswarm.protocols.builder import TransactionBuilder
from backend_algoswarm.protocols.registry import (
    KIND_DEPOSIT,
    KIND_WITHDRAW,
    TRANSACTION_KINDS,
    ProtocolRegistry,
    get_registry,
)
from backend_algoswarm.swarm_logging import bind_transaction, get_logger

logger = get_logger(__name__)

DEFAULT_DEPOSIT_TIMEOUT_SEC = 60.0
DEFAULT_RECOVERY_TIMEOUT_SEC = 120.0


class LifecycleState(str, enum.Enum):
    CREATED = "created"
    VALIDATED = "validated"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    PENDING_CONFIRMATION = "pending_confirmation"


@dataclass
class LifecycleResult:
    """Where a transaction ended up after one orchestrator call."""

    state: LifecycleState
    tx_id: str | None = None
    confirmation_round: int | None = None
    record: TransactionRecord | None = None
    investment: Investment | None = None
    reconciliation_required: bool = False
    error: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.state == LifecycleState.CONFIRMED

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "status": self.state.value,
            "transaction_id": self.tx_id,
            "confirmed": self.confirmed,
            "confirmation_round": self.confirmation_round or 0,
            "reconciliation_required": self.reconciliation_required,
        }
        if self.record is not None:
            out["record"] = self.record.to_dict()
        if self.investment is not None:
            out["investment"] = self.investment.to_dict()
        if self.error:
            out["error"] = self.error
        return out


class TransactionOrchestrator:
    def __init__(
        self,
        gateway: Any,
        validator: Any,
        ledger: Any,
        *,
        builder: TransactionBuilder | None = None,
        registry: ProtocolRegistry | None = None,
        deposit_timeout_sec: float = DEFAULT_DEPOSIT_TIMEOUT_SEC,
        recovery_timeout_sec: float = DEFAULT_RECOVERY_TIMEOUT_SEC,
    ) -> None:
        self._gateway = gateway
        self._validator = validator
        self._ledger = ledger
        self._registry = registry or get_registry()
        self._builder = builder or TransactionBuilder(self._registry)
        self.deposit_timeout_sec = deposit_timeout_sec
        self.recovery_timeout_sec = recovery_timeout_sec

    @classmethod
    def from_settings(cls, settings: Any, gateway: Any, validator: Any, ledger: Any, **kwargs: Any) -> "TransactionOrchestrator":
        return cls(
            gateway,
            validator,
            ledger,
            deposit_timeout_sec=settings.deposit_confirm_timeout_sec,
            recovery_timeout_sec=settings.recovery_confirm_timeout_sec,
            **kwargs,
        )

    def default_timeout(self, kind: str) -> float:
        return self.deposit_timeout_sec if kind == KIND_DEPOSIT else self.recovery_timeout_sec

    def execute(
        self,
        protocol_name: str,
        wallet_address: str,
        amount: int,
        signed_transaction: str,
        *,
        kind: str = KIND_DEPOSIT,
        investment_id: int | None = None,
        timeout_sec: float | None = None,
        metadata: dict[str, Any] | None = None,
        override_time_lock: bool = False,
    ) -> LifecycleResult:
        """
        Validate, submit, record and confirm one signed transaction.

        Raises UnknownProtocol, AmountTooSmall or ValidationFailed before broadcast,
        and for withdrawals InvestmentNotFound or TimeLocked; SubmissionFailed or
        GatewayError from submit. A pool error yields a failed result.
        """
        submitted = self.submit(
            signed_transaction,
            protocol_name=protocol_name,
            wallet_address=wallet_address,
            amount=amount,
            kind=kind,
            investment_id=investment_id,
            metadata=metadata,
            override_time_lock=override_time_lock,
        )
        if submitted.state == LifecycleState.CONFIRMED:
            return submitted
        log = bind_transaction(submitted.tx_id, protocol=protocol_name, kind=kind, wallet_id=wallet_address)
        return self._await(
            submitted.tx_id,
            kind,
            timeout_sec,
            log,
            record=submitted.record,
            reconciliation_required=submitted.reconciliation_required,
        )

    def submit(
        self,
        signed_transaction: str,
        *,
        protocol_name: str | None = None,
        wallet_address: str | None = None,
        amount: int | None = None,
        kind: str = KIND_DEPOSIT,
        investment_id: int | None = None,
        metadata: dict[str, Any] | None = None,
        override_time_lock: bool = False,
    ) -> LifecycleResult:
        """
        Late-validate (when protocol, wallet and amount are known), broadcast, and persist
        a pending record. Without request context the transaction is only broadcast.
        A withdrawal must take the whole current_value of an active, unlocked investment
        in the same protocol; override_time_lock lifts only the time lock.
        Returns a submitted result, or the existing record when it is already confirmed.
        """
        if kind not in TRANSACTION_KINDS:
            raise ValueError(f"kind must be one of {TRANSACTION_KINDS}")
        tracked = protocol_name is not None and wallet_address is not None and amount is not None
        if not tracked:
            tx_id = self._gateway.submit(signed_transaction)
            logger.info("lifecycle_submitted_untracked", tx_id=tx_id)
            return LifecycleResult(LifecycleState.SUBMITTED, tx_id=tx_id)
        if kind == KIND_WITHDRAW and investment_id is None:
            raise ValueError("investment_id is required for withdrawals")

        # Created: the description the wallet should have signed.
        unsigned = self._builder.build(protocol_name, wallet_address, amount, kind)
        config = self._registry.get_config(protocol_name)
        if kind == KIND_WITHDRAW:
            self._check_withdrawal(config.name, wallet_address, amount, investment_id, override_time_lock)

        validation = self._validator.validate(protocol_name, wallet_address, amount, kind)
        if not validation.valid:
            logger.info(
                "lifecycle_validation_failed",
                protocol=config.name,
                wallet_id=wallet_address,
                kind=kind,
                reason=validation.reason,
            )
            raise ValidationFailed(validation.reason or "Validation failed", validation)

        tx_id = self._gateway.submit(signed_transaction)
        log = bind_transaction(tx_id, protocol=config.name, kind=kind, wallet_id=wallet_address)
        log.info("lifecycle_submitted", amount=amount)

        record_meta: dict[str, Any] = {
            "protocol": config.name,
            "kind": kind,
            "method": unsigned.method,
            "app_id": config.app_id,
            "net_amount": unsigned.net_amount,
            "fee_estimate": unsigned.fee_estimate,
        }
        if kind == KIND_DEPOSIT:
            record_meta["withdrawal_delay_seconds"] = config.withdrawal_delay_seconds
        else:
            record_meta["investment_id"] = investment_id
            record_meta["time_lock_override"] = override_time_lock
        record_meta.update(metadata or {})
        tx_type = TX_PROTOCOL_DEPOSIT if kind == KIND_DEPOSIT else TX_PROTOCOL_WITHDRAWAL

        try:
            record, created = self._ledger.record_pending(
                wallet_address,
                tx_type,
                amount,
                tx_id,
                metadata=record_meta,
                investment_id=investment_id,
            )
        except Exception as e:
            # Broadcast already happened; keep going so confirmation is still observed.
            log.warning("ledger_reconciliation_required", stage="record_pending", error=str(e))
            return LifecycleResult(LifecycleState.SUBMITTED, tx_id=tx_id, reconciliation_required=True)

        if not created and record.status == TX_CONFIRMED:
            log.info("lifecycle_already_confirmed")
            return LifecycleResult(
                LifecycleState.CONFIRMED,
                tx_id=tx_id,
                confirmation_round=record.confirmation_round,
                record=record,
            )
        return LifecycleResult(LifecycleState.SUBMITTED, tx_id=tx_id, record=record)

    def confirm(self, tx_id: str, timeout_sec: float | None = None) -> LifecycleResult:
        """Wait on an already-submitted transaction and finalize its record if one exists."""
        record = self._ledger.get_transaction(tx_id)
        log = bind_transaction(tx_id)
        if record is not None and record.status == TX_CONFIRMED:
            return LifecycleResult(
                LifecycleState.CONFIRMED,
                tx_id=tx_id,
                confirmation_round=record.confirmation_round,
                record=record,
            )
        kind = KIND_DEPOSIT
        if record is not None and record.transaction_type == TX_PROTOCOL_WITHDRAWAL:
            kind = KIND_WITHDRAW
        return self._await(tx_id, kind, timeout_sec, log, record=record)

    def finalize(self, tx_id: str, confirmation_round: int | None) -> LifecycleResult:
        """
        Record a confirmation reported out of band. Idempotent: an already-confirmed
        record is returned unchanged. Raises RecordNotFound for an unknown tx id.
        """
        outcome = self._ledger.finalize_transaction(tx_id, confirmation_round)
        return LifecycleResult(
            LifecycleState.CONFIRMED,
            tx_id=tx_id,
            confirmation_round=outcome.record.confirmation_round,
            record=outcome.record,
            investment=outcome.investment,
        )

    def _check_withdrawal(
        self,
        protocol_name: str,
        wallet_address: str,
        amount: int,
        investment_id: int,
        override_time_lock: bool,
    ) -> Investment:
        inv = self._ledger.get_investment(investment_id, wallet_address)
        if inv is None or not inv.is_active:
            raise InvestmentNotFound(investment_id, wallet_address)
        if self._registry.get_config(inv.protocol_name).name != protocol_name:
            raise ValidationFailed(f"Investment {investment_id} is held in {inv.protocol_name}, not {protocol_name}")
        if not override_time_lock and not inv.withdrawal_available(self._ledger.now()):
            raise TimeLocked(inv.id, inv.unlock_at)
        if amount != inv.current_value:
            raise ValidationFailed(
                f"Withdrawal amount must equal the investment's current value ({inv.current_value} microAlgo)"
            )
        return inv

    def _await(
        self,
        tx_id: str,
        kind: str,
        timeout_sec: float | None,
        log: Any,
        *,
        record: TransactionRecord | None = None,
        reconciliation_required: bool = False,
    ) -> LifecycleResult:
        timeout = timeout_sec if timeout_sec is not None else self.default_timeout(kind)
        try:
            confirmation = self._gateway.wait_for_confirmation(tx_id, timeout)
        except TransactionRejected as e:
            log.warning("lifecycle_failed", error=e.message)
            if record is None:
                return LifecycleResult(
                    LifecycleState.FAILED,
                    tx_id=tx_id,
                    reconciliation_required=reconciliation_required,
                    error=e.message,
                )
            try:
                failed = self._ledger.mark_failed(tx_id, e.pool_error)
            except Exception as ledger_error:
                log.warning(
                    "ledger_reconciliation_required",
                    stage="mark_failed",
                    pool_error=e.pool_error,
                    error=ledger_error.message if isinstance(ledger_error, AlgoSwarmError) else str(ledger_error),
                )
                return LifecycleResult(
                    LifecycleState.FAILED,
                    tx_id=tx_id,
                    record=record,
                    reconciliation_required=True,
                    error=e.message,
                )
            return LifecycleResult(
                LifecycleState.FAILED,
                tx_id=tx_id,
                record=failed or record,
                reconciliation_required=reconciliation_required,
                error=e.message,
            )

        if not confirmation.confirmed:
            log.info("lifecycle_pending_confirmation", timeout_sec=timeout)
            return LifecycleResult(
                LifecycleState.PENDING_CONFIRMATION,
                tx_id=tx_id,
                record=record,
                reconciliation_required=reconciliation_required,
            )

        if record is None:
            return LifecycleResult(
                LifecycleState.CONFIRMED,
                tx_id=tx_id,
                confirmation_round=confirmation.confirmation_round,
                reconciliation_required=reconciliation_required,
            )

        try:
            outcome = self._ledger.finalize_transaction(tx_id, confirmation.confirmation_round)
        except Exception as e:
            log.warning(
                "ledger_reconciliation_required",
                stage="finalize",
                confirmation_round=confirmation.confirmation_round,
                error=e.message if isinstance(e, AlgoSwarmError) else str(e),
            )
            return LifecycleResult(
                LifecycleState.CONFIRMED,
                tx_id=tx_id,
                confirmation_round=confirmation.confirmation_round,
                record=record,
                reconciliation_required=True,
            )

        log.info("lifecycle_confirmed", confirmation_round=confirmation.confirmation_round)
        return LifecycleResult(
            LifecycleState.CONFIRMED,
            tx_id=tx_id,
            confirmation_round=confirmation.confirmation_round,
            record=outcome.record,
            investment=outcome.investment,
            reconciliation_required=reconciliation_required,
        )

