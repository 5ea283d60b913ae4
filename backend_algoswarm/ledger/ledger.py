"""
Persistent ledger: investments, transaction history, protocol configs and the
recovery trail.

- One SQLAlchemy session per unit of work; commits on success, rolls back on error.
- Each unit of work runs under RetryPolicy so transient connection failures are retried.
- Multi-row changes (confirm record + create/close investment) share one session.
- Closing an investment is a compare-and-set on stake_status, so two concurrent
  withdrawals of the same position cannot both succeed.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from backend_algoswarm.config.env import get_database_url, mask_url
from backend_algoswarm.core.exceptions import (
    AlreadyWithdrawn,
    InvestmentNotFound,
    RecordNotFound,
    UnknownProtocol,
)
from backend_algoswarm.ledger.models import (
    REQUEST_PENDING,
    STAKE_ACTIVE,
    STAKE_WITHDRAWN,
    TX_CONFIRMED,
    TX_FAILED,
    TX_PENDING,
    TX_PROFIT,
    TX_PROTOCOL_DEPOSIT,
    TX_PROTOCOL_WITHDRAWAL,
    TX_STAKE,
    TX_WITHDRAW,
    Investment,
    ManualRecoveryRequest,
    RecoveryAuditEntry,
    TransactionRecord,
)
from backend_algoswarm.ledger.retry import RetryPolicy
from backend_algoswarm.ledger.tables import (
    Base,
    InvestmentRow,
    ManualRecoveryRequestRow,
    ProtocolConfigRow,
    RecoveryAuditRow,
    TransactionRow,
)
from backend_algoswarm.protocols.registry import UPDATABLE_FIELDS
from backend_algoswarm.swarm_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEPOSIT_TYPES = (TX_PROTOCOL_DEPOSIT, TX_STAKE)
WITHDRAWAL_TYPES = (TX_PROTOCOL_WITHDRAWAL, TX_WITHDRAW)


@dataclass
class FinalizeOutcome:
    """Result of finalize_transaction. changed is False when the record was already confirmed."""

    record: TransactionRecord
    investment: Investment | None
    changed: bool


@dataclass
class RecoveryCompletion:
    record: TransactionRecord
    investment: Investment
    changed: bool


def make_engine(url: str) -> Engine:
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


class Ledger:
    """Facade over the ledger tables. All reads return detached dataclass snapshots."""

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: Engine | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.url = url or get_database_url()
        self._engine = engine or make_engine(self.url)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Any, clock: Callable[[], float] = time.time) -> "Ledger":
        return cls(
            settings.database_url,
            retry_policy=RetryPolicy.from_settings(settings),
            clock=clock,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def now(self) -> int:
        return int(self._clock())

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Context manager for a single session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        def unit() -> T:
            with self._session_scope() as session:
                return fn(session)

        return self._retry.run(unit, operation=operation)

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def init_db(self, registry: Any = None) -> None:
        """
        Create tables if missing, seed protocol_configs and load stored configs back into
        the registry. Safe to call on every startup.
        """
        try:
            Base.metadata.create_all(bind=self._engine)
        except Exception as e:
            logger.exception("ledger_init_db_failed", error=str(e))
            raise
        if registry is not None:
            self.seed_protocol_configs(registry)
            self.apply_protocol_configs(registry)
        logger.info("ledger_init_db", url=mask_url(self.url))

    def close(self) -> None:
        self._engine.dispose()

    # -------------------------------------------------------------------------
    # Transaction history
    # -------------------------------------------------------------------------

    def record_pending(
        self,
        wallet_address: str,
        transaction_type: str,
        amount: int,
        algorand_tx_id: str,
        metadata: dict[str, Any] | None = None,
        investment_id: int | None = None,
    ) -> tuple[TransactionRecord, bool]:
        """
        Append a pending record for a submitted transaction.
        Returns (record, created); an existing record for the same tx id is returned as-is.
        """
        now = self.now()

        def op(session: Session) -> tuple[TransactionRecord, bool]:
            existing = _tx_by_id(session, algorand_tx_id)
            if existing is not None:
                return existing.to_model(), False
            row = TransactionRow(
                wallet_address=wallet_address,
                investment_id=investment_id,
                transaction_type=transaction_type,
                amount=int(amount),
                algorand_tx_id=algorand_tx_id,
                status=TX_PENDING,
                metadata_json=dict(metadata or {}),
                created_at=now,
            )
            session.add(row)
            session.flush()
            return row.to_model(), True

        try:
            record, created = self._run("record_pending", op)
        except IntegrityError:
            # A concurrent submit inserted the same tx id first.
            existing = self.get_transaction(algorand_tx_id)
            if existing is None:
                raise
            return existing, False
        if created:
            logger.info(
                "transaction_recorded",
                tx_id=algorand_tx_id,
                wallet_id=wallet_address,
                transaction_type=transaction_type,
                amount=amount,
            )
        return record, created

    def get_transaction(self, algorand_tx_id: str) -> TransactionRecord | None:
        def op(session: Session) -> TransactionRecord | None:
            row = _tx_by_id(session, algorand_tx_id)
            return row.to_model() if row else None

        return self._run("get_transaction", op)

    def list_transactions(
        self,
        wallet_address: str,
        *,
        status: str | None = None,
        limit: int = 500,
    ) -> list[TransactionRecord]:
        def op(session: Session) -> list[TransactionRecord]:
            q = session.query(TransactionRow).filter(TransactionRow.wallet_address == wallet_address)
            if status:
                q = q.filter(TransactionRow.status == status)
            rows = q.order_by(TransactionRow.id.desc()).limit(limit).all()
            return [r.to_model() for r in rows]

        return self._run("list_transactions", op)

    def finalize_transaction(self, algorand_tx_id: str, confirmation_round: int | None) -> FinalizeOutcome:
        """
        Move a record to confirmed and apply its effect in the same database transaction:
        deposits create their Investment, withdrawals close theirs.
        Already-confirmed records are returned unchanged.
        """
        now = self.now()

        def op(session: Session) -> FinalizeOutcome:
            row = _tx_by_id(session, algorand_tx_id)
            if row is None:
                raise RecordNotFound(algorand_tx_id)
            if row.status == TX_CONFIRMED:
                inv = session.get(InvestmentRow, row.investment_id) if row.investment_id else None
                return FinalizeOutcome(row.to_model(), inv.to_model() if inv else None, False)

            meta = dict(row.metadata_json or {})
            if confirmation_round is not None:
                meta["confirmation_round"] = int(confirmation_round)
            row.metadata_json = meta
            row.status = TX_CONFIRMED
            row.confirmed_at = now

            inv_row: InvestmentRow | None = None
            if row.transaction_type in DEPOSIT_TYPES:
                inv_row = _create_investment_for(session, row, meta, now)
            elif row.transaction_type in WITHDRAWAL_TYPES and row.investment_id is not None:
                inv_row, _ = _close_investment(
                    session, row.investment_id, row.wallet_address, algorand_tx_id, now
                )
            session.flush()
            return FinalizeOutcome(row.to_model(), inv_row.to_model() if inv_row else None, True)

        outcome = self._run("finalize_transaction", op)
        if outcome.changed:
            logger.info(
                "transaction_finalized",
                tx_id=algorand_tx_id,
                transaction_type=outcome.record.transaction_type,
                confirmation_round=confirmation_round,
                investment_id=outcome.investment.id if outcome.investment else None,
            )
        return outcome

    def mark_failed(self, algorand_tx_id: str, error: str) -> TransactionRecord | None:
        """Move a pending record to failed. Confirmed records are never downgraded."""

        def op(session: Session) -> TransactionRecord | None:
            row = _tx_by_id(session, algorand_tx_id)
            if row is None:
                return None
            if row.status == TX_CONFIRMED:
                return row.to_model()
            meta = dict(row.metadata_json or {})
            meta["error"] = error
            row.metadata_json = meta
            row.status = TX_FAILED
            session.flush()
            return row.to_model()

        record = self._run("mark_failed", op)
        if record is not None and record.status == TX_FAILED:
            logger.warning("transaction_failed", tx_id=algorand_tx_id, error=error)
        return record

    # -------------------------------------------------------------------------
    # Investments
    # -------------------------------------------------------------------------

    def create_investment(
        self,
        wallet_address: str,
        protocol_name: str,
        staked_amount: int,
        withdrawal_delay_seconds: int,
        *,
        stake_date: int | None = None,
        deposit_tx_id: str | None = None,
    ) -> Investment:
        if staked_amount < 0:
            raise ValueError("staked_amount must be non-negative")
        now = self.now()

        def op(session: Session) -> Investment:
            row = InvestmentRow(
                wallet_address=wallet_address,
                protocol_name=protocol_name,
                staked_amount=int(staked_amount),
                current_value=int(staked_amount),
                stake_status=STAKE_ACTIVE,
                stake_date=stake_date if stake_date is not None else now,
                withdrawal_delay_seconds=max(0, int(withdrawal_delay_seconds)),
                deposit_tx_id=deposit_tx_id,
                last_updated=now,
            )
            session.add(row)
            session.flush()
            return row.to_model()

        return self._run("create_investment", op)

    def get_investment(self, investment_id: int, wallet_address: str | None = None) -> Investment | None:
        """Return the investment, or None when missing or owned by another wallet."""

        def op(session: Session) -> Investment | None:
            row = session.get(InvestmentRow, investment_id)
            if row is None:
                return None
            if wallet_address is not None and row.wallet_address != wallet_address:
                return None
            return row.to_model()

        return self._run("get_investment", op)

    def list_investments(self, wallet_address: str, status: str | None = STAKE_ACTIVE) -> list[Investment]:
        def op(session: Session) -> list[Investment]:
            q = session.query(InvestmentRow).filter(InvestmentRow.wallet_address == wallet_address)
            if status:
                q = q.filter(InvestmentRow.stake_status == status)
            return [r.to_model() for r in q.order_by(InvestmentRow.stake_date.desc(), InvestmentRow.id.desc())]

        return self._run("list_investments", op)

    def close_investment(
        self,
        investment_id: int,
        wallet_address: str,
        withdrawal_tx_id: str,
    ) -> tuple[Investment, bool]:
        """
        Mark an active investment withdrawn. Returns (investment, changed).
        Closing again with the same tx id is a no-op; a different tx id raises AlreadyWithdrawn.
        """
        now = self.now()

        def op(session: Session) -> tuple[Investment, bool]:
            row, changed = _close_investment(session, investment_id, wallet_address, withdrawal_tx_id, now)
            return row.to_model(), changed

        return self._run("close_investment", op)

    def record_recovery_completion(
        self,
        wallet_address: str,
        investment_id: int,
        algorand_tx_id: str,
        confirmation_round: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RecoveryCompletion:
        """
        Record a user-confirmed recovery transaction: confirm (or insert) its history row
        and close the investment in one database transaction.
        """
        now = self.now()

        def op(session: Session) -> RecoveryCompletion:
            inv = _owned_investment(session, investment_id, wallet_address)
            row = _tx_by_id(session, algorand_tx_id)
            if row is not None and row.status == TX_CONFIRMED and inv.withdrawal_tx_id == algorand_tx_id:
                return RecoveryCompletion(row.to_model(), inv.to_model(), False)

            recovered_amount = int(inv.current_value)
            inv, closed = _close_investment(session, investment_id, wallet_address, algorand_tx_id, now)
            meta = dict(row.metadata_json or {}) if row is not None else {}
            meta.update(metadata or {})
            meta.setdefault("investment_id", investment_id)
            meta.setdefault("protocol", inv.protocol_name)
            if confirmation_round is not None:
                meta["confirmation_round"] = int(confirmation_round)
            if row is None:
                row = TransactionRow(
                    wallet_address=wallet_address,
                    investment_id=investment_id,
                    transaction_type=TX_PROTOCOL_WITHDRAWAL,
                    amount=recovered_amount,
                    algorand_tx_id=algorand_tx_id,
                    created_at=now,
                )
                session.add(row)
            row.metadata_json = meta
            row.status = TX_CONFIRMED
            row.confirmed_at = row.confirmed_at or now
            session.flush()
            return RecoveryCompletion(row.to_model(), inv.to_model(), True)

        try:
            return self._run("record_recovery_completion", op)
        except IntegrityError:
            # Lost an insert race on the tx id; the row now exists, so this run updates it.
            return self._run("record_recovery_completion", op)

    def accrue_value(self, investment_id: int, delta: int, note: str | None = None) -> Investment:
        """
        Apply a value change (yield or loss) to an active investment and log it as a
        profit record. current_value never drops below zero.
        """
        now = self.now()

        def op(session: Session) -> Investment:
            inv = session.get(InvestmentRow, investment_id)
            if inv is None:
                raise InvestmentNotFound(investment_id)
            if inv.stake_status != STAKE_ACTIVE:
                raise AlreadyWithdrawn(investment_id, inv.withdrawal_tx_id)
            new_value = int(inv.current_value) + int(delta)
            if new_value < 0:
                raise ValueError("current_value must not go negative")
            inv.current_value = new_value
            inv.last_updated = now
            session.add(
                TransactionRow(
                    wallet_address=inv.wallet_address,
                    investment_id=inv.id,
                    transaction_type=TX_PROFIT,
                    amount=int(delta),
                    algorand_tx_id=None,
                    status=TX_CONFIRMED,
                    metadata_json={"protocol": inv.protocol_name, "note": note} if note else {"protocol": inv.protocol_name},
                    created_at=now,
                    confirmed_at=now,
                )
            )
            session.flush()
            return inv.to_model()

        return self._run("accrue_value", op)

    # -------------------------------------------------------------------------
    # Manual recovery requests and audit
    # -------------------------------------------------------------------------

    def create_manual_recovery_request(
        self,
        investment: Investment,
        *,
        priority: str = "normal",
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ManualRecoveryRequest:
        now = self.now()

        def op(session: Session) -> ManualRecoveryRequest:
            row = ManualRecoveryRequestRow(
                wallet_address=investment.wallet_address,
                investment_id=investment.id,
                protocol_name=investment.protocol_name,
                amount=investment.current_value,
                status=REQUEST_PENDING,
                priority=priority,
                description=description,
                metadata_json=dict(metadata or {}),
                created_at=now,
            )
            session.add(row)
            session.flush()
            return row.to_model()

        request = self._run("create_manual_recovery_request", op)
        logger.warning(
            "manual_recovery_requested",
            request_id=request.id,
            investment_id=investment.id,
            wallet_id=investment.wallet_address,
            priority=priority,
        )
        return request

    def list_manual_recovery_requests(
        self,
        wallet_address: str | None = None,
        *,
        investment_id: int | None = None,
        status: str | None = None,
    ) -> list[ManualRecoveryRequest]:
        def op(session: Session) -> list[ManualRecoveryRequest]:
            q = session.query(ManualRecoveryRequestRow)
            if wallet_address:
                q = q.filter(ManualRecoveryRequestRow.wallet_address == wallet_address)
            if investment_id is not None:
                q = q.filter(ManualRecoveryRequestRow.investment_id == investment_id)
            if status:
                q = q.filter(ManualRecoveryRequestRow.status == status)
            return [r.to_model() for r in q.order_by(ManualRecoveryRequestRow.id)]

        return self._run("list_manual_recovery_requests", op)

    def append_audit(
        self,
        wallet_address: str,
        action_type: str,
        *,
        success: bool,
        investment_id: int | None = None,
        protocol_name: str | None = None,
        amount: int | None = None,
        tx_id: str | None = None,
        error_message: str | None = None,
        time_lock_override: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> RecoveryAuditEntry:
        now = self.now()

        def op(session: Session) -> RecoveryAuditEntry:
            row = RecoveryAuditRow(
                wallet_address=wallet_address,
                investment_id=investment_id,
                action_type=action_type,
                protocol_name=protocol_name,
                amount=amount,
                tx_id=tx_id,
                success=success,
                error_message=error_message,
                time_lock_override=time_lock_override,
                metadata_json=dict(metadata or {}),
                created_at=now,
            )
            session.add(row)
            session.flush()
            return row.to_model()

        return self._run("append_audit", op)

    def list_audit(self, wallet_address: str, investment_id: int | None = None) -> list[RecoveryAuditEntry]:
        def op(session: Session) -> list[RecoveryAuditEntry]:
            q = session.query(RecoveryAuditRow).filter(RecoveryAuditRow.wallet_address == wallet_address)
            if investment_id is not None:
                q = q.filter(RecoveryAuditRow.investment_id == investment_id)
            return [r.to_model() for r in q.order_by(RecoveryAuditRow.id)]

        return self._run("list_audit", op)

    # -------------------------------------------------------------------------
    # Protocol configs
    # -------------------------------------------------------------------------

    def seed_protocol_configs(self, registry: Any) -> int:
        """Insert a protocol_configs row for each registry protocol not yet stored."""
        now = self.now()

        def op(session: Session) -> int:
            inserted = 0
            for config in registry.list_protocols():
                if session.get(ProtocolConfigRow, config.name) is None:
                    session.add(_config_row(config, now))
                    inserted += 1
            return inserted

        inserted = self._run("seed_protocol_configs", op)
        if inserted:
            logger.info("protocol_configs_seeded", count=inserted)
        return inserted

    def apply_protocol_configs(self, registry: Any) -> int:
        """Apply stored protocol_configs rows that differ from the registry. Returns the count applied."""

        def op(session: Session) -> list[dict[str, Any]]:
            rows = session.query(ProtocolConfigRow).all()
            return [{"protocol": r.protocol_name, **{k: getattr(r, k) for k in UPDATABLE_FIELDS}} for r in rows]

        applied = 0
        for stored in self._run("apply_protocol_configs", op):
            name = stored.pop("protocol")
            try:
                current = registry.get_config(name)
            except UnknownProtocol:
                logger.warning("protocol_config_unknown", protocol=name)
                continue
            changes = {k: v for k, v in stored.items() if v is not None and v != getattr(current, k)}
            if changes:
                registry.update_config(name, **changes)
                applied += 1
        if applied:
            logger.info("protocol_configs_applied", count=applied)
        return applied

    def save_protocol_config(self, config: Any) -> None:
        now = self.now()

        def op(session: Session) -> None:
            session.merge(_config_row(config, now))

        self._run("save_protocol_config", op)

    def load_protocol_configs(self) -> list[dict[str, Any]]:
        def op(session: Session) -> list[dict[str, Any]]:
            rows = session.query(ProtocolConfigRow).order_by(ProtocolConfigRow.protocol_name).all()
            return [r.to_dict() for r in rows]

        return self._run("load_protocol_configs", op)

    def update_protocol_config(self, registry: Any, protocol_name: str, **changes: Any) -> Any:
        """Administrative update: apply to the registry, then persist the new config."""
        config = registry.update_config(protocol_name, **changes)
        self.save_protocol_config(config)
        return config


# -----------------------------------------------------------------------------
# Session-level helpers
# -----------------------------------------------------------------------------


def _tx_by_id(session: Session, algorand_tx_id: str) -> TransactionRow | None:
    return (
        session.query(TransactionRow)
        .filter(TransactionRow.algorand_tx_id == algorand_tx_id)
        .order_by(TransactionRow.id)
        .first()
    )


def _owned_investment(session: Session, investment_id: int, wallet_address: str) -> InvestmentRow:
    row = session.get(InvestmentRow, investment_id)
    if row is None or row.wallet_address != wallet_address:
        raise InvestmentNotFound(investment_id, wallet_address)
    return row


def _create_investment_for(
    session: Session, row: TransactionRow, meta: dict[str, Any], now: int
) -> InvestmentRow:
    if row.investment_id is not None:
        existing = session.get(InvestmentRow, row.investment_id)
        if existing is not None:
            return existing
    staked = int(meta.get("net_amount", row.amount))
    inv = InvestmentRow(
        wallet_address=row.wallet_address,
        protocol_name=meta.get("protocol", "unknown"),
        staked_amount=staked,
        current_value=staked,
        stake_status=STAKE_ACTIVE,
        stake_date=now,
        withdrawal_delay_seconds=max(0, int(meta.get("withdrawal_delay_seconds", 0))),
        deposit_tx_id=row.algorand_tx_id,
        last_updated=now,
    )
    session.add(inv)
    session.flush()
    row.investment_id = inv.id
    return inv


def _close_investment(
    session: Session,
    investment_id: int,
    wallet_address: str,
    withdrawal_tx_id: str,
    now: int,
) -> tuple[InvestmentRow, bool]:
    inv = _owned_investment(session, investment_id, wallet_address)
    withdrawal_date = max(now, int(inv.stake_date))
    updated = (
        session.query(InvestmentRow)
        .filter(InvestmentRow.id == investment_id, InvestmentRow.stake_status == STAKE_ACTIVE)
        .update(
            {
                InvestmentRow.stake_status: STAKE_WITHDRAWN,
                InvestmentRow.withdrawal_date: withdrawal_date,
                InvestmentRow.withdrawal_tx_id: withdrawal_tx_id,
                InvestmentRow.last_updated: now,
            },
            synchronize_session=False,
        )
    )
    session.refresh(inv)
    if updated:
        return inv, True
    if inv.withdrawal_tx_id == withdrawal_tx_id:
        return inv, False
    raise AlreadyWithdrawn(investment_id, inv.withdrawal_tx_id)


def _config_row(config: Any, now: int) -> ProtocolConfigRow:
    return ProtocolConfigRow(
        protocol_name=config.name,
        display_name=config.display_name,
        app_id=config.app_id,
        deposit_method=config.deposit_method,
        withdraw_method=config.withdraw_method,
        fee_microalgo=config.fee_microalgo,
        min_balance_microalgo=config.min_balance_microalgo,
        min_deposit=config.min_deposit,
        max_deposit=config.max_deposit,
        withdrawal_delay_seconds=config.withdrawal_delay_seconds,
        risk_level=config.risk_level,
        asset=config.asset,
        estimated_apy=config.estimated_apy,
        updated_at=now,
    )
