"""
Tests for the Ledger: pending/confirmed records, investment creation and CAS close,
recovery completion, value accrual, protocol configs and the retry policy.
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import OTHER_WALLET, T0, WALLET
from backend_algoswarm.core.exceptions import (
    AlreadyWithdrawn,
    InvestmentNotFound,
    LedgerError,
    RecordNotFound,
)
from backend_algoswarm.ledger import RetryPolicy


def _pending_deposit(ledger, tx_id="TXDEP", amount=10_000_000, net=9_797_000):
    record, created = ledger.record_pending(
        WALLET,
        "protocol_deposit",
        amount,
        tx_id,
        metadata={"protocol": "algofi", "net_amount": net, "withdrawal_delay_seconds": 86_400},
    )
    assert created
    return record


def test_record_pending_then_finalize_creates_investment(ledger, clock):
    record = _pending_deposit(ledger)
    assert record.status == "pending"
    assert record.created_at == T0

    clock.advance(10)
    outcome = ledger.finalize_transaction("TXDEP", 777)
    assert outcome.changed is True
    assert outcome.record.status == "confirmed"
    assert outcome.record.confirmation_round == 777
    assert outcome.record.confirmed_at == T0 + 10

    inv = outcome.investment
    assert inv.protocol_name == "algofi"
    assert inv.staked_amount == 9_797_000
    assert inv.current_value == 9_797_000
    assert inv.stake_status == "active"
    assert inv.stake_date == T0 + 10
    assert inv.withdrawal_delay_seconds == 86_400
    assert inv.deposit_tx_id == "TXDEP"
    assert outcome.record.investment_id == inv.id


def test_record_pending_duplicate_tx_id_returns_existing(ledger):
    first = _pending_deposit(ledger)
    again, created = ledger.record_pending(WALLET, "protocol_deposit", 1, "TXDEP")
    assert created is False
    assert again.id == first.id
    assert again.amount == first.amount


def test_record_pending_losing_insert_race_returns_existing(ledger, monkeypatch):
    import backend_algoswarm.ledger.ledger as ledger_module

    first = _pending_deposit(ledger)
    real_lookup = ledger_module._tx_by_id
    calls = []

    def stale_lookup(session, tx_id):
        calls.append(tx_id)
        # first read misses, as if a concurrent insert had not committed yet
        return None if len(calls) == 1 else real_lookup(session, tx_id)

    monkeypatch.setattr(ledger_module, "_tx_by_id", stale_lookup)
    again, created = ledger.record_pending(WALLET, "protocol_deposit", 1, "TXDEP")
    assert created is False
    assert again.id == first.id
    assert [r.algorand_tx_id for r in ledger.list_transactions(WALLET)] == ["TXDEP"]


def test_duplicate_tx_id_rejected_by_constraint(ledger):
    from backend_algoswarm.ledger.tables import TransactionRow

    _pending_deposit(ledger)
    with pytest.raises(IntegrityError):
        with ledger._session_scope() as session:
            session.add(
                TransactionRow(
                    wallet_address=WALLET,
                    transaction_type="protocol_deposit",
                    amount=1,
                    algorand_tx_id="TXDEP",
                    status="pending",
                    metadata_json={},
                    created_at=T0,
                )
            )


def test_finalize_twice_is_noop(ledger):
    _pending_deposit(ledger)
    first = ledger.finalize_transaction("TXDEP", 777)
    second = ledger.finalize_transaction("TXDEP", 999)
    assert second.changed is False
    assert second.record.confirmation_round == 777
    assert second.investment.id == first.investment.id
    assert len(ledger.list_investments(WALLET)) == 1
    confirmed = ledger.list_transactions(WALLET, status="confirmed")
    assert len(confirmed) == 1


def test_finalize_unknown_tx_raises(ledger):
    with pytest.raises(RecordNotFound):
        ledger.finalize_transaction("NOPE", 1)


def test_mark_failed_does_not_downgrade_confirmed(ledger):
    _pending_deposit(ledger, tx_id="A")
    _pending_deposit(ledger, tx_id="B")
    ledger.finalize_transaction("A", 5)
    assert ledger.mark_failed("A", "late error").status == "confirmed"
    failed = ledger.mark_failed("B", "overspend")
    assert failed.status == "failed"
    assert failed.metadata["error"] == "overspend"
    assert ledger.mark_failed("missing", "x") is None


def test_close_investment_compare_and_set(ledger, clock):
    inv = ledger.create_investment(WALLET, "tinyman", 5_000_000, 0)
    clock.advance(60)
    closed, changed = ledger.close_investment(inv.id, WALLET, "TXW1")
    assert changed is True
    assert closed.stake_status == "withdrawn"
    assert closed.withdrawal_tx_id == "TXW1"
    assert closed.withdrawal_date == T0 + 60
    assert closed.withdrawal_date >= closed.stake_date

    same, changed = ledger.close_investment(inv.id, WALLET, "TXW1")
    assert changed is False
    assert same.withdrawal_tx_id == "TXW1"

    with pytest.raises(AlreadyWithdrawn) as exc_info:
        ledger.close_investment(inv.id, WALLET, "TXW2")
    assert exc_info.value.withdrawal_tx_id == "TXW1"


def test_close_investment_other_wallet_not_found(ledger):
    inv = ledger.create_investment(WALLET, "tinyman", 5_000_000, 0)
    with pytest.raises(InvestmentNotFound):
        ledger.close_investment(inv.id, OTHER_WALLET, "TXW1")
    assert ledger.get_investment(inv.id, OTHER_WALLET) is None
    assert ledger.get_investment(inv.id, WALLET).is_active


def test_withdrawal_finalize_closes_investment(ledger):
    inv = ledger.create_investment(WALLET, "algofi", 9_797_000, 86_400)
    ledger.record_pending(
        WALLET,
        "protocol_withdrawal",
        9_797_000,
        "TXW",
        metadata={"protocol": "algofi", "investment_id": inv.id},
        investment_id=inv.id,
    )
    outcome = ledger.finalize_transaction("TXW", 900)
    assert outcome.investment.stake_status == "withdrawn"
    assert outcome.investment.withdrawal_tx_id == "TXW"
    assert ledger.list_investments(WALLET) == []
    assert len(ledger.list_investments(WALLET, status=None)) == 1


def test_record_recovery_completion_inserts_record_and_is_idempotent(ledger):
    inv = ledger.create_investment(WALLET, "pact", 6_000_000, 604_800)
    first = ledger.record_recovery_completion(WALLET, inv.id, "TXR", 55)
    assert first.changed is True
    assert first.investment.stake_status == "withdrawn"
    assert first.record.transaction_type == "protocol_withdrawal"
    assert first.record.status == "confirmed"
    assert first.record.amount == 6_000_000
    assert first.record.metadata["protocol"] == "pact"
    assert first.record.confirmation_round == 55

    second = ledger.record_recovery_completion(WALLET, inv.id, "TXR", 55)
    assert second.changed is False
    assert second.record.id == first.record.id
    withdrawals = [r for r in ledger.list_transactions(WALLET) if r.transaction_type == "protocol_withdrawal"]
    assert len(withdrawals) == 1

    with pytest.raises(AlreadyWithdrawn):
        ledger.record_recovery_completion(WALLET, inv.id, "TXOTHER", 56)


def test_record_recovery_completion_losing_insert_race_updates_existing_row(ledger, monkeypatch):
    import backend_algoswarm.ledger.ledger as ledger_module

    inv = ledger.create_investment(WALLET, "pact", 6_000_000, 0)
    pending, _ = ledger.record_pending(
        WALLET, "protocol_withdrawal", 6_000_000, "TXR", metadata={"investment_id": inv.id}, investment_id=inv.id
    )
    real_lookup = ledger_module._tx_by_id
    calls = []

    def stale_lookup(session, tx_id):
        calls.append(tx_id)
        return None if len(calls) == 1 else real_lookup(session, tx_id)

    monkeypatch.setattr(ledger_module, "_tx_by_id", stale_lookup)
    done = ledger.record_recovery_completion(WALLET, inv.id, "TXR", 55)
    assert done.record.id == pending.id
    assert done.record.status == "confirmed"
    assert done.investment.stake_status == "withdrawn"
    withdrawals = [r for r in ledger.list_transactions(WALLET) if r.transaction_type == "protocol_withdrawal"]
    assert len(withdrawals) == 1


def test_accrue_value_keeps_current_value_non_negative(ledger):
    inv = ledger.create_investment(WALLET, "algofi", 1_000_000, 0)
    grown = ledger.accrue_value(inv.id, 50_000, note="interest")
    assert grown.current_value == 1_050_000
    assert grown.staked_amount == 1_000_000
    with pytest.raises(ValueError):
        ledger.accrue_value(inv.id, -2_000_000)
    assert ledger.get_investment(inv.id).current_value == 1_050_000
    profits = [r for r in ledger.list_transactions(WALLET) if r.transaction_type == "profit"]
    assert len(profits) == 1
    assert profits[0].amount == 50_000


def test_negative_current_value_rejected_by_constraint(ledger):
    from backend_algoswarm.ledger.tables import InvestmentRow

    with pytest.raises(IntegrityError):
        with ledger._session_scope() as session:
            session.add(
                InvestmentRow(
                    wallet_address=WALLET,
                    protocol_name="algofi",
                    staked_amount=1,
                    current_value=-1,
                    stake_status="active",
                    stake_date=T0,
                    withdrawal_delay_seconds=0,
                )
            )


def test_protocol_configs_seeded_and_updated(ledger, registry):
    configs = {c["protocol"]: c for c in ledger.load_protocol_configs()}
    assert set(configs) == {"tinyman", "algofi", "pact"}
    assert configs["pact"]["withdrawal_delay_seconds"] == 604_800
    assert ledger.seed_protocol_configs(registry) == 0

    ledger.update_protocol_config(registry, "pact", fee_microalgo=5000)
    configs = {c["protocol"]: c for c in ledger.load_protocol_configs()}
    assert configs["pact"]["fee_microalgo"] == 5000
    assert registry.get_config("pact").fee_microalgo == 5000


def test_stored_protocol_configs_reload_on_restart(ledger, registry, clock):
    from backend_algoswarm.ledger import Ledger
    from backend_algoswarm.protocols.registry import ProtocolRegistry

    ledger.update_protocol_config(registry, "pact", fee_microalgo=5000, estimated_apy=0.15)

    fresh = ProtocolRegistry()
    assert fresh.get_config("pact").fee_microalgo == 4000
    restarted = Ledger(
        ledger.url,
        retry_policy=RetryPolicy(max_attempts=1, backoff_sec=0.0, sleep=lambda s: None),
        clock=clock,
    )
    try:
        restarted.init_db(fresh)
        assert fresh.get_config("pact").fee_microalgo == 5000
        assert fresh.get_config("pact").estimated_apy == 0.15
        assert fresh.get_config("algofi") == registry.get_config("algofi")
        assert restarted.apply_protocol_configs(fresh) == 0
    finally:
        restarted.close()


def test_manual_requests_and_audit(ledger):
    inv = ledger.create_investment(WALLET, "tinyman", 3_000_000, 0)
    req = ledger.create_manual_recovery_request(inv, priority="high", description="node down")
    assert req.status == "pending"
    assert req.amount == 3_000_000
    assert req.request_type == "emergency_recovery"
    assert [r.id for r in ledger.list_manual_recovery_requests(WALLET)] == [req.id]

    entry = ledger.append_audit(WALLET, "emergency_request", success=True, investment_id=inv.id)
    assert ledger.list_audit(WALLET, inv.id)[0].id == entry.id


def test_retry_policy_retries_operational_errors():
    sleeps = []
    policy = RetryPolicy(max_attempts=3, backoff_sec=0.5, sleep=sleeps.append)
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise OperationalError("SELECT 1", {}, Exception("connection reset"))
        return "ok"

    assert policy.run(flaky, operation="test") == "ok"
    assert sleeps == [0.5, 1.0]


def test_retry_policy_exhaustion_raises_ledger_error():
    policy = RetryPolicy(max_attempts=2, backoff_sec=0.0, sleep=lambda s: None)

    def down():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(LedgerError):
        policy.run(down, operation="test")


def test_retry_policy_does_not_retry_business_errors():
    calls = []
    policy = RetryPolicy(max_attempts=3, sleep=lambda s: None)

    def boom():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        policy.run(boom, operation="test")
    assert len(calls) == 1
