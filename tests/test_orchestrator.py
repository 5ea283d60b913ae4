"""
Tests for the transaction lifecycle orchestrator.
"""

from __future__ import annotations

import pytest

from conftest import SIGNED_TX, WALLET, fund_investment
from backend_algoswarm.chain import CONFIRMATION_TIMED_OUT
from backend_algoswarm.core.exceptions import (
    AmountTooSmall,
    GatewayError,
    InvestmentNotFound,
    LedgerError,
    SubmissionFailed,
    TimeLocked,
    TransactionRejected,
    ValidationFailed,
)
from backend_algoswarm.lifecycle import LifecycleState


def test_execute_deposit_confirms_and_creates_investment(orchestrator, gateway, ledger):
    result = orchestrator.execute("algofi", WALLET, 10_000_000, SIGNED_TX)
    assert result.state == LifecycleState.CONFIRMED
    assert result.confirmed
    assert result.tx_id == "TX0001"
    assert result.confirmation_round == 1001
    assert result.record.status == "confirmed"
    assert result.record.amount == 10_000_000
    assert result.record.metadata["net_amount"] == 9_797_000
    assert result.investment.staked_amount == 9_797_000
    assert result.reconciliation_required is False
    # deposit timeout default
    assert gateway.waited == [("TX0001", 60.0)]

    body = result.to_dict()
    assert body["status"] == "confirmed"
    assert body["transaction_id"] == "TX0001"
    assert body["confirmation_round"] == 1001


def test_validation_failure_writes_nothing(orchestrator, gateway, ledger):
    gateway.balances[WALLET] = 500_000
    with pytest.raises(ValidationFailed) as exc_info:
        orchestrator.execute("algofi", WALLET, 1_000_000, SIGNED_TX)
    assert exc_info.value.validation.required_balance == 1_203_000
    assert gateway.submitted == []
    assert ledger.list_transactions(WALLET) == []


def test_amount_too_small_before_broadcast(orchestrator, gateway):
    with pytest.raises(AmountTooSmall):
        orchestrator.execute("algofi", WALLET, 203_000, SIGNED_TX)
    assert gateway.submitted == []


@pytest.mark.parametrize("error", [SubmissionFailed("malformed"), GatewayError("node down")])
def test_submission_errors_propagate_without_record(orchestrator, gateway, ledger, error):
    gateway.submit_error = error
    with pytest.raises(type(error)):
        orchestrator.execute("tinyman", WALLET, 5_000_000, SIGNED_TX)
    assert ledger.list_transactions(WALLET) == []


def test_timeout_leaves_record_pending_then_finalize_confirms(orchestrator, gateway, ledger):
    gateway.tx_ids = ["X"]
    gateway.confirmations = [CONFIRMATION_TIMED_OUT]
    result = orchestrator.execute("algofi", WALLET, 10_000_000, SIGNED_TX)
    assert result.state == LifecycleState.PENDING_CONFIRMATION
    assert result.to_dict()["status"] == "pending_confirmation"
    assert ledger.get_transaction("X").status == "pending"
    assert ledger.list_investments(WALLET) == []

    done = orchestrator.finalize("X", 5150)
    assert done.state == LifecycleState.CONFIRMED
    assert ledger.get_transaction("X").status == "confirmed"
    assert ledger.get_transaction("X").confirmation_round == 5150
    assert len(ledger.list_investments(WALLET)) == 1


def test_timeout_then_confirm_polls_again(orchestrator, gateway, ledger):
    gateway.tx_ids = ["X"]
    gateway.confirmations = [CONFIRMATION_TIMED_OUT]
    orchestrator.execute("algofi", WALLET, 10_000_000, SIGNED_TX)
    result = orchestrator.confirm("X", timeout_sec=30)
    assert result.state == LifecycleState.CONFIRMED
    assert result.investment is not None
    assert gateway.waited[-1] == ("X", 30)


def test_finalize_twice_returns_same_result(orchestrator, ledger):
    gateway_result = orchestrator.execute("algofi", WALLET, 10_000_000, SIGNED_TX)
    tx_id = gateway_result.tx_id
    first = orchestrator.finalize(tx_id, 42)
    second = orchestrator.finalize(tx_id, 42)
    assert first.to_dict() == second.to_dict()
    confirmed = [r for r in ledger.list_transactions(WALLET) if r.algorand_tx_id == tx_id]
    assert len(confirmed) == 1
    assert confirmed[0].status == "confirmed"


def test_resubmitting_confirmed_tx_returns_existing_record(orchestrator, gateway, ledger):
    gateway.tx_ids = ["SAME", "SAME"]
    first = orchestrator.execute("algofi", WALLET, 10_000_000, SIGNED_TX)
    second = orchestrator.execute("algofi", WALLET, 10_000_000, SIGNED_TX)
    assert second.state == LifecycleState.CONFIRMED
    assert second.record.id == first.record.id
    assert len(gateway.waited) == 1
    assert len(ledger.list_investments(WALLET)) == 1


def test_pool_rejection_marks_record_failed(orchestrator, gateway, ledger):
    gateway.tx_ids = ["BAD"]
    gateway.confirmations = [TransactionRejected("BAD", "overspend")]
    result = orchestrator.execute("tinyman", WALLET, 5_000_000, SIGNED_TX)
    assert result.state == LifecycleState.FAILED
    assert "overspend" in result.error
    assert ledger.get_transaction("BAD").status == "failed"


def test_ledger_failure_after_confirmation_flags_reconciliation(orchestrator, ledger, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(ledger, "finalize_transaction", broken)
    result = orchestrator.execute("algofi", WALLET, 10_000_000, SIGNED_TX)
    assert result.state == LifecycleState.CONFIRMED
    assert result.reconciliation_required is True
    assert result.to_dict()["reconciliation_required"] is True
    # the pending record written before the wait is still there
    assert ledger.get_transaction(result.tx_id).status == "pending"


def test_withdraw_uses_recovery_timeout_and_closes_investment(orchestrator, gateway, ledger, clock):
    inv = fund_investment(orchestrator)
    clock.advance(86_400)
    result = orchestrator.execute(
        "algofi",
        WALLET,
        inv.current_value,
        SIGNED_TX,
        kind="withdraw",
        investment_id=inv.id,
    )
    assert result.state == LifecycleState.CONFIRMED
    assert result.record.transaction_type == "protocol_withdrawal"
    assert result.record.metadata["time_lock_override"] is False
    assert result.investment.stake_status == "withdrawn"
    assert gateway.waited[-1][1] == 120.0


def test_withdraw_requires_investment_id(orchestrator):
    with pytest.raises(ValueError):
        orchestrator.execute("algofi", WALLET, 1_000_000, SIGNED_TX, kind="withdraw")


def test_untracked_submit_only_broadcasts(orchestrator, gateway, ledger):
    result = orchestrator.submit(SIGNED_TX)
    assert result.state == LifecycleState.SUBMITTED
    assert gateway.submitted == [SIGNED_TX]
    assert ledger.get_transaction(result.tx_id) is None


def test_pool_rejection_with_ledger_failure_flags_reconciliation(orchestrator, gateway, ledger, monkeypatch):
    def broken(*args, **kwargs):
        raise LedgerError("db down")

    gateway.confirmations = [TransactionRejected("TX0001", "overspend")]
    monkeypatch.setattr(ledger, "mark_failed", broken)
    result = orchestrator.execute("algofi", WALLET, 10_000_000, SIGNED_TX)
    assert result.state == LifecycleState.FAILED
    assert result.reconciliation_required is True
    assert "overspend" in result.error
    assert ledger.get_transaction("TX0001").status == "pending"


def test_withdraw_before_unlock_is_rejected_before_broadcast(orchestrator, gateway, ledger, clock):
    inv = fund_investment(orchestrator)
    clock.advance(86_399)
    broadcast = list(gateway.submitted)
    with pytest.raises(TimeLocked):
        orchestrator.execute("algofi", WALLET, inv.current_value, SIGNED_TX, kind="withdraw", investment_id=inv.id)
    assert gateway.submitted == broadcast
    assert ledger.get_investment(inv.id).stake_status == "active"


def test_withdraw_override_lifts_time_lock_only(orchestrator, ledger):
    inv = fund_investment(orchestrator)
    with pytest.raises(ValidationFailed):
        orchestrator.execute(
            "algofi", WALLET, 1_000_000, SIGNED_TX, kind="withdraw", investment_id=inv.id, override_time_lock=True
        )
    result = orchestrator.execute(
        "algofi", WALLET, inv.current_value, SIGNED_TX, kind="withdraw", investment_id=inv.id, override_time_lock=True
    )
    assert result.state == LifecycleState.CONFIRMED
    assert result.record.metadata["time_lock_override"] is True
    assert result.investment.stake_status == "withdrawn"


def test_withdraw_must_match_investment(orchestrator, gateway, ledger, clock):
    inv = fund_investment(orchestrator)
    clock.advance(86_400)
    broadcast = list(gateway.submitted)
    with pytest.raises(ValidationFailed):
        orchestrator.execute("algofi", WALLET, 1_000_000, SIGNED_TX, kind="withdraw", investment_id=inv.id)
    with pytest.raises(ValidationFailed):
        orchestrator.execute("tinyman", WALLET, inv.current_value, SIGNED_TX, kind="withdraw", investment_id=inv.id)
    with pytest.raises(InvestmentNotFound):
        orchestrator.execute("algofi", WALLET, inv.current_value, SIGNED_TX, kind="withdraw", investment_id=inv.id + 1)
    assert gateway.submitted == broadcast
    assert ledger.get_investment(inv.id).stake_status == "active"
