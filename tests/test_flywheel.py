from __future__ import annotations

import pytest
from conftest import FakeSwapper, new_address, reward_ata

from flywheel_engine.flywheel import (
    BUSY,
    BUY_FAIL,
    CONSERVING,
    CRITICAL_ERROR,
    LOW_BALANCE_SKIP,
    LOW_SPEND_SKIP,
    READY_FOR_AIRDROP,
    SKIPPED,
    SUCCESS,
    CyclePhase,
    FlywheelController,
)
from flywheel_engine.airdrop import AirdropDistributor
from flywheel_engine.project_constants import (
    ACCOUNT_CHECK_CHUNK,
    AIRDROP_THRESHOLD_RAW,
    ATA_RENT_LAMPORTS,
    LAMPORTS_PER_SOL,
    REWARD_MINT,
    SAFETY_BUFFER_LAMPORTS,
)
from flywheel_engine.rpc import RpcError
from flywheel_engine.state import CycleGuard, PointsSnapshot, freeze_mapping


def _controller(deps, swapper=None):
    return FlywheelController(
        deps,
        swapper or FakeSwapper(out_amount=123 * 10**6),
        distributor=AirdropDistributor(deps, guard=CycleGuard("airdrop-test")),
        guard=CycleGuard("buyback-test"),
    )


def _pending_fees(ctrl, ledger, lamports):
    ledger.accounts[str(ctrl.vaults.bc_vault)] = {"lamports": lamports}


def _publish_points(deps, n):
    points = {new_address(): 1 for _ in range(n)}
    deps.context.points = PointsSnapshot(points=freeze_mapping(points), total_points=n)


@pytest.fixture
def rewards_ready(deps, ledger):
    ledger.token_balances[reward_ata(deps.treasury)] = AIRDROP_THRESHOLD_RAW + 1
    _publish_points(deps, 3)
    return deps


def test_conserves_when_native_balance_cannot_cover_airdrop(rewards_ready, ledger, store):
    deps = rewards_ready
    ledger.balances[deps.treasury] = LAMPORTS_PER_SOL // 100
    ctrl = _controller(deps)

    report = ctrl.run_cycle()

    assert report.status == CONSERVING
    assert report.decision is CyclePhase.CONSERVING
    assert ledger.send_attempts == 0
    assert ctrl.swapper.calls == []
    status = deps.context.conservation
    assert status.missing_accounts == 3
    assert status.estimated_cost_lamports == 3 * ATA_RENT_LAMPORTS + SAFETY_BUFFER_LAMPORTS
    assert store.recent_cycle_logs(1)[0]["status"] == CONSERVING


def test_ready_for_airdrop_distributes_without_buyback(rewards_ready, ledger):
    deps = rewards_ready
    ledger.balances[deps.treasury] = 2 * LAMPORTS_PER_SOL
    ctrl = _controller(deps)
    _pending_fees(ctrl, ledger, LAMPORTS_PER_SOL)

    report = ctrl.run_cycle()

    assert report.status == READY_FOR_AIRDROP
    assert report.claimed_lamports == LAMPORTS_PER_SOL
    assert ctrl.swapper.calls == []
    assert report.airdrop is not None
    assert report.airdrop.successful_batches == 1
    # estimate consumed by the completed distribution
    assert deps.context.conservation is None


def test_existing_token_accounts_lower_the_estimate(rewards_ready, ledger):
    deps = rewards_ready
    for address in deps.context.points.points:
        ledger.accounts[reward_ata(address)] = {"lamports": ATA_RENT_LAMPORTS}
    status = _controller(deps).estimate_airdrop_cost(LAMPORTS_PER_SOL, AIRDROP_THRESHOLD_RAW + 1)
    assert status.missing_accounts == 0
    assert status.estimated_cost_lamports == SAFETY_BUFFER_LAMPORTS
    assert not status.is_conserving


def test_fees_below_threshold_are_not_claimed(deps, ledger, store):
    ledger.balances[deps.treasury] = LAMPORTS_PER_SOL
    ctrl = _controller(deps)
    _pending_fees(ctrl, ledger, LAMPORTS_PER_SOL // 10)

    report = ctrl.run_cycle()

    assert report.status == SKIPPED
    assert report.reason == "Threshold not met"
    assert ledger.send_attempts == 0
    assert store.get_stats()["lifetimeCreatorFeesLamports"] == 0


def test_low_spend_skips_buyback(deps, ledger, store):
    ledger.balances[deps.treasury] = SAFETY_BUFFER_LAMPORTS + LAMPORTS_PER_SOL // 50
    ctrl = _controller(deps)
    _pending_fees(ctrl, ledger, LAMPORTS_PER_SOL // 4)

    report = ctrl.run_cycle()

    assert report.status == LOW_SPEND_SKIP
    assert report.claim_signature == "sig1"
    assert ctrl.swapper.calls == []
    assert store.get_stats()["lifetimeCreatorFeesLamports"] == LAMPORTS_PER_SOL // 4


def test_low_balance_skips_buyback(deps, ledger):
    ledger.balances[deps.treasury] = SAFETY_BUFFER_LAMPORTS - 1
    ctrl = _controller(deps)
    _pending_fees(ctrl, ledger, LAMPORTS_PER_SOL)

    report = ctrl.run_cycle()

    assert report.status == LOW_BALANCE_SKIP
    assert ctrl.swapper.calls == []


def test_buyback_splits_claimed_fees(deps, ledger, store):
    ledger.balances[deps.treasury] = 5 * LAMPORTS_PER_SOL
    ctrl = _controller(deps)
    _pending_fees(ctrl, ledger, LAMPORTS_PER_SOL)

    report = ctrl.run_cycle()

    assert report.status == SUCCESS
    assert report.fee_major_lamports == 45_000_000
    assert report.fee_minor_lamports == 5_000_000
    assert ctrl.swapper.calls == [(950_000_000, REWARD_MINT)]
    assert report.sol_spent_lamports == LAMPORTS_PER_SOL
    assert report.tokens_bought_raw == 123 * 10**6

    stats = store.get_stats()
    assert stats["accumulatedFeesLamports"] == 0
    assert stats["totalPumpBoughtLamports"] == 950_000_000
    assert stats["totalPumpTokensBought"] == pytest.approx(123.0)
    assert stats["nextCheckTime"] > 0


def test_failed_swap_keeps_unspent_fees(deps, ledger, store):
    ledger.balances[deps.treasury] = 5 * LAMPORTS_PER_SOL
    ctrl = _controller(deps, FakeSwapper(fail=True))
    _pending_fees(ctrl, ledger, LAMPORTS_PER_SOL)

    report = ctrl.run_cycle()

    assert report.status == BUY_FAIL
    assert store.get_stats()["accumulatedFeesLamports"] == LAMPORTS_PER_SOL - 50_000_000


def test_failed_fee_transfer_skips_swap(deps, ledger):
    ledger.balances[deps.treasury] = 5 * LAMPORTS_PER_SOL
    ctrl = _controller(deps)
    _pending_fees(ctrl, ledger, LAMPORTS_PER_SOL)
    ledger.fail_sends = {2}

    report = ctrl.run_cycle()

    assert report.status == BUY_FAIL
    assert ctrl.swapper.calls == []


def test_overlapping_cycle_reports_busy(deps, ledger):
    ctrl = _controller(deps)
    with ctrl.guard.hold():
        report = ctrl.run_cycle()
    assert report.status == BUSY
    assert ledger.send_attempts == 0


def test_unexpected_error_is_logged_and_guard_released(deps, ledger, store, monkeypatch):
    def boom(address):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(ledger, "get_balance", boom)
    ctrl = _controller(deps)

    report = ctrl.run_cycle()

    assert report.status == CRITICAL_ERROR
    assert report.reason == "ledger unavailable"
    with ctrl.guard.hold() as acquired:
        assert acquired
    assert ctrl.phase is CyclePhase.IDLE
    assert store.recent_cycle_logs(1)[0]["status"] == CRITICAL_ERROR


def test_failed_lookup_chunk_counts_as_missing(deps, ledger, monkeypatch):
    _publish_points(deps, 150)
    recipients = list(deps.context.points.points)
    for address in recipients[ACCOUNT_CHECK_CHUNK:]:
        ledger.accounts[reward_ata(address)] = {"lamports": ATA_RENT_LAMPORTS}

    real_lookup = ledger.get_multiple_accounts

    def first_chunk_fails(addresses):
        if ledger.lookup_calls == 0:
            ledger.lookup_calls += 1
            raise RpcError("node is behind")
        return real_lookup(addresses)

    monkeypatch.setattr(ledger, "get_multiple_accounts", first_chunk_fails)

    status = _controller(deps).estimate_airdrop_cost(LAMPORTS_PER_SOL, AIRDROP_THRESHOLD_RAW + 1)

    assert ledger.lookup_calls == 2
    assert status.eligible_count == 150
    assert status.missing_accounts == ACCOUNT_CHECK_CHUNK


def test_malformed_bonus_creator_does_not_abort_cycle(rewards_ready, ledger):
    deps = rewards_ready
    snap = deps.context.points
    deps.context.points = PointsSnapshot(
        points=snap.points, total_points=snap.total_points, bonus_creator="bad"
    )
    ledger.balances[deps.treasury] = 2 * LAMPORTS_PER_SOL
    ctrl = _controller(deps)
    _pending_fees(ctrl, ledger, LAMPORTS_PER_SOL)

    status = ctrl.estimate_airdrop_cost(2 * LAMPORTS_PER_SOL, AIRDROP_THRESHOLD_RAW + 1)
    assert status.eligible_count == 4
    assert status.missing_accounts == 4

    report = ctrl.run_cycle()

    assert report.status == READY_FOR_AIRDROP
    assert report.airdrop.successful_batches == 1
    assert report.airdrop.bonus_creator is None
