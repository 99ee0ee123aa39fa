"""
Flywheel cycle: claim creator fees, then either conserve SOL for the next
airdrop or spend it on a buyback, then try the airdrop.

IDLE -> CLAIMING -> DECIDING -> {BUYING | CONSERVING | READY_FOR_AIRDROP}
     -> AIRDROPPING -> IDLE
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx
from solders.pubkey import Pubkey

from .airdrop import AirdropDistributor, AirdropResult
from .points import read_treasury_balance, to_tokens
from .project_constants import (
    ACCOUNT_CHECK_CHUNK,
    AIRDROP_THRESHOLD_RAW,
    ATA_RENT_LAMPORTS,
    BUYBACK_PERMILLE,
    CLAIM_SETTLE_DELAY_S,
    FEE_MAJOR_PERMILLE,
    FEE_MINOR_PERMILLE,
    FEE_WALLET_MAJOR,
    FEE_WALLET_MINOR,
    LAMPORTS_PER_SOL,
    MIN_SPEND_LAMPORTS,
    REWARD_MINT,
    SAFETY_BUFFER_LAMPORTS,
)
from .pump import (
    build_claim_amm_fees_ixs,
    build_claim_bonding_curve_fees_ix,
    creator_fee_vaults,
)
from .rpc import RpcError
from .state import ConservationStatus, CycleGuard, EngineDeps
from .transactions import (
    TransactionFailed,
    build_sol_transfer_ix,
    get_associated_token_address,
    send_and_confirm,
)

logger = logging.getLogger(__name__)

BUYBACK_GUARD = CycleGuard("buyback")

SUCCESS = "SUCCESS"
SKIPPED = "SKIPPED"
CONSERVING = "CONSERVING"
READY_FOR_AIRDROP = "READY_FOR_AIRDROP"
LOW_BALANCE_SKIP = "LOW_BALANCE_SKIP"
LOW_SPEND_SKIP = "LOW_SPEND_SKIP"
BUY_FAIL = "BUY_FAIL"
CRITICAL_ERROR = "CRITICAL_ERROR"
BUSY = "BUSY"


class CyclePhase(Enum):
    IDLE = "IDLE"
    CLAIMING = "CLAIMING"
    DECIDING = "DECIDING"
    BUYING = "BUYING"
    CONSERVING = "CONSERVING"
    READY_FOR_AIRDROP = "READY_FOR_AIRDROP"
    AIRDROPPING = "AIRDROPPING"


DECISIONS = (CyclePhase.BUYING, CyclePhase.CONSERVING, CyclePhase.READY_FOR_AIRDROP)


@dataclass
class CycleReport:
    status: str = SKIPPED
    reason: str = "Unknown"
    phase: CyclePhase = CyclePhase.IDLE
    decision: Optional[CyclePhase] = None
    fees_pending_lamports: int = 0
    claimed_lamports: int = 0
    claim_signature: Optional[str] = None
    sol_spent_lamports: int = 0
    fee_major_lamports: int = 0
    fee_minor_lamports: int = 0
    tokens_bought_raw: int = 0
    buy_signature: Optional[str] = None
    airdrop: Optional[AirdropResult] = None

    def to_log(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "decision": self.decision.value if self.decision else None,
            "feesCollected": self.fees_pending_lamports / LAMPORTS_PER_SOL,
            "claimed": self.claimed_lamports / LAMPORTS_PER_SOL,
            "claimSig": self.claim_signature,
            "solSpent": self.sol_spent_lamports / LAMPORTS_PER_SOL,
            "transferMajor": self.fee_major_lamports / LAMPORTS_PER_SOL,
            "transferMinor": self.fee_minor_lamports / LAMPORTS_PER_SOL,
            "tokensBought": to_tokens(self.tokens_bought_raw),
            "buySig": self.buy_signature,
            "airdropBatches": len(self.airdrop.batches) if self.airdrop else 0,
        }


class FlywheelController:
    def __init__(
        self,
        deps: EngineDeps,
        swapper: Any,
        distributor: Optional[AirdropDistributor] = None,
        guard: CycleGuard = BUYBACK_GUARD,
    ) -> None:
        self.deps = deps
        self.swapper = swapper
        self.distributor = distributor or AirdropDistributor(deps)
        self.guard = guard
        self.phase = CyclePhase.IDLE
        self.vaults = creator_fee_vaults(deps.signer.pubkey())

    def _enter(self, report: CycleReport, phase: CyclePhase) -> None:
        self.phase = phase
        report.phase = phase
        if phase in DECISIONS:
            report.decision = phase

    def run_cycle(self) -> CycleReport:
        with self.guard.hold() as acquired:
            if not acquired:
                return CycleReport(status=BUSY, reason="Previous cycle still running")

            report = CycleReport()
            try:
                self._run(report)
            except Exception as e:
                report.status = CRITICAL_ERROR
                report.reason = str(e) or type(e).__name__
                logger.exception("CRITICAL FLYWHEEL ERROR")
            finally:
                self.phase = CyclePhase.IDLE
                self._finish(report)
            return report

    def _run(self, report: CycleReport) -> None:
        deps = self.deps

        # ---- CLAIMING ----
        self._enter(report, CyclePhase.CLAIMING)
        bc_pending, amm_pending = self.pending_fees()
        report.fees_pending_lamports = bc_pending + amm_pending

        threshold = int(deps.settings.fee_threshold_sol * LAMPORTS_PER_SOL)
        if report.fees_pending_lamports > 0 and report.fees_pending_lamports >= threshold:
            logger.info("Claiming fees (%.4f SOL pending)...", report.fees_pending_lamports / LAMPORTS_PER_SOL)
            report.claimed_lamports = self.claim_fees(report, bc_pending, amm_pending)
            if report.claimed_lamports > 0:
                deps.store.record_claim(report.claimed_lamports)
            time.sleep(CLAIM_SETTLE_DELAY_S)
        else:
            report.reason = "Threshold not met"

        # ---- DECIDING ----
        self._enter(report, CyclePhase.DECIDING)
        sol_balance = deps.rpc.get_balance(deps.treasury)
        reward_balance = read_treasury_balance(deps)

        proceed_with_buyback = True
        if reward_balance > AIRDROP_THRESHOLD_RAW:
            logger.info("Flywheel: reward threshold met. Calculating precise airdrop costs...")
            status = self.estimate_airdrop_cost(sol_balance, reward_balance)
            deps.context.conservation = status
            proceed_with_buyback = False

            if status.is_conserving:
                self._enter(report, CyclePhase.CONSERVING)
                report.status = CONSERVING
                report.reason = f"Saving for Airdrop ({status.missing_accounts} new wallets)"
                logger.info(
                    "Flywheel: conserving SOL. Need %.4f, have %.4f.",
                    status.estimated_cost_lamports / LAMPORTS_PER_SOL,
                    sol_balance / LAMPORTS_PER_SOL,
                )
            else:
                self._enter(report, CyclePhase.READY_FOR_AIRDROP)
                report.status = READY_FOR_AIRDROP
                report.reason = "Ready for Airdrop"
                logger.info("Flywheel: ready for airdrop. Triggering distribution.")
        else:
            deps.context.conservation = None

        # ---- BUYING ----
        if proceed_with_buyback:
            if sol_balance < SAFETY_BUFFER_LAMPORTS:
                report.status = LOW_BALANCE_SKIP
                report.reason = "LOW BALANCE"
            elif report.claimed_lamports > 0:
                self._enter(report, CyclePhase.BUYING)
                spendable = min(report.claimed_lamports, sol_balance - SAFETY_BUFFER_LAMPORTS)
                if spendable > MIN_SPEND_LAMPORTS:
                    self.buyback(report, spendable)
                else:
                    report.status = LOW_SPEND_SKIP
                    report.reason = (
                        f"Spendable {spendable / LAMPORTS_PER_SOL:.4f} SOL below minimum "
                        f"{MIN_SPEND_LAMPORTS / LAMPORTS_PER_SOL:.4f}"
                    )

        # ---- AIRDROPPING ----
        # The distributor re-checks everything itself and is a no-op when not ready.
        self._enter(report, CyclePhase.AIRDROPPING)
        report.airdrop = self.distributor.distribute()

    def pending_fees(self) -> Tuple[int, int]:
        """(bonding-curve vault lamports, AMM vault WSOL amount). Unreadable sources count as 0."""
        bc_pending = 0
        amm_pending = 0
        try:
            info = self.deps.rpc.get_account_info(str(self.vaults.bc_vault))
            if info:
                bc_pending = int(info.get("lamports", 0))
        except (RpcError, httpx.HTTPError) as e:
            logger.debug("Failed to fetch BC fees: %s", e)

        try:
            amm_pending = self.deps.rpc.get_token_account_balance(str(self.vaults.amm_vault_ata))
        except (RpcError, httpx.HTTPError) as e:
            logger.debug("Failed to fetch AMM fees: %s", e)
        return bc_pending, amm_pending

    def claim_fees(self, report: CycleReport, bc_pending: int, amm_pending: int) -> int:
        deps = self.deps
        creator = deps.signer.pubkey()
        ixs = []
        claimed = 0
        if bc_pending > 0:
            ixs.append(build_claim_bonding_curve_fees_ix(creator, self.vaults))
            claimed += bc_pending
        if amm_pending > 0:
            ixs.extend(build_claim_amm_fees_ixs(creator, self.vaults))
            claimed += amm_pending
        if not ixs:
            return 0

        try:
            report.claim_signature = send_and_confirm(
                deps.rpc, ixs, deps.signer, deps.settings.priority_fee_microlamports
            )
        except TransactionFailed as e:
            logger.error("Fee claim failed: %s", e)
            report.reason = f"Claim failed: {e}"
            return 0
        logger.info("Claimed %.4f SOL in fees: %s", claimed / LAMPORTS_PER_SOL, report.claim_signature)
        return claimed

    def estimate_airdrop_cost(self, sol_balance: int, reward_balance: int) -> ConservationStatus:
        """
        Rent for every recipient that still lacks a reward-token account, plus
        the safety buffer. A chunk whose lookup fails counts as all missing.
        """
        snapshot = self.deps.context.points
        recipients: List[str] = list(snapshot.points.keys())
        if snapshot.bonus_creator and snapshot.bonus_creator not in snapshot.points:
            recipients.append(snapshot.bonus_creator)

        mint = Pubkey.from_string(REWARD_MINT)
        missing = 0
        for i in range(0, len(recipients), ACCOUNT_CHECK_CHUNK):
            chunk = recipients[i : i + ACCOUNT_CHECK_CHUNK]
            try:
                atas = [str(get_associated_token_address(Pubkey.from_string(a), mint)) for a in chunk]
                infos = self.deps.rpc.get_multiple_accounts(atas)
                missing += sum(1 for info in infos if info is None)
            except (RpcError, httpx.HTTPError, ValueError) as e:
                logger.error("Error checking token accounts: %s", e)
                missing += len(chunk)

        return ConservationStatus(
            eligible_count=len(recipients),
            missing_accounts=missing,
            estimated_cost_lamports=missing * ATA_RENT_LAMPORTS + SAFETY_BUFFER_LAMPORTS,
            native_balance_lamports=sol_balance,
            reward_balance_raw=reward_balance,
        )

    def buyback(self, report: CycleReport, spendable: int) -> None:
        """95% buys the reward token, 4.5% and 0.5% go to the fee wallets."""
        deps = self.deps
        fee_major = spendable * FEE_MAJOR_PERMILLE // 1000
        fee_minor = spendable * FEE_MINOR_PERMILLE // 1000
        buy_amount = spendable * BUYBACK_PERMILLE // 1000

        payer = deps.signer.pubkey()
        try:
            send_and_confirm(
                deps.rpc,
                [
                    build_sol_transfer_ix(payer, Pubkey.from_string(FEE_WALLET_MAJOR), fee_major),
                    build_sol_transfer_ix(payer, Pubkey.from_string(FEE_WALLET_MINOR), fee_minor),
                ],
                deps.signer,
                deps.settings.priority_fee_microlamports,
            )
        except TransactionFailed as e:
            report.status = BUY_FAIL
            report.reason = f"Fee transfer failed: {e}"
            logger.error("Fee distribution failed: %s", e)
            return

        report.fee_major_lamports = fee_major
        report.fee_minor_lamports = fee_minor
        report.sol_spent_lamports = fee_major + fee_minor
        logger.info("Fees distributed")

        swap = self.swapper.swap(buy_amount, REWARD_MINT, deps.signer)
        if not swap or not swap.signature:
            deps.store.consume_accumulated_fees(fee_major + fee_minor)
            report.status = BUY_FAIL
            report.reason = "Swap failed"
            return

        report.sol_spent_lamports += buy_amount
        report.buy_signature = swap.signature
        report.tokens_bought_raw = int(swap.out_amount)
        report.status = SUCCESS
        report.reason = "Flywheel Complete"
        deps.store.consume_accumulated_fees(spendable)
        deps.store.increment_stat("totalPumpBoughtLamports", buy_amount)
        deps.store.increment_stat("totalPumpTokensBought", to_tokens(report.tokens_bought_raw))

    def _finish(self, report: CycleReport) -> None:
        """Operator-visible side effects only; never fails the cycle."""
        store = self.deps.store
        try:
            store.append_cycle_log("FLYWHEEL_CYCLE", report.status, report.reason, report.to_log())
            store.set_stat(
                "nextCheckTime",
                int((time.time() + self.deps.settings.flywheel_interval_s) * 1000),
            )
        except Exception:
            logger.exception("Failed to write flywheel cycle log")
