from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Iterator, List, Mapping, Optional, Sequence, Tuple

import httpx
from solders.pubkey import Pubkey

from .points import bonus_creator_for, read_treasury_balance, split_pots_raw, to_tokens
from .project_constants import (
    AIRDROP_BATCH_DELAY_S,
    AIRDROP_BATCH_SIZE,
    AIRDROP_THRESHOLD_RAW,
    FALLBACK_AIRDROP_COST_LAMPORTS,
    LAMPORTS_PER_SOL,
    REWARD_MINT,
    TOKEN_DECIMALS,
)
from .rpc import RpcError
from .state import CycleGuard, EngineDeps, PointsSnapshot
from .transactions import (
    TransactionFailed,
    accounts_exist,
    build_create_ata_idempotent_ix,
    build_transfer_checked_ix,
    get_associated_token_address,
    send_and_confirm,
)

logger = logging.getLogger(__name__)

AIRDROP_GUARD = CycleGuard("airdrop")
BONUS_SIG_PREFIX = "KOTH:"

Transfer = Tuple[str, int]  # (owner address, raw amount)


@dataclass(frozen=True)
class BatchOutcome:
    index: int
    recipients: int
    amount_raw: int
    signature: Optional[str]


@dataclass
class AirdropResult:
    distributable_raw: int
    community_raw: int
    total_points: int
    bonus_creator: Optional[str] = None
    bonus_raw: int = 0
    bonus_signature: Optional[str] = None
    batches: List[BatchOutcome] = field(default_factory=list)

    @property
    def successful_batches(self) -> int:
        return sum(1 for b in self.batches if b.signature)

    @property
    def failed_batches(self) -> int:
        return sum(1 for b in self.batches if not b.signature)

    @property
    def recipient_count(self) -> int:
        return sum(b.recipients for b in self.batches) + (1 if self.bonus_signature else 0)

    @property
    def signatures(self) -> List[str]:
        sigs = [f"{BONUS_SIG_PREFIX}{self.bonus_signature}"] if self.bonus_signature else []
        sigs.extend(b.signature for b in self.batches if b.signature)
        return sigs


def compute_shares(pot_raw: int, points: Mapping[str, int], total_points: int) -> List[Transfer]:
    """floor(pot * points / total) per address; zero shares are dropped. Never over-allocates."""
    if pot_raw <= 0 or total_points <= 0:
        return []
    out: List[Transfer] = []
    for address, pts in points.items():
        if pts <= 0:
            continue
        share = pot_raw * int(pts) // total_points
        if share > 0:
            out.append((address, share))
    return out


def chunked(items: Sequence[Transfer], size: int) -> Iterator[Sequence[Transfer]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class AirdropDistributor:
    def __init__(self, deps: EngineDeps, guard: CycleGuard = AIRDROP_GUARD) -> None:
        self.deps = deps
        self.guard = guard
        self.mint = Pubkey.from_string(REWARD_MINT)

    def distribute(self) -> Optional[AirdropResult]:
        """Safe no-op (returns None) unless every precondition holds right now."""
        with self.guard.hold() as acquired:
            if not acquired:
                logger.debug("Airdrop already running; skipping")
                return None
            try:
                return self._distribute()
            except Exception:
                logger.exception("Airdrop failed")
                return None

    def _preconditions_met(self, balance_raw: int, snapshot: PointsSnapshot) -> bool:
        deps = self.deps
        if balance_raw <= AIRDROP_THRESHOLD_RAW:
            return False

        sol_balance = deps.rpc.get_balance(deps.treasury)
        status = deps.context.conservation
        required = status.estimated_cost_lamports if status else FALLBACK_AIRDROP_COST_LAMPORTS
        if sol_balance < required:
            logger.warning(
                "Airdrop skipped: insufficient SOL (final check). Need %.4f, have %.4f",
                required / LAMPORTS_PER_SOL,
                sol_balance / LAMPORTS_PER_SOL,
            )
            return False

        return snapshot.total_points > 0 and any(p > 0 for p in snapshot.points.values())

    def _distribute(self) -> Optional[AirdropResult]:
        deps = self.deps
        # One generation for both the checks and the payout.
        snapshot = deps.context.points
        balance_raw = read_treasury_balance(deps)
        if not self._preconditions_met(balance_raw, snapshot):
            return None

        logger.info("AIRDROP TRIGGERED: balance %.2f > threshold", to_tokens(balance_raw))

        distributable, bonus, community = split_pots_raw(balance_raw)
        result = AirdropResult(
            distributable_raw=distributable,
            community_raw=distributable,
            total_points=snapshot.total_points,
        )

        bonus_creator = bonus_creator_for(deps)
        if bonus_creator:
            result.bonus_creator = bonus_creator
            result.bonus_raw = bonus
            result.community_raw = community
            logger.info("Bonus creator %s: %.2f prize", bonus_creator, to_tokens(bonus))
            sig = self.send_batch([(bonus_creator, bonus)])
            if sig:
                result.bonus_signature = sig
                logger.info("Bonus payout sent: %s", sig)
            else:
                logger.error("Bonus payout failed; returning funds to community pot")
                result.community_raw += bonus
                result.bonus_raw = 0

        shares = compute_shares(result.community_raw, snapshot.points, snapshot.total_points)
        logger.info(
            "Distributing %.2f to %d users (community pot)", to_tokens(result.community_raw), len(shares)
        )

        for index, batch in enumerate(chunked(shares, AIRDROP_BATCH_SIZE), start=1):
            if index > 1:
                time.sleep(AIRDROP_BATCH_DELAY_S)
            sig = self.send_batch(batch)
            result.batches.append(
                BatchOutcome(
                    index=index,
                    recipients=len(batch),
                    amount_raw=sum(a for _, a in batch),
                    signature=sig,
                )
            )

        logger.info(
            "Airdrop complete. Success: %d, Failed: %d",
            result.successful_batches,
            result.failed_batches,
        )
        self._record(result)
        deps.context.conservation = None
        return result

    def send_batch(self, batch: Sequence[Transfer]) -> Optional[str]:
        """One transaction for up to AIRDROP_BATCH_SIZE transfers. Returns None on failure."""
        deps = self.deps
        treasury = deps.signer.pubkey()
        source_ata = get_associated_token_address(treasury, self.mint)

        try:
            owners = [Pubkey.from_string(addr) for addr, _ in batch]
            atas = [get_associated_token_address(o, self.mint) for o in owners]
            exists = accounts_exist(deps.rpc, atas)

            ixs = []
            for owner, ata, present, (_, amount) in zip(owners, atas, exists, batch):
                if not present:
                    ixs.append(build_create_ata_idempotent_ix(treasury, owner, self.mint))
                ixs.append(
                    build_transfer_checked_ix(
                        source_ata, self.mint, ata, treasury, amount, TOKEN_DECIMALS
                    )
                )
            return send_and_confirm(
                deps.rpc,
                ixs,
                deps.signer,
                priority_fee_microlamports=deps.settings.priority_fee_microlamports,
            )
        except (TransactionFailed, RpcError, httpx.HTTPError, ValueError) as e:
            logger.error("Airdrop batch failed (%d recipients): %s", len(batch), e)
            return None

    def _record(self, result: AirdropResult) -> None:
        details = {
            "success": result.successful_batches,
            "failed": result.failed_batches,
            "kothWinner": result.bonus_creator or "None",
            "kothAmount": to_tokens(result.bonus_raw),
            "communityAmount": to_tokens(result.community_raw),
            "batches": [
                {
                    "index": b.index,
                    "recipients": b.recipients,
                    "amount": to_tokens(b.amount_raw),
                    "signature": b.signature,
                }
                for b in result.batches
            ],
        }
        self.deps.store.insert_airdrop_log(
            amount=to_tokens(result.distributable_raw),
            recipients=result.recipient_count,
            total_points=result.total_points,
            signatures=result.signatures,
            details=details,
        )
