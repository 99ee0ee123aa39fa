from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from solders.pubkey import Pubkey

from .project_constants import (
    BONUS_PCT,
    COMMUNITY_PCT,
    DISTRIBUTABLE_PCT,
    LEADERBOARD_SIZE,
    LOYALTY_MULTIPLIER,
    REWARD_MINT,
    TOKEN_DECIMALS,
)
from .rpc import RpcError
from .state import EngineDeps, PointsEntry, PointsSnapshot, PotSplit, freeze_mapping
from .transactions import get_associated_token_address

logger = logging.getLogger(__name__)


def split_pots(balance: float) -> PotSplit:
    """Display/estimate split: 99% distributable, then 10% bonus / 90% community."""
    distributable = balance * DISTRIBUTABLE_PCT / 100
    return PotSplit(
        distributable=distributable,
        bonus=distributable * BONUS_PCT / 100,
        community=distributable * COMMUNITY_PCT / 100,
    )


def split_pots_raw(balance_raw: int) -> Tuple[int, int, int]:
    """Integer split used for transfers: (distributable, bonus, community)."""
    distributable = balance_raw * DISTRIBUTABLE_PCT // 100
    bonus = distributable * BONUS_PCT // 100
    community = distributable * COMMUNITY_PCT // 100
    return distributable, bonus, community


def to_tokens(raw_amount: int) -> float:
    return raw_amount / (10**TOKEN_DECIMALS)


def is_pubkey(address: Optional[str]) -> bool:
    """Creator addresses come from an externally written table and may be junk."""
    if not address:
        return False
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def compute_points(
    holder_counts: Mapping[str, int],
    creators: Iterable[Optional[str]],
    loyalty_holders: frozenset,
    exclude: Iterable[str] = (),
) -> Dict[str, PointsEntry]:
    """
    holder_counts: address -> number of tracked mints held.
    creators: one creator address per tracked token (None when unregistered).
    Only addresses with a nonzero total are returned.
    """
    raw: Dict[str, Tuple[int, int]] = {a: (int(n), 0) for a, n in holder_counts.items()}
    for creator in creators:
        if not is_pubkey(creator):
            continue
        h, c = raw.get(creator, (0, 0))
        raw[creator] = (h, c + 1)

    skipped = set(exclude)
    out: Dict[str, PointsEntry] = {}
    for address, (h, c) in raw.items():
        if address in skipped:
            continue
        entry = PointsEntry(
            holder_points=h,
            creator_points=c,
            multiplier=LOYALTY_MULTIPLIER if address in loyalty_holders else 1,
        )
        if entry.total > 0:
            out[address] = entry
    return out


def expected_rewards(
    points: Mapping[str, int],
    total_points: int,
    pots: PotSplit,
    bonus_creator: Optional[str],
) -> Dict[str, float]:
    expected: Dict[str, float] = {}
    for address, pts in points.items():
        share = 0.0
        if pots.community > 0 and total_points > 0:
            share = (pts / total_points) * pots.community
        expected[address] = share

    # The bonus never depends on holding points.
    if bonus_creator:
        expected[bonus_creator] = expected.get(bonus_creator, 0.0) + pots.bonus
    return expected


def read_treasury_balance(deps: EngineDeps) -> int:
    """Raw reward-token balance of the treasury; a missing account reads as 0."""
    ata = get_associated_token_address(deps.signer.pubkey(), Pubkey.from_string(REWARD_MINT))
    try:
        return deps.rpc.get_token_account_balance(str(ata))
    except RpcError as e:
        logger.debug("Treasury token account unavailable: %s", e)
        return 0


def bonus_creator_for(deps: EngineDeps) -> Optional[str]:
    """Creator of the highest market-cap token, whether or not it is on the volume board."""
    row = deps.store.top_token_by_market_cap()
    creator = row["creator_address"] if row else None
    if not creator or creator == deps.treasury:
        return None
    if not is_pubkey(creator):
        logger.warning("Ignoring malformed bonus creator address %r", creator)
        return None
    return creator


def recompute(deps: EngineDeps) -> PointsSnapshot:
    balance_raw = read_treasury_balance(deps)
    pots = split_pots(to_tokens(balance_raw))

    tokens = deps.store.top_tokens_by_volume(LEADERBOARD_SIZE)
    mints = [t["mint"] for t in tokens if t["mint"]]
    holder_counts = deps.store.holder_position_counts(mints)

    entries = compute_points(
        holder_counts,
        creators=(t["creator_address"] for t in tokens),
        loyalty_holders=deps.context.loyalty_holders,
        exclude=(deps.treasury,),
    )
    points = {a: e.total for a, e in entries.items()}
    total_points = sum(points.values())

    bonus_creator = bonus_creator_for(deps)
    snapshot = PointsSnapshot(
        points=freeze_mapping(points),
        total_points=total_points,
        treasury_balance_raw=balance_raw,
        pots=pots,
        bonus_creator=bonus_creator,
        expected_rewards=freeze_mapping(expected_rewards(points, total_points, pots, bonus_creator)),
    )
    deps.context.points = snapshot

    logger.info(
        "Global Points: %d | Community Pot: %.2f | Bonus Pot: %.2f",
        total_points,
        pots.community,
        pots.bonus,
    )
    return snapshot
