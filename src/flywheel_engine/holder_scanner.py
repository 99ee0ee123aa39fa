from __future__ import annotations

import logging
import time
from typing import Dict, List

from .project_constants import (
    HOLDER_SNAPSHOT_SIZE,
    LEADERBOARD_SIZE,
    MIN_HOLDER_RAW_BALANCE,
    SCAN_DELAY_S,
    TOKEN_2022_PROGRAM_ID,
)
from .points import recompute
from .pump import bonding_curve_address
from .state import EngineDeps
from .token_accounts import RankedHolder, decode_token_accounts, rank_holders

logger = logging.getLogger(__name__)


def scan_mint(deps: EngineDeps, mint: str, bonding_curve: str) -> List[RankedHolder]:
    """
    Full program-account scan for one mint (getTokenLargestAccounts caps at 20),
    then rank and atomically replace the stored snapshot.
    """
    # Launched tokens are Token-2022, so no fixed dataSize filter.
    b64_items = deps.rpc.get_program_accounts_base64(
        program_id=TOKEN_2022_PROGRAM_ID,
        mint=mint,
        classic_token_program=False,
    )
    holdings = decode_token_accounts(b64_items)

    excluded = {deps.settings.pump_liquidity_wallet, bonding_curve}
    ranked = rank_holders(
        holdings,
        excluded=excluded,
        min_raw_balance=MIN_HOLDER_RAW_BALANCE,
        limit=HOLDER_SNAPSHOT_SIZE,
    )

    deps.store.replace_holders(mint, ranked)
    logger.debug(
        "%s: %d accounts fetched, %d ranked holders stored", mint, len(b64_items), len(ranked)
    )
    return ranked


def scan(deps: EngineDeps, mint: str) -> List[RankedHolder]:
    return scan_mint(deps, mint, bonding_curve_address(mint))


def scan_leaderboard(deps: EngineDeps) -> Dict[str, int]:
    """Scans the current top tokens by volume. One bad mint never stops the rest."""
    tokens = deps.store.top_tokens_by_volume(LEADERBOARD_SIZE)
    results: Dict[str, int] = {}

    for row in tokens:
        mint = row["mint"]
        if not mint:
            continue
        try:
            results[mint] = len(scan(deps, mint))
        except Exception:
            logger.exception("Holder scan failed for %s; keeping previous snapshot", mint)

        # Upstream bills/throttles per call; this pause is required.
        time.sleep(SCAN_DELAY_S)

    logger.info("Holder scan: %d/%d tokens updated", len(results), len(tokens))
    return results


def run_holder_cycle(deps: EngineDeps) -> None:
    """Scheduled job: refresh snapshots, then recompute points and pots."""
    try:
        scan_leaderboard(deps)
        recompute(deps)
    except Exception:
        logger.exception("Holder cycle error")
