"""Loyalty-token top holders, used for the 2x points multiplier."""
from __future__ import annotations

import logging
from typing import Optional

from .project_constants import LOYALTY_TOP_SIZE, TOKEN_PROGRAM_ID
from .state import EngineDeps
from .token_accounts import decode_token_accounts, rank_holders

logger = logging.getLogger(__name__)


def sync_top_holders(deps: EngineDeps, loyalty_mint: Optional[str] = None) -> Optional[frozenset]:
    mint = loyalty_mint or deps.settings.loyalty_mint
    if not mint:
        logger.warning("Loyalty mint not configured; multiplier set left unchanged.")
        return None

    try:
        # Classic SPL token: fixed 165-byte accounts.
        b64_items = deps.rpc.get_program_accounts_base64(
            program_id=TOKEN_PROGRAM_ID,
            mint=mint,
            classic_token_program=True,
        )
        holdings = decode_token_accounts(b64_items)
        ranked = rank_holders(holdings, excluded=(), min_raw_balance=0, limit=LOYALTY_TOP_SIZE)
    except Exception:
        logger.exception("Loyalty sync failed; keeping previous set")
        return None

    members = frozenset(h.owner for h in ranked)
    deps.context.loyalty_holders = members
    logger.info(
        "Loyalty sync: %d accounts found, tracking top %d holders", len(b64_items), len(members)
    )
    return members
