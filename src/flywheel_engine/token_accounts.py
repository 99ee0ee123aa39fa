from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass
from typing import Collection, Iterable, List, Tuple

import base58

from .project_constants import TOKEN_ACCOUNT_MIN_LEN


@dataclass(frozen=True)
class TokenHolding:
    owner: str
    amount: int


@dataclass(frozen=True)
class RankedHolder:
    owner: str
    amount: int
    rank: int


def parse_owner_and_amount(account_data: bytes) -> Tuple[str, int] | None:
    """
    Standard token account layout (works for classic; Token-2022 typically keeps these offsets too).
    Mint(0-32) | Owner(32-64) | Amount(64-72)
    """
    if len(account_data) < TOKEN_ACCOUNT_MIN_LEN:
        return None

    owner_bytes = account_data[32:64]
    amount_bytes = account_data[64:72]
    owner = base58.b58encode(owner_bytes).decode("ascii")
    amount = struct.unpack("<Q", amount_bytes)[0]
    return owner, amount


def encode_token_account(mint: str, owner: str, amount: int) -> bytes:
    """Inverse of parse_owner_and_amount for the fixed 72-byte prefix."""
    return (
        base58.b58decode(mint)
        + base58.b58decode(owner)
        + struct.pack("<Q", amount)
    )


def decode_token_accounts(b64_items: Iterable[str]) -> List[TokenHolding]:
    """Decodes accounts in fetch order. Malformed entries are dropped."""
    out: List[TokenHolding] = []
    for b64_str in b64_items:
        try:
            raw = base64.b64decode(b64_str)
        except (binascii.Error, ValueError, TypeError):
            continue

        parsed = parse_owner_and_amount(raw)
        if not parsed:
            continue

        owner, amount = parsed
        out.append(TokenHolding(owner=owner, amount=int(amount)))
    return out


def rank_holders(
    holdings: Iterable[TokenHolding],
    excluded: Collection[str],
    min_raw_balance: int,
    limit: int,
) -> List[RankedHolder]:
    """
    Largest balance first; ties keep fetch order (sorted() is stable).
    Balances at or below min_raw_balance are dust. An owner with several
    accounts is ranked once, at its largest one, so ranks stay contiguous.
    """
    ordered = sorted(holdings, key=lambda h: h.amount, reverse=True)

    ranked: List[RankedHolder] = []
    seen = set()
    for h in ordered:
        if len(ranked) >= limit:
            break
        if h.amount <= min_raw_balance:
            # Sorted descending: nothing after this qualifies either.
            break
        if h.owner in excluded or h.owner in seen:
            continue
        seen.add(h.owner)
        ranked.append(RankedHolder(owner=h.owner, amount=h.amount, rank=len(ranked) + 1))
    return ranked
