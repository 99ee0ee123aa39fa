"""
Shared accounting context.

Every field is an immutable snapshot. Owners build a new value and publish it
with a single attribute assignment, so readers see either the previous or the
next generation, never a half-built one.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional

from solders.keypair import Keypair

from .config import Settings
from .project_constants import CREATOR_POINT_WEIGHT


def freeze_mapping(d: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
    return MappingProxyType(dict(d or {}))


@dataclass(frozen=True)
class PointsEntry:
    holder_points: int = 0
    creator_points: int = 0
    multiplier: int = 1

    @property
    def base_points(self) -> int:
        return self.holder_points + CREATOR_POINT_WEIGHT * self.creator_points

    @property
    def total(self) -> int:
        return self.base_points * self.multiplier


@dataclass(frozen=True)
class PotSplit:
    distributable: float
    bonus: float
    community: float


@dataclass(frozen=True)
class PointsSnapshot:
    points: Mapping[str, int] = field(default_factory=freeze_mapping)
    total_points: int = 0
    treasury_balance_raw: int = 0
    pots: PotSplit = PotSplit(0.0, 0.0, 0.0)
    bonus_creator: Optional[str] = None
    expected_rewards: Mapping[str, float] = field(default_factory=freeze_mapping)


@dataclass(frozen=True)
class ConservationStatus:
    eligible_count: int
    missing_accounts: int
    estimated_cost_lamports: int
    native_balance_lamports: int
    reward_balance_raw: int

    @property
    def is_conserving(self) -> bool:
        return self.native_balance_lamports < self.estimated_cost_lamports


class AccountingContext:
    """Process-wide accounting state, handed to every cycle by reference."""

    def __init__(self) -> None:
        self.points: PointsSnapshot = PointsSnapshot()
        self.loyalty_holders: frozenset = frozenset()
        self.conservation: Optional[ConservationStatus] = None


class CycleGuard:
    """Single-slot guard: a second concurrent run is a no-op, not queued."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()


@dataclass
class EngineDeps:
    rpc: Any  # RpcClient or anything with the same methods
    store: Any  # Store
    signer: Keypair
    context: AccountingContext
    settings: Settings

    @property
    def treasury(self) -> str:
        return str(self.signer.pubkey())
