"""Lottery tiers, server-side resolution and the per-draw state machine."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple

from .exceptions import InvalidArgumentError
from .models import DrawStatus, LotterySource, utcnow


@dataclass(slots=True, frozen=True)
class LotteryTier:
    """One row of the discrete prize table; ``weight`` is in percent."""

    tier: int
    min_points: int
    max_points: int
    weight: int

    def pick(self, rng: random.Random) -> int:
        if self.min_points == self.max_points:
            return self.min_points
        return rng.randint(self.min_points, self.max_points)


LOTTERY_TIERS: Tuple[LotteryTier, ...] = (
    LotteryTier(tier=0, min_points=0, max_points=0, weight=30),
    LotteryTier(tier=1, min_points=1, max_points=5, weight=40),
    LotteryTier(tier=2, min_points=6, max_points=10, weight=20),
    LotteryTier(tier=3, min_points=11, max_points=15, weight=10),
)

_SYSTEM_RANDOM = random.SystemRandom()


def choose_tier(rng: random.Random, tiers: Sequence[LotteryTier] = LOTTERY_TIERS) -> LotteryTier:
    total = sum(tier.weight for tier in tiers)
    roll = rng.randrange(total)
    for tier in tiers:
        if roll < tier.weight:
            return tier
        roll -= tier.weight
    raise AssertionError("tier weights exhausted")  # pragma: no cover


def draw_points(
    rng: Optional[random.Random] = None,
    tiers: Sequence[LotteryTier] = LOTTERY_TIERS,
) -> Tuple[LotteryTier, int]:
    """Return the winning tier and the points awarded within it."""

    generator = rng or _SYSTEM_RANDOM
    tier = choose_tier(generator, tiers)
    return tier, tier.pick(generator)


@dataclass(slots=True)
class LotteryDraw:
    """A single draw moving ``idle -> committed -> resolved``.

    The cost (a badge ticket, or quota plus an exchange debit) must be paid
    before :meth:`commit`; :meth:`resolve` is terminal.
    """

    member_id: str
    source: LotterySource
    badge_id: Optional[str] = None
    status: DrawStatus = DrawStatus.IDLE
    tier: Optional[int] = None
    points_won: Optional[int] = None
    committed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.source is LotterySource.BADGE and not self.badge_id:
            raise InvalidArgumentError("A badge draw needs the badge that issued the ticket.")
        if self.source is LotterySource.EXCHANGE and self.badge_id:
            raise InvalidArgumentError("An exchange draw cannot reference a badge.")

    def commit(self, *, at: Optional[datetime] = None) -> None:
        if self.status is not DrawStatus.IDLE:
            raise InvalidArgumentError(f"Draw cannot be committed from state '{self.status.value}'.")
        self.status = DrawStatus.COMMITTED
        self.committed_at = at or utcnow()

    def resolve(
        self,
        rng: Optional[random.Random] = None,
        *,
        at: Optional[datetime] = None,
        tiers: Sequence[LotteryTier] = LOTTERY_TIERS,
    ) -> int:
        if self.status is DrawStatus.RESOLVED:
            raise InvalidArgumentError("Draw has already been resolved.")
        if self.status is not DrawStatus.COMMITTED:
            raise InvalidArgumentError("Draw must be paid for before it is resolved.")
        tier, points = draw_points(rng, tiers)
        self.tier = tier.tier
        self.points_won = points
        self.status = DrawStatus.RESOLVED
        self.resolved_at = at or utcnow()
        return points


__all__ = [
    "LOTTERY_TIERS",
    "LotteryDraw",
    "LotteryTier",
    "choose_tier",
    "draw_points",
]
