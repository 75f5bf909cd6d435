"""Level derivation from a member's cumulative earned points."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from .models import LevelInfo, LevelStatus

LEVELS: Tuple[LevelInfo, ...] = (
    LevelInfo(level=1, name="Spark Rookie", icon="zap", min_points=0),
    LevelInfo(level=2, name="Energy Pioneer", icon="fire", min_points=50),
    LevelInfo(level=3, name="Power Elite", icon="shield", min_points=200),
    LevelInfo(level=4, name="Glory Commander", icon="award", min_points=500),
    LevelInfo(level=5, name="Eternal Legend", icon="star", min_points=1000),
    LevelInfo(level=6, name="Vital Deity", icon="reward", min_points=5000),
)


class LevelCalculator:
    """Map cumulative earned points onto a strictly ascending level table."""

    __slots__ = ("_levels",)

    def __init__(self, levels: Sequence[LevelInfo] = LEVELS) -> None:
        if not levels:
            raise ValueError("At least one level is required.")
        ordered = tuple(levels)
        for previous, current in zip(ordered, ordered[1:]):
            if current.min_points <= previous.min_points or current.level <= previous.level:
                raise ValueError("Level thresholds must be strictly ascending.")
        self._levels = ordered

    @property
    def levels(self) -> Tuple[LevelInfo, ...]:
        return self._levels

    def level_info(self, total_earned: int) -> LevelInfo:
        """Return the highest level whose threshold does not exceed ``total_earned``."""

        current = self._levels[0]
        for info in self._levels:
            if info.min_points <= total_earned:
                current = info
            else:
                break
        return current

    def level(self, total_earned: int) -> int:
        return self.level_info(total_earned).level

    def next_level(self, total_earned: int) -> Optional[LevelInfo]:
        index = self._levels.index(self.level_info(total_earned))
        if index + 1 < len(self._levels):
            return self._levels[index + 1]
        return None

    def status(self, total_earned: int) -> LevelStatus:
        """Return the level together with the rounded percentage towards the next one."""

        current = self.level_info(total_earned)
        upcoming = self.next_level(total_earned)
        if upcoming is None:
            return LevelStatus(info=current, total_earned=total_earned, progress=100, next_points=None)
        span = upcoming.min_points - current.min_points
        gained = max(total_earned - current.min_points, 0)
        progress = min(round(gained / span * 100), 100)
        return LevelStatus(
            info=current,
            total_earned=total_earned,
            progress=progress,
            next_points=upcoming.min_points,
        )


DEFAULT_CALCULATOR = LevelCalculator()


def calculate_level(total_earned: int) -> LevelStatus:
    """Shortcut for :meth:`LevelCalculator.status` on the default table."""

    return DEFAULT_CALCULATOR.status(total_earned)


__all__ = ["LEVELS", "LevelCalculator", "DEFAULT_CALCULATOR", "calculate_level"]
