"""Badge catalog, streak logic and progress evaluation for Points Bank."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .ledger import LedgerLike, kind_value, total_earned
from .models import BadgeProgress, BadgeType, TaskCategory, TransactionKind, local_day


@dataclass(slots=True)
class BadgeContext:
    """Everything a progress function may look at for one member."""

    completion_days: list[date] = field(default_factory=list)
    category_counts: Dict[str, int] = field(default_factory=dict)
    total_earned: int = 0
    lottery_draws: int = 0

    @property
    def completions(self) -> int:
        return len(self.completion_days)

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[LedgerLike],
        tz: ZoneInfo,
        *,
        lottery_draws: int = 0,
    ) -> "BadgeContext":
        materialised = list(entries)
        context = cls(total_earned=total_earned(materialised), lottery_draws=lottery_draws)
        for entry in materialised:
            if getattr(entry, "task_id", None) is None:
                continue
            if kind_value(entry) != TransactionKind.EARN.value:
                continue
            context.completion_days.append(local_day(entry.timestamp, tz))
            category = getattr(entry, "category", None)
            if category:
                context.category_counts[category] = context.category_counts.get(category, 0) + 1
        return context


def longest_streak(days: Iterable[date]) -> int:
    """Return the longest run of consecutive calendar days.

    Repeat completions on the same day keep the run as-is. The longest run
    never shrinks, so badge progress stays monotonic.
    """

    best = 0
    run = 0
    previous: Optional[date] = None
    for day in sorted(set(days)):
        if previous is not None and day - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        best = max(best, run)
        previous = day
    return best


ProgressFn = Callable[[BadgeContext], int]


@dataclass(slots=True, frozen=True)
class BadgeDefinition:
    """Static description of one unlockable badge."""

    condition_key: str
    badge_type: BadgeType
    title: str
    description: str
    icon: str
    requirement: int
    progress_fn: ProgressFn

    def progress(self, context: BadgeContext) -> int:
        return max(int(self.progress_fn(context)), 0)


def _completions(context: BadgeContext) -> int:
    return context.completions


def _streak(context: BadgeContext) -> int:
    return longest_streak(context.completion_days)


def _category(category: TaskCategory) -> ProgressFn:
    def progress(context: BadgeContext) -> int:
        return context.category_counts.get(category.value, 0)

    return progress


def _earned(context: BadgeContext) -> int:
    return context.total_earned


def _draws(context: BadgeContext) -> int:
    return context.lottery_draws


BADGE_CATALOG: Tuple[BadgeDefinition, ...] = (
    BadgeDefinition("first_task", BadgeType.ACHIEVEMENT, "First Step", "Complete your first task.", "🌱", 1, _completions),
    BadgeDefinition("streak_3", BadgeType.STREAK, "Warming Up", "Complete tasks 3 days in a row.", "🔥", 3, _streak),
    BadgeDefinition("streak_7", BadgeType.STREAK, "Week Warrior", "Complete tasks 7 days in a row.", "⚡", 7, _streak),
    BadgeDefinition("streak_30", BadgeType.STREAK, "Unstoppable", "Complete tasks 30 days in a row.", "👑", 30, _streak),
    BadgeDefinition("tasks_50", BadgeType.ACHIEVEMENT, "Busy Bee", "Complete 50 tasks.", "🐝", 50, _completions),
    BadgeDefinition(
        "learning_10",
        BadgeType.ACHIEVEMENT,
        "Bookworm",
        "Complete 10 learning tasks.",
        "📚",
        10,
        _category(TaskCategory.LEARNING),
    ),
    BadgeDefinition(
        "chores_10",
        BadgeType.ACHIEVEMENT,
        "Home Helper",
        "Complete 10 chores.",
        "🧹",
        10,
        _category(TaskCategory.CHORES),
    ),
    BadgeDefinition(
        "discipline_10",
        BadgeType.ACHIEVEMENT,
        "Self Master",
        "Complete 10 discipline tasks.",
        "🧘",
        10,
        _category(TaskCategory.DISCIPLINE),
    ),
    BadgeDefinition("total_100", BadgeType.MILESTONE, "Centurion", "Earn 100 points in total.", "💯", 100, _earned),
    BadgeDefinition("total_500", BadgeType.MILESTONE, "High Flyer", "Earn 500 points in total.", "🚀", 500, _earned),
    BadgeDefinition("total_1000", BadgeType.MILESTONE, "Point Tycoon", "Earn 1000 points in total.", "💎", 1000, _earned),
    BadgeDefinition("lucky_first", BadgeType.SPECIAL, "Lucky Spin", "Play the lottery for the first time.", "🎡", 1, _draws),
)


class BadgeCatalog:
    """Ordered, keyed collection of :class:`BadgeDefinition` objects."""

    __slots__ = ("_definitions",)

    def __init__(self, definitions: Sequence[BadgeDefinition] = BADGE_CATALOG) -> None:
        keyed: Dict[str, BadgeDefinition] = {}
        for definition in definitions:
            if definition.condition_key in keyed:
                raise ValueError(f"Duplicate badge condition '{definition.condition_key}'.")
            if definition.requirement <= 0:
                raise ValueError("Badge requirements must be positive.")
            keyed[definition.condition_key] = definition
        self._definitions = keyed

    def __iter__(self):
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, condition_key: object) -> bool:
        return condition_key in self._definitions

    def get(self, condition_key: str) -> BadgeDefinition:
        try:
            return self._definitions[condition_key]
        except KeyError as exc:
            raise KeyError(f"Unknown badge condition '{condition_key}'.") from exc

    def evaluate(
        self,
        context: BadgeContext,
        earned: Mapping[str, object] | None = None,
    ) -> Tuple[BadgeProgress, ...]:
        """Return progress for every definition, marking the keys in ``earned``.

        ``earned`` maps a condition key to its granted badge (anything with an
        ``awarded_at`` attribute) for the member.
        """

        held = earned or {}
        rows = []
        for definition in self:
            badge = held.get(definition.condition_key)
            rows.append(
                BadgeProgress(
                    condition_key=definition.condition_key,
                    badge_type=definition.badge_type,
                    title=definition.title,
                    description=definition.description,
                    icon=definition.icon,
                    progress=definition.progress(context),
                    requirement=definition.requirement,
                    earned=badge is not None,
                    earned_at=getattr(badge, "awarded_at", None) if badge is not None else None,
                )
            )
        return tuple(rows)

    def eligible(self, context: BadgeContext, earned: Iterable[str] = ()) -> Tuple[BadgeDefinition, ...]:
        """Return definitions whose requirement is met and which are not yet held."""

        held = set(earned)
        return tuple(
            definition
            for definition in self
            if definition.condition_key not in held and definition.progress(context) >= definition.requirement
        )


DEFAULT_CATALOG = BadgeCatalog()


__all__ = [
    "BADGE_CATALOG",
    "BadgeCatalog",
    "BadgeContext",
    "BadgeDefinition",
    "DEFAULT_CATALOG",
    "longest_streak",
]
