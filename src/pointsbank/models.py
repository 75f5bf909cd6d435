"""Domain enums and value objects used by the Points Bank package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, the storage convention."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_day(moment: datetime, tz: ZoneInfo) -> date:
    """Return the calendar day of a naive UTC ``moment`` in the reference timezone."""

    return moment.replace(tzinfo=timezone.utc).astimezone(tz).date()


class TransactionKind(str, Enum):
    """Enumerates the supported kinds of ledger movements."""

    EARN = "earn"
    PENALTY = "penalty"
    REDEEM = "redeem"
    TRANSFER = "transfer"
    LOTTERY = "lottery"
    EXCHANGE = "exchange"
    SYSTEM = "system"

    @property
    def required_sign(self) -> int:
        """Return +1/-1 for kinds with a fixed direction, 0 when either is allowed."""

        if self in (TransactionKind.EARN, TransactionKind.LOTTERY):
            return 1
        if self in (TransactionKind.PENALTY, TransactionKind.REDEEM, TransactionKind.EXCHANGE):
            return -1
        return 0


class MemberRole(str, Enum):
    ADMIN = "admin"
    CHILD = "child"


class TaskCategory(str, Enum):
    """High level categories used for task completions and badge progress."""

    LEARNING = "learning"
    CHORES = "chores"
    DISCIPLINE = "discipline"
    PENALTY = "penalty"
    REWARD = "reward"


class TaskDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


class BadgeType(str, Enum):
    STREAK = "streak"
    MILESTONE = "milestone"
    ACHIEVEMENT = "achievement"
    SPECIAL = "special"


class LotterySource(str, Enum):
    """Where the right to a lottery draw came from."""

    BADGE = "badge"
    EXCHANGE = "exchange"


class DrawStatus(str, Enum):
    """Lifecycle of a single lottery draw."""

    IDLE = "idle"
    COMMITTED = "committed"
    RESOLVED = "resolved"


class RewardStatus(str, Enum):
    """Lifecycle for rewards proposed through the wishlist."""

    ACTIVE = "active"
    PENDING = "pending"
    REJECTED = "rejected"


class RewardType(str, Enum):
    PHYSICAL = "physical"
    PRIVILEGE = "privilege"


@dataclass(slots=True, frozen=True)
class BadgeProgress:
    """Derived progress of one member towards one badge condition."""

    condition_key: str
    badge_type: BadgeType
    title: str
    description: str
    icon: str
    progress: int
    requirement: int
    earned: bool
    earned_at: Optional[datetime] = None

    @property
    def claimable(self) -> bool:
        """True when the requirement is met but the badge has not been granted."""

        return not self.earned and self.progress >= self.requirement

    def as_dict(self) -> Dict[str, Any]:
        return {
            "conditionKey": self.condition_key,
            "badgeType": self.badge_type.value,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "progress": self.progress,
            "requirement": self.requirement,
            "isEarned": self.earned,
            "earnedAt": self.earned_at.isoformat() if self.earned_at else None,
        }


@dataclass(slots=True, frozen=True)
class LevelInfo:
    """One row of the level table."""

    level: int
    name: str
    icon: str
    min_points: int


@dataclass(slots=True, frozen=True)
class LevelStatus:
    """Level information for a specific cumulative total."""

    info: LevelInfo
    total_earned: int
    progress: int
    next_points: Optional[int]

    @property
    def level(self) -> int:
        return self.info.level

    def as_dict(self) -> Dict[str, Any]:
        return {
            "level": self.info.level,
            "name": self.info.name,
            "icon": self.info.icon,
            "minPoints": self.info.min_points,
            "totalEarned": self.total_earned,
            "progress": self.progress,
            "nextPoints": self.next_points,
        }


@dataclass(slots=True, frozen=True)
class LotteryStats:
    """Read-only aggregate of a member's lottery activity."""

    total_lottery_count: int
    total_points_won: int
    badge_lottery_count: int
    exchange_lottery_count: int
    today_exchange_count: int
    remaining_exchange_count: int
    pending_badge_count: int

    def as_dict(self) -> Dict[str, int]:
        return {
            "totalLotteryCount": self.total_lottery_count,
            "totalPointsWon": self.total_points_won,
            "badgeLotteryCount": self.badge_lottery_count,
            "exchangeLotteryCount": self.exchange_lottery_count,
            "todayExchangeCount": self.today_exchange_count,
            "remainingExchangeCount": self.remaining_exchange_count,
            "pendingBadgeCount": self.pending_badge_count,
        }


@dataclass(slots=True)
class HistorySummary:
    """Counts and sums over a member's ledger, grouped the way the history tab shows them."""

    total: int = 0
    week: int = 0
    earn_count: int = 0
    earn_points: int = 0
    penalty_count: int = 0
    penalty_points: int = 0
    redeem_count: int = 0
    redeem_points: int = 0
    transfer_count: int = 0
    net: int = 0
    by_kind: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "week": self.week,
            "earnCount": self.earn_count,
            "earnPoints": self.earn_points,
            "penaltyCount": self.penalty_count,
            "penaltyPoints": self.penalty_points,
            "redeemCount": self.redeem_count,
            "redeemPoints": self.redeem_points,
            "transferCount": self.transfer_count,
            "net": self.net,
            "byKind": dict(self.by_kind),
        }


@dataclass(slots=True)
class AuditEvent:
    """An admin action against one family, with the values it changed."""

    actor: str
    action: str
    target: str
    family_id: str
    timestamp: datetime = field(default_factory=utcnow)
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "actor": self.actor,
            "action": self.action,
            "target": self.target,
            "familyId": self.family_id,
            "timestamp": self.timestamp.isoformat(),
            "details": dict(self.details),
        }
