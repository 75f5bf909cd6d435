"""Points Bank package: a family points economy with badges, lottery and rewards."""

from .admin import AuditLog
from .badges import BADGE_CATALOG, BadgeCatalog, BadgeContext, BadgeDefinition, longest_streak
from .config import SETTINGS, Settings
from .exceptions import (
    BadgeNotFoundError,
    ConcurrencyConflictError,
    InsufficientFundsError,
    InvalidArgumentError,
    MemberNotFoundError,
    NotFoundError,
    PointsBankError,
    QuotaExhaustedError,
    RewardNotFoundError,
    TaskNotFoundError,
    TicketAlreadyUsedError,
    TicketNotFoundError,
    TransactionNotFoundError,
)
from .leveling import LEVELS, LevelCalculator, calculate_level
from .lottery import LOTTERY_TIERS, LotteryDraw, LotteryTier, draw_points
from .models import (
    BadgeProgress,
    BadgeType,
    DrawStatus,
    HistorySummary,
    LevelInfo,
    LevelStatus,
    LotterySource,
    LotteryStats,
    MemberRole,
    RewardStatus,
    RewardType,
    TaskCategory,
    TaskDifficulty,
    TransactionKind,
)
from .ops import StructuredLogger
from .service import PointsBank

__all__ = [
    "AuditLog",
    "BADGE_CATALOG",
    "BadgeCatalog",
    "BadgeContext",
    "BadgeDefinition",
    "BadgeNotFoundError",
    "BadgeProgress",
    "BadgeType",
    "ConcurrencyConflictError",
    "DrawStatus",
    "HistorySummary",
    "InsufficientFundsError",
    "InvalidArgumentError",
    "LEVELS",
    "LOTTERY_TIERS",
    "LevelCalculator",
    "LevelInfo",
    "LevelStatus",
    "LotteryDraw",
    "LotterySource",
    "LotteryStats",
    "LotteryTier",
    "MemberNotFoundError",
    "MemberRole",
    "NotFoundError",
    "PointsBank",
    "PointsBankError",
    "QuotaExhaustedError",
    "RewardNotFoundError",
    "RewardStatus",
    "RewardType",
    "SETTINGS",
    "Settings",
    "StructuredLogger",
    "TaskCategory",
    "TaskDifficulty",
    "TaskNotFoundError",
    "TicketAlreadyUsedError",
    "TicketNotFoundError",
    "TransactionNotFoundError",
    "TransactionKind",
    "calculate_level",
    "draw_points",
    "longest_streak",
]
