"""Custom exception hierarchy for the Points Bank package."""

from __future__ import annotations


class PointsBankError(Exception):
    """Base class for all Points Bank specific errors."""

    code = "points_bank_error"


class NotFoundError(PointsBankError):
    """Raised when a member, badge, reward or task lookup fails."""

    code = "not_found"


class MemberNotFoundError(NotFoundError):
    """Raised when a member lookup fails or the member is outside the family."""


class BadgeNotFoundError(NotFoundError):
    """Raised when a badge lookup fails."""


class RewardNotFoundError(NotFoundError):
    """Raised when a reward lookup fails."""


class TaskNotFoundError(NotFoundError):
    """Raised when a task lookup fails."""


class TransactionNotFoundError(NotFoundError):
    """Raised when a ledger entry id does not exist."""


class InsufficientFundsError(PointsBankError):
    """Raised when a debit would exceed the member's current balance."""

    code = "insufficient_funds"


class QuotaExhaustedError(PointsBankError):
    """Raised when the member has used every paid exchange for today."""

    code = "quota_exhausted"


class TicketAlreadyUsedError(PointsBankError):
    """Raised when a badge ticket has already been spent on a draw."""

    code = "ticket_already_used"


class TicketNotFoundError(NotFoundError):
    """Raised when no badge ticket exists for the member."""

    code = "ticket_not_found"


class InvalidArgumentError(PointsBankError, ValueError):
    """Raised for malformed input such as zero points or a bad identifier."""

    code = "invalid_argument"


class ConcurrencyConflictError(PointsBankError):
    """Raised when an atomic unit keeps losing its optimistic version check."""

    code = "concurrency_conflict"


__all__ = [
    "PointsBankError",
    "NotFoundError",
    "MemberNotFoundError",
    "BadgeNotFoundError",
    "RewardNotFoundError",
    "TaskNotFoundError",
    "TransactionNotFoundError",
    "InsufficientFundsError",
    "QuotaExhaustedError",
    "TicketAlreadyUsedError",
    "TicketNotFoundError",
    "InvalidArgumentError",
    "ConcurrencyConflictError",
]
