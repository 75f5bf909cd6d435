"""Pure folds over a member's ledger entries.

The functions here accept any objects exposing ``points``, ``kind`` and
``timestamp`` (the persisted :class:`~pointsbank.persistence.LedgerEntry`
rows in practice), so balances can be recomputed from the ledger at any time.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Protocol, Sequence

from .models import HistorySummary, TransactionKind, utcnow
from .points import require_nonzero, to_points
from .exceptions import InvalidArgumentError


class LedgerLike(Protocol):
    points: int
    kind: str
    timestamp: datetime


def validate_movement(points: int, kind: TransactionKind) -> int:
    """Reject zero movements and signs that contradict the kind."""

    value = require_nonzero(to_points(points))
    sign = kind.required_sign
    if sign > 0 and value < 0:
        raise InvalidArgumentError(f"A '{kind.value}' entry must credit points.")
    if sign < 0 and value > 0:
        raise InvalidArgumentError(f"A '{kind.value}' entry must debit points.")
    return value


def current_balance(entries: Iterable[LedgerLike]) -> int:
    return sum(entry.points for entry in entries)


def total_earned(entries: Iterable[LedgerLike]) -> int:
    """Sum of every credit, including incoming transfers and lottery wins."""

    return sum(entry.points for entry in entries if entry.points > 0)


def summarize_history(entries: Sequence[LedgerLike], *, now: datetime | None = None) -> HistorySummary:
    """Group entries the way the history screen reports them.

    Lottery wins and system adjustments count as earnings; exchange debits
    count with penalties.
    """

    moment = now or utcnow()
    week_start = moment - timedelta(days=7)
    summary = HistorySummary(total=len(entries))
    for entry in entries:
        kind = kind_value(entry)
        summary.by_kind[kind] = summary.by_kind.get(kind, 0) + 1
        summary.net += entry.points
        if entry.timestamp >= week_start:
            summary.week += 1
        if kind in (TransactionKind.EARN.value, TransactionKind.LOTTERY.value, TransactionKind.SYSTEM.value):
            summary.earn_count += 1
            summary.earn_points += entry.points
        elif kind in (TransactionKind.PENALTY.value, TransactionKind.EXCHANGE.value):
            summary.penalty_count += 1
            summary.penalty_points += entry.points
        elif kind == TransactionKind.REDEEM.value:
            summary.redeem_count += 1
            summary.redeem_points += entry.points
        elif kind == TransactionKind.TRANSFER.value:
            summary.transfer_count += 1
    return summary


def kind_value(entry: LedgerLike) -> str:
    kind = entry.kind
    return kind.value if isinstance(kind, TransactionKind) else str(kind)


__all__ = [
    "LedgerLike",
    "current_balance",
    "kind_value",
    "summarize_history",
    "total_earned",
    "validate_movement",
]
