"""High level service enforcing the points economy over the database."""

from __future__ import annotations

import random
import uuid
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import delete, func, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Session, col, select
from sqlmodel.sql.expression import SelectOfScalar

from . import persistence
from .admin import AuditLog
from .badges import DEFAULT_CATALOG, BadgeCatalog, BadgeContext, BadgeDefinition
from .config import SETTINGS, Settings
from .exceptions import (
    BadgeNotFoundError,
    ConcurrencyConflictError,
    InsufficientFundsError,
    InvalidArgumentError,
    MemberNotFoundError,
    QuotaExhaustedError,
    RewardNotFoundError,
    TaskNotFoundError,
    TicketAlreadyUsedError,
    TicketNotFoundError,
    TransactionNotFoundError,
)
from .ledger import summarize_history, validate_movement
from .leveling import DEFAULT_CALCULATOR, LevelCalculator
from .lottery import LotteryDraw
from .models import (
    BadgeProgress,
    HistorySummary,
    LevelStatus,
    LotterySource,
    LotteryStats,
    MemberRole,
    RewardStatus,
    RewardType,
    TaskCategory,
    TaskDifficulty,
    TransactionKind,
    local_day,
    utcnow,
)
from .ops import StructuredLogger
from .persistence import Badge, LedgerEntry, LotteryRecord, Member, QuotaCounter, Reward, Task, open_session
from .points import PointsLike, require_positive, to_points

T = TypeVar("T")

_TRANSIENT_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock detected",
    "could not serialize",
    "lock wait timeout",
)

# Debits that must be covered by the balance at the moment they are written.
_FUNDED_KINDS = frozenset({TransactionKind.REDEEM, TransactionKind.EXCHANGE, TransactionKind.TRANSFER})


class _VersionConflict(Exception):
    """Another session advanced the member's ledger first."""


def _is_transient(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def _require_uuid(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"A {label} id is required.")
    try:
        uuid.UUID(value)
    except ValueError as exc:
        raise InvalidArgumentError(f"Malformed {label} id: {value!r}") from exc
    return value


def _require_family(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError("A family id is required.")
    if len(value) > 64:
        raise InvalidArgumentError("Family ids are at most 64 characters long.")
    return value


def _require_title(value: Any, label: str = "title") -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"A {label} is required.")
    return value.strip()


def _require_int_id(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidArgumentError(f"Malformed {label} id: {value!r}")
    return value


def _family_lock_query(family_id: str) -> SelectOfScalar[Member]:
    """Lock every member of the family, in id order like transfers do."""

    return select(Member).where(Member.family_id == family_id).order_by(col(Member.id)).with_for_update()


class PointsBank:
    """Ledger, quota, badge, lottery and reward workflows for a family."""

    __slots__ = (
        "_engine",
        "_settings",
        "_catalog",
        "_levels",
        "_rng",
        "_clock",
        "_logger",
        "_audit_log",
    )

    def __init__(
        self,
        *,
        engine: Engine | None = None,
        settings: Settings | None = None,
        catalog: BadgeCatalog | None = None,
        levels: LevelCalculator | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._settings = settings or SETTINGS
        self._engine = engine or persistence.engine
        self._catalog = catalog or DEFAULT_CATALOG
        self._levels = levels or DEFAULT_CALCULATOR
        self._rng = rng
        self._clock = clock or utcnow
        self._logger = logger or StructuredLogger(path=self._settings.log_path, clock=self._clock)
        self._audit_log = AuditLog(clock=self._clock)
        persistence.init_db(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    @property
    def catalog(self) -> BadgeCatalog:
        return self._catalog

    def today(self) -> date:
        """Return today's date in the reference timezone."""

        return local_day(self._clock(), self._settings.tz)

    # ------------------------------------------------------------------
    # Atomic units
    # ------------------------------------------------------------------
    def _atomic(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run ``work`` in one transaction, retrying lost optimistic races.

        Domain errors propagate immediately and leave no partial writes.
        """

        attempts = self._settings.max_retries
        for attempt in range(1, attempts + 1):
            with open_session(self._engine) as session:
                try:
                    result = work(session)
                    session.commit()
                    return result
                except (_VersionConflict, IntegrityError) as exc:
                    session.rollback()
                    reason = type(exc).__name__
                except OperationalError as exc:
                    session.rollback()
                    if not _is_transient(exc):
                        raise
                    reason = "transient"
            self._logger.log("concurrency_retry", operation=operation, attempt=attempt, reason=reason)
        raise ConcurrencyConflictError(f"'{operation}' lost {attempts} consecutive concurrency races; retry later.")

    def _read(self, work: Callable[[Session], T]) -> T:
        with open_session(self._engine) as session:
            return work(session)

    def _load_member(self, session: Session, member_id: str, family_id: str | None = None, *, lock: bool = False) -> Member:
        _require_uuid(member_id, "member")
        query = select(Member).where(Member.id == member_id)
        if lock:
            query = query.with_for_update()
        member = session.exec(query).first()
        if member is None or (family_id is not None and member.family_id != family_id):
            raise MemberNotFoundError(f"Member '{member_id}' does not exist.")
        return member

    def _load_admin(self, session: Session, actor_id: str, family_id: str | None = None) -> Member:
        actor = self._load_member(session, actor_id, family_id)
        if actor.role != MemberRole.ADMIN.value:
            raise PermissionError("Only a family admin may perform this action.")
        return actor

    def _advance_version(self, session: Session, member: Member) -> int:
        expected = member.version
        result = session.exec(
            update(Member)
            .where(col(Member.id) == member.id, col(Member.version) == expected)
            .values(version=expected + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise _VersionConflict(member.id)
        set_committed_value(member, "version", expected + 1)
        return expected + 1

    def _balance(self, session: Session, member_id: str) -> int:
        total = session.exec(
            select(func.coalesce(func.sum(LedgerEntry.points), 0)).where(LedgerEntry.member_id == member_id)
        ).one()
        return int(total)

    def _total_earned(self, session: Session, member_id: str) -> int:
        total = session.exec(
            select(func.coalesce(func.sum(LedgerEntry.points), 0)).where(
                LedgerEntry.member_id == member_id, LedgerEntry.points > 0
            )
        ).one()
        return int(total)

    def _append(
        self,
        session: Session,
        member: Member,
        *,
        title: str,
        points: int,
        kind: TransactionKind,
        at: datetime,
        **extra: Any,
    ) -> LedgerEntry:
        value = validate_movement(points, kind)
        if kind in _FUNDED_KINDS and value < 0:
            balance = self._balance(session, member.id)
            if balance + value < 0:
                raise InsufficientFundsError(
                    f"Member '{member.name}' has {balance} points but {-value} are required."
                )
        seq = self._advance_version(session, member)
        entry = LedgerEntry(
            member_id=member.id,
            seq=seq,
            title=_require_title(title),
            points=value,
            kind=kind.value,
            timestamp=at,
            **extra,
        )
        session.add(entry)
        session.flush()
        return entry

    def _log_entry(self, entry: LedgerEntry) -> None:
        self._logger.log(
            "transaction_appended",
            member=entry.member_id,
            transaction=entry.id,
            seq=entry.seq,
            kind=entry.kind,
            points=entry.points,
        )

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------
    def create_member(
        self,
        family_id: str,
        name: str,
        *,
        role: MemberRole | str = MemberRole.CHILD,
        avatar_color: str | None = None,
    ) -> Member:
        family = _require_family(family_id)
        try:
            role_value = MemberRole(role).value
        except ValueError as exc:
            raise InvalidArgumentError(f"Unknown role {role!r}.") from exc
        member = Member(
            family_id=family,
            name=_require_title(name, "member name"),
            role=role_value,
            avatar_color=avatar_color,
        )

        def work(session: Session) -> Member:
            session.add(member)
            session.flush()
            return member

        created = self._atomic("create_member", work)
        self._logger.log("member_created", member=created.id, family=family, role=role_value)
        return created

    def get_member(self, member_id: str, *, family_id: str | None = None) -> Member:
        return self._read(lambda session: self._load_member(session, member_id, family_id))

    def list_members(self, family_id: str) -> Tuple[Member, ...]:
        family = _require_family(family_id)
        return self._read(
            lambda session: tuple(
                session.exec(select(Member).where(Member.family_id == family).order_by(Member.created_at)).all()
            )
        )

    def member_profile(self, member_id: str) -> Dict[str, Any]:
        """Snapshot with the derived balance, level and badge count."""

        def work(session: Session) -> Dict[str, Any]:
            member = self._load_member(session, member_id)
            balance = self._balance(session, member.id)
            earned = self._total_earned(session, member.id)
            badges = session.exec(
                select(func.count()).select_from(Badge).where(Badge.member_id == member.id)
            ).one()
            return {
                "id": member.id,
                "familyId": member.family_id,
                "name": member.name,
                "role": member.role,
                "avatarColor": member.avatar_color,
                "balance": balance,
                "totalEarned": earned,
                "level": self._levels.status(earned).as_dict(),
                "badgeCount": int(badges),
            }

        return self._read(work)

    # ------------------------------------------------------------------
    # Transaction ledger & balance view
    # ------------------------------------------------------------------
    def append(
        self,
        member_id: str,
        title: str,
        points: PointsLike,
        kind: TransactionKind | str,
        *,
        note: str | None = None,
    ) -> LedgerEntry:
        """Append one signed movement; debits of funded kinds are balance-checked atomically."""

        try:
            movement = TransactionKind(kind)
        except ValueError as exc:
            raise InvalidArgumentError(f"Unknown transaction kind {kind!r}.") from exc
        if movement is TransactionKind.TRANSFER:
            raise InvalidArgumentError("Use transfer() to move points between members.")
        value = validate_movement(to_points(points), movement)

        def work(session: Session) -> LedgerEntry:
            member = self._load_member(session, member_id, lock=True)
            return self._append(session, member, title=title, points=value, kind=movement, at=self._clock(), note=note)

        entry = self._atomic("append", work)
        self._log_entry(entry)
        return entry

    def list_for_member(
        self,
        member_id: str,
        *,
        kinds: Optional[Sequence[TransactionKind]] = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Tuple[LedgerEntry, ...]:
        """Return the member's ledger in chronological order."""

        if offset < 0 or (limit is not None and limit < 0):
            raise InvalidArgumentError("limit and offset must not be negative.")
        try:
            wanted = [TransactionKind(kind).value for kind in kinds or ()]
        except ValueError as exc:
            raise InvalidArgumentError(f"Unknown transaction kind in {list(kinds or ())!r}.") from exc

        def work(session: Session) -> Tuple[LedgerEntry, ...]:
            member = self._load_member(session, member_id)
            query = (
                select(LedgerEntry)
                .where(LedgerEntry.member_id == member.id)
                .order_by(col(LedgerEntry.timestamp), col(LedgerEntry.seq))
            )
            if kinds:
                query = query.where(col(LedgerEntry.kind).in_(wanted))
            if offset:
                query = query.offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return tuple(session.exec(query).all())

        return self._read(work)

    def current_balance(self, member_id: str) -> int:
        return self._read(lambda session: self._balance(session, self._load_member(session, member_id).id))

    def total_earned(self, member_id: str) -> int:
        return self._read(lambda session: self._total_earned(session, self._load_member(session, member_id).id))

    def level(self, member_id: str) -> LevelStatus:
        return self._levels.status(self.total_earned(member_id))

    def history_summary(self, member_id: str) -> HistorySummary:
        return summarize_history(self.list_for_member(member_id), now=self._clock())

    def transfer(
        self,
        sender_id: str,
        recipient_id: str,
        points: PointsLike,
        *,
        message: str = "",
    ) -> Tuple[LedgerEntry, LedgerEntry]:
        """Move points between two members of the same family."""

        _require_uuid(sender_id, "member")
        _require_uuid(recipient_id, "member")
        if sender_id == recipient_id:
            raise InvalidArgumentError("Cannot transfer to the same member.")
        value = require_positive(to_points(points))
        note = message.strip() or None

        def work(session: Session) -> Tuple[LedgerEntry, LedgerEntry]:
            locked: Dict[str, Member] = {}
            for member_id in sorted((sender_id, recipient_id)):
                locked[member_id] = self._load_member(session, member_id, lock=True)
            sender, recipient = locked[sender_id], locked[recipient_id]
            if sender.family_id != recipient.family_id:
                raise MemberNotFoundError(f"Member '{recipient_id}' is not in the sender's family.")
            now = self._clock()
            outgoing = self._append(
                session,
                sender,
                title=f"Transfer to {recipient.name}",
                points=-value,
                kind=TransactionKind.TRANSFER,
                at=now,
                counterparty_member_id=recipient.id,
                note=note,
            )
            incoming = self._append(
                session,
                recipient,
                title=f"Transfer from {sender.name}",
                points=value,
                kind=TransactionKind.TRANSFER,
                at=now,
                counterparty_member_id=sender.id,
                note=note,
            )
            return outgoing, incoming

        outgoing, incoming = self._atomic("transfer", work)
        self._log_entry(outgoing)
        self._log_entry(incoming)
        return outgoing, incoming

    def apply_penalty(self, actor_id: str, member_id: str, points: PointsLike, title: str) -> LedgerEntry:
        """Deduct points as a penalty; penalties may take the balance below zero."""

        value = require_positive(to_points(points))

        def work(session: Session) -> Tuple[LedgerEntry, str]:
            member = self._load_member(session, member_id, lock=True)
            self._load_admin(session, actor_id, member.family_id)
            entry = self._append(
                session, member, title=title, points=-value, kind=TransactionKind.PENALTY, at=self._clock()
            )
            return entry, member.family_id

        entry, family = self._atomic("apply_penalty", work)
        self._audit_log.record(
            actor_id, "apply_penalty", member_id, family_id=family, details={"points": -value, "transaction": entry.id}
        )
        self._log_entry(entry)
        return entry

    def adjust_balance(self, actor_id: str, member_id: str, points: PointsLike, title: str) -> LedgerEntry:
        """Record an admin ``system`` adjustment in either direction."""

        value = to_points(points)

        def work(session: Session) -> Tuple[LedgerEntry, str]:
            member = self._load_member(session, member_id, lock=True)
            self._load_admin(session, actor_id, member.family_id)
            entry = self._append(session, member, title=title, points=value, kind=TransactionKind.SYSTEM, at=self._clock())
            return entry, member.family_id

        entry, family = self._atomic("adjust_balance", work)
        self._audit_log.record(
            actor_id, "adjust_balance", member_id, family_id=family, details={"points": value, "transaction": entry.id}
        )
        self._log_entry(entry)
        return entry

    def delete_transactions(self, actor_id: str, transaction_ids: Sequence[int]) -> int:
        """Admin batch delete; affected balances are re-derived from what remains."""

        ids = sorted({_require_int_id(value, "transaction") for value in transaction_ids})
        if not ids:
            return 0

        def work(session: Session) -> Tuple[str, Dict[str, int]]:
            actor = self._load_admin(session, actor_id)
            entries = session.exec(select(LedgerEntry).where(col(LedgerEntry.id).in_(ids))).all()
            if len(entries) != len(ids):
                missing = sorted(set(ids) - {entry.id for entry in entries})
                raise TransactionNotFoundError(f"Unknown transaction ids: {missing}")
            # A prize credit is owned by its draw record.
            prizes = session.exec(
                select(LotteryRecord.transaction_id).where(col(LotteryRecord.transaction_id).in_(ids))
            ).all()
            if prizes:
                raise InvalidArgumentError(f"Lottery prize transactions cannot be deleted: {sorted(prizes)}")
            per_member: Dict[str, int] = {}
            for entry in entries:
                per_member[entry.member_id] = per_member.get(entry.member_id, 0) + 1
            for member_id in sorted(per_member):
                member = self._load_member(session, member_id, actor.family_id, lock=True)
                self._advance_version(session, member)
            session.exec(delete(LedgerEntry).where(col(LedgerEntry.id).in_(ids)))
            return actor.family_id, per_member

        family, per_member = self._atomic("delete_transactions", work)
        removed = sum(per_member.values())
        self._audit_log.record(
            actor_id,
            "delete_transactions",
            ",".join(str(i) for i in ids),
            family_id=family,
            details={"ids": ids, "count": removed, "members": per_member},
        )
        self._logger.log("transactions_deleted", actor=actor_id, count=removed)
        return removed

    # ------------------------------------------------------------------
    # Task catalog
    # ------------------------------------------------------------------
    def create_task(
        self,
        family_id: str,
        *,
        title: str,
        category: TaskCategory | str,
        points: PointsLike,
        description: str = "",
        frequency: str = "daily",
        difficulty: TaskDifficulty | str | None = None,
    ) -> Task:
        try:
            category_value = TaskCategory(category).value
            difficulty_value = TaskDifficulty(difficulty).value if difficulty is not None else None
        except ValueError as exc:
            raise InvalidArgumentError(str(exc)) from exc
        task = Task(
            family_id=_require_family(family_id),
            category=category_value,
            title=_require_title(title),
            description=description,
            points=require_positive(to_points(points)),
            frequency=frequency,
            difficulty=difficulty_value,
        )

        def work(session: Session) -> Task:
            session.add(task)
            session.flush()
            return task

        return self._atomic("create_task", work)

    def list_tasks(self, family_id: str) -> Tuple[Task, ...]:
        family = _require_family(family_id)
        return self._read(
            lambda session: tuple(session.exec(select(Task).where(Task.family_id == family).order_by(Task.id)).all())
        )

    def complete_task(self, member_id: str, task_id: int) -> LedgerEntry:
        """Record a task completion; ``penalty`` tasks deduct instead of award."""

        _require_int_id(task_id, "task")

        def work(session: Session) -> LedgerEntry:
            member = self._load_member(session, member_id, lock=True)
            task = session.get(Task, task_id)
            if task is None or task.family_id != member.family_id:
                raise TaskNotFoundError(f"Task '{task_id}' does not exist.")
            if task.category == TaskCategory.PENALTY.value:
                kind, points = TransactionKind.PENALTY, -task.points
            else:
                kind, points = TransactionKind.EARN, task.points
            return self._append(
                session,
                member,
                title=task.title,
                points=points,
                kind=kind,
                at=self._clock(),
                task_id=task.id,
                category=task.category,
            )

        entry = self._atomic("complete_task", work)
        self._log_entry(entry)
        return entry

    # ------------------------------------------------------------------
    # Daily quota
    # ------------------------------------------------------------------
    def _quota_used(self, session: Session, member_id: str, day: date) -> int:
        counter = session.get(QuotaCounter, {"member_id": member_id, "quota_date": day})
        return counter.used_count if counter else 0

    def _consume_quota(self, session: Session, member_id: str, day: date, cap: int) -> int:
        counter = session.get(QuotaCounter, {"member_id": member_id, "quota_date": day})
        if counter is None:
            if cap < 1:
                raise QuotaExhaustedError("No exchanges are allowed today.")
            session.add(QuotaCounter(member_id=member_id, quota_date=day, used_count=1))
            session.flush()
            return 1
        result = session.exec(
            update(QuotaCounter)
            .where(
                col(QuotaCounter.member_id) == member_id,
                col(QuotaCounter.quota_date) == day,
                col(QuotaCounter.used_count) < cap,
            )
            .values(used_count=QuotaCounter.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise QuotaExhaustedError(f"Daily limit of {cap} exchanges reached.")
        set_committed_value(counter, "used_count", counter.used_count + 1)
        return counter.used_count

    def remaining_today(self, member_id: str, cap: int | None = None) -> int:
        limit = self._settings.daily_exchange_cap if cap is None else cap

        def work(session: Session) -> int:
            member = self._load_member(session, member_id)
            return max(0, limit - self._quota_used(session, member.id, self.today()))

        return self._read(work)

    def consume_quota(self, member_id: str, cap: int | None = None) -> int:
        """Use one of today's exchanges; returns the new used count."""

        limit = self._settings.daily_exchange_cap if cap is None else cap

        def work(session: Session) -> int:
            member = self._load_member(session, member_id, lock=True)
            return self._consume_quota(session, member.id, self.today(), limit)

        used = self._atomic("consume_quota", work)
        self._logger.log("quota_consumed", member=member_id, used=used, cap=limit)
        return used

    # ------------------------------------------------------------------
    # Badges
    # ------------------------------------------------------------------
    def _badge_context(self, session: Session, member_id: str) -> BadgeContext:
        entries = session.exec(
            select(LedgerEntry).where(LedgerEntry.member_id == member_id).order_by(col(LedgerEntry.seq))
        ).all()
        draws = session.exec(
            select(func.count()).select_from(LotteryRecord).where(LotteryRecord.member_id == member_id)
        ).one()
        return BadgeContext.from_entries(entries, self._settings.tz, lottery_draws=int(draws))

    def _held_badges(self, session: Session, member_id: str) -> Dict[str, Badge]:
        badges = session.exec(select(Badge).where(Badge.member_id == member_id)).all()
        return {badge.condition_key: badge for badge in badges}

    def badges(self, member_id: str) -> Tuple[Badge, ...]:
        def work(session: Session) -> Tuple[Badge, ...]:
            member = self._load_member(session, member_id)
            query = select(Badge).where(Badge.member_id == member.id).order_by(col(Badge.awarded_at).desc())
            return tuple(session.exec(query).all())

        return self._read(work)

    def get_badge(self, member_id: str, badge_id: str) -> Badge:
        _require_uuid(badge_id, "badge")

        def work(session: Session) -> Badge:
            member = self._load_member(session, member_id)
            badge = session.get(Badge, badge_id)
            if badge is None or badge.member_id != member.id:
                raise BadgeNotFoundError(f"Badge '{badge_id}' does not exist.")
            return badge

        return self._read(work)

    def badge_progress(self, member_id: str) -> Tuple[BadgeProgress, ...]:
        """Progress and earned state for every catalog entry, read in one transaction."""

        def work(session: Session) -> Tuple[BadgeProgress, ...]:
            member = self._load_member(session, member_id)
            return self._catalog.evaluate(self._badge_context(session, member.id), self._held_badges(session, member.id))

        return self._read(work)

    def progress(self, member_id: str, condition_key: str) -> Tuple[int, int]:
        if condition_key not in self._catalog:
            raise InvalidArgumentError(f"Unknown badge condition {condition_key!r}.")
        for row in self.badge_progress(member_id):
            if row.condition_key == condition_key:
                return row.progress, row.requirement
        raise AssertionError("catalog and progress out of sync")  # pragma: no cover

    def eligible(self, member_id: str) -> Tuple[str, ...]:
        def work(session: Session) -> Tuple[BadgeDefinition, ...]:
            member = self._load_member(session, member_id)
            held = self._held_badges(session, member.id)
            return self._catalog.eligible(self._badge_context(session, member.id), held)

        return tuple(definition.condition_key for definition in self._read(work))

    def _new_badge(self, member_id: str, definition: BadgeDefinition, at: datetime) -> Badge:
        return Badge(
            member_id=member_id,
            condition_key=definition.condition_key,
            badge_type=definition.badge_type.value,
            title=definition.title,
            description=definition.description,
            icon=definition.icon,
            awarded_at=at,
        )

    def grant_eligible(self, member_id: str, *, family_id: str | None = None) -> List[Badge]:
        """Grant every badge whose requirement is met; repeated calls are no-ops.

        Progress is evaluated and the badges inserted in one unit under the
        member's row lock, the same lock ledger writes and deletions take.
        """

        def work(session: Session) -> List[Badge]:
            member = self._load_member(session, member_id, family_id, lock=True)
            context = self._badge_context(session, member.id)
            held = self._held_badges(session, member.id)
            now = self._clock()
            granted = [self._new_badge(member.id, definition, now) for definition in self._catalog.eligible(context, held)]
            if granted:
                session.add_all(granted)
                session.flush()
            return granted

        granted = self._atomic("grant_badges", work)
        for badge in granted:
            self._logger.log("badge_granted", member=badge.member_id, badge=badge.id, condition=badge.condition_key)
        return granted

    # ------------------------------------------------------------------
    # Lottery
    # ------------------------------------------------------------------
    def _resolve_draw(self, session: Session, member: Member, draw: LotteryDraw, *, title: str) -> LotteryRecord:
        points = draw.resolve(self._rng, at=draw.committed_at)
        entry: Optional[LedgerEntry] = None
        if points > 0:
            entry = self._append(
                session,
                member,
                title=title,
                points=points,
                kind=TransactionKind.LOTTERY,
                at=draw.resolved_at or self._clock(),
                note=draw.source.value,
            )
        record = LotteryRecord(
            member_id=member.id,
            source=draw.source.value,
            badge_id=draw.badge_id,
            tier=draw.tier or 0,
            points_won=points,
            status=draw.status.value,
            transaction_id=entry.id if entry else None,
            created_at=draw.committed_at or self._clock(),
            resolved_at=draw.resolved_at,
        )
        session.add(record)
        session.flush()
        return record

    def _log_draw(self, record: LotteryRecord) -> None:
        self._logger.log(
            "lottery_resolved",
            member=record.member_id,
            draw=record.id,
            source=record.source,
            tier=record.tier,
            points=record.points_won,
        )

    def lottery_from_badge(self, member_id: str, badge_id: str, *, family_id: str | None = None) -> LotteryRecord:
        """Spend the badge's single ticket on a draw."""

        _require_uuid(badge_id, "badge")

        def work(session: Session) -> LotteryRecord:
            member = self._load_member(session, member_id, family_id, lock=True)
            badge = session.get(Badge, badge_id)
            if badge is None or badge.member_id != member.id:
                raise TicketNotFoundError(f"No lottery ticket for badge '{badge_id}'.")
            if badge.ticket_used:
                raise TicketAlreadyUsedError(f"The ticket for '{badge.title}' has already been used.")
            now = self._clock()
            spent = session.exec(
                update(Badge)
                .where(col(Badge.id) == badge.id, col(Badge.ticket_used).is_(False))
                .values(ticket_used=True, ticket_used_at=now)
                .execution_options(synchronize_session=False)
            )
            if spent.rowcount != 1:
                raise TicketAlreadyUsedError(f"The ticket for '{badge.title}' has already been used.")
            draw = LotteryDraw(member_id=member.id, source=LotterySource.BADGE, badge_id=badge.id)
            draw.commit(at=now)
            return self._resolve_draw(session, member, draw, title=f"Badge lottery: {badge.title}")

        record = self._atomic("lottery_from_badge", work)
        self._log_draw(record)
        return record

    def lottery_from_exchange(self, member_id: str, *, family_id: str | None = None) -> LotteryRecord:
        """Pay the exchange price and one unit of today's quota for a draw."""

        price = self._settings.exchange_price
        cap = self._settings.daily_exchange_cap

        def work(session: Session) -> Tuple[LotteryRecord, int]:
            member = self._load_member(session, member_id, family_id, lock=True)
            now = self._clock()
            day = local_day(now, self._settings.tz)
            if self._quota_used(session, member.id, day) >= cap:
                raise QuotaExhaustedError(f"Daily limit of {cap} exchanges reached.")
            balance = self._balance(session, member.id)
            if balance < price:
                raise InsufficientFundsError(f"Member '{member.name}' has {balance} points but {price} are required.")
            used = self._consume_quota(session, member.id, day, cap)
            self._append(
                session,
                member,
                title="Lottery exchange",
                points=-price,
                kind=TransactionKind.EXCHANGE,
                at=now,
            )
            draw = LotteryDraw(member_id=member.id, source=LotterySource.EXCHANGE)
            draw.commit(at=now)
            return self._resolve_draw(session, member, draw, title="Exchange lottery prize"), used

        record, used = self._atomic("lottery_from_exchange", work)
        self._logger.log("quota_consumed", member=member_id, used=used, cap=cap)
        self._log_draw(record)
        return record

    def lottery_stats(self, member_id: str) -> LotteryStats:
        cap = self._settings.daily_exchange_cap

        def work(session: Session) -> LotteryStats:
            member = self._load_member(session, member_id)
            records = session.exec(select(LotteryRecord).where(LotteryRecord.member_id == member.id)).all()
            pending = session.exec(
                select(func.count())
                .select_from(Badge)
                .where(Badge.member_id == member.id, col(Badge.ticket_used).is_(False))
            ).one()
            used = self._quota_used(session, member.id, self.today())
            return LotteryStats(
                total_lottery_count=len(records),
                total_points_won=sum(record.points_won for record in records),
                badge_lottery_count=sum(1 for record in records if record.source == LotterySource.BADGE.value),
                exchange_lottery_count=sum(1 for record in records if record.source == LotterySource.EXCHANGE.value),
                today_exchange_count=used,
                remaining_exchange_count=max(0, cap - used),
                pending_badge_count=int(pending),
            )

        return self._read(work)

    def pending_tickets(self, member_id: str) -> Tuple[Badge, ...]:
        def work(session: Session) -> Tuple[Badge, ...]:
            member = self._load_member(session, member_id)
            query = (
                select(Badge)
                .where(Badge.member_id == member.id, col(Badge.ticket_used).is_(False))
                .order_by(col(Badge.awarded_at), col(Badge.id))
            )
            return tuple(session.exec(query).all())

        return self._read(work)

    def lottery_history(self, member_id: str) -> Tuple[LotteryRecord, ...]:
        def work(session: Session) -> Tuple[LotteryRecord, ...]:
            member = self._load_member(session, member_id)
            query = (
                select(LotteryRecord)
                .where(LotteryRecord.member_id == member.id)
                .order_by(col(LotteryRecord.created_at).desc())
            )
            return tuple(session.exec(query).all())

        return self._read(work)

    # ------------------------------------------------------------------
    # Reward catalog & wishlist
    # ------------------------------------------------------------------
    def _reward_for(self, session: Session, reward_id: int, family_id: str) -> Reward:
        _require_int_id(reward_id, "reward")
        reward = session.get(Reward, reward_id)
        if reward is None or reward.family_id != family_id:
            raise RewardNotFoundError(f"Reward '{reward_id}' does not exist.")
        return reward

    def _new_reward(self, title: str, points: PointsLike, reward_type: RewardType | str, image_url: str | None) -> Reward:
        try:
            type_value = RewardType(reward_type).value
        except ValueError as exc:
            raise InvalidArgumentError(f"Unknown reward type {reward_type!r}.") from exc
        return Reward(
            family_id="",
            title=_require_title(title),
            points=require_positive(to_points(points)),
            reward_type=type_value,
            image_url=image_url,
        )

    def create_reward(
        self,
        actor_id: str,
        *,
        title: str,
        points: PointsLike,
        reward_type: RewardType | str = RewardType.PHYSICAL,
        image_url: str | None = None,
    ) -> Reward:
        reward = self._new_reward(title, points, reward_type, image_url)

        def work(session: Session) -> Reward:
            actor = self._load_admin(session, actor_id)
            reward.family_id = actor.family_id
            session.add(reward)
            session.flush()
            return reward

        created = self._atomic("create_reward", work)
        self._audit_log.record(
            actor_id,
            "create_reward",
            str(created.id),
            family_id=created.family_id,
            details={"title": created.title, "points": created.points},
        )
        return created

    def propose_wish(
        self,
        member_id: str,
        *,
        title: str,
        points: PointsLike,
        reward_type: RewardType | str = RewardType.PHYSICAL,
        image_url: str | None = None,
    ) -> Reward:
        """Submit a wish; it stays ``pending`` until an admin reviews it."""

        reward = self._new_reward(title, points, reward_type, image_url)

        def work(session: Session) -> Reward:
            member = self._load_member(session, member_id)
            reward.family_id = member.family_id
            reward.status = RewardStatus.PENDING.value
            reward.requested_by = member.id
            reward.requested_at = self._clock()
            session.add(reward)
            session.flush()
            return reward

        created = self._atomic("propose_wish", work)
        self._logger.log("wish_proposed", member=member_id, reward=created.id)
        return created

    def _review_wish(self, actor_id: str, reward_id: int, outcome: RewardStatus) -> Reward:
        def work(session: Session) -> Reward:
            actor = self._load_admin(session, actor_id)
            reward = self._reward_for(session, reward_id, actor.family_id)
            if reward.status != RewardStatus.PENDING.value:
                raise InvalidArgumentError(f"Reward '{reward.title}' is not awaiting review.")
            reward.status = outcome.value
            reward.resolved_by = actor.id
            reward.resolved_at = self._clock()
            session.add(reward)
            session.flush()
            return reward

        reviewed = self._atomic(f"review_wish_{outcome.value}", work)
        self._audit_log.record(
            actor_id,
            f"wish_{outcome.value}",
            str(reward_id),
            family_id=reviewed.family_id,
            details={"requested_by": reviewed.requested_by, "points": reviewed.points},
        )
        return reviewed

    def approve_wish(self, actor_id: str, reward_id: int) -> Reward:
        return self._review_wish(actor_id, reward_id, RewardStatus.ACTIVE)

    def reject_wish(self, actor_id: str, reward_id: int) -> Reward:
        return self._review_wish(actor_id, reward_id, RewardStatus.REJECTED)

    def list_rewards(self, family_id: str, *, viewer_id: str | None = None) -> Tuple[Reward, ...]:
        """Rewards visible to ``viewer_id``: rejected ones are always hidden.

        Admins see every pending wish; other members only their own.
        """

        family = _require_family(family_id)

        def work(session: Session) -> Tuple[Reward, ...]:
            viewer = self._load_member(session, viewer_id, family) if viewer_id else None
            rewards = session.exec(
                select(Reward)
                .where(Reward.family_id == family, Reward.status != RewardStatus.REJECTED.value)
                .order_by(col(Reward.points), col(Reward.id))
            ).all()
            visible = []
            for reward in rewards:
                if reward.status == RewardStatus.PENDING.value:
                    if viewer is None:
                        continue
                    if viewer.role != MemberRole.ADMIN.value and reward.requested_by != viewer.id:
                        continue
                visible.append(reward)
            return tuple(visible)

        return self._read(work)

    def redeem_reward(self, member_id: str, reward_id: int) -> LedgerEntry:
        """Spend points on an ``active`` reward."""

        def work(session: Session) -> LedgerEntry:
            member = self._load_member(session, member_id, lock=True)
            reward = self._reward_for(session, reward_id, member.family_id)
            if reward.status != RewardStatus.ACTIVE.value:
                raise InvalidArgumentError(f"Reward '{reward.title}' is not redeemable.")
            return self._append(
                session,
                member,
                title=f"Redeemed: {reward.title}",
                points=-reward.points,
                kind=TransactionKind.REDEEM,
                at=self._clock(),
                reward_id=reward.id,
            )

        entry = self._atomic("redeem_reward", work)
        self._log_entry(entry)
        return entry

    # ------------------------------------------------------------------
    # RPC surface
    # ------------------------------------------------------------------
    def get_lottery_stats(self, member_id: str) -> Dict[str, int]:
        return self.lottery_stats(member_id).as_dict()

    def get_pending_badge_lotteries(self, member_id: str) -> List[Dict[str, str]]:
        return [{"ticketId": badge.id, "badgeTitle": badge.title} for badge in self.pending_tickets(member_id)]

    def grant_eligible_badges(self, member_id: str, family_id: str) -> int:
        return len(self.grant_eligible(member_id, family_id=_require_family(family_id)))

    def get_all_badges_progress(self, member_id: str) -> List[Dict[str, Any]]:
        return [row.as_dict() for row in self.badge_progress(member_id)]

    def rpc_lottery_from_badge(self, member_id: str, badge_id: str, family_id: str) -> int:
        return self.lottery_from_badge(member_id, badge_id, family_id=_require_family(family_id)).points_won

    def rpc_lottery_from_exchange(self, member_id: str, family_id: str) -> int:
        return self.lottery_from_exchange(member_id, family_id=_require_family(family_id)).points_won

    def delete_family_data(self, family_id: str, *, actor_id: str | None = None) -> Dict[str, int]:
        """Purge every row belonging to the family in one transaction.

        The family's members are locked in id order before anything is deleted.
        """

        family = _require_family(family_id)

        def work(session: Session) -> Dict[str, int]:
            if actor_id is not None:
                self._load_admin(session, actor_id, family)
            member_ids = [member.id for member in session.exec(_family_lock_query(family)).all()]
            counts: Dict[str, int] = {}
            if member_ids:
                for label, model in (
                    ("transactions", LedgerEntry),
                    ("badges", Badge),
                    ("quota_counters", QuotaCounter),
                    ("lottery_records", LotteryRecord),
                ):
                    result = session.exec(delete(model).where(col(model.member_id).in_(member_ids)))
                    counts[label] = result.rowcount
            counts["tasks"] = session.exec(delete(Task).where(col(Task.family_id) == family)).rowcount
            counts["rewards"] = session.exec(delete(Reward).where(col(Reward.family_id) == family)).rowcount
            counts["members"] = session.exec(delete(Member).where(col(Member.family_id) == family)).rowcount
            return counts

        counts = self._atomic("delete_family_data", work)
        self._audit_log.record(actor_id or "system", "delete_family_data", family, family_id=family, details=counts)
        self._logger.log("family_deleted", family=family, **counts)
        return counts


__all__ = ["PointsBank"]
