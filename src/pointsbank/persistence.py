"""Persistence and SQLModel definitions for the Points Bank engine."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import DateTime, Index, UniqueConstraint, event, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine

from .config import SETTINGS
from .models import RewardStatus, utcnow


def new_id() -> str:
    return str(uuid4())


# Timestamps are stored as naive UTC; see models.utcnow.
NaiveUTC = DateTime(timezone=False)


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class Member(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    family_id: str = Field(index=True)
    name: str
    role: str = "child"  # admin|child
    avatar_color: Optional[str] = None
    # Ledger sequence counter; every append or delete advances it.
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveUTC)


class LedgerEntry(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("member_id", "seq", name="uq_ledgerentry_member_seq"),
        Index("idx_ledgerentry_member_time", "member_id", "timestamp"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    member_id: str
    seq: int
    title: str
    points: int
    kind: str  # earn|penalty|redeem|transfer|lottery|exchange|system
    timestamp: datetime = Field(default_factory=utcnow, sa_type=NaiveUTC)
    counterparty_member_id: Optional[str] = None
    task_id: Optional[int] = None
    category: Optional[str] = None
    reward_id: Optional[int] = None
    note: Optional[str] = None


class Badge(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("member_id", "condition_key", name="uq_badge_member_condition"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    member_id: str = Field(index=True)
    condition_key: str
    badge_type: str
    title: str
    description: str = ""
    icon: str = ""
    awarded_at: datetime = Field(default_factory=utcnow, sa_type=NaiveUTC)
    ticket_used: bool = False
    ticket_used_at: Optional[datetime] = Field(default=None, sa_type=NaiveUTC)


class QuotaCounter(SQLModel, table=True):
    member_id: str = Field(primary_key=True)
    quota_date: date = Field(primary_key=True)
    used_count: int = 0


class LotteryRecord(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("badge_id", name="uq_lotteryrecord_badge"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    member_id: str = Field(index=True)
    source: str  # badge|exchange
    badge_id: Optional[str] = None
    tier: int = 0
    points_won: int = 0
    status: str = "resolved"
    transaction_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveUTC)
    resolved_at: Optional[datetime] = Field(default=None, sa_type=NaiveUTC)


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: str = Field(index=True)
    category: str
    title: str
    description: str = ""
    points: int
    frequency: str = "daily"
    difficulty: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveUTC)


class Reward(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: str = Field(index=True)
    title: str
    points: int
    reward_type: str = "physical"  # physical|privilege
    image_url: Optional[str] = None
    status: str = RewardStatus.ACTIVE.value
    requested_by: Optional[str] = None
    requested_at: Optional[datetime] = Field(default=None, sa_type=NaiveUTC)
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = Field(default=None, sa_type=NaiveUTC)
    created_at: datetime = Field(default_factory=utcnow, sa_type=NaiveUTC)


# ---------------------------------------------------------------------------
# Engine construction
# ---------------------------------------------------------------------------
def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def build_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine; SQLite engines serialise writers with ``BEGIN IMMEDIATE``."""

    if not _is_sqlite(url):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    sqlite_engine = create_engine(url, echo=echo, **kwargs)

    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _record) -> None:  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _begin_immediate(conn) -> None:  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return sqlite_engine


engine = build_engine(SETTINGS.database_url)


def open_session(bind: Engine) -> Session:
    """Return a session whose rows stay readable after commit."""

    return Session(bind, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Database initialisation & migrations
# ---------------------------------------------------------------------------
def create_db_and_tables(bind: Engine | None = None) -> None:
    SQLModel.metadata.create_all(bind or engine)


def _column_exists(conn: Connection, table: str, column: str) -> bool:
    return any(info["name"] == column for info in inspect(conn).get_columns(table))


def run_migrations(bind: Engine | None = None) -> None:
    """Bring databases created by earlier releases up to the current schema."""

    target = bind or engine
    with target.begin() as conn:
        if not _column_exists(conn, "member", "version"):
            conn.execute(text("ALTER TABLE member ADD COLUMN version INTEGER DEFAULT 0"))
        if not _column_exists(conn, "member", "avatar_color"):
            conn.execute(text("ALTER TABLE member ADD COLUMN avatar_color VARCHAR"))
        if not _column_exists(conn, "badge", "ticket_used_at"):
            conn.execute(text("ALTER TABLE badge ADD COLUMN ticket_used_at TIMESTAMP"))
        if not _column_exists(conn, "lotteryrecord", "transaction_id"):
            conn.execute(text("ALTER TABLE lotteryrecord ADD COLUMN transaction_id INTEGER"))
        conn.execute(
            text(
                "CREATE INDEX IF NOT EXISTS idx_lotteryrecord_member_source "
                "ON lotteryrecord(member_id, source)"
            )
        )


def init_db(bind: Engine | None = None) -> None:
    create_db_and_tables(bind)
    run_migrations(bind)


__all__ = [
    "engine",
    "Member",
    "LedgerEntry",
    "Badge",
    "QuotaCounter",
    "LotteryRecord",
    "Task",
    "Reward",
    "build_engine",
    "create_db_and_tables",
    "init_db",
    "new_id",
    "open_session",
    "run_migrations",
]
