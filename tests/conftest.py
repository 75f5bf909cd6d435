from __future__ import annotations

import random
from datetime import datetime, timedelta

import pytest

from pointsbank.config import Settings
from pointsbank.models import MemberRole
from pointsbank.ops import StructuredLogger
from pointsbank.persistence import build_engine
from pointsbank.service import PointsBank

FAMILY = "family-lin"


class FakeClock:
    """Naive UTC clock the tests move by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class NoPrizeRandom(random.Random):
    """Always lands on the empty tier."""

    def randrange(self, *args, **kwargs) -> int:
        return 0


@pytest.fixture()
def clock() -> FakeClock:
    # 12:00 in Asia/Shanghai
    return FakeClock(datetime(2024, 3, 1, 4, 0, 0))


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(database_url=f"sqlite:///{tmp_path / 'bank.db'}", max_retries=5)


@pytest.fixture()
def make_bank(settings, clock):
    engines = []

    def factory(**overrides) -> PointsBank:
        options = {"settings": settings, "clock": clock, "rng": random.Random(7), "logger": StructuredLogger()}
        options.update(overrides)
        engine = build_engine(options["settings"].database_url)
        engines.append(engine)
        return PointsBank(engine=engine, **options)

    yield factory
    for engine in engines:
        engine.dispose()


@pytest.fixture()
def bank(make_bank) -> PointsBank:
    return make_bank()


@pytest.fixture()
def parent(bank):
    return bank.create_member(FAMILY, "Mum", role=MemberRole.ADMIN)


@pytest.fixture()
def kid(bank):
    return bank.create_member(FAMILY, "Xiao Ming")


@pytest.fixture()
def no_prize_rng() -> random.Random:
    return NoPrizeRandom()
