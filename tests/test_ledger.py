import random
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from pointsbank.exceptions import (
    InsufficientFundsError,
    InvalidArgumentError,
    MemberNotFoundError,
    NotFoundError,
    TransactionNotFoundError,
)
from pointsbank.ledger import current_balance, summarize_history, total_earned, validate_movement
from pointsbank.models import TransactionKind
from pointsbank.points import require_positive, to_points


def _entry(points: int, kind: TransactionKind, *, days_ago: int = 0, now: datetime = datetime(2024, 3, 10)):
    return SimpleNamespace(points=points, kind=kind.value, timestamp=now - timedelta(days=days_ago))


def test_to_points_rejects_coercion() -> None:
    assert to_points(12) == 12
    assert to_points(" -4 ") == -4
    for bad in (True, 1.5, "1.5", None):
        with pytest.raises(InvalidArgumentError):
            to_points(bad)
    with pytest.raises(InvalidArgumentError):
        require_positive(0)
    assert require_positive(0, allow_zero=True) == 0


@pytest.mark.parametrize(
    "points, kind",
    [
        (0, TransactionKind.SYSTEM),
        (-5, TransactionKind.EARN),
        (-1, TransactionKind.LOTTERY),
        (3, TransactionKind.PENALTY),
        (3, TransactionKind.REDEEM),
        (10, TransactionKind.EXCHANGE),
    ],
)
def test_validate_movement_rejects_wrong_sign(points: int, kind: TransactionKind) -> None:
    with pytest.raises(InvalidArgumentError):
        validate_movement(points, kind)


def test_balance_and_total_earned_folds() -> None:
    entries = [
        _entry(20, TransactionKind.EARN),
        _entry(-5, TransactionKind.PENALTY),
        _entry(7, TransactionKind.TRANSFER),
        _entry(-10, TransactionKind.EXCHANGE),
        _entry(4, TransactionKind.LOTTERY),
    ]
    assert current_balance(entries) == 16
    assert total_earned(entries) == 31
    assert current_balance([]) == 0


def test_history_summary_groups_kinds() -> None:
    now = datetime(2024, 3, 10)
    entries = [
        _entry(20, TransactionKind.EARN, days_ago=10, now=now),
        _entry(6, TransactionKind.LOTTERY, now=now),
        _entry(-3, TransactionKind.PENALTY, now=now),
        _entry(-10, TransactionKind.EXCHANGE, now=now),
        _entry(-8, TransactionKind.REDEEM, now=now),
        _entry(-2, TransactionKind.TRANSFER, now=now),
    ]
    summary = summarize_history(entries, now=now)
    assert summary.total == 6
    assert summary.week == 5
    assert (summary.earn_count, summary.earn_points) == (2, 26)
    assert (summary.penalty_count, summary.penalty_points) == (2, -13)
    assert (summary.redeem_count, summary.redeem_points) == (1, -8)
    assert summary.transfer_count == 1
    assert summary.net == 3
    assert summary.as_dict()["byKind"]["exchange"] == 1


def test_append_and_list_in_order(bank, kid, clock) -> None:
    first = bank.append(kid.id, "Homework", 15, TransactionKind.EARN)
    clock.advance(minutes=5)
    second = bank.append(kid.id, "Broke a cup", -4, TransactionKind.PENALTY)

    entries = bank.list_for_member(kid.id)
    assert [entry.id for entry in entries] == [first.id, second.id]
    assert [entry.seq for entry in entries] == [1, 2]
    assert bank.current_balance(kid.id) == 11
    assert bank.total_earned(kid.id) == 15
    penalties = bank.list_for_member(kid.id, kinds=[TransactionKind.PENALTY])
    assert [entry.id for entry in penalties] == [second.id]
    assert [entry.id for entry in bank.list_for_member(kid.id, limit=1, offset=1)] == [second.id]
    assert [event["kind"] for event in bank.logger.events("transaction_appended")] == ["earn", "penalty"]


def test_append_validation_leaves_ledger_untouched(bank, kid) -> None:
    with pytest.raises(InvalidArgumentError):
        bank.append(kid.id, "Nothing", 0, TransactionKind.SYSTEM)
    with pytest.raises(InvalidArgumentError):
        bank.append(kid.id, "Odd", 5, "bonus")
    with pytest.raises(InvalidArgumentError):
        bank.append(kid.id, "Use transfer", 5, TransactionKind.TRANSFER)
    with pytest.raises(InsufficientFundsError):
        bank.append(kid.id, "Candy", -5, TransactionKind.REDEEM)
    with pytest.raises(MemberNotFoundError):
        bank.append("00000000-0000-4000-8000-000000000000", "Ghost", 5, TransactionKind.EARN)
    with pytest.raises(InvalidArgumentError):
        bank.append("not-a-uuid", "Ghost", 5, TransactionKind.EARN)
    assert bank.list_for_member(kid.id) == ()
    assert bank.current_balance(kid.id) == 0


def test_penalty_may_drive_balance_negative(bank, parent, kid) -> None:
    entry = bank.apply_penalty(parent.id, kid.id, 7, "Late to bed")
    assert entry.points == -7
    assert bank.current_balance(kid.id) == -7
    event = bank.audit_log.latest()
    assert event.action == "apply_penalty" and event.family_id == kid.family_id
    assert event.details == {"points": -7, "transaction": entry.id}
    with pytest.raises(PermissionError):
        bank.apply_penalty(kid.id, kid.id, 1, "Self punishment")


def test_transfer_moves_points_within_family(bank, kid) -> None:
    sibling = bank.create_member(kid.family_id, "Xiao Hong")
    bank.append(kid.id, "Chores", 30, TransactionKind.EARN)

    outgoing, incoming = bank.transfer(kid.id, sibling.id, 12, message="For the book")

    assert (outgoing.points, incoming.points) == (-12, 12)
    assert outgoing.counterparty_member_id == sibling.id
    assert incoming.note == "For the book"
    assert bank.current_balance(kid.id) == 18
    assert bank.current_balance(sibling.id) == 12
    # incoming transfers count as earned
    assert bank.total_earned(sibling.id) == 12

    with pytest.raises(InsufficientFundsError):
        bank.transfer(kid.id, sibling.id, 100)
    with pytest.raises(InvalidArgumentError):
        bank.transfer(kid.id, kid.id, 1)
    stranger = bank.create_member("other-family", "Stranger")
    with pytest.raises(MemberNotFoundError):
        bank.transfer(kid.id, stranger.id, 1)
    assert bank.current_balance(kid.id) == 18


def test_history_and_profile(bank, kid) -> None:
    bank.append(kid.id, "Reading", 60, TransactionKind.EARN)
    bank.append(kid.id, "Shouting", -5, TransactionKind.PENALTY)

    summary = bank.history_summary(kid.id)
    assert summary.total == 2 and summary.net == 55

    profile = bank.member_profile(kid.id)
    assert profile["balance"] == 55
    assert profile["totalEarned"] == 60
    assert profile["level"]["level"] == 2
    assert profile["badgeCount"] == 0


def test_admin_delete_transactions(bank, parent, kid) -> None:
    keep = bank.append(kid.id, "Homework", 10, TransactionKind.EARN)
    drop = bank.append(kid.id, "Mistake", 50, TransactionKind.EARN)

    assert bank.delete_transactions(parent.id, [drop.id]) == 1
    assert [entry.id for entry in bank.list_for_member(kid.id)] == [keep.id]
    assert bank.current_balance(kid.id) == 10

    # seq keeps advancing after a delete
    later = bank.append(kid.id, "Dishes", 5, TransactionKind.EARN)
    assert later.seq == 4

    with pytest.raises(PermissionError):
        bank.delete_transactions(kid.id, [keep.id])
    with pytest.raises(TransactionNotFoundError):
        bank.delete_transactions(parent.id, [keep.id, 999_999])
    assert [entry.id for entry in bank.list_for_member(kid.id)] == [keep.id, later.id]

    (event,) = bank.audit_log.entries(action="delete_transactions")
    assert event.family_id == kid.family_id
    assert event.details == {"ids": [drop.id], "count": 1, "members": {kid.id: 1}}


def test_admin_adjustment_in_either_direction(bank, parent, kid) -> None:
    bank.adjust_balance(parent.id, kid.id, 25, "Birthday bonus")
    correction = bank.adjust_balance(parent.id, kid.id, -5, "Correction")
    assert correction.kind == TransactionKind.SYSTEM.value
    assert bank.current_balance(kid.id) == 20
    assert bank.total_earned(kid.id) == 25
    assert bank.level(kid.id).level == 1
    with pytest.raises(PermissionError):
        bank.adjust_balance(kid.id, kid.id, 100, "Self bonus")
    with pytest.raises(InvalidArgumentError):
        bank.adjust_balance(parent.id, kid.id, 0, "Nothing")
    assert [event.action for event in bank.audit_log.entries(target=kid.id)] == ["adjust_balance", "adjust_balance"]


class TopPrizeRandom(random.Random):
    """Always lands on the lowest value of the best tier."""

    def randrange(self, *args, **kwargs) -> int:
        return 99

    def randint(self, a: int, b: int) -> int:
        return a


def test_lottery_prize_credit_cannot_be_deleted(make_bank, parent, kid) -> None:
    bank = make_bank(rng=TopPrizeRandom())
    bank.append(kid.id, "Allowance", 10, TransactionKind.EARN)
    record = bank.lottery_from_exchange(kid.id)
    assert record.points_won == 11 and record.transaction_id is not None

    with pytest.raises(InvalidArgumentError):
        bank.delete_transactions(parent.id, [record.transaction_id])

    assert bank.current_balance(kid.id) == 11
    assert bank.lottery_history(kid.id)[0].transaction_id == record.transaction_id
    assert bank.audit_log.entries(action="delete_transactions") == ()


def test_unknown_transaction_is_not_found(bank, parent) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        bank.delete_transactions(parent.id, [424_242])
    assert excinfo.value.code == "not_found"


def test_list_for_member_rejects_unknown_kind(bank, kid) -> None:
    bank.append(kid.id, "Homework", 10, TransactionKind.EARN)
    with pytest.raises(InvalidArgumentError):
        bank.list_for_member(kid.id, kinds=["bonus"])
    assert len(bank.list_for_member(kid.id, kinds=["earn"])) == 1


def test_timestamps_round_trip_as_naive_utc(bank, kid, clock) -> None:
    clock.advance(minutes=3, microseconds=250)
    entry = bank.append(kid.id, "Homework", 10, TransactionKind.EARN)

    (stored,) = bank.list_for_member(kid.id)
    assert stored.id == entry.id
    assert stored.timestamp == clock.now
    assert stored.timestamp.tzinfo is None
    assert bank.get_member(kid.id).created_at.tzinfo is None
