import pytest

from pointsbank.exceptions import InsufficientFundsError, InvalidArgumentError, RewardNotFoundError, TaskNotFoundError
from pointsbank.models import RewardStatus, RewardType, TaskCategory, TaskDifficulty, TransactionKind


def test_admin_rewards_are_active_and_redeemable(bank, parent, kid) -> None:
    reward = bank.create_reward(parent.id, title="Movie night", points=30, reward_type=RewardType.PRIVILEGE)
    assert reward.status == RewardStatus.ACTIVE.value
    assert reward.family_id == parent.family_id

    bank.append(kid.id, "Chores", 45, TransactionKind.EARN)
    entry = bank.redeem_reward(kid.id, reward.id)

    assert entry.kind == TransactionKind.REDEEM.value
    assert entry.points == -30
    assert entry.reward_id == reward.id
    assert bank.current_balance(kid.id) == 15


def test_redeem_beyond_balance_changes_nothing(bank, parent, kid) -> None:
    reward = bank.create_reward(parent.id, title="Lego set", points=500)
    bank.append(kid.id, "Chores", 20, TransactionKind.EARN)

    with pytest.raises(InsufficientFundsError):
        bank.redeem_reward(kid.id, reward.id)

    assert bank.current_balance(kid.id) == 20
    assert len(bank.list_for_member(kid.id)) == 1


def test_children_cannot_create_rewards(bank, kid) -> None:
    with pytest.raises(PermissionError):
        bank.create_reward(kid.id, title="Unlimited TV", points=1)


def test_wishlist_workflow(bank, parent, kid) -> None:
    wish = bank.propose_wish(kid.id, title="Roller skates", points=80)
    assert wish.status == RewardStatus.PENDING.value
    assert wish.requested_by == kid.id

    bank.append(kid.id, "Chores", 100, TransactionKind.EARN)
    with pytest.raises(InvalidArgumentError):
        bank.redeem_reward(kid.id, wish.id)
    with pytest.raises(PermissionError):
        bank.approve_wish(kid.id, wish.id)

    approved = bank.approve_wish(parent.id, wish.id)
    assert approved.status == RewardStatus.ACTIVE.value
    assert approved.resolved_by == parent.id
    with pytest.raises(InvalidArgumentError):
        bank.reject_wish(parent.id, wish.id)

    bank.redeem_reward(kid.id, wish.id)
    assert bank.current_balance(kid.id) == 20
    (review,) = bank.audit_log.entries(action="wish_active", target=str(wish.id))
    assert review.family_id == kid.family_id
    assert review.details == {"requested_by": kid.id, "points": wish.points}


def test_rejected_wishes_are_hidden(bank, parent, kid) -> None:
    sibling = bank.create_member(kid.family_id, "Xiao Hong")
    shelf = bank.create_reward(parent.id, title="Ice cream", points=10)
    mine = bank.propose_wish(kid.id, title="Puppy", points=5000)
    theirs = bank.propose_wish(sibling.id, title="Drum kit", points=900)

    def titles(viewer_id=None):
        return [reward.title for reward in bank.list_rewards(kid.family_id, viewer_id=viewer_id)]

    assert titles() == [shelf.title]
    assert titles(kid.id) == [shelf.title, mine.title]
    assert titles(parent.id) == [shelf.title, theirs.title, mine.title]

    rejected = bank.reject_wish(parent.id, mine.id)
    assert rejected.status == RewardStatus.REJECTED.value
    assert titles(parent.id) == [shelf.title, theirs.title]
    with pytest.raises(InvalidArgumentError):
        bank.approve_wish(parent.id, mine.id)


def test_rewards_are_scoped_to_family(bank, parent) -> None:
    reward = bank.create_reward(parent.id, title="Zoo trip", points=60)
    outsider = bank.create_member("family-wang", "Wang Lei")
    with pytest.raises(RewardNotFoundError):
        bank.redeem_reward(outsider.id, reward.id)
    with pytest.raises(InvalidArgumentError):
        bank.create_reward(parent.id, title="Free", points=0)
    with pytest.raises(InvalidArgumentError):
        bank.propose_wish(outsider.id, title="Bad type", points=3, reward_type="voucher")


def test_task_catalog(bank, kid) -> None:
    task = bank.create_task(
        kid.family_id,
        title="Read 20 pages",
        category=TaskCategory.LEARNING,
        points=8,
        difficulty=TaskDifficulty.MEDIUM,
    )
    assert [item.title for item in bank.list_tasks(kid.family_id)] == ["Read 20 pages"]
    entry = bank.complete_task(kid.id, task.id)
    assert entry.task_id == task.id
    assert entry.category == TaskCategory.LEARNING.value
    assert entry.points == 8

    other_family_task = bank.create_task("family-wang", title="Walk dog", category="chores", points=3)
    with pytest.raises(TaskNotFoundError):
        bank.complete_task(kid.id, other_family_task.id)
    with pytest.raises(InvalidArgumentError):
        bank.create_task(kid.family_id, title="Nap", category="sleeping", points=3)
    with pytest.raises(InvalidArgumentError):
        bank.create_task(kid.family_id, title="Nap", category="chores", points=-3)
