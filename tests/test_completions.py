from datetime import date, datetime, timedelta

import pytest

from kidstars.completions import CompletionGateway, DuplicatePolicy, parse_duplicate_policy
from kidstars.exceptions import (
    ConflictRetryExhaustedError,
    InvalidTaskError,
    NotFoundError,
    ValidationError,
    WriteConflict,
)
from kidstars.ledger import StarLedger
from kidstars.models import ChildProfile, CompletionStatus, StarType, TaskDefinition, TransactionType
from kidstars.store import ChangeSet, InMemoryStarStore
from kidstars.streaks import StreakTracker


class ConflictingStore(InMemoryStarStore):
    """Store whose commits always lose to another writer."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    def apply(self, changes: ChangeSet) -> None:
        self.attempts += 1
        raise WriteConflict("another writer won")


class Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


def build(trust_level: int = 1, duplicate_policy=DuplicatePolicy.ALLOW, store=None, **options):
    clock = Clock(datetime(2024, 4, 1, 17, 0))
    store = store if store is not None else InMemoryStarStore()
    store.add_child(ChildProfile(id="ava", family_id="fam", name="Ava", trust_level=trust_level))
    store.add_child(ChildProfile(id="ben", family_id="fam", name="Ben", trust_level=trust_level))
    store.add_child(ChildProfile(id="zoe", family_id="other", name="Zoe", trust_level=trust_level))
    store.add_task(
        TaskDefinition(id="dishes", family_id="fam", title="Dishes", star_value=10, assigned_child_ids=("ava", "ben"))
    )
    ledger = StarLedger(store, clock=clock, **options)
    streaks = StreakTracker(store, clock=clock, **options)
    gateway = CompletionGateway(store, ledger, streaks, duplicate_policy=duplicate_policy, clock=clock, **options)
    return store, gateway, clock


def test_low_trust_completion_waits_for_a_parent() -> None:
    store, gateway, _ = build(trust_level=1)

    completion_id = gateway.submit("ava", "dishes")

    completion = store.get_completion(completion_id)
    assert completion.status is CompletionStatus.PENDING
    assert completion.stars_awarded == 10
    assert completion.star_type is StarType.GROWTH
    assert completion.family_id == "fam"
    child = store.get_child("ava")
    assert child.balance(StarType.GROWTH) == 0
    assert child.streaks.current_streak == 0
    assert store.transactions("ava") == ()


def test_trusted_completion_is_auto_approved_in_one_commit() -> None:
    store, gateway, _ = build(trust_level=4)

    completion_id = gateway.submit("ava", "dishes")

    completion = store.get_completion(completion_id)
    assert completion.status is CompletionStatus.AUTO_APPROVED
    assert completion.decided_at == completion.completed_at
    child = store.get_child("ava")
    assert child.balance(StarType.GROWTH) == 10
    assert child.streaks.current_streak == 1
    assert child.streaks.last_completion_date == date(2024, 4, 1)
    assert child.version == 1
    [entry] = store.transactions("ava")
    assert entry.type is TransactionType.EARNED
    assert entry.related_id == completion_id


def test_exhausted_retries_leave_no_completion_behind() -> None:
    store, gateway, _ = build(trust_level=4, store=ConflictingStore(), max_attempts=3)

    with pytest.raises(ConflictRetryExhaustedError):
        gateway.submit("ava", "dishes")

    assert store.attempts == 3
    assert store.completions(child_id="ava") == ()
    assert store.transactions("ava") == ()
    child = store.get_child("ava")
    assert child.balance(StarType.GROWTH) == 0
    assert child.streaks.current_streak == 0


def test_stars_awarded_is_fixed_at_submission() -> None:
    store, gateway, _ = build()
    completion_id = gateway.submit("ava", "dishes")

    store.add_task(
        TaskDefinition(id="dishes", family_id="fam", title="Dishes", star_value=99, assigned_child_ids=("ava", "ben"))
    )

    assert store.get_completion(completion_id).stars_awarded == 10


def test_task_validation() -> None:
    store, gateway, _ = build()
    store.add_task(
        TaskDefinition(id="old", family_id="fam", title="Old", star_value=5, is_active=False, assigned_child_ids=("ava",))
    )
    store.add_task(TaskDefinition(id="nobody", family_id="fam", title="Sweep", star_value=5))
    store.add_task(TaskDefinition(id="bens", family_id="fam", title="Feed cat", star_value=5, assigned_child_ids=("ben",)))

    with pytest.raises(InvalidTaskError):
        gateway.submit("ava", "missing")
    with pytest.raises(InvalidTaskError):
        gateway.submit("ava", "old")
    with pytest.raises(InvalidTaskError):
        gateway.submit("zoe", "dishes")
    with pytest.raises(InvalidTaskError):
        gateway.submit("ava", "bens")
    with pytest.raises(InvalidTaskError):
        gateway.submit("ava", "nobody")
    with pytest.raises(NotFoundError):
        gateway.submit("ghost", "dishes")

    assert gateway.submit("ben", "bens")
    assert store.completions(child_id="ava") == ()


def test_duplicates_allowed_by_default() -> None:
    store, gateway, _ = build()

    gateway.submit("ava", "dishes")
    gateway.submit("ava", "dishes")

    assert len(store.completions(child_id="ava")) == 2


def test_once_per_day_policy_rejects_same_day_duplicate() -> None:
    store, gateway, clock = build(duplicate_policy="once_per_day")
    gateway.submit("ava", "dishes")

    with pytest.raises(ValidationError):
        gateway.submit("ava", "dishes")

    gateway.submit("ben", "dishes")
    clock.advance(days=1)
    gateway.submit("ava", "dishes")
    assert len(store.completions(child_id="ava")) == 2


def test_parse_duplicate_policy() -> None:
    assert parse_duplicate_policy(" ONCE_PER_DAY ") is DuplicatePolicy.ONCE_PER_DAY
    with pytest.raises(ValidationError):
        parse_duplicate_policy("sometimes")
