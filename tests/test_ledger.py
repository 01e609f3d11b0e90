import threading
from datetime import datetime

import pytest

from kidstars.exceptions import (
    ConflictRetryExhaustedError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
    WriteConflict,
)
from kidstars.ledger import StarLedger
from kidstars.models import ChildProfile, StarType, TransactionType
from kidstars.ops import StructuredLogger
from kidstars.store import ChangeSet, InMemoryStarStore


class FlakyStore(InMemoryStarStore):
    """Store whose first ``failures`` commits report a conflict."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def apply(self, changes: ChangeSet) -> None:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise WriteConflict("simulated conflict")
        super().apply(changes)


class InterleavingStore(InMemoryStarStore):
    """Store that runs ``after_commit`` once, right after the next commit lands."""

    def __init__(self) -> None:
        super().__init__()
        self.after_commit = None

    def apply(self, changes: ChangeSet) -> None:
        super().apply(changes)
        hook, self.after_commit = self.after_commit, None
        if hook is not None:
            hook()


def make_ledger(store=None, **kwargs):
    store = store if store is not None else InMemoryStarStore()
    store.add_child(ChildProfile(id="ava", family_id="fam", name="Ava"))
    return store, StarLedger(store, **kwargs)


def test_credit_updates_balance_weekly_counter_and_log() -> None:
    store, ledger = make_ledger()

    balance = ledger.credit("ava", StarType.GROWTH, 10, reason="Dishes")

    assert balance.balance == 10
    assert balance.weekly_earned == 10
    assert store.get_child("ava").version == 1
    [entry] = store.transactions("ava")
    assert entry.type is TransactionType.EARNED
    assert entry.amount == 10
    assert entry.balance_after == 10
    assert entry.reason == "Dishes"


def test_weekly_earned_is_clamped_but_balance_is_not() -> None:
    _, ledger = make_ledger(weekly_limit=25)

    ledger.credit("ava", "growth", 20)
    balance = ledger.credit("ava", "growth", 20)

    assert balance.balance == 40
    assert balance.weekly_earned == 25
    assert balance.weekly_limit == 25


def test_star_types_are_independent() -> None:
    _, ledger = make_ledger()

    ledger.credit("ava", StarType.FUN, 7)
    balances = ledger.balances("ava")

    assert balances[StarType.FUN].balance == 7
    assert balances[StarType.GROWTH].balance == 0
    with pytest.raises(InsufficientBalanceError):
        ledger.debit("ava", StarType.GROWTH, 1)


def test_debit_rejects_overdraw_and_leaves_balance() -> None:
    store, ledger = make_ledger()
    ledger.credit("ava", StarType.GROWTH, 15)

    with pytest.raises(InsufficientBalanceError):
        ledger.debit("ava", StarType.GROWTH, 20)

    assert ledger.balances("ava")[StarType.GROWTH].balance == 15
    assert len(store.transactions("ava")) == 1

    balance = ledger.debit("ava", StarType.GROWTH, 15)
    assert balance.balance == 0
    assert store.transactions("ava")[-1].type is TransactionType.SPENT


def test_refund_does_not_touch_weekly_earned() -> None:
    _, ledger = make_ledger()
    ledger.credit("ava", StarType.GROWTH, 30)
    ledger.debit("ava", StarType.GROWTH, 20)

    balance = ledger.refund("ava", StarType.GROWTH, 20)

    assert balance.balance == 30
    assert balance.weekly_earned == 30


@pytest.mark.parametrize("amount", [0, -5, True, "abc", 2.5])
def test_amounts_must_be_positive_whole_numbers(amount) -> None:
    _, ledger = make_ledger()

    with pytest.raises(ValidationError):
        ledger.credit("ava", StarType.GROWTH, amount)


def test_unknown_star_type_and_child() -> None:
    _, ledger = make_ledger()

    with pytest.raises(ValidationError):
        ledger.credit("ava", "sparkle", 1)
    with pytest.raises(NotFoundError):
        ledger.credit("ghost", StarType.GROWTH, 1)


def test_reset_weekly_zeroes_counters_and_sets_limit() -> None:
    moment = datetime(2024, 3, 4, 8, 0)
    _, ledger = make_ledger(clock=lambda: moment)
    ledger.credit("ava", StarType.GROWTH, 12)
    ledger.credit("ava", StarType.FUN, 3)

    balances = ledger.reset_weekly("ava", weekly_limit=50)

    for star_type in StarType:
        assert balances[star_type].weekly_earned == 0
        assert balances[star_type].weekly_limit == 50
        assert balances[star_type].last_week_reset == moment
    assert balances[StarType.GROWTH].balance == 12


def test_conflicts_are_retried_and_logged() -> None:
    logger = StructuredLogger()
    store, ledger = make_ledger(FlakyStore(failures=2), logger=logger)

    balance = ledger.credit("ava", StarType.GROWTH, 5)

    assert balance.balance == 5
    assert store.attempts == 3
    conflicts = logger.entries("write_conflict")
    assert [entry["attempt"] for entry in conflicts] == [1, 2]


def test_conflict_retry_budget_is_bounded() -> None:
    store, ledger = make_ledger(FlakyStore(failures=10), max_attempts=3)

    with pytest.raises(ConflictRetryExhaustedError):
        ledger.credit("ava", StarType.GROWTH, 5)

    assert store.attempts == 3
    assert store.get_child("ava").balance(StarType.GROWTH) == 0


def test_returned_balance_is_the_committed_one() -> None:
    store, ledger = make_ledger(InterleavingStore())
    store.after_commit = lambda: ledger.credit("ava", StarType.GROWTH, 7)

    credited = ledger.credit("ava", StarType.GROWTH, 10)

    assert credited.balance == 10
    assert credited.weekly_earned == 10
    assert ledger.balances("ava")[StarType.GROWTH].balance == 17

    store.after_commit = lambda: ledger.credit("ava", StarType.GROWTH, 3)
    debited = ledger.debit("ava", StarType.GROWTH, 5)

    assert debited.balance == 12
    assert ledger.balances("ava")[StarType.GROWTH].balance == 15


def test_concurrent_debits_only_one_succeeds() -> None:
    store, ledger = make_ledger(max_attempts=10)
    ledger.credit("ava", StarType.GROWTH, 20)
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def spend() -> None:
        barrier.wait()
        try:
            ledger.debit("ava", StarType.GROWTH, 15)
        except InsufficientBalanceError:
            result = "insufficient"
        else:
            result = "ok"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=spend) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["insufficient", "ok"]
    assert ledger.balances("ava")[StarType.GROWTH].balance == 5
