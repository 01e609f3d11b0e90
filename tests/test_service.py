from datetime import datetime, timedelta

import pytest

from kidstars.completions import DuplicatePolicy
from kidstars.exceptions import AlreadyProcessedError, InsufficientBalanceError, NotFoundError, ValidationError
from kidstars.models import (
    CompletionStatus,
    CustomRequestStatus,
    RedemptionStatus,
    StarType,
    TransactionType,
)
from kidstars.notifications import NotificationType
from kidstars.service import KidStars
from kidstars.trust import TrustPolicy


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 4, 1, 16, 0)

    def __call__(self) -> datetime:
        return self.now


def make_service(**kwargs) -> KidStars:
    service = KidStars(**kwargs)
    service.add_child("ava", "fam", "Ava", trust_level=1)
    service.add_child("max", "fam", "Max", trust_level=4)
    family = ("ava", "max")
    service.add_task("dishes", "fam", "Dishes", 10, assigned_child_ids=family)
    service.add_reward("movie", "fam", "Movie night", 20, available_to=family)
    service.add_reward("sticker", "fam", "Sticker", 20, requires_approval=False, available_to=family)
    return service


def growth(service: KidStars, child_id: str) -> int:
    return service.balances(child_id)[StarType.GROWTH].balance


def ledger_sum(service: KidStars, child_id: str) -> int:
    total = 0
    for entry in service.transactions(child_id):
        if entry.star_type is not StarType.GROWTH:
            continue
        total += -entry.amount if entry.type is TransactionType.SPENT else entry.amount
    return total


def test_scenario_low_trust_completion_then_approval() -> None:
    service = make_service()

    completion = service.submit_completion("ava", "dishes")
    assert completion.status is CompletionStatus.PENDING
    assert growth(service, "ava") == 0

    service.decide_completion(completion.id, "approve", decided_by="mom")
    assert growth(service, "ava") == 10
    assert service.streaks("ava").current_streak == 1


def test_scenario_trusted_completion_auto_approves() -> None:
    service = make_service()

    completion = service.submit_completion("max", "dishes")

    assert completion.status is CompletionStatus.AUTO_APPROVED
    assert growth(service, "max") == 10
    assert service.streaks("max").current_streak == 1
    assert service.pending_approvals("fam") == ()


def test_scenario_insufficient_balance_without_approval() -> None:
    service = make_service()
    service.ledger.credit("ava", StarType.GROWTH, 15)

    with pytest.raises(InsufficientBalanceError):
        service.request_redemption("ava", "sticker")

    assert service.store.redemptions(child_id="ava") == ()
    assert growth(service, "ava") == 15


def test_scenario_escrow_and_refund_on_reject() -> None:
    service = make_service()
    service.ledger.credit("ava", StarType.GROWTH, 30)

    redemption = service.request_redemption("ava", "movie")
    assert redemption.status is RedemptionStatus.PENDING
    assert growth(service, "ava") == 10

    rejected = service.decide_redemption(redemption.id, "reject")
    assert rejected.status is RedemptionStatus.REJECTED
    assert growth(service, "ava") == 30


def test_scenario_custom_reward_too_expensive() -> None:
    service = make_service()
    service.ledger.credit("ava", StarType.GROWTH, 40)
    request = service.submit_custom_reward_request("ava", "Skateboard")
    service.set_custom_reward_price(request.id, 50)

    with pytest.raises(InsufficientBalanceError):
        service.decide_custom_reward_request(request.id, "approve")

    assert service.store.get_custom_request(request.id).status is CustomRequestStatus.STARS_SET
    assert growth(service, "ava") == 40


def test_duplicate_decisions_leave_balances_alone() -> None:
    service = make_service()
    service.ledger.credit("ava", StarType.GROWTH, 30)
    completion = service.submit_completion("ava", "dishes")
    redemption = service.request_redemption("ava", "movie")
    service.decide_completion(completion.id, "approve")
    service.decide_redemption(redemption.id, "reject")
    before = service.balances("ava")

    with pytest.raises(AlreadyProcessedError):
        service.decide_completion(completion.id, "approve")
    with pytest.raises(AlreadyProcessedError):
        service.decide_redemption(redemption.id, "reject")

    assert service.balances("ava") == before
    assert growth(service, "ava") == 40


def test_balance_reconciles_with_records_and_transaction_log() -> None:
    service = make_service()
    service.ledger.credit("ava", StarType.GROWTH, 100)
    for decision in ("approve", "approve", "reject"):
        completion = service.submit_completion("ava", "dishes")
        service.decide_completion(completion.id, decision)
    kept = service.request_redemption("ava", "movie")
    service.decide_redemption(kept.id, "approve")
    refunded = service.request_redemption("ava", "movie")
    service.decide_redemption(refunded.id, "reject")
    service.request_redemption("ava", "sticker")
    custom = service.submit_custom_reward_request("ava", "Kite")
    service.set_custom_reward_price(custom.id, 7)
    service.decide_custom_reward_request(custom.id, "approve")

    awards = sum(
        c.stars_awarded
        for c in service.store.completions(child_id="ava")
        if c.status in (CompletionStatus.APPROVED, CompletionStatus.AUTO_APPROVED)
    )
    escrowed = sum(
        r.stars_deducted for r in service.store.redemptions(child_id="ava") if r.status is not RedemptionStatus.REJECTED
    )
    custom_spent = sum(
        r.stars_required
        for r in service.store.custom_requests(child_id="ava")
        if r.status is CustomRequestStatus.APPROVED
    )
    assert growth(service, "ava") == 100 + awards - escrowed - custom_spent == 73
    assert ledger_sum(service, "ava") == growth(service, "ava")


def test_fulfill_and_notifications() -> None:
    service = make_service()
    events = []
    service.webhooks.register(events.append)
    service.ledger.credit("ava", StarType.GROWTH, 20)

    redemption = service.request_redemption("ava", "movie")
    service.decide_redemption(redemption.id, "approve", decided_by="dad")
    fulfilled = service.fulfill_redemption(redemption.id, fulfilled_by="dad")

    assert fulfilled.status is RedemptionStatus.FULFILLED
    assert [event["event"] for event in events] == [
        "redemption_requested",
        "redemption_decided",
        "redemption_fulfilled",
    ]
    pending = service.notifications.pending(notification_type=NotificationType.REDEMPTION_DECIDED)
    assert pending[0].status == "approved"
    assert service.audit_log.latest().action == "fulfill_redemption"
    assert service.audit_log.entries(action="approved_redemption")[0].actor == "dad"


def test_failed_operations_do_not_notify() -> None:
    service = make_service()

    with pytest.raises(InsufficientBalanceError):
        service.request_redemption("ava", "movie")

    assert service.notifications.pending() == ()


def test_reset_weekly_earnings() -> None:
    service = make_service()
    service.submit_completion("max", "dishes")

    balances = service.reset_weekly_earnings("max", weekly_limit=60)

    assert balances[StarType.GROWTH].weekly_earned == 0
    assert balances[StarType.GROWTH].weekly_limit == 60
    assert balances[StarType.GROWTH].balance == 10
    assert service.notifications.pending(notification_type=NotificationType.WEEKLY_RESET)


def test_configuration_is_passed_through() -> None:
    clock = Clock()
    service = make_service(
        policy=TrustPolicy.auto_approve_from(5),
        duplicate_policy=DuplicatePolicy.ONCE_PER_DAY,
        weekly_limit=15,
        clock=clock,
    )

    completion = service.submit_completion("max", "dishes")
    assert completion.status is CompletionStatus.PENDING
    with pytest.raises(ValidationError):
        service.submit_completion("max", "dishes")

    clock.now += timedelta(days=1)
    service.decide_completion(completion.id, "approve")
    assert service.balances("max")[StarType.GROWTH].weekly_limit == 15


def test_log_file_receives_events(tmp_path) -> None:
    log_path = tmp_path / "logs" / "kidstars.jsonl"
    service = make_service(log_path=log_path)

    service.submit_completion("max", "dishes")

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert any('"event": "completion_submitted"' in line for line in lines)


def test_seeding_validation_and_lookups() -> None:
    service = make_service()

    with pytest.raises(ValidationError):
        service.add_child("kim", "fam", "Kim", trust_level=9)
    with pytest.raises(NotFoundError):
        service.transactions("ghost")
    with pytest.raises(NotFoundError):
        service.balances("ghost")
    with pytest.raises(ValidationError):
        service.add_task("sweep", "fam", "Sweep", 5)
    with pytest.raises(ValidationError):
        service.add_task("sweep", "fam", "Sweep", 0, assigned_child_ids=("ava",))
    with pytest.raises(ValidationError):
        service.add_reward("kite", "fam", "Kite", 5)
    with pytest.raises(ValidationError):
        service.add_reward("kite", "fam", "Kite", -1, available_to=("ava",))
    assert service.store.get_task("sweep") is None
    assert service.store.get_reward("kite") is None


def test_free_reward_is_granted_without_stars() -> None:
    service = make_service()
    service.add_reward("hug", "fam", "Hug", 0, requires_approval=False, available_to=("ava",))

    redemption = service.request_redemption("ava", "hug")

    assert redemption.status is RedemptionStatus.APPROVED
    assert redemption.stars_deducted == 0
    assert growth(service, "ava") == 0
    assert service.transactions("ava") == ()


def test_failing_webhook_does_not_break_a_committed_operation() -> None:
    service = make_service()
    service.ledger.credit("ava", StarType.GROWTH, 30)
    received = []

    def broken(event) -> None:
        raise RuntimeError("endpoint down")

    service.webhooks.register(broken)
    service.webhooks.register(received.append)

    redemption = service.request_redemption("ava", "movie")

    assert redemption.status is RedemptionStatus.PENDING
    assert growth(service, "ava") == 10
    assert [event["event"] for event in received] == ["redemption_requested"]
    [failure] = service.logger.entries("webhook_failed")
    assert failure["webhook_event"] == "redemption_requested"
    assert failure["error"] == "endpoint down"
    assert "broken" in failure["listener"]
