import pytest

from kidstars.exceptions import ValidationError
from kidstars.models import CompletionStatus, TaskDefinition
from kidstars.trust import DEFAULT_TRUST_TABLE, TrustPolicy, threshold_table


def make_task(**overrides) -> TaskDefinition:
    values = {"id": "t1", "family_id": "fam", "title": "Dishes", "star_value": 5}
    values.update(overrides)
    return TaskDefinition(**values)


def test_default_table_auto_approves_from_level_three() -> None:
    policy = TrustPolicy()

    assert [policy.decide(level) for level in range(1, 6)] == [
        CompletionStatus.PENDING,
        CompletionStatus.PENDING,
        CompletionStatus.AUTO_APPROVED,
        CompletionStatus.AUTO_APPROVED,
        CompletionStatus.AUTO_APPROVED,
    ]
    assert dict(DEFAULT_TRUST_TABLE) == threshold_table(3)


def test_replacement_table() -> None:
    policy = TrustPolicy.auto_approve_from(5)

    assert policy.decide(4) is CompletionStatus.PENDING
    assert policy.decide(5) is CompletionStatus.AUTO_APPROVED


def test_always_manual_task_forces_pending() -> None:
    policy = TrustPolicy()

    assert policy.decide(5, make_task(always_manual=True)) is CompletionStatus.PENDING
    assert policy.decide(5, make_task()) is CompletionStatus.AUTO_APPROVED


def test_category_override_table() -> None:
    policy = TrustPolicy(category_tables={"homework": threshold_table(5)})

    assert policy.decide(4, make_task(category="homework")) is CompletionStatus.PENDING
    assert policy.decide(4, make_task(category="chores")) is CompletionStatus.AUTO_APPROVED
    assert policy.table("homework")[5] is CompletionStatus.AUTO_APPROVED


@pytest.mark.parametrize("level", [0, 6, -1, True, "3"])
def test_out_of_range_trust_level(level) -> None:
    with pytest.raises(ValidationError):
        TrustPolicy().decide(level)


def test_incomplete_or_invalid_tables_are_rejected() -> None:
    with pytest.raises(ValidationError):
        TrustPolicy({1: CompletionStatus.PENDING})
    table = threshold_table()
    table[2] = CompletionStatus.APPROVED
    with pytest.raises(ValidationError):
        TrustPolicy(table)
