"""Completion submission: turn a child's "I did it" into a task completion."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Callable, Optional
from uuid import uuid4

from .exceptions import InvalidTaskError, ValidationError
from .ledger import StarLedger
from .models import (
    ChildProfile,
    CompletionStatus,
    TaskCompletion,
    TaskDefinition,
    calendar_day,
    utc_now,
)
from .ops import StructuredLogger
from .store import StarStore
from .streaks import StreakTracker
from .transactions import DEFAULT_MAX_ATTEMPTS, UnitOfWork, run_in_transaction
from .trust import TrustPolicy


class DuplicatePolicy(str, Enum):
    """How repeated same-day submissions of one task are treated."""

    ALLOW = "allow"
    ONCE_PER_DAY = "once_per_day"


def parse_duplicate_policy(value: DuplicatePolicy | str) -> DuplicatePolicy:
    if isinstance(value, DuplicatePolicy):
        return value
    try:
        return DuplicatePolicy(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown duplicate policy '{value}'.") from exc


class CompletionGateway:
    """Validate submissions, apply the trust policy and auto-approve in one commit."""

    __slots__ = (
        "_store",
        "_ledger",
        "_streaks",
        "_policy",
        "_duplicates",
        "_max_attempts",
        "_logger",
        "_clock",
    )

    def __init__(
        self,
        store: StarStore,
        ledger: StarLedger,
        streaks: StreakTracker,
        *,
        policy: Optional[TrustPolicy] = None,
        duplicate_policy: DuplicatePolicy | str = DuplicatePolicy.ALLOW,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._streaks = streaks
        self._policy = policy or TrustPolicy()
        self._duplicates = parse_duplicate_policy(duplicate_policy)
        self._max_attempts = max_attempts
        self._logger = logger or StructuredLogger()
        self._clock = clock

    @property
    def duplicate_policy(self) -> DuplicatePolicy:
        return self._duplicates

    def submit(self, child_id: str, task_id: str) -> str:
        """Create a completion and return its id.

        Auto-approved completions credit the ledger and advance the streak in
        the same commit that creates the record.
        """

        moment = self._clock()

        def work(unit: UnitOfWork) -> TaskCompletion:
            child = unit.child(child_id)
            task = self._valid_task(child, task_id)
            if self._duplicates is DuplicatePolicy.ONCE_PER_DAY:
                # claiming the child's version makes concurrent duplicates conflict
                unit.child_for_update(child_id)
                self._reject_duplicate(child, task, moment)
            status = self._policy.decide(child.trust_level, task)
            completion = TaskCompletion(
                id=str(uuid4()),
                task_id=task.id,
                child_id=child.id,
                family_id=child.family_id,
                star_type=task.star_type,
                stars_awarded=task.star_value,
                status=status,
                completed_at=moment,
            )
            if status is CompletionStatus.AUTO_APPROVED:
                completion.decided_at = moment
                self._ledger.stage_credit(
                    unit,
                    child.id,
                    task.star_type,
                    task.star_value,
                    reason=f"Completed: {task.title}",
                    related_id=completion.id,
                )
                self._streaks.stage_completion(unit, child.id, moment)
            unit.add(completion)
            return completion

        completion = run_in_transaction(
            self._store,
            work,
            max_attempts=self._max_attempts,
            logger=self._logger,
            operation="submit_completion",
        )
        self._logger.log(
            "completion_submitted",
            child=completion.child_id,
            task=completion.task_id,
            completion=completion.id,
            status=completion.status.value,
            stars=completion.stars_awarded,
        )
        return completion.id

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def _valid_task(self, child: ChildProfile, task_id: str) -> TaskDefinition:
        task = self._store.get_task(task_id)
        if task is None:
            raise InvalidTaskError(f"Task '{task_id}' does not exist.")
        if not task.is_active:
            raise InvalidTaskError(f"Task '{task.title}' is not active.")
        if task.family_id != child.family_id:
            raise InvalidTaskError(f"Task '{task.title}' belongs to another family.")
        if not task.is_assigned_to(child.id):
            raise InvalidTaskError(f"Task '{task.title}' is not assigned to {child.name}.")
        if task.star_value <= 0:
            raise InvalidTaskError(f"Task '{task.title}' does not award any stars.")
        return task

    def _reject_duplicate(self, child: ChildProfile, task: TaskDefinition, moment: datetime) -> None:
        today = calendar_day(moment)
        for existing in self._store.completions(child_id=child.id):
            if existing.task_id != task.id or existing.status is CompletionStatus.REJECTED:
                continue
            if calendar_day(existing.completed_at) == today:
                raise ValidationError(f"{child.name} already submitted '{task.title}' today.")


__all__ = ["CompletionGateway", "DuplicatePolicy", "parse_duplicate_policy"]
