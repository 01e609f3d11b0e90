"""Parent approval queue."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, assert_never

from .custom_rewards import CustomRewardNegotiation
from .exceptions import AlreadyProcessedError
from .ledger import StarLedger
from .models import (
    ApprovalItem,
    ApprovalKind,
    CompletionStatus,
    CustomRequestStatus,
    CustomRewardRequest,
    Decision,
    RedemptionStatus,
    RewardRedemption,
    TaskCompletion,
    utc_now,
)
from .ops import StructuredLogger
from .redemptions import RedemptionWorkflow
from .stars import parse_decision
from .store import StarStore
from .streaks import StreakTracker
from .transactions import DEFAULT_MAX_ATTEMPTS, UnitOfWork, run_in_transaction


class ApprovalQueue:
    """Everything waiting on a parent, and the place where parents decide it.

    Completion decisions are handled here directly. Redemption and custom
    reward decisions are forwarded to their workflows so each transition has
    one implementation.
    """

    __slots__ = (
        "_store",
        "_ledger",
        "_streaks",
        "_redemptions",
        "_custom_rewards",
        "_max_attempts",
        "_logger",
        "_clock",
    )

    def __init__(
        self,
        store: StarStore,
        ledger: StarLedger,
        streaks: StreakTracker,
        redemptions: RedemptionWorkflow,
        custom_rewards: CustomRewardNegotiation,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._streaks = streaks
        self._redemptions = redemptions
        self._custom_rewards = custom_rewards
        self._max_attempts = max_attempts
        self._logger = logger or StructuredLogger()
        self._clock = clock

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def pending(self, family_id: str) -> Sequence[ApprovalItem]:
        """Return every pending item of the family, oldest first."""

        names: Dict[str, str] = {child.id: child.name for child in self._store.children(family_id)}
        items: List[ApprovalItem] = []
        for completion in self._store.completions(family_id=family_id, status=CompletionStatus.PENDING):
            items.append(self._completion_item(completion, names))
        for redemption in self._store.redemptions(family_id=family_id, status=RedemptionStatus.PENDING):
            items.append(self._redemption_item(redemption, names))
        for status in (CustomRequestStatus.PENDING, CustomRequestStatus.STARS_SET):
            for request in self._store.custom_requests(family_id=family_id, status=status):
                items.append(self._custom_item(request, names))
        items.sort(key=lambda item: item.submitted_at)
        return tuple(items)

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------
    def decide_completion(
        self,
        completion_id: str,
        decision: Decision | str,
        *,
        decided_by: str | None = None,
        note: str | None = None,
    ) -> TaskCompletion:
        verdict = parse_decision(decision)
        moment = self._clock()

        def work(unit: UnitOfWork) -> TaskCompletion:
            current = self._store.get_completion(completion_id)
            if current.status is not CompletionStatus.PENDING:
                raise AlreadyProcessedError(
                    f"Completion '{completion_id}' is already {current.status.value}."
                )
            match verdict:
                case Decision.APPROVE:
                    status = CompletionStatus.APPROVED
                    task = self._store.get_task(current.task_id)
                    title = task.title if task else current.task_id
                    self._ledger.stage_credit(
                        unit,
                        current.child_id,
                        current.star_type,
                        current.stars_awarded,
                        reason=f"Completed: {title}",
                        related_id=current.id,
                    )
                    self._streaks.stage_completion(unit, current.child_id, moment)
                case Decision.REJECT:
                    status = CompletionStatus.REJECTED
                case _:
                    assert_never(verdict)
            updated = replace(current, status=status, decided_at=moment, decided_by=decided_by, note=note)
            unit.transition(updated, CompletionStatus.PENDING)
            return updated

        updated = run_in_transaction(
            self._store,
            work,
            max_attempts=self._max_attempts,
            logger=self._logger,
            operation="decide_completion",
        )
        self._logger.log(
            "completion_decided",
            child=updated.child_id,
            completion=updated.id,
            status=updated.status.value,
            decided_by=decided_by,
        )
        return updated

    def decide_redemption(
        self,
        redemption_id: str,
        decision: Decision | str,
        *,
        decided_by: str | None = None,
        note: str | None = None,
    ) -> RewardRedemption:
        return self._redemptions.decide(redemption_id, parse_decision(decision), decided_by=decided_by, note=note)

    def decide_custom_request(
        self,
        request_id: str,
        decision: Decision | str,
        *,
        decided_by: str | None = None,
    ) -> CustomRewardRequest:
        return self._custom_rewards.decide(request_id, parse_decision(decision), decided_by=decided_by)

    # ------------------------------------------------------------------
    # Decoration helpers
    # ------------------------------------------------------------------
    def _completion_item(self, completion: TaskCompletion, names: Dict[str, str]) -> ApprovalItem:
        task = self._store.get_task(completion.task_id)
        return ApprovalItem(
            kind=ApprovalKind.COMPLETION,
            record_id=completion.id,
            child_id=completion.child_id,
            child_name=names.get(completion.child_id, completion.child_id),
            title=task.title if task else completion.task_id,
            stars=completion.stars_awarded,
            star_type=completion.star_type,
            status=completion.status.value,
            submitted_at=completion.completed_at,
        )

    def _redemption_item(self, redemption: RewardRedemption, names: Dict[str, str]) -> ApprovalItem:
        return ApprovalItem(
            kind=ApprovalKind.REDEMPTION,
            record_id=redemption.id,
            child_id=redemption.child_id,
            child_name=names.get(redemption.child_id, redemption.child_id),
            title=redemption.reward_name,
            stars=redemption.stars_deducted,
            star_type=redemption.star_type,
            status=redemption.status.value,
            submitted_at=redemption.requested_at,
        )

    def _custom_item(self, request: CustomRewardRequest, names: Dict[str, str]) -> ApprovalItem:
        return ApprovalItem(
            kind=ApprovalKind.CUSTOM_REWARD,
            record_id=request.id,
            child_id=request.child_id,
            child_name=names.get(request.child_id, request.child_id),
            title=request.reward_name,
            stars=request.stars_required,
            star_type=request.star_type,
            status=request.status.value,
            submitted_at=request.requested_at,
        )


__all__ = ["ApprovalQueue"]
