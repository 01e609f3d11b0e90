"""Reward redemption workflow with escrow at request time."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional, Tuple, assert_never
from uuid import uuid4

from .exceptions import AlreadyProcessedError, InvalidRewardError, ValidationError
from .ledger import StarLedger
from .models import (
    ChildProfile,
    Decision,
    RedemptionStatus,
    RewardDefinition,
    RewardRedemption,
    calendar_day,
    utc_now,
)
from .ops import StructuredLogger
from .stars import parse_decision
from .store import StarStore
from .transactions import DEFAULT_MAX_ATTEMPTS, UnitOfWork, run_in_transaction


def iso_week(moment: datetime) -> Tuple[int, int]:
    """Return ``(iso_year, iso_week)`` for ``moment``."""

    calendar = calendar_day(moment).isocalendar()
    return calendar[0], calendar[1]


class RedemptionWorkflow:
    """Escrow stars when a reward is requested and settle them on decision.

    The stars leave the balance at request time. Approval only finalises the
    spend; rejection refunds exactly what was escrowed.
    """

    __slots__ = ("_store", "_ledger", "_max_attempts", "_logger", "_clock")

    def __init__(
        self,
        store: StarStore,
        ledger: StarLedger,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._max_attempts = max_attempts
        self._logger = logger or StructuredLogger()
        self._clock = clock

    def request(self, child_id: str, reward_id: str) -> str:
        moment = self._clock()

        def work(unit: UnitOfWork) -> RewardRedemption:
            child = unit.child(child_id)
            reward = self._valid_reward(child, reward_id)
            self._check_weekly_limit(child, reward, moment)
            redemption = RewardRedemption(
                id=str(uuid4()),
                reward_id=reward.id,
                reward_name=reward.name,
                child_id=child.id,
                family_id=child.family_id,
                star_type=reward.star_type,
                stars_deducted=reward.star_cost,
                status=RedemptionStatus.PENDING if reward.requires_approval else RedemptionStatus.APPROVED,
                requested_at=moment,
            )
            if not reward.requires_approval:
                redemption.decided_at = moment
            # free rewards escrow nothing and leave no ledger entry
            if reward.star_cost > 0:
                self._ledger.stage_debit(
                    unit,
                    child.id,
                    reward.star_type,
                    reward.star_cost,
                    reason=f"Redeemed: {reward.name}",
                    related_id=redemption.id,
                )
            unit.add(redemption)
            return redemption

        redemption = self._run("request_redemption", work)
        self._logger.log(
            "redemption_requested",
            child=redemption.child_id,
            reward=redemption.reward_id,
            redemption=redemption.id,
            status=redemption.status.value,
            stars=redemption.stars_deducted,
        )
        return redemption.id

    def approve(
        self, redemption_id: str, *, decided_by: str | None = None, note: str | None = None
    ) -> RewardRedemption:
        return self.decide(redemption_id, Decision.APPROVE, decided_by=decided_by, note=note)

    def reject(
        self, redemption_id: str, *, decided_by: str | None = None, note: str | None = None
    ) -> RewardRedemption:
        return self.decide(redemption_id, Decision.REJECT, decided_by=decided_by, note=note)

    def decide(
        self,
        redemption_id: str,
        decision: Decision | str,
        *,
        decided_by: str | None = None,
        note: str | None = None,
    ) -> RewardRedemption:
        verdict = parse_decision(decision)
        moment = self._clock()

        def work(unit: UnitOfWork) -> RewardRedemption:
            current = self._store.get_redemption(redemption_id)
            if current.status is not RedemptionStatus.PENDING:
                raise AlreadyProcessedError(
                    f"Redemption '{redemption_id}' is already {current.status.value}."
                )
            match verdict:
                case Decision.APPROVE:
                    status = RedemptionStatus.APPROVED
                case Decision.REJECT:
                    status = RedemptionStatus.REJECTED
                    if current.stars_deducted > 0:
                        self._ledger.stage_refund(
                            unit,
                            current.child_id,
                            current.star_type,
                            current.stars_deducted,
                            reason=f"Refund: {current.reward_name}",
                            related_id=current.id,
                        )
                case _:
                    assert_never(verdict)
            updated = replace(current, status=status, decided_at=moment, decided_by=decided_by, note=note)
            unit.transition(updated, RedemptionStatus.PENDING)
            return updated

        updated = self._run("decide_redemption", work)
        self._logger.log(
            "redemption_decided",
            child=updated.child_id,
            redemption=updated.id,
            status=updated.status.value,
            decided_by=decided_by,
        )
        return updated

    def fulfill(self, redemption_id: str, *, fulfilled_by: str | None = None) -> RewardRedemption:
        """Mark an approved redemption as handed over. No ledger effect."""

        moment = self._clock()

        def work(unit: UnitOfWork) -> RewardRedemption:
            current = self._store.get_redemption(redemption_id)
            match current.status:
                case RedemptionStatus.APPROVED:
                    pass
                case RedemptionStatus.PENDING:
                    raise ValidationError(f"Redemption '{redemption_id}' has not been approved yet.")
                case RedemptionStatus.REJECTED | RedemptionStatus.FULFILLED:
                    raise AlreadyProcessedError(
                        f"Redemption '{redemption_id}' is already {current.status.value}."
                    )
                case _:
                    assert_never(current.status)
            updated = replace(current, status=RedemptionStatus.FULFILLED, fulfilled_at=moment)
            unit.transition(updated, RedemptionStatus.APPROVED)
            return updated

        updated = self._run("fulfill_redemption", work)
        self._logger.log("redemption_fulfilled", child=updated.child_id, redemption=updated.id, by=fulfilled_by)
        return updated

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _valid_reward(self, child: ChildProfile, reward_id: str) -> RewardDefinition:
        reward = self._store.get_reward(reward_id)
        if reward is None:
            raise InvalidRewardError(f"Reward '{reward_id}' does not exist.")
        if not reward.is_active:
            raise InvalidRewardError(f"Reward '{reward.name}' is not active.")
        if reward.family_id != child.family_id:
            raise InvalidRewardError(f"Reward '{reward.name}' belongs to another family.")
        if not reward.is_available_to(child.id):
            raise InvalidRewardError(f"Reward '{reward.name}' is not available to {child.name}.")
        return reward

    def _check_weekly_limit(self, child: ChildProfile, reward: RewardDefinition, moment: datetime) -> None:
        if reward.limit_per_week is None:
            return
        week = iso_week(moment)
        used = sum(
            1
            for existing in self._store.redemptions(child_id=child.id)
            if existing.reward_id == reward.id
            and existing.status is not RedemptionStatus.REJECTED
            and iso_week(existing.requested_at) == week
        )
        if used >= reward.limit_per_week:
            raise ValidationError(
                f"{child.name} already redeemed '{reward.name}' {used} time(s) this week "
                f"(limit {reward.limit_per_week})."
            )

    def _run(self, operation: str, work):
        return run_in_transaction(
            self._store,
            work,
            max_attempts=self._max_attempts,
            logger=self._logger,
            operation=operation,
        )


__all__ = ["RedemptionWorkflow", "iso_week"]
