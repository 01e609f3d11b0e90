"""High level service wiring the KidStars reward economy together."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, Optional, Sequence

from .admin import AuditLog
from .api import ApiExporter, WebhookDispatcher
from .approvals import ApprovalQueue
from .completions import CompletionGateway, DuplicatePolicy
from .custom_rewards import CustomRewardNegotiation
from .exceptions import ValidationError
from .ledger import StarLedger
from .models import (
    DEFAULT_WEEKLY_LIMIT,
    ApprovalItem,
    ChildProfile,
    CustomRewardRequest,
    Decision,
    RewardDefinition,
    RewardRedemption,
    StarBalance,
    StarTransaction,
    StarType,
    StreakData,
    TaskCompletion,
    TaskDefinition,
    utc_now,
)
from .notifications import Notification, NotificationCenter, NotificationType
from .ops import StructuredLogger
from .redemptions import RedemptionWorkflow
from .stars import AmountLike, parse_star_type, require_positive, to_stars
from .store import InMemoryStarStore, StarStore
from .streaks import StreakTracker
from .transactions import DEFAULT_MAX_ATTEMPTS
from .trust import MAX_TRUST_LEVEL, MIN_TRUST_LEVEL, TrustPolicy


class KidStars:
    """Expose completions, redemptions, custom rewards and approvals.

    Every successful transition is logged, audited, queued as a notification
    and broadcast to registered webhooks. Failed operations leave no trace
    beyond the exception.
    """

    __slots__ = (
        "_store",
        "_logger",
        "_audit_log",
        "_notifications",
        "_webhooks",
        "_api",
        "_ledger",
        "_streaks",
        "_policy",
        "_completions",
        "_redemptions",
        "_custom_rewards",
        "_approvals",
    )

    def __init__(
        self,
        store: Optional[StarStore] = None,
        *,
        policy: Optional[TrustPolicy] = None,
        duplicate_policy: DuplicatePolicy | str = DuplicatePolicy.ALLOW,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        weekly_limit: int = DEFAULT_WEEKLY_LIMIT,
        log_path: Path | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store if store is not None else InMemoryStarStore()
        self._logger = StructuredLogger(path=log_path)
        self._audit_log = AuditLog()
        self._notifications = NotificationCenter()
        self._webhooks = WebhookDispatcher(logger=self._logger)
        self._api = ApiExporter()
        self._policy = policy or TrustPolicy()
        shared = {"max_attempts": max_attempts, "logger": self._logger, "clock": clock}
        self._ledger = StarLedger(self._store, weekly_limit=weekly_limit, **shared)
        self._streaks = StreakTracker(self._store, **shared)
        self._completions = CompletionGateway(
            self._store,
            self._ledger,
            self._streaks,
            policy=self._policy,
            duplicate_policy=duplicate_policy,
            **shared,
        )
        self._redemptions = RedemptionWorkflow(self._store, self._ledger, **shared)
        self._custom_rewards = CustomRewardNegotiation(self._store, self._ledger, **shared)
        self._approvals = ApprovalQueue(
            self._store,
            self._ledger,
            self._streaks,
            self._redemptions,
            self._custom_rewards,
            **shared,
        )

    # ------------------------------------------------------------------
    # Catalog and profile seeding
    # ------------------------------------------------------------------
    def add_child(
        self,
        child_id: str,
        family_id: str,
        name: str,
        *,
        trust_level: int = MIN_TRUST_LEVEL,
    ) -> ChildProfile:
        if not MIN_TRUST_LEVEL <= trust_level <= MAX_TRUST_LEVEL:
            raise ValidationError(f"Trust level {trust_level} is outside 1-5.")
        child = ChildProfile(id=child_id, family_id=family_id, name=name, trust_level=trust_level)
        self._store.add_child(child)
        self._audit_log.record("system", "add_child", child_id)
        self._logger.log("child_added", child=child_id, family=family_id, trust_level=trust_level)
        return self._store.get_child(child_id)

    def add_task(
        self,
        task_id: str,
        family_id: str,
        title: str,
        star_value: AmountLike,
        *,
        star_type: StarType | str = StarType.GROWTH,
        is_active: bool = True,
        assigned_child_ids: Iterable[str] = (),
        category: str = "chores",
        always_manual: bool = False,
    ) -> TaskDefinition:
        assigned = tuple(assigned_child_ids)
        if not assigned:
            raise ValidationError(f"Task '{title}' must be assigned to at least one child.")
        task = TaskDefinition(
            id=task_id,
            family_id=family_id,
            title=title,
            star_value=require_positive(to_stars(star_value)),
            star_type=parse_star_type(star_type),
            is_active=is_active,
            assigned_child_ids=assigned,
            category=category,
            always_manual=always_manual,
        )
        self._store.add_task(task)
        self._logger.log("task_added", task=task_id, family=family_id, stars=task.star_value)
        return task

    def add_reward(
        self,
        reward_id: str,
        family_id: str,
        name: str,
        star_cost: AmountLike,
        *,
        star_type: StarType | str = StarType.GROWTH,
        requires_approval: bool = True,
        is_active: bool = True,
        available_to: Iterable[str] = (),
        limit_per_week: int | None = None,
    ) -> RewardDefinition:
        children = tuple(available_to)
        if not children:
            raise ValidationError(f"Reward '{name}' must be available to at least one child.")
        reward = RewardDefinition(
            id=reward_id,
            family_id=family_id,
            name=name,
            star_cost=require_positive(to_stars(star_cost), allow_zero=True),
            star_type=parse_star_type(star_type),
            requires_approval=requires_approval,
            is_active=is_active,
            available_to=children,
            limit_per_week=limit_per_week,
        )
        self._store.add_reward(reward)
        self._logger.log("reward_added", reward=reward_id, family=family_id, cost=reward.star_cost)
        return reward

    # ------------------------------------------------------------------
    # Task completions
    # ------------------------------------------------------------------
    def submit_completion(self, child_id: str, task_id: str) -> TaskCompletion:
        completion = self._store.get_completion(self._completions.submit(child_id, task_id))
        self._audit_log.record(child_id, "submit_completion", completion.id, details={"status": completion.status.value})
        self._announce(
            NotificationType.COMPLETION_SUBMITTED,
            family_id=completion.family_id,
            child_id=completion.child_id,
            record_id=completion.id,
            status=completion.status.value,
            message=f"Task completion {completion.status.value.replace('_', ' ')}.",
        )
        return completion

    def decide_completion(
        self,
        completion_id: str,
        decision: Decision | str,
        *,
        decided_by: str | None = None,
        note: str | None = None,
    ) -> TaskCompletion:
        completion = self._approvals.decide_completion(completion_id, decision, decided_by=decided_by, note=note)
        self._audit_log.record(decided_by or "guardian", f"{completion.status.value}_completion", completion.id)
        self._announce(
            NotificationType.COMPLETION_DECIDED,
            family_id=completion.family_id,
            child_id=completion.child_id,
            record_id=completion.id,
            status=completion.status.value,
            message=f"Task completion {completion.status.value}.",
        )
        return completion

    # ------------------------------------------------------------------
    # Reward redemptions
    # ------------------------------------------------------------------
    def request_redemption(self, child_id: str, reward_id: str) -> RewardRedemption:
        redemption = self._store.get_redemption(self._redemptions.request(child_id, reward_id))
        self._audit_log.record(child_id, "request_redemption", redemption.id, details={"reward": reward_id})
        self._announce(
            NotificationType.REDEMPTION_REQUESTED,
            family_id=redemption.family_id,
            child_id=redemption.child_id,
            record_id=redemption.id,
            status=redemption.status.value,
            message=f"{redemption.reward_name} requested.",
        )
        return redemption

    def decide_redemption(
        self,
        redemption_id: str,
        decision: Decision | str,
        *,
        decided_by: str | None = None,
        note: str | None = None,
    ) -> RewardRedemption:
        redemption = self._approvals.decide_redemption(redemption_id, decision, decided_by=decided_by, note=note)
        self._audit_log.record(decided_by or "guardian", f"{redemption.status.value}_redemption", redemption.id)
        self._announce(
            NotificationType.REDEMPTION_DECIDED,
            family_id=redemption.family_id,
            child_id=redemption.child_id,
            record_id=redemption.id,
            status=redemption.status.value,
            message=f"{redemption.reward_name} {redemption.status.value}.",
        )
        return redemption

    def fulfill_redemption(self, redemption_id: str, *, fulfilled_by: str | None = None) -> RewardRedemption:
        redemption = self._redemptions.fulfill(redemption_id, fulfilled_by=fulfilled_by)
        self._audit_log.record(fulfilled_by or "guardian", "fulfill_redemption", redemption.id)
        self._announce(
            NotificationType.REDEMPTION_FULFILLED,
            family_id=redemption.family_id,
            child_id=redemption.child_id,
            record_id=redemption.id,
            status=redemption.status.value,
            message=f"{redemption.reward_name} handed over.",
        )
        return redemption

    # ------------------------------------------------------------------
    # Custom rewards
    # ------------------------------------------------------------------
    def submit_custom_reward_request(
        self,
        child_id: str,
        reward_name: str,
        *,
        link: str | None = None,
        image: str | None = None,
        star_type: StarType | str = StarType.GROWTH,
    ) -> CustomRewardRequest:
        request_id = self._custom_rewards.submit(child_id, reward_name, link=link, image=image, star_type=star_type)
        request = self._store.get_custom_request(request_id)
        self._audit_log.record(child_id, "request_custom_reward", request.id)
        self._announce(
            NotificationType.CUSTOM_REWARD_REQUESTED,
            family_id=request.family_id,
            child_id=request.child_id,
            record_id=request.id,
            status=request.status.value,
            message=f"Custom reward '{request.reward_name}' requested.",
        )
        return request

    def set_custom_reward_price(
        self, request_id: str, stars: AmountLike, *, priced_by: str | None = None
    ) -> CustomRewardRequest:
        request = self._custom_rewards.set_price(request_id, stars, priced_by=priced_by)
        self._audit_log.record(
            priced_by or "guardian", "price_custom_reward", request.id, details={"stars": request.stars_required}
        )
        self._announce(
            NotificationType.CUSTOM_REWARD_PRICED,
            family_id=request.family_id,
            child_id=request.child_id,
            record_id=request.id,
            status=request.status.value,
            message=f"'{request.reward_name}' costs {request.stars_required} stars.",
        )
        return request

    def decide_custom_reward_request(
        self,
        request_id: str,
        decision: Decision | str,
        *,
        decided_by: str | None = None,
    ) -> CustomRewardRequest:
        request = self._approvals.decide_custom_request(request_id, decision, decided_by=decided_by)
        self._audit_log.record(decided_by or "guardian", f"{request.status.value}_custom_reward", request.id)
        self._announce(
            NotificationType.CUSTOM_REWARD_DECIDED,
            family_id=request.family_id,
            child_id=request.child_id,
            record_id=request.id,
            status=request.status.value,
            message=f"Custom reward '{request.reward_name}' {request.status.value}.",
        )
        return request

    # ------------------------------------------------------------------
    # Read side and maintenance
    # ------------------------------------------------------------------
    def pending_approvals(self, family_id: str) -> Sequence[ApprovalItem]:
        return self._approvals.pending(family_id)

    def balances(self, child_id: str) -> Dict[StarType, StarBalance]:
        return self._ledger.balances(child_id)

    def streaks(self, child_id: str) -> StreakData:
        return self._streaks.streaks(child_id)

    def transactions(self, child_id: str) -> Sequence[StarTransaction]:
        self._store.get_child(child_id)
        return self._store.transactions(child_id)

    def reset_weekly_earnings(
        self, child_id: str, *, weekly_limit: AmountLike | None = None
    ) -> Mapping[StarType, StarBalance]:
        balances = self._ledger.reset_weekly(child_id, weekly_limit=weekly_limit)
        child = self._store.get_child(child_id)
        self._audit_log.record("system", "reset_weekly", child_id)
        self._announce(
            NotificationType.WEEKLY_RESET,
            family_id=child.family_id,
            child_id=child_id,
            record_id=child_id,
            status="reset",
            message="Weekly earnings reset.",
        )
        return balances

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------
    @property
    def store(self) -> StarStore:
        return self._store

    @property
    def ledger(self) -> StarLedger:
        return self._ledger

    @property
    def policy(self) -> TrustPolicy:
        return self._policy

    @property
    def notifications(self) -> NotificationCenter:
        return self._notifications

    @property
    def webhooks(self) -> WebhookDispatcher:
        return self._webhooks

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def api(self) -> ApiExporter:
        return self._api

    def _announce(
        self,
        notification_type: NotificationType,
        *,
        family_id: str,
        child_id: str,
        record_id: str,
        status: str,
        message: str,
    ) -> None:
        notification = Notification(
            family_id=family_id,
            child_id=child_id,
            type=notification_type,
            record_id=record_id,
            status=status,
            message=message,
        )
        self._notifications.queue(notification)
        self._webhooks.dispatch({"event": notification_type.value, **notification.as_dict()})


__all__ = ["KidStars"]
