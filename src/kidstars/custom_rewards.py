"""Custom reward requests: a child asks, a parent prices and decides."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional, assert_never
from uuid import uuid4

from .exceptions import AlreadyProcessedError, ValidationError
from .ledger import StarLedger
from .models import CustomRequestStatus, CustomRewardRequest, Decision, StarType, utc_now
from .ops import StructuredLogger
from .stars import AmountLike, parse_decision, parse_star_type, to_stars
from .store import StarStore
from .transactions import DEFAULT_MAX_ATTEMPTS, UnitOfWork, run_in_transaction


class CustomRewardNegotiation:
    """Run the pending -> stars_set -> approved/rejected lifecycle.

    Nothing is debited until a priced request is approved.
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

    def submit(
        self,
        child_id: str,
        reward_name: str,
        *,
        link: str | None = None,
        image: str | None = None,
        star_type: StarType | str = StarType.GROWTH,
    ) -> str:
        name = (reward_name or "").strip()
        if not name:
            raise ValidationError("A custom reward needs a name.")
        kind = parse_star_type(star_type)
        moment = self._clock()

        def work(unit: UnitOfWork) -> CustomRewardRequest:
            child = unit.child(child_id)
            request = CustomRewardRequest(
                id=str(uuid4()),
                child_id=child.id,
                family_id=child.family_id,
                reward_name=name,
                status=CustomRequestStatus.PENDING,
                requested_at=moment,
                star_type=kind,
                link=link or None,
                image=image or None,
            )
            unit.add(request)
            return request

        request = self._run("submit_custom_reward", work)
        self._logger.log("custom_reward_requested", child=request.child_id, request=request.id, name=name)
        return request.id

    def set_price(self, request_id: str, stars: AmountLike, *, priced_by: str | None = None) -> CustomRewardRequest:
        amount = to_stars(stars)
        if amount < 1:
            raise ValidationError("A custom reward must cost at least 1 star.")

        def work(unit: UnitOfWork) -> CustomRewardRequest:
            current = self._store.get_custom_request(request_id)
            if current.status is not CustomRequestStatus.PENDING:
                raise AlreadyProcessedError(
                    f"Custom reward '{current.reward_name}' is already {current.status.value}."
                )
            updated = replace(current, status=CustomRequestStatus.STARS_SET, stars_required=amount)
            unit.transition(updated, CustomRequestStatus.PENDING)
            return updated

        updated = self._run("set_custom_reward_price", work)
        self._logger.log("custom_reward_priced", request=updated.id, stars=amount, by=priced_by)
        return updated

    def decide(
        self,
        request_id: str,
        decision: Decision | str,
        *,
        decided_by: str | None = None,
    ) -> CustomRewardRequest:
        verdict = parse_decision(decision)
        moment = self._clock()

        def work(unit: UnitOfWork) -> CustomRewardRequest:
            current = self._store.get_custom_request(request_id)
            match current.status:
                case CustomRequestStatus.STARS_SET:
                    pass
                case CustomRequestStatus.PENDING:
                    raise ValidationError(f"Set a price for '{current.reward_name}' before deciding.")
                case CustomRequestStatus.APPROVED | CustomRequestStatus.REJECTED:
                    raise AlreadyProcessedError(
                        f"Custom reward '{current.reward_name}' is already {current.status.value}."
                    )
                case _:
                    assert_never(current.status)
            match verdict:
                case Decision.APPROVE:
                    status = CustomRequestStatus.APPROVED
                    self._ledger.stage_debit(
                        unit,
                        current.child_id,
                        current.star_type,
                        current.stars_required,
                        reason=f"Custom reward: {current.reward_name}",
                        related_id=current.id,
                    )
                case Decision.REJECT:
                    status = CustomRequestStatus.REJECTED
                case _:
                    assert_never(verdict)
            updated = replace(current, status=status, decided_at=moment, decided_by=decided_by)
            unit.transition(updated, CustomRequestStatus.STARS_SET)
            return updated

        updated = self._run("decide_custom_reward", work)
        self._logger.log(
            "custom_reward_decided",
            child=updated.child_id,
            request=updated.id,
            status=updated.status.value,
            decided_by=decided_by,
        )
        return updated

    def _run(self, operation: str, work):
        return run_in_transaction(
            self._store,
            work,
            max_attempts=self._max_attempts,
            logger=self._logger,
            operation=operation,
        )


__all__ = ["CustomRewardNegotiation"]
