"""API helpers and webhook integrations for KidStars."""

from __future__ import annotations

import json
from typing import Callable, Dict, Mapping, Optional, Sequence

from .models import (
    ApprovalItem,
    CustomRewardRequest,
    RewardRedemption,
    StarBalance,
    StarTransaction,
    StarType,
    StreakData,
    TaskCompletion,
)
from .ops import StructuredLogger


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


class ApiExporter:
    """Convert KidStars records to JSON friendly dictionaries."""

    def balances(self, child_id: str, balances: Mapping[StarType, StarBalance]) -> Dict[str, object]:
        return {
            "child_id": child_id,
            "balances": {
                star_type.value: {
                    "balance": entry.balance,
                    "weekly_earned": entry.weekly_earned,
                    "weekly_limit": entry.weekly_limit,
                    "last_week_reset": _iso(entry.last_week_reset),
                }
                for star_type, entry in balances.items()
            },
        }

    def streaks(self, child_id: str, streaks: StreakData) -> Dict[str, object]:
        return {
            "child_id": child_id,
            "current_streak": streaks.current_streak,
            "longest_streak": streaks.longest_streak,
            "last_completion_date": _iso(streaks.last_completion_date),
        }

    def completion(self, completion: TaskCompletion) -> Dict[str, object]:
        return {
            "id": completion.id,
            "task_id": completion.task_id,
            "child_id": completion.child_id,
            "family_id": completion.family_id,
            "star_type": completion.star_type.value,
            "stars_awarded": completion.stars_awarded,
            "status": completion.status.value,
            "completed_at": completion.completed_at.isoformat(),
            "decided_at": _iso(completion.decided_at),
            "decided_by": completion.decided_by,
            "note": completion.note,
        }

    def redemption(self, redemption: RewardRedemption) -> Dict[str, object]:
        return {
            "id": redemption.id,
            "reward_id": redemption.reward_id,
            "reward_name": redemption.reward_name,
            "child_id": redemption.child_id,
            "family_id": redemption.family_id,
            "star_type": redemption.star_type.value,
            "stars_deducted": redemption.stars_deducted,
            "status": redemption.status.value,
            "requested_at": redemption.requested_at.isoformat(),
            "decided_at": _iso(redemption.decided_at),
            "decided_by": redemption.decided_by,
            "fulfilled_at": _iso(redemption.fulfilled_at),
            "note": redemption.note,
        }

    def custom_request(self, request: CustomRewardRequest) -> Dict[str, object]:
        return {
            "id": request.id,
            "child_id": request.child_id,
            "family_id": request.family_id,
            "reward_name": request.reward_name,
            "link": request.link,
            "image": request.image,
            "star_type": request.star_type.value,
            "stars_required": request.stars_required,
            "status": request.status.value,
            "requested_at": request.requested_at.isoformat(),
            "decided_at": _iso(request.decided_at),
            "decided_by": request.decided_by,
        }

    def approval_items(self, items: Sequence[ApprovalItem]) -> list[Dict[str, object]]:
        return [
            {
                "kind": item.kind.value,
                "record_id": item.record_id,
                "child_id": item.child_id,
                "child_name": item.child_name,
                "title": item.title,
                "stars": item.stars,
                "star_type": item.star_type.value,
                "status": item.status,
                "submitted_at": item.submitted_at.isoformat(),
            }
            for item in items
        ]

    def transactions(self, entries: Sequence[StarTransaction]) -> list[Dict[str, object]]:
        return [self._serialise_transaction(entry) for entry in entries]

    def to_json(self, payload: Dict[str, object]) -> str:
        return json.dumps(payload, sort_keys=True)

    def _serialise_transaction(self, transaction: StarTransaction) -> Dict[str, object]:
        return {
            "id": transaction.id,
            "timestamp": transaction.timestamp.isoformat(),
            "type": transaction.type.value,
            "star_type": transaction.star_type.value,
            "amount": transaction.amount,
            "balance_after": transaction.balance_after,
            "reason": transaction.reason,
            "related_id": transaction.related_id,
        }


class WebhookDispatcher:
    """Simple synchronous webhook broadcaster.

    A failing listener is logged and skipped; the remaining listeners still
    receive the event.
    """

    def __init__(self, logger: Optional[StructuredLogger] = None) -> None:
        self._logger = logger or StructuredLogger()
        self._listeners: list[Callable[[Dict[str, object]], None]] = []

    def register(self, listener: Callable[[Dict[str, object]], None]) -> None:
        self._listeners.append(listener)

    def unregister(self, listener: Callable[[Dict[str, object]], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def dispatch(self, event: Dict[str, object]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                self._logger.log(
                    "webhook_failed",
                    webhook_event=event.get("event"),
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(exc),
                )


__all__ = ["ApiExporter", "WebhookDispatcher"]
