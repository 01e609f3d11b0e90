"""Notification primitives for KidStars."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Sequence

from .models import utc_now


class NotificationType(str, Enum):
    COMPLETION_SUBMITTED = "completion_submitted"
    COMPLETION_DECIDED = "completion_decided"
    REDEMPTION_REQUESTED = "redemption_requested"
    REDEMPTION_DECIDED = "redemption_decided"
    REDEMPTION_FULFILLED = "redemption_fulfilled"
    CUSTOM_REWARD_REQUESTED = "custom_reward_requested"
    CUSTOM_REWARD_PRICED = "custom_reward_priced"
    CUSTOM_REWARD_DECIDED = "custom_reward_decided"
    WEEKLY_RESET = "weekly_reset"


@dataclass(slots=True)
class Notification:
    """A state change that observers of a family may want to hear about."""

    family_id: str
    child_id: str
    type: NotificationType
    record_id: str
    status: str
    message: str
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def as_dict(self) -> Dict[str, str]:
        payload = {
            "family_id": self.family_id,
            "child_id": self.child_id,
            "type": self.type.value,
            "record_id": self.record_id,
            "status": self.status,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }
        payload.update(self.metadata)
        return payload


class NotificationCenter:
    """In-memory notification inbox that callers poll or drain."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queue: List[Notification] = []
        self._sent: List[Notification] = []

    def queue(self, notification: Notification) -> None:
        with self._lock:
            self._queue.append(notification)

    def pending(
        self,
        *,
        notification_type: NotificationType | None = None,
        family_id: str | None = None,
    ) -> Sequence[Notification]:
        with self._lock:
            items = list(self._queue)
        if notification_type is not None:
            items = [item for item in items if item.type is notification_type]
        if family_id is not None:
            items = [item for item in items if item.family_id == family_id]
        return tuple(items)

    def pop_all(self) -> Sequence[Notification]:
        with self._lock:
            pending = tuple(self._queue)
            self._queue.clear()
            self._sent.extend(pending)
        return pending

    def history(self) -> Sequence[Notification]:
        with self._lock:
            return tuple(self._sent)


__all__ = ["Notification", "NotificationCenter", "NotificationType"]
