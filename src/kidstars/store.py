"""Persistence port for KidStars and the default in-memory implementation.

A store hands out *copies* of the child aggregates and records it holds. All
writes go through :meth:`StarStore.apply`, which commits a :class:`ChangeSet`
atomically: every touched child must still carry the version it was read at,
and every transitioned record must still be in the status it was read in.
Otherwise the whole change set is refused with :class:`WriteConflict` and the
caller re-reads and tries again.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from .exceptions import NotFoundError, WriteConflict
from .models import (
    ChildProfile,
    CompletionStatus,
    CustomRequestStatus,
    CustomRewardRequest,
    Record,
    RedemptionStatus,
    RewardDefinition,
    RewardRedemption,
    StarTransaction,
    TaskCompletion,
    TaskDefinition,
)

R = TypeVar("R", TaskCompletion, RewardRedemption, CustomRewardRequest, StarTransaction)


@dataclass(slots=True)
class ChangeSet:
    """Writes collected by a unit of work, applied all-or-nothing."""

    children: List[Tuple[ChildProfile, int]] = field(default_factory=list)
    inserts: List[Record] = field(default_factory=list)
    transitions: List[Tuple[Record, str]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.children or self.inserts or self.transitions)


class StarStore(ABC):
    """Abstract access to children, catalogs and star records."""

    # Child profile store ---------------------------------------------------
    @abstractmethod
    def add_child(self, child: ChildProfile) -> None: ...

    @abstractmethod
    def get_child(self, child_id: str) -> ChildProfile:
        """Return a detached copy of the child or raise :class:`NotFoundError`."""

    @abstractmethod
    def children(self, family_id: str) -> Sequence[ChildProfile]: ...

    # Catalogs --------------------------------------------------------------
    @abstractmethod
    def add_task(self, task: TaskDefinition) -> None: ...

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[TaskDefinition]: ...

    @abstractmethod
    def add_reward(self, reward: RewardDefinition) -> None: ...

    @abstractmethod
    def get_reward(self, reward_id: str) -> Optional[RewardDefinition]: ...

    # Records ---------------------------------------------------------------
    @abstractmethod
    def get_completion(self, completion_id: str) -> TaskCompletion: ...

    @abstractmethod
    def get_redemption(self, redemption_id: str) -> RewardRedemption: ...

    @abstractmethod
    def get_custom_request(self, request_id: str) -> CustomRewardRequest: ...

    @abstractmethod
    def completions(
        self,
        *,
        family_id: str | None = None,
        child_id: str | None = None,
        status: CompletionStatus | None = None,
    ) -> Sequence[TaskCompletion]: ...

    @abstractmethod
    def redemptions(
        self,
        *,
        family_id: str | None = None,
        child_id: str | None = None,
        status: RedemptionStatus | None = None,
    ) -> Sequence[RewardRedemption]: ...

    @abstractmethod
    def custom_requests(
        self,
        *,
        family_id: str | None = None,
        child_id: str | None = None,
        status: CustomRequestStatus | None = None,
    ) -> Sequence[CustomRewardRequest]: ...

    @abstractmethod
    def transactions(self, child_id: str) -> Sequence[StarTransaction]: ...

    # Writes ----------------------------------------------------------------
    @abstractmethod
    def apply(self, changes: ChangeSet) -> None:
        """Commit ``changes`` atomically or raise :class:`WriteConflict`."""


class InMemoryStarStore(StarStore):
    """Thread-safe dictionary backed store used by default and in tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._children: Dict[str, ChildProfile] = {}
        self._tasks: Dict[str, TaskDefinition] = {}
        self._rewards: Dict[str, RewardDefinition] = {}
        self._records: Dict[type, Dict[str, Record]] = {
            TaskCompletion: {},
            RewardRedemption: {},
            CustomRewardRequest: {},
            StarTransaction: {},
        }

    def add_child(self, child: ChildProfile) -> None:
        with self._lock:
            if child.id in self._children:
                raise ValueError(f"Child '{child.id}' already exists.")
            self._children[child.id] = copy.deepcopy(child)

    def get_child(self, child_id: str) -> ChildProfile:
        with self._lock:
            child = self._children.get(child_id)
            if child is None:
                raise NotFoundError(f"Child '{child_id}' does not exist.")
            return copy.deepcopy(child)

    def children(self, family_id: str) -> Sequence[ChildProfile]:
        with self._lock:
            return tuple(
                copy.deepcopy(child) for child in self._children.values() if child.family_id == family_id
            )

    def add_task(self, task: TaskDefinition) -> None:
        with self._lock:
            self._tasks[task.id] = replace(task)

    def get_task(self, task_id: str) -> Optional[TaskDefinition]:
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task else None

    def add_reward(self, reward: RewardDefinition) -> None:
        with self._lock:
            self._rewards[reward.id] = replace(reward)

    def get_reward(self, reward_id: str) -> Optional[RewardDefinition]:
        with self._lock:
            reward = self._rewards.get(reward_id)
            return replace(reward) if reward else None

    def get_completion(self, completion_id: str) -> TaskCompletion:
        return self._get(TaskCompletion, completion_id, "Task completion")

    def get_redemption(self, redemption_id: str) -> RewardRedemption:
        return self._get(RewardRedemption, redemption_id, "Reward redemption")

    def get_custom_request(self, request_id: str) -> CustomRewardRequest:
        return self._get(CustomRewardRequest, request_id, "Custom reward request")

    def completions(
        self,
        *,
        family_id: str | None = None,
        child_id: str | None = None,
        status: CompletionStatus | None = None,
    ) -> Sequence[TaskCompletion]:
        return self._select(TaskCompletion, family_id, child_id, status)

    def redemptions(
        self,
        *,
        family_id: str | None = None,
        child_id: str | None = None,
        status: RedemptionStatus | None = None,
    ) -> Sequence[RewardRedemption]:
        return self._select(RewardRedemption, family_id, child_id, status)

    def custom_requests(
        self,
        *,
        family_id: str | None = None,
        child_id: str | None = None,
        status: CustomRequestStatus | None = None,
    ) -> Sequence[CustomRewardRequest]:
        return self._select(CustomRewardRequest, family_id, child_id, status)

    def transactions(self, child_id: str) -> Sequence[StarTransaction]:
        with self._lock:
            entries = [
                replace(entry)
                for entry in self._records[StarTransaction].values()
                if entry.child_id == child_id
            ]
        return tuple(sorted(entries, key=lambda entry: entry.timestamp))

    def apply(self, changes: ChangeSet) -> None:
        with self._lock:
            for child, expected_version in changes.children:
                stored = self._children.get(child.id)
                if stored is None or stored.version != expected_version:
                    raise WriteConflict(f"Child '{child.id}' changed since it was read.")
            for record, expected_status in changes.transitions:
                stored_record = self._records[type(record)].get(record.id)
                if stored_record is None or stored_record.status != expected_status:
                    raise WriteConflict(f"Record '{record.id}' is no longer {expected_status}.")
            for record in changes.inserts:
                if record.id in self._records[type(record)]:
                    raise WriteConflict(f"Record '{record.id}' already exists.")

            for child, expected_version in changes.children:
                stored_child = copy.deepcopy(child)
                stored_child.version = expected_version + 1
                self._children[child.id] = stored_child
            for record in changes.inserts:
                self._records[type(record)][record.id] = replace(record)
            for record, _ in changes.transitions:
                self._records[type(record)][record.id] = replace(record)

    def _get(self, kind: Type[R], record_id: str, label: str) -> R:
        with self._lock:
            record = self._records[kind].get(record_id)
            if record is None:
                raise NotFoundError(f"{label} '{record_id}' does not exist.")
            return replace(record)

    def _select(self, kind: Type[R], family_id, child_id, status) -> Tuple[R, ...]:
        with self._lock:
            records = list(self._records[kind].values())
        if family_id is not None:
            records = [record for record in records if record.family_id == family_id]
        if child_id is not None:
            records = [record for record in records if record.child_id == child_id]
        if status is not None:
            records = [record for record in records if record.status == status]
        return tuple(replace(record) for record in records)


__all__ = ["ChangeSet", "InMemoryStarStore", "StarStore"]
