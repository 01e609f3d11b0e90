"""Optimistic unit of work and the bounded retry loop around it."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from .exceptions import ConflictRetryExhaustedError, WriteConflict
from .models import ChildProfile, Record
from .ops import StructuredLogger
from .store import ChangeSet, StarStore

DEFAULT_MAX_ATTEMPTS = 3

T = TypeVar("T")


class UnitOfWork:
    """Reads snapshots and stages writes for a single commit attempt.

    Children are loaded once per unit and shared between everything staged on
    it, so a credit and a streak update for the same child end up in one
    versioned write.
    """

    __slots__ = ("_store", "_children", "_versions", "_dirty", "_inserts", "_transitions")

    def __init__(self, store: StarStore) -> None:
        self._store = store
        self._children: Dict[str, ChildProfile] = {}
        self._versions: Dict[str, int] = {}
        self._dirty: List[str] = []
        self._inserts: List[Record] = []
        self._transitions: List[Tuple[Record, str]] = []

    @property
    def store(self) -> StarStore:
        return self._store

    def child(self, child_id: str) -> ChildProfile:
        """Return this unit's snapshot of the child, loading it on first use."""

        snapshot = self._children.get(child_id)
        if snapshot is None:
            snapshot = self._store.get_child(child_id)
            self._children[child_id] = snapshot
            self._versions[child_id] = snapshot.version
        return snapshot

    def child_for_update(self, child_id: str) -> ChildProfile:
        """Return the child snapshot and include it in the commit."""

        snapshot = self.child(child_id)
        if child_id not in self._dirty:
            self._dirty.append(child_id)
        return snapshot

    def add(self, record: Record) -> None:
        self._inserts.append(record)

    def transition(self, record: Record, expected_status: str) -> None:
        """Stage ``record`` as the new state of a row currently in ``expected_status``."""

        self._transitions.append((record, expected_status))

    def changes(self) -> ChangeSet:
        return ChangeSet(
            children=[(self._children[child_id], self._versions[child_id]) for child_id in self._dirty],
            inserts=list(self._inserts),
            transitions=list(self._transitions),
        )

    def commit(self) -> None:
        changes = self.changes()
        if changes.is_empty():
            return
        self._store.apply(changes)


def run_in_transaction(
    store: StarStore,
    work: Callable[[UnitOfWork], T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    logger: Optional[StructuredLogger] = None,
    operation: str = "transaction",
) -> T:
    """Run ``work`` against fresh snapshots until its changes commit.

    Domain errors raised by ``work`` propagate immediately and nothing is
    written. Only :class:`WriteConflict` from the commit triggers a retry.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1.")
    for attempt in range(1, max_attempts + 1):
        unit = UnitOfWork(store)
        result = work(unit)
        try:
            unit.commit()
        except WriteConflict as exc:
            if logger is not None:
                logger.log("write_conflict", operation=operation, attempt=attempt, detail=str(exc))
            continue
        return result
    raise ConflictRetryExhaustedError(
        f"{operation} could not be committed after {max_attempts} attempts."
    )


__all__ = ["DEFAULT_MAX_ATTEMPTS", "UnitOfWork", "run_in_transaction"]
