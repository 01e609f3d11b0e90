"""Streak logic for consecutive days of approved task completions."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Optional

from .models import StreakData, calendar_day, utc_now
from .ops import StructuredLogger
from .store import StarStore
from .transactions import DEFAULT_MAX_ATTEMPTS, UnitOfWork, run_in_transaction


def days_between(earlier: date, later: date) -> int:
    """Whole calendar days from ``earlier`` to ``later`` (negative when reversed)."""

    return (later - earlier).days


def advance_streak(streaks: StreakData, today: date) -> StreakData:
    """Return the counters after one more completion on ``today``."""

    current = streaks.current_streak
    longest = streaks.longest_streak
    last = streaks.last_completion_date
    if last is None:
        current = 1
        longest = max(longest, 1)
    else:
        delta = days_between(last, today)
        if delta == 1:
            current += 1
            longest = max(longest, current)
        elif delta > 1:
            current = 1
        # same day, or a decision dated before the last completion: unchanged
    return replace(streaks, current_streak=current, longest_streak=longest, last_completion_date=today)


class StreakTracker:
    """Apply :func:`advance_streak` to a child's stored counters."""

    __slots__ = ("_store", "_max_attempts", "_logger", "_clock")

    def __init__(
        self,
        store: StarStore,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._logger = logger or StructuredLogger()
        self._clock = clock

    def record_completion(self, child_id: str, now: datetime | None = None) -> StreakData:
        moment = now or self._clock()
        streaks = run_in_transaction(
            self._store,
            lambda unit: self.stage_completion(unit, child_id, moment),
            max_attempts=self._max_attempts,
            logger=self._logger,
            operation="record_completion",
        )
        self._logger.log("streak_updated", child=child_id, current=streaks.current_streak, longest=streaks.longest_streak)
        return streaks

    def stage_completion(self, unit: UnitOfWork, child_id: str, now: datetime) -> StreakData:
        child = unit.child_for_update(child_id)
        child.streaks = advance_streak(child.streaks, calendar_day(now))
        return child.streaks

    def streaks(self, child_id: str) -> StreakData:
        return self._store.get_child(child_id).streaks


__all__ = ["StreakTracker", "advance_streak", "days_between"]
