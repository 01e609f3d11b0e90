"""Star ledger: the only writer of a child's star balances."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Optional
from uuid import uuid4

from .exceptions import InsufficientBalanceError
from .models import (
    DEFAULT_WEEKLY_LIMIT,
    ChildProfile,
    StarBalance,
    StarTransaction,
    StarType,
    TransactionType,
    utc_now,
)
from .ops import StructuredLogger
from .stars import AmountLike, format_stars, parse_star_type, require_positive, to_stars
from .store import StarStore
from .transactions import DEFAULT_MAX_ATTEMPTS, UnitOfWork, run_in_transaction


class StarLedger:
    """Credit, debit and refund stars with optimistic concurrency.

    Every public operation is one atomic read-modify-write of a single child,
    retried on conflict. The ``stage_*`` variants write into a caller's
    :class:`~kidstars.transactions.UnitOfWork` so that ledger effects commit
    together with record changes.
    """

    __slots__ = ("_store", "_max_attempts", "_logger", "_clock", "_weekly_limit")

    def __init__(
        self,
        store: StarStore,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], datetime] = utc_now,
        weekly_limit: int = DEFAULT_WEEKLY_LIMIT,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._logger = logger or StructuredLogger()
        self._clock = clock
        self._weekly_limit = require_positive(weekly_limit, allow_zero=True)

    # ------------------------------------------------------------------
    # Standalone transactional operations
    # ------------------------------------------------------------------
    def credit(
        self,
        child_id: str,
        star_type: StarType | str,
        amount: AmountLike,
        *,
        reason: str = "Stars earned",
        related_id: str | None = None,
    ) -> StarBalance:
        return self._apply_one(
            "credit",
            "stars_credited",
            lambda unit: self.stage_credit(unit, child_id, star_type, amount, reason=reason, related_id=related_id),
        )

    def debit(
        self,
        child_id: str,
        star_type: StarType | str,
        amount: AmountLike,
        *,
        reason: str = "Stars spent",
        related_id: str | None = None,
    ) -> StarBalance:
        return self._apply_one(
            "debit",
            "stars_debited",
            lambda unit: self.stage_debit(unit, child_id, star_type, amount, reason=reason, related_id=related_id),
        )

    def refund(
        self,
        child_id: str,
        star_type: StarType | str,
        amount: AmountLike,
        *,
        reason: str = "Stars refunded",
        related_id: str | None = None,
    ) -> StarBalance:
        return self._apply_one(
            "refund",
            "stars_refunded",
            lambda unit: self.stage_refund(unit, child_id, star_type, amount, reason=reason, related_id=related_id),
        )

    def reset_weekly(self, child_id: str, *, weekly_limit: int | None = None) -> Dict[StarType, StarBalance]:
        """Zero the weekly earned counters, optionally setting a new weekly limit.

        Returns the counters as committed by this reset.
        """

        limit = None if weekly_limit is None else require_positive(to_stars(weekly_limit), allow_zero=True)

        def work(unit: UnitOfWork) -> Dict[StarType, StarBalance]:
            child = unit.child_for_update(child_id)
            moment = self._clock()
            for star_type in StarType:
                entry = self._entry(child, star_type)
                entry.weekly_earned = 0
                entry.last_week_reset = moment
                if limit is not None:
                    entry.weekly_limit = limit
            return {star_type: replace(child.balances[star_type]) for star_type in StarType}

        balances = self._run("reset_weekly", work)
        self._logger.log("weekly_reset", child=child_id, weekly_limit=limit)
        return balances

    def balances(self, child_id: str) -> Dict[StarType, StarBalance]:
        """Return a snapshot of every star balance, including never-credited types."""

        child = self._store.get_child(child_id)
        return {star_type: self._entry(child, star_type) for star_type in StarType}

    # ------------------------------------------------------------------
    # Staged operations
    # ------------------------------------------------------------------
    def stage_credit(
        self,
        unit: UnitOfWork,
        child_id: str,
        star_type: StarType | str,
        amount: AmountLike,
        *,
        reason: str = "Stars earned",
        related_id: str | None = None,
    ) -> StarTransaction:
        kind = parse_star_type(star_type)
        value = require_positive(to_stars(amount))
        child = unit.child_for_update(child_id)
        entry = self._entry(child, kind)
        entry.balance += value
        # weekly_earned is a reporting counter; the balance itself is never capped
        entry.weekly_earned = min(entry.weekly_earned + value, entry.weekly_limit)
        return self._record(unit, child, kind, TransactionType.EARNED, value, reason, related_id)

    def stage_debit(
        self,
        unit: UnitOfWork,
        child_id: str,
        star_type: StarType | str,
        amount: AmountLike,
        *,
        reason: str = "Stars spent",
        related_id: str | None = None,
    ) -> StarTransaction:
        kind = parse_star_type(star_type)
        value = require_positive(to_stars(amount))
        child = unit.child_for_update(child_id)
        entry = self._entry(child, kind)
        if value > entry.balance:
            raise InsufficientBalanceError(
                f"{child.name} has {format_stars(entry.balance)} of {kind.value}; "
                f"{format_stars(value)} are required."
            )
        entry.balance -= value
        return self._record(unit, child, kind, TransactionType.SPENT, value, reason, related_id)

    def stage_refund(
        self,
        unit: UnitOfWork,
        child_id: str,
        star_type: StarType | str,
        amount: AmountLike,
        *,
        reason: str = "Stars refunded",
        related_id: str | None = None,
    ) -> StarTransaction:
        kind = parse_star_type(star_type)
        value = require_positive(to_stars(amount))
        child = unit.child_for_update(child_id)
        entry = self._entry(child, kind)
        entry.balance += value
        return self._record(unit, child, kind, TransactionType.REFUNDED, value, reason, related_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _entry(self, child: ChildProfile, star_type: StarType) -> StarBalance:
        entry = child.balances.get(star_type)
        if entry is None:
            entry = StarBalance(weekly_limit=self._weekly_limit)
            child.balances[star_type] = entry
        return entry

    def _record(
        self,
        unit: UnitOfWork,
        child: ChildProfile,
        star_type: StarType,
        transaction_type: TransactionType,
        amount: int,
        reason: str,
        related_id: str | None,
    ) -> StarTransaction:
        entry = StarTransaction(
            id=str(uuid4()),
            child_id=child.id,
            star_type=star_type,
            type=transaction_type,
            amount=amount,
            balance_after=child.balances[star_type].balance,
            reason=reason,
            related_id=related_id,
            timestamp=self._clock(),
        )
        unit.add(entry)
        return entry

    def _apply_one(
        self, operation: str, event: str, stage: Callable[[UnitOfWork], StarTransaction]
    ) -> StarBalance:
        def work(unit: UnitOfWork) -> tuple[StarTransaction, StarBalance]:
            entry = stage(unit)
            return entry, replace(unit.child(entry.child_id).balances[entry.star_type])

        entry, balance = self._run(operation, work)
        self._log_entry(event, entry)
        return balance

    def _run(self, operation: str, work):
        return run_in_transaction(
            self._store,
            work,
            max_attempts=self._max_attempts,
            logger=self._logger,
            operation=operation,
        )

    def _log_entry(self, event: str, entry: StarTransaction) -> None:
        self._logger.log(
            event,
            child=entry.child_id,
            star_type=entry.star_type.value,
            amount=entry.amount,
            balance=entry.balance_after,
            related_id=entry.related_id,
        )


__all__ = ["StarLedger"]
