"""Persistence and SQLModel definitions for the KidStars web service."""
from __future__ import annotations

from dataclasses import fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple, Type

from sqlalchemy import DateTime, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from ..exceptions import NotFoundError, WriteConflict
from ..models import (
    ChildProfile,
    CompletionStatus,
    CustomRequestStatus,
    CustomRewardRequest,
    Record,
    RedemptionStatus,
    RewardDefinition,
    RewardRedemption,
    StarBalance,
    StarTransaction,
    StarType,
    StreakData,
    TaskCompletion,
    TaskDefinition,
    TransactionType,
)
from ..store import ChangeSet, StarStore
from .config import DATABASE_URL


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
# Stored timestamps are UTC; sqlite hands them back without an offset.
def _stamp(**kwargs: Any) -> Any:
    return Field(sa_type=DateTime(timezone=True), **kwargs)


class Child(SQLModel, table=True):
    id: str = Field(primary_key=True)
    family_id: str = Field(index=True)
    name: str
    trust_level: int = 1
    version: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_completion_date: Optional[date] = None


class Balance(SQLModel, table=True):
    child_id: str = Field(primary_key=True)
    star_type: str = Field(primary_key=True)
    balance: int = 0
    weekly_earned: int = 0
    weekly_limit: int = 100
    last_week_reset: Optional[datetime] = _stamp(default=None)


class Task(SQLModel, table=True):
    id: str = Field(primary_key=True)
    family_id: str = Field(index=True)
    title: str
    star_value: int
    star_type: str = StarType.GROWTH.value
    is_active: bool = True
    assigned_child_ids: str = ""  # comma separated child ids
    category: str = "chores"
    always_manual: bool = False


class Reward(SQLModel, table=True):
    id: str = Field(primary_key=True)
    family_id: str = Field(index=True)
    name: str
    star_cost: int
    star_type: str = StarType.GROWTH.value
    requires_approval: bool = True
    is_active: bool = True
    available_to: str = ""  # comma separated child ids
    limit_per_week: Optional[int] = None


class Completion(SQLModel, table=True):
    id: str = Field(primary_key=True)
    task_id: str
    child_id: str = Field(index=True)
    family_id: str = Field(index=True)
    star_type: str
    stars_awarded: int
    status: str = Field(index=True)  # pending|auto_approved|approved|rejected
    completed_at: datetime = _stamp()
    decided_at: Optional[datetime] = _stamp(default=None)
    decided_by: Optional[str] = None
    note: Optional[str] = None


class Redemption(SQLModel, table=True):
    id: str = Field(primary_key=True)
    reward_id: str
    reward_name: str
    child_id: str = Field(index=True)
    family_id: str = Field(index=True)
    star_type: str
    stars_deducted: int
    status: str = Field(index=True)  # pending|approved|rejected|fulfilled
    requested_at: datetime = _stamp()
    decided_at: Optional[datetime] = _stamp(default=None)
    decided_by: Optional[str] = None
    fulfilled_at: Optional[datetime] = _stamp(default=None)
    note: Optional[str] = None


class CustomReward(SQLModel, table=True):
    id: str = Field(primary_key=True)
    child_id: str = Field(index=True)
    family_id: str = Field(index=True)
    reward_name: str
    status: str = Field(index=True)  # pending|stars_set|approved|rejected
    requested_at: datetime = _stamp()
    star_type: str = StarType.GROWTH.value
    link: Optional[str] = None
    image: Optional[str] = None
    stars_required: Optional[int] = None
    decided_at: Optional[datetime] = _stamp(default=None)
    decided_by: Optional[str] = None


class StarEvent(SQLModel, table=True):
    id: str = Field(primary_key=True)
    child_id: str = Field(index=True)
    star_type: str
    type: str  # earned|spent|refunded
    amount: int
    balance_after: int
    reason: str = ""
    related_id: Optional[str] = None
    timestamp: datetime = _stamp()


_RECORD_TABLES: Dict[type, Type[SQLModel]] = {
    TaskCompletion: Completion,
    RewardRedemption: Redemption,
    CustomRewardRequest: CustomReward,
    StarTransaction: StarEvent,
}

_ENUM_FIELDS: Dict[type, Dict[str, Type[Enum]]] = {
    TaskCompletion: {"star_type": StarType, "status": CompletionStatus},
    RewardRedemption: {"star_type": StarType, "status": RedemptionStatus},
    CustomRewardRequest: {"star_type": StarType, "status": CustomRequestStatus},
    StarTransaction: {"star_type": StarType, "type": TransactionType},
}


# ---------------------------------------------------------------------------
# Database initialisation
# ---------------------------------------------------------------------------
def build_engine(url: str = DATABASE_URL, *, echo: bool = False) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


def create_db_and_tables(target: Engine) -> None:
    SQLModel.metadata.create_all(target)


# ---------------------------------------------------------------------------
# Row conversion helpers
# ---------------------------------------------------------------------------
def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _split(raw: str) -> Tuple[str, ...]:
    return tuple(part for part in raw.split(",") if part)


def _record_row(record: Record) -> SQLModel:
    table = _RECORD_TABLES[type(record)]
    return table(**{item.name: _plain(getattr(record, item.name)) for item in fields(record)})


def _record_values(record: Record) -> Dict[str, Any]:
    return {item.name: _plain(getattr(record, item.name)) for item in fields(record) if item.name != "id"}


def _record_from_row(kind: type, row: SQLModel) -> Record:
    enums = _ENUM_FIELDS[kind]
    values: Dict[str, Any] = {}
    for item in fields(kind):
        value = getattr(row, item.name)
        if item.name in enums and value is not None:
            value = enums[item.name](value)
        elif isinstance(value, datetime):
            value = _aware(value)
        values[item.name] = value
    return kind(**values)


def _task_from_row(row: Task) -> TaskDefinition:
    return TaskDefinition(
        id=row.id,
        family_id=row.family_id,
        title=row.title,
        star_value=row.star_value,
        star_type=StarType(row.star_type),
        is_active=row.is_active,
        assigned_child_ids=_split(row.assigned_child_ids),
        category=row.category,
        always_manual=row.always_manual,
    )


def _reward_from_row(row: Reward) -> RewardDefinition:
    return RewardDefinition(
        id=row.id,
        family_id=row.family_id,
        name=row.name,
        star_cost=row.star_cost,
        star_type=StarType(row.star_type),
        requires_approval=row.requires_approval,
        is_active=row.is_active,
        available_to=_split(row.available_to),
        limit_per_week=row.limit_per_week,
    )


# ---------------------------------------------------------------------------
# Store implementation
# ---------------------------------------------------------------------------
class SqlStarStore(StarStore):
    """:class:`~kidstars.store.StarStore` backed by SQLModel tables.

    ``apply`` runs in a single database transaction. Child rows are written
    with ``UPDATE ... WHERE version = :expected`` and record transitions with
    ``UPDATE ... WHERE status = :expected``; a zero row count on either rolls
    the whole transaction back and surfaces as :class:`WriteConflict`.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_tables(self) -> None:
        create_db_and_tables(self._engine)

    # Child profile store ---------------------------------------------------
    def add_child(self, child: ChildProfile) -> None:
        with Session(self._engine) as session:
            if session.get(Child, child.id) is not None:
                raise ValueError(f"Child '{child.id}' already exists.")
            session.add(
                Child(
                    id=child.id,
                    family_id=child.family_id,
                    name=child.name,
                    trust_level=child.trust_level,
                    version=child.version,
                    current_streak=child.streaks.current_streak,
                    longest_streak=child.streaks.longest_streak,
                    last_completion_date=child.streaks.last_completion_date,
                )
            )
            self._write_balances(session, child)
            session.commit()

    def get_child(self, child_id: str) -> ChildProfile:
        with Session(self._engine) as session:
            row = session.get(Child, child_id)
            if row is None:
                raise NotFoundError(f"Child '{child_id}' does not exist.")
            return self._child_from_row(session, row)

    def children(self, family_id: str) -> Sequence[ChildProfile]:
        with Session(self._engine) as session:
            rows = session.exec(select(Child).where(Child.family_id == family_id)).all()
            return tuple(self._child_from_row(session, row) for row in rows)

    # Catalogs --------------------------------------------------------------
    def add_task(self, task: TaskDefinition) -> None:
        with Session(self._engine) as session:
            session.merge(
                Task(
                    id=task.id,
                    family_id=task.family_id,
                    title=task.title,
                    star_value=task.star_value,
                    star_type=task.star_type.value,
                    is_active=task.is_active,
                    assigned_child_ids=",".join(task.assigned_child_ids),
                    category=task.category,
                    always_manual=task.always_manual,
                )
            )
            session.commit()

    def get_task(self, task_id: str) -> Optional[TaskDefinition]:
        with Session(self._engine) as session:
            row = session.get(Task, task_id)
            return _task_from_row(row) if row else None

    def add_reward(self, reward: RewardDefinition) -> None:
        with Session(self._engine) as session:
            session.merge(
                Reward(
                    id=reward.id,
                    family_id=reward.family_id,
                    name=reward.name,
                    star_cost=reward.star_cost,
                    star_type=reward.star_type.value,
                    requires_approval=reward.requires_approval,
                    is_active=reward.is_active,
                    available_to=",".join(reward.available_to),
                    limit_per_week=reward.limit_per_week,
                )
            )
            session.commit()

    def get_reward(self, reward_id: str) -> Optional[RewardDefinition]:
        with Session(self._engine) as session:
            row = session.get(Reward, reward_id)
            return _reward_from_row(row) if row else None

    # Records ---------------------------------------------------------------
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
        with Session(self._engine) as session:
            rows = session.exec(
                select(StarEvent).where(StarEvent.child_id == child_id).order_by(StarEvent.timestamp)
            ).all()
            return tuple(_record_from_row(StarTransaction, row) for row in rows)

    # Writes ----------------------------------------------------------------
    def apply(self, changes: ChangeSet) -> None:
        with Session(self._engine) as session:
            try:
                self._stage(session, changes)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise WriteConflict("A record with the same id already exists.") from exc
            except OperationalError as exc:
                session.rollback()
                # sqlite reports lock contention between writers this way
                if "locked" in str(exc).lower():
                    raise WriteConflict("The database was busy with another write.") from exc
                raise
            except WriteConflict:
                session.rollback()
                raise

    # Internal helpers ------------------------------------------------------
    def _stage(self, session: Session, changes: ChangeSet) -> None:
        for child, expected_version in changes.children:
            result = session.exec(
                update(Child)
                .where(Child.id == child.id, Child.version == expected_version)
                .values(
                    trust_level=child.trust_level,
                    version=expected_version + 1,
                    current_streak=child.streaks.current_streak,
                    longest_streak=child.streaks.longest_streak,
                    last_completion_date=child.streaks.last_completion_date,
                )
            )
            if result.rowcount != 1:
                raise WriteConflict(f"Child '{child.id}' changed since it was read.")
            self._write_balances(session, child)
        for record, expected_status in changes.transitions:
            table = _RECORD_TABLES[type(record)]
            result = session.exec(
                update(table)
                .where(table.id == record.id, table.status == _plain(expected_status))
                .values(**_record_values(record))
            )
            if result.rowcount != 1:
                raise WriteConflict(f"Record '{record.id}' is no longer {_plain(expected_status)}.")
        for record in changes.inserts:
            session.add(_record_row(record))

    def _write_balances(self, session: Session, child: ChildProfile) -> None:
        for star_type, entry in child.balances.items():
            row = session.get(Balance, (child.id, star_type.value))
            if row is None:
                row = Balance(child_id=child.id, star_type=star_type.value)
            row.balance = entry.balance
            row.weekly_earned = entry.weekly_earned
            row.weekly_limit = entry.weekly_limit
            row.last_week_reset = entry.last_week_reset
            session.add(row)

    def _child_from_row(self, session: Session, row: Child) -> ChildProfile:
        balances = session.exec(select(Balance).where(Balance.child_id == row.id)).all()
        return ChildProfile(
            id=row.id,
            family_id=row.family_id,
            name=row.name,
            trust_level=row.trust_level,
            balances={
                StarType(entry.star_type): StarBalance(
                    balance=entry.balance,
                    weekly_earned=entry.weekly_earned,
                    weekly_limit=entry.weekly_limit,
                    last_week_reset=_aware(entry.last_week_reset),
                )
                for entry in balances
            },
            streaks=StreakData(
                current_streak=row.current_streak,
                longest_streak=row.longest_streak,
                last_completion_date=row.last_completion_date,
            ),
            version=row.version,
        )

    def _get(self, kind: type, record_id: str, label: str):
        with Session(self._engine) as session:
            row = session.get(_RECORD_TABLES[kind], record_id)
            if row is None:
                raise NotFoundError(f"{label} '{record_id}' does not exist.")
            return _record_from_row(kind, row)

    def _select(self, kind: type, family_id, child_id, status) -> Tuple[Record, ...]:
        table = _RECORD_TABLES[kind]
        query = select(table)
        if family_id is not None:
            query = query.where(table.family_id == family_id)
        if child_id is not None:
            query = query.where(table.child_id == child_id)
        if status is not None:
            query = query.where(table.status == _plain(status))
        with Session(self._engine) as session:
            return tuple(_record_from_row(kind, row) for row in session.exec(query).all())


engine = build_engine()


__all__ = [
    "Balance",
    "Child",
    "Completion",
    "CustomReward",
    "Redemption",
    "Reward",
    "SqlStarStore",
    "StarEvent",
    "Task",
    "build_engine",
    "create_db_and_tables",
    "engine",
]
