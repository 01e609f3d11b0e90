"""Domain models used by the KidStars package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

DEFAULT_WEEKLY_LIMIT = 100


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def calendar_day(moment: datetime) -> date:
    """Return the household calendar day that ``moment`` falls on.

    Aware values are converted to the server's local zone first. Naive values
    are taken to be local already.
    """

    return moment.astimezone().date() if moment.tzinfo is not None else moment.date()


class StarType(str, Enum):
    """The independent star currencies a child can hold."""

    GROWTH = "growth"
    FUN = "fun"


class Decision(str, Enum):
    """A parent's verdict on a pending item."""

    APPROVE = "approve"
    REJECT = "reject"


class CompletionStatus(str, Enum):
    """Lifecycle for task completions."""

    PENDING = "pending"
    AUTO_APPROVED = "auto_approved"
    APPROVED = "approved"
    REJECTED = "rejected"


class RedemptionStatus(str, Enum):
    """Lifecycle for catalog reward redemptions."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FULFILLED = "fulfilled"


class CustomRequestStatus(str, Enum):
    """Lifecycle for free-form reward requests."""

    PENDING = "pending"
    STARS_SET = "stars_set"
    APPROVED = "approved"
    REJECTED = "rejected"


class TransactionType(str, Enum):
    """Enumerates the ledger entries written by the star ledger."""

    EARNED = "earned"
    SPENT = "spent"
    REFUNDED = "refunded"


class ApprovalKind(str, Enum):
    """Kinds of items shown in the parent approval queue."""

    COMPLETION = "completion"
    REDEMPTION = "redemption"
    CUSTOM_REWARD = "custom_reward"


@dataclass(slots=True)
class StarBalance:
    """Balance and weekly earning counters for one star type."""

    balance: int = 0
    weekly_earned: int = 0
    weekly_limit: int = DEFAULT_WEEKLY_LIMIT
    last_week_reset: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.balance < 0:
            raise ValueError("balance cannot be negative.")


@dataclass(slots=True)
class StreakData:
    """Consecutive-day completion counters for a child."""

    current_streak: int = 0
    longest_streak: int = 0
    last_completion_date: Optional[date] = None


@dataclass(slots=True)
class ChildProfile:
    """The per-child aggregate whose balances and streaks this package mutates."""

    id: str
    family_id: str
    name: str
    trust_level: int = 1
    balances: Dict[StarType, StarBalance] = field(default_factory=dict)
    streaks: StreakData = field(default_factory=StreakData)
    version: int = 0

    def balance(self, star_type: StarType) -> int:
        """Return the spendable balance for ``star_type`` (zero when never credited)."""

        entry = self.balances.get(star_type)
        return entry.balance if entry else 0


@dataclass(slots=True)
class TaskDefinition:
    """Task catalog entry."""

    id: str
    family_id: str
    title: str
    star_value: int
    star_type: StarType = StarType.GROWTH
    is_active: bool = True
    assigned_child_ids: Tuple[str, ...] = ()
    category: str = "chores"
    always_manual: bool = False

    def is_assigned_to(self, child_id: str) -> bool:
        return child_id in self.assigned_child_ids


@dataclass(slots=True)
class RewardDefinition:
    """Reward catalog entry."""

    id: str
    family_id: str
    name: str
    star_cost: int
    star_type: StarType = StarType.GROWTH
    requires_approval: bool = True
    is_active: bool = True
    available_to: Tuple[str, ...] = ()
    limit_per_week: Optional[int] = None

    def is_available_to(self, child_id: str) -> bool:
        return child_id in self.available_to


@dataclass(slots=True)
class TaskCompletion:
    """A child's claim of having finished a task."""

    id: str
    task_id: str
    child_id: str
    family_id: str
    star_type: StarType
    stars_awarded: int
    status: CompletionStatus
    completed_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    note: Optional[str] = None


@dataclass(slots=True)
class RewardRedemption:
    """A request to spend escrowed stars on a catalog reward."""

    id: str
    reward_id: str
    reward_name: str
    child_id: str
    family_id: str
    star_type: StarType
    stars_deducted: int
    status: RedemptionStatus
    requested_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    fulfilled_at: Optional[datetime] = None
    note: Optional[str] = None


@dataclass(slots=True)
class CustomRewardRequest:
    """A free-form reward request that a parent prices before deciding."""

    id: str
    child_id: str
    family_id: str
    reward_name: str
    status: CustomRequestStatus
    requested_at: datetime
    star_type: StarType = StarType.GROWTH
    link: Optional[str] = None
    image: Optional[str] = None
    stars_required: Optional[int] = None
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None


@dataclass(slots=True)
class StarTransaction:
    """Represents a single ledger entry for a child's star balance."""

    id: str
    child_id: str
    star_type: StarType
    type: TransactionType
    amount: int
    balance_after: int
    reason: str = ""
    related_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class ApprovalItem:
    """A pending item decorated for display in the parent approval queue."""

    kind: ApprovalKind
    record_id: str
    child_id: str
    child_name: str
    title: str
    stars: Optional[int]
    star_type: StarType
    status: str
    submitted_at: datetime


@dataclass(slots=True)
class AuditEvent:
    """Represents an auditable parent or system action."""

    actor: str
    action: str
    target: str
    timestamp: datetime = field(default_factory=utc_now)
    details: Dict[str, Any] = field(default_factory=dict)


Record = TaskCompletion | RewardRedemption | CustomRewardRequest | StarTransaction


__all__ = [
    "DEFAULT_WEEKLY_LIMIT",
    "ApprovalItem",
    "ApprovalKind",
    "AuditEvent",
    "ChildProfile",
    "CompletionStatus",
    "CustomRequestStatus",
    "CustomRewardRequest",
    "Decision",
    "Record",
    "RedemptionStatus",
    "RewardDefinition",
    "RewardRedemption",
    "StarBalance",
    "StarTransaction",
    "StarType",
    "StreakData",
    "TaskCompletion",
    "TaskDefinition",
    "TransactionType",
    "calendar_day",
    "utc_now",
]
