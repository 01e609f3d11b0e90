"""KidStars package: the reward economy and approval engine behind a family chore chart."""

from .admin import AuditLog
from .api import ApiExporter, WebhookDispatcher
from .approvals import ApprovalQueue
from .completions import CompletionGateway, DuplicatePolicy
from .custom_rewards import CustomRewardNegotiation
from .exceptions import (
    AlreadyProcessedError,
    ConflictRetryExhaustedError,
    InsufficientBalanceError,
    InvalidRewardError,
    InvalidTaskError,
    KidStarsError,
    NotFoundError,
    ValidationError,
)
from .ledger import StarLedger
from .models import (
    ApprovalItem,
    ApprovalKind,
    AuditEvent,
    ChildProfile,
    CompletionStatus,
    CustomRequestStatus,
    CustomRewardRequest,
    Decision,
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
from .notifications import Notification, NotificationCenter, NotificationType
from .ops import StructuredLogger
from .redemptions import RedemptionWorkflow
from .service import KidStars
from .store import ChangeSet, InMemoryStarStore, StarStore
from .streaks import StreakTracker, advance_streak
from .transactions import UnitOfWork, run_in_transaction
from .trust import TrustPolicy

__all__ = [
    "AlreadyProcessedError",
    "ApiExporter",
    "ApprovalItem",
    "ApprovalKind",
    "ApprovalQueue",
    "AuditEvent",
    "AuditLog",
    "ChangeSet",
    "ChildProfile",
    "CompletionGateway",
    "CompletionStatus",
    "ConflictRetryExhaustedError",
    "CustomRequestStatus",
    "CustomRewardNegotiation",
    "CustomRewardRequest",
    "Decision",
    "DuplicatePolicy",
    "InMemoryStarStore",
    "InsufficientBalanceError",
    "InvalidRewardError",
    "InvalidTaskError",
    "KidStars",
    "KidStarsError",
    "Notification",
    "NotificationCenter",
    "NotificationType",
    "NotFoundError",
    "RedemptionStatus",
    "RedemptionWorkflow",
    "RewardDefinition",
    "RewardRedemption",
    "StarBalance",
    "StarLedger",
    "StarStore",
    "StarTransaction",
    "StarType",
    "StreakData",
    "StreakTracker",
    "StructuredLogger",
    "TaskCompletion",
    "TaskDefinition",
    "TransactionType",
    "TrustPolicy",
    "UnitOfWork",
    "ValidationError",
    "advance_streak",
    "run_in_transaction",
]
