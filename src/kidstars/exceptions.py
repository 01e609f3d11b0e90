"""Custom exception hierarchy for the KidStars package."""

from __future__ import annotations


class KidStarsError(Exception):
    """Base class for all KidStars specific errors."""


class ValidationError(KidStarsError, ValueError):
    """Raised when an operation receives malformed input."""


class InvalidTaskError(KidStarsError):
    """Raised when a task is unknown, inactive or not assigned to the child."""


class InvalidRewardError(KidStarsError):
    """Raised when a reward is unknown, inactive or not offered to the child."""


class InsufficientBalanceError(KidStarsError):
    """Raised when a debit would take a star balance below zero."""


class AlreadyProcessedError(KidStarsError):
    """Raised when a transition is attempted on a record that already moved on."""


class NotFoundError(KidStarsError, LookupError):
    """Raised when a child or record lookup fails."""


class ConflictRetryExhaustedError(KidStarsError):
    """Raised when optimistic commits keep conflicting past the retry budget."""


class WriteConflict(KidStarsError):
    """Raised by a store when a commit observes a stale version or status."""
