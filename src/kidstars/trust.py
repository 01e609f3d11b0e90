"""Trust policy: how much approval friction a child's completions face."""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .exceptions import ValidationError
from .models import CompletionStatus, TaskDefinition

MIN_TRUST_LEVEL = 1
MAX_TRUST_LEVEL = 5
DEFAULT_AUTO_APPROVE_FROM = 3

TrustTable = Mapping[int, CompletionStatus]


def threshold_table(auto_approve_from: int = DEFAULT_AUTO_APPROVE_FROM) -> Dict[int, CompletionStatus]:
    """Build a table that auto-approves every level at or above ``auto_approve_from``."""

    return {
        level: CompletionStatus.AUTO_APPROVED if level >= auto_approve_from else CompletionStatus.PENDING
        for level in range(MIN_TRUST_LEVEL, MAX_TRUST_LEVEL + 1)
    }


DEFAULT_TRUST_TABLE: TrustTable = MappingProxyType(threshold_table())


def _validated(table: TrustTable) -> TrustTable:
    levels = set(range(MIN_TRUST_LEVEL, MAX_TRUST_LEVEL + 1))
    if set(table) != levels:
        raise ValidationError("A trust table must map every level from 1 to 5.")
    allowed = {CompletionStatus.PENDING, CompletionStatus.AUTO_APPROVED}
    for level, status in table.items():
        if status not in allowed:
            raise ValidationError(f"Trust level {level} maps to unsupported status '{status}'.")
    return MappingProxyType(dict(table))


class TrustPolicy:
    """Replaceable mapping from trust level to the initial completion status.

    ``category_tables`` lets particular task categories use a different table
    than the default one.
    """

    __slots__ = ("_table", "_category_tables")

    def __init__(
        self,
        table: Optional[TrustTable] = None,
        *,
        category_tables: Optional[Mapping[str, TrustTable]] = None,
    ) -> None:
        self._table = _validated(table if table is not None else DEFAULT_TRUST_TABLE)
        self._category_tables: Dict[str, TrustTable] = {
            category: _validated(category_table) for category, category_table in (category_tables or {}).items()
        }

    @classmethod
    def auto_approve_from(cls, level: int) -> "TrustPolicy":
        return cls(threshold_table(level))

    def decide(self, trust_level: int, task: TaskDefinition | None = None) -> CompletionStatus:
        if isinstance(trust_level, bool) or not isinstance(trust_level, int):
            raise ValidationError(f"Trust level must be an integer, got {trust_level!r}.")
        if not MIN_TRUST_LEVEL <= trust_level <= MAX_TRUST_LEVEL:
            raise ValidationError(f"Trust level {trust_level} is outside 1-5.")
        if task is not None and task.always_manual:
            return CompletionStatus.PENDING
        table = self._table
        if task is not None:
            table = self._category_tables.get(task.category, self._table)
        return table[trust_level]

    def table(self, category: str | None = None) -> TrustTable:
        if category is None:
            return self._table
        return self._category_tables.get(category, self._table)


__all__ = [
    "DEFAULT_AUTO_APPROVE_FROM",
    "DEFAULT_TRUST_TABLE",
    "MAX_TRUST_LEVEL",
    "MIN_TRUST_LEVEL",
    "TrustPolicy",
    "threshold_table",
]
