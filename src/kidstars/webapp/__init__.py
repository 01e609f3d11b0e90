"""KidStars web service package (SQLModel persistence and a FastAPI JSON API).

``application`` builds the default SQL-backed app on import, so it is only
loaded when one of its names is first requested.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any, List

from . import persistence
from .persistence import *  # noqa: F401,F403

_APPLICATION_NAMES = ("ERROR_RESPONSES", "app", "build_default_service", "create_app", "error_payload")

__all__: List[str] = [*persistence.__all__, *_APPLICATION_NAMES]


def __getattr__(name: str) -> Any:
    if name in _APPLICATION_NAMES:
        return getattr(import_module(".application", __name__), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
