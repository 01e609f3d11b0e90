"""Configuration constants for the KidStars web service."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _int_setting(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from exc


DATABASE_URL = os.environ.get("KIDSTARS_DATABASE_URL", "sqlite:///kidstars.db")
MAX_ATTEMPTS = _int_setting("KIDSTARS_MAX_ATTEMPTS", 3)
WEEKLY_LIMIT = _int_setting("KIDSTARS_WEEKLY_LIMIT", 100)
DUPLICATE_POLICY = os.environ.get("KIDSTARS_DUPLICATE_POLICY", "allow")
AUTO_APPROVE_FROM = _int_setting("KIDSTARS_AUTO_APPROVE_FROM", 3)
_LOG_FILE = os.environ.get("KIDSTARS_LOG_FILE", "").strip()
LOG_FILE: Optional[Path] = Path(_LOG_FILE) if _LOG_FILE else None

__all__ = [
    "AUTO_APPROVE_FROM",
    "DATABASE_URL",
    "DUPLICATE_POLICY",
    "LOG_FILE",
    "MAX_ATTEMPTS",
    "WEEKLY_LIMIT",
]
