"""
utils.py — Shared helpers for the Type-Beat Opportunity Engine
===============================================================
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone


# ── structured logger ───────────────────────────────────────────────────────

def get_logger(name: str = "typebeat", level: int = logging.INFO) -> logging.Logger:
    """
    Return a consistently-formatted logger.

    Format: ``[2026-02-10 08:15:23 UTC] [INFO] module — message``
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="[%(asctime)s UTC] [%(levelname)s] %(name)s — %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        formatter.converter = lambda *_: datetime.now(timezone.utc).timetuple()
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger


# ── time helpers ────────────────────────────────────────────────────────────

def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


# ── numeric helpers ─────────────────────────────────────────────────────────

def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Clamp *value* into ``[lo, hi]``; NaN maps to *lo*."""
    if value != value:  # NaN
        return lo
    return max(lo, min(hi, value))


def safe_int(value, default: int | None = None) -> int | None:
    """
    Coerce provider numbers (often delivered as strings) into ints.

    ``"1234"`` → 1234, ``None`` / ``""`` / garbage → *default*.
    """
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def safe_float(value, default: float | None = None) -> float | None:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def normalise_name(name: str) -> str:
    """Case-insensitive de-duplication key for artist names."""
    return " ".join(name.strip().lower().split())
