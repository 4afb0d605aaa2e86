"""
throttle.py — Rate limiting, quota accounting & bearer tokens
===============================================================
Per-client throttling state.  Every object here owns a lock and is safe
to share between the orchestrator's worker threads; nothing is global.

Policies
--------
FixedWindowThrottle
    *N* calls per *window* seconds.  Callers reserve the next free slot in
    FIFO order and sleep until it comes up, so excess calls are delayed,
    never dropped.  Any *N + 1* consecutive slots span at least one full
    window.
QuotaMeter
    Daily budget in abstract units with per-operation cost.  ``reserve``
    either debits the full cost atomically or raises ``QuotaExceededError``
    without touching the network.  Resets at the UTC day boundary.
TokenManager
    Bearer token for expiring credentials.  Fetched lazily, refreshed when
    within ``safety_margin`` seconds of expiry, single-flight under
    concurrency.
RetryPolicy
    Bounded exponential backoff with jitter.
"""

from __future__ import annotations

import random
import threading
import time
from collections import deque
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Tuple

from typebeat.errors import QuotaExceededError
from typebeat.utils import get_logger

logger = get_logger("typebeat.throttle")


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


# ── retry policy ────────────────────────────────────────────────────────────

class RetryPolicy:
    """
    Exponential backoff: ``base_delay * 2**(attempt-1)``, capped at
    ``max_delay``, stretched by up to ``jitter`` (fraction) at random.

    Parameters
    ----------
    max_attempts : int
        Total attempts including the first one.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 0.25,
        retry_after_cap: float = 120.0,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retry_after_cap = retry_after_cap
        self._rng = rng or random.Random()

    def delay(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (1-based)."""
        raw = min(self.base_delay * (2 ** max(0, attempt - 1)), self.max_delay)
        if self.jitter:
            raw *= 1.0 + self._rng.uniform(0.0, self.jitter)
        return min(raw, self.max_delay)


# ── fixed window queue ──────────────────────────────────────────────────────

class FixedWindowThrottle:
    """
    At most ``max_calls`` per ``window`` seconds, plus an optional minimum
    spacing between consecutive calls.

    Parameters
    ----------
    clock, sleep :
        Injectable for tests; default to ``time.monotonic`` / ``time.sleep``.
    """

    def __init__(
        self,
        max_calls: int,
        window: float,
        *,
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "",
    ) -> None:
        if max_calls < 1 or window <= 0:
            raise ValueError("max_calls must be >= 1 and window > 0")
        self.max_calls = max_calls
        self.window = window
        self.min_interval = min_interval
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._slots: deque = deque(maxlen=max_calls)
        self._lock = threading.Lock()
        self._waits = 0

    def _reserve(self) -> float:
        with self._lock:
            now = self._clock()
            slot = now
            if len(self._slots) == self.max_calls:
                slot = max(slot, self._slots[0] + self.window)
            if self._slots and self.min_interval:
                slot = max(slot, self._slots[-1] + self.min_interval)
            self._slots.append(slot)
            if slot > now:
                self._waits += 1
            return slot - now

    def acquire(self) -> float:
        """Block until this caller's slot; returns the seconds waited."""
        wait = self._reserve()
        if wait > 0:
            logger.debug("[%s] throttled — waiting %.3fs", self.name, wait)
            self._sleep(wait)
        return max(wait, 0.0)

    def state(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            in_window = sum(1 for s in self._slots if now - self.window < s <= now)
            return {
                "max_calls": self.max_calls,
                "window_seconds": self.window,
                "calls_in_window": in_window,
                "queued": sum(1 for s in self._slots if s > now),
                "throttled_calls": self._waits,
            }


# ── daily quota ─────────────────────────────────────────────────────────────

class QuotaMeter:
    """Atomic reserve / refund of a daily unit budget."""

    def __init__(
        self,
        provider: str,
        daily_limit: int,
        *,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self.provider = provider
        self.daily_limit = daily_limit
        self._today = today
        self._day = today()
        self._used = 0
        self._lock = threading.Lock()

    def _roll(self) -> None:
        day = self._today()
        if day != self._day:
            logger.info(
                "[%s] quota reset for %s (used %d/%d yesterday)",
                self.provider, day.isoformat(), self._used, self.daily_limit,
            )
            self._day = day
            self._used = 0

    def reserve(self, cost: int) -> None:
        """Debit *cost* units or raise ``QuotaExceededError``."""
        with self._lock:
            self._roll()
            remaining = self.daily_limit - self._used
            if cost > remaining:
                raise QuotaExceededError(
                    self.provider,
                    f"Daily quota exhausted: need {cost}, {remaining}/{self.daily_limit} left",
                    remaining=remaining,
                    limit=self.daily_limit,
                    cost=cost,
                )
            self._used += cost

    def refund(self, cost: int) -> None:
        """Give back units for a call that never reached the provider."""
        with self._lock:
            self._used = max(0, self._used - cost)

    def exhaust(self) -> None:
        """Mark the budget spent (the provider itself reported exhaustion)."""
        with self._lock:
            self._roll()
            self._used = self.daily_limit

    @property
    def used(self) -> int:
        with self._lock:
            self._roll()
            return self._used

    @property
    def remaining(self) -> int:
        with self._lock:
            self._roll()
            return self.daily_limit - self._used

    def state(self) -> Dict[str, Any]:
        with self._lock:
            self._roll()
            return {
                "used": self._used,
                "limit": self.daily_limit,
                "remaining": self.daily_limit - self._used,
                "percentage": round(100.0 * self._used / self.daily_limit, 2)
                if self.daily_limit else 100.0,
                "day": self._day.isoformat(),
            }


# ── bearer token ────────────────────────────────────────────────────────────

class TokenManager:
    """
    Lazily fetched, proactively refreshed bearer token.

    Parameters
    ----------
    fetch : callable
        Returns ``(access_token, expires_in_seconds)``.  May raise; the
        exception propagates to whoever triggered the refresh.
    safety_margin : float
        Refresh when fewer than this many seconds of validity remain.
    """

    def __init__(
        self,
        fetch: Callable[[], Tuple[str, float]],
        *,
        safety_margin: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "",
    ) -> None:
        self._fetch = fetch
        self.safety_margin = safety_margin
        self.name = name
        self._clock = clock
        self._token = ""
        self._expires_at = 0.0
        self._refreshes = 0
        self._lock = threading.Lock()

    def _valid(self) -> bool:
        return bool(self._token) and self._clock() < self._expires_at - self.safety_margin

    def get(self) -> str:
        """Current token, refreshing first if missing or about to expire."""
        with self._lock:
            if not self._valid():
                token, expires_in = self._fetch()
                self._token = token
                self._expires_at = self._clock() + float(expires_in)
                self._refreshes += 1
                logger.info("[%s] token acquired (expires in %ds)", self.name, int(expires_in))
            return self._token

    def invalidate(self, stale_token: str) -> None:
        """
        Drop *stale_token* after the provider rejected it.  A token that was
        already replaced by another thread is left alone.
        """
        with self._lock:
            if self._token == stale_token:
                self._token = ""
                self._expires_at = 0.0

    def state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "has_token": bool(self._token),
                "valid": self._valid(),
                "expires_in": max(0.0, round(self._expires_at - self._clock(), 1))
                if self._token else 0.0,
                "refreshes": self._refreshes,
            }
