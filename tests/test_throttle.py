"""
test_throttle.py — Rate limiting, quota & token tests
=======================================================
Core invariants under test:
    **No more than N transport calls in any window** (excess is delayed,
    never dropped), **quota fails fast without spending**, and
    **concurrent token refreshes collapse into one fetch**.
"""

from __future__ import annotations

import random
import threading
import time
import unittest
from datetime import date

from fakes import FakeClock

from typebeat.errors import QuotaExceededError
from typebeat.throttle import FixedWindowThrottle, QuotaMeter, RetryPolicy, TokenManager


class TestRetryPolicy(unittest.TestCase):
    """Exponential backoff, capped, with bounded jitter."""

    def test_no_jitter_doubles(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=0.0)
        self.assertEqual([policy.delay(a) for a in (1, 2, 3, 4)], [1.0, 2.0, 4.0, 8.0])

    def test_capped_at_max_delay(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.5, rng=random.Random(1))
        for attempt in range(1, 10):
            self.assertLessEqual(policy.delay(attempt), 5.0)

    def test_jitter_only_stretches(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=100.0, jitter=0.25, rng=random.Random(7))
        for _ in range(50):
            d = policy.delay(1)
            self.assertGreaterEqual(d, 2.0)
            self.assertLessEqual(d, 2.5)

    def test_rejects_zero_attempts(self):
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=0)


class TestFixedWindowThrottle(unittest.TestCase):
    """At most max_calls per window; callers queue instead of failing."""

    def setUp(self) -> None:
        self.clock = FakeClock()
        self.throttle = FixedWindowThrottle(
            3, 1.0, clock=self.clock, sleep=self.clock.sleep, name="test",
        )

    def test_first_calls_do_not_wait(self):
        waits = [self.throttle.acquire() for _ in range(3)]
        self.assertEqual(waits, [0.0, 0.0, 0.0])

    def test_excess_call_is_delayed_not_dropped(self):
        for _ in range(3):
            self.throttle.acquire()
        waited = self.throttle.acquire()
        self.assertAlmostEqual(waited, 1.0)
        self.assertEqual(self.throttle.state()["throttled_calls"], 1)

    def test_any_window_holds_at_most_n_calls(self):
        times = []
        for i in range(20):
            self.throttle.acquire()
            times.append(self.clock())
            self.clock.advance(0.05 * (i % 4))
        for i in range(len(times) - 3):
            self.assertGreaterEqual(times[i + 3] - times[i], 1.0 - 1e-9)

    def test_min_interval_spaces_calls(self):
        clock = FakeClock()
        throttle = FixedWindowThrottle(
            100, 60.0, min_interval=0.5, clock=clock, sleep=clock.sleep,
        )
        stamps = []
        for _ in range(4):
            throttle.acquire()
            stamps.append(clock())
        gaps = [b - a for a, b in zip(stamps, stamps[1:])]
        for gap in gaps:
            self.assertGreaterEqual(gap, 0.5 - 1e-9)

    def test_state_reports_window_usage(self):
        self.throttle.acquire()
        self.throttle.acquire()
        state = self.throttle.state()
        self.assertEqual(state["max_calls"], 3)
        self.assertEqual(state["calls_in_window"], 2)
        self.assertEqual(state["queued"], 0)

    def test_invalid_configuration(self):
        with self.assertRaises(ValueError):
            FixedWindowThrottle(0, 1.0)
        with self.assertRaises(ValueError):
            FixedWindowThrottle(1, 0.0)


class TestQuotaMeter(unittest.TestCase):
    """Reserve-or-raise accounting that resets at the UTC day boundary."""

    def setUp(self) -> None:
        self.day = date(2026, 3, 1)
        self.meter = QuotaMeter("youtube", 250, today=lambda: self.day)

    def test_reserve_debits(self):
        self.meter.reserve(100)
        self.assertEqual(self.meter.used, 100)
        self.assertEqual(self.meter.remaining, 150)

    def test_over_budget_raises_without_debit(self):
        self.meter.reserve(200)
        with self.assertRaises(QuotaExceededError) as ctx:
            self.meter.reserve(100)
        err = ctx.exception
        self.assertEqual(err.remaining, 50)
        self.assertEqual(err.limit, 250)
        self.assertEqual(err.cost, 100)
        self.assertEqual(self.meter.used, 200)

    def test_refund_restores_units(self):
        self.meter.reserve(100)
        self.meter.refund(100)
        self.assertEqual(self.meter.used, 0)

    def test_exhaust_blocks_further_calls(self):
        self.meter.exhaust()
        with self.assertRaises(QuotaExceededError):
            self.meter.reserve(1)

    def test_resets_on_new_day(self):
        self.meter.reserve(250)
        self.day = date(2026, 3, 2)
        self.assertEqual(self.meter.remaining, 250)
        self.meter.reserve(100)

    def test_state_percentage(self):
        self.meter.reserve(125)
        state = self.meter.state()
        self.assertEqual(state["percentage"], 50.0)
        self.assertEqual(state["day"], "2026-03-01")

    def test_concurrent_reserve_never_overspends(self):
        meter = QuotaMeter("youtube", 100, today=lambda: self.day)
        start = threading.Barrier(50)
        granted, refused = [], []

        def worker():
            start.wait()
            for _ in range(10):
                try:
                    meter.reserve(1)
                    granted.append(1)
                except QuotaExceededError:
                    refused.append(1)

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(granted), 100)
        self.assertEqual(len(refused), 400)
        self.assertEqual(meter.used, 100)
        self.assertEqual(meter.remaining, 0)


class TestTokenManager(unittest.TestCase):
    """Lazy, proactively refreshed, single-flight bearer token."""

    def setUp(self) -> None:
        self.clock = FakeClock()
        self.fetches = 0

    def _fetch(self):
        self.fetches += 1
        return f"token-{self.fetches}", 3600

    def test_lazy_fetch_and_reuse(self):
        tm = TokenManager(self._fetch, clock=self.clock)
        self.assertEqual(self.fetches, 0)
        self.assertEqual(tm.get(), "token-1")
        self.assertEqual(tm.get(), "token-1")
        self.assertEqual(self.fetches, 1)

    def test_refresh_inside_safety_margin(self):
        tm = TokenManager(self._fetch, safety_margin=300, clock=self.clock)
        tm.get()
        self.clock.advance(3600 - 299)
        self.assertEqual(tm.get(), "token-2")

    def test_invalidate_only_matching_token(self):
        tm = TokenManager(self._fetch, clock=self.clock)
        tm.get()
        tm.invalidate("some-older-token")
        self.assertEqual(tm.get(), "token-1")
        tm.invalidate("token-1")
        self.assertEqual(tm.get(), "token-2")

    def test_concurrent_refresh_is_single_flight(self):
        calls = []

        def slow_fetch():
            calls.append(1)
            time.sleep(0.05)
            return "shared", 3600

        tm = TokenManager(slow_fetch)
        tokens = []
        threads = [threading.Thread(target=lambda: tokens.append(tm.get())) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(calls), 1)
        self.assertEqual(tokens, ["shared"] * 8)

    def test_fetch_error_propagates(self):
        def broken():
            raise RuntimeError("auth server down")

        tm = TokenManager(broken)
        with self.assertRaises(RuntimeError):
            tm.get()
        self.assertFalse(tm.state()["has_token"])


if __name__ == "__main__":
    unittest.main()
