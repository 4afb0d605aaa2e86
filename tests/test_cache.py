"""
test_cache.py — Unit Tests for the Redis-backed cache
======================================================
Core invariants under test:
    **An expired entry is never served** and **a Redis outage degrades to
    a miss**, never an exception.
"""

from __future__ import annotations

import json
import unittest

from fakes import FakeClock, FakeRedis

from typebeat.cache import CACHE_TTLS, MISS, CacheStore, generate_key


class _CacheCase(unittest.TestCase):
    def setUp(self) -> None:
        self.redis = FakeRedis()
        self.clock = FakeClock(start=1_700_000_000.0)
        self.cache = CacheStore(
            self.redis, key_prefix="t:", default_ttl=3600, clock=self.clock,
        )


class TestGenerateKey(unittest.TestCase):

    def test_normalises_parts(self):
        self.assertEqual(generate_key("spotify_artist", "Key Glock"), "spotify_artist:key_glock")

    def test_case_insensitive(self):
        self.assertEqual(generate_key("x", "DRAKE"), generate_key("x", "drake"))

    def test_multiple_parts(self):
        self.assertEqual(generate_key("similar_artists", "A$AP Rocky", 10), "similar_artists:a_ap_rocky:10")


class TestGetSet(_CacheCase):
    """Round trip, envelope and TTL handling."""

    def test_round_trip(self):
        self.assertTrue(self.cache.set("k", {"a": [1, 2]}))
        self.assertEqual(self.cache.get("k"), {"a": [1, 2]})

    def test_missing_key_is_miss(self):
        self.assertIs(self.cache.get("nope"), MISS)
        self.assertFalse(MISS)

    def test_none_is_a_legal_value(self):
        self.cache.set("k", None)
        self.assertIsNone(self.cache.get("k"))

    def test_envelope_fields(self):
        self.cache.set("k", 5, category="suggestions")
        raw = json.loads(self.redis.data["t:k"])
        self.assertEqual(raw["data"], 5)
        self.assertEqual(raw["ttl"], CACHE_TTLS["suggestions"])
        self.assertEqual(raw["version"], "1.0")
        self.assertEqual(raw["category"], "suggestions")
        self.assertEqual(self.redis.ttls["t:k"], CACHE_TTLS["suggestions"])

    def test_expired_entry_is_not_served(self):
        self.cache.set("k", "v", ttl=60)
        self.clock.advance(59)
        self.assertEqual(self.cache.get("k"), "v")
        self.clock.advance(1)
        self.assertIs(self.cache.get("k"), MISS)
        self.assertNotIn("t:k", self.redis.data)

    def test_corrupt_entry_is_miss(self):
        self.redis.data["t:k"] = "{not json"
        self.assertIs(self.cache.get("k"), MISS)

    def test_version_mismatch_is_miss(self):
        self.redis.data["t:k"] = json.dumps({
            "data": 1, "timestamp": self.clock(), "ttl": 60, "version": "0.1",
        })
        self.assertIs(self.cache.get("k"), MISS)

    def test_non_positive_ttl_rejected(self):
        with self.assertRaises(ValueError):
            self.cache.set("k", 1, ttl=0)

    def test_unknown_category_uses_default(self):
        self.assertEqual(self.cache.ttl_for("made_up"), 3600)
        self.assertEqual(self.cache.ttl_for("health_status"), 30)


class TestGetOrCompute(_CacheCase):

    def test_computes_once(self):
        calls = []

        def factory():
            calls.append(1)
            return {"x": 1}

        self.assertEqual(self.cache.get_or_compute("k", factory), {"x": 1})
        self.assertEqual(self.cache.get_or_compute("k", factory), {"x": 1})
        self.assertEqual(len(calls), 1)

    def test_none_not_stored(self):
        self.assertIsNone(self.cache.get_or_compute("k", lambda: None))
        self.assertNotIn("t:k", self.redis.data)

    def test_factory_error_propagates(self):
        def broken():
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            self.cache.get_or_compute("k", broken)


class TestInvalidation(_CacheCase):

    def test_delete(self):
        self.cache.set("k", 1)
        self.assertTrue(self.cache.delete("k"))
        self.assertFalse(self.cache.delete("k"))

    def test_delete_by_tag(self):
        self.cache.set("a", 1, tags=["drake"])
        self.cache.set("b", 2, tags=["drake"])
        self.cache.set("c", 3, tags=["future"])
        self.assertEqual(self.cache.delete_by_tag("drake"), 2)
        self.assertIs(self.cache.get("a"), MISS)
        self.assertEqual(self.cache.get("c"), 3)

    def test_category_is_a_tag(self):
        self.cache.set("a", 1, category="spotify_artist")
        self.assertEqual(self.cache.delete_by_tag("spotify_artist"), 1)

    def test_delete_pattern(self):
        self.cache.set("spotify_artist:drake", 1)
        self.cache.set("spotify_artist:future", 2)
        self.cache.set("lastfm_tags:drake", 3)
        self.assertEqual(self.cache.delete_pattern("spotify_artist:*"), 2)
        self.assertEqual(self.cache.get("lastfm_tags:drake"), 3)

    def test_cleanup_removes_expired_and_prunes_tags(self):
        self.cache.set("old", 1, ttl=10, category="suggestions")
        self.cache.set("new", 2, ttl=1000, category="suggestions")
        self.clock.advance(11)
        self.assertEqual(self.cache.cleanup(), 1)
        self.assertEqual(self.redis.smembers("t:tag:suggestions"), {"new"})

    def test_expired_read_prunes_tag_sets(self):
        self.cache.set("old", 1, ttl=10, category="suggestions", tags=["drake"])
        self.cache.set("new", 2, ttl=1000, category="suggestions")
        self.clock.advance(11)
        self.assertIs(self.cache.get("old"), MISS)
        self.assertNotIn("t:old", self.redis.data)
        self.assertEqual(self.redis.smembers("t:tag:suggestions"), {"new"})
        self.assertEqual(self.redis.smembers("t:tag:drake"), set())

    def test_tag_sets_expire(self):
        self.cache.set("a", 1, category="suggestions")
        tag_ttl = self.redis.ttl("t:tag:suggestions")
        self.assertGreaterEqual(tag_ttl, CACHE_TTLS["suggestions"])
        self.assertGreaterEqual(tag_ttl, max(CACHE_TTLS.values()))

    def test_tag_set_expiry_covers_longest_entry(self):
        long_ttl = max(CACHE_TTLS.values()) * 2
        self.cache.set("long", 1, ttl=long_ttl, category="suggestions")
        self.cache.set("short", 2, ttl=60, category="suggestions")
        self.assertEqual(self.redis.ttl("t:tag:suggestions"), long_ttl)


class TestBatch(_CacheCase):

    def test_batch_set_and_get(self):
        self.assertTrue(self.cache.batch_set({"a": 1, "b": 2}, category="lastfm_tags"))
        self.assertEqual(self.cache.batch_get(["a", "b", "c"]), {"a": 1, "b": 2})

    def test_batch_get_empty(self):
        self.assertEqual(self.cache.batch_get([]), {})

    def test_batch_set_rejects_non_positive_ttl(self):
        for ttl in (0, -5):
            with self.assertRaises(ValueError):
                self.cache.batch_set({"a": 1}, ttl=ttl)
        self.assertNotIn("t:a", self.redis.data)

    def test_batch_set_expires_category_tag(self):
        self.cache.batch_set({"a": 1, "b": 2}, category="lastfm_tags")
        self.assertEqual(self.redis.smembers("t:tag:lastfm_tags"), {"a", "b"})
        self.assertGreaterEqual(self.redis.ttl("t:tag:lastfm_tags"), CACHE_TTLS["lastfm_tags"])


class TestRedisOutage(_CacheCase):
    """A dead Redis degrades to misses and no-op writes."""

    def setUp(self) -> None:
        super().setUp()
        self.redis.fail = True

    def test_get_is_miss(self):
        self.assertIs(self.cache.get("k"), MISS)
        self.assertEqual(self.cache.stats()["errors"], 1)

    def test_set_returns_false(self):
        self.assertFalse(self.cache.set("k", 1))

    def test_get_or_compute_still_computes(self):
        self.assertEqual(self.cache.get_or_compute("k", lambda: 7), 7)

    def test_batch_get_is_empty(self):
        self.assertEqual(self.cache.batch_get(["a"]), {})

    def test_health_check_unhealthy(self):
        self.assertEqual(self.cache.health_check()["status"], "unhealthy")


class TestStats(_CacheCase):

    def test_hit_rate(self):
        self.cache.set("k", 1)
        self.cache.get("k")
        self.cache.get("missing")
        stats = self.cache.stats()
        self.assertEqual(stats["hits"], 1)
        self.assertEqual(stats["misses"], 1)
        self.assertEqual(stats["hit_rate"], 50.0)
        self.cache.reset_stats()
        self.assertEqual(self.cache.stats()["hits"], 0)


if __name__ == "__main__":
    unittest.main()
