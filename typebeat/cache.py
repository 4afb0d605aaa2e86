"""
cache.py — Redis-backed typed cache
=====================================
Shared between every process instance.  Values are wrapped in a small
JSON envelope::

    {"data": ..., "timestamp": 1718000000.0, "ttl": 3600,
     "version": "1.0", "category": "spotify_artist"}

TTL is enforced twice: by Redis (``SETEX``) and by a timestamp check on
every read, so a clock-skewed or persisted entry can never be served past
its freshness window.

Freshness policy
----------------
Each category has its own TTL (``CACHE_TTLS``): near-static metadata for
days, provider lookups for hours, derived scores for minutes and health
data for seconds.  Unknown categories fall back to the configured default.

Tags
----
Every entry is tagged with its category plus any explicit tags; tag
membership lives in Redis sets (``<prefix>tag:<tag>``).  Invalidation by
tag is best-effort.

A Redis outage never fails a request: reads degrade to a miss and writes
to a no-op, both logged.
"""

from __future__ import annotations

import json
import re
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Tuple

import redis

from typebeat.config import Settings, load_settings
from typebeat.utils import get_logger

logger = get_logger("typebeat.cache")

CACHE_VERSION = "1.0"

# Seconds
CACHE_TTLS: Dict[str, int] = {
    # near-static metadata
    "artist_metadata": 172_800,
    "genius_artist": 172_800,
    "api_quotas": 86_400,
    # provider lookups
    "spotify_artist": 86_400,
    "spotify_related": 43_200,
    "lastfm_similar": 21_600,
    "lastfm_artist_info": 86_400,
    "lastfm_tags": 86_400,
    "youtube_search": 3_600,
    "youtube_video_details": 7_200,
    "market_snapshot": 21_600,
    "rate_limits": 3_600,
    # derived scores
    "artist_analysis": 1_800,
    "score_breakdown": 1_800,
    "similar_artists": 3_600,
    "similarity_metrics": 3_600,
    "competition_metrics": 3_600,
    "volume_metrics": 1_800,
    "trend_metrics": 900,
    "suggestions": 600,
    "artist_suggestions": 1_200,
    # health
    "health_status": 30,
}


class _Miss:
    """Sentinel type for cache misses (``None`` is a legal cached value)."""

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()

_KEY_PART = re.compile(r"[^a-z0-9]")


def generate_key(kind: str, *parts: Any) -> str:
    """
    ``generate_key("spotify_artist", "Key Glock")`` → ``"spotify_artist:key_glock"``.

    Parts are lower-cased and every non-alphanumeric character becomes ``_``.
    """
    clean = [_KEY_PART.sub("_", str(p).lower()) for p in parts]
    return ":".join([kind] + clean)


class CacheStore:
    """
    Typed get / set / invalidate over a Redis client.

    Parameters
    ----------
    client : redis.Redis, optional
        Injected in tests; otherwise built from ``settings``.
    clock : callable
        Epoch-seconds clock used for envelope timestamps.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        settings: Settings | None = None,
        *,
        key_prefix: str | None = None,
        default_ttl: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or load_settings(require_secrets=False)
        self._client = client or redis.Redis(
            host=self._settings.redis_host,
            port=self._settings.redis_port,
            password=self._settings.redis_password or None,
            db=self._settings.redis_db,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        self.key_prefix = key_prefix if key_prefix is not None else self._settings.cache_key_prefix
        self.default_ttl = default_ttl or self._settings.cache_default_ttl
        self._clock = clock

        # Tag sets outlive their longest-lived member.
        self._tag_ttl = max([self.default_ttl, *CACHE_TTLS.values()])

        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "errors": 0}

    # ── helpers ─────────────────────────────────────────────────────────────

    generate_key = staticmethod(generate_key)

    def _full(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.key_prefix}tag:{tag}"

    def _bump(self, counter: str, n: int = 1) -> None:
        with self._lock:
            self._stats[counter] += n

    def ttl_for(self, category: str | None) -> int:
        if category is None:
            return self.default_ttl
        return CACHE_TTLS.get(category, self.default_ttl)

    def _envelope(
        self, value: Any, ttl: int, category: str | None, tags: List[str] | None = None,
    ) -> str:
        return json.dumps({
            "data": value,
            "timestamp": self._clock(),
            "ttl": ttl,
            "version": CACHE_VERSION,
            "category": category,
            "tags": tags or ([category] if category else []),
        })

    def _tag_expiry(self, ttl: int) -> int:
        with self._lock:
            self._tag_ttl = max(self._tag_ttl, ttl)
            return self._tag_ttl

    def _unwrap(self, raw: str | None) -> Tuple[bool, Any]:
        """(fresh, data); ``fresh`` is False for missing / expired / corrupt."""
        if raw is None:
            return False, None
        try:
            entry = json.loads(raw)
            expired = self._clock() - float(entry["timestamp"]) >= float(entry["ttl"])
        except (ValueError, TypeError, KeyError):
            return False, None
        if expired or entry.get("version") != CACHE_VERSION:
            return False, None
        return True, entry["data"]

    # ═════════════════════════════════════════════════════════════════════
    #  Single-key operations
    # ═════════════════════════════════════════════════════════════════════

    def get(self, key: str) -> Any:
        """Cached value, or ``MISS``."""
        full = self._full(key)
        try:
            raw = self._client.get(full)
        except redis.RedisError as exc:
            self._bump("errors")
            self._bump("misses")
            logger.warning("[CACHE ERROR] get %s failed: %s", key, exc)
            return MISS

        fresh, data = self._unwrap(raw)
        if not fresh:
            self._bump("misses")
            if raw is not None:
                self._discard(key, raw)
            return MISS
        self._bump("hits")
        return data

    def _discard(self, key: str, raw: str) -> None:
        """Drop a stale entry and its tag-set memberships."""
        try:
            tags = json.loads(raw).get("tags") or []
        except (ValueError, AttributeError):
            tags = []
        try:
            pipe = self._client.pipeline()
            pipe.delete(self._full(key))
            for tag in tags:
                pipe.srem(self._tag_key(str(tag)), key)
            pipe.execute()
        except redis.RedisError as exc:
            logger.warning("[CACHE ERROR] lazy delete of %s failed: %s", key, exc)

    def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
        *,
        category: str | None = None,
        tags: Iterable[str] = (),
    ) -> bool:
        """
        Store *value* (JSON-serialisable) for ``ttl`` seconds, or for the
        category's preset when ``ttl`` is omitted.
        """
        ttl = int(ttl if ttl is not None else self.ttl_for(category))
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        all_tags = list(tags) + ([category] if category else [])
        payload = self._envelope(value, ttl, category, all_tags)
        tag_ttl = self._tag_expiry(ttl)
        try:
            pipe = self._client.pipeline()
            pipe.setex(self._full(key), ttl, payload)
            for tag in all_tags:
                pipe.sadd(self._tag_key(tag), key)
                pipe.expire(self._tag_key(tag), tag_ttl)
            pipe.execute()
        except redis.RedisError as exc:
            self._bump("errors")
            logger.warning("[CACHE ERROR] set %s failed: %s", key, exc)
            return False
        self._bump("sets")
        return True

    def get_or_compute(
        self,
        key: str,
        factory: Callable[[], Any],
        ttl: int | None = None,
        *,
        category: str | None = None,
        tags: Iterable[str] = (),
    ) -> Any:
        """
        Return the cached value; on a miss call *factory*, store and return
        its result.  Concurrent misses may compute twice.  ``None`` results
        are returned but not stored; factory exceptions propagate.
        """
        value = self.get(key)
        if value is not MISS:
            return value
        value = factory()
        if value is not None:
            self.set(key, value, ttl, category=category, tags=tags)
        return value

    def delete(self, key: str) -> bool:
        try:
            removed = self._client.delete(self._full(key))
        except redis.RedisError as exc:
            self._bump("errors")
            logger.warning("[CACHE ERROR] delete %s failed: %s", key, exc)
            return False
        if removed:
            self._bump("deletes")
        return bool(removed)

    # ═════════════════════════════════════════════════════════════════════
    #  Invalidation
    # ═════════════════════════════════════════════════════════════════════

    def delete_by_tag(self, tag: str) -> int:
        """Remove every entry tagged *tag*; returns how many were removed."""
        tag_key = self._tag_key(tag)
        try:
            members = list(self._client.smembers(tag_key))
        except redis.RedisError as exc:
            self._bump("errors")
            logger.warning("[CACHE ERROR] reading tag %s failed: %s", tag, exc)
            return 0

        removed = 0
        for key in members:
            try:
                removed += int(self._client.delete(self._full(key)))
                self._client.srem(tag_key, key)
            except redis.RedisError as exc:
                self._bump("errors")
                logger.warning("[CACHE ERROR] tag %s: delete %s failed: %s", tag, key, exc)
        try:
            self._client.delete(tag_key)
        except redis.RedisError as exc:
            logger.warning("[CACHE ERROR] dropping tag set %s failed: %s", tag, exc)

        self._bump("deletes", removed)
        logger.info("Invalidated %d/%d entries tagged %r", removed, len(members), tag)
        return removed

    def delete_pattern(self, pattern: str) -> int:
        """Remove keys matching a glob *pattern* (prefix added automatically)."""
        removed = 0
        try:
            for full in self._client.scan_iter(match=self._full(pattern), count=500):
                removed += int(self._client.delete(full))
        except redis.RedisError as exc:
            self._bump("errors")
            logger.warning("[CACHE ERROR] delete_pattern %s failed: %s", pattern, exc)
        self._bump("deletes", removed)
        return removed

    # ═════════════════════════════════════════════════════════════════════
    #  Batch operations
    # ═════════════════════════════════════════════════════════════════════

    def batch_get(self, keys: List[str]) -> Dict[str, Any]:
        """Fresh entries among *keys* (misses are simply absent)."""
        if not keys:
            return {}
        try:
            pipe = self._client.pipeline()
            for key in keys:
                pipe.get(self._full(key))
            raws = pipe.execute(raise_on_error=False)
        except redis.RedisError as exc:
            self._bump("errors")
            self._bump("misses", len(keys))
            logger.warning("[CACHE ERROR] batch_get of %d keys failed: %s", len(keys), exc)
            return {}

        out: Dict[str, Any] = {}
        for key, raw in zip(keys, raws):
            if isinstance(raw, Exception):
                self._bump("errors")
                raw = None
            fresh, data = self._unwrap(raw)
            if fresh:
                out[key] = data
        self._bump("hits", len(out))
        self._bump("misses", len(keys) - len(out))
        return out

    def batch_set(
        self,
        entries: Mapping[str, Any],
        ttl: int | None = None,
        *,
        category: str | None = None,
    ) -> bool:
        if not entries:
            return True
        ttl = int(ttl if ttl is not None else self.ttl_for(category))
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        tag_ttl = self._tag_expiry(ttl)
        try:
            pipe = self._client.pipeline()
            for key, value in entries.items():
                pipe.setex(self._full(key), ttl, self._envelope(value, ttl, category))
                if category:
                    pipe.sadd(self._tag_key(category), key)
            if category:
                pipe.expire(self._tag_key(category), tag_ttl)
            results = pipe.execute(raise_on_error=False)
        except redis.RedisError as exc:
            self._bump("errors")
            logger.warning("[CACHE ERROR] batch_set of %d keys failed: %s", len(entries), exc)
            return False
        failed = sum(1 for r in results if isinstance(r, Exception))
        self._bump("sets", len(entries))
        if failed:
            self._bump("errors", failed)
            logger.warning("[CACHE ERROR] batch_set: %d commands failed", failed)
        return failed == 0

    # ═════════════════════════════════════════════════════════════════════
    #  Maintenance
    # ═════════════════════════════════════════════════════════════════════

    def cleanup(self) -> int:
        """
        Delete expired or corrupt entries that Redis has not evicted yet and
        prune dead members from tag sets.  Returns entries removed.
        """
        tag_prefix = self._tag_key("")
        removed = 0
        try:
            for full in list(self._client.scan_iter(match=self._full("*"), count=500)):
                if full.startswith(tag_prefix):
                    continue
                fresh, _ = self._unwrap(self._client.get(full))
                if not fresh:
                    removed += int(self._client.delete(full))
            for tag_key in list(self._client.scan_iter(match=f"{tag_prefix}*", count=500)):
                for key in list(self._client.smembers(tag_key)):
                    if not self._client.exists(self._full(key)):
                        self._client.srem(tag_key, key)
        except redis.RedisError as exc:
            self._bump("errors")
            logger.warning("[CACHE ERROR] cleanup aborted: %s", exc)
        if removed:
            logger.info("Cache cleanup removed %d stale entries", removed)
        self._bump("deletes", removed)
        return removed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            snapshot = dict(self._stats)
        lookups = snapshot["hits"] + snapshot["misses"]
        snapshot["hit_rate"] = round(100.0 * snapshot["hits"] / lookups, 2) if lookups else 0.0
        return snapshot

    def reset_stats(self) -> None:
        with self._lock:
            for k in self._stats:
                self._stats[k] = 0

    def health_check(self) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            self._client.ping()
        except redis.RedisError as exc:
            logger.warning("[CACHE ERROR] ping failed: %s", exc)
            return {"status": "unhealthy", "detail": str(exc)}
        return {
            "status": "healthy",
            "detail": "ping ok",
            "latency_ms": round((time.perf_counter() - started) * 1000.0, 1),
        }

    def close(self) -> None:
        self._client.close()
