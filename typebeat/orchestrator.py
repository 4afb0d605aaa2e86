"""
orchestrator.py — Provider fan-out, merge & scoring pipeline
==============================================================
The single entry point callers use.  Every request walks the same states::

    RECEIVED → CACHE_CHECK ─┬─ CACHE_HIT ─────────────────────────────→ DONE
                            └─ CACHE_MISS → FAN_OUT → MERGE → ENRICH
                                          → SCORE → CACHE_STORE ────→ DONE

Fan-out
-------
Provider calls run concurrently on a process-wide ``ThreadPoolExecutor``.
Each sub-call has a deadline; a call that misses it is abandoned (not
cancelled) and counted as a soft failure, siblings are unaffected.

Soft failures
-------------
A provider that raises (``ProviderError`` or anything else) or times out is
dropped from ``sources`` and its error kind recorded in ``provider_errors``;
unexpected exceptions are recorded as ``"api_error"``.  Only when *every*
provider fails does the request fall back to the static heuristic
table, flagged ``fallback_used`` and never cached.

Input validation is the only failure surfaced to the caller
(``ValidationError``), and it happens before any cache or network access.
"""

from __future__ import annotations

import json
import math
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from typebeat.cache import MISS, CacheStore, generate_key
from typebeat.config import Settings, load_settings
from typebeat.errors import ProviderError, ValidationError
from typebeat.fallback import fallback_suggestions
from typebeat.genius_client import GeniusClient
from typebeat.lastfm_client import LastFmClient
from typebeat.market_metrics import analyze_market
from typebeat.models import (
    AnalysisResult,
    Artist,
    MarketSnapshot,
    ScoreBreakdown,
    ScoredArtist,
    SimilarArtistsResult,
    SimilarCandidate,
    Suggestion,
    SuggestionsResult,
)
from typebeat.provider_client import BaseProviderClient
from typebeat.scoring import ScoringEngine
from typebeat.similarity import (
    filter_by_similarity,
    graph_similarity,
    rank_by_similarity,
    similarity_metrics,
    similarity_score,
)
from typebeat.spotify_client import SpotifyClient
from typebeat.utils import get_logger, normalise_name, utc_now_iso
from typebeat.youtube_client import YouTubeClient

logger = get_logger("typebeat.orchestrator")

# ── Constants ────────────────────────────────────────────────────────────────

PROVIDERS = ("spotify", "lastfm", "genius", "youtube")
LOOKUP_PROVIDERS = ("spotify", "lastfm", "genius")
DEFAULT_SIMILAR_SOURCES = ("spotify", "lastfm")

_LOOKUP_CATEGORY = {
    "spotify": "spotify_artist",
    "lastfm": "lastfm_artist_info",
    "genius": "genius_artist",
}
_RELATED_CATEGORY = {
    "spotify": "spotify_related",
    "lastfm": "lastfm_similar",
    "genius": "artist_metadata",
    "youtube": "youtube_search",
}

_MAX_NAME_LENGTH = 100
_MAX_SIMILAR = 50
_MAX_SUGGESTIONS = 10
_ENRICH_TAGS = 5

# Suggestion quality gate
_MIN_SUGGESTION_SCORE = 5.0
_MIN_MONTHLY_SEARCHES = 500
_HIGH_CONFIDENCE = 7.0
_MEDIUM_CONFIDENCE = 5.5

_FILTER_KEYS = {"genre", "min_popularity", "max_popularity", "min_score"}


class Orchestrator:
    """
    Fans requests out to the four providers, merges and scores the results.

    Parameters
    ----------
    settings : Settings, optional
        If not supplied, loaded from ``.env`` automatically.
    clients : dict, optional
        Provider name → client; missing providers are built from settings.
    cache : CacheStore, optional
        Shared cache; built from settings when omitted.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        clients: Dict[str, BaseProviderClient] | None = None,
        cache: CacheStore | None = None,
        scoring: ScoringEngine | None = None,
        executor: ThreadPoolExecutor | None = None,
        fanout_timeout: float | None = None,
    ) -> None:
        self._settings = settings or load_settings(require_secrets=False)
        clients = dict(clients or {})
        factories = {
            "spotify": SpotifyClient,
            "lastfm": LastFmClient,
            "genius": GeniusClient,
            "youtube": YouTubeClient,
        }
        for name, factory in factories.items():
            if name not in clients:
                clients[name] = factory(self._settings)
        self._clients: Dict[str, BaseProviderClient] = clients
        self._cache = cache or CacheStore(settings=self._settings)
        self._scoring = scoring or ScoringEngine()
        self._owns_pool = executor is None
        self._pool = executor or ThreadPoolExecutor(
            max_workers=self._settings.max_workers, thread_name_prefix="typebeat",
        )
        self._timeout = (
            fanout_timeout if fanout_timeout is not None else self._settings.fanout_timeout
        )

    @property
    def cache(self) -> CacheStore:
        return self._cache

    # ═════════════════════════════════════════════════════════════════════
    #  Validation
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def _validate_name(name: Any, field: str = "artist name") -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"{field} must be a non-empty string")
        name = " ".join(name.split())
        if len(name) > _MAX_NAME_LENGTH:
            raise ValidationError(f"{field} longer than {_MAX_NAME_LENGTH} characters")
        return name

    @staticmethod
    def _validate_limit(limit: Any, upper: int) -> int:
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= upper:
            raise ValidationError(f"limit must be an integer in [1, {upper}], got {limit!r}")
        return limit

    # ═════════════════════════════════════════════════════════════════════
    #  Fan-out machinery
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def _new_request_id() -> str:
        return uuid.uuid4().hex[:8]

    @staticmethod
    def _state(request_id: str, state: str, detail: str = "") -> None:
        logger.debug("[%s] %s %s", request_id, state, detail)

    def _fan_out(
        self,
        tasks: Dict[str, Callable[[], Any]],
        request_id: str = "",
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """
        Run *tasks* concurrently.

        Returns
        -------
        (results, errors)
            ``results`` maps task name → return value for tasks that
            finished; ``errors`` maps task name → error kind (``"timeout"``
            for abandoned calls).
        """
        if not tasks:
            return {}, {}
        futures: Dict[Future, str] = {self._pool.submit(fn): name for name, fn in tasks.items()}
        done, not_done = wait(futures, timeout=self._timeout)

        results: Dict[str, Any] = {}
        errors: Dict[str, str] = {}
        for fut in done:
            name = futures[fut]
            try:
                results[name] = fut.result()
            except ProviderError as exc:
                errors[name] = exc.kind
                logger.warning(
                    "[%s] soft failure: provider=%s kind=%s: %s",
                    request_id, exc.provider, exc.kind, exc.message,
                )
            except Exception as exc:  # shape errors from a malformed payload
                errors[name] = "api_error"
                logger.warning(
                    "[%s] soft failure: task=%s kind=api_error, unexpected %s: %s",
                    request_id, name, type(exc).__name__, exc,
                )
        for fut in not_done:
            name = futures[fut]
            fut.cancel()
            errors[name] = "timeout"
            logger.warning(
                "[%s] soft failure: task=%s kind=timeout, abandoned after %.1fs",
                request_id, name, self._timeout,
            )
        return results, errors

    def _cached(
        self,
        category: str,
        parts: Sequence[Any],
        compute: Callable[[], Any],
        *,
        force_refresh: bool = False,
    ) -> Any:
        """Cache-through call for one JSON-serialisable provider result."""
        key = generate_key(category, *parts)
        if force_refresh:
            value = compute()
            if value is not None:
                self._cache.set(key, value, category=category)
            return value
        return self._cache.get_or_compute(key, compute, category=category)

    # ── cached provider calls ───────────────────────────────────────────────

    def _lookup(self, provider: str, name: str, force_refresh: bool = False) -> Optional[Artist]:
        client = self._clients[provider]

        def compute() -> Optional[Dict[str, Any]]:
            artist = client.lookup(name)
            return artist.to_dict() if artist else None

        data = self._cached(
            _LOOKUP_CATEGORY[provider], [name], compute, force_refresh=force_refresh,
        )
        return Artist.from_dict(data) if data else None

    def _related(
        self, provider: str, name: str, limit: int, force_refresh: bool = False,
    ) -> List[ScoredArtist]:
        client = self._clients[provider]

        def compute() -> List[Dict[str, Any]]:
            return [s.to_dict() for s in client.related(name, limit)]

        data = self._cached(
            _RELATED_CATEGORY[provider], [name, limit], compute, force_refresh=force_refresh,
        )
        return [ScoredArtist.from_dict(d) for d in data or []]

    def _snapshot(self, name: str, force_refresh: bool = False) -> MarketSnapshot:
        client = self._clients["youtube"]
        data = self._cached(
            "market_snapshot", [name],
            lambda: client.market_snapshot(name).to_dict(),
            force_refresh=force_refresh,
        )
        return MarketSnapshot.from_dict(data)

    def _top_tags(self, name: str) -> List[str]:
        client = self._clients["lastfm"]
        return self._cached(
            "lastfm_tags", [name], lambda: client.top_tags(name, _ENRICH_TAGS),
        ) or []

    # ── merge / enrich helpers ──────────────────────────────────────────────

    @staticmethod
    def _merge_lookups(results: Dict[str, Any], fallback_name: str) -> Artist:
        """Merge per-provider records; Spotify wins, then Last.fm, then Genius."""
        merged: Optional[Artist] = None
        for provider in LOOKUP_PROVIDERS:
            artist = results.get(provider)
            if artist is None:
                continue
            merged = artist if merged is None else merged.merge(artist)
        return merged or Artist(name=fallback_name)

    def _enrich_genres(self, artist: Artist, request_id: str) -> Artist:
        if artist.genres:
            return artist
        try:
            tags = self._top_tags(artist.name)
        except ProviderError as exc:
            logger.warning(
                "[%s] genre enrichment failed: provider=%s kind=%s",
                request_id, exc.provider, exc.kind,
            )
            return artist
        if tags:
            artist.genres = list(tags)[:_ENRICH_TAGS]
        return artist

    # ═════════════════════════════════════════════════════════════════════
    #  analyze_artist
    # ═════════════════════════════════════════════════════════════════════

    def analyze_artist(self, name: str, force_refresh: bool = False) -> AnalysisResult:
        """
        Full opportunity analysis for one artist.

        Parameters
        ----------
        name : str
            Artist name (case-insensitive).
        force_refresh : bool
            Bypass every cache read; results are still written back.
        """
        name = self._validate_name(name)
        rid = self._new_request_id()
        started = time.perf_counter()
        key = generate_key("artist_analysis", name)
        self._state(rid, "RECEIVED", f"analyze {name!r}")

        if not force_refresh:
            self._state(rid, "CACHE_CHECK", key)
            cached = self._cache.get(key)
            if cached is not MISS:
                self._state(rid, "CACHE_HIT")
                result = AnalysisResult.from_dict(cached)
                result.cached = True
                return result

        self._state(rid, "FAN_OUT", ",".join(PROVIDERS))
        tasks: Dict[str, Callable[[], Any]] = {
            p: partial(self._lookup, p, name, force_refresh) for p in LOOKUP_PROVIDERS
        }
        tasks["youtube"] = partial(self._snapshot, name, force_refresh)
        results, errors = self._fan_out(tasks, rid)

        if len(errors) == len(tasks):
            logger.warning("[%s] every provider failed for %r; serving fallback", rid, name)
            return AnalysisResult(
                artist=Artist(name=name),
                breakdown=self._scoring.default_breakdown(name),
                provider_errors=errors,
                fallback_used=True,
                processing_time_ms=self._elapsed(started),
                suggestions=fallback_suggestions(name),
            )

        self._state(rid, "MERGE")
        sources = sorted(p for p, v in results.items() if v is not None)
        artist = self._merge_lookups(results, name)
        artist.sources = sorted(set(artist.sources) | set(sources))

        self._state(rid, "ENRICH")
        if "lastfm" not in errors:
            artist = self._enrich_genres(artist, rid)

        self._state(rid, "SCORE")
        snapshot = results.get("youtube")
        if snapshot is not None:
            market = analyze_market(snapshot)
            breakdown = self._scoring.score(
                market.volume, market.competition, market.trend, market.saturation,
                artist_name=artist.name,
            )
        else:
            breakdown = self._scoring.default_breakdown(artist.name)

        succeeded = len(tasks) - len(errors)
        if succeeded * 2 < len(tasks):
            breakdown.final = self._scoring.downgrade_confidence(breakdown.final)

        result = AnalysisResult(
            artist=artist,
            breakdown=breakdown,
            sources=sources,
            provider_errors=errors,
            processing_time_ms=self._elapsed(started),
        )
        self._state(rid, "CACHE_STORE", key)
        self._cache.set(key, result.to_dict(), category="artist_analysis")
        self._state(rid, "DONE", f"{self._elapsed(started):.0f}ms")
        logger.info(
            "Analyzed %s: score=%.2f sources=%s errors=%s",
            artist.name, breakdown.final.overall_score, sources, errors or "none",
        )
        return result

    # ═════════════════════════════════════════════════════════════════════
    #  find_similar_artists
    # ═════════════════════════════════════════════════════════════════════

    def find_similar_artists(
        self,
        name: str,
        limit: int = 10,
        min_similarity: float = 0.3,
        sources: Iterable[str] = DEFAULT_SIMILAR_SOURCES,
        force_refresh: bool = False,
    ) -> SimilarArtistsResult:
        """
        Related artists from the requested providers, merged by name and
        ranked by the canonical similarity score (ties broken by name).
        """
        name = self._validate_name(name)
        limit = self._validate_limit(limit, _MAX_SIMILAR)
        if isinstance(min_similarity, bool) or not isinstance(min_similarity, (int, float)) \
                or not 0.0 <= min_similarity <= 1.0:
            raise ValidationError(f"min_similarity must be in [0, 1], got {min_similarity!r}")
        sources = tuple(dict.fromkeys(sources))
        unknown = [s for s in sources if s not in PROVIDERS]
        if not sources or unknown:
            raise ValidationError(f"sources must be a non-empty subset of {PROVIDERS}, got {sources}")

        rid = self._new_request_id()
        started = time.perf_counter()
        key = generate_key(
            "similar_artists", name, limit, f"{min_similarity:.2f}", *sorted(sources),
        )
        self._state(rid, "RECEIVED", f"similar {name!r}")

        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not MISS:
                self._state(rid, "CACHE_HIT")
                result = SimilarArtistsResult.from_dict(cached)
                result.cached = True
                return result

        fetch = min(_MAX_SIMILAR, limit * 3)
        tasks: Dict[str, Callable[[], Any]] = {}
        for source in sources:
            tasks[f"{source}.related"] = partial(self._related, source, name, fetch, force_refresh)
            if source in LOOKUP_PROVIDERS:
                tasks[f"{source}.lookup"] = partial(self._lookup, source, name, force_refresh)
        self._state(rid, "FAN_OUT", ",".join(tasks))
        results, task_errors = self._fan_out(tasks, rid)

        # related failures are keyed by provider; a failed lookup keeps its
        # own task name so that source's candidates still count
        errors: Dict[str, str] = {
            task.split(".")[0] if task.endswith(".related") else task: kind
            for task, kind in task_errors.items()
        }
        ok_sources = sorted(s for s in sources if f"{s}.related" in results)

        self._state(rid, "MERGE")
        main = self._merge_lookups(
            {t.split(".")[0]: v for t, v in results.items() if t.endswith(".lookup")}, name,
        )
        pool: Dict[str, Dict[str, Any]] = {}
        for source in ok_sources:
            for scored in results[f"{source}.related"]:
                cand = scored.artist
                if cand.key == main.key or cand.key == normalise_name(name):
                    continue
                entry = pool.setdefault(cand.key, {"artist": cand, "scores": {}})
                if entry["artist"] is not cand:
                    entry["artist"] = entry["artist"].merge(cand)
                entry["scores"][source] = max(scored.score, entry["scores"].get(source, 0.0))

        self._state(rid, "ENRICH", f"{len(pool)} candidates")
        if "lastfm" not in errors:
            main = self._enrich_genres(main, rid)
            missing = [
                e["artist"] for e in sorted(
                    pool.values(), key=lambda e: (-max(e["scores"].values()), e["artist"].key),
                )[: limit * 2]
                if not e["artist"].genres
            ]
            if missing:
                tags, _ = self._fan_out(
                    {a.key: partial(self._top_tags, a.name) for a in missing}, rid,
                )
                for a in missing:
                    if tags.get(a.key):
                        a.genres = list(tags[a.key])[:_ENRICH_TAGS]

        self._state(rid, "SCORE")
        candidates = []
        for entry in pool.values():
            cand = entry["artist"]
            scores = entry["scores"]
            graph = scores.get("spotify")
            if graph is None and "spotify" in ok_sources and main.popularity is not None \
                    and cand.popularity is not None:
                graph = graph_similarity(main.genres, main.popularity, cand.genres, cand.popularity)
            for provider, value in scores.items():
                cand.extra[f"{provider}_score"] = round(value, 4)
            metrics = similarity_metrics(main, cand, graph=graph, scrobble=scores.get("lastfm"))
            candidates.append(SimilarCandidate(
                artist=cand, similarity=metrics, score=similarity_score(metrics),
            ))
        ranked = rank_by_similarity(filter_by_similarity(candidates, min_similarity))[:limit]

        result = SimilarArtistsResult(
            main_artist=main,
            candidates=ranked,
            sources=ok_sources,
            provider_errors=errors,
            processing_time_ms=self._elapsed(started),
        )
        if ok_sources:
            self._state(rid, "CACHE_STORE", key)
            self._cache.set(key, result.to_dict(), category="similar_artists")
        else:
            logger.warning("[%s] no similarity source answered for %r", rid, name)
        self._state(rid, "DONE", f"{len(ranked)} candidates")
        return result

    # ═════════════════════════════════════════════════════════════════════
    #  calculate_metrics
    # ═════════════════════════════════════════════════════════════════════

    def calculate_metrics(
        self,
        name: str,
        reference: str | None = None,
        force_refresh: bool = False,
    ) -> ScoreBreakdown:
        """
        Market metrics and score for *name*; similarity to *reference* is
        included when a reference artist is given.
        """
        name = self._validate_name(name)
        if reference is not None:
            reference = self._validate_name(reference, "reference artist")
        rid = self._new_request_id()
        key = generate_key("score_breakdown", name, reference or "")
        self._state(rid, "RECEIVED", f"metrics {name!r} vs {reference!r}")

        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not MISS:
                self._state(rid, "CACHE_HIT")
                return ScoreBreakdown.from_dict(cached)

        tasks: Dict[str, Callable[[], Any]] = {
            "youtube": partial(self._snapshot, name, force_refresh),
        }
        if reference is not None:
            for p in ("spotify", "lastfm"):
                tasks[f"{p}.target"] = partial(self._lookup, p, name, force_refresh)
                tasks[f"{p}.reference"] = partial(self._lookup, p, reference, force_refresh)
        results, errors = self._fan_out(tasks, rid)

        snapshot = results.get("youtube")
        if snapshot is None:
            logger.warning(
                "[%s] no market data for %r (%s); neutral breakdown",
                rid, name, errors.get("youtube", "unknown"),
            )
            return self._scoring.default_breakdown(name)

        similarity = None
        if reference is not None:
            target = self._merge_lookups(
                {t.split(".")[0]: v for t, v in results.items() if t.endswith(".target")}, name,
            )
            ref = self._merge_lookups(
                {t.split(".")[0]: v for t, v in results.items() if t.endswith(".reference")},
                reference,
            )
            graph = None
            if results.get("spotify.target") and results.get("spotify.reference"):
                graph = graph_similarity(
                    ref.genres, ref.popularity, target.genres, target.popularity,
                )
            similarity = similarity_metrics(ref, target, graph=graph)

        market = analyze_market(snapshot)
        breakdown = self._scoring.score(
            market.volume, market.competition, market.trend, market.saturation,
            similarity, artist_name=name,
        )
        self._cache.set(key, breakdown.to_dict(), category="score_breakdown")
        self._state(rid, "DONE", f"score={breakdown.final.overall_score:.2f}")
        return breakdown

    # ═════════════════════════════════════════════════════════════════════
    #  suggest_artists
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def _validate_filters(filters: Dict[str, Any] | None) -> Dict[str, Any]:
        filters = dict(filters or {})
        unknown = set(filters) - _FILTER_KEYS
        if unknown:
            raise ValidationError(f"unknown filters: {sorted(unknown)}")
        for k in ("min_popularity", "max_popularity", "min_score"):
            if k in filters and not isinstance(filters[k], (int, float)):
                raise ValidationError(f"filter {k} must be a number")
        if "genre" in filters and not isinstance(filters["genre"], str):
            raise ValidationError("filter genre must be a string")
        return filters

    @staticmethod
    def _passes_filters(artist: Artist, filters: Dict[str, Any]) -> bool:
        genre = filters.get("genre")
        if genre and not any(genre.lower() in g.lower() for g in artist.genres):
            return False
        pop = artist.popularity
        if "min_popularity" in filters and (pop is None or pop < filters["min_popularity"]):
            return False
        if "max_popularity" in filters and pop is not None and pop > filters["max_popularity"]:
            return False
        return True

    @staticmethod
    def _reasons(candidate: SimilarCandidate, breakdown: ScoreBreakdown) -> List[str]:
        reasons = []
        if breakdown.competition.competition_level == "low":
            reasons.append("Low competition")
        if breakdown.trend.trend_direction == "rising":
            reasons.append("Rising trend")
        if candidate.score > 0.8:
            reasons.append("Very similar style")
        if breakdown.volume.monthly_searches_estimate > 5000:
            reasons.append("Strong search volume")
        if len(candidate.artist.sources) > 1:
            reasons.append("Confirmed by multiple sources")
        return reasons or ["Algorithm-detected opportunity"]

    def suggest_artists(
        self,
        name: str,
        limit: int = 3,
        filters: Dict[str, Any] | None = None,
        force_refresh: bool = False,
    ) -> SuggestionsResult:
        """
        Ranked type-beat opportunities similar to *name*.

        Parameters
        ----------
        filters : dict, optional
            ``genre`` (substring), ``min_popularity``, ``max_popularity``,
            ``min_score``.
        """
        name = self._validate_name(name)
        limit = self._validate_limit(limit, _MAX_SUGGESTIONS)
        filters = self._validate_filters(filters)
        rid = self._new_request_id()
        started = time.perf_counter()
        key = generate_key(
            "suggestions", name, limit, json.dumps(filters, sort_keys=True),
        )
        self._state(rid, "RECEIVED", f"suggest {name!r}")

        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not MISS:
                self._state(rid, "CACHE_HIT")
                result = SuggestionsResult.from_dict(cached)
                result.cached = True
                return result

        wanted = max(limit, int(math.ceil(limit * 1.5)))
        similar = self.find_similar_artists(
            name, limit=min(_MAX_SIMILAR, wanted * 2), force_refresh=force_refresh,
        )
        if not similar.sources:
            logger.warning("[%s] every similarity source failed for %r; serving fallback", rid, name)
            return SuggestionsResult(
                artist_name=name,
                suggestions=fallback_suggestions(name, limit),
                provider_errors=similar.provider_errors,
                fallback_used=True,
                processing_time_ms=self._elapsed(started),
            )

        pool = [c for c in similar.candidates if self._passes_filters(c.artist, filters)][:wanted]
        self._state(rid, "SCORE", f"{len(pool)} candidates")
        # One flat fan-out; similarity is already known from the candidate pool.
        snapshots, errors = self._fan_out(
            {c.artist.key: partial(self._snapshot, c.artist.name, force_refresh) for c in pool},
            rid,
        )
        breakdowns: Dict[str, ScoreBreakdown] = {}
        for cand in pool:
            snapshot = snapshots.get(cand.artist.key)
            if snapshot is None:
                continue
            market = analyze_market(snapshot)
            breakdowns[cand.artist.key] = self._scoring.score(
                market.volume, market.competition, market.trend, market.saturation,
                cand.similarity, artist_name=cand.artist.name,
            )
        provider_errors = dict(similar.provider_errors)
        if errors:
            provider_errors.setdefault("youtube", sorted(errors.values())[0])

        min_score = filters.get("min_score", _MIN_SUGGESTION_SCORE)
        suggestions: List[Suggestion] = []
        for cand in pool:
            breakdown = breakdowns.get(cand.artist.key)
            if breakdown is None or breakdown.fallback_used:
                continue
            score = self._scoring.ranking_score(breakdown.final, cand.score)
            searches = breakdown.volume.monthly_searches_estimate
            if score < max(min_score, _MIN_SUGGESTION_SCORE) or searches <= _MIN_MONTHLY_SEARCHES:
                continue
            if score >= _HIGH_CONFIDENCE:
                confidence = "high"
            elif score >= _MEDIUM_CONFIDENCE:
                confidence = "medium"
            else:
                confidence = "low"
            suggestions.append(Suggestion(
                name=cand.artist.name,
                score=score,
                confidence=confidence,
                reasons=self._reasons(cand, breakdown),
                similarity=round(cand.score, 4),
                metrics={
                    "monthly_searches": searches,
                    "competition_level": breakdown.competition.competition_level,
                    "trend_direction": breakdown.trend.trend_direction,
                    "saturation": breakdown.saturation.saturation_score,
                    "overall_score": breakdown.final.overall_score,
                    "genres": list(cand.artist.genres),
                },
                sources=list(cand.artist.sources),
            ))
        suggestions.sort(key=lambda s: (-s.score, s.name.lower()))

        result = SuggestionsResult(
            artist_name=similar.main_artist.name if similar.main_artist else name,
            suggestions=suggestions[:limit],
            sources=sorted(set(similar.sources) | ({"youtube"} if breakdowns else set())),
            provider_errors=provider_errors,
            processing_time_ms=self._elapsed(started),
        )
        self._cache.set(key, result.to_dict(), category="suggestions")
        self._state(rid, "DONE", f"{len(result.suggestions)} suggestions")
        return result

    # ═════════════════════════════════════════════════════════════════════
    #  Health & usage
    # ═════════════════════════════════════════════════════════════════════

    def health_check(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        ``healthy`` when every provider and the cache pass, ``degraded``
        when one fails, ``unhealthy`` otherwise.
        """
        key = generate_key("health_status", "all")
        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not MISS:
                return cached

        tasks: Dict[str, Callable[[], Any]] = {
            name: client.health_check for name, client in self._clients.items()
        }
        tasks["cache"] = self._cache.health_check
        results, errors = self._fan_out(tasks)
        services = {name: results[name] for name in results}
        for name, kind in errors.items():
            services[name] = {"status": "unhealthy", "detail": kind}

        failed = sum(1 for s in services.values() if s.get("status") != "healthy")
        if failed == 0:
            status = "healthy"
        elif failed == 1:
            status = "degraded"
        else:
            status = "unhealthy"
        report = {"status": status, "services": services, "checked_at": utc_now_iso()}
        if services.get("cache", {}).get("status") == "healthy":
            self._cache.set(key, report, category="health_status")
        logger.info("Health: %s (%d/%d services failing)", status, failed, len(services))
        return report

    def usage_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {name: c.usage_stats() for name, c in self._clients.items()}
        stats["cache"] = self._cache.stats()
        return stats

    # ═════════════════════════════════════════════════════════════════════
    #  Lifecycle
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def _elapsed(started: float) -> float:
        return round((time.perf_counter() - started) * 1000.0, 1)

    def close(self) -> None:
        if self._owns_pool:
            self._pool.shutdown(wait=False, cancel_futures=True)
        for client in self._clients.values():
            client.close()

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
