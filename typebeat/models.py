"""
models.py — Typed internal data model
=======================================
Every layer (clients, calculators, scoring, orchestrator) speaks in these
dataclasses.  Provider response shapes are translated into them inside the
clients and never leak further.

Artist provenance
-----------------
``Artist.sources`` records which providers contributed data.  Merging two
records for the same artist (same case-insensitive ``key``) keeps the union
of sources and fills fields that one side is missing.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

from typebeat.utils import normalise_name, utc_now_iso


# ── artists ─────────────────────────────────────────────────────────────────

def _unique_genres(genres) -> List[str]:
    seen = set()
    out: List[str] = []
    for g in genres or ():
        if not isinstance(g, str):
            continue
        g = g.strip()
        if g and g.lower() not in seen:
            seen.add(g.lower())
            out.append(g)
    return out


@dataclass
class Artist:
    """A music artist as seen by one or more providers."""

    name: str
    external_ids: Dict[str, str] = field(default_factory=dict)
    genres: List[str] = field(default_factory=list)
    popularity: Optional[float] = None     # 0–100
    followers: Optional[int] = None
    listeners: Optional[int] = None
    playcount: Optional[int] = None
    url: str = ""
    image_url: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)
    sources: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Artist.name must be non-empty")
        self.name = self.name.strip()
        self.genres = _unique_genres(self.genres)
        if self.popularity is not None:
            self.popularity = max(0.0, min(100.0, float(self.popularity)))
        for attr in ("followers", "listeners", "playcount"):
            value = getattr(self, attr)
            if value is not None and value < 0:
                raise ValueError(f"Artist.{attr} cannot be negative, got {value}")
        self.sources = sorted(set(self.sources))

    @property
    def key(self) -> str:
        return normalise_name(self.name)

    def merge(self, other: "Artist") -> "Artist":
        """
        Combine two records for the same artist.

        Scalars already present on ``self`` win; missing ones are taken from
        *other*.  Genres, ids, extras and sources are unioned.
        """
        merged_extra = dict(other.extra)
        merged_extra.update(self.extra)
        merged_ids = dict(other.external_ids)
        merged_ids.update(self.external_ids)
        return Artist(
            name=self.name,
            external_ids=merged_ids,
            genres=self.genres + other.genres,
            popularity=self.popularity if self.popularity is not None else other.popularity,
            followers=self.followers if self.followers is not None else other.followers,
            listeners=self.listeners if self.listeners is not None else other.listeners,
            playcount=self.playcount if self.playcount is not None else other.playcount,
            url=self.url or other.url,
            image_url=self.image_url or other.image_url,
            extra=merged_extra,
            sources=list(set(self.sources) | set(other.sources)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Artist":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class ScoredArtist:
    """A related artist with a 0–1 relation strength from one provider."""

    artist: Artist
    score: float
    provider: str

    def __post_init__(self) -> None:
        self.score = max(0.0, min(1.0, float(self.score)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artist": self.artist.to_dict(),
            "score": self.score,
            "provider": self.provider,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoredArtist":
        return cls(
            artist=Artist.from_dict(data["artist"]),
            score=data["score"],
            provider=data["provider"],
        )


# ── market (volume provider) ────────────────────────────────────────────────

@dataclass
class Video:
    """One search-result item from the volume provider."""

    video_id: str
    channel_id: str
    channel_title: str
    title: str
    published_at: str                # ISO-8601
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    duration_seconds: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Video":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class MarketSnapshot:
    """
    Raw "<artist> type beat" search results used by the market calculators.

    ``videos`` are relevance-ordered; ``recent_videos`` are the date-ordered
    uploads of the last 30 days.
    """

    query: str
    total_results: int
    videos: List[Video] = field(default_factory=list)
    recent_videos: List[Video] = field(default_factory=list)
    fetched_at: str = field(default_factory=utc_now_iso)

    def all_videos(self) -> List[Video]:
        """Relevance + recent videos, de-duplicated by id."""
        seen = set()
        out = []
        for v in self.videos + self.recent_videos:
            if v.video_id not in seen:
                seen.add(v.video_id)
                out.append(v)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "total_results": self.total_results,
            "videos": [v.to_dict() for v in self.videos],
            "recent_videos": [v.to_dict() for v in self.recent_videos],
            "fetched_at": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketSnapshot":
        return cls(
            query=data["query"],
            total_results=data.get("total_results", 0),
            videos=[Video.from_dict(v) for v in data.get("videos", [])],
            recent_videos=[Video.from_dict(v) for v in data.get("recent_videos", [])],
            fetched_at=data.get("fetched_at", utc_now_iso()),
        )


# ── metric snapshots (immutable) ────────────────────────────────────────────

class _MetricMixin:

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(frozen=True)
class VolumeMetrics(_MetricMixin):
    """Search / upload volume for an artist's type-beat market."""

    total_results: int
    monthly_searches_estimate: int
    recent_uploads_30d: int
    avg_views: float
    calculated_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        for f in ("total_results", "monthly_searches_estimate", "recent_uploads_30d", "avg_views"):
            if getattr(self, f) < 0:
                raise ValueError(f"VolumeMetrics.{f} cannot be negative")


@dataclass(frozen=True)
class CompetitionMetrics(_MetricMixin):
    """How crowded the top results are. ``competition_score`` ∈ [0, 1]."""

    competition_score: float
    creator_concentration: float     # HHI of per-creator view totals
    view_dispersion: float           # coefficient of variation of views
    unique_creators: int
    avg_views: float = 0.0
    median_views: float = 0.0
    top_creator_dominance: float = 0.0
    upload_frequency: float = 0.0    # videos / week over the last 30 days
    quality_score: float = 5.0       # 0–10
    barrier_to_entry: str = "low"
    competition_level: str = "low"
    calculated_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if not 0.0 <= self.competition_score <= 1.0:
            raise ValueError(
                f"competition_score must be in [0, 1], got {self.competition_score}"
            )


@dataclass(frozen=True)
class TrendMetrics(_MetricMixin):
    """Upload-rate direction and momentum. ``trend_score`` ∈ [0, 1]."""

    trend_direction: str             # rising | stable | declining
    trend_score: float
    momentum_score: float            # 0–100
    recent_rate: float               # uploads/day, last 30 days
    baseline_rate: float             # uploads/day, last 180 days
    growth_rate_3m: float = 0.0      # percent
    trend_factor: float = 1.0        # 0.5–2.0
    seasonality_factor: float = 1.0
    calculated_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if self.trend_direction not in ("rising", "stable", "declining"):
            raise ValueError(f"invalid trend_direction {self.trend_direction!r}")
        if not 0.0 <= self.trend_score <= 1.0:
            raise ValueError(f"trend_score must be in [0, 1], got {self.trend_score}")


@dataclass(frozen=True)
class SaturationMetrics(_MetricMixin):
    """Market fill level. ``saturation_score`` ∈ [0, 1]."""

    saturation_score: float
    creator_concentration: float
    new_creators_ratio: float
    content_diversity: float
    market_saturation: float = 0.0   # share of the top-5 creators
    niche_opportunity: float = 1.0
    calculated_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        if not 0.0 <= self.saturation_score <= 1.0:
            raise ValueError(
                f"saturation_score must be in [0, 1], got {self.saturation_score}"
            )


@dataclass(frozen=True)
class SimilarityMetrics(_MetricMixin):
    """
    Pairwise similarity from the main artist's point of view.

    Provider sub-scores are None when that provider did not relate the pair.
    """

    genre_overlap: float
    style_compatibility: float
    audience_overlap: float
    graph_similarity: Optional[float] = None
    scrobble_similarity: Optional[float] = None
    cross_provider: float = 0.0
    calculated_at: str = field(default_factory=utc_now_iso)


# ── scoring ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FinalScore(_MetricMixin):
    """Component scores and the composite, all on a 0–10 scale."""

    volume_score: float
    competition_score: float
    trend_score: float
    saturation_score: float
    similarity_score: Optional[float]
    overall_score: float
    confidence_level: str            # low | medium | high
    calculated_at: str = field(default_factory=utc_now_iso)


@dataclass
class ScoreBreakdown:
    """A ``FinalScore`` plus the metric snapshots it was derived from."""

    artist_name: str
    final: FinalScore
    volume: VolumeMetrics
    competition: CompetitionMetrics
    trend: TrendMetrics
    saturation: SaturationMetrics
    similarity: Optional[SimilarityMetrics] = None
    fallback_used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artist_name": self.artist_name,
            "final": self.final.to_dict(),
            "volume": self.volume.to_dict(),
            "competition": self.competition.to_dict(),
            "trend": self.trend.to_dict(),
            "saturation": self.saturation.to_dict(),
            "similarity": self.similarity.to_dict() if self.similarity else None,
            "fallback_used": self.fallback_used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreBreakdown":
        sim = data.get("similarity")
        return cls(
            artist_name=data["artist_name"],
            final=FinalScore.from_dict(data["final"]),
            volume=VolumeMetrics.from_dict(data["volume"]),
            competition=CompetitionMetrics.from_dict(data["competition"]),
            trend=TrendMetrics.from_dict(data["trend"]),
            saturation=SaturationMetrics.from_dict(data["saturation"]),
            similarity=SimilarityMetrics.from_dict(sim) if sim else None,
            fallback_used=data.get("fallback_used", False),
        )


# ── orchestrator results ────────────────────────────────────────────────────

@dataclass
class AnalysisResult:
    """Result of ``Orchestrator.analyze_artist``."""

    artist: Optional[Artist]
    breakdown: Optional[ScoreBreakdown]
    sources: List[str] = field(default_factory=list)
    provider_errors: Dict[str, str] = field(default_factory=dict)
    fallback_used: bool = False
    cached: bool = False
    processing_time_ms: float = 0.0
    suggestions: List["Suggestion"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artist": self.artist.to_dict() if self.artist else None,
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
            "sources": list(self.sources),
            "provider_errors": dict(self.provider_errors),
            "fallback_used": self.fallback_used,
            "cached": self.cached,
            "processing_time_ms": self.processing_time_ms,
            "suggestions": [s.to_dict() for s in self.suggestions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            artist=Artist.from_dict(data["artist"]) if data.get("artist") else None,
            breakdown=(
                ScoreBreakdown.from_dict(data["breakdown"])
                if data.get("breakdown") else None
            ),
            sources=list(data.get("sources", [])),
            provider_errors=dict(data.get("provider_errors", {})),
            fallback_used=data.get("fallback_used", False),
            cached=data.get("cached", False),
            processing_time_ms=data.get("processing_time_ms", 0.0),
            suggestions=[Suggestion.from_dict(s) for s in data.get("suggestions", [])],
        )


@dataclass
class SimilarCandidate:
    """A merged related artist with its similarity metrics."""

    artist: Artist
    similarity: SimilarityMetrics
    score: float                      # canonical weighted similarity, 0–1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artist": self.artist.to_dict(),
            "similarity": self.similarity.to_dict(),
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimilarCandidate":
        return cls(
            artist=Artist.from_dict(data["artist"]),
            similarity=SimilarityMetrics.from_dict(data["similarity"]),
            score=data["score"],
        )


@dataclass
class SimilarArtistsResult:
    """Result of ``Orchestrator.find_similar_artists``."""

    main_artist: Optional[Artist]
    candidates: List[SimilarCandidate] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    provider_errors: Dict[str, str] = field(default_factory=dict)
    cached: bool = False
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "main_artist": self.main_artist.to_dict() if self.main_artist else None,
            "candidates": [c.to_dict() for c in self.candidates],
            "sources": list(self.sources),
            "provider_errors": dict(self.provider_errors),
            "cached": self.cached,
            "processing_time_ms": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimilarArtistsResult":
        main = data.get("main_artist")
        return cls(
            main_artist=Artist.from_dict(main) if main else None,
            candidates=[SimilarCandidate.from_dict(c) for c in data.get("candidates", [])],
            sources=list(data.get("sources", [])),
            provider_errors=dict(data.get("provider_errors", {})),
            cached=data.get("cached", False),
            processing_time_ms=data.get("processing_time_ms", 0.0),
        )


@dataclass
class Suggestion:
    """One ranked opportunity."""

    name: str
    score: float                      # 0–10
    confidence: str
    reasons: List[str] = field(default_factory=list)
    similarity: Optional[float] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    sources: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Suggestion":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class SuggestionsResult:
    """Result of ``Orchestrator.suggest_artists``."""

    artist_name: str
    suggestions: List[Suggestion] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)
    provider_errors: Dict[str, str] = field(default_factory=dict)
    fallback_used: bool = False
    cached: bool = False
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artist_name": self.artist_name,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "sources": list(self.sources),
            "provider_errors": dict(self.provider_errors),
            "fallback_used": self.fallback_used,
            "cached": self.cached,
            "processing_time_ms": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SuggestionsResult":
        return cls(
            artist_name=data["artist_name"],
            suggestions=[Suggestion.from_dict(s) for s in data.get("suggestions", [])],
            sources=list(data.get("sources", [])),
            provider_errors=dict(data.get("provider_errors", {})),
            fallback_used=data.get("fallback_used", False),
            cached=data.get("cached", False),
            processing_time_ms=data.get("processing_time_ms", 0.0),
        )
