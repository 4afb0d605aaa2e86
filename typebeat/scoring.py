"""
scoring.py — Opportunity Scoring Engine
=========================================
Normalises every metric snapshot onto a 0–10 scale and combines them into
the overall opportunity score.

Normalisation
-------------
volume       log-scaled sub-signals against fixed ceilings
             (searches 50k · 0.4, results 10k · 0.3, views 500k · 0.2,
             uploads 100 · 0.1)
competition  linear inverse ``(1 − x) · 10``
saturation   linear inverse ``(1 − x) · 10``
trend        logistic squash of the 0–1 trend score
similarity   ``similarity_score · 10``

Composite
---------
``overall = 0.30 · volume + 0.25 · competition + 0.25 · trend + 0.20 · saturation``
clamped to ``[0, 10]``.  Confidence comes from the population std-dev of
the component scores: < 1.5 high, < 3.0 medium, otherwise low.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from typebeat import stats
from typebeat.models import (
    CompetitionMetrics,
    FinalScore,
    SaturationMetrics,
    ScoreBreakdown,
    SimilarityMetrics,
    TrendMetrics,
    VolumeMetrics,
)
from typebeat.market_metrics import (
    default_competition,
    default_saturation,
    default_trend,
    default_volume,
)
from typebeat.similarity import similarity_score
from typebeat.utils import clamp, get_logger

logger = get_logger("typebeat.scoring")

_CONFIDENCE_ORDER = ["low", "medium", "high"]


@dataclass(frozen=True)
class ScoringConfig:
    """Weights, ceilings and quality thresholds."""

    volume_weight: float = 0.30
    competition_weight: float = 0.25
    trend_weight: float = 0.25
    saturation_weight: float = 0.20
    # Relative weight of similarity when ranking candidates.
    similarity_rank_weight: float = 0.15

    volume_ceilings: Dict[str, float] = field(default_factory=lambda: {
        "searches": 50_000, "results": 10_000, "views": 500_000, "uploads": 100,
    })
    volume_weights: Dict[str, float] = field(default_factory=lambda: {
        "searches": 0.4, "results": 0.3, "views": 0.2, "uploads": 0.1,
    })
    trend_steepness: float = 6.0

    # Threshold validation
    min_monthly_searches: int = 100
    max_total_videos: int = 8_000
    min_similarity: float = 0.3

    def __post_init__(self) -> None:
        total = (
            self.volume_weight + self.competition_weight
            + self.trend_weight + self.saturation_weight
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"market weights must sum to 1.0, got {total:.4f}")


class ScoringEngine:
    """
    Parameters
    ----------
    config : ScoringConfig, optional
        Defaults to the standard weights.
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    # ═════════════════════════════════════════════════════════════════════
    #  Component normalisation (0–10)
    # ═════════════════════════════════════════════════════════════════════

    def volume_score(self, metrics: VolumeMetrics) -> float:
        ceil = self.config.volume_ceilings
        w = self.config.volume_weights
        parts = {
            "searches": stats.log_scale(metrics.monthly_searches_estimate, ceil["searches"]),
            "results": stats.log_scale(metrics.total_results, ceil["results"]),
            "views": stats.log_scale(metrics.avg_views, ceil["views"]),
            "uploads": stats.log_scale(metrics.recent_uploads_30d, ceil["uploads"]),
        }
        score = sum(parts[k] * w[k] for k in parts) / sum(w.values())
        return round(clamp(score * 10.0, 0.0, 10.0), 2)

    @staticmethod
    def competition_score(metrics: CompetitionMetrics) -> float:
        return round(clamp((1.0 - metrics.competition_score) * 10.0, 0.0, 10.0), 2)

    @staticmethod
    def saturation_score(metrics: SaturationMetrics) -> float:
        return round(clamp((1.0 - metrics.saturation_score) * 10.0, 0.0, 10.0), 2)

    def trend_score(self, metrics: TrendMetrics) -> float:
        """
        Logistic squash centred on 0.5 and rescaled so 0 → 0 and 1 → 10.
        """
        k = self.config.trend_steepness
        lo = stats.sigmoid(-0.5, k)
        hi = stats.sigmoid(0.5, k)
        raw = stats.sigmoid(metrics.trend_score - 0.5, k)
        return round(clamp((raw - lo) / (hi - lo) * 10.0, 0.0, 10.0), 2)

    @staticmethod
    def similarity_component(metrics: SimilarityMetrics) -> float:
        return round(clamp(similarity_score(metrics) * 10.0, 0.0, 10.0), 2)

    # ═════════════════════════════════════════════════════════════════════
    #  Composite
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def confidence(components: List[float]) -> str:
        sd = stats.std(components)
        if sd < 1.5:
            return "high"
        if sd < 3.0:
            return "medium"
        return "low"

    def final_score(
        self,
        volume: float,
        competition: float,
        trend: float,
        saturation: float,
        similarity: Optional[float] = None,
    ) -> FinalScore:
        """
        Combine pre-normalised component scores.  Out-of-range inputs are
        tolerated; the overall score is always clamped to ``[0, 10]``.
        """
        c = self.config
        overall = (
            volume * c.volume_weight
            + competition * c.competition_weight
            + trend * c.trend_weight
            + saturation * c.saturation_weight
        )
        components = [volume, competition, trend, saturation]
        if similarity is not None:
            components.append(similarity)
        return FinalScore(
            volume_score=volume,
            competition_score=competition,
            trend_score=trend,
            saturation_score=saturation,
            similarity_score=similarity,
            overall_score=round(clamp(overall, 0.0, 10.0), 2),
            confidence_level=self.confidence(components),
        )

    def score(
        self,
        volume: VolumeMetrics,
        competition: CompetitionMetrics,
        trend: TrendMetrics,
        saturation: SaturationMetrics,
        similarity: SimilarityMetrics | None = None,
        *,
        artist_name: str = "",
    ) -> ScoreBreakdown:
        """Full breakdown for one artist."""
        final = self.final_score(
            self.volume_score(volume),
            self.competition_score(competition),
            self.trend_score(trend),
            self.saturation_score(saturation),
            self.similarity_component(similarity) if similarity is not None else None,
        )
        logger.debug(
            "Scored %s: overall=%.2f (v=%.2f c=%.2f t=%.2f s=%.2f) confidence=%s",
            artist_name, final.overall_score, final.volume_score,
            final.competition_score, final.trend_score, final.saturation_score,
            final.confidence_level,
        )
        return ScoreBreakdown(
            artist_name=artist_name,
            final=final,
            volume=volume,
            competition=competition,
            trend=trend,
            saturation=saturation,
            similarity=similarity,
        )

    def default_breakdown(self, artist_name: str) -> ScoreBreakdown:
        """Neutral breakdown used when no market data could be fetched."""
        breakdown = self.score(
            default_volume(), default_competition(), default_trend(), default_saturation(),
            artist_name=artist_name,
        )
        breakdown.fallback_used = True
        breakdown.final = replace(breakdown.final, confidence_level="low")
        return breakdown

    # ═════════════════════════════════════════════════════════════════════
    #  Ranking & adjustments
    # ═════════════════════════════════════════════════════════════════════

    def ranking_score(self, final: FinalScore, similarity: Optional[float]) -> float:
        """
        Candidate ranking: the four market weights plus similarity at
        ``similarity_rank_weight``, renormalised.  *similarity* is 0–1.
        """
        if similarity is None:
            return final.overall_score
        w = self.config.similarity_rank_weight
        blended = (final.overall_score + w * clamp(similarity) * 10.0) / (1.0 + w)
        return round(clamp(blended, 0.0, 10.0), 2)

    @staticmethod
    def apply_contextual_adjustments(
        final: FinalScore,
        *,
        is_new_artist: bool = False,
        has_recent_hit: bool = False,
        is_regional_artist: bool = False,
        has_label_support: bool = False,
    ) -> FinalScore:
        adjusted = final.overall_score
        if is_new_artist:
            adjusted += 0.5
        if has_recent_hit:
            adjusted -= 0.3
        if is_regional_artist:
            adjusted += 0.2
        if has_label_support:
            adjusted -= 0.2
        return replace(final, overall_score=round(clamp(adjusted, 0.0, 10.0), 2))

    @staticmethod
    def downgrade_confidence(final: FinalScore, steps: int = 1) -> FinalScore:
        """Lower confidence by *steps* levels (floored at ``low``)."""
        idx = max(0, _CONFIDENCE_ORDER.index(final.confidence_level) - steps)
        return replace(final, confidence_level=_CONFIDENCE_ORDER[idx])

    def meets_thresholds(self, breakdown: ScoreBreakdown) -> bool:
        """Minimum demand, maximum supply and (when known) minimum similarity."""
        c = self.config
        if breakdown.volume.monthly_searches_estimate < c.min_monthly_searches:
            return False
        if breakdown.volume.total_results > c.max_total_videos:
            return False
        if breakdown.similarity is not None:
            if similarity_score(breakdown.similarity) < c.min_similarity:
                return False
        return True
