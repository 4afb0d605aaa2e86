"""
test_scoring.py — Unit Tests for the Opportunity Scoring Engine
================================================================
Core invariant under test:
    **The overall score is always in [0, 10]**, whatever the component
    inputs, and lower competition / saturation never lowers the score.
"""

from __future__ import annotations

import itertools
import unittest

from typebeat.market_metrics import default_competition, default_saturation, default_trend
from typebeat.models import (
    CompetitionMetrics,
    SaturationMetrics,
    SimilarityMetrics,
    TrendMetrics,
    VolumeMetrics,
)
from typebeat.scoring import ScoringConfig, ScoringEngine


def _volume(searches=20_000, results=4_000, views=80_000, uploads=40) -> VolumeMetrics:
    return VolumeMetrics(
        total_results=results,
        monthly_searches_estimate=searches,
        recent_uploads_30d=uploads,
        avg_views=views,
    )


def _competition(score: float) -> CompetitionMetrics:
    return CompetitionMetrics(
        competition_score=score, creator_concentration=0.2,
        view_dispersion=0.5, unique_creators=12,
    )


def _saturation(score: float) -> SaturationMetrics:
    return SaturationMetrics(
        saturation_score=score, creator_concentration=0.1,
        new_creators_ratio=0.5, content_diversity=0.5,
    )


def _trend(score: float, direction: str = "stable") -> TrendMetrics:
    return TrendMetrics(
        trend_direction=direction, trend_score=score, momentum_score=50,
        recent_rate=0.1, baseline_rate=0.1,
    )


class TestComponents(unittest.TestCase):

    def setUp(self) -> None:
        self.engine = ScoringEngine()

    def test_volume_zero_and_ceiling(self):
        self.assertEqual(self.engine.volume_score(_volume(0, 0, 0, 0)), 0.0)
        top = _volume(50_000, 10_000, 500_000, 100)
        self.assertAlmostEqual(self.engine.volume_score(top), 10.0)
        huge = _volume(10 ** 9, 10 ** 9, 10 ** 9, 10 ** 9)
        self.assertEqual(self.engine.volume_score(huge), 10.0)

    def test_inverse_components(self):
        self.assertEqual(self.engine.competition_score(_competition(0.0)), 10.0)
        self.assertEqual(self.engine.competition_score(_competition(1.0)), 0.0)
        self.assertEqual(self.engine.saturation_score(_saturation(0.25)), 7.5)

    def test_trend_endpoints(self):
        self.assertAlmostEqual(self.engine.trend_score(_trend(0.0)), 0.0)
        self.assertAlmostEqual(self.engine.trend_score(_trend(0.5)), 5.0)
        self.assertAlmostEqual(self.engine.trend_score(_trend(1.0)), 10.0)

    def test_trend_is_monotonic(self):
        scores = [self.engine.trend_score(_trend(x / 10)) for x in range(11)]
        self.assertEqual(scores, sorted(scores))

    def test_similarity_component(self):
        m = SimilarityMetrics(genre_overlap=0.5, style_compatibility=0.5, audience_overlap=0.5)
        self.assertEqual(self.engine.similarity_component(m), 5.0)


class TestFinalScore(unittest.TestCase):

    def setUp(self) -> None:
        self.engine = ScoringEngine()

    def test_weighted_sum(self):
        final = self.engine.final_score(10, 10, 10, 10)
        self.assertEqual(final.overall_score, 10.0)
        final = self.engine.final_score(10, 0, 0, 0)
        self.assertAlmostEqual(final.overall_score, 3.0)

    def test_always_within_bounds(self):
        grid = [-5.0, 0.0, 4.2, 10.0, 25.0]
        for v, c, t, s in itertools.product(grid, repeat=4):
            overall = self.engine.final_score(v, c, t, s).overall_score
            self.assertGreaterEqual(overall, 0.0)
            self.assertLessEqual(overall, 10.0)

    def test_similarity_does_not_move_overall(self):
        a = self.engine.final_score(6, 6, 6, 6)
        b = self.engine.final_score(6, 6, 6, 6, similarity=1.0)
        self.assertEqual(a.overall_score, b.overall_score)
        self.assertEqual(b.similarity_score, 1.0)

    def test_confidence_from_spread(self):
        self.assertEqual(self.engine.final_score(5, 5, 5, 5).confidence_level, "high")
        self.assertEqual(self.engine.final_score(2, 6, 2, 6).confidence_level, "medium")
        self.assertEqual(self.engine.final_score(0, 10, 0, 10).confidence_level, "low")

    def test_lower_competition_never_hurts(self):
        vol, trend, sat = _volume(), _trend(0.6), _saturation(0.4)
        prev = None
        for comp in (0.9, 0.7, 0.5, 0.3, 0.1):
            overall = self.engine.score(vol, _competition(comp), trend, sat).final.overall_score
            if prev is not None:
                self.assertGreaterEqual(overall, prev)
            prev = overall

    def test_weights_must_sum_to_one(self):
        with self.assertRaises(ValueError):
            ScoringConfig(volume_weight=0.5)


class TestBreakdowns(unittest.TestCase):

    def setUp(self) -> None:
        self.engine = ScoringEngine()

    def test_score_builds_breakdown(self):
        bd = self.engine.score(
            _volume(), _competition(0.3), _trend(0.7, "rising"), _saturation(0.2),
            artist_name="Key Glock",
        )
        self.assertEqual(bd.artist_name, "Key Glock")
        self.assertFalse(bd.fallback_used)
        self.assertIsNone(bd.final.similarity_score)

    def test_default_breakdown_is_neutral_and_flagged(self):
        bd = self.engine.default_breakdown("Nobody")
        self.assertTrue(bd.fallback_used)
        self.assertEqual(bd.final.confidence_level, "low")
        self.assertEqual(bd.volume.monthly_searches_estimate, 0)
        self.assertEqual(bd.competition.competition_score, default_competition().competition_score)
        self.assertEqual(bd.trend.trend_direction, default_trend().trend_direction)
        self.assertEqual(bd.saturation.saturation_score, default_saturation().saturation_score)

    def test_breakdown_round_trips_through_dict(self):
        bd = self.engine.default_breakdown("Nobody")
        again = type(bd).from_dict(bd.to_dict())
        self.assertEqual(again.final.overall_score, bd.final.overall_score)
        self.assertTrue(again.fallback_used)


class TestRankingAndAdjustments(unittest.TestCase):

    def setUp(self) -> None:
        self.engine = ScoringEngine()
        self.final = self.engine.final_score(8, 8, 8, 8)

    def test_ranking_score(self):
        self.assertEqual(self.engine.ranking_score(self.final, None), 8.0)
        blended = self.engine.ranking_score(self.final, 1.0)
        self.assertAlmostEqual(blended, round((8.0 + 1.5) / 1.15, 2))
        self.assertLess(self.engine.ranking_score(self.final, 0.0), 8.0)

    def test_contextual_adjustments_clamped(self):
        adj = self.engine.apply_contextual_adjustments(
            self.engine.final_score(10, 10, 10, 10), is_new_artist=True, is_regional_artist=True,
        )
        self.assertEqual(adj.overall_score, 10.0)
        adj = self.engine.apply_contextual_adjustments(self.final, has_recent_hit=True)
        self.assertAlmostEqual(adj.overall_score, 7.7)

    def test_downgrade_confidence_floors_at_low(self):
        final = self.engine.final_score(5, 5, 5, 5)
        self.assertEqual(self.engine.downgrade_confidence(final).confidence_level, "medium")
        self.assertEqual(self.engine.downgrade_confidence(final, 5).confidence_level, "low")

    def test_meets_thresholds(self):
        ok = self.engine.score(_volume(), _competition(0.3), _trend(0.5), _saturation(0.3))
        self.assertTrue(self.engine.meets_thresholds(ok))
        thin = self.engine.score(_volume(searches=50), _competition(0.3), _trend(0.5), _saturation(0.3))
        self.assertFalse(self.engine.meets_thresholds(thin))
        crowded = self.engine.score(_volume(results=9_000), _competition(0.3), _trend(0.5), _saturation(0.3))
        self.assertFalse(self.engine.meets_thresholds(crowded))


if __name__ == "__main__":
    unittest.main()
