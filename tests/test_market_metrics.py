"""
test_market_metrics.py — Unit Tests for the market calculators
===============================================================
Core invariants under test:
    **Every normalised metric stays in [0, 1]** regardless of input, and
    an empty result set yields the neutral defaults rather than an error.
"""

from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from typebeat.market_metrics import (
    analyze_competition,
    analyze_market,
    analyze_saturation,
    analyze_trends,
    analyze_volume,
    barrier_to_entry,
    competition_level,
    content_diversity,
    estimate_monthly_searches,
    videos_frame,
)
from typebeat.models import MarketSnapshot, Video

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _video(vid: str, creator: str, days_ago: float, views: int = 1_000,
           title: str = "drake type beat") -> Video:
    return Video(
        video_id=vid,
        channel_id=creator,
        channel_title=creator.title(),
        title=title,
        published_at=(NOW - timedelta(days=days_ago)).isoformat(),
        view_count=views,
        like_count=views // 50,
        comment_count=views // 200,
        duration_seconds=180,
    )


class TestVideosFrame(unittest.TestCase):

    def test_age_days(self):
        df = videos_frame([_video("a", "c1", 3)], NOW)
        self.assertAlmostEqual(df["age_days"].iloc[0], 3.0, places=6)

    def test_bad_date_is_nan(self):
        v = _video("a", "c1", 1)
        v.published_at = "not a date"
        df = videos_frame([v], NOW)
        self.assertTrue(df["age_days"].isna().iloc[0])


class TestVolume(unittest.TestCase):

    def test_search_estimate(self):
        self.assertEqual(estimate_monthly_searches(1_000, [10_000] * 10), 2_600)

    def test_search_estimate_cap(self):
        self.assertEqual(estimate_monthly_searches(10 ** 6, []), 100_000)

    def test_average_always_divides_by_ten(self):
        self.assertEqual(estimate_monthly_searches(100, [10_000]), 206)

    def test_analyze_volume_dedupes_recent(self):
        top = [_video(f"t{i}", f"c{i}", 5, views=2_000) for i in range(5)]
        recent = [_video("r1", "x", 10), _video("r2", "y", 45), top[0]]
        snap = MarketSnapshot(query="drake type beat", total_results=500,
                              videos=top, recent_videos=recent)
        vol = analyze_volume(snap, NOW)
        self.assertEqual(vol.total_results, 500)
        self.assertEqual(vol.recent_uploads_30d, 6)
        self.assertEqual(vol.avg_views, 2_000.0)

    def test_empty_snapshot(self):
        vol = analyze_volume(MarketSnapshot(query="q", total_results=0), NOW)
        self.assertEqual(vol.monthly_searches_estimate, 0)
        self.assertEqual(vol.avg_views, 0.0)


class TestCompetition(unittest.TestCase):

    def test_empty_is_default(self):
        self.assertEqual(analyze_competition([], now=NOW).competition_score, 0.0)

    def test_single_creator_equal_views(self):
        videos = [_video(str(i), "solo", 5) for i in range(6)]
        comp = analyze_competition(videos, now=NOW)
        self.assertAlmostEqual(comp.creator_concentration, 1.0)
        self.assertAlmostEqual(comp.view_dispersion, 0.0)
        self.assertAlmostEqual(comp.competition_score, 0.4)
        self.assertEqual(comp.competition_level, "medium")
        self.assertEqual(comp.unique_creators, 1)
        self.assertEqual(comp.top_creator_dominance, 1.0)

    def test_spread_market_is_low(self):
        videos = [_video(str(i), f"c{i}", 5) for i in range(4)]
        comp = analyze_competition(videos, now=NOW)
        self.assertAlmostEqual(comp.competition_score, 0.1)
        self.assertEqual(comp.competition_level, "low")

    def test_score_bounded_with_extreme_dispersion(self):
        videos = [_video("a", "c1", 5, views=10 ** 9)] + [
            _video(str(i), f"c{i}", 5, views=1) for i in range(20)
        ]
        comp = analyze_competition(videos, now=NOW)
        self.assertLessEqual(comp.competition_score, 1.0)
        self.assertGreaterEqual(comp.competition_score, 0.0)

    def test_levels_and_barrier(self):
        self.assertEqual(competition_level(0.29), "low")
        self.assertEqual(competition_level(0.5), "medium")
        self.assertEqual(competition_level(0.7), "high")
        self.assertEqual(barrier_to_entry(200_000, 20_000, 0.6), "high")
        self.assertEqual(barrier_to_entry(0, 0, 0.0), "low")


class TestTrends(unittest.TestCase):

    def test_empty_is_stable_default(self):
        trend = analyze_trends([], NOW)
        self.assertEqual(trend.trend_direction, "stable")
        self.assertAlmostEqual(trend.trend_score, 0.56)

    def test_burst_of_recent_uploads_is_rising(self):
        videos = [_video(str(i), f"c{i}", 3) for i in range(10)]
        trend = analyze_trends(videos, NOW)
        self.assertEqual(trend.trend_direction, "rising")
        self.assertEqual(trend.momentum_score, 100)
        self.assertAlmostEqual(trend.trend_score, 1.0)

    def test_old_uploads_are_declining(self):
        videos = [_video(str(i), f"c{i}", 60 + i * 9) for i in range(12)]
        trend = analyze_trends(videos, NOW)
        self.assertEqual(trend.trend_direction, "declining")
        self.assertAlmostEqual(trend.trend_score, 0.12)

    def test_trend_factor_bounds(self):
        videos = [_video(str(i), f"c{i}", 100 + i) for i in range(5)]
        trend = analyze_trends(videos, NOW)
        self.assertGreaterEqual(trend.trend_factor, 0.5)
        self.assertLessEqual(trend.trend_factor, 2.0)


class TestSaturation(unittest.TestCase):

    def test_content_diversity(self):
        self.assertEqual(content_diversity([]), 0.0)
        self.assertAlmostEqual(content_diversity(["drake type beat"]), 3 / 5)

    def test_single_prolific_creator_is_saturated(self):
        videos = [_video(str(i), "mill", 5) for i in range(10)]
        sat = analyze_saturation(videos, NOW)
        self.assertAlmostEqual(sat.saturation_score, 0.985)
        self.assertEqual(sat.new_creators_ratio, 0.0)

    def test_fragmented_market_is_less_saturated(self):
        titles = ["dark piano", "summer bounce", "memphis cowbell", "hard drill",
                  "guitar ballad", "spacey synths", "vintage soul", "street anthem",
                  "club banger", "moody strings"]
        fragmented = [_video(str(i), f"c{i}", 5, title=t) for i, t in enumerate(titles)]
        mill = [_video(str(i), "mill", 5) for i in range(10)]
        self.assertLess(
            analyze_saturation(fragmented, NOW).saturation_score,
            analyze_saturation(mill, NOW).saturation_score,
        )


class TestAnalyzeMarket(unittest.TestCase):

    def test_all_metrics_in_range(self):
        top = [_video(f"t{i}", f"c{i % 3}", i * 7, views=500 * (i + 1)) for i in range(15)]
        snap = MarketSnapshot(query="key glock type beat", total_results=3_000, videos=top)
        market = analyze_market(snap, NOW)
        for value in (
            market.competition.competition_score,
            market.trend.trend_score,
            market.saturation.saturation_score,
        ):
            self.assertGreaterEqual(value, 0.0)
            self.assertLessEqual(value, 1.0)
        self.assertGreater(market.volume.monthly_searches_estimate, 0)


if __name__ == "__main__":
    unittest.main()
