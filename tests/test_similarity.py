"""
test_similarity.py — Unit Tests for artist similarity
======================================================
Core invariants under test:
    **Every similarity signal stays in [0, 1]**, missing provider scores
    drop out of the weighting instead of counting as zero, and ranking is
    deterministic (score, then name).
"""

from __future__ import annotations

import unittest

from typebeat.models import Artist, SimilarCandidate, SimilarityMetrics
from typebeat.similarity import (
    SIMILARITY_WEIGHTS,
    audience_overlap,
    bpm_compatibility,
    cross_provider_similarity,
    extract_styles,
    filter_by_similarity,
    genre_overlap,
    graph_similarity,
    popularity_proximity,
    rank_by_similarity,
    regional_compatibility,
    similarity_metrics,
    similarity_score,
    style_compatibility,
)

KEY_GLOCK = Artist(
    name="Key Glock", genres=["memphis rap", "trap", "southern hip hop"], popularity=70,
)
POOH_SHIESTY = Artist(
    name="Pooh Shiesty", genres=["memphis rap", "trap", "gangsta rap"], popularity=49,
)


class TestGenreOverlap(unittest.TestCase):

    def test_memphis_pair(self):
        self.assertAlmostEqual(genre_overlap(KEY_GLOCK.genres, POOH_SHIESTY.genres), 0.5)

    def test_case_and_whitespace_insensitive(self):
        self.assertEqual(genre_overlap(["Trap "], ["trap"]), 1.0)

    def test_empty_side_is_zero(self):
        self.assertEqual(genre_overlap([], ["trap"]), 0.0)
        self.assertEqual(genre_overlap([], []), 0.0)

    def test_symmetric(self):
        pairs = [
            (KEY_GLOCK.genres, POOH_SHIESTY.genres),
            (["trap", "drill"], ["Drill", "uk drill", "grime"]),
            (["memphis rap"], []),
        ]
        for a, b in pairs:
            self.assertEqual(genre_overlap(a, b), genre_overlap(b, a))

    def test_identity_is_one(self):
        for genres in (KEY_GLOCK.genres, ["trap"], ["Trap", "trap ", "drill"]):
            self.assertEqual(genre_overlap(genres, genres), 1.0)


class TestStyles(unittest.TestCase):

    def test_extract_styles(self):
        self.assertEqual(extract_styles(KEY_GLOCK.genres), {"trap", "rap", "southern"})

    def test_style_compatibility(self):
        # gangsta rap adds "hardcore" on the candidate side only
        self.assertAlmostEqual(style_compatibility(KEY_GLOCK.genres, POOH_SHIESTY.genres), 0.75)


class TestPopularityProximity(unittest.TestCase):

    def test_sweet_spot(self):
        self.assertEqual(popularity_proximity(100, 70), 1.0)

    def test_bands(self):
        self.assertEqual(popularity_proximity(100, 85), 0.8)
        self.assertEqual(popularity_proximity(100, 30), 0.6)
        self.assertEqual(popularity_proximity(100, 10), 0.3)
        self.assertEqual(popularity_proximity(50, 90), 0.3)

    def test_unknown_is_neutral(self):
        self.assertEqual(popularity_proximity(None, 50), 0.5)
        self.assertEqual(popularity_proximity(0, 50), 0.5)

    def test_audience_overlap(self):
        # 0.6 * 0.5 + 0.4 * 1.0 (49/70 = 0.7)
        self.assertAlmostEqual(audience_overlap(KEY_GLOCK, POOH_SHIESTY), 0.7)


class TestProviderSignals(unittest.TestCase):

    def test_graph_similarity_bounds(self):
        score = graph_similarity(["trap"], 100, ["trap"], 0)
        self.assertLessEqual(score, 1.0)
        self.assertGreaterEqual(graph_similarity([], 0, ["x"], 100), 0.0)

    def test_graph_similarity_value(self):
        # 0.6*0.5 + 0.3*(1 - 21/100) + 21/200
        expected = 0.3 + 0.3 * 0.79 + 0.105
        got = graph_similarity(KEY_GLOCK.genres, 70, POOH_SHIESTY.genres, 49)
        self.assertAlmostEqual(got, expected)

    def test_cross_provider(self):
        self.assertEqual(cross_provider_similarity(), 0.0)
        self.assertAlmostEqual(cross_provider_similarity(graph=0.5), 0.5)
        self.assertAlmostEqual(cross_provider_similarity(graph=0.5, scrobble=0.5), 0.6)
        self.assertEqual(cross_provider_similarity(graph=1.0, scrobble=1.0), 1.0)

    def test_bpm_and_region(self):
        self.assertEqual(bpm_compatibility(140, 143), 1.0)
        self.assertEqual(bpm_compatibility(140, 200), 0.3)
        self.assertEqual(bpm_compatibility(None, 140), 0.5)
        self.assertEqual(regional_compatibility("US", "us"), 1.0)
        self.assertEqual(regional_compatibility("us", "canada"), 0.8)
        self.assertEqual(regional_compatibility("us", "mexico"), 0.6)
        self.assertEqual(regional_compatibility("us", "japan"), 0.3)


class TestComposite(unittest.TestCase):

    def test_weights_sum_to_one(self):
        self.assertAlmostEqual(sum(SIMILARITY_WEIGHTS.values()), 1.0)

    def test_metrics_for_memphis_pair(self):
        m = similarity_metrics(KEY_GLOCK, POOH_SHIESTY, graph=0.8)
        self.assertEqual(m.genre_overlap, 0.5)
        self.assertEqual(m.style_compatibility, 0.75)
        self.assertIsNone(m.scrobble_similarity)
        self.assertEqual(m.cross_provider, 0.8)

    def test_missing_scores_are_renormalised(self):
        m = SimilarityMetrics(genre_overlap=1.0, style_compatibility=1.0, audience_overlap=1.0)
        self.assertEqual(similarity_score(m), 1.0)

    def test_all_signals(self):
        m = SimilarityMetrics(
            genre_overlap=0.5, style_compatibility=0.5, audience_overlap=0.5,
            graph_similarity=1.0, scrobble_similarity=0.0,
        )
        expected = 0.30 * 1.0 + 0.25 * 0.0 + 0.45 * 0.5
        self.assertAlmostEqual(similarity_score(m), round(expected, 4))

    def test_score_always_in_unit_interval(self):
        for g in (0.0, 0.3, 1.0):
            for graph in (None, 0.0, 1.0):
                m = SimilarityMetrics(
                    genre_overlap=g, style_compatibility=g, audience_overlap=g,
                    graph_similarity=graph,
                )
                s = similarity_score(m)
                self.assertGreaterEqual(s, 0.0)
                self.assertLessEqual(s, 1.0)


class TestRanking(unittest.TestCase):

    def _cand(self, name: str, score: float) -> SimilarCandidate:
        metrics = SimilarityMetrics(genre_overlap=0, style_compatibility=0, audience_overlap=0)
        return SimilarCandidate(artist=Artist(name=name), similarity=metrics, score=score)

    def test_ties_broken_by_name(self):
        ranked = rank_by_similarity([
            self._cand("Zed", 0.5), self._cand("abe", 0.5), self._cand("Mid", 0.9),
        ])
        self.assertEqual([c.artist.name for c in ranked], ["Mid", "abe", "Zed"])

    def test_filter(self):
        kept = filter_by_similarity([self._cand("A", 0.29), self._cand("B", 0.3)], 0.3)
        self.assertEqual([c.artist.name for c in kept], ["B"])


if __name__ == "__main__":
    unittest.main()
