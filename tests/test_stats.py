"""
test_stats.py — Unit Tests for the statistical helpers
=======================================================
Empty inputs must never raise: every aggregate degrades to 0.
"""

from __future__ import annotations

import math
import unittest

from typebeat import stats


class TestDescriptive(unittest.TestCase):

    def test_empty_inputs_are_zero(self):
        for fn in (stats.mean, stats.median, stats.std, stats.coefficient_of_variation):
            self.assertEqual(fn([]), 0.0)

    def test_mean_median_std(self):
        values = [1, 2, 3, 4]
        self.assertAlmostEqual(stats.mean(values), 2.5)
        self.assertAlmostEqual(stats.median(values), 2.5)
        self.assertAlmostEqual(stats.std(values), math.sqrt(1.25))

    def test_cv_zero_mean(self):
        self.assertEqual(stats.coefficient_of_variation([0, 0, 0]), 0.0)

    def test_percentile(self):
        self.assertAlmostEqual(stats.percentile([1, 2, 3, 4, 5], 50), 3.0)


class TestScaling(unittest.TestCase):

    def test_normalize_clips(self):
        self.assertEqual(stats.normalize(15, 0, 10), 1.0)
        self.assertEqual(stats.normalize(-5, 0, 10), 0.0)
        self.assertAlmostEqual(stats.normalize_to_ten(5, 0, 10), 5.0)

    def test_log_scale_caps_at_one(self):
        self.assertEqual(stats.log_scale(0, 1000), 0.0)
        self.assertAlmostEqual(stats.log_scale(1000, 1000), 1.0)
        self.assertEqual(stats.log_scale(10 ** 9, 1000), 1.0)

    def test_sigmoid_midpoint(self):
        self.assertAlmostEqual(stats.sigmoid(0.0), 0.5)
        self.assertGreater(stats.sigmoid(1.0, 6.0), stats.sigmoid(1.0, 1.0))

    def test_lerp_clamps_factor(self):
        self.assertEqual(stats.lerp(0, 10, 2.0), 10)
        self.assertAlmostEqual(stats.lerp(0, 10, 0.25), 2.5)

    def test_weighted_score(self):
        self.assertAlmostEqual(stats.weighted_score([1.0, 0.0], [3, 1]), 0.75)
        self.assertAlmostEqual(stats.weighted_score([1.0, 0.0], [3, 1], normalise=False), 3.0)
        with self.assertRaises(ValueError):
            stats.weighted_score([1.0], [1, 2])


class TestConcentration(unittest.TestCase):

    def test_hhi_monopoly_and_even_split(self):
        self.assertAlmostEqual(stats.hhi(stats.shares([100])), 1.0)
        self.assertAlmostEqual(stats.hhi(stats.shares([1, 1, 1, 1])), 0.25)

    def test_gini_bounds(self):
        self.assertAlmostEqual(stats.gini([5, 5, 5, 5]), 0.0)
        self.assertGreater(stats.gini([0, 0, 0, 100]), 0.7)

    def test_entropy_and_simpson(self):
        self.assertAlmostEqual(stats.shannon_entropy([1, 1, 1, 1]), 2.0)
        self.assertAlmostEqual(stats.simpson_diversity([1, 1]), 0.5)


class TestSeries(unittest.TestCase):

    def test_linear_trend_exact_line(self):
        fit = stats.linear_trend([1, 3, 5, 7])
        self.assertAlmostEqual(fit["slope"], 2.0)
        self.assertAlmostEqual(fit["intercept"], 1.0)
        self.assertAlmostEqual(fit["r2"], 1.0)

    def test_linear_trend_short_series(self):
        self.assertEqual(stats.linear_trend([4]), {"slope": 0.0, "intercept": 0.0, "r2": 0.0})

    def test_moving_average_bad_window(self):
        self.assertEqual(stats.moving_average([1, 2, 3], 0), [1, 2, 3])
        self.assertEqual(len(stats.moving_average([1, 2, 3, 4], 2)), 4)

    def test_exponential_smoothing(self):
        self.assertEqual(stats.exponential_smoothing([], 0.5), [])
        self.assertEqual(stats.exponential_smoothing([0, 10], 0.5), [0.0, 5.0])

    def test_exponential_decay(self):
        self.assertEqual(stats.exponential_decay([3, 3], 0.0), [3.0, 3.0])
        decayed = stats.exponential_decay([1, 1, 1], 0.5)
        self.assertEqual(decayed[0], 1.0)
        self.assertGreater(decayed[1], decayed[2])

    def test_detect_outliers(self):
        result = stats.detect_outliers([10, 11, 12, 11, 10, 500])
        self.assertEqual(result["outliers"], [500.0])


class TestVectorSimilarity(unittest.TestCase):

    def test_pearson(self):
        self.assertAlmostEqual(stats.pearson([1, 2, 3], [2, 4, 6]), 1.0)
        self.assertEqual(stats.pearson([1, 1, 1], [1, 2, 3]), 0.0)
        self.assertEqual(stats.pearson([1], [1]), 0.0)

    def test_cosine_and_euclidean(self):
        self.assertAlmostEqual(stats.cosine_similarity([1, 0], [0, 1]), 0.0)
        self.assertAlmostEqual(stats.euclidean_distance([0, 0], [3, 4]), 5.0)
        with self.assertRaises(ValueError):
            stats.cosine_similarity([1], [1, 2])

    def test_jaccard(self):
        self.assertEqual(stats.jaccard([], ["a"]), 0.0)
        self.assertAlmostEqual(stats.jaccard(["a", "b"], ["b", "c"]), 1 / 3)


if __name__ == "__main__":
    unittest.main()
