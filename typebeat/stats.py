"""
stats.py — Numeric helpers for market & similarity analysis
=============================================================
Pure functions over sequences of numbers, backed by numpy / scipy.
Every helper returns ``0`` (or an empty array) for empty input instead of
raising, so the calculators upstream can stay branch-free.

Conventions
-----------
- Standard deviation is the *population* std (``ddof=0``).
- Percentiles use linear interpolation between closest ranks.
- ``hhi`` takes market shares that already sum to 1 (see ``shares``).
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Sequence

import numpy as np
from scipy import stats as sp_stats
from scipy.special import expit


def _arr(values: Iterable[float]) -> np.ndarray:
    return np.asarray(list(values), dtype=float)


# ── central tendency & dispersion ───────────────────────────────────────────

def mean(values: Iterable[float]) -> float:
    a = _arr(values)
    return float(a.mean()) if a.size else 0.0


def median(values: Iterable[float]) -> float:
    a = _arr(values)
    return float(np.median(a)) if a.size else 0.0


def std(values: Iterable[float]) -> float:
    """Population standard deviation."""
    a = _arr(values)
    return float(a.std(ddof=0)) if a.size else 0.0


def coefficient_of_variation(values: Iterable[float]) -> float:
    """``std / mean``; 0 when the mean is 0."""
    a = _arr(values)
    if not a.size:
        return 0.0
    m = a.mean()
    return float(a.std(ddof=0) / m) if m else 0.0


def percentile(values: Iterable[float], pct: float) -> float:
    """Linear-interpolated percentile, *pct* in ``[0, 100]``."""
    a = _arr(values)
    if not a.size:
        return 0.0
    return float(np.percentile(a, pct))


# ── scaling ─────────────────────────────────────────────────────────────────

def normalize(value: float, lo: float, hi: float) -> float:
    """Map *value* from ``[lo, hi]`` into ``[0, 1]`` (clipped); 0 if lo == hi."""
    if hi == lo:
        return 0.0
    return float(np.clip((value - lo) / (hi - lo), 0.0, 1.0))


def normalize_to_ten(value: float, lo: float, hi: float) -> float:
    return normalize(value, lo, hi) * 10.0


def log_scale(value: float, ceiling: float) -> float:
    """
    Logarithmic normalisation into ``[0, 1]``.

    ``log10(1 + value) / log10(1 + ceiling)``, clipped.  Counts that span
    several orders of magnitude (views, search volume) compress sensibly.
    """
    if value <= 0 or ceiling <= 0:
        return 0.0
    return float(min(1.0, math.log10(1.0 + value) / math.log10(1.0 + ceiling)))


def sigmoid(x: float, steepness: float = 1.0) -> float:
    return float(expit(steepness * x))


def lerp(start: float, end: float, factor: float) -> float:
    return start + (end - start) * float(np.clip(factor, 0.0, 1.0))


def weighted_score(
    scores: Sequence[float],
    weights: Sequence[float],
    normalise: bool = True,
) -> float:
    """Weighted sum of *scores*; divided by the weight total when *normalise*."""
    if len(scores) != len(weights):
        raise ValueError(
            f"scores and weights must have the same length "
            f"({len(scores)} != {len(weights)})"
        )
    w = _arr(weights)
    total = w.sum()
    if total == 0:
        return 0.0
    s = float(np.dot(_arr(scores), w))
    return s / float(total) if normalise else s


# ── concentration & diversity ───────────────────────────────────────────────

def shares(counts: Iterable[float]) -> List[float]:
    """Convert raw counts into market shares summing to 1."""
    a = _arr(counts)
    total = a.sum()
    if not a.size or total <= 0:
        return []
    return (a / total).tolist()


def hhi(market_shares: Iterable[float]) -> float:
    """Herfindahl-Hirschman index: sum of squared shares (0 … 1)."""
    a = _arr(market_shares)
    return float(np.sum(a * a)) if a.size else 0.0


def gini(values: Iterable[float]) -> float:
    """Gini coefficient of inequality (0 = perfectly equal)."""
    a = np.sort(_arr(values))
    n = a.size
    if not n or a.sum() == 0:
        return 0.0
    ranks = np.arange(1, n + 1)
    return float(np.sum((2 * ranks - n - 1) * a) / (n * a.sum()))


def shannon_entropy(frequencies: Iterable[float]) -> float:
    """Shannon entropy in bits."""
    a = _arr(frequencies)
    if not a.size or a.sum() <= 0:
        return 0.0
    return float(sp_stats.entropy(a, base=2))


def simpson_diversity(frequencies: Iterable[float]) -> float:
    """``1 - Σ(f²) / (Σf)²``."""
    a = _arr(frequencies)
    total = a.sum()
    if not a.size or total <= 0:
        return 0.0
    return float(1.0 - np.sum(a * a) / (total * total))


# ── series ──────────────────────────────────────────────────────────────────

def moving_average(values: Sequence[float], window: int) -> List[float]:
    """Centred moving average; input is returned unchanged for a bad window."""
    n = len(values)
    if window <= 0 or window > n:
        return list(values)
    a = _arr(values)
    out = []
    for i in range(n):
        start = max(0, i - window // 2)
        end = min(n, start + window)
        out.append(float(a[start:end].mean()))
    return out


def linear_trend(values: Sequence[float]) -> Dict[str, float]:
    """
    Least-squares line through ``values`` indexed 0..n-1.

    Returns
    -------
    dict
        ``slope``, ``intercept`` and ``r2``.  ``r2`` is 1 for a flat series
        and all three are 0 for fewer than two points.
    """
    y = _arr(values)
    if y.size < 2:
        return {"slope": 0.0, "intercept": 0.0, "r2": 0.0}
    x = np.arange(y.size, dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    r2 = 1.0 if ss_tot == 0 else 1.0 - ss_res / ss_tot
    return {"slope": float(slope), "intercept": float(intercept), "r2": r2}


def exponential_smoothing(values: Sequence[float], alpha: float) -> List[float]:
    if not len(values):
        return []
    out = [float(values[0])]
    for v in values[1:]:
        out.append(alpha * float(v) + (1.0 - alpha) * out[-1])
    return out


def exponential_decay(values: Sequence[float], rate: float) -> List[float]:
    a = _arr(values)
    return (a * np.exp(-rate * np.arange(a.size))).tolist()


def detect_outliers(values: Sequence[float], factor: float = 1.5) -> Dict[str, object]:
    """IQR fence outlier detection."""
    a = _arr(values)
    if not a.size:
        return {"outliers": [], "lower_bound": 0.0, "upper_bound": 0.0}
    q1, q3 = np.percentile(a, [25, 75])
    iqr = q3 - q1
    lower = float(q1 - factor * iqr)
    upper = float(q3 + factor * iqr)
    return {
        "outliers": a[(a < lower) | (a > upper)].tolist(),
        "lower_bound": lower,
        "upper_bound": upper,
    }


# ── vector similarity ───────────────────────────────────────────────────────

def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation; 0 for mismatched, empty or constant series."""
    if len(x) != len(y) or len(x) < 2:
        return 0.0
    a, b = _arr(x), _arr(y)
    if a.std() == 0 or b.std() == 0:
        return 0.0
    r, _ = sp_stats.pearsonr(a, b)
    return float(r)


def cosine_similarity(v1: Sequence[float], v2: Sequence[float]) -> float:
    if len(v1) != len(v2):
        raise ValueError("Vectors must have the same length")
    a, b = _arr(v1), _arr(v2)
    n1, n2 = np.linalg.norm(a), np.linalg.norm(b)
    if n1 == 0 or n2 == 0:
        return 0.0
    return float(np.dot(a, b) / (n1 * n2))


def euclidean_distance(v1: Sequence[float], v2: Sequence[float]) -> float:
    if len(v1) != len(v2):
        raise ValueError("Vectors must have the same length")
    return float(np.linalg.norm(_arr(v1) - _arr(v2)))


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard index of two sets; 0 when either is empty."""
    sa, sb = set(a), set(b)
    if not sa or not sb:
        return 0.0
    return len(sa & sb) / len(sa | sb)
