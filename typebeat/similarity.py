"""
similarity.py — Artist-to-artist similarity calculators
=========================================================
Pure functions; no I/O.  All scores are in ``[0, 1]`` and computed from the
*main* artist's point of view (``popularity_proximity`` is asymmetric on
purpose: a candidate at 60–80 % of the main artist's popularity is the
sweet spot for a type-beat producer).

Canonical weighting
-------------------
One table ranks candidates everywhere:

    graph 0.30 · scrobble 0.25 · genre 0.20 · style 0.15 · audience 0.10

When a provider did not relate the pair, its weight is dropped and the
remaining weights are renormalised.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Set

from typebeat import stats
from typebeat.models import Artist, SimilarCandidate, SimilarityMetrics
from typebeat.utils import clamp


SIMILARITY_WEIGHTS: Dict[str, float] = {
    "graph": 0.30,
    "scrobble": 0.25,
    "genre": 0.20,
    "style": 0.15,
    "audience": 0.10,
}

# Provider weights for the cross-provider composite
_CROSS_WEIGHTS = {"graph": 0.6, "scrobble": 0.4}
_AGREEMENT_BONUS = 0.1

STYLE_KEYWORDS: Dict[str, List[str]] = {
    "trap": ["trap", "atlanta trap", "memphis trap", "drill"],
    "rap": ["rap", "hip hop", "hip-hop", "gangsta rap", "conscious rap"],
    "southern": ["southern rap", "southern hip hop", "memphis rap", "houston rap", "atlanta rap"],
    "east_coast": ["east coast rap", "new york rap", "boom bap"],
    "west_coast": ["west coast rap", "california rap", "g-funk"],
    "midwest": ["midwest rap", "chicago rap", "detroit rap"],
    "melodic": ["melodic rap", "emo rap", "alternative rap"],
    "hardcore": ["hardcore rap", "gangsta rap", "drill"],
    "experimental": ["experimental rap", "abstract rap", "alternative rap"],
    "commercial": ["pop rap", "mainstream rap", "radio rap"],
}

_REGIONAL_GROUPS = [
    {"us", "canada"},
    {"uk", "ireland"},
    {"france", "belgium", "switzerland"},
    {"germany", "austria", "switzerland"},
]
_CONTINENTS = [
    {"us", "canada", "mexico"},
    {"uk", "france", "germany", "spain", "italy"},
    {"japan", "korea", "china", "india"},
]


def _normalise(genres: Iterable[str]) -> Set[str]:
    return {g.strip().lower() for g in genres if g and g.strip()}


# ── pairwise signals ────────────────────────────────────────────────────────

def genre_overlap(genres_a: Iterable[str], genres_b: Iterable[str]) -> float:
    """Jaccard index over lower-cased, trimmed genre sets (0 if either is empty)."""
    return stats.jaccard(_normalise(genres_a), _normalise(genres_b))


def extract_styles(genres: Iterable[str]) -> Set[str]:
    """Fold raw genre tags into the style taxonomy by keyword containment."""
    norm = _normalise(genres)
    return {
        style for style, keywords in STYLE_KEYWORDS.items()
        if any(kw in genre for genre in norm for kw in keywords)
    }


def style_compatibility(genres_a: Iterable[str], genres_b: Iterable[str]) -> float:
    return stats.jaccard(extract_styles(genres_a), extract_styles(genres_b))


def popularity_proximity(main: Optional[float], candidate: Optional[float]) -> float:
    """
    Score the candidate's popularity relative to the main artist's.

    ratio = candidate / main:
    0.6–0.8 → 1.0, 0.4–0.9 → 0.8, 0.2–1.0 → 0.6, anything else → 0.3.
    Unknown (or zero) popularity on either side → neutral 0.5.
    """
    if not main or not candidate:
        return 0.5
    ratio = candidate / main
    if 0.6 <= ratio <= 0.8:
        return 1.0
    if 0.4 <= ratio <= 0.9:
        return 0.8
    if 0.2 <= ratio <= 1.0:
        return 0.6
    return 0.3


def audience_overlap(main: Artist, candidate: Artist) -> float:
    return clamp(
        0.6 * genre_overlap(main.genres, candidate.genres)
        + 0.4 * popularity_proximity(main.popularity, candidate.popularity)
    )


def graph_similarity(
    main_genres: Iterable[str],
    main_popularity: Optional[float],
    cand_genres: Iterable[str],
    cand_popularity: Optional[float],
) -> float:
    """
    Music-graph relation strength.

    ``0.6 · genre Jaccard + 0.3 · (1 − |Δpopularity| / 100)`` plus an
    opportunity bonus of ``(main − candidate) / 200`` when the candidate is
    less popular; clamped to ``[0, 1]``.
    """
    main_pop = main_popularity or 0.0
    cand_pop = cand_popularity or 0.0
    genre = genre_overlap(main_genres, cand_genres)
    closeness = max(0.0, 1.0 - abs(main_pop - cand_pop) / 100.0)
    bonus = (main_pop - cand_pop) / 200.0 if cand_pop < main_pop else 0.0
    return clamp(0.6 * genre + 0.3 * closeness + bonus)


def cross_provider_similarity(
    graph: Optional[float] = None,
    scrobble: Optional[float] = None,
) -> float:
    """
    Provider agreement: weighted mean over the providers that scored the
    pair, plus a bonus when more than one did.
    """
    present = {k: v for k, v in (("graph", graph), ("scrobble", scrobble)) if v is not None}
    if not present:
        return 0.0
    total = sum(_CROSS_WEIGHTS[k] for k in present)
    score = sum(_CROSS_WEIGHTS[k] * v for k, v in present.items()) / total
    if len(present) > 1:
        score += _AGREEMENT_BONUS
    return clamp(score)


def bpm_compatibility(bpm_a: Optional[float], bpm_b: Optional[float]) -> float:
    if not bpm_a or not bpm_b:
        return 0.5
    diff = abs(bpm_a - bpm_b)
    if diff <= 5:
        return 1.0
    if diff <= 15:
        return 0.8
    if diff <= 30:
        return 0.6
    return 0.3


def regional_compatibility(region_a: Optional[str], region_b: Optional[str]) -> float:
    if not region_a or not region_b:
        return 0.5
    a, b = region_a.strip().lower(), region_b.strip().lower()
    if a == b:
        return 1.0
    if any(a in g and b in g for g in _REGIONAL_GROUPS):
        return 0.8
    if any(a in g and b in g for g in _CONTINENTS):
        return 0.6
    return 0.3


# ── composite ───────────────────────────────────────────────────────────────

def similarity_metrics(
    main: Artist,
    candidate: Artist,
    *,
    graph: Optional[float] = None,
    scrobble: Optional[float] = None,
) -> SimilarityMetrics:
    """All pairwise signals for one (main, candidate) pair, rounded to 2 dp."""
    return SimilarityMetrics(
        genre_overlap=round(genre_overlap(main.genres, candidate.genres), 2),
        style_compatibility=round(style_compatibility(main.genres, candidate.genres), 2),
        audience_overlap=round(audience_overlap(main, candidate), 2),
        graph_similarity=round(graph, 2) if graph is not None else None,
        scrobble_similarity=round(scrobble, 2) if scrobble is not None else None,
        cross_provider=round(cross_provider_similarity(graph, scrobble), 2),
    )


def similarity_score(
    metrics: SimilarityMetrics,
    weights: Dict[str, float] | None = None,
) -> float:
    """Canonical weighted similarity in ``[0, 1]``."""
    weights = weights or SIMILARITY_WEIGHTS
    signals = {
        "graph": metrics.graph_similarity,
        "scrobble": metrics.scrobble_similarity,
        "genre": metrics.genre_overlap,
        "style": metrics.style_compatibility,
        "audience": metrics.audience_overlap,
    }
    present = [(v, weights[k]) for k, v in signals.items() if v is not None]
    if not present:
        return 0.0
    values, w = zip(*present)
    return round(clamp(stats.weighted_score(values, w)), 4)


def rank_by_similarity(
    candidates: Sequence[SimilarCandidate],
) -> List[SimilarCandidate]:
    """Score descending, then case-insensitive name for a stable order."""
    return sorted(candidates, key=lambda c: (-c.score, c.artist.key))


def filter_by_similarity(
    candidates: Sequence[SimilarCandidate],
    min_similarity: float = 0.3,
) -> List[SimilarCandidate]:
    return [c for c in candidates if c.score >= min_similarity]
