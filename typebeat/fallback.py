"""
fallback.py — Static heuristic suggestions
============================================
Served only when *every* provider failed for a request.  Results built
from this table are always flagged ``fallback_used`` and are never cached
or mixed with live candidates.
"""

from __future__ import annotations

from typing import Dict, List

from typebeat.models import Suggestion
from typebeat.utils import normalise_name

# The only source a synthetic row ever reports.
FALLBACK_SOURCE = "fallback"


def _entry(
    name: str,
    score: float,
    volume: int,
    competition: str,
    trend: str,
    saturation: float,
    genre: str,
    bpm: int,
    reason: str,
    confidence: str,
) -> Suggestion:
    return Suggestion(
        name=name,
        score=score,
        confidence=confidence,
        reasons=[reason],
        metrics={
            "monthly_searches": volume,
            "competition_level": competition,
            "trend_direction": trend,
            "saturation": saturation,
            "genre": genre,
            "bpm": bpm,
        },
        sources=[FALLBACK_SOURCE],
    )


_TABLE: Dict[str, List[Suggestion]] = {
    "drake": [
        _entry("Lil Baby", 8.7, 15_000, "medium", "rising", 0.35, "Atlanta rap", 140,
               "Similar melodic style, strong demand", "high"),
        _entry("Gunna", 8.2, 12_000, "medium", "stable", 0.40, "Melodic trap", 145,
               "Same label, overlapping audience", "high"),
        _entry("Roddy Ricch", 7.9, 11_000, "high", "stable", 0.45, "West Coast rap", 135,
               "Catchy melodies, good potential", "medium"),
    ],
    "future": [
        _entry("Young Thug", 8.5, 13_000, "medium", "rising", 0.30, "Atlanta trap", 150,
               "Same Atlanta scene, experimental style", "high"),
        _entry("Lil Uzi Vert", 8.1, 10_000, "medium", "stable", 0.35, "Melodic rap", 155,
               "Innovative flows, young audience", "medium"),
    ],
    "travis scott": [
        _entry("Don Toliver", 8.3, 9_500, "low", "rising", 0.25, "Houston rap", 140,
               "Same label, psychedelic style", "high"),
        _entry("Sheck Wes", 7.6, 7_000, "low", "stable", 0.20, "Rage rap", 160,
               "Similar energy, less saturated", "medium"),
    ],
}

_DEFAULT: List[Suggestion] = [
    _entry("Emerging Artist 1", 7.5, 8_000, "low", "rising", 0.30, "Hip-hop", 140,
           "Emerging opportunity detected", "medium"),
    _entry("Emerging Artist 2", 7.2, 6_500, "low", "stable", 0.25, "Trap", 145,
           "Under-exploited market", "medium"),
]


def fallback_suggestions(artist_name: str, limit: int = 3) -> List[Suggestion]:
    """Heuristic suggestions for *artist_name* (case-insensitive), best first."""
    rows = _TABLE.get(normalise_name(artist_name), _DEFAULT)
    # Copies, so callers can never mutate the table.
    return [Suggestion.from_dict(s.to_dict()) for s in rows[:limit]]
