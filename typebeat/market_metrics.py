"""
market_metrics.py — Type-beat market calculators
==================================================
Turns a ``MarketSnapshot`` (raw "<artist> type beat" search results) into
the four market metric snapshots the scoring engine consumes:

    volume       how much demand / supply exists
    competition  how concentrated the views are among creators
    trend        whether uploads are accelerating
    saturation   how crowded and repetitive the market already is

Pure functions: no I/O, ``now`` injectable.  Videos are loaded into a
pandas DataFrame once and every calculator works column-wise on it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from typebeat import stats
from typebeat.models import (
    CompetitionMetrics,
    MarketSnapshot,
    SaturationMetrics,
    TrendMetrics,
    Video,
    VolumeMetrics,
)
from typebeat.utils import clamp, get_logger

logger = get_logger("typebeat.market")

# ── Constants ────────────────────────────────────────────────────────────────

_SEARCH_ESTIMATE_CAP = 100_000
_RECENT_DAYS = 30
_BASELINE_DAYS = 180
_RISING_RATIO = 1.1
_DECLINING_RATIO = 0.9
_DIRECTION_VALUE = {"rising": 1.0, "stable": 0.6, "declining": 0.2}
_NEW_CREATOR_MAX_UPLOADS = 2
_WORDS_PER_TITLE = 5
_WORD_RE = re.compile(r"[^\w\s]")

_COLUMNS = [
    "video_id", "creator", "title", "published",
    "views", "likes", "comments", "duration",
]


@dataclass(frozen=True)
class MarketAnalysis:
    """The four market snapshots for one artist."""

    volume: VolumeMetrics
    competition: CompetitionMetrics
    trend: TrendMetrics
    saturation: SaturationMetrics


def _now(now: Optional[datetime]) -> pd.Timestamp:
    if now is None:
        return pd.Timestamp.now(tz="UTC")
    ts = pd.Timestamp(now)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def videos_frame(videos: Iterable[Video], now: Optional[datetime] = None) -> pd.DataFrame:
    """
    One row per video with an ``age_days`` column relative to *now*.

    Creators are keyed by channel id, falling back to the channel title.
    Unparseable publish dates get ``NaN`` age and drop out of every
    time-window count.
    """
    rows = [
        {
            "video_id": v.video_id,
            "creator": v.channel_id or v.channel_title,
            "title": v.title or "",
            "published": v.published_at,
            "views": max(0, v.view_count or 0),
            "likes": max(0, v.like_count or 0),
            "comments": max(0, v.comment_count or 0),
            "duration": max(0, v.duration_seconds or 0),
        }
        for v in videos
    ]
    df = pd.DataFrame(rows, columns=_COLUMNS)
    df["published"] = pd.to_datetime(df["published"], utc=True, errors="coerce")
    df["age_days"] = (_now(now) - df["published"]).dt.total_seconds() / 86400.0
    return df


def _uploads_within(df: pd.DataFrame, days: float) -> int:
    return int(((df["age_days"] >= 0) & (df["age_days"] <= days)).sum())


# ═════════════════════════════════════════════════════════════════════════
#  Volume
# ═════════════════════════════════════════════════════════════════════════

def estimate_monthly_searches(total_results: int, top_views: Iterable[int]) -> int:
    """
    ``min(2 · total, 100k) · (1 + 0.3 · min(avg views of the first 10 / 10k, 2))``.

    The average divides by 10 even when fewer videos are present.
    """
    base = min(max(total_results, 0) * 2, _SEARCH_ESTIMATE_CAP)
    first10 = list(top_views)[:10]
    avg_recent = sum(first10) / 10.0
    multiplier = min(avg_recent / 10_000.0, 2.0)
    return int(round(base * (1.0 + multiplier * 0.3)))


def analyze_volume(snapshot: MarketSnapshot, now: Optional[datetime] = None) -> VolumeMetrics:
    top = videos_frame(snapshot.videos, now)
    everything = videos_frame(snapshot.all_videos(), now)
    top20 = top["views"].head(20)
    return VolumeMetrics(
        total_results=max(0, snapshot.total_results),
        monthly_searches_estimate=estimate_monthly_searches(
            snapshot.total_results, top["views"].tolist(),
        ),
        recent_uploads_30d=_uploads_within(everything, _RECENT_DAYS),
        avg_views=round(float(top20.mean()), 1) if len(top20) else 0.0,
    )


# ═════════════════════════════════════════════════════════════════════════
#  Competition
# ═════════════════════════════════════════════════════════════════════════

def quality_score(df: pd.DataFrame) -> float:
    """
    Mean production-quality proxy (0–10) over the first 20 videos:
    base 5, + engagement (likes/views · 1000, max 2), + discussion
    (comments/views · 500, max 1), + 1 for a 2–5 minute runtime.
    """
    head = df.head(20)
    if head.empty:
        return 5.0
    views = head["views"].replace(0, np.nan)
    engagement = (head["likes"] / views * 1000.0).clip(upper=2.0).fillna(0.0)
    discussion = (head["comments"] / views * 500.0).clip(upper=1.0).fillna(0.0)
    runtime = head["duration"].between(120, 300).astype(float)
    return float((5.0 + engagement + discussion + runtime).mean())


def barrier_to_entry(avg_views: float, total_videos: int, dominance: float) -> str:
    score = 0
    score += 2 if avg_views > 100_000 else 1 if avg_views > 50_000 else 0
    score += 2 if total_videos > 10_000 else 1 if total_videos > 5_000 else 0
    score += 2 if dominance > 0.5 else 1 if dominance > 0.3 else 0
    if score >= 4:
        return "high"
    if score >= 2:
        return "medium"
    return "low"


def competition_level(score: float) -> str:
    if score < 0.3:
        return "low"
    if score < 0.7:
        return "medium"
    return "high"


def analyze_competition(
    videos: Iterable[Video],
    *,
    total_results: Optional[int] = None,
    now: Optional[datetime] = None,
) -> CompetitionMetrics:
    """
    ``competition_score = 0.4 · HHI(per-creator view totals) + 0.6 · min(1, CV(views))``.
    """
    df = videos_frame(videos, now)
    if df.empty:
        return default_competition()

    views = df.loc[df["views"] > 0, "views"].astype(float)
    per_creator = df.groupby("creator")["views"].sum()
    concentration = stats.hhi(stats.shares(per_creator.tolist()))
    dispersion = stats.coefficient_of_variation(views.tolist())
    score = clamp(0.4 * concentration + 0.6 * min(1.0, dispersion))

    total_views = per_creator.sum()
    dominance = float(per_creator.max() / total_views) if total_views > 0 else 0.0
    avg_views = float(views.mean()) if len(views) else 0.0
    total_videos = total_results if total_results is not None else len(df)

    return CompetitionMetrics(
        competition_score=round(score, 4),
        creator_concentration=round(concentration, 4),
        view_dispersion=round(dispersion, 4),
        unique_creators=int(df["creator"].nunique()),
        avg_views=round(avg_views),
        median_views=round(stats.median(views.tolist())),
        top_creator_dominance=round(dominance, 2),
        upload_frequency=round(_uploads_within(df, _RECENT_DAYS) / 30.0 * 7.0, 1)
        if len(df) >= 2 else 0.0,
        quality_score=round(quality_score(df), 1),
        barrier_to_entry=barrier_to_entry(avg_views, total_videos, dominance),
        competition_level=competition_level(score),
    )


# ═════════════════════════════════════════════════════════════════════════
#  Trend
# ═════════════════════════════════════════════════════════════════════════

def momentum_score(df: pd.DataFrame) -> float:
    """
    Upload acceleration on a 0–100 scale: 7/14/30-day counts weighted
    4:2:1, ×10, capped.  Fewer than 10 videos → neutral 50.
    """
    if len(df) < 10:
        return 50.0
    c7, c14, c30 = (_uploads_within(df, d) for d in (7, 14, 30))
    return float(min(max((c7 * 4 + c14 * 2 + c30) / 7.0 * 10.0, 0.0), 100.0))


def seasonality_factor(df: pd.DataFrame, now: Optional[datetime] = None) -> float:
    """Uploads in the current calendar month relative to the monthly mean."""
    months = df["published"].dropna().dt.month
    if months.empty:
        return 1.0
    counts = months.value_counts().reindex(range(1, 13), fill_value=0)
    avg = counts.mean()
    return float(counts[_now(now).month] / avg) if avg > 0 else 1.0


def analyze_trends(videos: Iterable[Video], now: Optional[datetime] = None) -> TrendMetrics:
    """
    Direction from the 30-day upload rate against the 180-day baseline
    (ratio > 1.1 rising, < 0.9 declining);
    ``trend_score = 0.6 · direction value + 0.4 · momentum / 100``.
    """
    df = videos_frame(videos, now)
    if df.empty:
        return default_trend()

    recent_rate = _uploads_within(df, _RECENT_DAYS) / float(_RECENT_DAYS)
    baseline_rate = _uploads_within(df, _BASELINE_DAYS) / float(_BASELINE_DAYS)
    ratio = recent_rate / baseline_rate if baseline_rate > 0 else 1.0
    if ratio > _RISING_RATIO:
        direction = "rising"
    elif ratio < _DECLINING_RATIO:
        direction = "declining"
    else:
        direction = "stable"

    momentum = momentum_score(df)
    score = clamp(0.6 * _DIRECTION_VALUE[direction] + 0.4 * momentum / 100.0)

    last_3m = _uploads_within(df, 90)
    prev_3m = _uploads_within(df, 180) - last_3m
    growth = (last_3m - prev_3m) / prev_3m * 100.0 if prev_3m > 0 else 0.0

    return TrendMetrics(
        trend_direction=direction,
        trend_score=round(score, 4),
        momentum_score=round(momentum),
        recent_rate=round(recent_rate, 4),
        baseline_rate=round(baseline_rate, 4),
        growth_rate_3m=round(growth, 1),
        trend_factor=round(clamp(1.0 + growth / 100.0, 0.5, 2.0), 2),
        seasonality_factor=round(seasonality_factor(df, now), 2),
    )


# ═════════════════════════════════════════════════════════════════════════
#  Saturation
# ═════════════════════════════════════════════════════════════════════════

def content_diversity(titles: Iterable[str]) -> float:
    """Distinct title words longer than three letters per (videos · 5), capped at 1."""
    titles = list(titles)
    if not titles:
        return 0.0
    words = set()
    for title in titles:
        words.update(w for w in _WORD_RE.sub("", title.lower()).split() if len(w) > 3)
    return min(len(words) / (len(titles) * _WORDS_PER_TITLE), 1.0)


def analyze_saturation(videos: Iterable[Video], now: Optional[datetime] = None) -> SaturationMetrics:
    """
    ``saturation = 0.5 · HHI(uploads per creator) + 0.25 · (1 − new-creator
    ratio) + 0.25 · (1 − lexical diversity)``.
    """
    df = videos_frame(videos, now)
    if df.empty:
        return default_saturation()

    uploads = df["creator"].value_counts()
    concentration = stats.hhi(stats.shares(uploads.tolist()))
    new_ratio = float((uploads <= _NEW_CREATOR_MAX_UPLOADS).sum() / len(uploads))
    diversity = content_diversity(df["title"].tolist())
    market_saturation = min(float(uploads.head(5).sum()) / len(df), 1.0)
    niche = (1.0 - market_saturation) * 0.5 + new_ratio * 0.3 + diversity * 0.2

    return SaturationMetrics(
        saturation_score=round(
            clamp(0.5 * concentration + 0.25 * (1.0 - new_ratio) + 0.25 * (1.0 - diversity)), 4,
        ),
        creator_concentration=round(concentration, 4),
        new_creators_ratio=round(new_ratio, 2),
        content_diversity=round(diversity, 2),
        market_saturation=round(market_saturation, 2),
        niche_opportunity=round(niche, 2),
    )


# ═════════════════════════════════════════════════════════════════════════
#  Defaults & entry point
# ═════════════════════════════════════════════════════════════════════════

def default_volume() -> VolumeMetrics:
    return VolumeMetrics(
        total_results=0, monthly_searches_estimate=0, recent_uploads_30d=0, avg_views=0.0,
    )


def default_competition() -> CompetitionMetrics:
    return CompetitionMetrics(
        competition_score=0.0,
        creator_concentration=0.0,
        view_dispersion=0.0,
        unique_creators=0,
    )


def default_trend() -> TrendMetrics:
    return TrendMetrics(
        trend_direction="stable",
        trend_score=round(0.6 * _DIRECTION_VALUE["stable"] + 0.4 * 0.5, 4),
        momentum_score=50.0,
        recent_rate=0.0,
        baseline_rate=0.0,
    )


def default_saturation() -> SaturationMetrics:
    return SaturationMetrics(
        saturation_score=0.0,
        creator_concentration=0.0,
        new_creators_ratio=1.0,
        content_diversity=1.0,
    )


def analyze_market(snapshot: MarketSnapshot, now: Optional[datetime] = None) -> MarketAnalysis:
    """All four calculators over one snapshot."""
    videos = snapshot.all_videos()
    analysis = MarketAnalysis(
        volume=analyze_volume(snapshot, now),
        competition=analyze_competition(
            snapshot.videos or videos, total_results=snapshot.total_results, now=now,
        ),
        trend=analyze_trends(videos, now),
        saturation=analyze_saturation(videos, now),
    )
    logger.debug(
        "Market %r: volume=%d competition=%.2f trend=%s saturation=%.2f",
        snapshot.query,
        analysis.volume.monthly_searches_estimate,
        analysis.competition.competition_score,
        analysis.trend.trend_direction,
        analysis.saturation.saturation_score,
    )
    return analysis
