"""
youtube_client.py — YouTube Data API v3 Client (volume / search provider)
===========================================================================
Measures the "<artist> type beat" market: how many uploads exist, how
recent they are, and who makes them.

Quota
-----
YouTube meters a daily budget in units (10 000 by default).  ``search.list``
costs 100, ``videos.list`` / ``channels.list`` cost 1.  Units are reserved
before the request; once the budget is gone every call fails fast with
``QuotaExceededError``.

Endpoints Used
--------------
- ``GET /search``            — type-beat video search, channel search
- ``GET /videos``            — view / like / comment counts, durations
- ``GET /channels``          — channel statistics
- ``GET /videoCategories``   — 1-unit health probe
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests

from typebeat.config import Settings
from typebeat.errors import ProviderAPIError, ProviderError, QuotaExceededError, TransientNetworkError
from typebeat.models import Artist, MarketSnapshot, ScoredArtist, Video
from typebeat.provider_client import BaseProviderClient
from typebeat.throttle import FixedWindowThrottle, QuotaMeter
from typebeat.utils import get_logger, normalise_name, safe_int, utc_now

logger = get_logger("typebeat.youtube")

# ── Constants ────────────────────────────────────────────────────────────────

_MAX_PAGE = 50                 # YouTube caps maxResults and id batches at 50
_RECENT_DAYS = 30

_DURATION_RE = re.compile(
    r"^P(?:(?P<d>\d+)D)?(?:T(?:(?P<h>\d+)H)?(?:(?P<m>\d+)M)?(?:(?P<s>\d+)S)?)?$"
)
# "Lil Baby x Gunna Type Beat", "Future & Young Thug type beat - 'Title'"
_COLLAB_RE = re.compile(r"^\s*(?:\[?free\]?\s*)?(?P<artists>.+?)\s+type\s+beat", re.IGNORECASE)
_COLLAB_SPLIT = re.compile(r"\s+(?:x|&|and|ft\.?|feat\.?)\s+|\s*[,/]\s*", re.IGNORECASE)

_QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded"}
_RATE_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}


def parse_duration(value: str) -> int:
    """ISO-8601 duration (``PT3M25S``) → seconds; 0 when unparseable."""
    match = _DURATION_RE.match(value or "")
    if not match:
        return 0
    parts = {k: int(v) if v else 0 for k, v in match.groupdict().items()}
    return parts["d"] * 86400 + parts["h"] * 3600 + parts["m"] * 60 + parts["s"]


def extract_collaborators(title: str) -> List[str]:
    """Artist names billed before "type beat" in a video title."""
    match = _COLLAB_RE.match(title or "")
    if not match:
        return []
    raw = re.sub(r"[\[\]\(\)\"'|]", " ", match.group("artists"))
    names = [n.strip(" -") for n in _COLLAB_SPLIT.split(raw)]
    return [n for n in names if n and len(n) <= 40]


class YouTubeClient(BaseProviderClient):
    """
    Quota-metered YouTube Data API client.

    Parameters
    ----------
    settings : Settings, optional
        If not supplied, loaded from ``.env`` automatically.
    """

    provider = "youtube"

    def __init__(self, settings: Settings | None = None, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self.base_url = self._settings.youtube_base_url
        self._api_key = self._settings.youtube_api_key
        self._search_cost = self._settings.youtube_search_cost
        self._list_cost = self._settings.youtube_list_cost
        if self._quota is None:
            self._quota = QuotaMeter(self.provider, self._settings.youtube_daily_quota)
        if self._throttle is None:
            self._throttle = FixedWindowThrottle(
                self._settings.youtube_rate_per_second, 1.0, name=self.provider,
            )

    # ═════════════════════════════════════════════════════════════════════
    #  Hooks
    # ═════════════════════════════════════════════════════════════════════

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _auth_params(self) -> Dict[str, Any]:
        return {"key": self._api_key}

    @staticmethod
    def _error_reason(resp: requests.Response) -> str:
        try:
            errors = resp.json().get("error", {}).get("errors", [])
        except (ValueError, AttributeError):
            return ""
        return errors[0].get("reason", "") if errors else ""

    def _classify_error(self, resp: requests.Response) -> ProviderError:
        reason = self._error_reason(resp)
        if reason in _QUOTA_REASONS:
            self._quota.exhaust()
            return QuotaExceededError(
                self.provider,
                "YouTube API quota exceeded for today",
                remaining=0,
                limit=self._quota.daily_limit,
            )
        if reason in _RATE_REASONS:
            return TransientNetworkError(self.provider, f"rate limited ({reason})")
        return ProviderAPIError(
            self.provider,
            f"HTTP {resp.status_code} ({reason or 'unknown'}): {(resp.text or '')[:300]}",
            status=resp.status_code,
        )

    # ═════════════════════════════════════════════════════════════════════
    #  Low-level endpoints
    # ═════════════════════════════════════════════════════════════════════

    def search_videos(
        self,
        query: str,
        *,
        max_results: int = 25,
        order: str = "relevance",
        published_after: datetime | None = None,
    ) -> Dict[str, Any]:
        """Raw ``search.list`` for videos (100 units)."""
        params: Dict[str, Any] = {
            "part": "snippet",
            "type": "video",
            "q": query,
            "maxResults": min(max_results, _MAX_PAGE),
            "order": order,
            "regionCode": "US",
            "relevanceLanguage": "en",
        }
        if published_after is not None:
            params["publishedAfter"] = published_after.strftime("%Y-%m-%dT%H:%M:%SZ")
        logger.info("YouTube search: %r (%d results, order=%s)", query, params["maxResults"], order)
        return self._request("GET", "/search", params, cost=self._search_cost)

    def video_statistics(self, video_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        """
        ``videos.list`` in batches of 50 (1 unit each).

        Returns
        -------
        dict
            video id → ``{"views", "likes", "comments", "duration"}``.
        """
        out: Dict[str, Dict[str, Any]] = {}
        for i in range(0, len(video_ids), _MAX_PAGE):
            batch = video_ids[i:i + _MAX_PAGE]
            data = self._request(
                "GET", "/videos",
                {"part": "statistics,contentDetails", "id": ",".join(batch), "maxResults": _MAX_PAGE},
                cost=self._list_cost,
            )
            for item in data.get("items") or []:
                stats = item.get("statistics") or {}
                out[item.get("id", "")] = {
                    "views": safe_int(stats.get("viewCount"), 0),
                    "likes": safe_int(stats.get("likeCount"), 0),
                    "comments": safe_int(stats.get("commentCount"), 0),
                    "duration": parse_duration((item.get("contentDetails") or {}).get("duration", "")),
                }
        return out

    @staticmethod
    def _to_videos(search: Dict[str, Any]) -> List[Video]:
        videos = []
        for item in search.get("items") or []:
            video_id = (item.get("id") or {}).get("videoId")
            if not video_id:
                continue
            snippet = item.get("snippet") or {}
            videos.append(Video(
                video_id=video_id,
                channel_id=snippet.get("channelId", ""),
                channel_title=snippet.get("channelTitle", ""),
                title=snippet.get("title", ""),
                published_at=snippet.get("publishedAt", ""),
            ))
        return videos

    # ═════════════════════════════════════════════════════════════════════
    #  Market snapshot
    # ═════════════════════════════════════════════════════════════════════

    def market_snapshot(self, artist_name: str) -> MarketSnapshot:
        """
        Everything the market calculators need for one artist (201+ units).

        1. relevance search for ``"<artist> type beat"`` (volume, competition)
        2. date-ordered search over the last 30 days (trend)
        3. statistics for every distinct video found
        """
        query = f"{artist_name} type beat"
        main = self.search_videos(query, max_results=_MAX_PAGE, order="relevance")
        recent = self.search_videos(
            query,
            max_results=_MAX_PAGE,
            order="date",
            published_after=utc_now() - timedelta(days=_RECENT_DAYS),
        )

        videos = self._to_videos(main)
        recent_videos = self._to_videos(recent)

        ids: List[str] = []
        for v in videos + recent_videos:
            if v.video_id not in ids:
                ids.append(v.video_id)
        stats = self.video_statistics(ids) if ids else {}

        for v in videos + recent_videos:
            s = stats.get(v.video_id)
            if s:
                v.view_count = s["views"]
                v.like_count = s["likes"]
                v.comment_count = s["comments"]
                v.duration_seconds = s["duration"]

        snapshot = MarketSnapshot(
            query=query,
            total_results=safe_int((main.get("pageInfo") or {}).get("totalResults"), 0),
            videos=videos,
            recent_videos=recent_videos,
        )
        logger.info(
            "Market snapshot for %s: %d total, %d top, %d recent (quota %d/%d)",
            artist_name, snapshot.total_results, len(videos), len(recent_videos),
            self._quota.used, self._quota.daily_limit,
        )
        return snapshot

    # ═════════════════════════════════════════════════════════════════════
    #  Provider contract
    # ═════════════════════════════════════════════════════════════════════

    def search(self, query: str, limit: int = 10) -> List[Artist]:
        """Channels matching *query*, as Artists (100 units)."""
        data = self._request(
            "GET", "/search",
            {"part": "snippet", "type": "channel", "q": query, "maxResults": min(limit, _MAX_PAGE)},
            cost=self._search_cost,
        )
        artists = []
        for item in data.get("items") or []:
            snippet = item.get("snippet") or {}
            channel_id = (item.get("id") or {}).get("channelId") or snippet.get("channelId", "")
            title = snippet.get("channelTitle") or snippet.get("title", "")
            if not title:
                continue
            artists.append(Artist(
                name=title,
                external_ids={self.provider: channel_id},
                url=f"https://www.youtube.com/channel/{channel_id}" if channel_id else "",
                image_url=((snippet.get("thumbnails") or {}).get("default") or {}).get("url", ""),
                sources=[self.provider],
            ))
        return artists

    def details(self, artist_id: str) -> Artist:
        """Channel statistics (1 unit)."""
        data = self._request(
            "GET", "/channels",
            {"part": "snippet,statistics", "id": artist_id},
            cost=self._list_cost,
        )
        items = data.get("items") or []
        if not items:
            raise ProviderAPIError(self.provider, f"channel {artist_id} not found", status=404)
        item = items[0]
        snippet = item.get("snippet") or {}
        stats = item.get("statistics") or {}
        return Artist(
            name=snippet.get("title", artist_id),
            external_ids={self.provider: artist_id},
            followers=safe_int(stats.get("subscriberCount")),
            url=f"https://www.youtube.com/channel/{artist_id}",
            extra={
                "view_count": safe_int(stats.get("viewCount"), 0),
                "video_count": safe_int(stats.get("videoCount"), 0),
            },
            sources=[self.provider],
        )

    def related(self, artist: str, limit: int = 10) -> List[ScoredArtist]:
        """
        Artists co-billed with *artist* in type-beat titles
        ("Lil Baby x Gunna Type Beat").  Score = share of co-billed titles.
        """
        data = self.search_videos(f"{artist} type beat", max_results=_MAX_PAGE)
        wanted = normalise_name(artist)
        counts: Dict[str, int] = {}
        display: Dict[str, str] = {}
        titles = 0
        for video in self._to_videos(data):
            names = extract_collaborators(video.title)
            keys = [normalise_name(n) for n in names]
            if wanted not in keys:
                continue
            titles += 1
            for name, key in zip(names, keys):
                if key == wanted:
                    continue
                counts[key] = counts.get(key, 0) + 1
                display.setdefault(key, name)

        if not titles:
            return []
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return [
            ScoredArtist(
                artist=Artist(name=display[key], sources=[self.provider]),
                score=count / titles,
                provider=self.provider,
            )
            for key, count in ranked
        ]

    def lookup(self, name: str) -> Optional[Artist]:
        # Channel search costs 100 units and rarely finds the artist's own
        # channel; the market snapshot is the useful YouTube signal.
        return None

    def _health_probe(self) -> str:
        self._request(
            "GET", "/videoCategories",
            {"part": "snippet", "regionCode": "US"},
            cost=self._list_cost,
        )
        return f"quota {self._quota.remaining}/{self._quota.daily_limit} remaining"
