"""
genius_client.py — Genius API Client (lyrics / metadata provider)
===================================================================
Artist metadata, song page views and collaborators.

Genius sits behind Cloudflare: a 403 or 503 is treated as an edge block
(``EdgeProtectionError``), never retried.  Requests are spaced at least
500 ms apart on top of the 60/min window.

Endpoints Used
--------------
- ``GET /search?q=``                        — song hits → primary artists
- ``GET /artists/{id}``                     — artist profile
- ``GET /artists/{id}/songs?sort=popularity`` — popular songs, page views
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

import requests

from typebeat.config import Settings
from typebeat.errors import ProviderAPIError
from typebeat.models import Artist, ScoredArtist
from typebeat.provider_client import BaseProviderClient
from typebeat.throttle import FixedWindowThrottle
from typebeat.utils import get_logger, normalise_name, safe_int

logger = get_logger("typebeat.genius")

_MIN_INTERVAL = 0.5
_SONGS_PER_PAGE = 10


def pageview_popularity(avg_pageviews: float) -> float:
    """``min(100, log10(avg page views) · 10)``, 0 for no views."""
    return round(min(100.0, math.log10(max(1.0, avg_pageviews)) * 10.0))


def flatten_description(node: Any) -> str:
    """Genius ships descriptions as a DOM tree; keep only the text."""
    if isinstance(node, str):
        return node
    if isinstance(node, dict):
        if "dom" in node:
            return flatten_description(node["dom"]).strip()
        children = node.get("children") or []
        return " ".join(t for t in (flatten_description(c) for c in children) if t)
    return ""


class GeniusClient(BaseProviderClient):
    """
    Genius REST client authenticated with a static access token.

    Parameters
    ----------
    settings : Settings, optional
        If not supplied, loaded from ``.env`` automatically.
    """

    provider = "genius"

    def __init__(self, settings: Settings | None = None, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self.base_url = self._settings.genius_base_url
        self._access_token = self._settings.genius_access_token
        if self._throttle is None:
            self._throttle = FixedWindowThrottle(
                self._settings.genius_rate_per_minute, 60.0,
                min_interval=_MIN_INTERVAL, name=self.provider,
            )

    @property
    def configured(self) -> bool:
        return bool(self._access_token)

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    def _is_edge_blocked(self, resp: requests.Response) -> bool:
        return resp.status_code in (403, 503)

    # ═════════════════════════════════════════════════════════════════════
    #  Translation
    # ═════════════════════════════════════════════════════════════════════

    def _to_artist(self, item: Dict[str, Any]) -> Artist:
        return Artist(
            name=item.get("name", ""),
            external_ids={self.provider: str(item.get("id", ""))},
            followers=safe_int(item.get("followers_count")),
            url=item.get("url", ""),
            image_url=item.get("image_url", ""),
            sources=[self.provider],
        )

    def _songs(self, artist_id: str) -> List[Dict[str, Any]]:
        data = self._request(
            "GET", f"/artists/{artist_id}/songs",
            {"sort": "popularity", "per_page": _SONGS_PER_PAGE},
        )
        return (data.get("response") or {}).get("songs") or []

    # ═════════════════════════════════════════════════════════════════════
    #  Provider contract
    # ═════════════════════════════════════════════════════════════════════

    def search(self, query: str, limit: int = 10) -> List[Artist]:
        """Unique primary artists of the song hits for *query*."""
        data = self._request("GET", "/search", {"q": query})
        hits = (data.get("response") or {}).get("hits") or []
        seen: Dict[str, Artist] = {}
        pageviews: Dict[str, int] = {}
        for hit in hits:
            result = hit.get("result") or {}
            primary = result.get("primary_artist") or {}
            artist_id = str(primary.get("id", ""))
            if not artist_id or not primary.get("name"):
                continue
            views = safe_int((result.get("stats") or {}).get("pageviews"), 0)
            pageviews[artist_id] = pageviews.get(artist_id, 0) + views
            if artist_id not in seen:
                seen[artist_id] = self._to_artist(primary)
        for artist_id, artist in seen.items():
            artist.extra["search_pageviews"] = pageviews[artist_id]
        return list(seen.values())[:limit]

    def details(self, artist_id: str) -> Artist:
        """Profile plus popular-song page views and a 0–100 popularity."""
        data = self._request("GET", f"/artists/{artist_id}")
        item = (data.get("response") or {}).get("artist")
        if not item:
            raise ProviderAPIError(self.provider, f"artist {artist_id} not found", status=404)
        artist = self._to_artist(item)

        songs = self._songs(artist_id)
        views = [safe_int((s.get("stats") or {}).get("pageviews"), 0) for s in songs]
        avg = sum(views) / len(views) if views else 0.0
        top = sorted(
            ({"title": s.get("title", ""), "pageviews": v, "url": s.get("url", "")}
             for s, v in zip(songs, views)),
            key=lambda s: -s["pageviews"],
        )[:5]

        artist.popularity = pageview_popularity(avg) if views else None
        artist.extra.update({
            "total_pageviews": sum(views),
            "average_pageviews": round(avg),
            "top_songs": top,
            "is_verified": bool(item.get("is_verified")),
            "alternate_names": item.get("alternate_names") or [],
            "description": flatten_description(item.get("description")),
        })
        return artist

    def lookup(self, name: str) -> Optional[Artist]:
        results = self.search(name)
        if not results:
            return None
        wanted = normalise_name(name)
        best = next((a for a in results if a.key == wanted), results[0])
        return self.details(best.external_ids[self.provider])

    def related(self, artist: str, limit: int = 10) -> List[ScoredArtist]:
        """
        Frequent collaborators: featured artists on *artist*'s popular songs.
        Score = share of songs the collaborator appears on.
        """
        if artist.isdigit():
            artist_id = artist
        else:
            found = self.search(artist)
            wanted = normalise_name(artist)
            match = next((a for a in found if a.key == wanted), found[0] if found else None)
            if match is None:
                return []
            artist_id = match.external_ids[self.provider]

        songs = self._songs(artist_id)
        if not songs:
            return []
        counts: Dict[str, int] = {}
        people: Dict[str, Dict[str, Any]] = {}
        for song in songs:
            for feat in song.get("featured_artists") or []:
                fid = str(feat.get("id", ""))
                if not fid or fid == artist_id or not feat.get("name"):
                    continue
                counts[fid] = counts.get(fid, 0) + 1
                people.setdefault(fid, feat)

        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], people[kv[0]]["name"].lower()))
        return [
            ScoredArtist(
                artist=self._to_artist(people[fid]),
                score=count / len(songs),
                provider=self.provider,
            )
            for fid, count in ranked[:limit]
        ]

    def popularity(self, name: str) -> Optional[float]:
        """Page-view popularity (0–100) for *name*, None when not on Genius."""
        artist = self.lookup(name)
        return artist.popularity if artist else None

    def _health_probe(self) -> str:
        self._request("GET", "/search", {"q": "test"})
        return "search ok"
