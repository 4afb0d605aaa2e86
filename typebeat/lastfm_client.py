"""
lastfm_client.py — Last.fm API Client (scrobble provider)
===========================================================
Listener counts, play counts, user tags and "similar artist" match
scores.

Last.fm allows roughly five requests per second per key.  Calls beyond
that are queued by the throttle, never rejected.

Last.fm reports many failures in-band with HTTP 200 and an ``error``
code in the body:

=====  ==========================  =========================
code   meaning                     translated to
=====  ==========================  =========================
6      artist not found            ``ProviderAPIError`` (404)
10     invalid API key             ``AuthenticationError``
11     service offline             ``TransientNetworkError``
16     temporary error             ``TransientNetworkError``
26     suspended API key           ``AuthenticationError``
29     rate limit exceeded         ``TransientNetworkError``
=====  ==========================  =========================
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests

from typebeat.config import Settings
from typebeat.errors import (
    AuthenticationError,
    ProviderAPIError,
    ProviderError,
    TransientNetworkError,
)
from typebeat.models import Artist, ScoredArtist
from typebeat.provider_client import BaseProviderClient
from typebeat.throttle import FixedWindowThrottle
from typebeat.utils import get_logger, safe_float, safe_int

logger = get_logger("typebeat.lastfm")

_TRANSIENT_CODES = {11, 16, 29}
_AUTH_CODES = {10, 26}
_NOT_FOUND = 6

# Listener / play-count ceilings for the 0–100 popularity estimate
_LISTENER_CEILING = 1_000_000
_PLAYCOUNT_CEILING = 50_000_000


def estimate_popularity(listeners: Optional[int], playcount: Optional[int]) -> Optional[float]:
    """
    Spotify-comparable 0–100 popularity from Last.fm counts.

    ``listeners / 1M · 100 · 0.6 + playcount / 50M · 100 · 0.4``, capped.
    """
    if not listeners and not playcount:
        return None
    score = (
        (listeners or 0) / _LISTENER_CEILING * 100.0 * 0.6
        + (playcount or 0) / _PLAYCOUNT_CEILING * 100.0 * 0.4
    )
    return min(100.0, score)


class LastFmClient(BaseProviderClient):
    """
    Last.fm REST client.

    Parameters
    ----------
    settings : Settings, optional
        If not supplied, loaded from ``.env`` automatically.
    """

    provider = "lastfm"

    def __init__(self, settings: Settings | None = None, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self.base_url = self._settings.lastfm_base_url
        self._api_key = self._settings.lastfm_api_key
        if self._throttle is None:
            self._throttle = FixedWindowThrottle(
                self._settings.lastfm_rate_per_second, 1.0, name=self.provider,
            )

    # ═════════════════════════════════════════════════════════════════════
    #  Hooks
    # ═════════════════════════════════════════════════════════════════════

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _auth_params(self) -> Dict[str, Any]:
        return {"api_key": self._api_key, "format": "json"}

    def _translate(self, code: int, message: str) -> ProviderError:
        if code in _TRANSIENT_CODES:
            return TransientNetworkError(self.provider, f"error {code}: {message}")
        if code in _AUTH_CODES:
            return AuthenticationError(self.provider, f"error {code}: {message}")
        status = 404 if code == _NOT_FOUND else None
        return ProviderAPIError(self.provider, f"error {code}: {message}", status=status)

    def _check_payload(self, payload: Any) -> Optional[ProviderError]:
        if isinstance(payload, dict) and "error" in payload:
            return self._translate(safe_int(payload["error"], 0), payload.get("message", ""))
        return None

    def _classify_error(self, resp: requests.Response) -> ProviderError:
        # Last.fm also sends the in-band code with 4xx statuses.
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and "error" in body:
            return self._translate(safe_int(body["error"], 0), body.get("message", ""))
        return super()._classify_error(resp)

    def _call(self, method: str, **params: Any) -> Dict[str, Any]:
        params["method"] = method
        return self._request("GET", "", params)

    # ═════════════════════════════════════════════════════════════════════
    #  Translation
    # ═════════════════════════════════════════════════════════════════════

    @staticmethod
    def _image(item: Dict[str, Any]) -> str:
        images = item.get("image") or []
        for size in ("extralarge", "large", "medium"):
            for img in images:
                if img.get("size") == size and img.get("#text"):
                    return img["#text"]
        return ""

    @staticmethod
    def _as_list(value: Any) -> List[Dict[str, Any]]:
        # Single results come back as a bare object instead of a list.
        if isinstance(value, dict):
            return [value]
        return list(value or [])

    def _to_artist(self, item: Dict[str, Any]) -> Artist:
        ids = {self.provider: item["mbid"]} if item.get("mbid") else {}
        return Artist(
            name=item.get("name", ""),
            external_ids=ids,
            listeners=safe_int(item.get("listeners")),
            url=item.get("url", ""),
            image_url=self._image(item),
            sources=[self.provider],
        )

    # ═════════════════════════════════════════════════════════════════════
    #  Endpoints
    # ═════════════════════════════════════════════════════════════════════

    def artist_info(self, name: str) -> Artist:
        """``artist.getinfo`` → Artist with listeners, playcount and tags."""
        data = self._call("artist.getinfo", artist=name, autocorrect=1)
        item = data.get("artist") or {}
        if not item.get("name"):
            raise ProviderAPIError(self.provider, f"artist {name!r} not found", status=404)
        stats = item.get("stats") or {}
        listeners = safe_int(stats.get("listeners"))
        playcount = safe_int(stats.get("playcount"))
        tags = [t.get("name", "") for t in self._as_list((item.get("tags") or {}).get("tag"))]
        extra: Dict[str, Any] = {}
        summary = (item.get("bio") or {}).get("summary", "")
        if summary:
            extra["bio_summary"] = summary.split("<a href")[0].strip()
        return Artist(
            name=item["name"],
            external_ids={self.provider: item["mbid"]} if item.get("mbid") else {},
            genres=tags,
            popularity=estimate_popularity(listeners, playcount),
            listeners=listeners,
            playcount=playcount,
            url=item.get("url", ""),
            image_url=self._image(item),
            extra=extra,
            sources=[self.provider],
        )

    def top_tags(self, name: str, limit: int = 5) -> List[str]:
        """``artist.gettoptags`` names, most-applied first."""
        data = self._call("artist.gettoptags", artist=name, autocorrect=1)
        tags = self._as_list((data.get("toptags") or {}).get("tag"))
        tags.sort(key=lambda t: -safe_int(t.get("count"), 0))
        return [t["name"] for t in tags if t.get("name")][:limit]

    # ═════════════════════════════════════════════════════════════════════
    #  Provider contract
    # ═════════════════════════════════════════════════════════════════════

    def search(self, query: str, limit: int = 10) -> List[Artist]:
        data = self._call("artist.search", artist=query, limit=min(limit, 50))
        matches = ((data.get("results") or {}).get("artistmatches") or {}).get("artist")
        return [self._to_artist(item) for item in self._as_list(matches) if item.get("name")]

    def details(self, artist_id: str) -> Artist:
        """Last.fm keys artists by name (the MBID is optional and often missing)."""
        return self.artist_info(artist_id)

    def lookup(self, name: str) -> Artist | None:
        try:
            return self.artist_info(name)
        except ProviderAPIError as exc:
            if exc.status == 404:
                return None
            raise

    def related(self, artist: str, limit: int = 10) -> List[ScoredArtist]:
        """``artist.getsimilar`` with the Last.fm ``match`` as the score."""
        data = self._call("artist.getsimilar", artist=artist, limit=min(limit, 100), autocorrect=1)
        items = self._as_list((data.get("similarartists") or {}).get("artist"))
        out = []
        for item in items:
            if not item.get("name"):
                continue
            out.append(ScoredArtist(
                artist=self._to_artist(item),
                score=safe_float(item.get("match"), 0.0),
                provider=self.provider,
            ))
        out.sort(key=lambda s: (-s.score, s.artist.key))
        return out[:limit]

    def _health_probe(self) -> str:
        self._call("artist.search", artist="test", limit=1)
        return "artist.search ok"
