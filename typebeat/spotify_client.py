"""
spotify_client.py — Spotify Web API Client (music-graph provider)
===================================================================
Artist search, details and the related-artists graph.

Authentication
--------------
Spotify uses the OAuth **client-credentials** flow:

1.  POST ``https://accounts.spotify.com/api/token`` with
    ``grant_type=client_credentials`` and HTTP Basic ``client_id:secret``
2.  Response: ``{"access_token": "...", "expires_in": 3600}``
3.  Subsequent requests use ``Authorization: Bearer <token>``
4.  The token is refreshed 5 minutes before it expires, and once more on
    a 401.

Endpoints Used
--------------
- ``GET /search?type=artist``            — artist search (max 50)
- ``GET /artists/{id}``                  — details
- ``GET /artists/{id}/related-artists``  — graph neighbours
- ``GET /recommendations``               — fallback when the graph is empty
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

import requests

from typebeat.config import Settings
from typebeat.errors import AuthenticationError, ProviderAPIError, TransientNetworkError
from typebeat.models import Artist, ScoredArtist
from typebeat.provider_client import BaseProviderClient
from typebeat.similarity import graph_similarity
from typebeat.throttle import FixedWindowThrottle, TokenManager
from typebeat.utils import get_logger, safe_int

logger = get_logger("typebeat.spotify")

_MAX_SEARCH = 50


class SpotifyClient(BaseProviderClient):
    """
    Spotify client with automatic client-credentials token management.

    Parameters
    ----------
    settings : Settings, optional
        If not supplied, loaded from ``.env`` automatically.
    """

    provider = "spotify"

    def __init__(self, settings: Settings | None = None, **kwargs: Any) -> None:
        super().__init__(settings, **kwargs)
        self.base_url = self._settings.spotify_base_url
        self._auth_url = self._settings.spotify_auth_url
        self._client_id = self._settings.spotify_client_id
        self._client_secret = self._settings.spotify_client_secret
        if self._token_manager is None:
            self._token_manager = TokenManager(
                self._fetch_token,
                safety_margin=self._settings.spotify_token_margin,
                name=self.provider,
            )
        if self._throttle is None:
            self._throttle = FixedWindowThrottle(
                self._settings.spotify_rate_per_minute, 60.0, name=self.provider,
            )

    @property
    def configured(self) -> bool:
        return bool(self._client_id and self._client_secret)

    # ═════════════════════════════════════════════════════════════════════
    #  Authentication
    # ═════════════════════════════════════════════════════════════════════

    def _fetch_token(self) -> Tuple[str, float]:
        """Exchange client credentials for a short-lived access token."""
        logger.info("Refreshing Spotify access token...")
        try:
            resp = self._session.post(
                self._auth_url,
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._client_secret),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TransientNetworkError(self.provider, f"Cannot reach Spotify auth: {exc}")

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientNetworkError(
                self.provider,
                f"Spotify auth unavailable ({resp.status_code}): {(resp.text or '')[:300]}",
            )
        if resp.status_code != 200:
            raise AuthenticationError(
                self.provider,
                f"Token exchange failed ({resp.status_code}): {(resp.text or '')[:300]}",
            )

        try:
            data = resp.json()
        except ValueError:
            raise ProviderAPIError(self.provider, "non-JSON token response", status=resp.status_code)
        if not isinstance(data, dict):
            raise ProviderAPIError(self.provider, "malformed token response", status=resp.status_code)
        token = data.get("access_token") or ""
        if not token:
            raise AuthenticationError(
                self.provider,
                "Token exchange returned empty token. "
                "Verify SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET.",
            )
        return token, float(data.get("expires_in") or 3600)

    # ═════════════════════════════════════════════════════════════════════
    #  Translation
    # ═════════════════════════════════════════════════════════════════════

    def _to_artist(self, item: Dict[str, Any]) -> Artist:
        images = item.get("images") or []
        return Artist(
            name=item.get("name", ""),
            external_ids={self.provider: item.get("id", "")},
            genres=item.get("genres") or [],
            popularity=item.get("popularity"),
            followers=safe_int((item.get("followers") or {}).get("total")),
            url=(item.get("external_urls") or {}).get("spotify", ""),
            image_url=images[0].get("url", "") if images else "",
            sources=[self.provider],
        )

    # ═════════════════════════════════════════════════════════════════════
    #  Provider contract
    # ═════════════════════════════════════════════════════════════════════

    def search(self, query: str, limit: int = 10) -> List[Artist]:
        data = self._request(
            "GET", "/search",
            {"q": query, "type": "artist", "limit": min(limit, _MAX_SEARCH), "market": "US"},
        )
        items = (data.get("artists") or {}).get("items") or []
        return [self._to_artist(item) for item in items if item.get("name")]

    def details(self, artist_id: str) -> Artist:
        return self._to_artist(self._request("GET", f"/artists/{artist_id}"))

    def _resolve(self, artist: str) -> Artist:
        """An id (22-char base62) is fetched; anything else is searched."""
        if len(artist) == 22 and artist.isalnum():
            return self.details(artist)
        found = self.lookup(artist)
        if found is None:
            raise ProviderAPIError(self.provider, f"artist {artist!r} not found", status=404)
        return found

    def recommended_artists(self, seed_id: str, limit: int = 50) -> List[Artist]:
        """Unique artists on tracks recommended from *seed_id*."""
        data = self._request(
            "GET", "/recommendations",
            {"seed_artists": seed_id, "limit": min(limit, 100), "market": "US"},
        )
        seen: Dict[str, Artist] = {}
        for track in data.get("tracks") or []:
            for item in track.get("artists") or []:
                artist_id = item.get("id")
                if artist_id and artist_id != seed_id and artist_id not in seen:
                    seen[artist_id] = self._to_artist(item)
        return list(seen.values())

    def related(self, artist: str, limit: int = 10) -> List[ScoredArtist]:
        """
        Graph neighbours of *artist* (id or name), scored with
        ``graph_similarity`` and sorted strongest first.
        """
        main = self._resolve(artist)
        main_id = main.external_ids[self.provider]
        data = self._request("GET", f"/artists/{main_id}/related-artists")
        neighbours = [self._to_artist(i) for i in (data.get("artists") or []) if i.get("name")]
        if not neighbours:
            logger.info("No related artists for %s — falling back to recommendations", main.name)
            neighbours = self.recommended_artists(main_id)

        scored = [
            ScoredArtist(
                artist=cand,
                score=graph_similarity(main.genres, main.popularity, cand.genres, cand.popularity),
                provider=self.provider,
            )
            for cand in neighbours
            if cand.external_ids.get(self.provider) != main_id
        ]
        scored.sort(key=lambda s: (-s.score, s.artist.key))
        return scored[:limit]

    def _health_probe(self) -> str:
        self._request("GET", "/search", {"q": "test", "type": "artist", "limit": 1})
        return "search ok"
