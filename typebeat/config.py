"""
config.py — Secure Configuration Loader
=========================================
Reads provider credentials, quotas and cache parameters from a ``.env``
file (via python-dotenv) so that secrets never appear in source code.

Usage
-----
>>> from typebeat.config import settings
>>> settings.lastfm_rate_per_second
5
"""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass

from dotenv import load_dotenv


# ── locate .env relative to project root ────────────────────────────────────

_PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
_ENV_PATH = _PROJECT_ROOT / ".env"

load_dotenv(dotenv_path=_ENV_PATH)


# ── typed settings object ───────────────────────────────────────────────────

@dataclass(frozen=True)
class Settings:
    """Immutable container for all environment-sourced config."""

    # Credentials
    youtube_api_key: str = ""
    spotify_client_id: str = ""
    spotify_client_secret: str = ""
    lastfm_api_key: str = ""
    genius_access_token: str = ""

    # Provider base URLs
    youtube_base_url: str = "https://www.googleapis.com/youtube/v3"
    spotify_base_url: str = "https://api.spotify.com/v1"
    spotify_auth_url: str = "https://accounts.spotify.com/api/token"
    lastfm_base_url: str = "http://ws.audioscrobbler.com/2.0/"
    genius_base_url: str = "https://api.genius.com"

    # YouTube quota (units per UTC day) and request rate
    youtube_daily_quota: int = 10_000
    youtube_search_cost: int = 100
    youtube_list_cost: int = 1
    youtube_rate_per_second: int = 10

    # Spotify
    spotify_rate_per_minute: int = 100
    spotify_token_margin: float = 300.0    # refresh this many seconds early

    # Last.fm
    lastfm_rate_per_second: int = 5

    # Genius
    genius_rate_per_minute: int = 60

    # HTTP / retry policy
    request_timeout: float = 10.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_after_cap: float = 120.0

    # Redis cache
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    cache_key_prefix: str = "typebeat:"
    cache_default_ttl: int = 3600

    # Orchestrator
    fanout_timeout: float = 10.0
    max_workers: int = 16

    # Paths
    project_root: pathlib.Path = _PROJECT_ROOT


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise EnvironmentError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise EnvironmentError(f"{name} must be a number, got {raw!r}")


def load_settings(*, require_secrets: bool = True) -> Settings:
    """
    Build a ``Settings`` instance from the environment.

    Parameters
    ----------
    require_secrets : bool
        If True (default), raise if the YouTube, Spotify or Last.fm
        credentials are missing.  The Genius token is always optional.
        Set to False for offline / cache-only workflows and tests.
    """
    youtube_key = os.getenv("YOUTUBE_API_KEY", "")
    spotify_id = os.getenv("SPOTIFY_CLIENT_ID", "")
    spotify_secret = os.getenv("SPOTIFY_CLIENT_SECRET", "")
    lastfm_key = os.getenv("LASTFM_API_KEY", "")

    if require_secrets:
        missing = [
            name for name, value in (
                ("YOUTUBE_API_KEY", youtube_key),
                ("SPOTIFY_CLIENT_ID", spotify_id),
                ("SPOTIFY_CLIENT_SECRET", spotify_secret),
                ("LASTFM_API_KEY", lastfm_key),
            )
            if not value
        ]
        if missing:
            raise EnvironmentError(
                f"Missing {', '.join(missing)}. "
                "Copy .env.example → .env and fill in your credentials."
            )

    return Settings(
        youtube_api_key=youtube_key,
        spotify_client_id=spotify_id,
        spotify_client_secret=spotify_secret,
        lastfm_api_key=lastfm_key,
        genius_access_token=os.getenv("GENIUS_ACCESS_TOKEN", ""),
        youtube_daily_quota=_env_int("YOUTUBE_DAILY_QUOTA", 10_000),
        request_timeout=_env_float("REQUEST_TIMEOUT", 10.0),
        redis_host=os.getenv("REDIS_HOST", "localhost"),
        redis_port=_env_int("REDIS_PORT", 6379),
        redis_password=os.getenv("REDIS_PASSWORD", ""),
        redis_db=_env_int("REDIS_DB", 0),
        cache_key_prefix=os.getenv("CACHE_KEY_PREFIX", "typebeat:"),
        cache_default_ttl=_env_int("CACHE_DEFAULT_TTL", 3600),
        fanout_timeout=_env_float("FANOUT_TIMEOUT", 10.0),
        max_workers=_env_int("MAX_WORKERS", 16),
    )


# Convenience: pre-loaded instance (secrets optional at import time)
settings = load_settings(require_secrets=False)
