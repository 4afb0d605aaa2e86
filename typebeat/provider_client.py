"""
provider_client.py — Shared HTTP machinery for remote data providers
======================================================================
``BaseProviderClient`` owns the ``requests.Session``, the throttle, the
optional quota meter and bearer token, and the single retrying
``_request`` loop every provider goes through.

Failure translation
-------------------
- network error / timeout / 5xx / 429  → retry with backoff, then
  ``TransientNetworkError``.  429 honours ``Retry-After`` up to a cap.
- 401                                   → invalidate token, retry once,
  then ``AuthenticationError``.
- edge-protection challenge             → ``EdgeProtectionError``
  immediately, quota refunded.
- other 4xx                             → ``ProviderAPIError`` (or whatever
  the provider's ``_classify_error`` hook decides).

Subclasses implement the provider contract: ``search``, ``details``,
``related``, ``lookup`` and ``_health_probe``.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from typebeat.config import Settings, load_settings
from typebeat.errors import (
    AuthenticationError,
    EdgeProtectionError,
    ProviderAPIError,
    ProviderError,
    TransientNetworkError,
)
from typebeat.models import Artist, ScoredArtist
from typebeat.throttle import FixedWindowThrottle, QuotaMeter, RetryPolicy, TokenManager
from typebeat.utils import get_logger

logger = get_logger("typebeat.provider")

# Markers of an anti-bot interstitial rather than a real API response.
_EDGE_MARKERS = (
    "just a moment",
    "attention required",
    "cf-chl",
    "challenge-platform",
    "cf-browser-verification",
)


class BaseProviderClient:
    """
    Rate-limited, retrying HTTP client for one provider.

    Parameters
    ----------
    settings : Settings, optional
        If not supplied, loaded from ``.env`` automatically.
    session : requests.Session, optional
        Injected in tests; a fresh session otherwise.
    sleep : callable
        Used for backoff waits (and the default throttle).
    """

    provider = "base"
    base_url = ""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        session: requests.Session | None = None,
        throttle: FixedWindowThrottle | None = None,
        retry: RetryPolicy | None = None,
        quota: QuotaMeter | None = None,
        token_manager: TokenManager | None = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float | None = None,
    ) -> None:
        self._settings = settings or load_settings(require_secrets=False)
        self._session = session or requests.Session()
        self._session.headers.update({
            "User-Agent": "TypeBeatOpportunityEngine/1.0",
            "Accept": "application/json",
        })
        self._sleep = sleep
        self._timeout = timeout if timeout is not None else self._settings.request_timeout
        self._retry = retry or RetryPolicy(
            max_attempts=self._settings.retry_attempts,
            base_delay=self._settings.retry_base_delay,
            max_delay=self._settings.retry_max_delay,
            retry_after_cap=self._settings.retry_after_cap,
        )
        self._throttle = throttle
        self._quota = quota
        self._token_manager = token_manager

        # Usage counters, bumped from pool threads
        self._lock = threading.Lock()
        self._requests = 0
        self._errors = 0

    def _count(self, sent: int = 0, failed: int = 0) -> None:
        with self._lock:
            self._requests += sent
            self._errors += failed

    # ═════════════════════════════════════════════════════════════════════
    #  Provider hooks
    # ═════════════════════════════════════════════════════════════════════

    @property
    def configured(self) -> bool:
        """Whether the credentials this provider needs are present."""
        return True

    def _auth_params(self) -> Dict[str, Any]:
        """Query parameters carrying credentials (API-key providers)."""
        return {}

    def _auth_headers(self) -> Dict[str, str]:
        """Static credential headers (fixed bearer tokens)."""
        return {}

    def _is_edge_blocked(self, resp: requests.Response) -> bool:
        if resp.status_code not in (403, 503):
            return False
        if "cf-mitigated" in resp.headers:
            return True
        body = (resp.text or "")[:2000].lower()
        return any(marker in body for marker in _EDGE_MARKERS)

    def _classify_error(self, resp: requests.Response) -> ProviderError:
        """Translate a non-retryable, non-auth 4xx into a typed error."""
        return ProviderAPIError(
            self.provider,
            f"HTTP {resp.status_code}: {(resp.text or '')[:300]}",
            status=resp.status_code,
        )

    def _check_payload(self, payload: Any) -> Optional[ProviderError]:
        """Inspect a 200 body for in-band errors; None when it is clean."""
        return None

    def _require_configured(self) -> None:
        if not self.configured:
            raise AuthenticationError(self.provider, "credentials not configured")

    # ═════════════════════════════════════════════════════════════════════
    #  HTTP
    # ═════════════════════════════════════════════════════════════════════

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        *,
        cost: int = 0,
        url: str | None = None,
    ) -> Any:
        """Execute a throttled request with token refresh & exponential backoff."""
        self._require_configured()
        if self._quota is not None and cost:
            self._quota.reserve(cost)

        target = url or f"{self.base_url}{path}"
        query = dict(params or {})
        query.update(self._auth_params())

        attempt = 0
        wait = 0.0
        reached = False
        auth_retried = False
        last_error = ""

        while True:
            if wait > 0:
                logger.info(
                    "[%s] retry %d/%d — waiting %.1fs...",
                    self.provider, attempt, self._retry.max_attempts - 1, wait,
                )
                self._sleep(wait)
            wait = 0.0

            if self._throttle is not None:
                self._throttle.acquire()

            headers: Dict[str, str] = dict(self._auth_headers())
            token = ""
            if self._token_manager is not None:
                try:
                    token = self._token_manager.get()
                except TransientNetworkError as exc:
                    last_error = f"token refresh: {exc.message}"
                    self._count(failed=1)
                    logger.error(
                        "[API ERROR] %s token refresh failed (attempt %d/%d): %s",
                        self.provider, attempt + 1, self._retry.max_attempts, exc.message,
                    )
                    attempt += 1
                    if attempt >= self._retry.max_attempts:
                        break
                    wait = self._retry.delay(attempt)
                    continue
                headers["Authorization"] = f"Bearer {token}"

            try:
                resp = self._session.request(
                    method=method,
                    url=target,
                    headers=headers,
                    params=query,
                    timeout=self._timeout,
                )
            except requests.RequestException as exc:
                last_error = str(exc)[:300]
                self._count(failed=1)
                logger.error(
                    "[API ERROR] %s network failure on %s %s (attempt %d/%d): %s",
                    self.provider, method, path, attempt + 1,
                    self._retry.max_attempts, last_error,
                )
                attempt += 1
                if attempt >= self._retry.max_attempts:
                    break
                wait = self._retry.delay(attempt)
                continue

            reached = True
            self._count(sent=1)

            if self._is_edge_blocked(resp):
                self._count(failed=1)
                if self._quota is not None and cost:
                    self._quota.refund(cost)
                logger.error(
                    "[API ERROR] %s edge protection block (%d) on %s %s",
                    self.provider, resp.status_code, method, path,
                )
                raise EdgeProtectionError(
                    self.provider,
                    f"blocked by edge protection ({resp.status_code}) on {path}",
                )

            if resp.status_code == 401:
                self._count(failed=1)
                if self._token_manager is None or auth_retried:
                    raise AuthenticationError(
                        self.provider,
                        f"401 Unauthorized on {method} {path}: {(resp.text or '')[:300]}",
                    )
                logger.warning(
                    "[API ERROR] %s 401 Unauthorized on %s %s — refreshing token",
                    self.provider, method, path,
                )
                self._token_manager.invalidate(token)
                auth_retried = True
                continue

            retryable: ProviderError | None = None
            if resp.status_code == 429:
                try:
                    retry_after = float(resp.headers.get("Retry-After", ""))
                except (TypeError, ValueError):
                    retry_after = 0.0
                logger.warning(
                    "[API ERROR] %s 429 Rate Limited on %s %s — Retry-After: %.0fs",
                    self.provider, method, path, retry_after,
                )
                if retry_after > self._retry.retry_after_cap:
                    self._count(failed=1)
                    raise TransientNetworkError(
                        self.provider,
                        f"Rate limited (429) with {retry_after:.0f}s backoff — "
                        f"aborting {method} {path}",
                    )
                last_error = "429 Too Many Requests"
                retryable = TransientNetworkError(self.provider, last_error)
            elif resp.status_code >= 500:
                last_error = f"{resp.status_code}: {(resp.text or '')[:300]}"
                logger.error(
                    "[API ERROR] %s server %d on %s %s (attempt %d/%d)",
                    self.provider, resp.status_code, method, path,
                    attempt + 1, self._retry.max_attempts,
                )
                retryable = TransientNetworkError(self.provider, last_error)
            elif not resp.ok:
                error = self._classify_error(resp)
                self._count(failed=1)
                if not isinstance(error, TransientNetworkError):
                    logger.error(
                        "[API ERROR] %s client %d on %s %s: %s",
                        self.provider, resp.status_code, method, path, error.message,
                    )
                    raise error
                last_error = error.message
                retryable = error
            else:
                try:
                    payload = resp.json()
                except ValueError:
                    self._count(failed=1)
                    raise ProviderAPIError(
                        self.provider,
                        f"non-JSON response for {method} {path}",
                        status=resp.status_code,
                    )
                error = self._check_payload(payload)
                if error is None:
                    return payload
                self._count(failed=1)
                if not isinstance(error, TransientNetworkError):
                    raise error
                last_error = error.message
                retryable = error

            if retryable is not None:
                if resp.status_code >= 429:
                    self._count(failed=1)
                attempt += 1
                if attempt >= self._retry.max_attempts:
                    break
                wait = self._retry.delay(attempt)
                if resp.status_code == 429 and retry_after > wait:
                    wait = retry_after

        if not reached and self._quota is not None and cost:
            self._quota.refund(cost)
        raise TransientNetworkError(
            self.provider,
            f"Failed after {self._retry.max_attempts} attempts for "
            f"{method} {path}: {last_error}",
        )

    # ═════════════════════════════════════════════════════════════════════
    #  Provider contract
    # ═════════════════════════════════════════════════════════════════════

    def search(self, query: str, limit: int = 10) -> List[Artist]:
        raise NotImplementedError

    def details(self, artist_id: str) -> Artist:
        raise NotImplementedError

    def related(self, artist: str, limit: int = 10) -> List[ScoredArtist]:
        raise NotImplementedError

    def lookup(self, name: str) -> Artist | None:
        """Best match for *name*; exact case-insensitive match preferred."""
        results = self.search(name, limit=5)
        if not results:
            return None
        wanted = name.strip().lower()
        for artist in results:
            if artist.name.lower() == wanted:
                return artist
        return results[0]

    def _health_probe(self) -> str:
        raise NotImplementedError

    def health_check(self) -> Dict[str, Any]:
        """Cheap probe → ``{"status": "healthy" | "unhealthy", "detail": ...}``."""
        if not self.configured:
            return {"status": "unhealthy", "detail": "credentials not configured"}
        started = time.perf_counter()
        try:
            detail = self._health_probe()
        except ProviderError as exc:
            logger.warning("[%s] health check failed (%s): %s", self.provider, exc.kind, exc)
            return {"status": "unhealthy", "detail": str(exc), "kind": exc.kind}
        return {
            "status": "healthy",
            "detail": detail,
            "latency_ms": round((time.perf_counter() - started) * 1000.0, 1),
        }

    def usage_stats(self) -> Dict[str, Any]:
        with self._lock:
            sent, failed = self._requests, self._errors
        stats: Dict[str, Any] = {
            "provider": self.provider,
            "configured": self.configured,
            "requests": sent,
            "errors": failed,
        }
        if self._throttle is not None:
            stats["throttle"] = self._throttle.state()
        if self._quota is not None:
            stats["quota"] = self._quota.state()
        if self._token_manager is not None:
            stats["token"] = self._token_manager.state()
        return stats

    def close(self) -> None:
        self._session.close()
