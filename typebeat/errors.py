"""
errors.py — Provider & Validation Error Taxonomy
==================================================
Every remote client translates transport and payload failures into one of
the ``ProviderError`` subclasses below.  The orchestrator catches them as
*soft failures*: the provider is dropped from ``sources`` and the error
``kind`` is recorded in ``provider_errors``.

``ValidationError`` is the only error the orchestrator lets escape to the
caller; it is raised before any cache or network access.
"""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for failures talking to an external data provider."""

    kind = "provider_error"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.message = message


class TransientNetworkError(ProviderError):
    """Network failure, timeout, 5xx or 429 that outlived the retry budget."""

    kind = "transient_network"


class QuotaExceededError(ProviderError):
    """Raised before the request is sent when the daily budget cannot cover it."""

    kind = "quota_exceeded"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        remaining: int = 0,
        limit: int = 0,
        cost: int = 0,
    ) -> None:
        super().__init__(provider, message)
        self.remaining = remaining
        self.limit = limit
        self.cost = cost


class AuthenticationError(ProviderError):
    """Credentials rejected, or token refresh failed."""

    kind = "authentication"


class EdgeProtectionError(ProviderError):
    """Request blocked by an anti-bot edge layer (e.g. a Cloudflare challenge)."""

    kind = "edge_protection"


class ProviderAPIError(ProviderError):
    """Non-retryable 4xx or malformed payload."""

    kind = "api_error"

    def __init__(self, provider: str, message: str, *, status: int | None = None) -> None:
        super().__init__(provider, message)
        self.status = status


class ValidationError(ValueError):
    """Invalid caller input (empty artist name, limit out of range, ...)."""
