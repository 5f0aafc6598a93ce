from __future__ import annotations

from typing import List, Optional


class DoHRelayError(Exception):
    """Base class for all dohrelay errors."""


class ProviderError(DoHRelayError):
    """
    Brief: A single upstream provider attempt failed.

    Inputs:
    - provider: Name of the provider that failed
    - message: Description of the failure

    Outputs:
    - Exception instance
    """

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderHTTPError(ProviderError):
    """Provider answered with a non-2xx HTTP status."""

    def __init__(self, provider: str, status_code: int, reason: str = "") -> None:
        detail = f"HTTP {status_code}" + (f": {reason}" if reason else "")
        super().__init__(provider, detail)
        self.status_code = status_code


class ProviderTimeout(ProviderError):
    """Provider did not answer within the attempt timeout."""

    def __init__(self, provider: str, timeout_ms: int) -> None:
        super().__init__(provider, f"timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class ProviderConnectionError(ProviderError):
    """Network or TLS error talking to the provider."""


class AllProvidersFailed(DoHRelayError):
    """
    Brief: Every racing and fallback provider failed for one query.

    Inputs:
    - errors: Per-attempt ProviderError instances in the order they occurred

    Outputs:
    - Exception instance exposing ``errors`` and ``last_error``
    """

    def __init__(self, errors: Optional[List[ProviderError]] = None) -> None:
        self.errors: List[ProviderError] = list(errors or [])
        if self.errors:
            detail = "; ".join(str(e) for e in self.errors)
            super().__init__(f"all providers failed ({detail})")
        else:
            super().__init__("all providers failed (no providers configured)")

    @property
    def last_error(self) -> Optional[ProviderError]:
        return self.errors[-1] if self.errors else None


class MalformedRequest(DoHRelayError):
    """Client request is missing a parameter or carries an unusable payload."""
