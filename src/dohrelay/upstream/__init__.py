"""Outbound DoH requests and provider racing."""

from .errors import (
    AllProvidersFailed,
    DoHRelayError,
    MalformedRequest,
    ProviderConnectionError,
    ProviderError,
    ProviderHTTPError,
    ProviderTimeout,
)
from .race import RaceOrchestrator, RaceResult

__all__ = [
    "AllProvidersFailed",
    "DoHRelayError",
    "MalformedRequest",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderTimeout",
    "RaceOrchestrator",
    "RaceResult",
]
