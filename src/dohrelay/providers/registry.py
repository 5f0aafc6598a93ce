from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional

from .health import HealthTracker

logger = logging.getLogger("dohrelay.providers")


@dataclass(frozen=True)
class Provider:
    """An upstream DoH resolver endpoint.

    Inputs:
      - name: Unique identity used for health tracking and logs.
      - url: Full DoH endpoint URL, e.g. https://cloudflare-dns.com/dns-query
    """

    name: str
    url: str


# Used when the configuration does not list any providers.
DEFAULT_PROVIDERS = (
    Provider("cloudflare", "https://cloudflare-dns.com/dns-query"),
    Provider("google", "https://dns.google/dns-query"),
    Provider("quad9", "https://dns.quad9.net/dns-query"),
    Provider("adguard", "https://dns.adguard-dns.com/dns-query"),
)


class ProviderRegistry:
    """Ordered provider list with health-aware ordering.

    Brief:
      Holds the providers in their configured order. The configured order is
      never mutated; ordered_providers() returns a stable sort of it by the
      current failure count, so providers with equal counts keep their
      configured relative order.

    Inputs:
      - providers: Iterable of Provider, in preference order.
      - health: Optional HealthTracker (a fresh one is created when omitted).

    Outputs:
      - ProviderRegistry instance.

    Example:
      >>> reg = ProviderRegistry([Provider("a", "https://a/dns-query"),
      ...                         Provider("b", "https://b/dns-query")])
      >>> _ = reg.record_failure("a")
      >>> [p.name for p in reg.ordered_providers()]
      ['b', 'a']
    """

    def __init__(
        self,
        providers: Iterable[Provider],
        health: Optional[HealthTracker] = None,
    ) -> None:
        self._providers: tuple[Provider, ...] = tuple(providers)
        if not self._providers:
            raise ValueError("at least one provider is required")
        seen: set[str] = set()
        for p in self._providers:
            if p.name in seen:
                raise ValueError(f"duplicate provider name: {p.name!r}")
            seen.add(p.name)
        self.health = health if health is not None else HealthTracker()

    def __len__(self) -> int:
        return len(self._providers)

    def __iter__(self) -> Iterator[Provider]:
        return iter(self._providers)

    def names(self) -> List[str]:
        return [p.name for p in self._providers]

    def ordered_providers(self) -> List[Provider]:
        """Brief: Return providers sorted ascending by live failure count.

        Inputs:
          - None.

        Outputs:
          - list[Provider]: new list; sorted() is stable so ties keep the
            configured order.
        """

        counts = {p.name: self.health.failure_count(p.name) for p in self._providers}
        return sorted(self._providers, key=lambda p: counts[p.name])

    def record_failure(self, name: str) -> int:
        return self.health.record_failure(name)

    def snapshot(self) -> List[dict]:
        """Brief: Provider order with failure counts for diagnostics."""

        return [
            {
                "name": p.name,
                "url": p.url,
                "failures": self.health.failure_count(p.name),
            }
            for p in self.ordered_providers()
        ]
