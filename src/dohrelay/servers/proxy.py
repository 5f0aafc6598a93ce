"""Request pipeline shared by the DoH handlers.

Brief:
  DoHProxy owns the process-wide shared state (cache store, in-flight map,
  provider health via the orchestrator's registry) and is handed to the HTTP
  layer explicitly. Each resolve_* call follows the same path:

    cache key -> CacheStore.get -> (miss) DedupCoordinator.dedupe(
        RaceOrchestrator.race -> TTL extraction -> CacheStore.put)
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

import httpx
from dnslib import QTYPE, DNSRecord

from ..cache.dedup import DedupCoordinator
from ..cache.keys import json_cache_key, wire_cache_key
from ..cache.ttl_store import DEFAULT_TTL_MS, CacheStore
from ..config.config_parser import Settings
from ..providers.health import HealthTracker
from ..providers.registry import ProviderRegistry
from ..ttl import extract_ttl
from ..upstream.doh import build_json_request, build_wire_request
from ..upstream.errors import MalformedRequest
from ..upstream.race import RaceOrchestrator

logger = logging.getLogger("dohrelay.proxy")


def _set_response_id(wire: bytes, query: bytes) -> bytes:
    """Ensure the response DNS ID matches the request ID.

    Inputs:
      - wire: DNS response bytes (possibly served from cache for another ID).
      - query: the client's DNS query bytes.

    Outputs:
      - bytes: response with the first two bytes copied from the query.

    DNS ID is the first 2 bytes; they are rewritten without parsing. Inputs
    shorter than 2 bytes are returned unchanged.
    """
    if len(wire) < 2 or len(query) < 2:
        return wire
    if wire[:2] == query[:2]:
        return wire
    return bytes(query[:2]) + bytes(wire[2:])


def describe_query(wire: bytes) -> str:
    """Brief: Best-effort "qname qtype" for log lines; never raises."""

    try:
        record = DNSRecord.parse(wire)
        if record.questions:
            q = record.questions[0]
            return f"{q.qname} {QTYPE.get(q.qtype, q.qtype)}"
    except Exception:
        pass
    return f"<{len(wire)}-byte query>"


class DoHProxy:
    """Cache, coalesce and race DoH queries.

    Inputs:
      - cache: CacheStore shared by all requests.
      - dedup: DedupCoordinator shared by all requests.
      - orchestrator: RaceOrchestrator (holds the provider registry).
      - default_ttl_ms: TTL for JSON answers and for binary answers whose TTL
        cannot be extracted.
    """

    def __init__(
        self,
        cache: CacheStore,
        dedup: DedupCoordinator,
        orchestrator: RaceOrchestrator,
        *,
        default_ttl_ms: int = DEFAULT_TTL_MS,
    ) -> None:
        self.cache = cache
        self.dedup = dedup
        self.orchestrator = orchestrator
        self.default_ttl_ms = int(default_ttl_ms)

    @property
    def registry(self) -> ProviderRegistry:
        return self.orchestrator.registry

    async def resolve_wire(
        self,
        query: bytes,
        *,
        method: str = "POST",
        dns_param: Optional[str] = None,
    ) -> bytes:
        """
        Brief: Answer a wireformat query from cache or the providers.

        Inputs:
          - query: raw DNS query bytes
          - method: outbound method to use toward providers ('GET' or 'POST')
          - dns_param: client's base64url ``dns`` value, forwarded on GET

        Outputs:
          - bytes: DNS response with its ID matching ``query``

        Raises:
          - MalformedRequest for an empty query
          - AllProvidersFailed when no provider answered
        """
        if not query:
            raise MalformedRequest("empty DNS query")

        key = wire_cache_key(query)
        cached = self.cache.get(key)
        if cached is not None:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Cache hit for %s", describe_query(query))
            return _set_response_id(cached, query)

        async def fetch() -> bytes:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Forwarding %s via %s", describe_query(query), method)
            result = await self.orchestrator.race(
                lambda p: build_wire_request(
                    p, query, method=method, dns_param=dns_param
                )
            )
            ttl_ms = extract_ttl(result.content, self.default_ttl_ms)
            self.cache.put(key, result.content, ttl_ms)
            return result.content

        answer = await self.dedup.dedupe(key, fetch)
        return _set_response_id(answer, query)

    async def resolve_json(self, params: Mapping[str, str]) -> bytes:
        """
        Brief: Answer an application/dns-json query from cache or the providers.

        Inputs:
          - params: client query parameters; ``name`` required, ``type``
            defaults to A; all parameters are forwarded upstream

        Outputs:
          - bytes: upstream JSON body

        Raises:
          - MalformedRequest when ``name`` is missing
          - AllProvidersFailed when no provider answered
        """
        name = str(params.get("name") or "").strip()
        if not name:
            raise MalformedRequest("missing 'name' parameter")

        forwarded: Dict[str, str] = {str(k): str(v) for k, v in params.items()}
        forwarded["name"] = name
        forwarded.setdefault("type", "A")
        key = json_cache_key(forwarded)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        async def fetch() -> bytes:
            logger.debug("Forwarding JSON query %s %s", name, forwarded["type"])
            result = await self.orchestrator.race(
                lambda p: build_json_request(p, forwarded)
            )
            self.cache.put(key, result.content)
            return result.content

        return await self.dedup.dedupe(key, fetch)

    def snapshot(self) -> dict:
        """Brief: Diagnostics for the /health endpoint."""

        return {
            "providers": self.registry.snapshot(),
            "cache": self.cache.stats(),
            "in_flight": len(self.dedup),
        }


def build_proxy(settings: Settings, client: httpx.AsyncClient) -> DoHProxy:
    """
    Brief: Wire a DoHProxy and its shared state from Settings.

    Inputs:
      - settings: validated Settings
      - client: httpx.AsyncClient used for every upstream attempt

    Outputs:
      - DoHProxy ready to serve requests
    """
    health = HealthTracker(settings.health.reset_interval_ms)
    registry = ProviderRegistry(settings.provider_list(), health)
    orchestrator = RaceOrchestrator(
        registry,
        client,
        race_width=settings.race.width,
        timeout_ms=settings.race.timeout_ms,
        fallback_timeout_ms=settings.race.fallback_timeout_ms,
    )
    cache = CacheStore(
        max_entries=settings.cache.max_entries,
        evict_batch=settings.cache.evict_batch,
        default_ttl_ms=settings.cache.default_ttl_ms,
    )
    logger.info(
        "Proxy configured with %d providers (race width %d, timeout %dms)",
        len(registry),
        orchestrator.race_width,
        orchestrator.timeout_ms,
    )
    return DoHProxy(
        cache,
        DedupCoordinator(),
        orchestrator,
        default_ttl_ms=settings.cache.default_ttl_ms,
    )
