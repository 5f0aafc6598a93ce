"""First-success-wins racing across health-ordered upstream providers."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, NamedTuple, Optional

import httpx

from ..providers.registry import Provider, ProviderRegistry
from .doh import send_to_provider
from .errors import AllProvidersFailed, ProviderConnectionError, ProviderError

logger = logging.getLogger("dohrelay.race")

DEFAULT_RACE_WIDTH = 3
DEFAULT_TIMEOUT_MS = 3000

RequestBuilder = Callable[[Provider], httpx.Request]


class RaceResult(NamedTuple):
    """Winning provider answer.

    Fields:
      - provider: Provider that answered first with a 2xx status.
      - status_code: Upstream HTTP status.
      - content: Response body bytes.
      - headers: Lower-cased upstream response headers.
    """

    provider: Provider
    status_code: int
    content: bytes
    headers: Dict[str, str]


class RaceOrchestrator:
    """Issue one logical query to several providers and keep the first success.

    Brief:
      The first ``race_width`` providers in health order are queried
      concurrently, each with its own timeout. The first 2xx answer wins and
      the remaining attempts are cancelled; a cancelled attempt records
      nothing. Only when every racer has failed are the remaining providers
      tried one at a time, still in health order. Every failed attempt, racing
      or sequential, records exactly one failure for its provider.

    Inputs:
      - registry: ProviderRegistry supplying health-ordered providers.
      - client: Shared httpx.AsyncClient used for every attempt.
      - race_width: Number of providers raced concurrently.
      - timeout_ms: Per-attempt timeout for racing attempts.
      - fallback_timeout_ms: Per-attempt timeout for sequential fallback
        attempts; defaults to timeout_ms.

    Outputs:
      - RaceOrchestrator instance.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        client: httpx.AsyncClient,
        *,
        race_width: int = DEFAULT_RACE_WIDTH,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        fallback_timeout_ms: Optional[int] = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.race_width = max(1, int(race_width))
        self.timeout_ms = int(timeout_ms)
        self.fallback_timeout_ms = (
            int(fallback_timeout_ms) if fallback_timeout_ms is not None else None
        )

    def _charge(self, provider: Provider, error: ProviderError) -> None:
        self.registry.record_failure(provider.name)
        logger.debug("Provider %s failed: %s", provider.name, error)

    async def _attempt(
        self,
        provider: Provider,
        build_request: RequestBuilder,
        timeout_ms: int,
    ) -> RaceResult:
        """Brief: One attempt against one provider; records a failure on error.

        Any exception other than cancellation (an unusable provider URL, a
        client bug) is charged to the provider as a ProviderConnectionError.
        """

        try:
            request = build_request(provider)
            resp = await send_to_provider(self.client, provider, request, timeout_ms)
        except ProviderError as e:
            self._charge(provider, e)
            raise
        except Exception as e:
            err = ProviderConnectionError(provider.name, f"Unexpected error: {e!r}")
            self._charge(provider, err)
            raise err from e
        return RaceResult(
            provider=provider,
            status_code=resp.status_code,
            content=resp.content,
            headers={k.lower(): v for k, v in resp.headers.items()},
        )

    async def race(
        self,
        build_request: RequestBuilder,
        timeout_ms: Optional[int] = None,
    ) -> RaceResult:
        """
        Brief: Resolve one query through the providers.

        Inputs:
          - build_request: callable building the outbound httpx.Request for a
            given Provider (called once per attempt).
          - timeout_ms: optional per-call override of the racing timeout.

        Outputs:
          - RaceResult from the first provider that answered successfully.

        Raises:
          - AllProvidersFailed when every racing and fallback attempt failed.
        """
        timeout = int(timeout_ms) if timeout_ms is not None else self.timeout_ms
        fallback_timeout = (
            self.fallback_timeout_ms if self.fallback_timeout_ms is not None else timeout
        )

        ordered = self.registry.ordered_providers()
        racing = ordered[: self.race_width]
        fallback = ordered[self.race_width :]
        errors: List[ProviderError] = []

        tasks = [
            asyncio.ensure_future(self._attempt(p, build_request, timeout))
            for p in racing
        ]
        try:
            for next_done in asyncio.as_completed(tasks):
                try:
                    result = await next_done
                except ProviderError as e:
                    errors.append(e)
                    continue
                logger.debug("Race won by %s", result.provider.name)
                return result
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
                elif not t.cancelled():
                    # Losers that finished unobserved: mark their outcome retrieved.
                    t.exception()

        for provider in fallback:
            try:
                result = await self._attempt(provider, build_request, fallback_timeout)
            except ProviderError as e:
                errors.append(e)
                continue
            logger.debug("Fallback answered by %s", result.provider.name)
            return result

        logger.warning(
            "All %d providers failed. Last error: %s",
            len(ordered),
            errors[-1] if errors else None,
        )
        raise AllProvidersFailed(errors)
