"""
Brief: Global pytest configuration, shared fixtures and upstream stubs.

Inputs:
  - None

Outputs:
  - None
"""

import asyncio
import os
import signal
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
import pytest

# Ensure 'src' is on sys.path so 'dohrelay' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from dohrelay.cache.dedup import DedupCoordinator  # noqa: E402
from dohrelay.cache.ttl_store import CacheStore  # noqa: E402
from dohrelay.providers.health import HealthTracker  # noqa: E402
from dohrelay.providers.registry import Provider, ProviderRegistry  # noqa: E402
from dohrelay.servers.proxy import DoHProxy  # noqa: E402
from dohrelay.upstream.race import RaceOrchestrator  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


class FakeClock:
    """Manually advanced monotonic clock (seconds) for TTL and decay tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def fake_clock():
    """
    Brief: Provide a FakeClock starting at an arbitrary non-zero time.

    Inputs:
      - None

    Outputs:
      - FakeClock instance
    """
    return FakeClock()


@dataclass
class Behavior:
    status: int = 200
    content: bytes = b""
    delay: float = 0.0
    exc: Optional[Exception] = None
    content_type: str = "application/dns-message"


class UpstreamStub:
    """httpx.MockTransport handler keyed by provider host.

    Each host gets a Behavior (status, body, delay or raised exception). Every
    request that reaches the transport is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.behaviors: Dict[str, Behavior] = {}
        self.calls: List[httpx.Request] = []

    def set(self, host: str, **kwargs) -> None:
        self.behaviors[host] = Behavior(**kwargs)

    def hosts_called(self) -> List[str]:
        return [r.url.host for r in self.calls]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        behavior = self.behaviors.get(request.url.host, Behavior(status=404))
        if behavior.delay:
            await asyncio.sleep(behavior.delay)
        if behavior.exc is not None:
            raise behavior.exc
        return httpx.Response(
            behavior.status,
            content=bytes(behavior.content),
            headers={"content-type": behavior.content_type},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def make_providers(count: int) -> List[Provider]:
    """Providers named p1..pN served from https://pN.test/dns-query."""

    return [Provider(f"p{i}", f"https://p{i}.test/dns-query") for i in range(1, count + 1)]


@pytest.fixture
def upstream():
    """
    Brief: Provide a fresh UpstreamStub.

    Inputs:
      - None

    Outputs:
      - UpstreamStub instance
    """
    return UpstreamStub()


@pytest.fixture
def make_proxy(upstream):
    """
    Brief: Factory building a DoHProxy wired to the UpstreamStub.

    Inputs:
      - upstream: UpstreamStub fixture

    Outputs:
      - callable(providers=3, **orchestrator_kwargs) -> DoHProxy
    """

    def _make(providers: int = 3, *, cache: Optional[CacheStore] = None, **kwargs):
        registry = ProviderRegistry(make_providers(providers), HealthTracker())
        orchestrator = RaceOrchestrator(registry, upstream.client(), **kwargs)
        return DoHProxy(
            cache if cache is not None else CacheStore(),
            DedupCoordinator(),
            orchestrator,
        )

    return _make
