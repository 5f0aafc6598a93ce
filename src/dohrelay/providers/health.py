from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, NamedTuple, Optional

logger = logging.getLogger("dohrelay.health")

DEFAULT_RESET_INTERVAL_MS = 60_000


class HealthRecord(NamedTuple):
    """Failure count for one provider plus the monotonic time of the last failure."""

    failures: int
    last_seen: float


class HealthTracker:
    """Per-provider failure counters with time-based decay.

    Brief:
        Records provider failures and reports a failure count used for
        ordering. A record whose last failure is older than the reset interval
        counts as zero failures; it is not required to be deleted, only
        ignored. Successful attempts never touch the tracker, so a provider
        recovers purely by not failing for one reset interval.

    Inputs:
        - reset_interval_ms: Age after which a record stops counting.
        - clock: Monotonic clock returning seconds (injectable for tests).

    Outputs:
        HealthTracker instance

    Example use:
        >>> tracker = HealthTracker()
        >>> tracker.record_failure("cloudflare")
        1
        >>> tracker.failure_count("cloudflare")
        1
        >>> tracker.failure_count("google")
        0
    """

    def __init__(
        self,
        reset_interval_ms: int = DEFAULT_RESET_INTERVAL_MS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reset_interval_ms = max(0, int(reset_interval_ms))
        self._clock = clock
        self._records: Dict[str, HealthRecord] = {}
        self._lock = threading.Lock()

    def _is_live_locked(self, rec: HealthRecord, now: float) -> bool:
        return (now - rec.last_seen) * 1000.0 < self.reset_interval_ms

    def _live_record_locked(self, name: str, now: float) -> Optional[HealthRecord]:
        rec = self._records.get(name)
        if rec is None or not self._is_live_locked(rec, now):
            return None
        return rec

    def record_failure(self, name: str) -> int:
        """Brief: Count one failed attempt against ``name``.

        Inputs:
          - name: Provider name.

        Outputs:
          - int: The provider's failure count after this failure.
        """

        now = self._clock()
        with self._lock:
            rec = self._live_record_locked(name, now)
            failures = 1 if rec is None else rec.failures + 1
            self._records[name] = HealthRecord(failures, now)
        logger.debug("Provider %s failure count now %d", name, failures)
        return failures

    def failure_count(self, name: str) -> int:
        """Brief: Return the live failure count for ``name`` (0 when expired/absent)."""

        now = self._clock()
        with self._lock:
            rec = self._live_record_locked(name, now)
        return 0 if rec is None else rec.failures

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        """Brief: Live records keyed by provider name.

        Outputs:
          - dict: name -> {"failures": int, "age_ms": float}
        """

        now = self._clock()
        out: Dict[str, Dict[str, float]] = {}
        with self._lock:
            for name, rec in self._records.items():
                if not self._is_live_locked(rec, now):
                    continue
                out[name] = {
                    "failures": rec.failures,
                    "age_ms": round((now - rec.last_seen) * 1000.0, 1),
                }
        return out
