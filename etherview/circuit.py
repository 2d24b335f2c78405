"""Per-source circuit breakers shared by every resolution task."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import NoBalanceData, NoPriceData, RateLimited, ResolverError, SourceUnavailable
from .logging_utils import warn_once_per

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CircuitState:
    failure_count: int
    open_until: float
    threshold: int
    cooldown: float


class CircuitBreaker:
    """Track consecutive failures for one source.

    The breaker opens after ``threshold`` consecutive failures and stays open
    for ``cooldown`` seconds.  Once the cooldown has elapsed the next call is
    let through as a trial call; there is no separate half-open state.  A single
    success resets the failure counter.
    """

    __slots__ = ("name", "threshold", "cooldown", "_clock", "_lock", "_failures", "_open_until", "_openings")

    def __init__(
        self,
        name: str,
        threshold: int = 5,
        cooldown: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.threshold = max(1, int(threshold))
        self.cooldown = max(0.0, float(cooldown))
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._open_until = 0.0
        self._openings = 0

    def allow(self) -> bool:
        """Return ``True`` when a call to the source may be attempted."""
        with self._lock:
            if not self._open_until:
                return True
            if self._clock() < self._open_until:
                return False
            self._open_until = 0.0
            self._failures = 0
            logger.info("Circuit %s closed after cooldown; retrying", self.name)
            return True

    @property
    def is_open(self) -> bool:
        with self._lock:
            return bool(self._open_until) and self._clock() < self._open_until

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._open_until = 0.0

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._failures >= self.threshold and not self._open_until:
                self._open(self.cooldown)

    def trip(self, duration: float | None = None) -> None:
        """Open the breaker immediately, e.g. after a rate-limit response."""
        with self._lock:
            self._failures = max(self._failures, self.threshold)
            self._open(self.cooldown if duration is None else max(0.0, float(duration)))

    def _open(self, duration: float) -> None:
        self._open_until = max(self._open_until, self._clock() + duration)
        self._openings += 1
        logger.warning(
            "Circuit %s open for %.1fs after %d consecutive failure(s)",
            self.name,
            duration,
            self._failures,
        )

    def state(self) -> CircuitState:
        with self._lock:
            return CircuitState(
                failure_count=self._failures,
                open_until=self._open_until,
                threshold=self.threshold,
                cooldown=self.cooldown,
            )

    def snapshot(self) -> dict[str, float | int | bool]:
        with self._lock:
            now = self._clock()
            remaining = max(0.0, self._open_until - now) if self._open_until else 0.0
            return {
                "open": remaining > 0,
                "cooldown_remaining": remaining,
                "failure_count": self._failures,
                "openings": self._openings,
                "threshold": self.threshold,
                "cooldown_sec": self.cooldown,
            }


class CircuitBreakerRegistry:
    """Process-wide collection of breakers keyed by source name."""

    def __init__(
        self,
        threshold: int = 5,
        cooldown: float = 60.0,
        *,
        overrides: Dict[str, tuple[int, float]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                threshold, cooldown = self._overrides.get(name, (self.threshold, self.cooldown))
                breaker = CircuitBreaker(name, threshold, cooldown, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def allow(self, name: str) -> bool:
        return self.get(name).allow()

    def record_success(self, name: str) -> None:
        self.get(name).record_success()

    def record_failure(self, name: str) -> None:
        self.get(name).record_failure()

    def health_snapshot(self) -> Dict[str, dict[str, float | int | bool]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.snapshot() for breaker in breakers}


def _is_miss(exc: ResolverError) -> bool:
    # The source answered but has nothing for this token.
    if isinstance(exc, (NoPriceData, NoBalanceData)):
        return True
    return isinstance(exc, SourceUnavailable) and exc.status == 404


async def guarded_call(
    breakers: CircuitBreakerRegistry,
    name: str,
    call: Callable[[], Awaitable[Any]],
    *,
    timeout: float,
    label: str = "",
    log: logging.Logger | None = None,
) -> Optional[Any]:
    """Run ``call`` behind the breaker for ``name`` with its own timeout.

    Returns ``None`` when the breaker is open or the attempt raised anything;
    failures are recorded against the breaker and logged with
    :func:`warn_once_per`.
    A 429 opens the breaker for the advertised ``Retry-After`` interval.
    """
    log = log or logger
    breaker = breakers.get(name)
    if not breaker.allow():
        log.debug("Skipping %s for %s (circuit open)", name, label)
        return None
    try:
        result = await asyncio.wait_for(call(), timeout=timeout)
    except RateLimited as exc:
        breaker.trip(exc.retry_after)
        warn_once_per(10.0, f"{log.name}:429:{name}", "%s rate limited", name, logger=log)
        return None
    except asyncio.TimeoutError:
        breaker.record_failure()
        warn_once_per(
            10.0,
            f"{log.name}:timeout:{name}",
            "%s timed out after %.1fs (%s)",
            name,
            timeout,
            label,
            logger=log,
        )
        return None
    except ResolverError as exc:
        if _is_miss(exc):
            log.debug("%s has no data for %s: %s", name, label, exc)
            return None
        breaker.record_failure()
        warn_once_per(
            10.0,
            f"{log.name}:{name}:{exc.__class__.__name__}",
            "%s failed for %s: %s",
            name,
            label,
            exc,
            logger=log,
        )
        return None
    except Exception as exc:
        breaker.record_failure()
        warn_once_per(
            10.0,
            f"{log.name}:{name}:unexpected:{exc.__class__.__name__}",
            "%s raised unexpectedly for %s: %r",
            name,
            label,
            exc,
            logger=log,
        )
        return None
    breaker.record_success()
    return result


__all__ = ["CircuitState", "CircuitBreaker", "CircuitBreakerRegistry", "guarded_call"]
