from __future__ import annotations

import asyncio
import logging
import random
import weakref
from dataclasses import dataclass
from typing import Any, Mapping

import aiohttp
import orjson

from .errors import InvalidResponse, RateLimited, SourceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "EtherView/1.0"


def loads(data: str | bytes) -> object:
    """Deserialize JSON *data*."""
    if isinstance(data, str):
        data = data.encode()
    return orjson.loads(data)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry/backoff parameters shared by every provider adapter."""

    attempts: int = 2
    backoff: float = 0.3
    max_delay: float = 4.0
    jitter: float = 0.1

    def delay(self, attempt: int) -> float:
        """Return the sleep before retry number ``attempt`` (1-based)."""
        base = self.backoff * (2 ** max(0, attempt - 1))
        extra = random.uniform(0.0, self.jitter) if self.jitter > 0 else 0.0
        return min(self.max_delay, base + extra)

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            attempts=max(1, int(settings.retry_attempts)),
            backoff=float(settings.retry_backoff),
            max_delay=float(settings.retry_max_delay),
        )


NO_RETRY = RetryPolicy(attempts=1, backoff=0.0, jitter=0.0)


# Maintain a session per event loop to avoid cross-loop usage errors when
# running multiple asyncio loops in different threads.
_SESSIONS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, aiohttp.ClientSession]" = weakref.WeakKeyDictionary()


async def get_session(user_agent: str = DEFAULT_USER_AGENT) -> aiohttp.ClientSession:
    """Return an aiohttp session bound to the current event loop."""
    loop = asyncio.get_running_loop()
    sess = _SESSIONS.get(loop)
    if sess is None or sess.closed:
        sess = aiohttp.ClientSession(
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            timeout=aiohttp.ClientTimeout(total=30),
        )
        _SESSIONS[loop] = sess
    return sess


async def close_session() -> None:
    """Close all known aiohttp sessions."""
    to_close = list(_SESSIONS.values())
    _SESSIONS.clear()
    for sess in to_close:
        if not sess.closed:
            await sess.close()


def _retry_after_seconds(headers: Mapping[str, str] | None) -> float | None:
    if not headers:
        return None
    retry_after = headers.get("Retry-After") or headers.get("retry-after")
    if not retry_after:
        return None
    try:
        return max(0.0, float(retry_after))
    except ValueError:
        return None


async def _request_once(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    source: str,
    *,
    timeout: float,
    **kwargs: Any,
) -> Any:
    try:
        async with session.request(
            method, url, timeout=aiohttp.ClientTimeout(total=timeout), **kwargs
        ) as response:
            if response.status == 429:
                raise RateLimited(
                    f"{source}: rate limited",
                    source=source,
                    retry_after=_retry_after_seconds(response.headers),
                )
            if response.status >= 400:
                text = await response.text()
                raise SourceUnavailable(
                    f"{source}: {method} {url} -> {response.status}: {text[:200]}",
                    source=source,
                    status=response.status,
                )
            raw = await response.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise SourceUnavailable(
            f"{source}: {exc.__class__.__name__}: {exc}", source=source
        ) from exc
    try:
        return loads(raw)
    except orjson.JSONDecodeError as exc:
        raise InvalidResponse(f"{source}: undecodable body", source=source) from exc


async def fetch_json(
    url: str,
    *,
    source: str,
    method: str = "GET",
    timeout: float = 5.0,
    policy: RetryPolicy = NO_RETRY,
    session: aiohttp.ClientSession | None = None,
    **kwargs: Any,
) -> Any:
    """Fetch *url* and return the parsed JSON body.

    Transport failures and 5xx responses are retried according to *policy*.
    Rate limits, client errors and malformed bodies are raised immediately as
    :class:`RateLimited`, :class:`SourceUnavailable` and
    :class:`InvalidResponse` respectively.
    """

    sess = session or await get_session()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await _request_once(sess, method, url, source, timeout=timeout, **kwargs)
        except RateLimited:
            raise
        except SourceUnavailable as exc:
            retryable = exc.status is None or exc.status >= 500
            if not retryable or attempt >= policy.attempts:
                raise
            delay = policy.delay(attempt)
            logger.debug("%s attempt %d failed (%s); retrying in %.2fs", source, attempt, exc, delay)
            await asyncio.sleep(delay)


__all__ = [
    "RetryPolicy",
    "NO_RETRY",
    "loads",
    "get_session",
    "close_session",
    "fetch_json",
]
