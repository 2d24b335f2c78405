"""Shared plumbing for provider adapters."""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

import aiohttp

from ..errors import InvalidResponse
from ..http import NO_RETRY, RetryPolicy, fetch_json


@dataclass(frozen=True, slots=True)
class RawBalance:
    """Integer base-unit balance plus the decimals the source reported, if any."""

    raw: int
    decimals: Optional[int] = None


class ProviderClient:
    """Base class holding endpoint, credentials and retry policy for one source."""

    name = "provider"

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout: float = 5.0,
        policy: RetryPolicy = NO_RETRY,
        session: aiohttp.ClientSession | None = None,
        name: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.api_key = api_key
        self.timeout = timeout
        self.policy = policy
        self.session = session
        if name:
            self.name = name

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"{type(self).__name__}(name={self.name!r}, base_url={self.base_url!r})"

    def url(self, path: str = "") -> str:
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get_json(
        self,
        path: str = "",
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        kwargs: dict[str, Any] = {}
        if params:
            kwargs["params"] = {k: v for k, v in params.items() if v not in (None, "")}
        merged = dict(headers or {})
        if self.user_agent:
            merged.setdefault("User-Agent", self.user_agent)
        if merged:
            kwargs["headers"] = merged
        return await fetch_json(
            self.url(path),
            source=self.name,
            timeout=self.timeout,
            policy=self.policy,
            session=self.session,
            **kwargs,
        )


def coerce_float(value: Any) -> float | None:
    """Return a finite positive-or-zero float from provider data or ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Mapping):
        for key in ("usd", "USD", "price", "rate", "amount", "value"):
            if key in value:
                return coerce_float(value.get(key))
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


def coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_raw_quantity(value: Any, *, source: str) -> int:
    """Parse an integer base-unit balance, rejecting garbage and negatives."""
    if isinstance(value, bool):
        raise InvalidResponse(f"{source}: boolean balance", source=source)
    if isinstance(value, int):
        raw = value
    else:
        text = str(value).strip() if value is not None else ""
        if not text:
            raise InvalidResponse(f"{source}: empty balance", source=source)
        try:
            raw = int(text)
        except ValueError:
            try:
                dec = Decimal(text)
            except InvalidOperation as exc:
                raise InvalidResponse(f"{source}: unparsable balance {text[:40]!r}", source=source) from exc
            if not dec.is_finite() or dec != dec.to_integral_value():
                raise InvalidResponse(f"{source}: non-integral balance {text[:40]!r}", source=source)
            raw = int(dec)
    if raw < 0:
        raise InvalidResponse(f"{source}: negative balance {raw}", source=source)
    return raw


def quantity_to_raw(quantity: Any, decimals: int, *, source: str) -> int:
    """Scale a human-readable quantity back to integer base units."""
    try:
        dec = Decimal(str(quantity))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidResponse(f"{source}: unparsable quantity {quantity!r}", source=source) from exc
    if not dec.is_finite() or dec < 0:
        raise InvalidResponse(f"{source}: invalid quantity {quantity!r}", source=source)
    return int(dec.scaleb(decimals).to_integral_value())


__all__ = [
    "RawBalance",
    "ProviderClient",
    "coerce_float",
    "coerce_int",
    "parse_raw_quantity",
    "quantity_to_raw",
]
