"""Validated engine settings loaded from the environment."""

from __future__ import annotations

import os
from typing import Dict, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .cache import DEFAULT_TTLS
from .providers.coingecko import MAX_ADDRESSES_PER_CALL

_ENV_PREFIX = "ETHERVIEW_"

# Environment variables that do not carry the ``ETHERVIEW_`` prefix.
_PROVIDER_KEY_VARS: Dict[str, str] = {
    "etherscan_api_key": "ETHERSCAN_API_KEY",
    "etherscan_backup_api_key": "ETHERSCAN_BACKUP_API_KEY",
    "ethplorer_api_key": "ETHPLORER_API_KEY",
    "zapper_api_key": "ZAPPER_API_KEY",
    "coingecko_api_key": "COINGECKO_API_KEY",
    "cryptocompare_api_key": "CRYPTOCOMPARE_API_KEY",
}


class EngineSettings(BaseModel):
    """Every tunable of the resolution engine with its default."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    chain_id: int = 1

    # provider endpoints and credentials
    etherscan_url: str = "https://api.etherscan.io/v2/api"
    etherscan_api_key: str = ""
    etherscan_backup_url: str = "https://api.etherscan.io/v2/api"
    etherscan_backup_api_key: str = ""
    ethplorer_url: str = "https://api.ethplorer.io"
    ethplorer_api_key: str = "freekey"
    zapper_url: str = "https://api.zapper.xyz"
    zapper_api_key: str = ""
    coingecko_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str = ""
    cryptocompare_url: str = "https://min-api.cryptocompare.com"
    cryptocompare_api_key: str = ""
    coinbase_url: str = "https://api.coinbase.com"
    dexscreener_url: str = "https://api.dexscreener.com"
    user_agent: str = "EtherView/1.0"

    # http
    request_timeout: float = 5.0
    retry_attempts: int = 2
    retry_backoff: float = 0.3
    retry_max_delay: float = 4.0

    # circuit breaker
    breaker_threshold: int = 5
    breaker_cooldown: float = 60.0

    # discovery
    page_size: int = 200
    page_budget: int = 3
    extended_page_budget: int = 5
    thin_history_threshold: int = 50
    max_candidates: int = 60

    # balances
    balance_batch_size: int = 10
    balance_max_batches: int = 4

    # prices
    price_batch_size: int = 40

    # coordinator
    display_limit: int = 30
    request_budget: float = 20.0
    holdings_source_enabled: bool = True

    # cache
    cache_maxsize: int = 4096
    ttls: Dict[str, float] = dict(DEFAULT_TTLS)

    @field_validator(
        "request_timeout",
        "retry_backoff",
        "retry_max_delay",
        "breaker_cooldown",
        "request_budget",
    )
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator(
        "retry_attempts",
        "breaker_threshold",
        "page_size",
        "page_budget",
        "max_candidates",
        "balance_batch_size",
        "balance_max_batches",
        "display_limit",
        "cache_maxsize",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("price_batch_size")
    @classmethod
    def _within_batch_limit(cls, value: int) -> int:
        if not 1 <= value <= MAX_ADDRESSES_PER_CALL:
            raise ValueError(f"must be between 1 and {MAX_ADDRESSES_PER_CALL}")
        return value

    @field_validator("ttls")
    @classmethod
    def _merge_ttls(cls, value: Dict[str, float]) -> Dict[str, float]:
        merged = dict(DEFAULT_TTLS)
        for kind, ttl in value.items():
            if ttl <= 0:
                raise ValueError(f"ttl for {kind!r} must be > 0")
            merged[kind] = float(ttl)
        return merged

    @model_validator(mode="after")
    def _extension_covers_budget(self) -> "EngineSettings":
        if self.extended_page_budget < self.page_budget:
            raise ValueError("extended_page_budget must be >= page_budget")
        return self


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, object]:
    values: Dict[str, object] = {}
    ttls: Dict[str, str] = {}
    for name in EngineSettings.model_fields:
        if name == "ttls":
            continue
        raw = environ.get(_ENV_PREFIX + name.upper())
        if raw is None or raw == "":
            key_var = _PROVIDER_KEY_VARS.get(name)
            raw = environ.get(key_var) if key_var else None
        if raw is None or raw == "":
            continue
        values[name] = raw.strip()
    for kind in DEFAULT_TTLS:
        raw = environ.get(f"{_ENV_PREFIX}TTL_{kind.upper()}")
        if raw:
            ttls[kind] = raw.strip()
    if ttls:
        values["ttls"] = ttls
    return values


def load_settings(
    environ: Mapping[str, str] | None = None, **overrides: object
) -> EngineSettings:
    """Build :class:`EngineSettings` from ``environ`` (defaults to ``os.environ``).

    Keyword ``overrides`` win over the environment.  Raises ``ValueError`` on
    invalid values.
    """
    values = _env_overrides(os.environ if environ is None else environ)
    values.update(overrides)
    try:
        return EngineSettings(**values)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


__all__ = ["EngineSettings", "load_settings"]
