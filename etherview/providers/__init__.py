"""Provider adapters translating upstream payloads into canonical records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import aiohttp

from ..http import RetryPolicy
from .base import ProviderClient, RawBalance
from .coingecko import CoinGeckoClient
from .dexscreener import DexscreenerClient
from .etherscan import EtherscanClient, TokenTransfer
from .ethplorer import EthplorerClient
from .spot import CoinbaseClient, CryptoCompareClient
from .zapper import ZapperClient


@dataclass
class Providers:
    """Every upstream client the engine talks to."""

    explorer: Any
    explorer_backup: Any
    ethplorer: Any
    zapper: Any
    coingecko: Any
    cryptocompare: Any
    coinbase: Any
    dexscreener: Any


def build_providers(settings: Any, *, session: aiohttp.ClientSession | None = None) -> Providers:
    policy = RetryPolicy.from_settings(settings)
    common = {
        "timeout": settings.request_timeout,
        "policy": policy,
        "session": session,
        "user_agent": settings.user_agent,
    }
    return Providers(
        explorer=EtherscanClient(
            settings.etherscan_url,
            chain_id=settings.chain_id,
            api_key=settings.etherscan_api_key,
            name="etherscan",
            **common,
        ),
        explorer_backup=EtherscanClient(
            settings.etherscan_backup_url,
            chain_id=settings.chain_id,
            api_key=settings.etherscan_backup_api_key or settings.etherscan_api_key,
            name="etherscan_backup",
            **common,
        ),
        ethplorer=EthplorerClient(settings.ethplorer_url, api_key=settings.ethplorer_api_key, **common),
        zapper=ZapperClient(settings.zapper_url, api_key=settings.zapper_api_key, **common),
        coingecko=CoinGeckoClient(settings.coingecko_url, api_key=settings.coingecko_api_key, **common),
        cryptocompare=CryptoCompareClient(
            settings.cryptocompare_url, api_key=settings.cryptocompare_api_key, **common
        ),
        coinbase=CoinbaseClient(settings.coinbase_url, **common),
        dexscreener=DexscreenerClient(settings.dexscreener_url, **common),
    )


__all__ = [
    "Providers",
    "build_providers",
    "ProviderClient",
    "RawBalance",
    "TokenTransfer",
    "EtherscanClient",
    "EthplorerClient",
    "ZapperClient",
    "CoinGeckoClient",
    "CryptoCompareClient",
    "CoinbaseClient",
    "DexscreenerClient",
]
