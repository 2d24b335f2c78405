"""Per-symbol spot price adapters (CryptoCompare, Coinbase)."""

from __future__ import annotations

from typing import Mapping

from ..errors import NoPriceData
from .base import ProviderClient, coerce_float


class CryptoCompareClient(ProviderClient):
    name = "cryptocompare"

    async def symbol_price(self, symbol: str) -> float:
        headers = {"authorization": f"Apikey {self.api_key}"} if self.api_key else None
        payload = await self.get_json(
            "data/price",
            params={"fsym": symbol.upper(), "tsyms": "USD"},
            headers=headers,
        )
        # Unknown symbols come back as ``{"Response": "Error", ...}``.
        price = coerce_float(payload.get("USD")) if isinstance(payload, Mapping) else None
        if not price or price <= 0:
            raise NoPriceData(f"{self.name}: no price for {symbol}", source=self.name)
        return price


class CoinbaseClient(ProviderClient):
    name = "coinbase"

    async def symbol_price(self, symbol: str) -> float:
        payload = await self.get_json(f"v2/prices/{symbol.upper()}-USD/spot")
        data = payload.get("data") if isinstance(payload, Mapping) else None
        price = coerce_float(data.get("amount")) if isinstance(data, Mapping) else None
        if not price or price <= 0:
            raise NoPriceData(f"{self.name}: no price for {symbol}", source=self.name)
        return price


__all__ = ["CryptoCompareClient", "CoinbaseClient"]
