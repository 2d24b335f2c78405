"""CoinGecko adapter: batched token prices by contract and the ETH reference price."""

from __future__ import annotations

from typing import Dict, Iterable, Mapping

from ..errors import InvalidResponse, NoPriceData
from .base import ProviderClient, coerce_float

MAX_ADDRESSES_PER_CALL = 40


class CoinGeckoClient(ProviderClient):
    name = "coingecko"
    max_addresses = MAX_ADDRESSES_PER_CALL

    def _headers(self) -> dict[str, str]:
        return {"x-cg-demo-api-key": self.api_key} if self.api_key else {}

    async def token_prices(self, addresses: Iterable[str]) -> Dict[str, float]:
        """Return ``{address: usd}`` for the priced subset of ``addresses``.

        Zero and missing prices are left out so callers can fall through to
        the next tier.
        """
        wanted = [addr.lower() for addr in addresses if addr]
        if not wanted:
            return {}
        if len(wanted) > MAX_ADDRESSES_PER_CALL:
            raise ValueError(f"at most {MAX_ADDRESSES_PER_CALL} addresses per call")
        payload = await self.get_json(
            "simple/token_price/ethereum",
            params={"contract_addresses": ",".join(wanted), "vs_currencies": "usd"},
            headers=self._headers(),
        )
        if not isinstance(payload, Mapping):
            raise InvalidResponse(f"{self.name}: unexpected payload type", source=self.name)
        prices: Dict[str, float] = {}
        for address, entry in payload.items():
            price = coerce_float(entry)
            if price and price > 0:
                prices[str(address).lower()] = price
        return prices

    async def eth_price(self) -> float:
        payload = await self.get_json(
            "simple/price",
            params={"ids": "ethereum", "vs_currencies": "usd"},
            headers=self._headers(),
        )
        entry = payload.get("ethereum") if isinstance(payload, Mapping) else None
        price = coerce_float(entry)
        if not price or price <= 0:
            raise NoPriceData(f"{self.name}: no ETH price", source=self.name)
        return price


__all__ = ["MAX_ADDRESSES_PER_CALL", "CoinGeckoClient"]
