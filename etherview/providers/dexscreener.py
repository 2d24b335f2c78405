"""Dexscreener adapter: price of the most liquid pair for a contract."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..errors import NoPriceData
from .base import ProviderClient, coerce_float


def _extract_pairs(payload: Any) -> Sequence[Mapping[str, Any]]:
    if isinstance(payload, Mapping):
        pairs = payload.get("pairs")
        if isinstance(pairs, list):
            return [pair for pair in pairs if isinstance(pair, Mapping)]
    return []


def _liquidity(pair: Mapping[str, Any]) -> float:
    liquidity = pair.get("liquidity")
    if isinstance(liquidity, Mapping):
        return coerce_float(liquidity.get("usd")) or 0.0
    return 0.0


class DexscreenerClient(ProviderClient):
    name = "dexscreener"

    async def token_price(self, address: str) -> float:
        payload = await self.get_json(f"latest/dex/tokens/{address.lower()}")
        best_price = None
        best_liquidity = -1.0
        for pair in _extract_pairs(payload):
            base = pair.get("baseToken")
            # Only pairs where the contract is the base asset quote its price.
            if isinstance(base, Mapping) and str(base.get("address") or "").lower() not in ("", address.lower()):
                continue
            price = coerce_float(pair.get("priceUsd"))
            if not price or price <= 0:
                continue
            liquidity = _liquidity(pair)
            if liquidity > best_liquidity:
                best_price, best_liquidity = price, liquidity
        if best_price is None:
            raise NoPriceData(f"{self.name}: no pairs for {address}", source=self.name)
        return best_price


__all__ = ["DexscreenerClient"]
