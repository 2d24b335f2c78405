"""Zapper DeFi aggregator adapter."""

from __future__ import annotations

import base64
from typing import Any, Iterator, Mapping, Optional

from ..errors import NoBalanceData
from .base import ProviderClient, RawBalance, coerce_int, parse_raw_quantity, quantity_to_raw


def _walk(node: Any, depth: int = 0) -> Iterator[Mapping[str, Any]]:
    if depth > 6:
        return
    if isinstance(node, Mapping):
        yield node
        for value in node.values():
            if isinstance(value, (Mapping, list)):
                yield from _walk(value, depth + 1)
    elif isinstance(node, list):
        for item in node:
            yield from _walk(item, depth + 1)


def _matches(asset: Mapping[str, Any], contract: str, symbol: str) -> bool:
    address = asset.get("address")
    if isinstance(address, str) and address.lower() == contract:
        return True
    return bool(symbol) and str(asset.get("symbol") or "").upper() == symbol


class ZapperClient(ProviderClient):
    name = "zapper"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        token = base64.b64encode(f"{self.api_key}:".encode()).decode()
        return {"Authorization": f"Basic {token}"}

    async def token_balance(
        self, address: str, contract: str, *, symbol: str = "", decimals: Optional[int] = None
    ) -> RawBalance:
        payload = await self.get_json(
            "v2/balances/tokens",
            params={"addresses[]": address, "network": "ethereum"},
            headers=self._headers(),
        )
        contract = contract.lower()
        symbol = symbol.upper()
        for asset in _walk(payload):
            if not _matches(asset, contract, symbol):
                continue
            reported = coerce_int(asset.get("decimals"))
            if reported is None:
                reported = decimals
            if asset.get("balanceRaw") is not None:
                return RawBalance(parse_raw_quantity(asset["balanceRaw"], source=self.name), reported)
            if asset.get("balance") is not None:
                scale = reported if reported is not None else 18
                return RawBalance(
                    quantity_to_raw(asset["balance"], scale, source=self.name), scale
                )
        raise NoBalanceData(f"{self.name}: token {contract} not found", source=self.name)


__all__ = ["ZapperClient"]
