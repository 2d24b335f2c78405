"""Ethplorer adapter: per-token balances and the full address holdings list."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping, Optional

from ..errors import InvalidResponse
from ..schemas import ResolvedToken
from ..whitelist import get_meta
from .base import ProviderClient, RawBalance, coerce_float, coerce_int, parse_raw_quantity

HOLDINGS_CONFIDENCE = 0.85
HOLDINGS_PRICE_CONFIDENCE = 0.65


def _token_info(entry: Mapping[str, Any]) -> Mapping[str, Any]:
    info = entry.get("tokenInfo")
    return info if isinstance(info, Mapping) else {}


def _raw_from_entry(entry: Mapping[str, Any], *, source: str) -> int:
    raw = entry.get("rawBalance")
    if raw is None:
        raw = entry.get("balance")
    if isinstance(raw, float):
        # Ethplorer reports large balances as floats in base units.
        raw = Decimal(repr(raw)).to_integral_value()
    return parse_raw_quantity(raw, source=source)


class EthplorerClient(ProviderClient):
    name = "ethplorer"

    async def address_info(self, address: str, *, token: str | None = None) -> Mapping[str, Any]:
        payload = await self.get_json(
            f"getAddressInfo/{address}",
            params={"apiKey": self.api_key or "freekey", "token": token},
        )
        if not isinstance(payload, Mapping):
            raise InvalidResponse(f"{self.name}: unexpected payload type", source=self.name)
        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, Mapping) else error
            raise InvalidResponse(f"{self.name}: {message}", source=self.name)
        return payload

    async def token_balance(self, address: str, contract: str) -> RawBalance:
        payload = await self.address_info(address, token=contract)
        tokens = payload.get("tokens")
        if not isinstance(tokens, list):
            # Ethplorer omits the list when the wallet holds none of the token.
            return RawBalance(0)
        for entry in tokens:
            if not isinstance(entry, Mapping):
                continue
            info = _token_info(entry)
            if str(info.get("address") or "").lower() != contract.lower():
                continue
            return RawBalance(
                _raw_from_entry(entry, source=self.name),
                coerce_int(info.get("decimals")),
            )
        return RawBalance(0)

    async def holdings(self, address: str) -> List[ResolvedToken]:
        """Every token the indexer reports for ``address``, priced where it can."""
        payload = await self.address_info(address)
        tokens = payload.get("tokens")
        if not isinstance(tokens, list):
            return []
        rows: List[ResolvedToken] = []
        for entry in tokens:
            if not isinstance(entry, Mapping):
                continue
            info = _token_info(entry)
            contract = str(info.get("address") or "").lower()
            if not contract:
                continue
            meta = get_meta(contract)
            decimals: Optional[int] = coerce_int(info.get("decimals"))
            if decimals is None:
                decimals = meta.decimals if meta else 18
            try:
                raw = _raw_from_entry(entry, source=self.name)
            except InvalidResponse:
                continue
            price = info.get("price")
            rate = coerce_float(price) if isinstance(price, Mapping) else None
            symbol = str(info.get("symbol") or (meta.symbol if meta else "") or "UNKNOWN")
            priced = bool(rate and rate > 0)
            rows.append(
                ResolvedToken(
                    address=contract,
                    symbol=symbol,
                    name=str(info.get("name") or (meta.name if meta else "") or symbol),
                    decimals=decimals,
                    balance=Decimal(raw).scaleb(-decimals),
                    price_usd=rate if priced else 0.0,
                    verified=meta is not None,
                    source=self.name,
                    confidence=HOLDINGS_CONFIDENCE,
                    price_source=self.name if priced else None,
                    price_confidence=HOLDINGS_PRICE_CONFIDENCE if priced else 0.0,
                    has_no_price_data=not priced,
                )
            )
        return rows


__all__ = ["EthplorerClient"]
