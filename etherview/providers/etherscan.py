"""Etherscan v2 explorer adapter (token transfers and balances)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from ..errors import InvalidResponse, RateLimited
from .base import ProviderClient, RawBalance, coerce_int, parse_raw_quantity

logger = logging.getLogger(__name__)

_EMPTY_MESSAGES = ("no transactions found", "no records found", "no token transfers found")


@dataclass(frozen=True, slots=True)
class TokenTransfer:
    """One ERC-20 transfer as reported by the explorer."""

    contract_address: str
    symbol: str
    name: str
    decimals: Optional[int]


class EtherscanClient(ProviderClient):
    """Client for the Etherscan v2 ``account`` module.

    The same class backs the primary and backup explorer tiers; they differ
    only in ``name``, URL and API key.
    """

    name = "etherscan"

    def __init__(self, base_url: str, *, chain_id: int = 1, **kwargs: Any) -> None:
        super().__init__(base_url, **kwargs)
        self.chain_id = chain_id

    async def _call(self, **params: Any) -> Any:
        query = {"chainid": self.chain_id, "module": "account", **params}
        if self.api_key:
            query["apikey"] = self.api_key
        payload = await self.get_json(params=query)
        if not isinstance(payload, Mapping):
            raise InvalidResponse(f"{self.name}: unexpected payload type", source=self.name)
        result = payload.get("result")
        if str(payload.get("status", "")) == "1":
            return result
        message = str(payload.get("message") or "")
        detail = result if isinstance(result, str) else message
        if "rate limit" in detail.lower():
            raise RateLimited(f"{self.name}: {detail}", source=self.name)
        if message.lower().startswith(_EMPTY_MESSAGES) or (
            isinstance(result, list) and not result
        ):
            return []
        raise InvalidResponse(f"{self.name}: {message or 'NOTOK'} {detail}".strip(), source=self.name)

    async def token_transfers(
        self, address: str, *, page: int = 1, offset: int = 200
    ) -> List[TokenTransfer]:
        """Return one page of ERC-20 transfers for ``address``, newest first."""
        result = await self._call(
            action="tokentx",
            address=address,
            page=page,
            offset=offset,
            sort="desc",
        )
        if not isinstance(result, list):
            raise InvalidResponse(f"{self.name}: tokentx result is not a list", source=self.name)
        transfers: List[TokenTransfer] = []
        for item in result:
            if not isinstance(item, Mapping):
                continue
            contract = item.get("contractAddress")
            if not isinstance(contract, str) or not contract:
                continue
            transfers.append(
                TokenTransfer(
                    contract_address=contract.lower(),
                    symbol=str(item.get("tokenSymbol") or "").strip(),
                    name=str(item.get("tokenName") or "").strip(),
                    decimals=coerce_int(item.get("tokenDecimal")),
                )
            )
        logger.debug("%s tokentx page %d -> %d record(s)", self.name, page, len(transfers))
        return transfers

    async def native_balance(self, address: str) -> RawBalance:
        result = await self._call(action="balance", address=address, tag="latest")
        return RawBalance(parse_raw_quantity(result, source=self.name), 18)

    async def token_balance(self, address: str, contract: str) -> RawBalance:
        result = await self._call(
            action="tokenbalance",
            contractaddress=contract,
            address=address,
            tag="latest",
        )
        # The explorer does not report decimals for balance queries.
        return RawBalance(parse_raw_quantity(result, source=self.name))


__all__ = ["TokenTransfer", "EtherscanClient"]
