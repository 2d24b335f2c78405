"""Enumerate candidate ERC-20 contracts from a wallet's transfer history."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .cache import CacheStore
from .circuit import CircuitBreakerRegistry, guarded_call
from .schemas import TokenContract
from .whitelist import get_meta, is_recognized_major

logger = logging.getLogger(__name__)

SOLICITATION_TERMS = ("airdrop", "claim", "reward", "gift", "test")
MAX_TICKER_LENGTH = 12


def is_probable_spam(contract: TokenContract) -> bool:
    """Return ``True`` for one-off transfers that look like unsolicited drops.

    Whitelisted contracts and major/DeFi symbols are never spam.
    """
    if is_recognized_major(contract.address, contract.symbol):
        return False
    if contract.tx_count > 1:
        return False
    if len(contract.symbol or "") > MAX_TICKER_LENGTH:
        return True
    name = (contract.name or "").lower()
    return any(term in name for term in SOLICITATION_TERMS)


@dataclass
class DiscoveryResult:
    candidates: List[TokenContract]
    transfers_seen: int = 0
    pages_fetched: int = 0
    extended: bool = False
    spam_dropped: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors


@dataclass
class _Tally:
    symbol: str
    name: str
    decimals: Optional[int]
    count: int = 0


class TokenDiscovery:
    """Scan the explorer's ``tokentx`` history and rank contracts by activity."""

    def __init__(
        self,
        explorer,
        cache: CacheStore,
        breakers: CircuitBreakerRegistry,
        *,
        page_size: int = 200,
        page_budget: int = 3,
        extended_page_budget: int = 5,
        thin_history_threshold: int = 50,
        max_candidates: int = 60,
        attempt_timeout: float = 5.0,
    ) -> None:
        self.explorer = explorer
        self.cache = cache
        self.breakers = breakers
        self.page_size = page_size
        self.page_budget = page_budget
        self.extended_page_budget = max(page_budget, extended_page_budget)
        self.thin_history_threshold = thin_history_threshold
        self.max_candidates = max_candidates
        self.attempt_timeout = attempt_timeout

    async def _fetch_page(self, address: str, page: int) -> Optional[list]:
        """Return one page of transfers, or ``None`` when the explorer gave nothing usable."""
        key = ("transactions", address, page, self.page_size)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Discovery: cache hit for %s page %d", address, page)
            return cached
        transfers = await guarded_call(
            self.breakers,
            self.explorer.name,
            lambda: self.explorer.token_transfers(address, page=page, offset=self.page_size),
            timeout=self.attempt_timeout,
            label=f"{address} page {page}",
            log=logger,
        )
        if transfers is None:
            return None
        self.cache.set(key, transfers, kind="transactions")
        return transfers

    async def discover(self, address: str) -> DiscoveryResult:
        tallies: Dict[str, _Tally] = {}
        result = DiscoveryResult(candidates=[])
        budget = self.page_budget
        page = 1
        while page <= budget:
            transfers = await self._fetch_page(address, page)
            if transfers is None:
                # logged and counted by guarded_call
                result.errors.append(f"page {page} unavailable")
                break
            result.pages_fetched += 1
            result.transfers_seen += len(transfers)
            for transfer in transfers:
                tally = tallies.get(transfer.contract_address)
                if tally is None:
                    # Metadata comes from the first (newest) transfer seen.
                    tally = _Tally(transfer.symbol, transfer.name, transfer.decimals)
                    tallies[transfer.contract_address] = tally
                tally.count += 1
            if len(transfers) < self.page_size:
                break
            if (
                page == budget
                and not result.extended
                and len(tallies) < self.thin_history_threshold
                and budget < self.extended_page_budget
            ):
                budget = self.extended_page_budget
                result.extended = True
            page += 1

        contracts: List[TokenContract] = []
        for address_key, tally in tallies.items():
            meta = get_meta(address_key)
            decimals = tally.decimals if tally.decimals is not None and tally.decimals >= 0 else 18
            contract = TokenContract(
                address=address_key,
                symbol=tally.symbol or (meta.symbol if meta else "UNKNOWN"),
                name=tally.name or (meta.name if meta else tally.symbol or "Unknown"),
                decimals=decimals,
                tx_count=tally.count,
                verified=meta is not None,
            )
            if is_probable_spam(contract):
                result.spam_dropped += 1
                continue
            contracts.append(contract)

        contracts.sort(key=lambda c: c.tx_count, reverse=True)
        result.candidates = contracts[: self.max_candidates]
        logger.debug(
            "Discovery: %s -> %d transfer(s) over %d page(s), %d contract(s), %d spam, %d kept",
            address,
            result.transfers_seen,
            result.pages_fetched,
            len(tallies),
            result.spam_dropped,
            len(result.candidates),
        )
        return result


__all__ = ["SOLICITATION_TERMS", "is_probable_spam", "DiscoveryResult", "TokenDiscovery"]
