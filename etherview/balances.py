"""Per-token balance waterfall over explorer, indexer and aggregator sources."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from .addresses import NATIVE_PLACEHOLDER
from .cache import CacheStore
from .circuit import CircuitBreakerRegistry, guarded_call
from .providers.base import RawBalance
from .schemas import TokenBalance, TokenContract
from .whitelist import get_meta, is_recognized_major, known_decimals

logger = logging.getLogger(__name__)

SUSPICIOUS_HIGH = Decimal("1e15")
SUSPICIOUS_LOW = Decimal("1e-18")

NATIVE_ETH = TokenContract(
    address=NATIVE_PLACEHOLDER,
    symbol="ETH",
    name="Ether",
    decimals=18,
    verified=True,
)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class BalanceSource:
    """One tier of the balance waterfall."""

    name = "balance"
    confidence = 0.0
    supports_native = False

    def applies(self, contract: TokenContract) -> bool:
        return True

    async def fetch(self, address: str, contract: TokenContract) -> RawBalance:
        raise NotImplementedError

    async def fetch_native(self, address: str) -> RawBalance:
        raise NotImplementedError


class ExplorerBalanceSource(BalanceSource):
    supports_native = True

    def __init__(self, client, confidence: float) -> None:
        self.client = client
        self.name = client.name
        self.confidence = confidence

    async def fetch(self, address: str, contract: TokenContract) -> RawBalance:
        return await self.client.token_balance(address, contract.address)

    async def fetch_native(self, address: str) -> RawBalance:
        return await self.client.native_balance(address)


class IndexerBalanceSource(BalanceSource):
    def __init__(self, client, confidence: float = 0.85) -> None:
        self.client = client
        self.name = client.name
        self.confidence = confidence

    async def fetch(self, address: str, contract: TokenContract) -> RawBalance:
        return await self.client.token_balance(address, contract.address)


class AggregatorBalanceSource(BalanceSource):
    """DeFi aggregator tier, consulted only for recognised major and DeFi assets."""

    def __init__(self, client, confidence: float = 0.80) -> None:
        self.client = client
        self.name = client.name
        self.confidence = confidence

    def applies(self, contract: TokenContract) -> bool:
        return is_recognized_major(contract.address, contract.symbol)

    async def fetch(self, address: str, contract: TokenContract) -> RawBalance:
        return await self.client.token_balance(
            address, contract.address, symbol=contract.symbol, decimals=contract.decimals
        )


def default_sources(providers) -> List[BalanceSource]:
    return [
        ExplorerBalanceSource(providers.explorer, 0.95),
        ExplorerBalanceSource(providers.explorer_backup, 0.90),
        IndexerBalanceSource(providers.ethplorer, 0.85),
        AggregatorBalanceSource(providers.zapper, 0.80),
    ]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


def resolve_decimals(contract: TokenContract, reported: Optional[int]) -> int:
    """Known symbols win over whitelist entries, which win over the source.

    A symbol carried by a contract other than its whitelisted owner gets no
    override.
    """
    override = known_decimals(contract.symbol, contract.address)
    if override is not None:
        return override
    meta = get_meta(contract.address)
    if meta is not None:
        return meta.decimals
    if reported is not None and 0 <= reported <= 36:
        return reported
    return contract.decimals


def is_suspicious(quantity: Decimal) -> bool:
    return quantity > SUSPICIOUS_HIGH or (0 < quantity < SUSPICIOUS_LOW)


@dataclass
class BalanceBatch:
    """Balances for a set of contracts in request order."""

    balances: List[TokenBalance] = field(default_factory=list)
    partial: bool = False

    @property
    def fallback_count(self) -> int:
        return sum(1 for b in self.balances if b.fallback_used)


class BalanceResolver:
    def __init__(
        self,
        sources: Sequence[BalanceSource],
        cache: CacheStore,
        breakers: CircuitBreakerRegistry,
        *,
        attempt_timeout: float = 5.0,
        batch_size: int = 10,
        max_batches: int = 4,
    ) -> None:
        self.sources = list(sources)
        self.cache = cache
        self.breakers = breakers
        self.attempt_timeout = attempt_timeout
        self.batch_size = max(1, batch_size)
        self.max_batches = max(1, max_batches)

    async def _attempt(
        self, source: BalanceSource, call: Callable[[], Awaitable[RawBalance]], label: str
    ) -> Optional[RawBalance]:
        return await guarded_call(
            self.breakers,
            source.name,
            call,
            timeout=self.attempt_timeout,
            label=label,
            log=logger,
        )

    def _build(self, contract: TokenContract, raw: RawBalance, source: BalanceSource) -> TokenBalance:
        decimals = resolve_decimals(contract, raw.decimals)
        balance = TokenBalance(
            contract=contract,
            raw_quantity=raw.raw,
            decimals=decimals,
            source=source.name,
            confidence=source.confidence,
        )
        if is_suspicious(balance.quantity):
            balance.suspicious = True
            logger.warning(
                "Balances: suspicious quantity %s for %s (%s) from %s",
                balance.quantity,
                contract.symbol,
                contract.address,
                source.name,
            )
        return balance

    async def resolve(self, address: str, contract: TokenContract) -> TokenBalance:
        key = ("balance", address, contract.address)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        for source in self.sources:
            if not source.applies(contract):
                continue
            raw = await self._attempt(
                source, lambda: source.fetch(address, contract), contract.symbol
            )
            if raw is None:
                continue
            balance = self._build(contract, raw, source)
            self.cache.set(key, balance, kind="balance")
            logger.debug("Balances: %s=%s via %s", contract.symbol, balance.quantity, source.name)
            return balance
        logger.info("Balances: every source failed for %s (%s); using zero", contract.symbol, contract.address)
        return self.fallback(contract)

    def fallback(self, contract: TokenContract) -> TokenBalance:
        return TokenBalance.fallback(contract, decimals=resolve_decimals(contract, None))

    async def resolve_native(self, address: str) -> TokenBalance:
        key = ("balance", address, NATIVE_ETH.address)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        for source in self.sources:
            if not source.supports_native:
                continue
            raw = await self._attempt(source, lambda: source.fetch_native(address), "ETH")
            if raw is None:
                continue
            balance = self._build(NATIVE_ETH, raw, source)
            self.cache.set(key, balance, kind="balance")
            return balance
        return TokenBalance.fallback(NATIVE_ETH)

    async def resolve_many(
        self,
        address: str,
        contracts: Sequence[TokenContract],
        *,
        timeout: float | None = None,
    ) -> BalanceBatch:
        """Resolve ``contracts`` in fixed-size batches with bounded concurrency.

        When ``timeout`` expires the unfinished tokens are returned as
        fallbacks and the batch is flagged ``partial``.
        """
        results: Dict[str, TokenBalance] = {}
        semaphore = asyncio.Semaphore(self.max_batches)

        async def one(contract: TokenContract) -> None:
            results[contract.address] = await self.resolve(address, contract)

        async def run_batch(batch: Sequence[TokenContract]) -> None:
            async with semaphore:
                await asyncio.gather(*(one(contract) for contract in batch))

        batches = [
            contracts[i : i + self.batch_size]
            for i in range(0, len(contracts), self.batch_size)
        ]
        tasks = [asyncio.create_task(run_batch(batch)) for batch in batches]
        partial = False
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                partial = True
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning(
                    "Balances: budget expired for %s with %d/%d token(s) unresolved",
                    address,
                    len(contracts) - len(results),
                    len(contracts),
                )
            for task in done:
                exc = task.exception()
                if exc is not None:
                    logger.error("Balances: batch for %s crashed: %r", address, exc)
        ordered = [
            results.get(contract.address) or self.fallback(contract)
            for contract in contracts
        ]
        return BalanceBatch(balances=ordered, partial=partial)


__all__ = [
    "NATIVE_ETH",
    "BalanceSource",
    "ExplorerBalanceSource",
    "IndexerBalanceSource",
    "AggregatorBalanceSource",
    "default_sources",
    "resolve_decimals",
    "is_suspicious",
    "BalanceBatch",
    "BalanceResolver",
]
