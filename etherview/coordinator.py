"""Entry point: resolve a wallet's portfolio with caching and single-flight."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .addresses import normalize_wallet
from .balances import BalanceResolver, default_sources
from .cache import CacheStore
from .circuit import CircuitBreakerRegistry, guarded_call
from .config import EngineSettings, load_settings
from .merge import reconcile
from .prices import PriceRequest, PriceResolver, default_fallbacks, default_reference_sources
from .providers import Providers, build_providers
from .schemas import (
    PortfolioSnapshot,
    PriceQuote,
    ResolvedToken,
    now_ms,
    tokens_from_balances,
    usd,
)
from .token_discovery import TokenDiscovery

logger = logging.getLogger(__name__)


@dataclass
class _Flight:
    task: "asyncio.Task[PortfolioSnapshot]"
    forced: bool = False


class RequestCoordinator:
    """Serve portfolio snapshots for wallet addresses.

    Concurrent non-forced requests for one address share a single in-flight
    resolution.  A forced refresh invalidates the address's snapshot, balance
    and transaction entries and always starts new work; requests already in
    flight are left to finish and only populate the cache when nothing newer
    is cached.
    """

    def __init__(
        self,
        settings: EngineSettings,
        *,
        cache: CacheStore,
        breakers: CircuitBreakerRegistry,
        discovery: TokenDiscovery,
        balances: BalanceResolver,
        prices: PriceResolver,
        holdings_client: Any = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.breakers = breakers
        self.discovery = discovery
        self.balances = balances
        self.prices = prices
        self.holdings_client = holdings_client
        self._inflight: Dict[str, _Flight] = {}
        self._last_generated: Dict[str, int] = {}
        self._epochs: Dict[str, int] = {}
        self._stored_epoch: Dict[str, int] = {}

    # public API -------------------------------------------------------------
    async def get_portfolio(self, address: str, *, force_refresh: bool = False) -> PortfolioSnapshot:
        wallet = normalize_wallet(address)
        if force_refresh:
            self.invalidate(wallet)
        else:
            cached = self.cache.get(("snapshot", wallet))
            if cached is not None:
                logger.debug("Coordinator: snapshot cache hit for %s", wallet)
                return cached
            flight = self._inflight.get(wallet)
            if flight is not None and not flight.task.done():
                logger.debug("Coordinator: joining in-flight request for %s", wallet)
                return await asyncio.shield(flight.task)

        epoch = self._epochs.get(wallet, 0) + 1
        self._epochs[wallet] = epoch
        task = asyncio.create_task(self._run(wallet, epoch))
        self._inflight[wallet] = _Flight(task=task, forced=force_refresh)
        task.add_done_callback(lambda t, w=wallet: self._forget(w, t))
        return await asyncio.shield(task)

    async def get_portfolio_dict(self, address: str, *, force_refresh: bool = False) -> Dict[str, Any]:
        snapshot = await self.get_portfolio(address, force_refresh=force_refresh)
        return snapshot.to_dict()

    def invalidate(self, wallet: str) -> int:
        removed = 0
        for prefix in (("snapshot", wallet), ("balance", wallet), ("transactions", wallet)):
            removed += self.cache.invalidate_prefix(prefix)
        logger.info("Coordinator: invalidated %d cache entr(ies) for %s", removed, wallet)
        return removed

    def health(self) -> Dict[str, Any]:
        return {
            "breakers": self.breakers.health_snapshot(),
            "cache": self.cache.stats(),
            "inflight": {
                w: {"forced": f.forced} for w, f in self._inflight.items() if not f.task.done()
            },
        }

    # internals ----------------------------------------------------------------
    def _forget(self, wallet: str, task: "asyncio.Task[PortfolioSnapshot]") -> None:
        flight = self._inflight.get(wallet)
        if flight is not None and flight.task is task:
            del self._inflight[wallet]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Coordinator: resolution for %s failed: %r", wallet, task.exception())

    def _next_generated_at(self, wallet: str) -> int:
        stamp = max(now_ms(), self._last_generated.get(wallet, 0) + 1)
        self._last_generated[wallet] = stamp
        return stamp

    async def _holdings(self, wallet: str) -> List[ResolvedToken]:
        if self.holdings_client is None or not self.settings.holdings_source_enabled:
            return []
        rows = await guarded_call(
            self.breakers,
            self.holdings_client.name,
            lambda: self.holdings_client.holdings(wallet),
            timeout=self.settings.request_timeout,
            label=wallet,
            log=logger,
        )
        return rows or []

    async def _run(self, wallet: str, epoch: int) -> PortfolioSnapshot:
        started = time.monotonic()
        budget = self.settings.request_budget

        def remaining() -> float:
            return max(0.0, budget - (time.monotonic() - started))

        holdings_task = asyncio.create_task(self._holdings(wallet))
        reference_task = asyncio.create_task(self.prices.reference_price())
        native_task = asyncio.create_task(self.balances.resolve_native(wallet))

        partial = False
        discovery = await self._await_or_none(
            asyncio.create_task(self.discovery.discover(wallet)), remaining()
        )
        if discovery is None:
            partial = True
            contracts = []
        else:
            contracts = discovery.candidates

        balance_batch = await self.balances.resolve_many(wallet, contracts, timeout=remaining())
        partial = partial or balance_batch.partial
        reference = await self._await_or_none(reference_task, remaining())
        requests = [
            PriceRequest(c.symbol, c.address, c.name)
            for c, b in zip(contracts, balance_batch.balances)
            if b.raw_quantity > 0 or b.fallback_used
        ]
        price_batch = await self.prices.price_many(requests, reference=reference, timeout=remaining())
        partial = partial or price_batch.partial

        discovered = [
            token.with_price(price_batch.quote_for(token.symbol, token.address))
            for token in tokens_from_balances(balance_batch.balances)
        ]
        holdings = await self._await_or_none(holdings_task, remaining())
        native = await self._await_or_none(native_task, remaining())
        if native is None:
            partial = True

        async def price_one(token: ResolvedToken) -> PriceQuote:
            nonlocal partial
            request = PriceRequest(token.symbol, token.address, token.name)
            try:
                return await asyncio.wait_for(
                    self.prices.price_one(request, reference=reference), timeout=remaining()
                )
            except asyncio.TimeoutError:
                partial = True
                return PriceQuote.missing(token.symbol, token.address)

        tokens = await reconcile(
            [discovered, holdings or []],
            price_one=price_one if remaining() > 0 else None,
            display_limit=self.settings.display_limit,
        )

        eth_balance = native.quantity if native is not None else Decimal(0)
        eth_price = reference.usd_price if reference is not None else 0.0
        eth_value = usd(eth_balance * Decimal(str(eth_price))) if eth_price > 0 else 0.0
        snapshot = PortfolioSnapshot(
            address=wallet,
            eth_balance=eth_balance,
            eth_value_usd=eth_value,
            tokens=tuple(tokens),
            generated_at=self._next_generated_at(wallet),
            partial=partial,
        )
        self._store(snapshot, epoch)
        logger.info(
            "Coordinator: %s resolved %d token(s), total $%.2f in %.2fs%s",
            wallet,
            snapshot.token_count,
            snapshot.total_value_usd,
            time.monotonic() - started,
            " (partial)" if partial else "",
        )
        return snapshot

    async def _await_or_none(self, task: "asyncio.Task", timeout: float) -> Optional[Any]:
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            return None
        if task.exception() is not None:
            logger.error("Coordinator: background lookup crashed: %r", task.exception())
            return None
        return task.result()

    def _store(self, snapshot: PortfolioSnapshot, epoch: int) -> None:
        key = ("snapshot", snapshot.address)
        current = self.cache.get(key)
        if current is not None and self._stored_epoch.get(snapshot.address, 0) > epoch:
            logger.debug("Coordinator: newer snapshot already cached for %s", snapshot.address)
            return
        self.cache.set(key, snapshot, kind="snapshot")
        self._stored_epoch[snapshot.address] = epoch


def build_coordinator(
    settings: EngineSettings | None = None,
    *,
    providers: Providers | None = None,
    cache: CacheStore | None = None,
    breakers: CircuitBreakerRegistry | None = None,
) -> RequestCoordinator:
    """Wire the shared services into a :class:`RequestCoordinator`."""
    settings = settings or load_settings()
    providers = providers or build_providers(settings)
    cache = cache or CacheStore(settings.cache_maxsize, settings.ttls)
    breakers = breakers or CircuitBreakerRegistry(settings.breaker_threshold, settings.breaker_cooldown)
    discovery = TokenDiscovery(
        providers.explorer,
        cache,
        breakers,
        page_size=settings.page_size,
        page_budget=settings.page_budget,
        extended_page_budget=settings.extended_page_budget,
        thin_history_threshold=settings.thin_history_threshold,
        max_candidates=settings.max_candidates,
        attempt_timeout=settings.request_timeout,
    )
    balances = BalanceResolver(
        default_sources(providers),
        cache,
        breakers,
        attempt_timeout=settings.request_timeout,
        batch_size=settings.balance_batch_size,
        max_batches=settings.balance_max_batches,
    )
    prices = PriceResolver(
        providers.coingecko,
        default_fallbacks(providers),
        default_reference_sources(providers),
        cache,
        breakers,
        attempt_timeout=settings.request_timeout,
        batch_size=settings.price_batch_size,
    )
    return RequestCoordinator(
        settings,
        cache=cache,
        breakers=breakers,
        discovery=discovery,
        balances=balances,
        prices=prices,
        holdings_client=providers.ethplorer,
    )


__all__ = ["RequestCoordinator", "build_coordinator"]
