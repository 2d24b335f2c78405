"""Price waterfall with a reference (ETH) tier and a per-token tier."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .addresses import clean_candidate_addresses
from .cache import CacheStore
from .circuit import CircuitBreakerRegistry, guarded_call
from .schemas import PriceQuote, price_key
from .whitelist import get_meta, looks_like_stablecoin

logger = logging.getLogger(__name__)

FIXED_CONFIDENCE = 1.0
BATCH_CONFIDENCE = 0.85
HEURISTIC_CONFIDENCE = 0.3
REFERENCE_SYMBOL = "ETH"

PriceKey = Tuple[str, str]


@dataclass(frozen=True, slots=True)
class PriceRequest:
    """A token to price: symbol, contract address and display name."""

    symbol: str
    address: Optional[str]
    name: str = ""

    @property
    def key(self) -> PriceKey:
        return price_key(self.symbol, self.address)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class PriceSource:
    """One per-token fallback tier."""

    name = "price"
    confidence = 0.0
    ttl_kind = "price"

    def applies(self, request: PriceRequest) -> bool:
        return True

    async def fetch(self, request: PriceRequest) -> float:
        raise NotImplementedError


class SymbolPriceSource(PriceSource):
    def __init__(self, client, confidence: float, *, ttl_kind: str = "price") -> None:
        self.client = client
        self.name = client.name
        self.confidence = confidence
        self.ttl_kind = ttl_kind

    def applies(self, request: PriceRequest) -> bool:
        return bool(request.symbol)

    async def fetch(self, request: PriceRequest) -> float:
        return await self.client.symbol_price(request.symbol)


class AddressPriceSource(PriceSource):
    def __init__(self, client, confidence: float) -> None:
        self.client = client
        self.name = client.name
        self.confidence = confidence

    def applies(self, request: PriceRequest) -> bool:
        return bool(request.address)

    async def fetch(self, request: PriceRequest) -> float:
        return await self.client.token_price(request.address)


@dataclass(frozen=True, slots=True)
class ReferenceSource:
    name: str
    confidence: float
    call: Callable[[], Awaitable[float]]


def default_fallbacks(providers) -> List[PriceSource]:
    return [
        SymbolPriceSource(providers.cryptocompare, 0.75, ttl_kind="price_long"),
        SymbolPriceSource(providers.coinbase, 0.7),
        AddressPriceSource(providers.dexscreener, 0.6),
    ]


def default_reference_sources(providers) -> List[ReferenceSource]:
    return [
        ReferenceSource(providers.coingecko.name, 0.9, providers.coingecko.eth_price),
        ReferenceSource(
            providers.coinbase.name, 0.85, lambda: providers.coinbase.symbol_price(REFERENCE_SYMBOL)
        ),
        ReferenceSource(
            providers.cryptocompare.name,
            0.8,
            lambda: providers.cryptocompare.symbol_price(REFERENCE_SYMBOL),
        ),
    ]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


@dataclass
class PriceBatch:
    quotes: Dict[PriceKey, PriceQuote] = field(default_factory=dict)
    reference: Optional[PriceQuote] = None
    partial: bool = False

    def quote_for(self, symbol: str, address: Optional[str]) -> PriceQuote:
        return self.quotes.get(price_key(symbol, address)) or PriceQuote.missing(symbol, address)


class PriceResolver:
    """Resolve USD prices tier by tier.

    Order for each token: whitelist fixed price, tokens that price as ETH,
    fresh cached quote, batched by-address lookup, per-token fallbacks in
    descending trust, stablecoin heuristic, and finally a ``no_price_data``
    quote at zero.
    """

    def __init__(
        self,
        batch_client,
        fallbacks: Sequence[PriceSource],
        reference_sources: Sequence[ReferenceSource],
        cache: CacheStore,
        breakers: CircuitBreakerRegistry,
        *,
        attempt_timeout: float = 5.0,
        batch_size: int = 40,
        batch_confidence: float = BATCH_CONFIDENCE,
    ) -> None:
        self.batch_client = batch_client
        self.fallbacks = list(fallbacks)
        self.reference_sources = list(reference_sources)
        self.cache = cache
        self.breakers = breakers
        self.attempt_timeout = attempt_timeout
        limit = getattr(batch_client, "max_addresses", None)
        self.batch_size = max(1, min(batch_size, limit) if limit else batch_size)
        self.batch_confidence = batch_confidence

    async def _guarded(self, name: str, call: Callable[[], Awaitable], label: str):
        return await guarded_call(
            self.breakers, name, call, timeout=self.attempt_timeout, label=label, log=logger
        )

    # reference tier --------------------------------------------------------
    async def reference_price(self) -> PriceQuote:
        key = ("reference", REFERENCE_SYMBOL)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        for source in self.reference_sources:
            value = await self._guarded(source.name, source.call, REFERENCE_SYMBOL)
            if value and value > 0:
                quote = PriceQuote(REFERENCE_SYMBOL, None, value, source.name, source.confidence)
                self.cache.set(key, quote, kind="reference")
                return quote
        logger.warning("Prices: no reference %s price from any source", REFERENCE_SYMBOL)
        return PriceQuote.missing(REFERENCE_SYMBOL, None)

    # per-token tiers -------------------------------------------------------
    def _fixed(self, request: PriceRequest) -> Optional[PriceQuote]:
        meta = get_meta(request.address)
        if meta is None or meta.fixed_price is None:
            return None
        key = ("price",) + request.key
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        quote = PriceQuote(request.symbol, request.address, meta.fixed_price, "whitelist", FIXED_CONFIDENCE)
        self.cache.set(key, quote, kind="fixed")
        return quote

    def _cached(self, request: PriceRequest) -> Optional[PriceQuote]:
        return self.cache.get(("price",) + request.key)

    def _store(self, quote: PriceQuote, kind: str) -> None:
        self.cache.set(("price",) + quote.key, quote, kind=kind)

    async def _batch(self, requests: Sequence[PriceRequest]) -> Dict[PriceKey, PriceQuote]:
        by_address: Dict[str, List[PriceRequest]] = {}
        for request in requests:
            if request.address:
                by_address.setdefault(request.address.lower(), []).append(request)
        addresses, _ = clean_candidate_addresses(by_address)
        chunks = [
            addresses[i : i + self.batch_size]
            for i in range(0, len(addresses), self.batch_size)
        ]
        name = self.batch_client.name

        async def fetch(chunk: List[str]):
            return await self._guarded(
                name, lambda: self.batch_client.token_prices(chunk), f"{len(chunk)} address(es)"
            )

        responses = await asyncio.gather(*(fetch(chunk) for chunk in chunks))
        quotes: Dict[PriceKey, PriceQuote] = {}
        for prices in responses:
            for address, value in (prices or {}).items():
                for request in by_address.get(address.lower(), ()):
                    quote = PriceQuote(request.symbol, request.address, value, name, self.batch_confidence)
                    self._store(quote, "price")
                    quotes[request.key] = quote
        return quotes

    async def _fallback(self, request: PriceRequest) -> PriceQuote:
        for source in self.fallbacks:
            if not source.applies(request):
                continue
            value = await self._guarded(source.name, lambda: source.fetch(request), request.symbol)
            if value and value > 0:
                quote = PriceQuote(request.symbol, request.address, value, source.name, source.confidence)
                self._store(quote, source.ttl_kind)
                logger.debug("Prices: %s=%s via fallback %s", request.symbol, value, source.name)
                return quote
        if looks_like_stablecoin(request.symbol, request.name, request.address):
            return PriceQuote(request.symbol, request.address, 1.0, "stablecoin_heuristic", HEURISTIC_CONFIDENCE)
        return PriceQuote.missing(request.symbol, request.address)

    def _reference_alias(self, request: PriceRequest, reference: Optional[PriceQuote]) -> Optional[PriceQuote]:
        meta = get_meta(request.address)
        if meta is None or meta.pricing_symbol != REFERENCE_SYMBOL or reference is None:
            return None
        if reference.no_price_data:
            return None
        return PriceQuote(
            request.symbol, request.address, reference.usd_price, reference.source, reference.confidence
        )

    async def _resolve_into(
        self,
        requests: Sequence[PriceRequest],
        out: Dict[PriceKey, PriceQuote],
        reference: Optional[PriceQuote],
    ) -> None:
        pending: List[PriceRequest] = []
        for request in requests:
            if request.key in out:
                continue
            quote = (
                self._fixed(request)
                or self._reference_alias(request, reference)
                or self._cached(request)
            )
            if quote is not None:
                out[request.key] = quote
            else:
                pending.append(request)
        if not pending:
            return
        out.update(await self._batch(pending))
        leftovers = [request for request in pending if request.key not in out]
        if leftovers:
            logger.debug("Prices: %d token(s) need per-token fallback", len(leftovers))

        async def one(request: PriceRequest) -> None:
            out[request.key] = await self._fallback(request)

        await asyncio.gather(*(one(request) for request in leftovers))

    async def price_many(
        self,
        requests: Iterable[PriceRequest],
        *,
        reference: Optional[PriceQuote] = None,
        timeout: float | None = None,
    ) -> PriceBatch:
        """Price every request; unfinished ones become ``no_price_data`` on timeout."""
        unique: Dict[PriceKey, PriceRequest] = {}
        for request in requests:
            unique.setdefault(request.key, request)
        batch = PriceBatch(reference=reference)
        task = asyncio.create_task(self._resolve_into(list(unique.values()), batch.quotes, reference))
        done, pending = await asyncio.wait({task}, timeout=timeout)
        if pending:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            batch.partial = True
            logger.warning(
                "Prices: budget expired with %d/%d token(s) unpriced",
                len(unique) - len(batch.quotes),
                len(unique),
            )
        elif task.exception() is not None:
            logger.error("Prices: resolution crashed: %r", task.exception())
        for key, request in unique.items():
            batch.quotes.setdefault(key, PriceQuote.missing(request.symbol, request.address))
        return batch

    async def price_one(self, request: PriceRequest, *, reference: Optional[PriceQuote] = None) -> PriceQuote:
        out: Dict[PriceKey, PriceQuote] = {}
        await self._resolve_into([request], out, reference)
        return out.get(request.key) or PriceQuote.missing(request.symbol, request.address)


__all__ = [
    "PriceRequest",
    "PriceSource",
    "SymbolPriceSource",
    "AddressPriceSource",
    "ReferenceSource",
    "default_fallbacks",
    "default_reference_sources",
    "PriceBatch",
    "PriceResolver",
]
