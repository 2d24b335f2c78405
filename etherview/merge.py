"""Reconcile independently resolved token lists into one portfolio."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Sequence

from .schemas import PriceQuote, ResolvedToken
from .whitelist import is_recognized_major

logger = logging.getLogger(__name__)

_PLACEHOLDER_SYMBOLS = {"", "UNKNOWN"}


def _merge_pair(current: ResolvedToken, incoming: ResolvedToken) -> ResolvedToken:
    changes: Dict[str, Any] = {"verified": current.verified or incoming.verified}

    if current.symbol.upper() in _PLACEHOLDER_SYMBOLS and incoming.symbol:
        changes["symbol"] = incoming.symbol
    if (not current.name or current.name == current.symbol) and incoming.name:
        changes["name"] = incoming.name
    if not current.address and incoming.address:
        changes["address"] = incoming.address

    # Balance travels with its provenance and decimals.
    take_balance = incoming.balance > 0 or (
        current.fallback_used and not incoming.fallback_used
    )
    if take_balance:
        changes.update(
            balance=incoming.balance,
            decimals=incoming.decimals,
            source=incoming.source,
            confidence=incoming.confidence,
            fallback_used=incoming.fallback_used,
            suspicious=incoming.suspicious,
        )

    price = current.price_usd
    if incoming.price_usd > 0:
        price = incoming.price_usd
        changes.update(
            price_usd=price,
            price_source=incoming.price_source,
            price_confidence=incoming.price_confidence,
        )
    changes["has_no_price_data"] = price <= 0
    return replace(current, **changes)


def merge_token_lists(*lists: Iterable[ResolvedToken]) -> List[ResolvedToken]:
    """Merge source lists by canonical key, in argument order.

    Later non-zero balances and prices overwrite earlier zero or missing
    ones; ``verified`` is OR'ed so the result does not depend on order.
    """
    merged: Dict[str, ResolvedToken] = {}
    for tokens in lists:
        for token in tokens:
            key = token.merge_key
            existing = merged.get(key)
            if existing is None:
                merged[key] = replace(token, has_no_price_data=token.price_usd <= 0)
            else:
                merged[key] = _merge_pair(existing, token)
    return list(merged.values())


def drop_confirmed_zero(tokens: Iterable[ResolvedToken]) -> List[ResolvedToken]:
    """Remove tokens a source positively reported as zero; fallbacks stay."""
    return [t for t in tokens if t.balance > 0 or t.fallback_used]


async def reprice_unpriced(
    tokens: Sequence[ResolvedToken],
    price_one: Callable[[ResolvedToken], Awaitable[PriceQuote]],
) -> List[ResolvedToken]:
    """Give each zero-priced major or whitelisted token one more price attempt."""
    targets = [
        index
        for index, token in enumerate(tokens)
        if token.price_usd <= 0 and is_recognized_major(token.address, token.symbol)
    ]
    result = list(tokens)
    if not targets:
        return result
    quotes = await asyncio.gather(*(price_one(tokens[i]) for i in targets))
    repriced = 0
    for index, quote in zip(targets, quotes):
        if quote.usd_price > 0 and not quote.no_price_data:
            result[index] = result[index].with_price(quote)
            repriced += 1
    logger.debug("Merge: repriced %d/%d zero-priced token(s)", repriced, len(targets))
    return result


def rank_and_truncate(tokens: Iterable[ResolvedToken], limit: int) -> List[ResolvedToken]:
    ordered = sorted(tokens, key=lambda t: t.value_usd, reverse=True)
    return ordered[: max(0, limit)]


async def reconcile(
    lists: Sequence[Iterable[ResolvedToken]],
    *,
    price_one: Callable[[ResolvedToken], Awaitable[PriceQuote]] | None = None,
    display_limit: int = 30,
) -> List[ResolvedToken]:
    merged = drop_confirmed_zero(merge_token_lists(*lists))
    if price_one is not None:
        merged = await reprice_unpriced(merged, price_one)
    return rank_and_truncate(merged, display_limit)


__all__ = [
    "merge_token_lists",
    "drop_confirmed_zero",
    "reprice_unpriced",
    "rank_and_truncate",
    "reconcile",
]
