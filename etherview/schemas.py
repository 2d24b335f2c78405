"""Canonical records exchanged between adapters, resolvers and consumers."""
from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

DEFAULT_CHAIN = "eth"
_CENT = Decimal("0.01")


def now_ms() -> int:
    return int(time.time() * 1000)


def format_quantity(value: Decimal) -> str:
    """Render a token quantity without exponent notation or trailing zeros."""
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def usd(value: Decimal) -> float:
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


# ─────────────────────────────
# Resolution records
# ─────────────────────────────

@dataclass(frozen=True, slots=True)
class TokenContract:
    """An ERC-20 contract referenced by the wallet's transfer history."""
    address: str
    symbol: str
    name: str
    decimals: int = 18
    tx_count: int = 1
    verified: bool = False


@dataclass(slots=True)
class TokenBalance:
    """Balance of one contract for one wallet, as reported by a single source."""
    contract: TokenContract
    raw_quantity: int
    decimals: int
    source: str
    confidence: float
    observed_at: int = field(default_factory=now_ms)
    fallback_used: bool = False
    suspicious: bool = False

    def __post_init__(self) -> None:
        if self.raw_quantity < 0:
            raise ValueError(f"negative balance for {self.contract.address}")

    @property
    def quantity(self) -> Decimal:
        return Decimal(self.raw_quantity).scaleb(-self.decimals)

    @classmethod
    def fallback(cls, contract: TokenContract, decimals: Optional[int] = None) -> "TokenBalance":
        return cls(
            contract=contract,
            raw_quantity=0,
            decimals=contract.decimals if decimals is None else decimals,
            source="fallback_zero",
            confidence=0.0,
            fallback_used=True,
        )


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """USD price for a ``(symbol, address)`` pair with provenance."""
    symbol: str
    address: Optional[str]
    usd_price: float
    source: str
    confidence: float
    observed_at: int = field(default_factory=now_ms)
    no_price_data: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return price_key(self.symbol, self.address)

    @classmethod
    def missing(cls, symbol: str, address: Optional[str]) -> "PriceQuote":
        return cls(
            symbol=symbol,
            address=address,
            usd_price=0.0,
            source="unavailable",
            confidence=0.0,
            no_price_data=True,
        )


def price_key(symbol: Optional[str], address: Optional[str]) -> Tuple[str, str]:
    return ((symbol or "").strip().upper(), (address or "").strip().lower())


# ─────────────────────────────
# Portfolio records
# ─────────────────────────────

@dataclass(frozen=True, slots=True)
class ResolvedToken:
    """One token row in a source list or in the reconciled portfolio."""
    address: Optional[str]
    symbol: str
    name: str
    decimals: int = 18
    balance: Decimal = Decimal(0)
    price_usd: float = 0.0
    verified: bool = False
    chain: str = DEFAULT_CHAIN
    source: str = ""
    confidence: float = 0.0
    price_source: Optional[str] = None
    price_confidence: float = 0.0
    has_no_price_data: bool = False
    fallback_used: bool = False
    suspicious: bool = False

    @property
    def merge_key(self) -> str:
        if self.address:
            return self.address.lower()
        return f"{(self.symbol or 'unknown').lower()}_{self.chain or DEFAULT_CHAIN}"

    @property
    def value_usd(self) -> float:
        if self.price_usd <= 0 or self.balance <= 0:
            return 0.0
        return usd(self.balance * Decimal(str(self.price_usd)))

    def with_price(self, quote: PriceQuote) -> "ResolvedToken":
        return replace(
            self,
            price_usd=quote.usd_price,
            price_source=quote.source,
            price_confidence=quote.confidence,
            has_no_price_data=quote.no_price_data or quote.usd_price <= 0,
        )

    @classmethod
    def from_balance(cls, balance: TokenBalance) -> "ResolvedToken":
        contract = balance.contract
        return cls(
            address=contract.address,
            symbol=contract.symbol,
            name=contract.name,
            decimals=balance.decimals,
            balance=balance.quantity,
            verified=contract.verified,
            source=balance.source,
            confidence=balance.confidence,
            fallback_used=balance.fallback_used,
            suspicious=balance.suspicious,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "address": self.address,
            "decimals": self.decimals,
            "balance": format_quantity(self.balance),
            "priceUSD": self.price_usd,
            "valueUSD": self.value_usd,
            "verified": self.verified,
            "hasNoPriceData": self.has_no_price_data,
            "fallbackUsed": self.fallback_used,
            "suspicious": self.suspicious,
            "source": self.source,
            "confidence": self.confidence,
            "priceSource": self.price_source,
            "priceConfidence": self.price_confidence,
        }


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Resolved holdings of one wallet at ``generated_at`` (epoch ms)."""
    address: str
    eth_balance: Decimal
    eth_value_usd: float
    tokens: Tuple[ResolvedToken, ...]
    generated_at: int
    partial: bool = False

    @property
    def token_count(self) -> int:
        return len(self.tokens)

    @property
    def total_value_usd(self) -> float:
        total = sum((Decimal(str(t.value_usd)) for t in self.tokens), Decimal(0))
        return usd(total + Decimal(str(self.eth_value_usd)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "ethBalance": format_quantity(self.eth_balance),
            "ethValueUSD": self.eth_value_usd,
            "tokens": [token.to_dict() for token in self.tokens],
            "totalValueUSD": self.total_value_usd,
            "tokenCount": self.token_count,
            "generatedAt": self.generated_at,
            "partial": self.partial,
        }


def tokens_from_balances(balances: Iterable[TokenBalance]) -> list[ResolvedToken]:
    return [ResolvedToken.from_balance(b) for b in balances]


__all__ = [
    "DEFAULT_CHAIN",
    "now_ms",
    "format_quantity",
    "usd",
    "price_key",
    "TokenContract",
    "TokenBalance",
    "PriceQuote",
    "ResolvedToken",
    "PortfolioSnapshot",
    "tokens_from_balances",
]
