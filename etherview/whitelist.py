"""Curated metadata for well-known Ethereum mainnet assets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .addresses import canonical_address


@dataclass(frozen=True, slots=True)
class TokenMeta:
    symbol: str
    name: str
    decimals: int
    verified: bool = True
    fixed_price: Optional[float] = None
    canonical_symbol: Optional[str] = None

    @property
    def pricing_symbol(self) -> str:
        return (self.canonical_symbol or self.symbol).upper()


# Lower-cased contract address -> metadata.
WHITELIST_MAINNET: Dict[str, TokenMeta] = {
    # Stablecoins
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": TokenMeta("USDC", "USD Coin", 6, fixed_price=1.0),
    "0xdac17f958d2ee523a2206206994597c13d831ec7": TokenMeta("USDT", "Tether USD", 6, fixed_price=1.0),
    "0x6b175474e89094c44da98b954eedeac495271d0f": TokenMeta("DAI", "Dai Stablecoin", 18, fixed_price=1.0),
    "0x853d955acef822db058eb8505911ed77f175b99e": TokenMeta("FRAX", "Frax", 18, fixed_price=1.0),
    # Layer 1 and wrapped assets
    "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2": TokenMeta("WETH", "Wrapped Ether", 18, canonical_symbol="ETH"),
    "0x2260fac5e5542a773aa44fbcfedf7c193bc2c599": TokenMeta("WBTC", "Wrapped BTC", 8, canonical_symbol="BTC"),
    "0x7d1afa7b718fb893db30a3abc0cfc608aacfebb0": TokenMeta("MATIC", "Polygon", 18),
    "0xb50721bcf8d664c30412cfbc6cf7a15145234ad1": TokenMeta("ARB", "Arbitrum", 18),
    "0xae7ab96520de3a18e5e111b5eaab095312d7fe84": TokenMeta("stETH", "Lido Staked Ether", 18),
    "0xae78736cd615f374d3085123a210448e74fc6393": TokenMeta("rETH", "Rocket Pool ETH", 18),
    # DeFi blue chips
    "0x514910771af9ca656af840dff83e8264ecf986ca": TokenMeta("LINK", "Chainlink", 18),
    "0x1f9840a85d5af5bf1d1762f925bdaddc4201f984": TokenMeta("UNI", "Uniswap", 18),
    "0x7fc66500c84a76ad7e9c93437bfc5ac33e2ddae9": TokenMeta("AAVE", "Aave", 18),
    "0x9f8f72aa9304c8b593d555f12ef6589cc3a579a2": TokenMeta("MKR", "Maker", 18),
    "0xc00e94cb662c3520282e6f5717214004a7f26888": TokenMeta("COMP", "Compound", 18),
    "0x5a98fcbea516cf06857215779fd812ca3bef1b32": TokenMeta("LDO", "Lido DAO", 18),
    "0xd533a949740bb3306d119cc777fa900ba034cd52": TokenMeta("CRV", "Curve DAO Token", 18),
    "0xba100000625a3754423978a60c9317c58a424e3d": TokenMeta("BAL", "Balancer", 18),
    "0x0bc529c00c6401aef6d220be8c6ea1667f6ad93e": TokenMeta("YFI", "yearn.finance", 18),
    "0x111111111117dc0aa78b770fa6a738034120c302": TokenMeta("1INCH", "1inch", 18),
    # Gaming, infrastructure, meme
    "0x3845badade8e6dff049820680d1f14bd3903a5d0": TokenMeta("SAND", "The Sandbox", 18),
    "0x0f5d2fb29fb7d3cfee444a200298f468908cc942": TokenMeta("MANA", "Decentraland", 18),
    "0xbb0e17ef65f82ab018d8edd776e8dd940327b28b": TokenMeta("AXS", "Axie Infinity Shard", 18),
    "0x0d8775f648430679a709e98d2b0cb6250d2887ef": TokenMeta("BAT", "Basic Attention Token", 18),
    "0x45804880de22913dafe09f4980848ece6ecbaf78": TokenMeta("PAXG", "Paxos Gold", 18),
    "0x95ad61b0a150d79219dcf64e1e6cc01d024db591": TokenMeta("SHIB", "Shiba Inu", 18),
    "0x6982508145454ce325ddbe47a25d4ec3d2311933": TokenMeta("PEPE", "Pepe", 18),
}

# Decimals that override whatever a provider or transfer log reports.
KNOWN_DECIMALS: Dict[str, int] = {
    "USDC": 6,
    "USDT": 6,
    "WBTC": 8,
    "WETH": 18,
    "SHIB": 18,
    "UNI": 18,
    "LINK": 18,
    "AAVE": 18,
    "DAI": 18,
    "MATIC": 18,
    "AVAX": 18,
}

MAJOR_SYMBOLS = frozenset({
    "ETH", "WETH", "BTC", "WBTC", "USDT", "USDC", "DAI", "BUSD",
    "SHIB", "DOGE", "LINK", "UNI", "AAVE", "COMP", "SUSHI", "CRV",
    "MATIC", "AVAX", "FTM", "SOL", "ADA", "DOT", "ATOM",
})

DEFI_SYMBOLS = frozenset({
    "UNI", "SUSHI", "CRV", "1INCH", "AAVE", "COMP", "MKR", "SNX",
    "BAL", "YFI", "LDO", "FXS", "GMX", "GNS", "RDNT",
})

STABLECOIN_SYMBOLS = frozenset({
    "USDC", "USDT", "DAI", "BUSD", "TUSD", "USDP", "FRAX", "LUSD", "GUSD", "PYUSD", "USDS",
})


def get_meta(address: object) -> Optional[TokenMeta]:
    canonical = canonical_address(address)
    if canonical is None:
        return None
    return WHITELIST_MAINNET.get(canonical)


def is_whitelisted(address: object) -> bool:
    return get_meta(address) is not None


# Upper-cased symbol -> the whitelisted contract that owns it.
_SYMBOL_OWNERS: Dict[str, str] = {
    meta.symbol.upper(): address for address, meta in WHITELIST_MAINNET.items()
}


def impersonates_whitelisted(address: object, symbol: Optional[str]) -> bool:
    """``True`` when ``symbol`` belongs to a whitelisted contract other than ``address``.

    Tokens without an address cannot be checked and are never flagged.
    """
    owner = _SYMBOL_OWNERS.get((symbol or "").upper())
    if owner is None:
        return False
    canonical = canonical_address(address)
    return canonical is not None and canonical != owner


def is_major_symbol(symbol: Optional[str]) -> bool:
    return (symbol or "").upper() in MAJOR_SYMBOLS


def is_defi_symbol(symbol: Optional[str]) -> bool:
    return (symbol or "").upper() in DEFI_SYMBOLS


def is_recognized_major(address: object, symbol: Optional[str]) -> bool:
    """Whitelisted, or a major/DeFi symbol not borrowed from a whitelisted contract."""
    if is_whitelisted(address):
        return True
    if impersonates_whitelisted(address, symbol):
        return False
    return is_major_symbol(symbol) or is_defi_symbol(symbol)


def known_decimals(symbol: Optional[str], address: object = None) -> Optional[int]:
    if impersonates_whitelisted(address, symbol):
        return None
    return KNOWN_DECIMALS.get((symbol or "").upper())


def looks_like_stablecoin(
    symbol: Optional[str], name: Optional[str] = None, address: object = None
) -> bool:
    if impersonates_whitelisted(address, symbol):
        return False
    if (symbol or "").upper() in STABLECOIN_SYMBOLS:
        return True
    return "stablecoin" in (name or "").lower()


__all__ = [
    "TokenMeta",
    "WHITELIST_MAINNET",
    "KNOWN_DECIMALS",
    "MAJOR_SYMBOLS",
    "DEFI_SYMBOLS",
    "STABLECOIN_SYMBOLS",
    "get_meta",
    "is_whitelisted",
    "impersonates_whitelisted",
    "is_major_symbol",
    "is_defi_symbol",
    "is_recognized_major",
    "known_decimals",
    "looks_like_stablecoin",
]
