import asyncio
from decimal import Decimal

import pytest

from etherview.config import load_settings
from etherview.coordinator import build_coordinator
from etherview.errors import InvalidAddress, NoBalanceData, NoPriceData, SourceUnavailable
from etherview.providers import Providers
from etherview.providers.base import RawBalance
from etherview.providers.etherscan import TokenTransfer
from etherview.schemas import ResolvedToken

WALLET = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
ODD = "0x" + "9" * 40


class FakeExplorer:
    def __init__(self, name, transfers=(), balances=None, *, native=0, fail=False):
        self.name = name
        self.transfers = list(transfers)
        self.balances = balances or {}
        self.native = native
        self.fail = fail
        self.gate: asyncio.Event | None = None
        self.transfer_calls = 0
        self.balance_calls = 0

    async def token_transfers(self, address, *, page=1, offset=200):
        self.transfer_calls += 1
        gate, self.gate = self.gate, None
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0.01)
        return self.transfers if page == 1 else []

    async def token_balance(self, address, contract):
        self.balance_calls += 1
        if self.fail:
            raise SourceUnavailable("down", source=self.name, status=503)
        value = self.balances.get(contract, 0)
        if value == "stall":
            await asyncio.sleep(10)
        return RawBalance(value)

    async def native_balance(self, address):
        if self.fail:
            raise SourceUnavailable("down", source=self.name, status=503)
        return RawBalance(self.native, 18)


class FakeEthplorer:
    name = "ethplorer"

    def __init__(self, rows=(), *, fail=False):
        self.rows = list(rows)
        self.fail = fail

    async def token_balance(self, address, contract):
        if self.fail:
            raise SourceUnavailable("down", source=self.name, status=503)
        return RawBalance(0)

    async def holdings(self, address):
        return list(self.rows)


class FakeZapper:
    name = "zapper"

    async def token_balance(self, address, contract, **kwargs):
        raise NoBalanceData("not found", source=self.name)


class FakeGecko:
    name = "coingecko"

    def __init__(self, prices=None, eth=2000.0):
        self.prices = prices or {}
        self.eth = eth

    async def token_prices(self, addresses):
        return {a: self.prices[a] for a in addresses if a in self.prices}

    async def eth_price(self):
        return self.eth


class FakeSpot:
    def __init__(self, name):
        self.name = name

    async def symbol_price(self, symbol):
        raise NoPriceData("unknown", source=self.name)

    async def token_price(self, address):
        raise NoPriceData("unknown", source=self.name)


def _transfers():
    return [
        TokenTransfer(USDC, "USDC", "USD Coin", 6),
        TokenTransfer(USDC, "USDC", "USD Coin", 6),
        TokenTransfer(ODD, "ODD", "Odd Token", 18),
    ]


def _providers(**overrides):
    providers = dict(
        explorer=FakeExplorer("etherscan", _transfers(), {USDC: 1_000_000, ODD: 2 * 10**18}, native=10**18),
        explorer_backup=FakeExplorer("etherscan_backup", fail=True),
        ethplorer=FakeEthplorer(),
        zapper=FakeZapper(),
        coingecko=FakeGecko({ODD: 3.0}),
        cryptocompare=FakeSpot("cryptocompare"),
        coinbase=FakeSpot("coinbase"),
        dexscreener=FakeSpot("dexscreener"),
    )
    providers.update(overrides)
    return Providers(**providers)


def _coordinator(providers=None, **settings):
    settings.setdefault("request_budget", 5.0)
    settings.setdefault("request_timeout", 1.0)
    return build_coordinator(load_settings(environ={}, **settings), providers=providers or _providers())


def test_snapshot_shape_and_totals():
    coordinator = _coordinator()
    data = asyncio.run(coordinator.get_portfolio_dict(WALLET))

    assert data["address"] == WALLET.lower()
    assert data["ethBalance"] == "1"
    assert data["ethValueUSD"] == 2000.0
    assert [t["symbol"] for t in data["tokens"]] == ["ODD", "USDC"]
    usdc = data["tokens"][1]
    assert usdc["balance"] == "1"
    assert usdc["priceUSD"] == 1.0
    assert usdc["valueUSD"] == 1.0
    assert usdc["verified"] is True
    assert usdc["decimals"] == 6
    assert set(usdc) == {
        "symbol", "name", "address", "decimals", "balance", "priceUSD", "valueUSD",
        "verified", "hasNoPriceData", "fallbackUsed", "suspicious", "source",
        "confidence", "priceSource", "priceConfidence",
    }
    assert data["totalValueUSD"] == 2007.0
    assert data["tokenCount"] == 2
    assert data["partial"] is False
    assert isinstance(data["generatedAt"], int)


def test_repeated_calls_within_ttl_return_cached_snapshot():
    providers = _providers()
    coordinator = _coordinator(providers)

    async def run():
        first = await coordinator.get_portfolio(WALLET)
        second = await coordinator.get_portfolio(WALLET.lower())
        return first, second

    first, second = asyncio.run(run())
    assert second is first
    assert providers.explorer.transfer_calls == 1


def test_force_refresh_invalidates_and_advances_generated_at():
    providers = _providers()
    coordinator = _coordinator(providers)

    async def run():
        first = await coordinator.get_portfolio(WALLET)
        second = await coordinator.get_portfolio(WALLET, force_refresh=True)
        third = await coordinator.get_portfolio(WALLET, force_refresh=True)
        return first, second, third

    first, second, third = asyncio.run(run())
    assert first.generated_at < second.generated_at < third.generated_at
    assert providers.explorer.transfer_calls == 3
    assert providers.explorer.balance_calls == 6


def test_concurrent_requests_share_one_resolution():
    providers = _providers()
    coordinator = _coordinator(providers)

    async def run():
        return await asyncio.gather(*(coordinator.get_portfolio(WALLET) for _ in range(5)))

    results = asyncio.run(run())
    assert all(result is results[0] for result in results)
    assert providers.explorer.transfer_calls == 1


def test_every_balance_source_failing_still_returns_token():
    providers = _providers(ethplorer=FakeEthplorer(fail=True))

    async def failing_balance(address, contract):
        raise SourceUnavailable("down", source="etherscan", status=500)

    providers.explorer.token_balance = failing_balance
    coordinator = _coordinator(providers, breaker_threshold=100)
    data = asyncio.run(coordinator.get_portfolio_dict(WALLET))

    odd = next(t for t in data["tokens"] if t["symbol"] == "ODD")
    assert odd["balance"] == "0"
    assert odd["fallbackUsed"] is True
    assert odd["source"] == "fallback_zero"
    assert odd["confidence"] == 0.0


def test_invalid_address_fails_before_network_work():
    providers = _providers()
    coordinator = _coordinator(providers)
    with pytest.raises(InvalidAddress):
        asyncio.run(coordinator.get_portfolio("0x1234"))
    assert providers.explorer.transfer_calls == 0


def test_budget_expiry_returns_partial_snapshot():
    providers = _providers(
        explorer=FakeExplorer("etherscan", _transfers(), {USDC: 1_000_000, ODD: "stall"}, native=10**18)
    )
    coordinator = _coordinator(providers, request_budget=0.3, request_timeout=5.0)
    snapshot = asyncio.run(coordinator.get_portfolio(WALLET))

    assert snapshot.partial is True
    odd = next(t for t in snapshot.tokens if t.symbol == "ODD")
    assert odd.fallback_used is True
    assert odd.balance == Decimal(0)


def test_older_inflight_result_does_not_replace_newer_snapshot():
    providers = _providers()
    coordinator = _coordinator(providers)

    async def run():
        gate = asyncio.Event()
        providers.explorer.gate = gate
        slow = asyncio.create_task(coordinator.get_portfolio(WALLET))
        await asyncio.sleep(0.01)
        forced = await coordinator.get_portfolio(WALLET, force_refresh=True)
        gate.set()
        stale = await slow
        cached = await coordinator.get_portfolio(WALLET)
        return forced, stale, cached

    forced, stale, cached = asyncio.run(run())
    assert stale is not forced
    assert cached is forced


def test_holdings_list_is_merged_in():
    extra = ResolvedToken(
        address="0x" + "c" * 40,
        symbol="EXTRA",
        name="Extra",
        balance=Decimal(10),
        price_usd=5.0,
        source="ethplorer",
        confidence=0.85,
        price_source="ethplorer",
        price_confidence=0.65,
    )
    coordinator = _coordinator(_providers(ethplorer=FakeEthplorer([extra])))
    snapshot = asyncio.run(coordinator.get_portfolio(WALLET))
    assert snapshot.tokens[0].symbol == "EXTRA"
    assert snapshot.token_count == 3


def test_health_reports_breakers_and_cache():
    coordinator = _coordinator()
    asyncio.run(coordinator.get_portfolio(WALLET))
    health = coordinator.health()
    assert "etherscan" in health["breakers"]
    assert health["cache"]["entries"] > 0
    assert health["inflight"] == {}
