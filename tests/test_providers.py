import asyncio
from decimal import Decimal

import pytest

from etherview.errors import InvalidResponse, NoBalanceData, NoPriceData, RateLimited
from etherview.providers import (
    CoinbaseClient,
    CoinGeckoClient,
    CryptoCompareClient,
    DexscreenerClient,
    EtherscanClient,
    EthplorerClient,
    ZapperClient,
    build_providers,
)
from etherview.config import load_settings

WALLET = "0x" + "1" * 40
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
OBSCURE = "0x" + "9" * 40


def _stub(monkeypatch, client, payload, calls=None):
    async def fake_get_json(path="", *, params=None, headers=None):
        if calls is not None:
            calls.append((path, dict(params or {}), dict(headers or {})))
        if isinstance(payload, Exception):
            raise payload
        return payload

    monkeypatch.setattr(client, "get_json", fake_get_json)


def test_etherscan_parses_token_transfers(monkeypatch):
    client = EtherscanClient("https://api.test/v2/api", api_key="k")
    calls = []
    _stub(
        monkeypatch,
        client,
        {
            "status": "1",
            "message": "OK",
            "result": [
                {"contractAddress": USDC.upper().replace("0X", "0x"), "tokenSymbol": "USDC", "tokenName": "USD Coin", "tokenDecimal": "6"},
                {"contractAddress": OBSCURE, "tokenSymbol": "ODD", "tokenName": "Odd", "tokenDecimal": ""},
                {"contractAddress": ""},
            ],
        },
        calls,
    )
    transfers = asyncio.run(client.token_transfers(WALLET, page=2, offset=200))

    assert [t.contract_address for t in transfers] == [USDC, OBSCURE]
    assert transfers[0].decimals == 6
    assert transfers[1].decimals is None
    params = calls[0][1]
    assert params["action"] == "tokentx"
    assert params["page"] == 2
    assert params["chainid"] == 1
    assert params["apikey"] == "k"


def test_etherscan_empty_history_is_not_an_error(monkeypatch):
    client = EtherscanClient("https://api.test/v2/api")
    _stub(monkeypatch, client, {"status": "0", "message": "No transactions found", "result": []})
    assert asyncio.run(client.token_transfers(WALLET)) == []


def test_etherscan_rate_limit_message_raises(monkeypatch):
    client = EtherscanClient("https://api.test/v2/api")
    _stub(monkeypatch, client, {"status": "0", "message": "NOTOK", "result": "Max rate limit reached"})
    with pytest.raises(RateLimited):
        asyncio.run(client.token_balance(WALLET, USDC))


def test_etherscan_rejects_negative_balance(monkeypatch):
    client = EtherscanClient("https://api.test/v2/api")
    _stub(monkeypatch, client, {"status": "1", "message": "OK", "result": "-5"})
    with pytest.raises(InvalidResponse):
        asyncio.run(client.token_balance(WALLET, USDC))


def test_etherscan_balances(monkeypatch):
    client = EtherscanClient("https://api.test/v2/api")
    _stub(monkeypatch, client, {"status": "1", "message": "OK", "result": "1500000"})
    balance = asyncio.run(client.token_balance(WALLET, USDC))
    assert balance.raw == 1_500_000
    assert balance.decimals is None
    native = asyncio.run(client.native_balance(WALLET))
    assert native.decimals == 18


def test_ethplorer_token_balance_and_absent_token(monkeypatch):
    client = EthplorerClient("https://ethplorer.test")
    _stub(
        monkeypatch,
        client,
        {"tokens": [{"tokenInfo": {"address": USDC, "decimals": "6"}, "rawBalance": "2500000"}]},
    )
    balance = asyncio.run(client.token_balance(WALLET, USDC))
    assert (balance.raw, balance.decimals) == (2_500_000, 6)

    _stub(monkeypatch, client, {"address": WALLET, "ETH": {"balance": 1}})
    assert asyncio.run(client.token_balance(WALLET, USDC)).raw == 0


def test_ethplorer_holdings_builds_rows(monkeypatch):
    client = EthplorerClient("https://ethplorer.test")
    _stub(
        monkeypatch,
        client,
        {
            "tokens": [
                {
                    "tokenInfo": {"address": USDC, "symbol": "USDC", "name": "USD Coin", "decimals": "6", "price": {"rate": 1.0}},
                    "rawBalance": "3000000",
                },
                {
                    "tokenInfo": {"address": OBSCURE, "symbol": "ODD", "decimals": "18", "price": False},
                    "balance": 2e18,
                },
            ]
        },
    )
    rows = asyncio.run(client.holdings(WALLET))

    usdc, odd = rows
    assert usdc.balance == Decimal(3)
    assert usdc.verified is True
    assert usdc.price_usd == 1.0
    assert usdc.source == "ethplorer"
    assert odd.balance == Decimal(2)
    assert odd.verified is False
    assert odd.has_no_price_data is True


def test_ethplorer_error_payload(monkeypatch):
    client = EthplorerClient("https://ethplorer.test")
    _stub(monkeypatch, client, {"error": {"code": 104, "message": "Invalid address format"}})
    with pytest.raises(InvalidResponse):
        asyncio.run(client.holdings(WALLET))


def test_zapper_finds_token_by_address_or_reports_miss(monkeypatch):
    client = ZapperClient("https://zapper.test", api_key="secret")
    calls = []
    _stub(
        monkeypatch,
        client,
        {WALLET: [{"address": WALLET, "token": {"address": USDC, "symbol": "USDC", "decimals": 6, "balance": "4.5"}}]},
        calls,
    )
    balance = asyncio.run(client.token_balance(WALLET, USDC, symbol="USDC"))
    assert (balance.raw, balance.decimals) == (4_500_000, 6)
    assert calls[0][2]["Authorization"].startswith("Basic ")

    with pytest.raises(NoBalanceData):
        asyncio.run(client.token_balance(WALLET, OBSCURE, symbol="ODD"))


def test_coingecko_token_prices_skip_zero(monkeypatch):
    client = CoinGeckoClient("https://cg.test")
    _stub(monkeypatch, client, {USDC: {"usd": 1.0}, OBSCURE: {"usd": 0}})
    assert asyncio.run(client.token_prices([USDC.upper().replace("0X", "0x"), OBSCURE])) == {USDC: 1.0}


def test_coingecko_rejects_oversized_batches():
    client = CoinGeckoClient("https://cg.test")
    with pytest.raises(ValueError):
        asyncio.run(client.token_prices([f"0x{i:040x}" for i in range(41)]))


def test_coingecko_eth_price(monkeypatch):
    client = CoinGeckoClient("https://cg.test")
    _stub(monkeypatch, client, {"ethereum": {"usd": 2500.5}})
    assert asyncio.run(client.eth_price()) == 2500.5
    _stub(monkeypatch, client, {})
    with pytest.raises(NoPriceData):
        asyncio.run(client.eth_price())


def test_spot_clients(monkeypatch):
    cryptocompare = CryptoCompareClient("https://cc.test")
    coinbase = CoinbaseClient("https://cb.test")
    _stub(monkeypatch, cryptocompare, {"USD": 2500})
    _stub(monkeypatch, coinbase, {"data": {"amount": "2499.99", "currency": "USD"}})
    assert asyncio.run(cryptocompare.symbol_price("eth")) == 2500.0
    assert asyncio.run(coinbase.symbol_price("eth")) == 2499.99

    _stub(monkeypatch, cryptocompare, {"Response": "Error", "Message": "no data"})
    with pytest.raises(NoPriceData):
        asyncio.run(cryptocompare.symbol_price("ODD"))


def test_dexscreener_prefers_most_liquid_pair(monkeypatch):
    client = DexscreenerClient("https://dex.test")
    _stub(
        monkeypatch,
        client,
        {
            "pairs": [
                {"baseToken": {"address": OBSCURE}, "priceUsd": "0.5", "liquidity": {"usd": 100}},
                {"baseToken": {"address": OBSCURE}, "priceUsd": "0.42", "liquidity": {"usd": 90000}},
                {"baseToken": {"address": USDC}, "priceUsd": "9", "liquidity": {"usd": 10**9}},
            ]
        },
    )
    assert asyncio.run(client.token_price(OBSCURE)) == 0.42

    _stub(monkeypatch, client, {"pairs": None})
    with pytest.raises(NoPriceData):
        asyncio.run(client.token_price(OBSCURE))


def test_build_providers_names_explorer_tiers():
    providers = build_providers(load_settings(environ={"ETHERSCAN_API_KEY": "main"}))
    assert providers.explorer.name == "etherscan"
    assert providers.explorer_backup.name == "etherscan_backup"
    # the backup instance reuses the primary key when none is configured
    assert providers.explorer_backup.api_key == "main"
    assert providers.explorer.timeout == 5.0
