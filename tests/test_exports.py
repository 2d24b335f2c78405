import importlib
from dataclasses import fields

import pytest

from etherview.schemas import TokenContract

MODULES = [
    "etherview.addresses",
    "etherview.balances",
    "etherview.cache",
    "etherview.circuit",
    "etherview.config",
    "etherview.coordinator",
    "etherview.errors",
    "etherview.http",
    "etherview.logging_utils",
    "etherview.merge",
    "etherview.prices",
    "etherview.schemas",
    "etherview.token_discovery",
    "etherview.whitelist",
]


@pytest.mark.parametrize("name", MODULES)
def test_every_exported_name_exists(name):
    module = importlib.import_module(name)
    for attr in getattr(module, "__all__", ()):
        assert hasattr(module, attr), f"{name}.{attr}"


def test_trimmed_helpers_stay_gone():
    from etherview import addresses, cache, http, whitelist

    assert not hasattr(http, "dumps")
    assert not hasattr(cache.CacheStore, "pop")
    assert not hasattr(whitelist, "fixed_price")
    assert not hasattr(addresses, "is_valid_address")
    assert "spam" not in {f.name for f in fields(TokenContract)}
