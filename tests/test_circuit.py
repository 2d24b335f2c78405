import asyncio

from etherview.circuit import CircuitBreaker, CircuitBreakerRegistry, guarded_call
from etherview.errors import NoPriceData, RateLimited, SourceUnavailable


def test_breaker_opens_after_exactly_threshold_failures(clock):
    breaker = CircuitBreaker("etherscan", threshold=5, cooldown=60, clock=clock)
    for _ in range(4):
        breaker.record_failure()
        assert breaker.allow() is True
    breaker.record_failure()
    assert breaker.allow() is False
    assert breaker.is_open


def test_breaker_allows_trial_call_only_after_cooldown(clock):
    breaker = CircuitBreaker("etherscan", threshold=2, cooldown=60, clock=clock)
    breaker.record_failure()
    breaker.record_failure()

    clock.advance(59.9)
    assert breaker.allow() is False
    clock.advance(0.1)
    assert breaker.allow() is True
    assert breaker.state().failure_count == 0


def test_success_resets_failure_count(clock):
    breaker = CircuitBreaker("coinbase", threshold=3, clock=clock)
    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.allow() is True


def test_trip_uses_given_duration(clock):
    breaker = CircuitBreaker("coingecko", threshold=5, cooldown=60, clock=clock)
    breaker.trip(5)
    assert breaker.allow() is False
    clock.advance(5)
    assert breaker.allow() is True


def test_registry_shares_breakers_and_reports_health(clock):
    registry = CircuitBreakerRegistry(threshold=1, cooldown=10, clock=clock)
    assert registry.get("zapper") is registry.get("zapper")
    registry.record_failure("zapper")
    assert registry.allow("zapper") is False

    health = registry.health_snapshot()
    assert health["zapper"]["open"] is True
    assert health["zapper"]["openings"] == 1
    assert health["zapper"]["cooldown_remaining"] == 10


def test_guarded_call_skips_open_breaker_without_io(clock):
    registry = CircuitBreakerRegistry(threshold=1, cooldown=60, clock=clock)
    registry.record_failure("etherscan")
    calls = []

    async def call():
        calls.append(1)
        return 1

    result = asyncio.run(guarded_call(registry, "etherscan", call, timeout=1))
    assert result is None
    assert calls == []


def test_guarded_call_records_failures_and_rate_limits(clock):
    registry = CircuitBreakerRegistry(threshold=2, cooldown=60, clock=clock)

    async def broken():
        raise SourceUnavailable("down", source="etherscan", status=502)

    async def limited():
        raise RateLimited("slow down", source="coingecko", retry_after=7)

    async def run():
        assert await guarded_call(registry, "etherscan", broken, timeout=1) is None
        assert registry.get("etherscan").state().failure_count == 1
        assert await guarded_call(registry, "coingecko", limited, timeout=1) is None

    asyncio.run(run())
    assert registry.allow("coingecko") is False
    clock.advance(7)
    assert registry.allow("coingecko") is True


def test_guarded_call_treats_missing_data_as_neutral(clock):
    registry = CircuitBreakerRegistry(threshold=1, cooldown=60, clock=clock)

    async def unknown():
        raise NoPriceData("no such symbol", source="coinbase")

    assert asyncio.run(guarded_call(registry, "coinbase", unknown, timeout=1)) is None
    assert registry.allow("coinbase") is True


def test_guarded_call_times_out(clock):
    registry = CircuitBreakerRegistry(threshold=1, cooldown=60, clock=clock)

    async def stall():
        await asyncio.sleep(1)

    assert asyncio.run(guarded_call(registry, "ethplorer", stall, timeout=0.01)) is None
    assert registry.allow("ethplorer") is False


def test_guarded_call_absorbs_unexpected_errors(clock):
    registry = CircuitBreakerRegistry(threshold=1, cooldown=60, clock=clock)

    async def garbled():
        raise ValueError("unexpected payload")

    assert asyncio.run(guarded_call(registry, "cryptocompare", garbled, timeout=1)) is None
    assert registry.get("cryptocompare").state().failure_count == 1
    assert registry.allow("cryptocompare") is False
