import pytest

from etherview.logging_utils import reset_warn_once_cache


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_warn_once():
    reset_warn_once_cache()
    yield
    reset_warn_once_cache()


@pytest.fixture
def clock():
    return FakeClock()
