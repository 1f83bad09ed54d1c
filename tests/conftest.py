import pytest

from apimarket.ledger import Ledger, Treasury


class FakeClock:
    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def treasury():
    return Treasury()


@pytest.fixture
def ledger(clock, treasury):
    return Ledger(owner="0x00000000000000000000000000000000000000aa", platform_fee_bps=250, treasury=treasury, clock=clock)
