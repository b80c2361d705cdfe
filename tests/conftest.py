import pytest

from tests.fakes import FakeTransport, VirtualClock


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
