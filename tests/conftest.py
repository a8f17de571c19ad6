"""Shared fixtures for the memory server tests."""

import pytest

from context_echo.core import GraphStore, MemoryService


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def memory_dir(tmp_path):
    return tmp_path / "memory"


@pytest.fixture
def store(memory_dir):
    return GraphStore(memory_dir)


@pytest.fixture
def service(store):
    return MemoryService(store)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
