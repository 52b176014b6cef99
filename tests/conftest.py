import asyncio
import itertools

import pytest

from votebook.guard import LocalVoteGuard, MemoryFlagStore
from votebook.store import RealtimeStore


class RecordingStore(RealtimeStore):
    """A store that remembers which write primitives were called."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls = []

    async def set(self, path, value):
        self.calls.append(("set", path))
        return await super().set(path, value)

    async def transaction(self, path, update_fn, max_retries=None):
        self.calls.append(("transaction", path))
        return await super().transaction(path, update_fn, max_retries)

    async def append(self, path, value):
        self.calls.append(("append", path))
        return await super().append(path, value)


def sequential_keys(prefix="k"):
    """Key generator yielding k01, k02, ... for readable assertions."""
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter):02d}"


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def flags():
    return MemoryFlagStore()


@pytest.fixture
def guard(flags):
    return LocalVoteGuard(flags, "device-1")
