"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off store and controller doubles as coverage expands.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from burstgate.admission import ConcurrencyToken, LocalAdmissionController

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from burstgate.leases import InMemoryLeaseStore, Lease


@dataclass
class ManualClock:
    """Monotonic clock that only moves when told to."""

    now: float = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingAdmission(LocalAdmissionController):
    """Local controller that counts acquisitions and releases."""

    def __init__(self, max_concurrency: int) -> None:
        super().__init__(max_concurrency)
        self.acquired = 0
        self.released = 0
        self.peak = 0

    async def acquire(self) -> ConcurrencyToken:
        token = await super().acquire()
        self.acquired += 1
        self.peak = max(self.peak, self.in_flight)
        return token

    async def release(self, token: ConcurrencyToken) -> None:
        await super().release(token)
        self.released += 1


@dataclass
class YieldingLeaseStore:
    """Wraps a store and yields to the loop inside ``count``.

    Opens the count-check/append window so two controllers can race past
    the ceiling, the way independent processes can.
    """

    inner: InMemoryLeaseStore

    async def append(self, lease: Lease) -> None:
        await self.inner.append(lease)

    async def count(self) -> int:
        n = await self.inner.count()
        await asyncio.sleep(0)
        return n

    async def remove(self, entry_id: str) -> None:
        await self.inner.remove(entry_id)

    async def aclose(self) -> None:
        await self.inner.aclose()


class _FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._commands: list[tuple[Any, ...]] = []

    async def __aenter__(self) -> _FakePipeline:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None

    def rpush(self, key: str, value: str) -> _FakePipeline:
        self._commands.append(("rpush", key, value))
        return self

    def expire(self, key: str, ttl: int) -> _FakePipeline:
        self._commands.append(("expire", key, ttl))
        return self

    async def execute(self) -> list[Any]:
        self._redis.executed.append(list(self._commands))
        for name, key, arg in self._commands:
            if name == "rpush":
                self._redis.lists[key].append(arg)
            else:
                self._redis.ttls[key] = arg
        return [True] * len(self._commands)


@dataclass
class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for ``RedisLeaseStore``."""

    lists: dict[str, list[str]] = field(default_factory=lambda: defaultdict(list))
    ttls: dict[str, int] = field(default_factory=dict)
    executed: list[list[tuple[Any, ...]]] = field(default_factory=list)
    transactions: list[bool] = field(default_factory=list)
    closed: bool = False

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        self.transactions.append(transaction)
        return _FakePipeline(self)

    async def llen(self, key: str) -> int:
        return len(self.lists[key])

    async def lrem(self, key: str, count: int, value: str) -> int:
        removed = 0
        items = self.lists[key]
        while value in items and removed < count:
            items.remove(value)
            removed += 1
        return removed

    async def aclose(self) -> None:
        self.closed = True


@asynccontextmanager
async def running(*coros: Any) -> AsyncIterator[list[asyncio.Task[Any]]]:
    """Start coroutines as tasks and make sure none outlives the test."""
    tasks = [asyncio.create_task(c) for c in coros]
    try:
        yield tasks
    finally:
        for t in tasks:
            if not t.done():
                t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
