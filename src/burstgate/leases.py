"""Lease stores: shared, self-expiring slot bookkeeping for admission control.

A store holds one entry per occupied admission slot. The time-to-live covers
the whole collection and is refreshed on every append, so if every holder
stops refreshing (for example after a crash) all entries are reclaimed at
once. Entries still legitimately held by live processes are reclaimed too;
callers tolerate the resulting transient over-admission.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from burstgate.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_LEASE_KEY = "burstgate:leases"


@dataclass(frozen=True)
class Lease:
    """Externally visible form of one admission token."""

    entry_id: str
    ttl_s: float
    granted_at: float = field(default_factory=time.time)


@runtime_checkable
class LeaseStore(Protocol):
    """Minimal capability set the distributed admission controller needs."""

    async def append(self, lease: Lease) -> None:
        """Add *lease* and refresh the collection TTL in one operation."""
        ...

    async def count(self) -> int:
        """Return the number of live entries."""
        ...

    async def remove(self, entry_id: str) -> None:
        """Remove one entry; missing entries are ignored."""
        ...

    async def aclose(self) -> None:
        """Release any connection held by the store."""
        ...


class InMemoryLeaseStore:
    """Process-local lease store with collection-wide expiry.

    Share one instance between several controllers to model independent
    processes. *clock* is injectable so tests can jump past the TTL.
    """

    def __init__(
        self,
        key: str = DEFAULT_LEASE_KEY,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.key = key
        self._clock = clock
        self._entries: list[str] = []
        self._expires_at: float | None = None

    def _expire(self) -> None:
        if self._expires_at is not None and self._clock() >= self._expires_at:
            if self._entries:
                logger.debug(
                    "Lease collection %s expired; reclaiming %d entr(ies)",
                    self.key,
                    len(self._entries),
                )
            self._entries.clear()
            self._expires_at = None

    async def append(self, lease: Lease) -> None:
        self._expire()
        self._entries.append(lease.entry_id)
        self._expires_at = self._clock() + max(0.0, lease.ttl_s)

    async def count(self) -> int:
        self._expire()
        return len(self._entries)

    async def remove(self, entry_id: str) -> None:
        self._expire()
        try:
            self._entries.remove(entry_id)
        except ValueError:
            return
        if not self._entries:
            self._expires_at = None

    async def aclose(self) -> None:
        return None


class RedisLeaseStore:
    """Lease store backed by a Redis list.

    ``append`` runs ``RPUSH`` and ``EXPIRE`` in one ``MULTI`` transaction;
    ``count`` is ``LLEN`` and ``remove`` is ``LREM key 1 entry``.

    Requires: ``pip install redis``
    """

    def __init__(self, client: Any, *, key: str = DEFAULT_LEASE_KEY) -> None:
        self._redis = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, *, key: str = DEFAULT_LEASE_KEY) -> RedisLeaseStore:
        """Create a store with a fresh ``redis.asyncio`` client for *url*."""
        try:
            import redis.asyncio as aioredis
        except ImportError as e:
            raise ConfigurationError(
                "redis package required for distributed admission",
                hint="Install with: pip install redis",
            ) from e

        return cls(aioredis.from_url(url), key=key)

    async def append(self, lease: Lease) -> None:
        # Redis EXPIRE takes whole seconds; round up so a lease never expires early.
        ttl = max(1, math.ceil(lease.ttl_s))
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.rpush(self.key, lease.entry_id)
            pipe.expire(self.key, ttl)
            await pipe.execute()

    async def count(self) -> int:
        return int(await self._redis.llen(self.key))

    async def remove(self, entry_id: str) -> None:
        await self._redis.lrem(self.key, 1, entry_id)

    async def aclose(self) -> None:
        await self._redis.aclose()
