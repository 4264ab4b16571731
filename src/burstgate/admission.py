"""Admission control: cap the number of simultaneously outstanding calls.

Two controllers share one contract:

- ``LocalAdmissionController`` keeps an exact in-process ceiling.
- ``DistributedAdmissionController`` shares a ceiling across processes via a
  ``LeaseStore``. Count-check and append are not atomic across processes, so
  brief over-admission is possible and is not an error.

Use the scoped form so every exit path releases the slot::

    async with controller.slot() as token:
        ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING, Protocol, runtime_checkable
import uuid

from burstgate.errors import ConfigurationError, InternalError
from burstgate.leases import Lease, LeaseStore, RedisLeaseStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager

    from burstgate.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConcurrencyToken:
    """Opaque handle for one occupied admission slot."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: float = field(default_factory=time.time)


@runtime_checkable
class AdmissionController(Protocol):
    """Acquire/release contract shared by local and distributed controllers."""

    @property
    def max_concurrency(self) -> int: ...

    async def acquire(self) -> ConcurrencyToken:
        """Wait for a free slot and occupy it."""
        ...

    async def release(self, token: ConcurrencyToken) -> None:
        """Free the slot held by *token*."""
        ...

    def slot(self) -> AbstractAsyncContextManager[ConcurrencyToken]:
        """Async context manager around acquire/release."""
        ...


def _require_positive(max_concurrency: int) -> int:
    if not isinstance(max_concurrency, int) or max_concurrency < 1:
        raise ConfigurationError(
            f"max_concurrency must be an int ≥ 1, got {max_concurrency!r}",
            hint="This is the account-wide ceiling on simultaneous calls.",
        )
    return max_concurrency


class _ScopedSlots(ABC):
    """Base for controllers: subclasses supply acquire/release, ``slot()`` scopes them."""

    @abstractmethod
    async def acquire(self) -> ConcurrencyToken: ...

    @abstractmethod
    async def release(self, token: ConcurrencyToken) -> None: ...

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[ConcurrencyToken]:
        token = await self.acquire()
        try:
            yield token
        finally:
            await self.release(token)


class LocalAdmissionController(_ScopedSlots):
    """In-process ceiling on outstanding tokens.

    Waiters sleep on a condition notified by ``release``. Wake-up order is
    not FIFO.
    """

    def __init__(self, max_concurrency: int) -> None:
        self._max = _require_positive(max_concurrency)
        self._outstanding: dict[str, ConcurrencyToken] = {}
        self._cond = asyncio.Condition()

    @property
    def max_concurrency(self) -> int:
        return self._max

    @property
    def in_flight(self) -> int:
        """Number of tokens currently outstanding."""
        return len(self._outstanding)

    async def acquire(self) -> ConcurrencyToken:
        async with self._cond:
            await self._cond.wait_for(lambda: len(self._outstanding) < self._max)
            token = ConcurrencyToken()
            self._outstanding[token.id] = token
            logger.debug(
                "Slot granted token=%s in_flight=%d/%d",
                token.id,
                len(self._outstanding),
                self._max,
            )
            return token

    async def release(self, token: ConcurrencyToken) -> None:
        async with self._cond:
            if self._outstanding.pop(token.id, None) is None:
                raise InternalError(
                    f"Token {token.id} released twice or never acquired",
                    hint="Release each token exactly once; prefer `async with slot()`.",
                )
            logger.debug(
                "Slot released token=%s in_flight=%d/%d",
                token.id,
                len(self._outstanding),
                self._max,
            )
            self._cond.notify_all()


class DistributedAdmissionController(_ScopedSlots):
    """Ceiling shared by independent processes through a lease store.

    Waiting is fixed-interval polling of ``store.count()``: the store lives
    outside this process and cannot signal a release.
    """

    def __init__(
        self,
        store: LeaseStore,
        max_concurrency: int,
        *,
        ttl_s: float = 70.0,
        poll_interval_s: float = 0.2,
    ) -> None:
        if ttl_s <= 0:
            raise ConfigurationError(
                f"ttl_s must be > 0, got {ttl_s}",
                hint="Pick a TTL well above one call's latency plus retry backoff.",
            )
        if poll_interval_s < 0:
            raise ConfigurationError(f"poll_interval_s must be ≥ 0, got {poll_interval_s}")
        self.store = store
        self._max = _require_positive(max_concurrency)
        self.ttl_s = ttl_s
        self.poll_interval_s = poll_interval_s
        self._held: set[str] = set()

    @property
    def max_concurrency(self) -> int:
        return self._max

    @property
    def held(self) -> int:
        """Number of leases this controller currently holds."""
        return len(self._held)

    async def acquire(self) -> ConcurrencyToken:
        token = ConcurrencyToken()
        while await self.store.count() >= self._max:
            await asyncio.sleep(self.poll_interval_s)
        await self.store.append(
            Lease(entry_id=token.id, ttl_s=self.ttl_s, granted_at=token.acquired_at)
        )
        self._held.add(token.id)
        logger.debug("Lease granted token=%s ttl=%.1fs", token.id, self.ttl_s)
        return token

    async def release(self, token: ConcurrencyToken) -> None:
        if token.id not in self._held:
            raise InternalError(
                f"Token {token.id} released twice or never acquired",
                hint="Release each token exactly once; prefer `async with slot()`.",
            )
        self._held.discard(token.id)
        await self.store.remove(token.id)
        logger.debug("Lease released token=%s", token.id)


def build_admission(config: Config) -> LocalAdmissionController | DistributedAdmissionController:
    """Return the controller *config* asks for.

    A configured ``redis_url`` selects the distributed controller.
    """
    if config.redis_url:
        store = RedisLeaseStore.from_url(config.redis_url, key=config.lease_key)
        return DistributedAdmissionController(
            store,
            config.max_concurrency,
            ttl_s=config.lease_ttl_s,
            poll_interval_s=config.slot_poll_interval_s,
        )
    return LocalAdmissionController(config.max_concurrency)
