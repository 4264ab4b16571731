"""Batch fan-out/fan-in over independent item pipelines."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from burstgate.errors import APIError, BatchAbortedError, ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Hashable, Iterable, Iterator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemOutcome:
    """Success payload or failure reason for one item."""

    key: Hashable
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResult:
    """Per-item outcomes, recorded in completion order."""

    outcomes: dict[Hashable, ItemOutcome] = field(default_factory=dict)
    completion_order: list[Hashable] = field(default_factory=list)

    def record(self, outcome: ItemOutcome) -> None:
        if outcome.key in self.outcomes:
            raise ConfigurationError(f"Item {outcome.key!r} recorded twice")
        self.outcomes[outcome.key] = outcome
        self.completion_order.append(outcome.key)

    @property
    def successes(self) -> list[Any]:
        """Success payloads in completion order."""
        return [
            self.outcomes[k].value
            for k in self.completion_order
            if self.outcomes[k].ok
        ]

    @property
    def failures(self) -> dict[Hashable, BaseException]:
        return {
            k: o.error for k, o in self.outcomes.items() if o.error is not None
        }

    @property
    def ok(self) -> bool:
        return not self.failures

    def first_failure(self) -> ItemOutcome | None:
        for k in self.completion_order:
            if not self.outcomes[k].ok:
                return self.outcomes[k]
        return None

    def __getitem__(self, key: Hashable) -> ItemOutcome:
        return self.outcomes[key]

    def __contains__(self, key: object) -> bool:
        return key in self.outcomes

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self.completion_order)

    def __len__(self) -> int:
        return len(self.outcomes)


async def run_batch(
    items: Iterable[Any],
    pipeline: Callable[[Any], Awaitable[Any]],
    *,
    key: Callable[[Any], Hashable] | None = None,
    strict: bool = True,
) -> BatchResult:
    """Run *pipeline* for every item concurrently and join on all of them.

    Every pipeline runs to completion; none is cancelled when a sibling
    fails. In strict mode the first item to fail (by completion time) aborts
    the batch with ``BatchAbortedError`` once all pipelines have finished.
    With ``strict=False`` failures are only recorded in the result.
    """
    keyed = [(key(item) if key is not None else item, item) for item in items]
    keys = [k for k, _ in keyed]
    if len(set(keys)) != len(keys):
        raise ConfigurationError(
            "Batch item keys must be unique",
            hint="Pass key=... to derive a unique key per item.",
        )

    result = BatchResult()
    logger.debug("Scheduling %d item pipeline(s) strict=%s", len(keyed), strict)

    async def _run(item_key: Hashable, item: Any) -> None:
        try:
            value = await pipeline(item)
        except Exception as e:
            if isinstance(e, APIError) and e.item_key is None:
                e.item_key = item_key
            logger.warning("Item %r failed: %s", item_key, e)
            result.record(ItemOutcome(key=item_key, error=e))
            return
        result.record(ItemOutcome(key=item_key, value=value))

    tasks = [asyncio.create_task(_run(k, item)) for k, item in keyed]
    gathered = await asyncio.gather(*tasks, return_exceptions=True)
    for item in gathered:
        if isinstance(item, BaseException):
            raise item

    failed = result.first_failure()
    if strict and failed is not None and failed.error is not None:
        cause = failed.error
        raise BatchAbortedError(
            f"Batch aborted: item {failed.key!r} failed: {cause}",
            item_key=failed.key,
            cause=cause,
            result=result,
        ) from cause

    logger.debug(
        "Batch finished: %d succeeded, %d failed",
        len(result.successes),
        len(result.failures),
    )
    return result
