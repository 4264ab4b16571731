"""Bounded async retry with explicit failure classification.

Design goals:
- Small API surface
- Explicit state (policy + attempt counters)
- Classification by exception type and status code, never by message text
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import enum
import logging
import random
import time
from typing import TYPE_CHECKING, Generic, TypeVar

from burstgate._http import NOT_FOUND_STATUS_CODE, RETRYABLE_STATUS_CODES
from burstgate.errors import (
    APIError,
    ExhaustedRetriesError,
    JobFailedError,
    NotFoundError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from burstgate.admission import AdmissionController

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Verdict(enum.Enum):
    """What the executor should do with a failed attempt."""

    RETRY = "retry"
    EMPTY = "empty"
    FATAL = "fatal"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and optional jitter."""

    max_attempts: int = 5
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True  # "full jitter" when enabled
    max_elapsed_s: float | None = None
    #: When False, ``Verdict.FATAL`` keeps retrying like ``Verdict.RETRY``.
    fail_fast_on_fatal: bool = False

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier <= 0:
            raise ValueError("RetryPolicy.backoff_multiplier must be > 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.max_elapsed_s is not None and self.max_elapsed_s < 0:
            raise ValueError("RetryPolicy.max_elapsed_s must be >= 0 or None")


@dataclass
class RetryState:
    """Mutable per-call attempt bookkeeping."""

    max_attempts: int
    attempt: int = 0
    last_error: BaseException | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of :meth:`RetryExecutor.execute`.

    ``empty=True`` means the remote reported a legitimate absence of data;
    ``value`` is then None and no error is raised.
    """

    value: T | None
    attempts: int
    empty: bool = False


def classify_error(exc: BaseException) -> Verdict:
    """Default classifier: "not found" is empty, everything else retries."""
    if isinstance(exc, NotFoundError):
        return Verdict.EMPTY
    if isinstance(exc, APIError) and exc.status_code == NOT_FOUND_STATUS_CODE:
        return Verdict.EMPTY
    return Verdict.RETRY


def classify_strict(exc: BaseException) -> Verdict:
    """Opt-in classifier that marks clearly non-retryable failures FATAL.

    Only takes effect with ``RetryPolicy(fail_fast_on_fatal=True)``.
    """
    verdict = classify_error(exc)
    if verdict is not Verdict.RETRY:
        return verdict
    if isinstance(exc, JobFailedError):
        return Verdict.FATAL
    if isinstance(exc, APIError):
        if exc.retryable is True:
            return Verdict.RETRY
        code = exc.status_code
        if isinstance(code, int) and 400 <= code < 500:
            if code not in RETRYABLE_STATUS_CODES:
                return Verdict.FATAL
    return Verdict.RETRY


def _retry_after_from_error(exc: BaseException) -> float | None:
    if isinstance(exc, APIError):
        v = exc.retry_after_s
        if isinstance(v, (int, float)) and v >= 0:
            return float(v)
    return None


def _compute_backoff_delay(policy: RetryPolicy, *, retry_index: int) -> float:
    # retry_index starts at 1 for the first retry sleep.
    base = policy.initial_delay_s * (
        policy.backoff_multiplier ** max(0, retry_index - 1)
    )
    base = min(policy.max_delay_s, base)
    if base <= 0:
        return 0.0
    if not policy.jitter:
        return base
    # Full jitter: random in [0, base] to avoid thundering herd.
    return random.random() * base  # noqa: S311


class RetryExecutor:
    """Run operations under a bounded-attempt policy.

    When an admission controller is given, every attempt occupies its own
    slot, released before the backoff sleep and before the loop exits.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        admission: AdmissionController | None = None,
        classify: Callable[[BaseException], Verdict] = classify_error,
    ) -> None:
        self.policy = policy if policy is not None else RetryPolicy()
        self.admission = admission
        self._classify = classify

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        classify: Callable[[BaseException], Verdict] | None = None,
        *,
        label: str | None = None,
    ) -> RetryOutcome[T]:
        """Run *operation* until it succeeds, is empty, or attempts run out."""
        policy = self.policy
        classify = classify if classify is not None else self._classify
        name = label or "operation"
        state = RetryState(max_attempts=policy.max_attempts)
        start = time.monotonic()

        while not state.exhausted:
            state.attempt += 1
            try:
                value = await self._attempt(operation)
            except Exception as exc:
                state.last_error = exc
                verdict = classify(exc)
                if verdict is Verdict.EMPTY:
                    logger.debug(
                        "%s returned no data on attempt %d: %s",
                        name,
                        state.attempt,
                        exc,
                    )
                    return RetryOutcome(value=None, attempts=state.attempt, empty=True)
                if verdict is Verdict.FATAL and policy.fail_fast_on_fatal:
                    raise

                logger.warning(
                    "%s attempt %d/%d failed: %s",
                    name,
                    state.attempt,
                    state.max_attempts,
                    exc,
                )
                if state.exhausted:
                    break

                delay = _compute_backoff_delay(policy, retry_index=state.attempt)
                retry_after = _retry_after_from_error(exc)
                if retry_after is not None:
                    delay = max(delay, retry_after)

                if policy.max_elapsed_s is not None:
                    remaining = policy.max_elapsed_s - (time.monotonic() - start)
                    if remaining <= 0:
                        break
                    delay = min(delay, remaining)

                if delay > 0:
                    await asyncio.sleep(delay)
            else:
                return RetryOutcome(value=value, attempts=state.attempt)

        last_error = state.last_error
        if last_error is None:  # pragma: no cover
            raise RuntimeError("retry loop exited without an error")
        raise ExhaustedRetriesError(
            f"{name} failed after {state.attempt} attempt(s): {last_error}",
            attempts=state.attempt,
            last_error=last_error,
            hint="Check the remote service or raise RetryPolicy.max_attempts.",
        ) from last_error

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.admission is None:
            return await operation()
        async with self.admission.slot():
            return await operation()
