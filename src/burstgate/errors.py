"""Exception hierarchy for burstgate."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterator

    from burstgate.batch import BatchResult
    from burstgate.polling import Job


class BurstgateError(Exception):
    """Base exception for all burstgate errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(BurstgateError):
    """Configuration validation or resolution failed."""


class InternalError(BurstgateError):
    """A burstgate internal error (bug) or invariant violation."""


class APIError(BurstgateError):
    """Remote call failed.

    Transports attach status and retry metadata so the retry executor can
    classify failures without brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        phase: str | None = None,
        item_key: Any = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.phase = phase
        self.item_key = item_key


class TransientError(APIError):
    """Network or server hiccup; worth another attempt."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class RateLimitError(TransientError):
    """Rate limit exceeded (HTTP 429)."""


class NotFoundError(APIError):
    """The resource legitimately has no data (HTTP 404)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", False)
        kwargs.setdefault("status_code", 404)
        super().__init__(message, **kwargs)


class JobFailedError(APIError):
    """An asynchronous job reached the ``failed`` terminal status."""

    def __init__(self, message: str, *, job: Job, **kwargs: Any) -> None:
        kwargs.setdefault("retryable", False)
        kwargs.setdefault("phase", "poll")
        super().__init__(message, **kwargs)
        self.job = job


class ExhaustedRetriesError(BurstgateError):
    """Every allowed attempt failed; carries the last underlying error."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        last_error: BaseException,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.attempts = attempts
        self.last_error = last_error


class BatchAbortedError(BurstgateError):
    """A batch failed because one of its items failed.

    ``item_key`` names the first item to fail and ``cause`` is its error.
    ``result`` holds whatever the other pipelines produced.
    """

    def __init__(
        self,
        message: str,
        *,
        item_key: Hashable,
        cause: BaseException,
        result: BatchResult | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.item_key = item_key
        self.cause = cause
        self.result = result


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
