"""Remote-side error helpers.

Transports attach status and retry metadata via ``APIError`` so the retry
executor can be bounded and deterministic without brittle substring matching.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from burstgate._http import NOT_FOUND_STATUS_CODE, RETRYABLE_STATUS_CODES
from burstgate.errors import (
    APIError,
    NotFoundError,
    RateLimitError,
    TransientError,
    _walk_exception_chain,
)


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a Retry-After delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is None:
            continue
        try:
            raw = headers.get("Retry-After")
        except Exception:
            raw = None
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                continue
            if seconds >= 0:
                return seconds
    return None


def _auth_hint(status_code: int | None) -> str | None:
    if status_code in {401, 403}:
        return "Check credentials (set BURSTGATE_API_KEY or pass Config(api_key=...))."
    return None


def wrap_remote_error(
    exc: BaseException,
    *,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map transport exceptions into ``APIError`` with stable retry metadata.

    404 becomes ``NotFoundError`` and 429 ``RateLimitError``. Retryable
    statuses and transport-level failures become ``TransientError``; anything
    else is a plain ``APIError`` with ``retryable=False``.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    retryable = retry_after_s is not None
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    else:
        for e in _walk_exception_chain(exc):
            if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
                retryable = True
                break

    msg = message or f"remote {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    text = f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}"
    derived_hint = hint if hint is not None else _auth_hint(status_code)

    if status_code == NOT_FOUND_STATUS_CODE:
        return NotFoundError(text, hint=derived_hint, phase=phase)

    err_cls: type[APIError] = TransientError if retryable else APIError
    if status_code == 429:
        err_cls = RateLimitError
    return err_cls(
        text,
        hint=derived_hint,
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        phase=phase,
    )
