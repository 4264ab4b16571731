"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, scripted remote
doubles, and automatic API test skipping. Environment fixtures are autouse
unless noted.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
import logging
import os
from typing import Any

import pytest

from burstgate.remote.base import RemoteRequest, RemoteResponse

# =============================================================================
# Test Doubles
# =============================================================================


@dataclass
class FakeRemote:
    """Remote test double implementing both ``RemoteCaller`` and ``JobClient``.

    ``responses`` maps a request URL to a scripted sequence of payloads or
    exceptions; once a script runs dry its last entry repeats. ``statuses``
    does the same for job status URLs. In-flight calls are tracked so tests
    can assert on the observed concurrency ceiling.
    """

    responses: dict[str, list[Any]] = field(default_factory=dict)
    statuses: dict[str, list[Any]] = field(default_factory=dict)
    submissions: dict[str, list[Any]] = field(default_factory=dict)
    call_delay_s: float = 0.0
    calls: list[RemoteRequest] = field(default_factory=list)
    status_calls: list[str] = field(default_factory=list)
    submitted: list[tuple[str, Any]] = field(default_factory=list)
    in_flight: int = 0
    peak_in_flight: int = 0
    closed: bool = False

    @staticmethod
    def _next(script: list[Any]) -> Any:
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def call(self, request: RemoteRequest) -> RemoteResponse:
        self.calls.append(request)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.call_delay_s)
            script = self.responses.get(request.url)
            data = {"url": request.url} if not script else self._next(script)
            return RemoteResponse(status_code=200, data=data)
        finally:
            self.in_flight -= 1

    async def submit(self, url: str, payload: Any) -> Any:
        self.submitted.append((url, payload))
        return self._next(self.submissions[url])

    async def check_status(self, status_url: str) -> dict[str, Any]:
        self.status_calls.append(status_url)
        return self._next(self.statuses[status_url])

    async def aclose(self) -> None:
        self.closed = True


def job_doc(
    status: str,
    *,
    url: str = "https://jobs.test/1",
    body: Any = None,
    job_id: str | None = None,
) -> dict[str, Any]:
    """Build a job descriptor / status document the way the remote sends it."""
    doc: dict[str, Any] = {"status": status, "statusUrl": url}
    if job_id is not None:
        doc["id"] = job_id
    if status != "running":
        doc["response"] = {"body": body}
    return doc


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record requested ``asyncio.sleep`` delays while sleeping for zero time."""
    recorded: list[float] = []
    real_sleep = asyncio.sleep

    async def _sleep(delay: float, result: Any = None) -> Any:
        recorded.append(delay)
        await real_sleep(0)
        return result

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    return recorded


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_env(request, monkeypatch):
    """Ensure a clean burstgate environment for each test.

    Clears BURSTGATE_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith("BURSTGATE_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)
