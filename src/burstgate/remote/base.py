"""Remote protocols: the minimal interfaces the orchestration core calls."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]


@dataclass(frozen=True)
class RemoteRequest:
    """One call to the remote API."""

    url: str
    method: HttpMethod = "GET"
    params: dict[str, Any] = field(default_factory=dict)
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RemoteResponse:
    """Decoded response: parsed JSON when the body is JSON, else text."""

    status_code: int
    data: Any
    headers: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class RemoteCaller(Protocol):
    """Synchronous-style calls: one request, one response."""

    async def call(self, request: RemoteRequest) -> RemoteResponse:
        """Perform *request*; failures raise ``APIError`` subclasses."""
        ...


@runtime_checkable
class JobClient(Protocol):
    """Submit-then-poll calls for long-running remote jobs."""

    async def submit(self, url: str, payload: Any) -> Any:
        """Submit a job (or batch of jobs) and return the submission data."""
        ...

    async def check_status(self, status_url: str) -> dict[str, Any]:
        """Return the job status document at *status_url*."""
        ...
