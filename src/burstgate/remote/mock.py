"""Mock remote for offline runs and tests."""

from __future__ import annotations

from typing import Any
import uuid

from burstgate.remote.base import RemoteRequest, RemoteResponse


class MockRemote:
    """Deterministic remote that never touches the network.

    Calls echo the request; submissions come back already terminal and a
    status query returns the same terminal document.
    """

    def __init__(self) -> None:
        self.calls: list[RemoteRequest] = []
        self.submissions: list[tuple[str, Any]] = []
        self._jobs: dict[str, dict[str, Any]] = {}

    async def call(self, request: RemoteRequest) -> RemoteResponse:
        """Return an echo of *request*."""
        self.calls.append(request)
        return RemoteResponse(
            status_code=200,
            data={"url": request.url, "params": dict(request.params)},
        )

    async def submit(self, url: str, payload: Any) -> Any:
        """Return terminal job descriptor(s) echoing *payload*."""
        self.submissions.append((url, payload))
        items = payload.get("items") if isinstance(payload, dict) else None
        if isinstance(items, list):
            return [self._finished(url, item) for item in items]
        return self._finished(url, payload)

    async def check_status(self, status_url: str) -> dict[str, Any]:
        """Report the job as finished."""
        known = self._jobs.get(status_url)
        if known is not None:
            return known
        return {"status": "finished", "statusUrl": status_url, "response": {"body": None}}

    def _finished(self, url: str, payload: Any) -> dict[str, Any]:
        job_id = uuid.uuid4().hex
        status_url = f"mock://jobs/{job_id}"
        document = {
            "id": job_id,
            "status": "finished",
            "statusUrl": status_url,
            "response": {"body": {"url": url, "payload": payload}},
        }
        self._jobs[status_url] = document
        return document
