"""Async job polling: submit → poll → terminal state.

A submission response is either one job descriptor or a list of them (a
batch)::

    {"id": "...", "status": "running", "statusUrl": "https://..."}

Status documents carry ``status`` and, once terminal, ``response``; the job
payload is ``response["body"]`` when present, else ``response`` itself.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Literal

from burstgate.errors import APIError, JobFailedError

if TYPE_CHECKING:
    from burstgate.remote.base import JobClient

logger = logging.getLogger(__name__)

RUNNING = "running"
FAILED = "failed"

ResultOrder = Literal["completion", "submission"]


def _payload(document: Mapping[str, Any]) -> Any:
    response = document.get("response")
    if isinstance(response, Mapping) and "body" in response:
        return response["body"]
    return response


@dataclass(frozen=True)
class Job:
    """Snapshot of one remote job."""

    id: str | None
    status_url: str
    status: str
    result: Any = None
    is_batch_member: bool = False

    @property
    def running(self) -> bool:
        return self.status == RUNNING

    @property
    def failed(self) -> bool:
        return self.status == FAILED

    @classmethod
    def from_document(
        cls,
        document: Any,
        *,
        is_batch_member: bool = False,
        previous: Job | None = None,
    ) -> Job:
        """Build a job from a descriptor or status document.

        Fields missing from *document* fall back to *previous*.
        """
        if not isinstance(document, Mapping):
            raise APIError(
                f"Job document must be an object, got {type(document).__name__}",
                retryable=False,
                phase="poll",
            )
        status = document.get("status")
        status_url = document.get("statusUrl")
        job_id = document.get("id")
        if previous is not None:
            status_url = status_url or previous.status_url
            job_id = job_id or previous.id
        if not isinstance(status, str) or not isinstance(status_url, str):
            raise APIError(
                "Job document is missing 'status' or 'statusUrl'",
                retryable=False,
                phase="poll",
            )
        return cls(
            id=str(job_id) if job_id is not None else None,
            status_url=status_url,
            status=status,
            result=None if status == RUNNING else _payload(document),
            is_batch_member=is_batch_member,
        )


def is_job_handle(data: Any) -> bool:
    """Return True when *data* is a job descriptor or a batch of them."""
    if isinstance(data, Mapping):
        return isinstance(data.get("statusUrl"), str) and "status" in data
    if isinstance(data, Sequence) and not isinstance(data, (str, bytes)) and data:
        return all(isinstance(d, Mapping) and is_job_handle(d) for d in data)
    return False


class JobPoller:
    """Resolve submission responses by polling status URLs at a fixed interval.

    The poller never retries a failed status query; the error propagates to
    the caller (typically a ``RetryExecutor`` attempt).
    """

    def __init__(
        self,
        client: JobClient,
        *,
        interval_s: float = 2.0,
        settle_delay_s: float | None = None,
        order: ResultOrder = "completion",
    ) -> None:
        if interval_s < 0:
            raise ValueError("JobPoller.interval_s must be >= 0")
        if order not in ("completion", "submission"):
            raise ValueError(f"Unknown result order: {order!r}")
        self.client = client
        self.interval_s = interval_s
        self.settle_delay_s = interval_s if settle_delay_s is None else settle_delay_s
        self.order = order

    async def submit_and_resolve(self, url: str, payload: Any) -> Any:
        """Submit a job, give it a moment to start, then resolve it."""
        submission = await self.client.submit(url, payload)
        if self.settle_delay_s > 0:
            await asyncio.sleep(self.settle_delay_s)
        return await self.resolve(submission)

    async def resolve(self, submission: Any) -> Any:
        """Return the payload of a single job, or a list for a batch."""
        if isinstance(submission, Mapping):
            job = Job.from_document(submission)
            return self._settle(await self._wait(job))
        if isinstance(submission, Sequence) and not isinstance(submission, (str, bytes)):
            if not submission:
                return []
            if is_job_handle(submission):
                return await self._resolve_batch(submission)
        raise APIError(
            "Submission response is not a job descriptor or batch of descriptors",
            retryable=False,
            phase="submit",
        )

    async def _query(self, job: Job) -> Job:
        document = await self.client.check_status(job.status_url)
        updated = Job.from_document(
            document, is_batch_member=job.is_batch_member, previous=job
        )
        logger.debug("Job %s status=%s", updated.id or updated.status_url, updated.status)
        return updated

    async def _wait(self, job: Job) -> Job:
        job = await self._query(job)
        while job.running:
            await asyncio.sleep(self.interval_s)
            job = await self._query(job)
        return job

    def _settle(self, job: Job) -> Any:
        if job.failed:
            raise JobFailedError(f"Job {job.id or job.status_url} failed", job=job)
        return job.result

    async def _resolve_batch(self, descriptors: Sequence[Mapping[str, Any]]) -> list[Any]:
        jobs = [Job.from_document(d, is_batch_member=True) for d in descriptors]
        # Members already terminal were resolved inline by the remote.
        inline = {i: self._settle(job) for i, job in enumerate(jobs) if not job.running}
        pending = [job for job in jobs if job.running]
        if not pending:
            return list(inline.values())

        logger.debug("Polling %d of %d batch member(s)", len(pending), len(jobs))
        completed: list[Any] = []
        errors: list[Exception] = []

        async def _member(job: Job) -> Any:
            try:
                value = self._settle(await self._wait(job))
            except Exception as e:
                errors.append(e)
                raise
            completed.append(value)
            return value

        # Await every member so one failure never leaves siblings unobserved.
        tasks = [asyncio.create_task(_member(job)) for job in pending]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for item in results:
            if isinstance(item, asyncio.CancelledError):
                raise item
        if errors:
            raise errors[0]

        if self.order == "submission":
            polled = iter(results)
            return [inline[i] if i in inline else next(polled) for i in range(len(jobs))]
        return [*inline.values(), *completed]
