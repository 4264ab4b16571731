"""burstgate: bursts of calls to a rate-limited API, within a concurrency ceiling.

Public API:
    - run_batch(): Fan items out over admission-gated, retried pipelines
    - submit_jobs(): Submit async jobs and poll them to completion
    - Config: Configuration dataclass
    - Step: One remote call per item
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from burstgate.admission import (
    AdmissionController,
    ConcurrencyToken,
    DistributedAdmissionController,
    LocalAdmissionController,
    build_admission,
)
from burstgate.batch import BatchResult, ItemOutcome
from burstgate.batch import run_batch as _run_batch
from burstgate.config import Config
from burstgate.errors import (
    APIError,
    BatchAbortedError,
    BurstgateError,
    ConfigurationError,
    ExhaustedRetriesError,
    InternalError,
    JobFailedError,
    NotFoundError,
    RateLimitError,
    TransientError,
)
from burstgate.leases import InMemoryLeaseStore, Lease, LeaseStore, RedisLeaseStore
from burstgate.pipeline import ItemPipeline, Step
from burstgate.polling import Job, JobPoller
from burstgate.remote.base import JobClient, RemoteRequest
from burstgate.retry import RetryExecutor, RetryOutcome, RetryPolicy, Verdict

if TYPE_CHECKING:
    from collections.abc import Callable, Hashable, Iterable, Mapping, Sequence

    from burstgate.remote.base import RemoteCaller

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("burstgate")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("burstgate").addHandler(logging.NullHandler())

logger = logging.getLogger(__name__)


async def run_batch(
    items: Iterable[Any],
    *,
    steps: Sequence[Step],
    config: Config,
    key: Callable[[Any], Hashable] | None = None,
    strict: bool = True,
    unwrap_single: bool = False,
    remote: RemoteCaller | None = None,
    admission: AdmissionController | None = None,
) -> BatchResult:
    """Run every step for every item under the configured concurrency ceiling.

    Args:
        items: Items to process; each must map to a unique key.
        steps: Remote calls made per item, in order.
        config: Configuration (ceiling, retries, polling, endpoints).
        key: Derives an item's key; defaults to the item itself.
        strict: Abort the whole batch when any item fails.
        unwrap_single: With one step, store bare payloads instead of dicts.
        remote: Override the remote built from *config*.
        admission: Override the admission controller built from *config*.

    Returns:
        BatchResult with one outcome per item.

    Example:
        config = Config(base_url="https://api.example.com", max_concurrency=5)
        details = Step("details", lambda sku: RemoteRequest(f"/products/{sku}"))
        result = await run_batch(["A1", "B2"], steps=[details], config=config)
        for payload in result.successes:
            print(payload["details"])
    """
    owned: list[Any] = []
    try:
        if remote is None:
            remote = _get_remote(config)
            owned.append(remote)
        if admission is None:
            admission = build_admission(config)
            if isinstance(admission, DistributedAdmissionController):
                owned.append(admission.store)

        poller = None
        if isinstance(remote, JobClient):
            poller = JobPoller(
                remote,
                interval_s=config.job_poll_interval_s,
                order=config.result_order,
            )
        pipeline = ItemPipeline(
            remote,
            steps=steps,
            admission=admission,
            policy=config.retry,
            poller=poller,
            unwrap_single=unwrap_single,
        )
        return await _run_batch(items, pipeline, key=key, strict=strict)
    finally:
        await _close_all(owned)


async def submit_jobs(
    jobs: Mapping[str, tuple[str, Any]],
    *,
    config: Config,
    strict: bool = True,
    remote: JobClient | None = None,
) -> BatchResult:
    """Submit several async jobs concurrently and poll each to completion.

    Args:
        jobs: Maps a name to ``(submission_url, payload)``.
        config: Configuration (poll interval, result order, endpoints).
        strict: Abort when any job fails.
        remote: Override the job client built from *config*.

    Returns:
        BatchResult keyed by job name; batch submissions resolve to lists.
    """
    owned: list[Any] = []
    try:
        if remote is None:
            remote = _get_remote(config)
            owned.append(remote)
        poller = JobPoller(
            remote,
            interval_s=config.job_poll_interval_s,
            order=config.result_order,
        )

        async def _submit(name: str) -> Any:
            url, payload = jobs[name]
            return await poller.submit_and_resolve(url, payload)

        return await _run_batch(list(jobs), _submit, strict=strict)
    finally:
        await _close_all(owned)


async def _close_all(resources: list[Any]) -> None:
    for resource in resources:
        aclose = getattr(resource, "aclose", None)
        if not callable(aclose):
            continue
        try:
            await aclose()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Cleanup should never mask the primary failure.
            logger.warning("Cleanup of %s failed: %s", type(resource).__name__, exc)


def _get_remote(config: Config) -> Any:
    """Get the appropriate remote based on configuration."""
    if config.use_mock:
        from burstgate.remote.mock import MockRemote

        return MockRemote()

    from burstgate.remote.http import HttpRemote

    if not config.api_key:
        raise ConfigurationError(
            "api_key required for real API",
            hint="Set BURSTGATE_API_KEY or pass Config(api_key=...).",
        )
    return HttpRemote(
        config.base_url,
        api_key=config.api_key,
        timeout_s=config.request_timeout_s,
    )


# Re-export for convenience
__all__ = [
    "APIError",
    "AdmissionController",
    "BatchAbortedError",
    "BatchResult",
    "BurstgateError",
    "ConcurrencyToken",
    "Config",
    "ConfigurationError",
    "DistributedAdmissionController",
    "ExhaustedRetriesError",
    "InMemoryLeaseStore",
    "InternalError",
    "ItemOutcome",
    "ItemPipeline",
    "Job",
    "JobFailedError",
    "JobPoller",
    "Lease",
    "LeaseStore",
    "LocalAdmissionController",
    "NotFoundError",
    "RateLimitError",
    "RedisLeaseStore",
    "RemoteRequest",
    "RetryExecutor",
    "RetryOutcome",
    "RetryPolicy",
    "Step",
    "TransientError",
    "Verdict",
    "run_batch",
    "submit_jobs",
]
