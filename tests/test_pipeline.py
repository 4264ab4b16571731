"""Item pipeline: ordered steps, empty results, job handles, slot scope."""

from __future__ import annotations

import pytest

from burstgate.errors import ConfigurationError, ExhaustedRetriesError, NotFoundError, TransientError
from burstgate.pipeline import ItemPipeline, Step
from burstgate.polling import JobPoller
from burstgate.remote.base import RemoteRequest
from burstgate.retry import RetryPolicy, Verdict
from tests.conftest import FakeRemote, job_doc
from tests.helpers import RecordingAdmission

pytestmark = pytest.mark.unit

_NO_BACKOFF = RetryPolicy(max_attempts=5, initial_delay_s=0.0)


def _details(asin: str) -> RemoteRequest:
    return RemoteRequest(url=f"https://api.test/details/{asin}")


def _offers(asin: str) -> RemoteRequest:
    return RemoteRequest(url=f"https://api.test/offers/{asin}", params={"condition": "new"})


@pytest.mark.asyncio
async def test_steps_run_in_order_and_not_found_maps_to_none() -> None:
    remote = FakeRemote(
        responses={
            "https://api.test/details/B00X": [{"title": "Kettle"}],
            "https://api.test/offers/B00X": [NotFoundError("no offers")],
        }
    )
    pipeline = ItemPipeline(
        remote, steps=[Step("details", _details), Step("offers", _offers)], policy=_NO_BACKOFF
    )

    result = await pipeline("B00X")

    assert result == {"details": {"title": "Kettle"}, "offers": None}
    assert [r.url for r in remote.calls] == [
        "https://api.test/details/B00X",
        "https://api.test/offers/B00X",
    ]
    assert remote.calls[1].params == {"condition": "new"}


@pytest.mark.asyncio
async def test_transient_failures_are_retried_per_step() -> None:
    remote = FakeRemote(
        responses={
            "https://api.test/details/B00X": [
                TransientError("503"),
                TransientError("503"),
                {"title": "Kettle"},
            ],
        }
    )
    pipeline = ItemPipeline(remote, steps=[Step("details", _details)], policy=_NO_BACKOFF)

    assert await pipeline("B00X") == {"details": {"title": "Kettle"}}
    assert len(remote.calls) == 3


@pytest.mark.asyncio
async def test_exhausted_step_fails_the_item_and_skips_later_steps() -> None:
    remote = FakeRemote(responses={"https://api.test/details/B00X": [TransientError("503")]})
    pipeline = ItemPipeline(
        remote, steps=[Step("details", _details), Step("offers", _offers)], policy=_NO_BACKOFF
    )

    with pytest.raises(ExhaustedRetriesError) as exc_info:
        await pipeline("B00X")

    assert exc_info.value.attempts == 5
    assert "details['B00X']" in str(exc_info.value)
    assert all("offers" not in r.url for r in remote.calls)


@pytest.mark.asyncio
async def test_job_handle_is_resolved_inside_the_same_slot() -> None:
    job_url = "https://jobs.test/B00X"
    admission = RecordingAdmission(1)
    remote = FakeRemote(
        responses={"https://api.test/details/B00X": [job_doc("running", url=job_url)]},
        statuses={
            job_url: [
                job_doc("running", url=job_url),
                job_doc("finished", url=job_url, body={"title": "Kettle"}),
            ]
        },
    )
    pipeline = ItemPipeline(
        remote,
        steps=[Step("details", _details)],
        admission=admission,
        policy=_NO_BACKOFF,
        poller=JobPoller(remote, interval_s=0),
    )

    assert await pipeline("B00X") == {"details": {"title": "Kettle"}}
    assert remote.status_calls == [job_url, job_url]
    # One slot covered the call and all of its polling.
    assert admission.acquired == admission.released == 1


@pytest.mark.asyncio
async def test_job_handle_is_returned_raw_without_a_poller() -> None:
    handle = job_doc("running", url="https://jobs.test/B00X")
    remote = FakeRemote(responses={"https://api.test/details/B00X": [handle]})
    pipeline = ItemPipeline(remote, steps=[Step("details", _details)], policy=_NO_BACKOFF)

    assert await pipeline("B00X") == {"details": handle}
    assert remote.status_calls == []


@pytest.mark.asyncio
async def test_step_classifier_overrides_default() -> None:
    remote = FakeRemote(responses={"https://api.test/offers/B00X": [TransientError("blank")]})
    pipeline = ItemPipeline(
        remote,
        steps=[Step("offers", _offers, classify=lambda _e: Verdict.EMPTY)],
        policy=_NO_BACKOFF,
    )

    assert await pipeline("B00X") == {"offers": None}
    assert len(remote.calls) == 1


@pytest.mark.asyncio
async def test_unwrap_single_returns_bare_payload() -> None:
    remote = FakeRemote()
    pipeline = ItemPipeline(
        remote, steps=[Step("details", _details)], policy=_NO_BACKOFF, unwrap_single=True
    )

    assert await pipeline("B00X") == {"url": "https://api.test/details/B00X"}


def test_pipeline_requires_steps() -> None:
    with pytest.raises(ConfigurationError, match="at least one step"):
        ItemPipeline(FakeRemote(), steps=[])


def test_pipeline_rejects_duplicate_step_names() -> None:
    with pytest.raises(ConfigurationError, match="unique"):
        ItemPipeline(FakeRemote(), steps=[Step("a", _details), Step("a", _offers)])
