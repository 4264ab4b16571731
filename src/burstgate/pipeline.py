"""Per-item pipelines: admission-gated, retried remote calls.

An item runs its steps in order. Each step attempt occupies one admission
slot for the whole attempt, including job polling when the remote answers
with a job handle, so a slot is never held across a backoff sleep.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from burstgate.errors import ConfigurationError
from burstgate.polling import is_job_handle
from burstgate.retry import RetryExecutor, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from burstgate.admission import AdmissionController
    from burstgate.polling import JobPoller
    from burstgate.remote.base import RemoteCaller, RemoteRequest
    from burstgate.retry import Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Step:
    """One remote call made for every item.

    Attributes:
        name: Key of this step's payload in the item result.
        build_request: Builds the request for an item.
        classify: Optional classifier overriding the executor default.
    """

    name: str
    build_request: Callable[[Any], RemoteRequest]
    classify: Callable[[BaseException], Verdict] | None = None


class ItemPipeline:
    """Callable ``item -> payload`` suitable for :func:`burstgate.batch.run_batch`.

    Returns a mapping of step name to payload; a step whose remote reported
    "not found" maps to None. With ``unwrap_single=True`` and exactly one
    step, the bare payload is returned instead.
    """

    def __init__(
        self,
        remote: RemoteCaller,
        *,
        steps: Sequence[Step],
        admission: AdmissionController | None = None,
        policy: RetryPolicy | None = None,
        poller: JobPoller | None = None,
        unwrap_single: bool = False,
    ) -> None:
        if not steps:
            raise ConfigurationError(
                "ItemPipeline needs at least one step",
                hint="Pass steps=[Step(name, build_request)].",
            )
        names = [s.name for s in steps]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Step names must be unique, got {names}")
        self.remote = remote
        self.steps = tuple(steps)
        self.poller = poller
        self.unwrap_single = unwrap_single
        self.executor = RetryExecutor(policy or RetryPolicy(), admission=admission)

    async def __call__(self, item: Any) -> Any:
        results: dict[str, Any] = {}
        for step in self.steps:
            request = step.build_request(item)
            outcome = await self.executor.execute(
                lambda request=request: self._attempt(request),
                step.classify,
                label=f"{step.name}[{item!r}]",
            )
            if outcome.empty:
                logger.debug("%s[%r] has no data", step.name, item)
            results[step.name] = outcome.value

        if self.unwrap_single and len(self.steps) == 1:
            return results[self.steps[0].name]
        return results

    async def _attempt(self, request: RemoteRequest) -> Any:
        response = await self.remote.call(request)
        data = response.data
        if self.poller is not None and is_job_handle(data):
            return await self.poller.resolve(data)
        return data
