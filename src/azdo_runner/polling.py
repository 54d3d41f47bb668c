"""Poll a pipeline run until it completes or the time budget runs out.

The loop checks the run status at a fixed interval with no backoff.
When the budget is exhausted it sends one cancellation request and
returns without waiting for the cancellation to take effect. Status
check failures are not retried.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
import time

from pydantic import BaseModel, ConfigDict, field_validator

from azdo_runner.client import DevOpsClient
from azdo_runner.execution import CommandError
from azdo_runner.models import PipelineRun, RunnerConfig

logger = logging.getLogger(__name__)


class PollPolicy(BaseModel):
    """Fixed-interval polling with an overall deadline.

    Attributes:
        interval_seconds: Delay between two status checks.
        timeout_seconds: Budget measured from the first status check.
    """

    model_config = ConfigDict(frozen=True)

    interval_seconds: float = 5.0
    timeout_seconds: float = 900.0

    @field_validator("interval_seconds", "timeout_seconds")
    @classmethod
    def _must_be_positive(cls, v: float) -> float:
        """Validate that both durations are > 0."""
        if v <= 0:
            msg = "Value must be > 0"
            raise ValueError(msg)
        return v

    @classmethod
    def from_config(cls, config: RunnerConfig) -> PollPolicy:
        return cls(
            interval_seconds=config.poll_interval_seconds,
            timeout_seconds=config.timeout_seconds,
        )


class PollResult(BaseModel):
    """What the poll loop observed last.

    Attributes:
        run: Last run state fetched from the platform.
        elapsed_seconds: Clock delta between loop start and the last check.
        timed_out: Whether the budget ran out before ``completed``.
        cancel_requested: Whether the cancellation call went through.
    """

    model_config = ConfigDict(frozen=True)

    run: PipelineRun
    elapsed_seconds: float
    timed_out: bool = False
    cancel_requested: bool = False


def _request_cancel(client: DevOpsClient, project_id: str, run_id: int) -> bool:
    """Send the cancellation request, logging instead of raising on failure."""
    logger.info("Cancelling pipeline run %d", run_id)
    try:
        client.cancel_run(project_id=project_id, run_id=run_id)
    except CommandError as exc:
        logger.warning("Cancellation of pipeline run %d failed: %s", run_id, exc)
        return False
    return True


def wait_for_run(
    client: DevOpsClient,
    *,
    project_id: str,
    run_id: int,
    policy: PollPolicy,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PollResult:
    """Poll run *run_id* until it is ``completed`` or *policy* times out.

    Args:
        client: Remote platform client.
        project_id: Project of the run, needed for cancellation.
        run_id: Run to poll.
        policy: Interval and timeout.
        clock: Monotonic time source in seconds.
        sleep: Blocks for the given number of seconds.

    Returns:
        A ``PollResult``. ``timed_out`` is set when the deadline passed; in
        that case exactly one cancellation request has been attempted.
    """
    start = clock()
    while True:
        run = client.show_run(run_id)
        elapsed = clock() - start

        if run.is_completed:
            logger.info("Pipeline run %d completed with result %s", run_id, run.result)
            return PollResult(run=run, elapsed_seconds=elapsed)

        if elapsed >= policy.timeout_seconds:
            logger.error(
                "Timeout reached, pipeline run %d did not complete within %ss",
                run_id,
                policy.timeout_seconds,
            )
            cancelled = _request_cancel(client, project_id, run_id)
            return PollResult(
                run=run,
                elapsed_seconds=elapsed,
                timed_out=True,
                cancel_requested=cancelled,
            )

        logger.info(
            "Pipeline run %d is %s, retrying in %ss",
            run_id,
            run.status,
            policy.interval_seconds,
        )
        sleep(policy.interval_seconds)
