"""Pipeline runner: input checks, provisioning sequence, run and poll.

Provides ``PipelineRunner`` and the ``run_pipeline()`` convenience entry
point. A run goes through these steps in order, each feeding ids to the
next:

1. validate the four inputs and the pipeline definition file;
2. find or create the project and make it the CLI default;
3. look up the agent pool queue;
4. find or create the GitHub service connection;
5. find or create the pipeline definition;
6. authorize the pipeline on the queue;
7. queue a run at the current commit with ``flavor`` and ``version``;
8. poll until the run completes, cancelling it on timeout.

Resources created before a failure are left in place.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
import os
from pathlib import Path
import time
from typing import Any

from azdo_runner.client import AzureCliClient, DevOpsClient
from azdo_runner.errors import PipelineFileNotFoundError, RunTimeoutError, UsageError
from azdo_runner.git import GitRepository
from azdo_runner.models import RunnerConfig, RunOutcome, RunRequest
from azdo_runner.polling import PollPolicy, wait_for_run
from azdo_runner.provisioning import (
    authorize_pipeline,
    ensure_pipeline,
    ensure_project,
    ensure_service_connection,
    find_agent_queue,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment variable support
# ---------------------------------------------------------------------------

_ENV_FIELD_MAP: dict[str, str] = {
    "AZDO_RUNNER_POOL": "pool_name",
    "AZDO_RUNNER_TIMEOUT": "timeout_seconds",
    "AZDO_RUNNER_POLL_INTERVAL": "poll_interval_seconds",
    "AZDO_RUNNER_LOG_LEVEL": "log_level",
}
"""Maps environment variable names to RunnerConfig field names."""

_INT_FIELDS = frozenset({"timeout_seconds", "poll_interval_seconds"})


def apply_env_overrides(config: RunnerConfig) -> RunnerConfig:
    """Apply ``AZDO_RUNNER_*`` env var overrides to a config.

    Environment variables override **default** field values but do **not**
    override values explicitly set (loaded from YAML or passed to the
    constructor). A field counts as explicitly set when its value differs
    from the ``RunnerConfig`` default.

    Invalid numeric values (non-parseable or < 1) are ignored.

    Args:
        config: The runner configuration to apply overrides to.

    Returns:
        A new ``RunnerConfig`` with env var overrides applied.
    """
    defaults = RunnerConfig()
    overrides: dict[str, Any] = {}

    for env_var, field_name in _ENV_FIELD_MAP.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue

        if getattr(config, field_name) != getattr(defaults, field_name):
            continue

        parsed = _parse_env_value(field_name, env_value)
        if parsed is not None:
            overrides[field_name] = parsed

    if not overrides:
        return config

    return config.model_copy(update=overrides)


def _parse_env_value(field_name: str, raw: str) -> Any:
    """Parse a raw env var string for *field_name*, ``None`` if invalid."""
    if field_name not in _INT_FIELDS:
        return raw.strip() or None

    try:
        value = int(raw)
    except ValueError:
        return None
    if value < 1:
        return None
    return value


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def configure_logging(config: RunnerConfig) -> None:
    """Configure Python logging for the runner.

    Sets up the ``"azdo_runner"`` logger with a console handler and an
    optional file handler. Repeated calls do not duplicate
    handlers.

    Args:
        config: Runner configuration providing ``log_level`` and
            optional ``log_file``.
    """
    runner_logger = logging.getLogger("azdo_runner")
    runner_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    if not any(type(h) is logging.StreamHandler for h in runner_logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        runner_logger.addHandler(console)

    if config.log_file is not None:
        has_file = any(
            isinstance(h, logging.FileHandler)
            and getattr(h, "baseFilename", None) == str(Path(config.log_file).resolve())
            for h in runner_logger.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            runner_logger.addHandler(file_handler)


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def list_available_pipelines(pipeline_dir: Path) -> list[str]:
    """Return the sorted stems of ``*.yaml`` files in *pipeline_dir*."""
    if not pipeline_dir.is_dir():
        return []
    return sorted(p.stem for p in pipeline_dir.glob("*.yaml") if p.is_file())


def validate_request(request: RunRequest, config: RunnerConfig, workdir: Path) -> Path:
    """Check the inputs and the pipeline file before any remote call.

    Args:
        request: The run inputs.
        config: Runner settings providing ``pipeline_dir``.
        workdir: Directory the pipeline path is relative to.

    Returns:
        The absolute path of the pipeline definition file.

    Raises:
        UsageError: If any input is empty.
        PipelineFileNotFoundError: If the definition file does not exist.
    """
    missing = request.missing_fields()
    if missing:
        msg = f"Missing required argument(s): {', '.join(missing)}"
        raise UsageError(msg, diagnostics={"missing": missing})

    relative = request.pipeline_path(config.pipeline_dir)
    pipeline_file = workdir / relative
    if not pipeline_file.is_file():
        available = list_available_pipelines(workdir / config.pipeline_dir)
        msg = f"Pipeline {relative} does not exist"
        raise PipelineFileNotFoundError(
            msg, diagnostics={"pipeline_path": relative, "available": available}
        )
    return pipeline_file


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def build_results_url(organization_url: str | None, project_name: str, run_id: int) -> str | None:
    """Web link to a run's results page, ``None`` without an organization."""
    if not organization_url:
        return None
    return f"{organization_url.rstrip('/')}/{project_name}/_build/results?buildId={run_id}"


class PipelineRunner:
    """Provisions the remote resources for a run request and executes it.

    Attributes:
        client: Remote platform client.
        git: Source-control introspection for branch, commit and origin.
        config: Runner settings.
        workdir: Directory the pipeline definition path is relative to.
    """

    def __init__(
        self,
        client: DevOpsClient,
        git: GitRepository,
        config: RunnerConfig | None = None,
        *,
        workdir: str | Path | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the runner.

        Args:
            client: Remote platform client.
            git: Source-control introspection.
            config: Runner settings, defaults when ``None``.
            workdir: Working directory, the process cwd when ``None``.
            clock: Time source for the poll loop.
            sleep: Sleep function for the poll loop.
        """
        self.client = client
        self.git = git
        self.config = config if config is not None else RunnerConfig()
        self.workdir = Path(workdir) if workdir is not None else Path.cwd()
        self._clock = clock
        self._sleep = sleep

    def run(self, request: RunRequest) -> RunOutcome:
        """Provision, authorize, trigger and poll one pipeline run.

        Args:
            request: The run inputs.

        Returns:
            The ``RunOutcome`` of a run that reached ``completed``, whether
            it succeeded or not.

        Raises:
            UsageError: If inputs are missing.
            PipelineFileNotFoundError: If the definition file is missing.
            AgentPoolNotFoundError: If the agent pool does not exist.
            ProvisioningError: If a created resource cannot be read back.
            RunTimeoutError: If the run does not complete in time.
            CommandError: If any ``az`` or ``git`` call fails.
        """
        validate_request(request, self.config, self.workdir)
        yaml_path = request.pipeline_path(self.config.pipeline_dir)
        logger.info(
            "Running pipeline %s for flavor %s and version %s",
            request.pipeline,
            request.flavor,
            request.version,
        )

        organization_url = self.client.organization_url()
        logger.info(
            "Using project %s in organization %s", request.project_name, organization_url
        )

        project = ensure_project(self.client, request, self.config)
        queue = find_agent_queue(self.client, self.config.pool_name)

        repository_url = self.git.origin_url()
        connection = ensure_service_connection(
            self.client, request.service_connection_name, source_url=repository_url
        )
        pipeline = ensure_pipeline(
            self.client,
            request,
            yaml_path=yaml_path,
            branch=self.git.current_branch(),
            repository_url=repository_url,
            service_connection_id=connection.id,
        )
        authorize_pipeline(self.client, project=project, queue=queue, pipeline=pipeline)

        logger.info("Running pipeline %s", pipeline.name)
        run = self.client.run_pipeline(
            pipeline.id,
            commit_id=self.git.current_commit(),
            parameters={"flavor": request.flavor, "version": request.version},
        )
        results_url = build_results_url(organization_url, project.name, run.id)
        logger.info("Pipeline run id: %d", run.id)
        if results_url:
            logger.info("Results: %s", results_url)

        polled = wait_for_run(
            self.client,
            project_id=project.id,
            run_id=run.id,
            policy=PollPolicy.from_config(self.config),
            clock=self._clock,
            sleep=self._sleep,
        )
        if polled.timed_out:
            msg = (
                f"Pipeline run {run.id} did not complete within "
                f"{self.config.timeout_seconds} seconds"
            )
            raise RunTimeoutError(
                msg,
                diagnostics={
                    "run_id": run.id,
                    "last_status": str(polled.run.status),
                    "elapsed_seconds": round(polled.elapsed_seconds, 1),
                    "cancel_requested": polled.cancel_requested,
                    "results_url": results_url,
                },
            )

        return RunOutcome(
            run_id=polled.run.id,
            status=str(polled.run.status),
            result=None if polled.run.result is None else str(polled.run.result),
            validation_results=polled.run.validation_results,
            elapsed_seconds=polled.elapsed_seconds,
            results_url=results_url,
        )


def run_pipeline(
    request: RunRequest,
    config: RunnerConfig | None = None,
    *,
    workdir: str | Path | None = None,
) -> RunOutcome:
    """Run *request* against the ``az`` CLI of this machine.

    Args:
        request: The run inputs.
        config: Runner settings, defaults when ``None``.
        workdir: Working directory, the process cwd when ``None``.

    Returns:
        The ``RunOutcome`` of the completed run.
    """
    resolved = config if config is not None else RunnerConfig()
    client = AzureCliClient(
        executable=resolved.az_executable,
        api_version=resolved.api_version,
        config_file=resolved.config_file,
        command_timeout=resolved.command_timeout_seconds,
    )
    git = GitRepository(executable=resolved.git_executable, cwd=workdir)
    return PipelineRunner(client, git, resolved, workdir=workdir).run(request)
