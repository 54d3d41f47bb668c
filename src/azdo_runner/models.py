"""Core data models for the Azure DevOps pipeline runner.

Defines the runner configuration, the four-parameter run request, the
remote resources returned by the ``az`` CLI (projects, service
connections, pipeline definitions, agent queues, runs), and the final
run outcome reported by the CLI.

Remote resource models ignore unknown fields so that the raw JSON printed
by ``az`` can be validated directly with ``model_validate``.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RunStatus(StrEnum):
    """Lifecycle status of a pipeline run as reported by Azure DevOps."""

    NOT_STARTED = "notStarted"
    IN_PROGRESS = "inProgress"
    CANCELLING = "cancelling"
    POSTPONED = "postponed"
    COMPLETED = "completed"


class RunResult(StrEnum):
    """Final result of a completed pipeline run."""

    SUCCEEDED = "succeeded"
    PARTIALLY_SUCCEEDED = "partiallySucceeded"
    FAILED = "failed"
    CANCELED = "canceled"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class RunnerConfig(BaseModel):
    """Runner settings, loadable from YAML and ``AZDO_RUNNER_*`` env vars.

    Attributes:
        pool_name: Agent pool (queue) the pipeline is authorized against.
        pipeline_dir: Directory holding ``<pipeline>.yaml`` definitions,
            relative to the working directory.
        poll_interval_seconds: Fixed delay between two run status checks.
        timeout_seconds: Budget for the run to reach ``completed``.
        api_version: API version passed to ``az devops invoke``.
        project_visibility: Visibility of newly created projects.
        project_description_suffix: Appended to new project descriptions.
        az_executable: Name or path of the Azure CLI executable.
        git_executable: Name or path of the git executable.
        config_file: Shared ``azure-devops`` extension config file, locked
            while the default project is written.
        log_level: Logging level string.
        log_file: Optional log file path.
        command_timeout_seconds: Limit on a single ``az`` call, so a hung
            command fails instead of stalling the poll loop.
    """

    model_config = ConfigDict(frozen=True)

    pool_name: str = "github-actions"
    pipeline_dir: str = "test/pipeline"
    poll_interval_seconds: int = 5
    timeout_seconds: int = 900
    api_version: str = "7.1-preview"
    project_visibility: str = "public"
    project_description_suffix: str = ""
    az_executable: str = "az"
    git_executable: str = "git"
    config_file: str = "~/.azure/azuredevops/config"
    log_level: str = "INFO"
    log_file: str | None = None
    command_timeout_seconds: int = 120

    @field_validator("poll_interval_seconds", "timeout_seconds", "command_timeout_seconds")
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        """Validate that poll timings are >= 1."""
        if v < 1:
            msg = "Value must be >= 1"
            raise ValueError(msg)
        return v

    @field_validator("project_visibility")
    @classmethod
    def _known_visibility(cls, v: str) -> str:
        """Validate the project visibility against the values ``az`` accepts."""
        if v not in ("private", "public"):
            msg = f"project_visibility must be 'private' or 'public', got {v!r}"
            raise ValueError(msg)
        return v


class RunRequest(BaseModel):
    """The four positional inputs of one runner invocation.

    Values may be empty strings here; emptiness is rejected by the runner
    before any remote call so the CLI can report every missing argument
    at once.

    Attributes:
        prefix: Name prefix for the remote project.
        pipeline: Pipeline identifier, the stem of the definition file.
        flavor: Build flavor, forwarded as the ``flavor`` run parameter.
        version: Version string, forwarded as the ``version`` run parameter.
    """

    model_config = ConfigDict(frozen=True)

    prefix: str
    pipeline: str
    flavor: str
    version: str

    @property
    def project_name(self) -> str:
        """Remote project name, ``<prefix>-<flavor>``."""
        return f"{self.prefix}-{self.flavor}"

    @property
    def service_connection_name(self) -> str:
        """The service connection shares the project's name."""
        return self.project_name

    @property
    def pipeline_name(self) -> str:
        return self.pipeline

    def pipeline_path(self, pipeline_dir: str) -> str:
        """Repository-relative path of the pipeline YAML definition.

        Args:
            pipeline_dir: Directory holding pipeline definitions.

        Returns:
            A POSIX path such as ``test/pipeline/build.yaml``.
        """
        return (Path(pipeline_dir) / f"{self.pipeline}.yaml").as_posix()

    def missing_fields(self) -> list[str]:
        """Return the names of inputs that are empty strings."""
        return [
            name
            for name in ("prefix", "pipeline", "flavor", "version")
            if not getattr(self, name)
        ]


# ---------------------------------------------------------------------------
# Remote resources
# ---------------------------------------------------------------------------


class _RemoteModel(BaseModel):
    """Base for models parsed from ``az`` JSON output."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class Project(_RemoteModel):
    """An Azure DevOps project."""

    id: str
    name: str
    visibility: str | None = None
    url: str | None = None


class ServiceConnection(_RemoteModel):
    """A service endpoint granting the platform access to a source repository."""

    id: str
    name: str
    type: str | None = None
    url: str | None = None


class AgentQueue(_RemoteModel):
    """A project-scoped agent queue backed by an agent pool."""

    id: int
    name: str


class PipelineDefinition(_RemoteModel):
    """A YAML pipeline (build definition).

    ``az pipelines show`` nests the YAML path under ``process`` and the
    branch under ``repository``; both are flattened here.
    """

    id: int
    name: str
    yaml_path: str | None = None
    branch: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten(cls, data: Any) -> Any:
        """Lift ``process.yamlFilename`` and ``repository.defaultBranch``."""
        if not isinstance(data, dict):
            return data
        flat = dict(data)
        process = data.get("process")
        if isinstance(process, dict) and "yaml_path" not in flat:
            flat["yaml_path"] = process.get("yamlFilename")
        repository = data.get("repository")
        if isinstance(repository, dict) and "branch" not in flat:
            flat["branch"] = repository.get("defaultBranch")
        return flat


class PipelineRun(_RemoteModel):
    """One execution of a pipeline.

    ``status`` and ``result`` fall back to plain strings for values this
    module does not know about, so new platform states never break polling.
    """

    id: int
    status: RunStatus | str | None = None
    result: RunResult | str | None = None
    validation_results: list[Any] = Field(default_factory=list, alias="validationResults")

    @field_validator("validation_results", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        """Treat a JSON ``null`` as no validation results."""
        return [] if v is None else v

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def succeeded(self) -> bool:
        return self.is_completed and self.result == RunResult.SUCCEEDED


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


class RunOutcome(BaseModel):
    """Terminal state of a runner invocation that reached ``completed``.

    Attributes:
        run_id: Id of the pipeline run.
        status: Final run status.
        result: Final run result, or ``None`` if the platform reported none.
        validation_results: Diagnostics attached to the run.
        elapsed_seconds: Seconds spent in the poll loop.
        results_url: Web link to the run, when the organization is known.
    """

    model_config = ConfigDict(frozen=True)

    run_id: int
    status: str
    result: str | None = None
    validation_results: list[Any] = []
    elapsed_seconds: float = 0.0
    results_url: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED and self.result == RunResult.SUCCEEDED
