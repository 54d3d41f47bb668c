"""Shared fixtures for the azdo_runner test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from azdo_runner.execution import CommandError, CommandResult
from azdo_runner.models import (
    AgentQueue,
    PipelineDefinition,
    PipelineRun,
    Project,
    RunnerConfig,
    RunRequest,
    ServiceConnection,
)
import pytest

# ---------------------------------------------------------------------------
# Factory functions (plain functions, importable from conftest)
# ---------------------------------------------------------------------------


def make_request(**overrides: Any) -> RunRequest:
    """Build a valid RunRequest with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed RunRequest instance.
    """
    defaults: dict[str, Any] = {
        "prefix": "blue-agent",
        "pipeline": "build",
        "flavor": "bookworm",
        "version": "1.2.3",
    }
    defaults.update(overrides)
    return RunRequest(**defaults)


def make_config(**overrides: Any) -> RunnerConfig:
    """Build a valid RunnerConfig with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed RunnerConfig instance.
    """
    defaults: dict[str, Any] = {}
    defaults.update(overrides)
    return RunnerConfig(**defaults)


def make_command_result(**overrides: Any) -> CommandResult:
    """Build a CommandResult for a successful ``az`` call by default."""
    defaults: dict[str, Any] = {
        "args": ["az", "devops", "project", "show"],
        "stdout": "",
        "stderr": "",
        "exit_code": 0,
        "duration_seconds": 0.1,
    }
    defaults.update(overrides)
    return CommandResult(**defaults)


def write_pipeline(workdir: Path, name: str, pipeline_dir: str = "test/pipeline") -> Path:
    """Create an empty pipeline definition file under *workdir*."""
    directory = workdir / pipeline_dir
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.yaml"
    path.write_text("trigger: none\n", encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Manual clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeGit:
    """Stands in for ``GitRepository``."""

    def __init__(
        self,
        branch: str = "main",
        commit: str = "0123456789abcdef0123456789abcdef01234567",
        origin: str = "https://github.com/clemlesne/blue-agent",
    ) -> None:
        self.branch = branch
        self.commit = commit
        self.origin = origin

    def current_branch(self) -> str:
        return self.branch

    def current_commit(self) -> str:
        return self.commit

    def origin_url(self) -> str:
        return self.origin


class FakeDevOpsClient:
    """In-memory ``DevOpsClient`` recording every call.

    Runs report the statuses in ``run_script`` one per ``show_run`` call;
    the last entry repeats forever.
    """

    def __init__(
        self,
        *,
        queues: list[AgentQueue] | None = None,
        run_script: list[tuple[str, str | None]] | None = None,
        validation_results: list[Any] | None = None,
        organization: str | None = "https://dev.azure.com/contoso",
    ) -> None:
        self.projects: dict[str, Project] = {}
        self.endpoints: dict[str, ServiceConnection] = {}
        self.pipelines: dict[str, PipelineDefinition] = {}
        self.queues = (
            queues if queues is not None else [AgentQueue(id=42, name="github-actions")]
        )
        self.run_script = run_script or [("completed", "succeeded")]
        self.validation_results = validation_results or []
        self.organization = organization
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.cancel_error: CommandError | None = None
        self._next_id = 1
        self._polls = 0

    # helpers -------------------------------------------------------------

    def _record(self, _call: str, **kwargs: Any) -> None:
        self.calls.append((_call, kwargs))

    def _new_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def names(self) -> list[str]:
        return [call for call, _ in self.calls]

    # DevOpsClient --------------------------------------------------------

    def organization_url(self) -> str | None:
        self._record("organization_url")
        return self.organization

    def show_project(self, name: str) -> Project | None:
        self._record("show_project", name=name)
        return self.projects.get(name)

    def create_project(self, name: str, *, description: str, visibility: str) -> None:
        self._record(
            "create_project", name=name, description=description, visibility=visibility
        )
        self.projects[name] = Project(
            id=f"project-{self._new_id()}", name=name, visibility=visibility
        )

    def set_default_project(self, project_id: str) -> None:
        self._record("set_default_project", project_id=project_id)

    def list_queues(self) -> list[AgentQueue]:
        self._record("list_queues")
        return list(self.queues)

    def find_service_endpoint(self, name: str) -> ServiceConnection | None:
        self._record("find_service_endpoint", name=name)
        return self.endpoints.get(name)

    def create_github_service_endpoint(self, name: str, *, github_url: str) -> None:
        self._record("create_github_service_endpoint", name=name, github_url=github_url)
        self.endpoints[name] = ServiceConnection(
            id=f"endpoint-{self._new_id()}", name=name, type="github", url=github_url
        )

    def show_pipeline(self, name: str) -> PipelineDefinition | None:
        self._record("show_pipeline", name=name)
        return self.pipelines.get(name)

    def create_pipeline(
        self,
        name: str,
        *,
        description: str,
        branch: str,
        repository_url: str,
        service_connection_id: str,
        yaml_path: str,
    ) -> None:
        self._record(
            "create_pipeline",
            name=name,
            description=description,
            branch=branch,
            repository_url=repository_url,
            service_connection_id=service_connection_id,
            yaml_path=yaml_path,
        )
        self.pipelines[name] = PipelineDefinition(
            id=self._new_id(), name=name, yaml_path=yaml_path, branch=branch
        )

    def authorize_pipeline(self, *, project_id: str, queue_id: int, pipeline_id: int) -> None:
        self._record(
            "authorize_pipeline",
            project_id=project_id,
            queue_id=queue_id,
            pipeline_id=pipeline_id,
        )

    def run_pipeline(
        self, pipeline_id: int, *, commit_id: str, parameters: dict[str, str]
    ) -> PipelineRun:
        self._record(
            "run_pipeline",
            pipeline_id=pipeline_id,
            commit_id=commit_id,
            parameters=parameters,
        )
        self._polls = 0
        return PipelineRun(id=1000 + self._new_id(), status="notStarted")

    def show_run(self, run_id: int) -> PipelineRun:
        self._record("show_run", run_id=run_id)
        status, result = self.run_script[min(self._polls, len(self.run_script) - 1)]
        self._polls += 1
        return PipelineRun(
            id=run_id,
            status=status,
            result=result,
            validationResults=self.validation_results,
        )

    def cancel_run(self, *, project_id: str, run_id: int) -> None:
        self._record("cancel_run", project_id=project_id, run_id=run_id)
        if self.cancel_error is not None:
            raise self.cancel_error


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_client() -> FakeDevOpsClient:
    """Return an empty in-memory platform with the default agent queue."""
    return FakeDevOpsClient()


@pytest.fixture()
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def workdir(tmp_path: Path) -> Path:
    """Working directory holding ``test/pipeline/build.yaml``."""
    write_pipeline(tmp_path, "build")
    return tmp_path
