"""Typed client over the Azure DevOps control plane.

``DevOpsClient`` is the protocol the provisioning and polling code talks
to. ``AzureCliClient`` implements it by shelling out to ``az`` (with the
``azure-devops`` extension) and validating the JSON it prints into the
models from ``azdo_runner.models``.

Two operations have no dedicated ``az`` subcommand and go through the
generic ``az devops invoke`` route instead: authorizing a pipeline on an
agent queue and cancelling a run. Replace them with first-class commands
once the CLI grows them.

Refs:
    https://github.com/Azure/azure-cli/issues/28111
    https://github.com/Azure/azure-devops-cli-extension/issues/876
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any, Protocol, runtime_checkable

from azdo_runner.execution import CommandError, CommandResult, run_command
from azdo_runner.locking import exclusive_file_lock
from azdo_runner.models import (
    AgentQueue,
    PipelineDefinition,
    PipelineRun,
    Project,
    ServiceConnection,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class DevOpsClient(Protocol):
    """Operations the runner needs from the remote platform.

    Lookups return ``None`` when the resource does not exist. Create
    calls return nothing; callers re-read the resource by name.
    """

    def organization_url(self) -> str | None: ...  # noqa: D102

    def show_project(self, name: str) -> Project | None: ...  # noqa: D102

    def create_project(  # noqa: D102
        self, name: str, *, description: str, visibility: str
    ) -> None: ...

    def set_default_project(self, project_id: str) -> None: ...  # noqa: D102

    def list_queues(self) -> list[AgentQueue]: ...  # noqa: D102

    def find_service_endpoint(self, name: str) -> ServiceConnection | None: ...  # noqa: D102

    def create_github_service_endpoint(self, name: str, *, github_url: str) -> None: ...  # noqa: D102

    def show_pipeline(self, name: str) -> PipelineDefinition | None: ...  # noqa: D102

    def create_pipeline(  # noqa: D102
        self,
        name: str,
        *,
        description: str,
        branch: str,
        repository_url: str,
        service_connection_id: str,
        yaml_path: str,
    ) -> None: ...

    def authorize_pipeline(  # noqa: D102
        self, *, project_id: str, queue_id: int, pipeline_id: int
    ) -> None: ...

    def run_pipeline(  # noqa: D102
        self, pipeline_id: int, *, commit_id: str, parameters: dict[str, str]
    ) -> PipelineRun: ...

    def show_run(self, run_id: int) -> PipelineRun: ...  # noqa: D102

    def cancel_run(self, *, project_id: str, run_id: int) -> None: ...  # noqa: D102


def _parse_organization(configure_list_output: str) -> str | None:
    """Extract the ``organization = <url>`` default from ``az devops configure --list``.

    Args:
        configure_list_output: Raw text printed by the command.

    Returns:
        The organization URL, or ``None`` when no default is configured.
    """
    for line in configure_list_output.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() == "organization":
            value = value.strip()
            return value or None
    return None


class AzureCliClient:
    """``DevOpsClient`` backed by the ``az`` command line.

    Project-scoped commands rely on the default project written by
    ``set_default_project()``, exactly as an interactive ``az`` session
    would.

    Attributes:
        executable: Name or path of the Azure CLI executable.
        api_version: API version used for ``az devops invoke`` routes.
        config_file: Shared extension config file locked while defaults
            are written.
        command_timeout: Seconds before a single ``az`` call is killed.
    """

    def __init__(
        self,
        *,
        executable: str = "az",
        api_version: str = "7.1-preview",
        config_file: str = "~/.azure/azuredevops/config",
        command_timeout: float | None = 120,
    ) -> None:
        """Initialize the client.

        Args:
            executable: Name or path of the Azure CLI executable.
            api_version: API version used for ``az devops invoke`` routes.
            config_file: Shared extension config file.
            command_timeout: Seconds before a single ``az`` call is
                killed, ``None`` for no limit.
        """
        self.executable = executable
        self.api_version = api_version
        self.config_file = config_file
        self.command_timeout = command_timeout

    # -- transport ----------------------------------------------------------

    def _az(self, *args: str, check: bool = True) -> CommandResult:
        return run_command(
            [self.executable, *args], check=check, timeout=self.command_timeout
        )

    def _az_json(self, *args: str) -> Any:
        result = self._az(*args, "--output", "json")
        if not result.stdout.strip():
            return None
        return json.loads(result.stdout)

    def invoke(
        self,
        *,
        area: str,
        resource: str,
        http_method: str,
        route_parameters: dict[str, str],
        body: dict[str, Any],
    ) -> Any:
        """Call an arbitrary REST route through ``az devops invoke``.

        The request body is written to a temporary JSON file passed via
        ``--in-file`` and removed afterwards.

        Args:
            area: REST API area, e.g. ``"build"``.
            resource: Resource within the area, e.g. ``"builds"``.
            http_method: HTTP verb.
            route_parameters: Route template values.
            body: JSON request body.

        Returns:
            The parsed JSON response, or ``None`` for an empty response.
        """
        args = [
            "devops",
            "invoke",
            "--api-version",
            self.api_version,
            "--area",
            area,
            "--resource",
            resource,
            "--http-method",
            http_method,
            "--route-parameters",
            *(f"{key}={value}" for key, value in route_parameters.items()),
        ]
        fd, in_file = tempfile.mkstemp(suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(body, f)
            return self._az_json(*args, "--in-file", in_file)
        finally:
            Path(in_file).unlink(missing_ok=True)

    # -- organization & project ---------------------------------------------

    def organization_url(self) -> str | None:
        """Return the default organization configured for ``az devops``."""
        result = self._az("devops", "configure", "--list")
        return _parse_organization(result.stdout)

    def show_project(self, name: str) -> Project | None:
        """Look up a project by name; ``None`` when ``az`` reports it missing."""
        result = self._az(
            "devops", "project", "show", "--project", name, "--output", "json", check=False
        )
        if result.timed_out:
            raise CommandError(result)
        if not result.ok or not result.stdout.strip():
            logger.debug("Project %s not found: %s", name, result.stderr.strip())
            return None
        return Project.model_validate(json.loads(result.stdout))

    def create_project(self, name: str, *, description: str, visibility: str) -> None:
        """Create a project."""
        self._az_json(
            "devops",
            "project",
            "create",
            "--name",
            name,
            "--description",
            description,
            "--visibility",
            visibility,
        )

    def set_default_project(self, project_id: str) -> None:
        """Persist *project_id* as the CLI default project under a file lock."""
        with exclusive_file_lock(self.config_file):
            self._az("devops", "configure", "--defaults", f"project={project_id}")

    # -- agent queues ---------------------------------------------------------

    def list_queues(self) -> list[AgentQueue]:
        """List the agent queues of the default project."""
        data = self._az_json("pipelines", "queue", "list") or []
        return [AgentQueue.model_validate(item) for item in data]

    # -- service connections --------------------------------------------------

    def find_service_endpoint(self, name: str) -> ServiceConnection | None:
        """Return the service endpoint named *name*, if any."""
        data = self._az_json("devops", "service-endpoint", "list") or []
        for item in data:
            if item.get("name") == name:
                return ServiceConnection.model_validate(item)
        return None

    def create_github_service_endpoint(self, name: str, *, github_url: str) -> None:
        """Create a GitHub service endpoint.

        The GitHub token is read by ``az`` from
        ``AZURE_DEVOPS_EXT_GITHUB_PAT``.
        """
        self._az_json(
            "devops",
            "service-endpoint",
            "github",
            "create",
            "--name",
            name,
            "--github-url",
            github_url,
        )

    # -- pipelines --------------------------------------------------------------

    def show_pipeline(self, name: str) -> PipelineDefinition | None:
        """Look up a pipeline definition by name in the default project."""
        result = self._az("pipelines", "show", "--name", name, "--output", "json", check=False)
        if result.timed_out:
            raise CommandError(result)
        if not result.ok or not result.stdout.strip():
            logger.debug("Pipeline %s not found: %s", name, result.stderr.strip())
            return None
        return PipelineDefinition.model_validate(json.loads(result.stdout))

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
        """Create a GitHub-backed YAML pipeline without queueing a first run."""
        self._az_json(
            "pipelines",
            "create",
            "--name",
            name,
            "--description",
            description,
            "--branch",
            branch,
            "--repository",
            repository_url,
            "--repository-type",
            "github",
            "--service-connection",
            service_connection_id,
            "--yml-path",
            yaml_path,
            "--skip-first-run",
            "--only-show-errors",
        )

    def authorize_pipeline(self, *, project_id: str, queue_id: int, pipeline_id: int) -> None:
        """Allow *pipeline_id* to use the agent queue *queue_id*.

        Sent through ``az devops invoke``; see the module docstring.
        """
        self.invoke(
            area="pipelinePermissions",
            resource="pipelinePermissions",
            http_method="PATCH",
            route_parameters={
                "project": project_id,
                "resourceType": "queue",
                "resourceId": str(queue_id),
            },
            body={"pipelines": [{"authorized": True, "id": pipeline_id}]},
        )

    # -- runs -------------------------------------------------------------------

    def run_pipeline(
        self, pipeline_id: int, *, commit_id: str, parameters: dict[str, str]
    ) -> PipelineRun:
        """Queue a run of *pipeline_id* at *commit_id* with template parameters."""
        data = self._az_json(
            "pipelines",
            "run",
            "--id",
            str(pipeline_id),
            "--commit-id",
            commit_id,
            "--parameters",
            *(f"{key}={value}" for key, value in parameters.items()),
        )
        return PipelineRun.model_validate(data)

    def show_run(self, run_id: int) -> PipelineRun:
        """Fetch the current state of a run."""
        return PipelineRun.model_validate(
            self._az_json("pipelines", "runs", "show", "--id", str(run_id))
        )

    def cancel_run(self, *, project_id: str, run_id: int) -> None:
        """Ask the platform to cancel a run; does not wait for it to stop.

        Sent through ``az devops invoke``; see the module docstring.
        """
        self.invoke(
            area="build",
            resource="builds",
            http_method="PATCH",
            route_parameters={"project": project_id, "buildId": str(run_id)},
            body={"status": "cancelling"},
        )
