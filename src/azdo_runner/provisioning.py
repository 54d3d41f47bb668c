"""Idempotent provisioning of the remote project, connection and pipeline.

Each ``ensure_*`` function looks the resource up by name and creates it
only when the lookup comes back empty. Existing resources are reused as
they are, whatever their configuration. Nothing is ever updated or
deleted.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
from typing import TypeVar

from azdo_runner.client import DevOpsClient
from azdo_runner.errors import AgentPoolNotFoundError, ProvisioningError
from azdo_runner.models import (
    AgentQueue,
    PipelineDefinition,
    Project,
    RunnerConfig,
    RunRequest,
    ServiceConnection,
)

logger = logging.getLogger(__name__)

_PROJECT_DESCRIPTION = (
    "Integration test for image {flavor}. "
    "Created by azdo-runner for pipeline {pipeline}."
)

_T = TypeVar("_T")


def _ensure(
    kind: str,
    name: str,
    lookup: Callable[[], _T | None],
    create: Callable[[], None],
) -> _T:
    """Return the resource found by *lookup*, calling *create* first if absent.

    Args:
        kind: Resource kind for log and error messages.
        name: Resource name for log and error messages.
        lookup: Finds the resource by name, ``None`` when missing.
        create: Creates the resource.

    Returns:
        The existing or newly created resource.

    Raises:
        ProvisioningError: If the resource is still missing after creation.
    """
    existing = lookup()
    if existing is not None:
        logger.info("%s %s already exists", kind, name)
        return existing

    logger.info("Creating %s %s", kind.lower(), name)
    create()

    created = lookup()
    if created is None:
        msg = f"{kind} {name} was created but cannot be found"
        raise ProvisioningError(msg, diagnostics={"kind": kind, "name": name})
    return created


def ensure_project(
    client: DevOpsClient, request: RunRequest, config: RunnerConfig
) -> Project:
    """Find or create the ``<prefix>-<flavor>`` project and make it the default.

    Args:
        client: Remote platform client.
        request: The run inputs.
        config: Runner settings (visibility, description suffix, lock file).

    Returns:
        The project.
    """
    name = request.project_name
    description = _PROJECT_DESCRIPTION.format(
        flavor=request.flavor, pipeline=request.pipeline
    )
    if config.project_description_suffix:
        description = f"{description} {config.project_description_suffix}"

    project = _ensure(
        "Project",
        name,
        lambda: client.show_project(name),
        lambda: client.create_project(
            name, description=description, visibility=config.project_visibility
        ),
    )
    client.set_default_project(project.id)
    logger.info("Project id: %s", project.id)
    return project


def find_agent_queue(client: DevOpsClient, pool_name: str) -> AgentQueue:
    """Return the project's queue for agent pool *pool_name*.

    Raises:
        AgentPoolNotFoundError: If no queue carries that name.
    """
    logger.info("Getting agent pool %s", pool_name)
    queues = client.list_queues()
    for queue in queues:
        if queue.name == pool_name:
            logger.info("Agent pool id: %s", queue.id)
            return queue

    msg = f"Agent pool {pool_name} does not exist"
    raise AgentPoolNotFoundError(
        msg,
        diagnostics={"pool_name": pool_name, "available": [q.name for q in queues]},
    )


def ensure_service_connection(
    client: DevOpsClient, name: str, *, source_url: str
) -> ServiceConnection:
    """Find or create the GitHub service connection *name* for *source_url*."""
    connection = _ensure(
        "Service connection",
        name,
        lambda: client.find_service_endpoint(name),
        lambda: client.create_github_service_endpoint(name, github_url=source_url),
    )
    logger.info("Service connection id: %s", connection.id)
    return connection


def ensure_pipeline(
    client: DevOpsClient,
    request: RunRequest,
    *,
    yaml_path: str,
    branch: str,
    repository_url: str,
    service_connection_id: str,
) -> PipelineDefinition:
    """Find or create the pipeline definition for *request*.

    Args:
        client: Remote platform client.
        request: The run inputs; the pipeline identifier names the definition.
        yaml_path: Repository-relative path of the YAML definition.
        branch: Default branch of the new definition.
        repository_url: GitHub URL of the source repository.
        service_connection_id: Connection used to fetch the source.

    Returns:
        The pipeline definition.
    """
    name = request.pipeline_name
    pipeline = _ensure(
        "Pipeline",
        name,
        lambda: client.show_pipeline(name),
        lambda: client.create_pipeline(
            name,
            description=f"Test pipeline {request.pipeline}. Created by azdo-runner.",
            branch=branch,
            repository_url=repository_url,
            service_connection_id=service_connection_id,
            yaml_path=yaml_path,
        ),
    )
    logger.info("Pipeline id: %s", pipeline.id)
    return pipeline


def authorize_pipeline(
    client: DevOpsClient,
    *,
    project: Project,
    queue: AgentQueue,
    pipeline: PipelineDefinition,
) -> None:
    """Authorize *pipeline* on *queue*. Sent on every invocation."""
    logger.info(
        "Authorizing pipeline %s to run on agent pool %s", pipeline.name, queue.name
    )
    client.authorize_pipeline(
        project_id=project.id, queue_id=queue.id, pipeline_id=pipeline.id
    )
