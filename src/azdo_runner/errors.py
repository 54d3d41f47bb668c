"""Exception hierarchy for the pipeline runner.

Every runner failure derives from ``RunnerError`` and carries a
``diagnostics`` dict with structured context for the CLI to print.
Failures of the underlying ``az``/``git`` processes are reported as
``CommandError`` (see ``azdo_runner.execution``) and are not wrapped.
"""

from __future__ import annotations

from typing import Any


class RunnerError(Exception):
    """Runner failure with diagnostic context.

    Attributes:
        diagnostics: Structured diagnostic information about the failure.
    """

    def __init__(self, message: str, *, diagnostics: dict[str, Any] | None = None) -> None:
        """Initialize with a message and structured diagnostics.

        Args:
            message: Human-readable error description.
            diagnostics: Structured context (resource names, ids, elapsed time).
        """
        super().__init__(message)
        self.diagnostics: dict[str, Any] = diagnostics if diagnostics is not None else {}


class UsageError(RunnerError):
    """One or more required inputs are missing."""


class PipelineFileNotFoundError(UsageError):
    """The pipeline definition file does not exist.

    ``diagnostics["available"]`` lists the pipeline identifiers that do.
    """


class AgentPoolNotFoundError(RunnerError):
    """The configured agent pool has no queue in the project."""


class ProvisioningError(RunnerError):
    """A resource could not be found right after it was created."""


class RunTimeoutError(RunnerError):
    """The run did not complete within the poll budget.

    Raised after the cancellation request has been attempted.
    """
