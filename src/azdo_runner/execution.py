"""Subprocess harness for the external ``az`` and ``git`` commands.

Provides ``run_command()``, which runs one command synchronously,
captures its output, and raises ``CommandError`` on a non-zero exit
unless the caller asks to inspect the result itself.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
import subprocess
import time

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    """Output captured from a single command execution.

    Attributes:
        args: The command line that was executed.
        stdout: Full standard output.
        stderr: Full standard error.
        exit_code: Process exit code (-1 = timeout).
        duration_seconds: Wall-clock execution time in seconds.
        timed_out: Whether the command was killed for exceeding its timeout.
    """

    model_config = ConfigDict(frozen=True)

    args: list[str]
    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandError(RuntimeError):
    """An external command exited with a non-zero status or timed out.

    Attributes:
        args_list: The command line that failed.
        exit_code: Process exit code.
        stderr: Captured standard error.
        timed_out: Whether the command was killed for exceeding its timeout.
    """

    def __init__(self, result: CommandResult) -> None:
        """Build the error message from a failed ``CommandResult``.

        Args:
            result: The captured output of the failed command.
        """
        self.args_list = result.args
        self.exit_code = result.exit_code
        self.stderr = result.stderr
        self.timed_out = result.timed_out
        command = " ".join(result.args[:3])
        if result.timed_out:
            msg = f"{command} timed out after {result.duration_seconds:.0f}s"
        else:
            msg = (
                f"{command} failed (exit {result.exit_code}): "
                f"{result.stderr.strip()[:500]}"
            )
        super().__init__(msg)


def build_command_env() -> dict[str, str]:
    """Build environment variables for ``az`` and ``git`` subprocesses.

    Disables the Azure CLI's interactive prompts and survey banners so
    command output stays machine readable.

    Returns:
        A new dict suitable for passing as ``env`` to ``subprocess.run``.
    """
    env = dict(os.environ)
    env["AZURE_CORE_ONLY_SHOW_ERRORS"] = "true"
    env["AZURE_CORE_SURVEY_MESSAGE"] = "false"
    env["AZURE_CORE_NO_COLOR"] = "true"
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


def _as_text(output: str | bytes | None) -> str:
    """Partial output of a killed process; bytes on some platforms."""
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def run_command(
    args: list[str],
    *,
    cwd: str | Path | None = None,
    check: bool = True,
    timeout: float | None = None,
) -> CommandResult:
    """Run *args* to completion and capture its output.

    Args:
        args: Executable followed by its arguments.
        cwd: Working directory for the subprocess, or ``None`` to inherit.
        check: Raise ``CommandError`` when the command exits non-zero.
        timeout: Seconds before the command is killed, ``None`` for no limit.

    Returns:
        A ``CommandResult`` with the captured output and exit code.

    Raises:
        CommandError: If *check* is set and the command fails or times out.
        FileNotFoundError: If the executable cannot be found.
    """
    logger.debug("Running %s", " ".join(args))
    start = time.monotonic()
    try:
        proc = subprocess.run(  # nosec B603
            args,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            env=build_command_env(),
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        result = CommandResult(
            args=list(args),
            stdout=_as_text(exc.stdout),
            stderr=_as_text(exc.stderr),
            exit_code=-1,
            duration_seconds=time.monotonic() - start,
            timed_out=True,
        )
        logger.warning("%s timed out after %.0fs", args[0], result.duration_seconds)
        if check:
            raise CommandError(result) from exc
        return result

    result = CommandResult(
        args=list(args),
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
        exit_code=proc.returncode,
        duration_seconds=time.monotonic() - start,
    )
    logger.debug(
        "%s exited %d after %.2fs", args[0], result.exit_code, result.duration_seconds
    )
    if check and not result.ok:
        raise CommandError(result)
    return result
