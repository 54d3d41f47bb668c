"""Source-control introspection for the checked-out repository."""

from __future__ import annotations

from pathlib import Path

from azdo_runner.execution import run_command


class GitRepository:
    """Reads branch, commit and origin URL from a local git checkout."""

    def __init__(self, *, executable: str = "git", cwd: str | Path | None = None) -> None:
        self._executable = executable
        self._cwd = cwd

    def _git(self, *args: str) -> str:
        return run_command([self._executable, *args], cwd=self._cwd).stdout.strip()

    def current_branch(self) -> str:
        """Return the short name of the checked-out branch."""
        return self._git("rev-parse", "--abbrev-ref", "HEAD")

    def current_commit(self) -> str:
        """Return the full hash of ``HEAD``."""
        return self._git("rev-parse", "HEAD")

    def origin_url(self) -> str:
        """Return the URL of the ``origin`` remote."""
        return self._git("remote", "get-url", "origin")
