"""Small git helpers used by plugins.

Every call is bounded by a timeout and never raises for ordinary git failures (not a
repository, nothing to commit, git missing); callers get `None` / `False` instead.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class GitRepository:
    def __init__(self, path: Path, *, timeout_seconds: float = 15.0) -> None:
        self.path = Path(path)
        self._timeout = timeout_seconds

    @staticmethod
    def git_available() -> bool:
        return shutil.which("git") is not None

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["git", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=True,
            timeout=self._timeout,
        )

    def _output(self, *args: str) -> str | None:
        try:
            return self._run(*args).stdout.strip()
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"git {' '.join(args)} failed: {e}")
            return None

    def is_repository(self) -> bool:
        if not self.path.is_dir():
            return False
        return self._output("rev-parse", "--git-dir") is not None

    def current_branch(self) -> str | None:
        return self._output("rev-parse", "--abbrev-ref", "HEAD")

    def current_commit_hash(self) -> str | None:
        """HEAD commit hash, or None (not a repository, or no commits yet)."""
        return self._output("rev-parse", "HEAD")

    def has_uncommitted_changes(self) -> bool:
        status = self._output("status", "--porcelain")
        return bool(status)

    def create_commit(self, message: str) -> bool:
        """Stage everything and commit. Returns whether a commit was created."""
        try:
            self._run("add", "--all")
            self._run("commit", "-m", message)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            stderr = getattr(e, "stderr", None)
            logger.warning(
                "Git commit failed",
                extra={"path": str(self.path), "commit_message": message, "stderr": stderr},
            )
            return False
        logger.info("Created git commit", extra={"path": str(self.path), "commit_message": message})
        return True
