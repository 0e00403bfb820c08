"""Git working-tree checks used by the approval gate."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

LOGGER = logging.getLogger(__name__)

_STATUS_TIMEOUT_SECONDS = 10


def porcelain_status(path: Path) -> str:
    """Return ``git status --porcelain`` output for the repository containing ``path``.

    Raises ``OSError`` when git cannot be started and ``RuntimeError`` when the
    command fails, for example outside a repository.
    """
    try:
        process = subprocess.run(  # noqa: S603 - fixed git executable
            ["git", "status", "--porcelain"],
            cwd=path,
            capture_output=True,
            text=True,
            errors="replace",
            check=False,
            timeout=_STATUS_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired as error:
        raise RuntimeError(f"git status timed out in {path}") from error
    if process.returncode != 0:
        message = process.stderr.strip() or f"exit code {process.returncode}"
        raise RuntimeError(f"git status failed in {path}: {message}")
    return process.stdout


def worktree_is_clean(path: Path) -> bool:
    """Return ``True`` only for a git repository with an empty porcelain status.

    Any git failure counts as not clean.
    """
    try:
        return not porcelain_status(path).strip()
    except (OSError, RuntimeError) as error:
        LOGGER.debug("Treating %s as unclean: %s", path, error)
        return False


__all__ = ["porcelain_status", "worktree_is_clean"]
