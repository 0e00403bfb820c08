""".gitignore-aware filtering helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import pathspec

LOGGER = logging.getLogger(__name__)

_ALWAYS_SKIP_DIRS = {".git"}


@dataclass(slots=True)
class IgnoreRules:
    """Ignore patterns split into normal and ``!``-negated specs.

    A path is excluded when it matches a normal pattern and no negated one, so
    a negation always wins regardless of pattern order.
    """

    ignored: Optional[pathspec.PathSpec] = None
    negated: Optional[pathspec.PathSpec] = None

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "IgnoreRules":
        positive: list[str] = []
        negative: list[str] = []
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("!"):
                negative.append(line[1:])
            else:
                positive.append(line)
        return cls(
            ignored=pathspec.PathSpec.from_lines("gitwildmatch", positive) if positive else None,
            negated=pathspec.PathSpec.from_lines("gitwildmatch", negative) if negative else None,
        )

    @classmethod
    def load(cls, working_dir: Path) -> "IgnoreRules":
        """Read ``.gitignore`` from ``working_dir``; a missing file yields no patterns."""
        gitignore_path = Path(working_dir) / ".gitignore"
        if not gitignore_path.is_file():
            return cls()
        try:
            content = gitignore_path.read_text(encoding="utf-8", errors="replace")
        except OSError as error:
            LOGGER.warning("Failed to read .gitignore file: %s", error)
            return cls()
        return cls.from_lines(content.splitlines())

    def is_excluded(self, relative_path: str, *, is_dir: bool = False) -> bool:
        rel = relative_path.replace("\\", "/")
        while rel.startswith("./"):
            rel = rel[2:]
        if any(part in _ALWAYS_SKIP_DIRS for part in rel.split("/")):
            return True
        if self.ignored is None:
            return False
        check_path = f"{rel}/" if is_dir else rel
        if self.negated is not None and self.negated.match_file(check_path):
            return False
        return self.ignored.match_file(check_path)


__all__ = ["IgnoreRules"]
