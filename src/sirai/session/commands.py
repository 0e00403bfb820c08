"""Slash commands and ``@file`` references in user input."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

_FILE_REFERENCE = re.compile(r"""(?<!\S)@(?:"([^"]+)"|'([^']+)'|([^\s"']+))""")

HELP_TEXT = """Commands:
  /help     Show this help
  /history  Show recently completed tasks
  /clear    Clear the task history
  /exit     Leave the session (/quit works too)

Mention files with @path, @"path with spaces" or @'path' to include them in planning."""

COMMANDS = ("exit", "quit", "clear", "history", "help")


@dataclass(slots=True)
class SlashCommand:
    name: str
    args: List[str]

    @property
    def known(self) -> bool:
        return self.name in COMMANDS

    @property
    def exits(self) -> bool:
        return self.name in {"exit", "quit"}


def parse_command(text: str) -> Optional[SlashCommand]:
    """Return the slash command in ``text``, or ``None`` for ordinary input."""
    stripped = text.strip()
    if not stripped.startswith("/") or len(stripped) == 1:
        return None
    parts = stripped[1:].split()
    return SlashCommand(name=parts[0].lower(), args=parts[1:])


def extract_file_references(text: str) -> List[str]:
    """Collect ``@path`` references, keeping first-seen order without duplicates."""
    found: List[str] = []
    for match in _FILE_REFERENCE.finditer(text):
        path = next(group for group in match.groups() if group)
        if path not in found:
            found.append(path)
    return found


__all__ = ["COMMANDS", "HELP_TEXT", "SlashCommand", "extract_file_references", "parse_command"]
