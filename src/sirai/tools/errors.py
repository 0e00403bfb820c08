"""Exceptions raised inside tool implementations."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class ToolError(RuntimeError):
    """Raised when a tool cannot complete; reported back to the model as JSON."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class PathEscapeError(ToolError):
    """Raised when a path resolves outside the working directory."""


__all__ = ["PathEscapeError", "ToolError"]
