"""Tool registry and dispatch shared by every LLM tool loop."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ValidationError

from ..telemetry import emit_event
from .errors import ToolError
from .gitignore import IgnoreRules
from .interaction import ApprovalCallback, ApprovalRequest, Prompter

LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[[Any, "ToolContext"], str]


def error_payload(message: str, **extra: Any) -> str:
    payload: Dict[str, Any] = {"status": "error", "message": message}
    payload.update(extra)
    return json.dumps(payload)


def canceled_payload(message: str) -> str:
    return json.dumps({"status": "canceled", "message": message})


def _deny_all(_: ApprovalRequest) -> bool:
    return False


@dataclass(slots=True)
class ToolContext:
    """Shared state every tool handler runs against.

    ``working_dir`` is the containment root for all filesystem access and the
    cwd for processes. ``touched`` collects files written during a tool loop.
    """

    working_dir: Path
    ignore_rules: IgnoreRules = field(default_factory=IgnoreRules)
    approve: ApprovalCallback = _deny_all
    prompter: Optional[Prompter] = None
    trusted_commands: Sequence[str] = ()
    process_timeout_ms: int = 30000
    max_output_chars: int = 20000
    touched: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.working_dir = Path(self.working_dir).resolve()

    @classmethod
    def for_directory(cls, working_dir: Path, **kwargs: Any) -> "ToolContext":
        root = Path(working_dir).resolve()
        return cls(working_dir=root, ignore_rules=IgnoreRules.load(root), **kwargs)

    def record_touched(self, path: Path) -> None:
        try:
            display = path.resolve().relative_to(self.working_dir).as_posix()
        except ValueError:
            display = path.as_posix()
        if display not in self.touched:
            self.touched.append(display)


@dataclass(slots=True)
class ToolSpec:
    """Name, argument schema and handler for a single tool."""

    name: str
    description: str
    parameters: type[BaseModel]
    handler: ToolHandler
    captures: bool = False

    def to_payload(self) -> Dict[str, Any]:
        """Render the Responses API function-tool definition."""
        schema = self.parameters.model_json_schema()
        schema.pop("title", None)
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": schema,
        }


@dataclass(slots=True)
class ToolOutcome:
    """Result of one dispatched tool call."""

    name: str
    output: str
    captured: Optional[BaseModel] = None
    failed: bool = False


class ToolRegistry:
    """Lookup table of tools bound to a :class:`ToolContext`."""

    def __init__(self, specs: Iterable[ToolSpec], context: ToolContext) -> None:
        self._specs: Dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Duplicate tool name: {spec.name}")
            self._specs[spec.name] = spec
        self.context = context

    def names(self) -> List[str]:
        return list(self._specs)

    def get(self, name: str) -> ToolSpec:
        try:
            return self._specs[name]
        except KeyError as error:
            valid = ", ".join(self._specs)
            raise KeyError(f"Unknown tool '{name}'. Expected one of: {valid}") from error

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def payloads(self) -> List[Dict[str, Any]]:
        return [spec.to_payload() for spec in self._specs.values()]

    def capturing_tools(self) -> List[str]:
        return [spec.name for spec in self._specs.values() if spec.captures]

    def dispatch(self, name: str, arguments: str | Mapping[str, Any] | None) -> ToolOutcome:
        """Validate arguments and run a tool; failures become JSON error payloads."""
        spec = self._specs.get(name)
        if spec is None:
            return ToolOutcome(name, error_payload(f"Unknown tool: {name}"), failed=True)

        try:
            raw = self._decode_arguments(arguments)
            args = spec.parameters.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as error:
            LOGGER.debug("Rejected arguments for %s: %s", name, error)
            emit_event("tool.invalid_arguments", tool=name, error=str(error))
            return ToolOutcome(name, error_payload(f"Invalid arguments for {name}: {error}"), failed=True)

        try:
            output = spec.handler(args, self.context)
        except ToolError as error:
            emit_event("tool.failed", tool=name, error=str(error))
            return ToolOutcome(name, error_payload(str(error), **error.details), failed=True)
        except OSError as error:
            emit_event("tool.failed", tool=name, error=str(error))
            return ToolOutcome(name, error_payload(f"{type(error).__name__}: {error}"), failed=True)
        except Exception as error:  # noqa: BLE001 - a tool bug is reported to the model, not raised
            LOGGER.exception("Tool %s raised unexpectedly", name)
            emit_event("tool.crashed", tool=name, error=str(error))
            return ToolOutcome(
                name, error_payload(f"Tool {name} failed: {type(error).__name__}: {error}"), failed=True
            )

        emit_event("tool.completed", tool=name, output_chars=len(output))
        return ToolOutcome(name, output, captured=args if spec.captures else None)

    @staticmethod
    def _decode_arguments(arguments: str | Mapping[str, Any] | None) -> Any:
        if arguments is None:
            return {}
        if isinstance(arguments, Mapping):
            return dict(arguments)
        text = arguments.strip()
        if not text:
            return {}
        return json.loads(text)


__all__ = [
    "ToolContext",
    "ToolHandler",
    "ToolOutcome",
    "ToolRegistry",
    "ToolSpec",
    "canceled_payload",
    "error_payload",
]
