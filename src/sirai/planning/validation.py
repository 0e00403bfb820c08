"""Post-execution validation: trusted auto-checks plus a model verdict."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional, Sequence

from ..config import AutoCommand, ValidationConfig
from ..models.factory import ModelRouter
from ..prompts import VALIDATION_SYSTEM_PROMPT, render_validation_prompt
from ..telemetry import emit_event
from ..tools.registry import ToolContext
from ..tools.toolsets import validation_tools
from .schemas import StoreValidationArgs, TaskPlan, ValidationResult

LOGGER = logging.getLogger(__name__)

CheckStatus = Literal["passed", "failed", "skipped"]

_OUTPUT_PREVIEW = 4000


class ValidationVerdictMissingError(RuntimeError):
    """Raised when the validation model never calls ``store_validation_result``."""


@dataclass(slots=True)
class AutoCheckResult:
    """Outcome of one automatic validation command."""

    name: str
    command: List[str]
    status: CheckStatus
    exit_code: int | None
    stdout: str
    stderr: str

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def short_message(self) -> str:
        if self.status == "passed":
            return f"{self.name}: passed"
        if self.status == "skipped":
            return f"{self.name}: skipped ({self.stderr.strip()})"
        fallback = self.stderr.strip() or self.stdout.strip()
        return f"{self.name}: failed ({fallback.splitlines()[0] if fallback else 'exit code != 0'})"

    def transcript(self) -> str:
        lines = [f"$ {' '.join(self.command)}", self.short_message()]
        output = "\n".join(part for part in (self.stdout, self.stderr) if part.strip())
        if output and self.status != "skipped":
            lines.append(output[-_OUTPUT_PREVIEW:])
        return "\n".join(lines)


def run_auto_check(check: AutoCommand, cwd: Path, *, timeout_ms: int) -> AutoCheckResult:
    executable = check.command[0] if check.command else ""
    if not executable or shutil.which(executable) is None:
        status: CheckStatus = "skipped" if check.optional else "failed"
        return AutoCheckResult(
            name=check.name,
            command=list(check.command),
            status=status,
            exit_code=None,
            stdout="",
            stderr=f"Executable not available: {executable or '(empty command)'}",
        )
    try:
        process = subprocess.run(  # noqa: S603 - commands come from the validation config
            list(check.command),
            cwd=cwd,
            check=False,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout_ms / 1000.0,
        )
    except subprocess.TimeoutExpired:
        return AutoCheckResult(
            name=check.name,
            command=list(check.command),
            status="failed",
            exit_code=None,
            stdout="",
            stderr=f"Command timed out after {timeout_ms}ms",
        )
    return AutoCheckResult(
        name=check.name,
        command=list(check.command),
        status="passed" if process.returncode == 0 else "failed",
        exit_code=process.returncode,
        stdout=process.stdout or "",
        stderr=process.stderr or "",
    )


class ValidationEngine:
    """Produce a :class:`ValidationResult` for an executed plan."""

    def __init__(self, config: ValidationConfig, router: ModelRouter, context: ToolContext) -> None:
        self._config = config
        self._router = router
        self._context = context

    def run_auto_checks(self, checks: Optional[Sequence[AutoCommand]] = None) -> List[AutoCheckResult]:
        results: List[AutoCheckResult] = []
        for check in self._config.auto_commands if checks is None else checks:
            try:
                result = run_auto_check(check, self._context.working_dir, timeout_ms=self._config.command_timeout_ms)
            except OSError as error:
                LOGGER.warning("Auto-validation command %s failed to start: %s", check.name, error)
                continue
            LOGGER.info(result.short_message())
            emit_event("validation.auto_check", name=check.name, status=result.status)
            results.append(result)
        return results

    def validate(self, plan: TaskPlan) -> ValidationResult:
        """Run auto-checks, then ask the validation model for a verdict.

        The verdict is also stored on ``plan.validation_result``.
        """
        transcript = ""
        if plan.validation_instructions and self._config.auto_commands:
            transcript = "\n\n".join(result.transcript() for result in self.run_auto_checks())

        result = self._router.for_role("validation").generate(
            VALIDATION_SYSTEM_PROMPT,
            render_validation_prompt(plan, transcript),
            tools=validation_tools(self._context),
            label="validation",
        )
        stored = result.capture("store_validation_result")
        if not isinstance(stored, StoreValidationArgs):
            raise ValidationVerdictMissingError("Validation finished without storing a result.")
        verdict = stored.to_result()
        plan.validation_result = verdict
        emit_event("validation.verdict", status=verdict.status.value, failed_tasks=verdict.failed_tasks)
        return verdict


__all__ = [
    "AutoCheckResult",
    "ValidationEngine",
    "ValidationVerdictMissingError",
    "run_auto_check",
]
