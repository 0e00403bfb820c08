"""Run plan subtasks through the executor model and its mutation tools."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..models.factory import ModelConfigurationError, ModelRouter
from ..models.llm_client import LLMClient, LLMClientError
from ..prompts import EXECUTOR_SYSTEM_PROMPT, render_executor_prompt
from ..telemetry import emit_event
from ..tools.paths import render_files
from ..tools.registry import ToolContext
from ..tools.toolsets import executor_tools
from .history import TaskHistory
from .schemas import (
    ImplementationDetails,
    ReportImplementationArgs,
    Subtask,
    SubtaskStatus,
    TaskPlan,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ExecutionReport:
    """Which subtasks ran and where execution stopped."""

    executed: List[str] = field(default_factory=list)
    failed: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failed is None


class TaskExecutor:
    def __init__(
        self,
        router: ModelRouter,
        context: ToolContext,
        *,
        history: Optional[TaskHistory] = None,
        guidelines: str = "",
        max_turns: Optional[int] = None,
    ) -> None:
        self._router = router
        self._context = context
        self._history = history
        self._guidelines = guidelines
        self._max_turns = max_turns

    def base_prompt(self) -> str:
        parts = [self._guidelines.strip()]
        if self._history is not None:
            parts.append(self._history.implementation_details_summary())
        return "\n\n".join(part for part in parts if part)

    def execute(self, plan: TaskPlan) -> ExecutionReport:
        """Run subtasks in execution order, stopping at the first failure."""
        report = ExecutionReport()
        ordered = plan.ordered_subtasks()
        base_prompt = self.base_prompt()
        for position, subtask in enumerate(ordered, start=1):
            LOGGER.info("Executing task %s/%s: %s", position, len(ordered), subtask.id)
            try:
                self._run_subtask(subtask, base_prompt)
            except Exception as error:  # noqa: BLE001 - any subtask failure stops execution and is reported
                subtask.status = SubtaskStatus.FAILED
                report.failed = subtask.id
                report.error = str(error)
                LOGGER.error("Task %s failed: %s", subtask.id, error)
                emit_event("executor.failed", subtask=subtask.id, error=str(error))
                break
            report.executed.append(subtask.id)
        return report

    def execute_fix(self, plan: TaskPlan, fix_prompt: str) -> bool:
        """Run one free-form repair task outside the plan's subtasks."""
        prompt = render_executor_prompt(
            specification=fix_prompt,
            working_dir=self._context.working_dir,
            base_prompt=self.base_prompt(),
        )
        try:
            self._drive(self._router.default(), prompt, label="validation-fix")
        except (LLMClientError, ModelConfigurationError) as error:
            LOGGER.error("Fix attempt for %r failed: %s", plan.original_request, error)
            return False
        return True

    # ------------------------------------------------------------- internals
    def _run_subtask(self, subtask: Subtask, base_prompt: str) -> None:
        subtask.status = SubtaskStatus.RUNNING
        files = ""
        if subtask.files_to_read:
            files = render_files(
                [item.path for item in subtask.files_to_read],
                self._context.working_dir,
                line_numbers=True,
            )
        prompt = render_executor_prompt(
            specification=subtask.specification,
            working_dir=self._context.working_dir,
            files=files,
            base_prompt=base_prompt,
        )
        client = self._router.for_llm_type(subtask.llm_type)
        details = self._drive(client, prompt, label=f"execute-{subtask.id}")
        subtask.implementation_details = details
        subtask.status = SubtaskStatus.COMPLETED
        emit_event("executor.completed", subtask=subtask.id, files=details.modified_files)

    def _drive(self, client: LLMClient, prompt: str, *, label: str) -> ImplementationDetails:
        self._context.touched.clear()
        result = client.generate(
            EXECUTOR_SYSTEM_PROMPT,
            prompt,
            tools=executor_tools(self._context),
            max_turns=self._max_turns,
            stop_on=(),
            label=label,
        )
        report = result.capture("report_implementation")
        details = ImplementationDetails(modified_files=list(self._context.touched))
        if isinstance(report, ReportImplementationArgs):
            details.summary = report.summary
            details.public_interfaces = list(report.public_interfaces)
            details.additional_context = list(report.additional_context)
        elif result.text:
            details.summary = result.text.strip()
        return details


__all__ = ["ExecutionReport", "TaskExecutor"]
