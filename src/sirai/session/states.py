"""The eight session states and their transitions.

Each state implements ``enter``, ``process`` and ``exit``. ``process`` returns
the next :class:`StateType`; returning the state's own type asks the
controller for a delayed retry.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Type

import typer

from ..models.factory import ModelConfigurationError
from ..models.llm_client import LLMClientError
from ..planning.schemas import (
    ContextProfile,
    SubtaskStatus,
    ValidationStatus,
)
from ..prompts import render_feedback_request, render_fix_prompt, render_regenerate_request
from .commands import HELP_TEXT, extract_file_references, parse_command
from .context import SessionContext

LOGGER = logging.getLogger(__name__)

PROCEED = "Proceed"
MODIFY = "Modify"
CANCEL = "Cancel"

_STATUS_MARKERS = {
    SubtaskStatus.COMPLETED: "✅",
    SubtaskStatus.FAILED: "❌",
}


class StateType(str, Enum):
    WAITING_FOR_INPUT = "WAITING_FOR_INPUT"
    GATHERING_CONTEXT = "GATHERING_CONTEXT"
    GENERATING_PLAN = "GENERATING_PLAN"
    REVIEWING_PLAN = "REVIEWING_PLAN"
    EXECUTING_TASKS = "EXECUTING_TASKS"
    VALIDATING_TASKS = "VALIDATING_TASKS"
    FIXING_VALIDATION_ERRORS = "FIXING_VALIDATION_ERRORS"
    GENERATING_SUMMARY = "GENERATING_SUMMARY"


class State:
    """Base class; subclasses override :meth:`process`."""

    type: StateType

    def enter(self, ctx: SessionContext) -> None:
        LOGGER.debug("Entering %s", self.type.value)

    def process(self, ctx: SessionContext) -> StateType:
        raise NotImplementedError

    def exit(self, ctx: SessionContext) -> None:
        LOGGER.debug("Leaving %s", self.type.value)


# ------------------------------------------------------------------ input
class WaitingForInputState(State):
    type = StateType.WAITING_FOR_INPUT

    def process(self, ctx: SessionContext) -> StateType:
        while True:
            if ctx.pending_input is not None:
                text, ctx.pending_input = ctx.pending_input, None
            elif ctx.one_shot and ctx.cycles > 0:
                ctx.active = False
                return self.type
            else:
                try:
                    text = ctx.services.prompter.ask("You")
                except (EOFError, typer.Abort):
                    ctx.active = False
                    return self.type

            text = text.strip()
            if not text:
                continue
            command = parse_command(text)
            if command is None:
                break
            if command.exits:
                ctx.show("Exiting chat...")
                ctx.active = False
                return self.type
            self._handle_command(ctx, command.name)

        ctx.reset_request()
        ctx.request = text
        ctx.referenced_files = extract_file_references(text)
        ctx.cycles += 1
        return StateType.GATHERING_CONTEXT

    @staticmethod
    def _handle_command(ctx: SessionContext, name: str) -> None:
        history = ctx.services.history
        if name == "clear":
            history.clear()
            ctx.show("Task history cleared.")
        elif name == "history":
            ctx.show(history.summary(limit=10))
        elif name == "help":
            ctx.show(HELP_TEXT)
        else:
            ctx.show(f"Unknown command: /{name}\n\n{HELP_TEXT}")


class GatheringContextState(State):
    type = StateType.GATHERING_CONTEXT

    def process(self, ctx: SessionContext) -> StateType:
        if ctx.services.config.planning.enabled:
            return StateType.GENERATING_PLAN

        services = ctx.services
        try:
            result = services.router.default().generate(
                services.project.create_context_string() or None,
                ctx.request or "",
                label="chat",
            )
        except (LLMClientError, ModelConfigurationError) as error:
            ctx.show(f"Error generating a response: {error}")
        else:
            ctx.show(result.text)
        return StateType.WAITING_FOR_INPUT


# --------------------------------------------------------------- planning
class GeneratingPlanState(State):
    type = StateType.GENERATING_PLAN

    def process(self, ctx: SessionContext) -> StateType:
        services = ctx.services
        project = services.project
        request = ctx.request or ""
        ctx.show("Generating task plan...")

        ctx.profile = self._profile(ctx)
        ctx.plan = services.planner.create_task_plan(request, ctx.profile, referenced_files=ctx.referenced_files)
        assessment = services.planner.assess_plan(
            ctx.plan, ctx.profile, prior_success_rate=services.history.prior_success_rate()
        )
        ctx.show(services.planner.get_explanation(ctx.plan, assessment))
        LOGGER.debug("Planned %s subtasks for %s", len(ctx.plan.subtasks), project.project_root)
        ctx.fix_attempts = 0
        return StateType.REVIEWING_PLAN

    @staticmethod
    def _profile(ctx: SessionContext) -> ContextProfile:
        project = ctx.services.project
        try:
            return ctx.services.planner.create_context_profile(project.project_root, project.current_directory)
        except Exception as error:  # noqa: BLE001 - a degraded profile still allows planning
            LOGGER.warning("Failed to build context profile: %s", error)
            return ContextProfile(
                project_root=project.project_root.as_posix(),
                current_directory=project.current_directory.as_posix(),
            )


class ReviewingPlanState(State):
    type = StateType.REVIEWING_PLAN

    def process(self, ctx: SessionContext) -> StateType:
        if ctx.plan is None:
            return StateType.WAITING_FOR_INPUT
        services = ctx.services
        prompter = services.prompter

        choice = prompter.choose("What would you like to do with this plan?", [PROCEED, MODIFY, CANCEL])
        if choice == MODIFY:
            feedback = prompter.ask("What should change in the plan?").strip()
            if feedback:
                request = render_feedback_request(ctx.request or ctx.plan.original_request, feedback)
                profile = ctx.profile or ContextProfile(
                    project_root=services.project.project_root.as_posix(),
                    current_directory=services.project.current_directory.as_posix(),
                )
                ctx.plan = services.planner.create_task_plan(
                    request, profile, referenced_files=ctx.referenced_files
                )
                ctx.show(services.planner.get_explanation(ctx.plan))
            choice = prompter.choose("Proceed with the updated plan?", [PROCEED, CANCEL])

        if choice == CANCEL:
            ctx.show("Plan cancelled.")
            ctx.reset_request()
            return StateType.WAITING_FOR_INPUT
        return StateType.EXECUTING_TASKS


# -------------------------------------------------------------- execution
class ExecutingTasksState(State):
    type = StateType.EXECUTING_TASKS

    def process(self, ctx: SessionContext) -> StateType:
        plan = ctx.plan
        if plan is None or not plan.subtasks:
            return StateType.GENERATING_SUMMARY
        ctx.show(f"Executing {len(plan.subtasks)} task(s)...")
        ctx.execution = ctx.services.executor.execute(plan)
        if not ctx.execution.succeeded:
            ctx.show(f"Task {ctx.execution.failed} failed: {ctx.execution.error}")
        return StateType.GENERATING_SUMMARY


class GeneratingSummaryState(State):
    type = StateType.GENERATING_SUMMARY

    def process(self, ctx: SessionContext) -> StateType:
        plan = ctx.plan
        if plan is None:
            return StateType.WAITING_FOR_INPUT
        services = ctx.services

        executed = set(ctx.execution.executed) if ctx.execution else set()
        for subtask in plan.subtasks:
            if subtask.id in executed:
                subtask.status = SubtaskStatus.COMPLETED

        lines = ["## Task Execution Summary", ""]
        if plan.subtasks:
            lines.append("The following tasks were executed:")
            lines.append("")
            for position, subtask in enumerate(plan.ordered_subtasks(), start=1):
                marker = _STATUS_MARKERS.get(subtask.status, "⏳")
                title = subtask.specification.splitlines()[0] if subtask.specification else subtask.id
                lines.append(f"{position}. {marker} {title}")
        else:
            lines.append("No tasks were executed.")

        try:
            previous = services.history.completed(limit=5)
            services.history.append(plan)
        except OSError as error:
            LOGGER.error("Failed to update task history: %s", error)
            lines.extend(["", "Task completed, but the task history could not be updated."])
        else:
            if previous:
                lines.extend(["", "## Previously Completed Tasks", ""])
                for position, entry in enumerate(previous, start=1):
                    stamp = entry.completed_at.strftime("%Y-%m-%d %H:%M") if entry.completed_at else "unknown"
                    lines.append(f"{position}. {stamp}: {entry.original_request}")
                    lines.append(f"   - Subtasks: {len(entry.subtasks)}")
        lines.extend(["", services.router.usage_report(), "---"])
        ctx.show("\n".join(lines))

        if plan.validation_instructions:
            return StateType.VALIDATING_TASKS
        ctx.reset_request()
        return StateType.WAITING_FOR_INPUT


# ------------------------------------------------------------- validation
class ValidatingTasksState(State):
    type = StateType.VALIDATING_TASKS

    def process(self, ctx: SessionContext) -> StateType:
        plan = ctx.plan
        if plan is None or not plan.validation_instructions:
            return StateType.WAITING_FOR_INPUT
        services = ctx.services
        ctx.show("Validating the implementation...")

        try:
            result = services.validator.validate(plan)
        except Exception as error:  # noqa: BLE001 - any validation failure re-plans the request
            LOGGER.error("Error validating tasks: %s", error)
            ctx.show(f"Error validating tasks: {error}")
            ctx.show(services.router.usage_report())
            return StateType.GENERATING_PLAN
        ctx.validation = result

        if result.status is ValidationStatus.PASSED:
            ctx.show(f"Validation passed: {result.message}")
            ctx.reset_request()
            return StateType.WAITING_FOR_INPUT

        config = services.config.validation
        if config.auto_fix and result.suggested_fixes and ctx.fix_attempts < config.max_fix_attempts:
            return StateType.FIXING_VALIDATION_ERRORS

        show_failure(ctx)
        if services.prompter.confirm("Would you like to regenerate the plan to fix these issues?", default=True):
            ctx.request = render_regenerate_request(plan, result)
            return StateType.GENERATING_PLAN
        ctx.reset_request()
        return StateType.WAITING_FOR_INPUT


class FixingValidationErrorsState(State):
    type = StateType.FIXING_VALIDATION_ERRORS

    def process(self, ctx: SessionContext) -> StateType:
        plan, result = ctx.plan, ctx.validation
        if plan is None or result is None:
            return StateType.WAITING_FOR_INPUT
        limit = ctx.services.config.validation.max_fix_attempts

        ctx.fix_attempts += 1
        if ctx.fix_attempts > limit:
            ctx.show(f"Maximum fix attempts ({limit}) reached. Falling back to manual confirmation.")
            show_failure(ctx)
            return StateType.VALIDATING_TASKS
        if not result.suggested_fixes:
            ctx.show("No suggested fixes available. Falling back to manual confirmation.")
            show_failure(ctx)
            return StateType.VALIDATING_TASKS

        ctx.show(f"Attempting to fix validation errors automatically (attempt {ctx.fix_attempts}/{limit})...")
        if ctx.services.executor.execute_fix(plan, render_fix_prompt(plan, result)):
            return StateType.VALIDATING_TASKS
        return self.type


def show_failure(ctx: SessionContext) -> None:
    result = ctx.validation
    if result is None:
        return
    lines = [f"Validation failed: {result.message}"]
    if result.failed_tasks:
        lines.append("Failed tasks:")
        lines.extend(f"  - {task}" for task in result.failed_tasks)
    if result.suggested_fixes:
        lines.append(f"Suggested fixes: {result.suggested_fixes}")
    ctx.show("\n".join(lines))


STATE_CLASSES: Dict[StateType, Type[State]] = {
    state.type: state
    for state in (
        WaitingForInputState,
        GatheringContextState,
        GeneratingPlanState,
        ReviewingPlanState,
        ExecutingTasksState,
        GeneratingSummaryState,
        ValidatingTasksState,
        FixingValidationErrorsState,
    )
}


__all__ = [
    "STATE_CLASSES",
    "State",
    "StateType",
    "show_failure",
]
