"""Mutable state and collaborators shared by every session state."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..config import AppConfig
from ..models.factory import ModelRouter
from ..planning.complexity import ComplexityAssessor
from ..planning.context_profile import ProjectContext
from ..planning.executor import ExecutionReport, TaskExecutor
from ..planning.history import TaskHistory
from ..planning.planner import TaskPlanner
from ..planning.schemas import ContextProfile, TaskPlan, ValidationResult
from ..planning.validation import ValidationEngine
from ..tools.interaction import Prompter, prompter_approval
from ..tools.registry import ToolContext


@dataclass(slots=True)
class SessionServices:
    """Collaborators wired once per session."""

    config: AppConfig
    project: ProjectContext
    router: ModelRouter
    prompter: Prompter
    tools: ToolContext
    history: TaskHistory
    planner: TaskPlanner
    executor: TaskExecutor
    validator: ValidationEngine

    @classmethod
    def build(
        cls,
        config: AppConfig,
        router: ModelRouter,
        prompter: Prompter,
        *,
        current_directory: Optional[Path] = None,
    ) -> "SessionServices":
        project = ProjectContext.discover(current_directory)
        tools = ToolContext.for_directory(
            project.current_directory,
            approve=prompter_approval(prompter),
            prompter=prompter,
            trusted_commands=list(config.tools.trusted_commands),
            process_timeout_ms=config.tools.process_timeout_ms,
            max_output_chars=config.tools.max_output_chars,
        )
        history = TaskHistory(
            config.resolve(project.project_root, config.history.path),
            max_tasks=config.history.max_tasks,
        )
        return cls(
            config=config,
            project=project,
            router=router,
            prompter=prompter,
            tools=tools,
            history=history,
            planner=TaskPlanner(
                config, router, tools, assessor=ComplexityAssessor(config.planning.complexity)
            ),
            executor=TaskExecutor(
                router,
                tools,
                history=history,
                guidelines=project.create_context_string(),
                max_turns=config.models.max_tool_turns,
            ),
            validator=ValidationEngine(config.validation, router, tools),
        )


@dataclass(slots=True)
class SessionContext:
    """Everything the states read and write while a session runs."""

    services: SessionServices
    one_shot: bool = False
    active: bool = True
    pending_input: Optional[str] = None
    request: Optional[str] = None
    referenced_files: List[str] = field(default_factory=list)
    profile: Optional[ContextProfile] = None
    plan: Optional[TaskPlan] = None
    execution: Optional[ExecutionReport] = None
    validation: Optional[ValidationResult] = None
    fix_attempts: int = 0
    cycles: int = 0

    def show(self, message: str) -> None:
        self.services.prompter.show(message)

    def reset_request(self) -> None:
        self.request = None
        self.referenced_files = []
        self.profile = None
        self.plan = None
        self.execution = None
        self.validation = None
        self.fix_attempts = 0


__all__ = ["SessionContext", "SessionServices"]
