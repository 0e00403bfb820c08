"""Task decomposition: turn a request into a normalized, dependency-ordered plan.

The planning model explores the project with read-only tools and must finish
by calling ``store_plan``. The captured arguments are then normalized so the
rest of the session can rely on a few invariants:

* subtask ids are unique;
* complexity is one of LOW/MEDIUM/HIGH and ``llm_type`` follows from it;
* dependencies only reference other known subtasks;
* ``execution_order`` is a permutation of the subtask ids that runs every
  dependency before its dependents wherever the graph is acyclic.

Any failure degrades to :func:`fallback_plan`; planning never raises.
"""

from __future__ import annotations

import heapq
import logging
import re
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..config import AppConfig
from ..models.factory import ModelRouter
from ..prompts import render_planner_prompt
from ..tools.files import walk_files
from ..tools.paths import render_files, syntax_for
from ..tools.registry import ToolContext
from ..tools.toolsets import planner_tools
from .complexity import ComplexityAssessor, ComplexityParams
from .context_profile import ProjectContext, build_context_profile, read_guidelines
from .pre_planner import PrePlanner
from .schemas import (
    ComplexityAssessment,
    ComplexityLevel,
    ContextProfile,
    FileToRead,
    LLMType,
    StorePlanArgs,
    Subtask,
    TaskPlan,
    TaskType,
)

LOGGER = logging.getLogger(__name__)

FALLBACK_VALIDATION = "Run basic tests to verify the implementation works as expected."
MISSING_SPECIFICATION = "No spec provided"

LLM_TYPE_BY_COMPLEXITY = {
    ComplexityLevel.HIGH: LLMType.REMOTE,
    ComplexityLevel.LOW: LLMType.LOCAL,
    ComplexityLevel.MEDIUM: LLMType.HYBRID,
}

_TASK_TYPE_KEYWORDS = [
    (TaskType.EXPLANATION, re.compile(r"\b(explain|describe|document|why|what does|how does)\b", re.I)),
    (TaskType.REFACTORING, re.compile(r"\b(refactor|rename|restructure|clean ?up|simplify|extract|move)\b", re.I)),
    (TaskType.GENERATION, re.compile(r"\b(add|create|implement|build|generate|write|new)\b", re.I)),
]


class PlanNotStoredError(RuntimeError):
    """Raised when the planning model finishes without calling ``store_plan``."""


# ---------------------------------------------------------- normalization
def clamp_complexity(value: object) -> ComplexityLevel:
    """Map any model-provided complexity onto a level; invalid input is MEDIUM."""
    if isinstance(value, ComplexityLevel):
        return value
    if isinstance(value, str):
        try:
            return ComplexityLevel(value.strip().upper())
        except ValueError:
            pass
    return ComplexityLevel.MEDIUM


def llm_type_for(level: ComplexityLevel) -> LLMType:
    return LLM_TYPE_BY_COMPLEXITY[level]


def overall_complexity(subtasks: Sequence[Subtask]) -> ComplexityLevel:
    levels = [subtask.complexity for subtask in subtasks]
    if ComplexityLevel.HIGH in levels:
        return ComplexityLevel.HIGH
    if levels.count(ComplexityLevel.MEDIUM) >= levels.count(ComplexityLevel.LOW):
        return ComplexityLevel.MEDIUM
    return ComplexityLevel.LOW


def topological_order(subtasks: Sequence[Subtask], priority: Sequence[str]) -> List[str]:
    """Order ids so dependencies come first, breaking ties by ``priority``.

    Members of a cycle cannot be ordered; they are appended in priority order.
    """
    rank = {task_id: index for index, task_id in enumerate(priority)}
    pending: Dict[str, int] = {}
    dependents: Dict[str, List[str]] = {subtask.id: [] for subtask in subtasks}
    for subtask in subtasks:
        pending[subtask.id] = len(subtask.dependencies)
        for dependency in subtask.dependencies:
            dependents[dependency].append(subtask.id)

    ready = [(rank[task_id], task_id) for task_id, count in pending.items() if count == 0]
    heapq.heapify(ready)
    ordered: List[str] = []
    while ready:
        _, task_id = heapq.heappop(ready)
        ordered.append(task_id)
        for dependent in dependents[task_id]:
            pending[dependent] -= 1
            if pending[dependent] == 0:
                heapq.heappush(ready, (rank[dependent], dependent))

    if len(ordered) < len(subtasks):
        stuck = [task_id for task_id in priority if task_id not in set(ordered)]
        LOGGER.warning("Dependency cycle among subtasks %s; keeping proposed order", ", ".join(stuck))
        ordered.extend(stuck)
    return ordered


def normalize_plan(request: str, stored: StorePlanArgs) -> TaskPlan:
    """Build a :class:`TaskPlan` from raw ``store_plan`` arguments."""
    subtasks: List[Subtask] = []
    seen: set[str] = set()
    for raw in stored.subtasks:
        task_id = str(raw.id).strip() if raw.id is not None else ""
        if not task_id or task_id in seen:
            task_id = str(uuid.uuid4())
        seen.add(task_id)
        level = clamp_complexity(raw.complexity)
        subtasks.append(
            Subtask(
                id=task_id,
                specification=(raw.specification or "").strip() or MISSING_SPECIFICATION,
                complexity=level,
                llm_type=llm_type_for(level),
                dependencies=[str(item) for item in raw.dependencies],
                files_to_read=[
                    FileToRead(path=item.path, syntax=item.syntax or syntax_for(item.path))
                    for item in raw.files_to_read
                ],
            )
        )

    known = [subtask.id for subtask in subtasks]
    for subtask in subtasks:
        kept: List[str] = []
        for dependency in subtask.dependencies:
            if dependency in seen and dependency != subtask.id and dependency not in kept:
                kept.append(dependency)
        subtask.dependencies = kept

    order: List[str] = []
    for task_id in stored.execution_order or []:
        task_id = str(task_id)
        if task_id in seen and task_id not in order:
            order.append(task_id)
    order.extend(task_id for task_id in known if task_id not in order)

    return TaskPlan(
        original_request=request,
        subtasks=subtasks,
        execution_order=topological_order(subtasks, order),
        overall_complexity=overall_complexity(subtasks),
        validation_instructions=(stored.validation_instructions or "").strip() or None,
    )


def fallback_plan(request: str) -> TaskPlan:
    """Single-subtask plan used whenever planning fails."""
    subtask = Subtask(
        id=str(uuid.uuid4()),
        specification=request,
        complexity=ComplexityLevel.MEDIUM,
        llm_type=LLMType.REMOTE,
    )
    return TaskPlan(
        original_request=request,
        subtasks=[subtask],
        execution_order=[subtask.id],
        overall_complexity=ComplexityLevel.MEDIUM,
        validation_instructions=FALLBACK_VALIDATION,
    )


def infer_task_type(request: str) -> Optional[TaskType]:
    for task_type, pattern in _TASK_TYPE_KEYWORDS:
        if pattern.search(request):
            return task_type
    return None


# --------------------------------------------------------------- planner
class TaskPlanner:
    """Drive the planning model and normalize what it stores."""

    def __init__(
        self,
        config: AppConfig,
        router: ModelRouter,
        context: ToolContext,
        *,
        assessor: Optional[ComplexityAssessor] = None,
    ) -> None:
        self._config = config
        self._router = router
        self._context = context
        self._assessor = assessor or ComplexityAssessor(config.planning.complexity)

    def create_context_profile(self, project_root: Path, current_dir: Path) -> ContextProfile:
        project = ProjectContext(
            project_root=Path(project_root),
            current_directory=Path(current_dir),
            guidelines=read_guidelines(Path(project_root)),
        )
        return build_context_profile(project, self._config.context, ignore_rules=self._context.ignore_rules)

    def create_task_plan(
        self,
        request: str,
        profile: ContextProfile,
        *,
        referenced_files: Sequence[str] = (),
    ) -> TaskPlan:
        """Plan ``request``; any failure yields :func:`fallback_plan`."""
        try:
            return self._plan(request, profile, referenced_files)
        except Exception as error:  # noqa: BLE001 - every planning failure degrades to the fallback plan
            LOGGER.error("Error generating task plan: %s", error)
            return fallback_plan(request)

    def _plan(self, request: str, profile: ContextProfile, referenced_files: Sequence[str]) -> TaskPlan:
        planning = self._config.planning
        pre_planning: Optional[str] = None
        if planning.pre_planning.enabled:
            pre_planner = PrePlanner(self._router.for_role("pre_planning"), self._context)
            pre_planning = pre_planner.try_analyze(request, profile, referenced_files=referenced_files)

        try:
            listing = "\n".join(
                walk_files(
                    self._context.working_dir,
                    self._context.working_dir,
                    depth=planning.listing_depth,
                    ignore_rules=self._context.ignore_rules,
                )
            )
        except OSError as error:
            LOGGER.warning("Failed to list the project directory: %s", error)
            listing = "Could not retrieve directory structure."

        delegate = self._router.for_role("delegate") if planning.delegate.enabled else None
        system_prompt = render_planner_prompt(
            current_directory=Path(profile.current_directory),
            project_root=Path(profile.project_root),
            listing=listing,
            context_string=profile.create_context_string(),
            pre_planning=pre_planning,
            delegate_enabled=delegate is not None,
        )
        messages: List[str] = []
        if referenced_files:
            messages.append("Referenced files:\n" + render_files(referenced_files, self._context.working_dir))
        messages.append(request)

        client = self._router.for_role("planning")
        result = client.generate(
            system_prompt,
            messages,
            tools=planner_tools(self._context, delegate=delegate),
            label="planning",
        )
        stored = result.capture("store_plan")
        if not isinstance(stored, StorePlanArgs):
            raise PlanNotStoredError(
                f"No plan was saved by the model. Got response: {result.text[:200]!r}"
            )
        return normalize_plan(request, stored)

    # ------------------------------------------------------------ report
    def assess_plan(
        self,
        plan: TaskPlan,
        profile: ContextProfile,
        prior_success_rate: Optional[float] = None,
    ) -> ComplexityAssessment:
        return self._assessor.assess(
            ComplexityParams(
                task_type=infer_task_type(plan.original_request),
                scope_size=len(plan.subtasks),
                dependencies_count=len(profile.dependencies),
                technology_complexity=len(profile.technology_stack),
                prior_success_rate=prior_success_rate,
            )
        )

    @staticmethod
    def get_explanation(plan: TaskPlan, assessment: Optional[ComplexityAssessment] = None) -> str:
        index_of = {subtask.id: position for position, subtask in enumerate(plan.subtasks, start=1)}
        lines = [
            "# Task Planning Report",
            "",
            "## Task Decomposition",
            "",
            f"Task decomposed into {len(plan.subtasks)} subtasks based on "
            f"{plan.overall_complexity.value} complexity level.",
            "",
            "## Subtasks",
            "",
        ]
        for position, subtask in enumerate(plan.subtasks, start=1):
            lines.append(f"### {position}. {subtask.specification}")
            lines.append(f"- Complexity: {subtask.complexity.value}")
            lines.append(f"- LLM Strategy: {subtask.llm_type.value}")
            if subtask.dependencies:
                indices = [str(index_of.get(dependency, "?")) for dependency in subtask.dependencies]
                lines.append(f"- Dependencies: {', '.join(indices)}")
            if subtask.files_to_read:
                lines.append("- Files to Read:")
                lines.extend(f"  - {item.path} ({item.syntax})" for item in subtask.files_to_read)
            lines.append("")

        lines.extend(["## Execution Order", ""])
        lines.append(" → ".join(str(index_of.get(task_id, "?")) for task_id in plan.execution_order))
        lines.append("")
        if plan.validation_instructions:
            lines.extend(["## Validation Instructions", "", plan.validation_instructions, ""])
        if assessment is not None:
            lines.extend(["## Complexity Assessment", "", assessment.explanation, ""])
        return "\n".join(lines)


__all__ = [
    "FALLBACK_VALIDATION",
    "PlanNotStoredError",
    "TaskPlanner",
    "clamp_complexity",
    "fallback_plan",
    "infer_task_type",
    "llm_type_for",
    "normalize_plan",
    "overall_complexity",
    "topological_order",
]
