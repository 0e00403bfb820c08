"""Typed records shared by the planner, executor, validator and history."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling and camelCase JSON."""

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ComplexityLevel(str, Enum):
    """Coarse complexity classification for plans and subtasks."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class LLMType(str, Enum):
    """Model-routing tier derived from subtask complexity."""

    LOCAL = "LOCAL"
    REMOTE = "REMOTE"
    HYBRID = "HYBRID"


class TaskType(str, Enum):
    GENERATION = "GENERATION"
    REFACTORING = "REFACTORING"
    EXPLANATION = "EXPLANATION"


class SubtaskStatus(str, Enum):
    """Lifecycle states for a subtask."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ValidationStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"


class FileToRead(RecordModel):
    path: str
    syntax: str = "text"


class ImplementationDetails(RecordModel):
    """What a subtask changed, kept for future planning context."""

    modified_files: List[str] = Field(default_factory=list)
    public_interfaces: List[str] = Field(default_factory=list)
    additional_context: List[str] = Field(default_factory=list)
    summary: Optional[str] = None


class Subtask(RecordModel):
    """Single executable unit of work within a plan."""

    id: str
    specification: str
    complexity: ComplexityLevel = ComplexityLevel.MEDIUM
    llm_type: LLMType = LLMType.HYBRID
    dependencies: List[str] = Field(default_factory=list)
    files_to_read: List[FileToRead] = Field(default_factory=list)
    status: SubtaskStatus = SubtaskStatus.PENDING
    implementation_details: Optional[ImplementationDetails] = None


class ValidationResult(RecordModel):
    """Verdict recorded by the validation engine."""

    status: ValidationStatus
    message: str
    failed_tasks: List[str] = Field(default_factory=list)
    suggested_fixes: Optional[str] = None


class TaskPlan(RecordModel):
    """Decomposition of a user request into dependency-ordered subtasks."""

    original_request: str
    subtasks: List[Subtask] = Field(default_factory=list)
    execution_order: List[str] = Field(default_factory=list)
    overall_complexity: ComplexityLevel = ComplexityLevel.MEDIUM
    validation_instructions: Optional[str] = None
    validation_result: Optional[ValidationResult] = None
    completed_at: Optional[datetime] = None

    def subtask(self, subtask_id: str) -> Optional[Subtask]:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def ordered_subtasks(self) -> List[Subtask]:
        """Return subtasks following ``execution_order``; stragglers keep declaration order."""
        by_id = {subtask.id: subtask for subtask in self.subtasks}
        ordered = [by_id[item] for item in self.execution_order if item in by_id]
        seen = {subtask.id for subtask in ordered}
        ordered.extend(subtask for subtask in self.subtasks if subtask.id not in seen)
        return ordered


class ComplexityFactors(RecordModel):
    task_type: float
    scope_size: float
    dependencies_count: float
    technology_complexity: float
    prior_success_rate: float


class ComplexityAssessment(RecordModel):
    level: ComplexityLevel
    score: float
    factors: ComplexityFactors
    explanation: str


class FileInfo(RecordModel):
    path: str
    language: str = "plaintext"
    size: int = 0


class Dependency(RecordModel):
    name: str
    version: str = ""


class DirectoryNode(RecordModel):
    path: str
    name: str
    children: List["DirectoryNode"] = Field(default_factory=list)


class ContextProfile(RecordModel):
    """Read-only snapshot of project metadata used to ground planning prompts."""

    project_root: str
    current_directory: str
    files: List[FileInfo] = Field(default_factory=list)
    dependencies: List[Dependency] = Field(default_factory=list)
    technology_stack: List[str] = Field(default_factory=list)
    directory_structure: Optional[DirectoryNode] = None
    guidelines: Optional[str] = None

    def create_context_string(self) -> str:
        parts: List[str] = []
        if self.guidelines:
            parts.append(self.guidelines)
        if self.technology_stack:
            parts.append(f"Technology stack: {', '.join(self.technology_stack)}\n\n")
        if self.dependencies:
            listed = ", ".join(
                f"{item.name}@{item.version}" if item.version else item.name
                for item in self.dependencies[:40]
            )
            parts.append(f"Dependencies: {listed}\n\n")
        return "".join(parts)


# ---------------------------------------------------------------- tool args
class ToolArgsModel(BaseModel):
    """Lenient base for arguments produced by a model."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RawFileToRead(ToolArgsModel):
    path: str
    syntax: Optional[str] = None


class RawSubtask(ToolArgsModel):
    """Subtask as proposed by the planning model, before normalization."""

    id: Any = None
    specification: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("specification", "taskSpecification", "task_specification"),
    )
    complexity: Any = None
    dependencies: List[Any] = Field(default_factory=list)
    files_to_read: List[RawFileToRead] = Field(
        default_factory=list,
        validation_alias=AliasChoices("filesToRead", "files_to_read"),
    )


class StorePlanArgs(ToolArgsModel):
    """Arguments captured by the ``store_plan`` tool."""

    subtasks: List[RawSubtask] = Field(min_length=1)
    execution_order: Optional[List[str]] = Field(
        default=None,
        validation_alias=AliasChoices("executionOrder", "execution_order"),
    )
    overall_complexity: Any = Field(
        default=None,
        validation_alias=AliasChoices("overallComplexity", "overall_complexity"),
    )
    validation_instructions: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("validationInstructions", "validation_instructions"),
    )


class StoreValidationArgs(ToolArgsModel):
    """Arguments captured by the ``store_validation_result`` tool."""

    status: ValidationStatus
    message: str
    failed_tasks: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("failedTasks", "failed_tasks"),
    )
    suggested_fixes: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("suggestedFixes", "suggested_fixes"),
    )

    @field_validator("status", mode="before")
    @classmethod
    def _upper_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    def to_result(self) -> ValidationResult:
        return ValidationResult(
            status=self.status,
            message=self.message,
            failed_tasks=list(self.failed_tasks),
            suggested_fixes=self.suggested_fixes,
        )


class ReportImplementationArgs(ToolArgsModel):
    """Arguments captured by the executor's ``report_implementation`` tool."""

    summary: str
    public_interfaces: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("publicInterfaces", "public_interfaces"),
    )
    additional_context: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("additionalContext", "additional_context"),
    )


__all__ = [
    "ComplexityAssessment",
    "ComplexityFactors",
    "ComplexityLevel",
    "ContextProfile",
    "Dependency",
    "DirectoryNode",
    "FileInfo",
    "FileToRead",
    "ImplementationDetails",
    "LLMType",
    "RawFileToRead",
    "RawSubtask",
    "RecordModel",
    "ReportImplementationArgs",
    "StorePlanArgs",
    "StoreValidationArgs",
    "Subtask",
    "SubtaskStatus",
    "TaskPlan",
    "TaskType",
    "ValidationResult",
    "ValidationStatus",
    "utc_now",
]
