from __future__ import annotations

import logging
from pathlib import Path

import pytest
from conftest import ScriptedClient, function_call, text_reply

from sirai.config import ComplexityConfig, ComplexityThresholds, build_config
from sirai.models import LLMTransportError, ModelRouter
from sirai.planning.complexity import ComplexityAssessor, ComplexityParams
from sirai.planning.planner import (
    FALLBACK_VALIDATION,
    MISSING_SPECIFICATION,
    TaskPlanner,
    clamp_complexity,
    fallback_plan,
    infer_task_type,
    normalize_plan,
    overall_complexity,
)
from sirai.planning.schemas import (
    ComplexityLevel,
    ContextProfile,
    Dependency,
    LLMType,
    StorePlanArgs,
    Subtask,
    TaskType,
)
from sirai.tools.registry import ToolContext


def _stored(**payload) -> StorePlanArgs:
    return StorePlanArgs.model_validate(payload)


def test_assessor_scores_generation_task_as_medium() -> None:
    assessment = ComplexityAssessor().assess(
        ComplexityParams(
            task_type=TaskType.GENERATION,
            scope_size=5,
            dependencies_count=2,
            technology_complexity=3,
        )
    )

    assert assessment.score == pytest.approx(44.0)
    assert assessment.level is ComplexityLevel.MEDIUM
    assert assessment.factors.prior_success_rate == pytest.approx(50.0)
    assert "MEDIUM complexity with overall score 44.0" in assessment.explanation


def test_assessor_inverts_success_rate_and_caps_factors() -> None:
    assessment = ComplexityAssessor().assess(
        ComplexityParams(
            task_type=None,
            scope_size=40,
            dependencies_count=100,
            technology_complexity=0,
            prior_success_rate=0.25,
        )
    )

    assert assessment.factors.scope_size == 100.0
    assert assessment.factors.dependencies_count == 100.0
    assert assessment.factors.task_type == 50.0
    assert assessment.factors.prior_success_rate == pytest.approx(75.0)


def test_assessor_respects_configured_thresholds() -> None:
    config = ComplexityConfig(thresholds=ComplexityThresholds(medium=5.0, high=12.0))
    assessment = ComplexityAssessor(config).assess(
        ComplexityParams(task_type=TaskType.EXPLANATION, scope_size=1, dependencies_count=0, technology_complexity=0)
    )

    assert assessment.level is ComplexityLevel.HIGH


def test_clamp_complexity_defaults_to_medium() -> None:
    assert clamp_complexity("high") is ComplexityLevel.HIGH
    assert clamp_complexity(" low ") is ComplexityLevel.LOW
    assert clamp_complexity("extreme") is ComplexityLevel.MEDIUM
    assert clamp_complexity(7) is ComplexityLevel.MEDIUM
    assert clamp_complexity(None) is ComplexityLevel.MEDIUM


def test_overall_complexity_rules() -> None:
    def tasks(*levels: ComplexityLevel) -> list[Subtask]:
        return [Subtask(id=str(index), specification="x", complexity=level) for index, level in enumerate(levels)]

    assert overall_complexity(tasks(ComplexityLevel.LOW, ComplexityLevel.HIGH)) is ComplexityLevel.HIGH
    assert overall_complexity(tasks(ComplexityLevel.LOW, ComplexityLevel.MEDIUM)) is ComplexityLevel.MEDIUM
    assert overall_complexity(tasks(ComplexityLevel.LOW, ComplexityLevel.LOW, ComplexityLevel.MEDIUM)) is (
        ComplexityLevel.LOW
    )


def test_normalize_plan_maps_complexity_to_llm_type() -> None:
    plan = normalize_plan(
        "Add a feature",
        _stored(
            subtasks=[
                {"id": "a", "specification": "Write module", "complexity": "HIGH"},
                {"id": "b", "specification": "Write docs", "complexity": "LOW"},
                {"id": "c", "specification": "Wire it", "complexity": "bogus"},
            ],
            executionOrder=["a", "b", "c"],
            validationInstructions="Run the tests.",
        ),
    )

    by_id = {subtask.id: subtask for subtask in plan.subtasks}
    assert by_id["a"].llm_type is LLMType.REMOTE
    assert by_id["b"].llm_type is LLMType.LOCAL
    assert by_id["c"].complexity is ComplexityLevel.MEDIUM
    assert by_id["c"].llm_type is LLMType.HYBRID
    assert plan.overall_complexity is ComplexityLevel.HIGH
    assert plan.validation_instructions == "Run the tests."


def test_normalize_plan_repairs_ids_dependencies_and_specs() -> None:
    plan = normalize_plan(
        "Do it",
        _stored(
            subtasks=[
                {"id": "a", "taskSpecification": "First", "dependencies": ["a", "ghost"]},
                {"id": "a", "specification": "Duplicate id"},
                {"specification": "   "},
            ],
        ),
    )

    ids = [subtask.id for subtask in plan.subtasks]
    assert ids[0] == "a"
    assert len(set(ids)) == 3
    assert plan.subtasks[0].dependencies == []
    assert plan.subtasks[2].specification == MISSING_SPECIFICATION
    assert sorted(plan.execution_order) == sorted(ids)
    assert plan.validation_instructions is None


def test_normalize_plan_places_dependencies_first() -> None:
    plan = normalize_plan(
        "Build",
        _stored(
            subtasks=[
                {"id": "api", "specification": "API", "dependencies": ["models"]},
                {"id": "models", "specification": "Models"},
                {"id": "docs", "specification": "Docs"},
            ],
            executionOrder=["docs", "api", "models"],
        ),
    )

    assert plan.execution_order == ["docs", "models", "api"]


def test_normalize_plan_appends_ids_missing_from_order() -> None:
    plan = normalize_plan(
        "Build",
        _stored(
            subtasks=[
                {"id": "one", "specification": "1"},
                {"id": "two", "specification": "2"},
                {"id": "three", "specification": "3"},
            ],
            executionOrder=["three", "unknown", "three"],
        ),
    )

    assert plan.execution_order == ["three", "one", "two"]


def test_normalize_plan_keeps_cycle_members_in_priority_order(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="sirai.planning.planner"):
        plan = normalize_plan(
            "Loop",
            _stored(
                subtasks=[
                    {"id": "x", "specification": "X", "dependencies": ["y"]},
                    {"id": "y", "specification": "Y", "dependencies": ["x"]},
                    {"id": "z", "specification": "Z"},
                ],
                executionOrder=["y", "x", "z"],
            ),
        )

    assert plan.execution_order == ["z", "y", "x"]
    assert "Dependency cycle" in caplog.text


def test_fallback_plan_is_single_remote_subtask() -> None:
    plan = fallback_plan("Fix the login page")

    assert len(plan.subtasks) == 1
    subtask = plan.subtasks[0]
    assert subtask.specification == "Fix the login page"
    assert subtask.complexity is ComplexityLevel.MEDIUM
    assert subtask.llm_type is LLMType.REMOTE
    assert plan.execution_order == [subtask.id]
    assert plan.validation_instructions == FALLBACK_VALIDATION


def test_infer_task_type_prefers_explanation() -> None:
    assert infer_task_type("Explain how the parser works") is TaskType.EXPLANATION
    assert infer_task_type("Refactor the cache layer") is TaskType.REFACTORING
    assert infer_task_type("Add a retry option") is TaskType.GENERATION
    assert infer_task_type("hmm") is None


def test_explanation_lists_subtasks_and_order() -> None:
    plan = normalize_plan(
        "Build",
        _stored(
            subtasks=[
                {"id": "b", "specification": "Second", "dependencies": ["a"], "filesToRead": [{"path": "src/app.py"}]},
                {"id": "a", "specification": "First"},
            ],
            validationInstructions="Run pytest",
        ),
    )
    assessment = ComplexityAssessor().assess(
        ComplexityParams(task_type=None, scope_size=2, dependencies_count=0, technology_complexity=0)
    )

    report = TaskPlanner.get_explanation(plan, assessment)

    assert report.startswith("# Task Planning Report")
    assert "### 1. Second" in report
    assert "- Dependencies: 2" in report
    assert "  - src/app.py (python)" in report
    assert "2 → 1" in report
    assert "## Validation Instructions" in report
    assert "## Complexity Assessment" in report


def test_context_string_includes_stack_and_dependencies() -> None:
    profile = ContextProfile(
        project_root="/tmp/p",
        current_directory="/tmp/p",
        guidelines="Project cursor rules:\nBe nice\n\n",
        technology_stack=["Python"],
        dependencies=[Dependency(name="pydantic", version=">=2"), Dependency(name="typer")],
    )

    text = profile.create_context_string()

    assert text.startswith("Project cursor rules:\nBe nice")
    assert "Technology stack: Python" in text
    assert "Dependencies: pydantic@>=2, typer" in text


def test_pre_planning_failure_does_not_block_planning(git_repo: Path, caplog: pytest.LogCaptureFixture) -> None:
    config = build_config({"planning": {"pre_planning": {"enabled": True}}})
    client = ScriptedClient(
        [
            LLMTransportError("pre-planning model offline"),
            function_call(
                "store_plan",
                {
                    "subtasks": [{"id": "write", "specification": "Write the module", "complexity": "LOW"}],
                    "executionOrder": ["write"],
                },
            ),
            text_reply("Plan stored."),
        ],
        max_attempts=1,
    )
    router = ModelRouter(config.models, client_factory=lambda settings: client)
    planner = TaskPlanner(config, router, ToolContext.for_directory(git_repo))
    profile = planner.create_context_profile(git_repo, git_repo)

    with caplog.at_level(logging.WARNING):
        plan = planner.create_task_plan("Write the module", profile)

    assert "Pre-planning failed: pre-planning model offline" in caplog.text
    assert [subtask.id for subtask in plan.subtasks] == ["write"]
    assert plan.subtasks[0].llm_type is LLMType.LOCAL
    assert plan.execution_order == ["write"]
    assert len(client.payloads) == 3
