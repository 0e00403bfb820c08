from __future__ import annotations

import json
from pathlib import Path

from sirai.planning.history import TaskHistory
from sirai.planning.schemas import (
    ImplementationDetails,
    Subtask,
    SubtaskStatus,
    TaskPlan,
    ValidationResult,
    ValidationStatus,
)


def _plan(request: str, *statuses: SubtaskStatus) -> TaskPlan:
    subtasks = [
        Subtask(id=f"{request}-{index}", specification=f"Step {index} of {request}", status=status)
        for index, status in enumerate(statuses or (SubtaskStatus.COMPLETED,))
    ]
    return TaskPlan(
        original_request=request,
        subtasks=subtasks,
        execution_order=[subtask.id for subtask in subtasks],
    )


def test_append_persists_camel_case_json(tmp_path: Path) -> None:
    history = TaskHistory(tmp_path / "state" / "task-history.json")

    stored = history.append(_plan("first"))

    raw = json.loads(history.path.read_text(encoding="utf-8"))
    assert raw[0]["originalRequest"] == "first"
    assert raw[0]["executionOrder"] == ["first-0"]
    assert "completedAt" in raw[0]
    assert stored.completed_at is not None
    assert list(history.path.parent.glob(".history-*")) == []


def test_append_stores_a_snapshot(tmp_path: Path) -> None:
    history = TaskHistory(tmp_path / "history.json")
    plan = _plan("snap")

    history.append(plan)
    plan.subtasks[0].specification = "mutated later"
    plan.original_request = "changed"

    loaded = history.load()[0]
    assert loaded.original_request == "snap"
    assert loaded.subtasks[0].specification == "Step 0 of snap"


def test_history_is_truncated_to_most_recent(tmp_path: Path) -> None:
    history = TaskHistory(tmp_path / "history.json", max_tasks=3)

    for index in range(5):
        history.append(_plan(f"task{index}"))

    assert [plan.original_request for plan in history.load()] == ["task2", "task3", "task4"]
    assert [plan.original_request for plan in history.completed(limit=2)] == ["task4", "task3"]


def test_unreadable_history_is_treated_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    path.write_text("{not json", encoding="utf-8")
    history = TaskHistory(path)

    assert history.load() == []
    history.append(_plan("recovered"))
    assert [plan.original_request for plan in history.load()] == ["recovered"]


def test_clear_empties_history(tmp_path: Path) -> None:
    history = TaskHistory(tmp_path / "history.json")
    history.append(_plan("one"))

    history.clear()

    assert history.load() == []
    assert history.summary() == "No previously completed tasks."


def test_summary_shows_verdicts(tmp_path: Path) -> None:
    history = TaskHistory(tmp_path / "history.json")
    plan = _plan("checked")
    plan.validation_result = ValidationResult(status=ValidationStatus.PASSED, message="fine")
    history.append(plan)

    summary = history.summary()

    assert summary.startswith("Previously completed tasks:")
    assert "checked [PASSED]" in summary


def test_prior_success_rate(tmp_path: Path) -> None:
    history = TaskHistory(tmp_path / "history.json")
    assert history.prior_success_rate() is None

    history.append(_plan("mixed", SubtaskStatus.COMPLETED, SubtaskStatus.FAILED, SubtaskStatus.COMPLETED))
    history.append(_plan("ok", SubtaskStatus.COMPLETED))

    assert history.prior_success_rate() == 0.75


def test_implementation_details_summary(tmp_path: Path) -> None:
    history = TaskHistory(tmp_path / "history.json")
    plan = _plan("feature")
    plan.subtasks[0].implementation_details = ImplementationDetails(
        modified_files=["src/app.py"],
        public_interfaces=["app.run()"],
        summary="Added the run entry point",
    )
    history.append(plan)
    history.append(_plan("no-details"))

    text = history.implementation_details_summary()

    assert text.startswith("Previously implemented changes:")
    assert "Task: Step 0 of feature" in text
    assert "Modified files: src/app.py" in text
    assert "Public interfaces: app.run()" in text
    assert "no-details" not in text
