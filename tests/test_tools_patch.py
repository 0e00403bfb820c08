from __future__ import annotations

import json
from pathlib import Path

import pytest

from sirai.tools.interaction import ApprovalRequest
from sirai.tools.patch import EDIT_FILE, PATCH_FILE
from sirai.tools.registry import ToolContext, ToolRegistry

ORIGINAL = "alpha\nbeta\ngamma\ndelta\n"


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    (tmp_path / "notes.txt").write_text(ORIGINAL, encoding="utf-8")
    return tmp_path


def _registry(root: Path, *, approved: bool = True, seen: list | None = None) -> ToolRegistry:
    def approve(request: ApprovalRequest) -> bool:
        if seen is not None:
            seen.append(request)
        return approved

    return ToolRegistry([PATCH_FILE, EDIT_FILE], ToolContext(working_dir=root, approve=approve))


def _read(root: Path) -> str:
    return (root / "notes.txt").read_text(encoding="utf-8")


def test_patch_applies_changes_sequentially(workspace: Path) -> None:
    seen: list[ApprovalRequest] = []
    registry = _registry(workspace, seen=seen)

    outcome = registry.dispatch(
        "patch_file",
        {
            "file_path": "notes.txt",
            "changes": [
                {"find": "beta", "replace": "BETA"},
                {"find": "BETA\ngamma", "replace": "BETA and gamma"},
            ],
        },
    )

    payload = json.loads(outcome.output)
    assert payload["status"] == "success"
    assert payload["changesApplied"] == 2
    assert _read(workspace) == "alpha\nBETA and gamma\ndelta\n"
    assert registry.context.touched == ["notes.txt"]
    assert "--- Patch #1 --- line 2, column 1" in seen[0].preview


def test_patch_accepts_legacy_field_names(workspace: Path) -> None:
    outcome = _registry(workspace).dispatch(
        "patch_file",
        {"file_path": "notes.txt", "patches": [{"find_pattern": "delta", "replacement_content": "omega"}]},
    )

    assert json.loads(outcome.output)["status"] == "success"
    assert _read(workspace).endswith("omega\n")


def test_patch_failure_leaves_file_untouched(workspace: Path) -> None:
    outcome = _registry(workspace).dispatch(
        "patch_file",
        {
            "file_path": "notes.txt",
            "changes": [
                {"find": "alpha", "replace": "ALPHA"},
                {"find": "missing", "replace": "x"},
            ],
        },
    )

    payload = json.loads(outcome.output)
    assert payload["status"] == "error"
    assert payload["message"] == "Patch #2 failed: Pattern not found."
    assert payload["patchesAppliedSuccessfully"] == 1
    assert "1:alpha" in payload["currentFileContent"]
    assert _read(workspace) == ORIGINAL


def test_patch_rejected_by_user_is_canceled(workspace: Path) -> None:
    outcome = _registry(workspace, approved=False).dispatch(
        "patch_file", {"file_path": "notes.txt", "changes": [{"find": "alpha", "replace": "A"}]}
    )

    assert json.loads(outcome.output)["status"] == "canceled"
    assert _read(workspace) == ORIGINAL


def test_patch_missing_file_is_an_error(workspace: Path) -> None:
    outcome = _registry(workspace).dispatch(
        "patch_file", {"file_path": "nope.txt", "changes": [{"find": "a", "replace": "b"}]}
    )

    assert outcome.failed
    assert json.loads(outcome.output)["message"] == "File not found: nope.txt"


def test_edit_uses_original_line_numbers(workspace: Path) -> None:
    outcome = _registry(workspace).dispatch(
        "edit_file",
        {
            "file_path": "notes.txt",
            "changes": [
                {
                    "start_line": 1,
                    "start_content": "alpha",
                    "end_line": 1,
                    "end_content": "alpha",
                    "new_content": "one\ntwo",
                },
                {
                    "start_line": 3,
                    "start_content": "  gamma  ",
                    "end_line": 4,
                    "end_content": "delta",
                    "new_content": "three",
                },
            ],
        },
    )

    payload = json.loads(outcome.output)
    assert payload["status"] == "success"
    assert _read(workspace) == "one\ntwo\nbeta\nthree\n"


def test_edit_checksum_mismatch_reports_actual_content(workspace: Path) -> None:
    outcome = _registry(workspace).dispatch(
        "edit_file",
        {
            "file_path": "notes.txt",
            "changes": [
                {"start_line": 2, "start_content": "BETA", "end_line": 2, "end_content": "beta", "new_content": "b"}
            ],
        },
    )

    payload = json.loads(outcome.output)
    assert payload["status"] == "error"
    assert payload["message"] == "Content at starting line does not match expected content"
    assert payload["actualContent"] == "beta"
    assert _read(workspace) == ORIGINAL


def test_edit_out_of_bounds_is_rejected(workspace: Path) -> None:
    outcome = _registry(workspace).dispatch(
        "edit_file",
        {
            "file_path": "notes.txt",
            "changes": [
                {"start_line": 9, "start_content": "", "end_line": 9, "end_content": "", "new_content": "x"}
            ],
        },
    )

    payload = json.loads(outcome.output)
    assert payload["message"].startswith("Starting line number 9 is out of bounds")
    assert _read(workspace) == ORIGINAL


def test_edit_overlapping_ranges_are_rejected(workspace: Path) -> None:
    change = {"start_content": "beta", "end_content": "gamma", "new_content": "x"}
    outcome = _registry(workspace).dispatch(
        "edit_file",
        {
            "file_path": "notes.txt",
            "changes": [
                {**change, "start_line": 2, "end_line": 3},
                {**change, "start_line": 3, "start_content": "gamma", "end_line": 3},
            ],
        },
    )

    payload = json.loads(outcome.output)
    assert "overlaps" in payload["message"]
    assert _read(workspace) == ORIGINAL


def test_edit_rejected_by_user_is_canceled(workspace: Path) -> None:
    outcome = _registry(workspace, approved=False).dispatch(
        "edit_file",
        {
            "file_path": "notes.txt",
            "changes": [
                {"start_line": 1, "start_content": "alpha", "end_line": 1, "end_content": "alpha", "new_content": "a"}
            ],
        },
    )

    assert json.loads(outcome.output)["status"] == "canceled"
    assert _read(workspace) == ORIGINAL


def test_edit_applies_unordered_changes_against_original_lines(tmp_path: Path) -> None:
    numbered = "".join(f"l{index}\n" for index in range(1, 10))
    (tmp_path / "notes.txt").write_text(numbered, encoding="utf-8")

    def change(start: int, end: int, new_content: str) -> dict:
        return {
            "start_line": start,
            "start_content": f"l{start}",
            "end_line": end,
            "end_content": f"l{end}",
            "new_content": new_content,
        }

    outcome = _registry(tmp_path).dispatch(
        "edit_file",
        {
            "file_path": "notes.txt",
            "changes": [
                change(2, 2, "two-a\ntwo-b\ntwo-c"),
                change(7, 8, "seven-eight"),
                change(4, 6, "four\nfive"),
                change(9, 9, "nine"),
            ],
        },
    )

    payload = json.loads(outcome.output)
    assert payload["status"] == "success"
    assert payload["changesApplied"] == 4
    assert _read(tmp_path) == "l1\ntwo-a\ntwo-b\ntwo-c\nl3\nfour\nfive\nseven-eight\nnine\n"


@pytest.mark.parametrize(
    ("tool", "arguments"),
    [
        ("patch_file", {"changes": [{"find": "caf", "replace": "tea"}]}),
        (
            "edit_file",
            {"changes": [{"start_line": 1, "start_content": "caf", "end_line": 1, "end_content": "caf", "new_content": "tea"}]},
        ),
    ],
)
def test_undecodable_file_is_reported_not_raised(tmp_path: Path, tool: str, arguments: dict) -> None:
    legacy = tmp_path / "legacy.txt"
    legacy.write_bytes(b"caf\xe9\n")

    outcome = _registry(tmp_path).dispatch(tool, {"file_path": "legacy.txt", **arguments})

    payload = json.loads(outcome.output)
    assert outcome.failed
    assert payload["status"] == "error"
    assert payload["message"] == "File legacy.txt is not valid utf-8 text and cannot be edited."
    assert legacy.read_bytes() == b"caf\xe9\n"
