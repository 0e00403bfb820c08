"""In-place file mutation tools with all-or-nothing semantics.

``patch_file`` applies sequential find/replace pairs; ``edit_file`` replaces
verified line ranges. Both compute the full result in memory, ask for
approval, and only then perform a single write. Any failed change aborts the
whole call with the file untouched.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

from pydantic import AliasChoices, Field

from ..planning.schemas import ToolArgsModel
from ..telemetry import emit_event
from .errors import ToolError
from .interaction import ApprovalRequest
from .paths import ensure_path_in_working_dir, render_file
from .registry import ToolContext, ToolSpec, canceled_payload


def _load_target(raw_path: str, context: ToolContext) -> tuple[Path, str]:
    resolved = ensure_path_in_working_dir(raw_path, context.working_dir)
    if not resolved.exists():
        raise ToolError(f"File not found: {raw_path}")
    if not resolved.is_file():
        raise ToolError(f"{raw_path} is not a file.")
    try:
        return resolved, resolved.read_text(encoding="utf-8")
    except UnicodeDecodeError as error:
        raise ToolError(f"File {raw_path} is not valid utf-8 text and cannot be edited.") from error


def _line_and_column(text: str, index: int) -> tuple[int, int]:
    line = text.count("\n", 0, index) + 1
    last_newline = text.rfind("\n", 0, index)
    return line, index - last_newline


# ---------------------------------------------------------------- patch_file
class PatchChange(ToolArgsModel):
    find: str = Field(
        min_length=1,
        validation_alias=AliasChoices("find", "find_pattern"),
        description="Exact text to find; the first occurrence is replaced.",
    )
    replace: str = Field(
        validation_alias=AliasChoices("replace", "replacement_content"),
        description="Replacement text.",
    )


class PatchFileArgs(ToolArgsModel):
    file_path: str = Field(description="File to patch, relative to the working directory.")
    changes: List[PatchChange] = Field(
        min_length=1,
        validation_alias=AliasChoices("changes", "patches"),
        description="Find/replace pairs applied sequentially to the evolving content.",
    )


def patch_file(args: PatchFileArgs, context: ToolContext) -> str:
    resolved, original = _load_target(args.file_path, context)

    current = original
    diff_lines = [f"File: {args.file_path}", f"Applying {len(args.changes)} sequential patch(es):", ""]
    for number, change in enumerate(args.changes, start=1):
        index = current.find(change.find)
        if index == -1:
            emit_event("patch.failed", path=args.file_path, change=number)
            return json.dumps(
                {
                    "status": "error",
                    "message": f"Patch #{number} failed: Pattern not found.",
                    "failedPattern": change.find,
                    "patchesAppliedSuccessfully": number - 1,
                    "currentFileContent": render_file(args.file_path, original, line_numbers=True),
                    "suggestion": (
                        "Verify the pattern exists in the current state of the file. Earlier patches "
                        "in the same call may have altered it. The file was not modified."
                    ),
                }
            )
        line, column = _line_and_column(current, index)
        diff_lines.append(f"--- Patch #{number} --- line {line}, column {column}")
        diff_lines.append(f"- {change.find}")
        diff_lines.append(f"+ {change.replace}")
        current = current[:index] + change.replace + current[index + len(change.find):]

    request = ApprovalRequest(action="patch", target=args.file_path, preview="\n".join(diff_lines))
    if not context.approve(request):
        emit_event("patch.canceled", path=args.file_path)
        return canceled_payload("Patch operation was not approved by the user.")

    resolved.write_text(current, encoding="utf-8")
    context.record_touched(resolved)
    emit_event("patch.applied", path=args.file_path, changes=len(args.changes))
    return json.dumps(
        {
            "status": "success",
            "message": f"File {args.file_path} patched successfully with {len(args.changes)} changes.",
            "changesApplied": len(args.changes),
            "newContent": render_file(args.file_path, current),
        }
    )


# ----------------------------------------------------------------- edit_file
class LineEdit(ToolArgsModel):
    start_line: int = Field(ge=1, description="1-based first line to replace.")
    start_content: str = Field(description="Current content of the starting line, used as a checksum.")
    end_line: int = Field(ge=1, description="1-based last line to replace (inclusive).")
    end_content: str = Field(description="Current content of the ending line, used as a checksum.")
    new_content: str = Field(description="Replacement for the whole range.")


class EditFileArgs(ToolArgsModel):
    file_path: str = Field(description="File to edit, relative to the working directory.")
    changes: List[LineEdit] = Field(min_length=1)


@dataclass(slots=True)
class _EditFailure:
    message: str
    extra: dict[str, Any]


def _validate_edit(number: int, change: LineEdit, lines: List[str]) -> _EditFailure | None:
    total = len(lines)
    if change.start_line > total:
        return _EditFailure(
            f"Starting line number {change.start_line} is out of bounds (file has {total} lines)",
            {"change": number},
        )
    if change.end_line > total:
        return _EditFailure(
            f"Ending line number {change.end_line} is out of bounds (file has {total} lines)",
            {"change": number},
        )
    if change.end_line < change.start_line:
        return _EditFailure(
            f"Ending line number {change.end_line} is before starting line number {change.start_line}",
            {"change": number},
        )
    actual_start = lines[change.start_line - 1]
    if actual_start.strip() != change.start_content.strip():
        return _EditFailure(
            "Content at starting line does not match expected content",
            {
                "change": number,
                "lineNumber": change.start_line,
                "expectedContent": change.start_content,
                "actualContent": actual_start,
            },
        )
    actual_end = lines[change.end_line - 1]
    if actual_end.strip() != change.end_content.strip():
        return _EditFailure(
            "Content at ending line does not match expected content",
            {
                "change": number,
                "lineNumber": change.end_line,
                "expectedContent": change.end_content,
                "actualContent": actual_end,
            },
        )
    return None


def edit_file(args: EditFileArgs, context: ToolContext) -> str:
    resolved, original = _load_target(args.file_path, context)
    lines = original.split("\n")

    # Every change is checked against the original line numbers.
    failure: _EditFailure | None = None
    for number, change in enumerate(args.changes, start=1):
        failure = _validate_edit(number, change, lines)
        if failure is not None:
            break
    if failure is None:
        ranked = sorted(enumerate(args.changes, start=1), key=lambda item: item[1].start_line)
        for (prev_no, prev), (next_no, nxt) in zip(ranked, ranked[1:]):
            if nxt.start_line <= prev.end_line:
                failure = _EditFailure(
                    f"Change #{next_no} (lines {nxt.start_line}-{nxt.end_line}) overlaps "
                    f"change #{prev_no} (lines {prev.start_line}-{prev.end_line})",
                    {"change": next_no},
                )
                break
    if failure is not None:
        emit_event("edit.failed", path=args.file_path, reason=failure.message)
        payload = {"status": "error", "message": failure.message, **failure.extra}
        payload["currentFileContent"] = render_file(args.file_path, original, line_numbers=True)
        payload["suggestion"] = "Re-read the file and resend all changes; the file was not modified."
        return json.dumps(payload)

    # Descending start order keeps earlier line numbers valid while splicing.
    updated = list(lines)
    preview: List[str] = [f"File: {args.file_path}"]
    for change in sorted(args.changes, key=lambda item: item.start_line, reverse=True):
        replacement = change.new_content.split("\n")
        preview.append(
            f"Lines {change.start_line}-{change.end_line} -> {len(replacement)} new line(s)"
        )
        updated[change.start_line - 1 : change.end_line] = replacement
    new_text = "\n".join(updated)

    request = ApprovalRequest(action="edit", target=args.file_path, preview="\n".join(preview))
    if not context.approve(request):
        emit_event("edit.canceled", path=args.file_path)
        return canceled_payload("Edit was not approved by the user")

    resolved.write_text(new_text, encoding="utf-8")
    context.record_touched(resolved)
    emit_event("edit.applied", path=args.file_path, changes=len(args.changes))
    return json.dumps(
        {
            "status": "success",
            "message": f"File {args.file_path} updated successfully",
            "changesApplied": len(args.changes),
            "newContent": render_file(args.file_path, new_text, line_numbers=True),
        }
    )


PATCH_FILE = ToolSpec(
    name="patch_file",
    description=(
        "Patch a file by finding and replacing text sequentially. Each change replaces the first "
        "occurrence of its pattern in the content produced by the previous change. If any pattern "
        "is missing, nothing is written."
    ),
    parameters=PatchFileArgs,
    handler=patch_file,
)

EDIT_FILE = ToolSpec(
    name="edit_file",
    description=(
        "Replace line ranges in a file. Each change needs the 1-based start/end line numbers and the "
        "current content at both lines for verification. All changes refer to the original line "
        "numbers; if any check fails, nothing is written."
    ),
    parameters=EditFileArgs,
    handler=edit_file,
)


__all__ = [
    "EDIT_FILE",
    "EditFileArgs",
    "LineEdit",
    "PATCH_FILE",
    "PatchChange",
    "PatchFileArgs",
    "edit_file",
    "patch_file",
]
