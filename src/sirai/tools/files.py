"""Filesystem tools: list_files, find_files, read_files and write_new_file."""

from __future__ import annotations

import codecs
import os
import re
from pathlib import Path
from typing import Callable, List, Optional

import pathspec
from pydantic import AliasChoices, Field, field_validator

from ..planning.schemas import ToolArgsModel
from ..telemetry import emit_event
from .errors import ToolError
from .gitignore import IgnoreRules
from .interaction import ApprovalRequest
from .paths import ensure_path_in_working_dir, render_files
from .registry import ToolContext, ToolSpec, canceled_payload
from .vcs import worktree_is_clean

_PREVIEW_CHARS = 2000
_FIND_MAX_DEPTH = 64


def _check_encoding(value: str) -> str:
    try:
        codecs.lookup(value)
    except LookupError as error:
        raise ValueError(f"Unknown encoding: {value}") from error
    return value


# ---------------------------------------------------------------- list_files
class ListFilesArgs(ToolArgsModel):
    directory: str = Field(default=".", description="Directory to list, relative to the working directory.")
    depth: int = Field(default=4, ge=0, description="Maximum recursion depth; 0 lists only the directory itself.")
    include_dirs: bool = Field(
        default=False,
        validation_alias=AliasChoices("includeDirs", "include_dirs"),
        description="Whether to include directories in the output.",
    )
    extension: Optional[str] = Field(default=None, description='File extension filter such as "py" or "ts".')


def walk_files(
    root: Path,
    start: Path,
    *,
    depth: int,
    include_dirs: bool = False,
    extension: Optional[str] = None,
    ignore_rules: Optional[IgnoreRules] = None,
) -> List[str]:
    """Return paths under ``start`` relative to ``root``, honouring ignore rules.

    ``depth`` counts directory levels below ``start``; entries are sorted per
    directory so output is deterministic.
    """
    rules = ignore_rules or IgnoreRules()
    wanted_ext = extension.lower().lstrip(".") if extension else None
    results: List[str] = []

    def _walk(directory: Path, level: int) -> None:
        try:
            entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
        except OSError:
            return
        for entry in entries:
            full_path = Path(entry.path)
            relative = full_path.relative_to(root).as_posix()
            is_dir = entry.is_dir(follow_symlinks=False)
            if rules.is_excluded(relative, is_dir=is_dir):
                continue
            if is_dir:
                if include_dirs:
                    results.append(f"{relative}/")
                if level < depth:
                    _walk(full_path, level + 1)
            elif entry.is_file():
                if wanted_ext and full_path.suffix.lower().lstrip(".") != wanted_ext:
                    continue
                results.append(relative)

    _walk(start, 0)
    return results


def list_files(args: ListFilesArgs, context: ToolContext) -> str:
    target = ensure_path_in_working_dir(args.directory, context.working_dir)
    if not target.is_dir():
        raise ToolError(f"Directory {args.directory} does not exist")
    files = walk_files(
        context.working_dir,
        target,
        depth=args.depth,
        include_dirs=args.include_dirs,
        extension=args.extension,
        ignore_rules=context.ignore_rules,
    )
    if not files:
        return "No files found in the directory."
    return f"Found {len(files)} files:\n" + "\n".join(files)


# ---------------------------------------------------------------- find_files
class FindFilesArgs(ToolArgsModel):
    pattern: str = Field(min_length=1, description='Glob such as "*.py" or "src/**/test_*.py", or a regex.')
    use_regex: bool = Field(
        default=False,
        validation_alias=AliasChoices("useRegex", "use_regex"),
        description="Treat the pattern as a regular expression searched against the relative path.",
    )
    recursive: bool = Field(default=True, description="Search subdirectories as well.")
    extension: Optional[str] = Field(default=None, description='File extension filter such as "py" or "ts".')
    directory: str = Field(default=".", description="Directory to search, relative to the working directory.")


def _path_matcher(pattern: str, *, use_regex: bool) -> Callable[[str], bool]:
    if not use_regex:
        return pathspec.PathSpec.from_lines("gitwildmatch", [pattern]).match_file
    try:
        regex = re.compile(pattern)
    except re.error as error:
        raise ToolError(f"Invalid regular expression {pattern!r}: {error}") from error
    return lambda relative: regex.search(relative) is not None


def find_files(args: FindFilesArgs, context: ToolContext) -> str:
    """Return files under ``directory`` whose path matches ``pattern``.

    Matching is done on the path relative to the searched directory; dot files
    and anything excluded by the ignore rules are skipped.
    """
    target = ensure_path_in_working_dir(args.directory, context.working_dir)
    if not target.is_dir():
        raise ToolError(f"Directory {args.directory} does not exist")

    matches = _path_matcher(args.pattern, use_regex=args.use_regex)

    candidates = walk_files(
        context.working_dir,
        target,
        depth=_FIND_MAX_DEPTH if args.recursive else 0,
        extension=args.extension,
        ignore_rules=context.ignore_rules,
    )
    found: List[str] = []
    for path in candidates:
        relative = (context.working_dir / path).relative_to(target).as_posix()
        if any(part.startswith(".") for part in relative.split("/")):
            continue
        if matches(relative):
            found.append(path)

    emit_event("files.found", pattern=args.pattern, count=len(found))
    if not found:
        return "No files found matching the pattern."
    return f"Found {len(found)} files:\n" + "\n".join(found)


# ---------------------------------------------------------------- read_files
class ReadFilesArgs(ToolArgsModel):
    path: str | List[str] = Field(description="Path or list of paths to read.")
    encoding: str = "utf-8"
    line_numbers: bool = Field(
        default=False,
        validation_alias=AliasChoices("lineNumbers", "line_numbers"),
        description="Prefix each line with its 1-based number.",
    )

    @field_validator("encoding")
    @classmethod
    def _validate_encoding(cls, value: str) -> str:
        return _check_encoding(value)

    def paths(self) -> List[str]:
        return [self.path] if isinstance(self.path, str) else list(self.path)


def read_files(args: ReadFilesArgs, context: ToolContext) -> str:
    paths = args.paths()
    if not paths:
        raise ToolError("No paths supplied")
    # Reject escapes up front so no file is read for a partially hostile request.
    for raw in paths:
        ensure_path_in_working_dir(raw, context.working_dir)
    return render_files(
        paths,
        context.working_dir,
        encoding=args.encoding,
        line_numbers=args.line_numbers,
    )


# ------------------------------------------------------------ write_new_file
class WriteNewFileArgs(ToolArgsModel):
    path: str = Field(description="Path of the file to create.")
    content: str = Field(description="Full content to write.")
    overwrite: Optional[bool] = Field(default=False, description="Replace the file if it already exists.")
    encoding: Optional[str] = "utf-8"

    @field_validator("encoding")
    @classmethod
    def _validate_encoding(cls, value: Optional[str]) -> Optional[str]:
        return _check_encoding(value) if value else value


def write_new_file(args: WriteNewFileArgs, context: ToolContext) -> str:
    encoding = args.encoding or "utf-8"
    resolved = ensure_path_in_working_dir(args.path, context.working_dir)

    if resolved.exists() and not args.overwrite:
        try:
            existing = resolved.read_text(encoding=encoding)
        except UnicodeDecodeError as error:
            raise ToolError(
                f"File {args.path} already exists and is not valid {encoding}; overwrite is set to false."
            ) from error
        return (
            f"Write operation not successful. File {args.path} already exists and overwrite "
            f"is set to false. Current file content:\n\n{existing}"
        )

    if not worktree_is_clean(context.working_dir):
        preview = args.content if len(args.content) <= _PREVIEW_CHARS else args.content[:_PREVIEW_CHARS] + "..."
        request = ApprovalRequest(action="write", target=args.path, preview=preview)
        if not context.approve(request):
            emit_event("write.canceled", path=args.path)
            return canceled_payload(f"File write operation to {args.path} was not approved by the user.")

    resolved.parent.mkdir(parents=True, exist_ok=True)
    resolved.write_text(args.content, encoding=encoding)
    context.record_touched(resolved)
    emit_event("write.applied", path=args.path, chars=len(args.content))
    return f"Successfully wrote {len(args.content)} characters to {args.path}"


LIST_FILES = ToolSpec(
    name="list_files",
    description=(
        "List files in a directory recursively with configurable depth. Limited to the working "
        "directory. Excludes files ignored by .gitignore."
    ),
    parameters=ListFilesArgs,
    handler=list_files,
)

FIND_FILES = ToolSpec(
    name="find_files",
    description=(
        "Find files whose path matches a glob or regular expression. Limited to the working directory. "
        "Skips dot files and files ignored by .gitignore."
    ),
    parameters=FindFilesArgs,
    handler=find_files,
)

READ_FILES = ToolSpec(
    name="read_files",
    description="Read one or more files from the working directory.",
    parameters=ReadFilesArgs,
    handler=read_files,
)

WRITE_NEW_FILE = ToolSpec(
    name="write_new_file",
    description=(
        "Write content to a new file in the working directory. Existing files are only replaced "
        "when overwrite is true; prefer patch_file or edit_file for changes."
    ),
    parameters=WriteNewFileArgs,
    handler=write_new_file,
)


__all__ = [
    "FIND_FILES",
    "LIST_FILES",
    "READ_FILES",
    "WRITE_NEW_FILE",
    "FindFilesArgs",
    "ListFilesArgs",
    "ReadFilesArgs",
    "WriteNewFileArgs",
    "find_files",
    "list_files",
    "read_files",
    "walk_files",
    "write_new_file",
]
