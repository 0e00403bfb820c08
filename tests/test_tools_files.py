from __future__ import annotations

import json
import os
import subprocess
from pathlib import Path

import pytest

from sirai.tools.errors import PathEscapeError
from sirai.tools.files import FIND_FILES, LIST_FILES, READ_FILES, WRITE_NEW_FILE, walk_files
from sirai.tools.gitignore import IgnoreRules
from sirai.tools.interaction import ApprovalRequest
from sirai.tools.paths import ensure_path_in_working_dir, render_files
from sirai.tools.registry import ToolContext, ToolRegistry


def _registry(working_dir: Path, *, approve=None) -> ToolRegistry:
    context = ToolContext.for_directory(working_dir, approve=approve or (lambda request: False))
    return ToolRegistry([LIST_FILES, FIND_FILES, READ_FILES, WRITE_NEW_FILE], context)


def test_paths_outside_working_dir_are_rejected(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    (tmp_path / "secret.txt").write_text("top secret", encoding="utf-8")

    with pytest.raises(PathEscapeError):
        ensure_path_in_working_dir("../secret.txt", root)
    with pytest.raises(PathEscapeError):
        ensure_path_in_working_dir(tmp_path / "secret.txt", root)
    assert ensure_path_in_working_dir("nested/../file.txt", root) == (root / "file.txt").resolve()


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlink_escape_is_rejected(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    (root / "link").symlink_to(outside, target_is_directory=True)

    with pytest.raises(PathEscapeError):
        ensure_path_in_working_dir("link/file.txt", root)


def test_ignore_rules_negation_wins_over_order() -> None:
    rules = IgnoreRules.from_lines(["!keep.log", "*.log", "# comment", "", "dist/"])

    assert rules.is_excluded("debug.log")
    assert not rules.is_excluded("keep.log")
    assert not rules.is_excluded("./keep.log")
    assert rules.is_excluded("dist", is_dir=True)
    assert rules.is_excluded(".git", is_dir=True)
    assert not rules.is_excluded("src/app.py")


def test_ignore_rules_missing_gitignore_excludes_only_git(tmp_path: Path) -> None:
    rules = IgnoreRules.load(tmp_path)

    assert not rules.is_excluded("anything.log")
    assert rules.is_excluded(".git/config")


def test_walk_files_honours_depth_extension_and_gitignore(git_repo: Path) -> None:
    (git_repo / "build").mkdir()
    (git_repo / "build" / "out.txt").write_text("artifact", encoding="utf-8")
    (git_repo / "src" / "deep").mkdir()
    (git_repo / "src" / "deep" / "notes.md").write_text("# notes", encoding="utf-8")
    rules = IgnoreRules.load(git_repo)

    everything = walk_files(git_repo, git_repo, depth=4, ignore_rules=rules)
    shallow = walk_files(git_repo, git_repo, depth=0, include_dirs=True, ignore_rules=rules)
    python_only = walk_files(git_repo, git_repo, depth=4, extension=".py", ignore_rules=rules)

    assert everything == [".gitignore", "src/calculator.py", "src/deep/notes.md"]
    assert shallow == [".gitignore", "src/"]
    assert python_only == ["src/calculator.py"]


def test_list_files_tool_reports_count(git_repo: Path) -> None:
    outcome = _registry(git_repo).dispatch("list_files", {"directory": "src"})

    assert not outcome.failed
    assert outcome.output == "Found 1 files:\nsrc/calculator.py"


def test_list_files_tool_rejects_escape(git_repo: Path) -> None:
    outcome = _registry(git_repo).dispatch("list_files", json.dumps({"directory": ".."}))

    payload = json.loads(outcome.output)
    assert outcome.failed
    assert payload["status"] == "error"
    assert "outside the working directory" in payload["message"]


@pytest.fixture
def searchable_repo(git_repo: Path) -> Path:
    (git_repo / "setup.py").write_text("", encoding="utf-8")
    (git_repo / "src" / "deep").mkdir()
    (git_repo / "src" / "deep" / "notes.md").write_text("# notes", encoding="utf-8")
    (git_repo / "src" / "deep" / "helpers.py").write_text("", encoding="utf-8")
    (git_repo / "build").mkdir()
    (git_repo / "build" / "generated.py").write_text("", encoding="utf-8")
    (git_repo / ".cache").mkdir()
    (git_repo / ".cache" / "stale.py").write_text("", encoding="utf-8")
    return git_repo


def test_find_files_matches_glob_across_directories(searchable_repo: Path) -> None:
    outcome = _registry(searchable_repo).dispatch("find_files", {"pattern": "*.py"})

    assert not outcome.failed
    assert outcome.output == "Found 3 files:\nsetup.py\nsrc/calculator.py\nsrc/deep/helpers.py"


def test_find_files_glob_is_relative_to_search_directory(searchable_repo: Path) -> None:
    registry = _registry(searchable_repo)

    anchored = registry.dispatch("find_files", {"pattern": "deep/*", "directory": "src"})
    shallow = registry.dispatch("find_files", {"pattern": "*.py", "directory": "src", "recursive": False})

    assert anchored.output == "Found 2 files:\nsrc/deep/helpers.py\nsrc/deep/notes.md"
    assert shallow.output == "Found 1 files:\nsrc/calculator.py"


def test_find_files_supports_regex_and_extension(searchable_repo: Path) -> None:
    registry = _registry(searchable_repo)

    by_regex = registry.dispatch("find_files", {"pattern": r"^src/.*(notes|calc)", "useRegex": True})
    by_extension = registry.dispatch("find_files", {"pattern": "src/**", "extension": "md"})

    assert by_regex.output == "Found 2 files:\nsrc/calculator.py\nsrc/deep/notes.md"
    assert by_extension.output == "Found 1 files:\nsrc/deep/notes.md"


def test_find_files_reports_no_match_and_bad_input(searchable_repo: Path) -> None:
    registry = _registry(searchable_repo)

    nothing = registry.dispatch("find_files", {"pattern": "*.rs"})
    bad_regex = registry.dispatch("find_files", {"pattern": "(unclosed", "useRegex": True})
    missing_dir = registry.dispatch("find_files", {"pattern": "*", "directory": "nowhere"})
    escape = registry.dispatch("find_files", {"pattern": "*", "directory": ".."})

    assert nothing.output == "No files found matching the pattern."
    assert bad_regex.failed and "Invalid regular expression" in json.loads(bad_regex.output)["message"]
    assert json.loads(missing_dir.output)["message"] == "Directory nowhere does not exist"
    assert escape.failed and "outside the working directory" in json.loads(escape.output)["message"]


def test_read_files_renders_blocks_and_missing_files(git_repo: Path) -> None:
    outcome = _registry(git_repo).dispatch(
        "read_files", {"path": ["src/calculator.py", "missing.py"], "lineNumbers": True}
    )

    assert not outcome.failed
    assert '<file path="src/calculator.py" syntax="python">\n1:def add(left, right):' in outcome.output
    assert '<file path="missing.py" error="File missing.py does not exist" />' in outcome.output


def test_read_files_rejects_any_escaping_path(git_repo: Path) -> None:
    outcome = _registry(git_repo).dispatch("read_files", {"path": ["src/calculator.py", "../../etc/passwd"]})

    assert outcome.failed
    assert json.loads(outcome.output)["status"] == "error"


def test_read_files_rejects_unknown_encoding(git_repo: Path) -> None:
    outcome = _registry(git_repo).dispatch("read_files", {"path": "src/calculator.py", "encoding": "klingon-8"})

    assert outcome.failed
    assert "Invalid arguments for read_files" in json.loads(outcome.output)["message"]


def test_render_files_keeps_request_order(tmp_path: Path) -> None:
    (tmp_path / "b.txt").write_text("B", encoding="utf-8")
    (tmp_path / "a.ts").write_text("A", encoding="utf-8")

    rendered = render_files(["b.txt", "a.ts"], tmp_path)

    assert rendered.index('path="b.txt"') < rendered.index('path="a.ts"')
    assert 'syntax="typescript"' in rendered


def test_write_new_file_skips_approval_in_clean_repo(git_repo: Path) -> None:
    requests: list[ApprovalRequest] = []

    def approve(request: ApprovalRequest) -> bool:
        requests.append(request)
        return False

    registry = _registry(git_repo, approve=approve)
    first = registry.dispatch("write_new_file", {"path": "src/new_module.py", "content": "VALUE = 1\n"})
    second = registry.dispatch("write_new_file", {"path": "src/other.py", "content": "VALUE = 2\n"})

    assert first.output == "Successfully wrote 10 characters to src/new_module.py"
    assert (git_repo / "src" / "new_module.py").read_text(encoding="utf-8") == "VALUE = 1\n"
    assert registry.context.touched == ["src/new_module.py"]
    assert json.loads(second.output) == {
        "status": "canceled",
        "message": "File write operation to src/other.py was not approved by the user.",
    }
    assert not (git_repo / "src" / "other.py").exists()
    assert [request.target for request in requests] == ["src/other.py"]


def test_write_new_file_outside_git_requires_approval(tmp_path: Path) -> None:
    registry = _registry(tmp_path, approve=lambda request: True)

    outcome = registry.dispatch("write_new_file", {"path": "nested/dir/file.txt", "content": "hello"})

    assert outcome.output.startswith("Successfully wrote 5 characters")
    assert (tmp_path / "nested" / "dir" / "file.txt").read_text(encoding="utf-8") == "hello"


def test_write_new_file_refuses_existing_without_overwrite(git_repo: Path) -> None:
    registry = _registry(git_repo)

    outcome = registry.dispatch("write_new_file", {"path": "src/calculator.py", "content": "oops"})

    assert "already exists and overwrite is set to false" in outcome.output
    assert "def add(left, right):" in outcome.output
    assert (git_repo / "src" / "calculator.py").read_text(encoding="utf-8").startswith("def add")


def test_write_new_file_overwrite_in_clean_repo(git_repo: Path) -> None:
    registry = _registry(git_repo)

    outcome = registry.dispatch(
        "write_new_file", {"path": "src/calculator.py", "content": "def add(a, b):\n    return a + b\n", "overwrite": True}
    )

    assert outcome.output.startswith("Successfully wrote")
    status = subprocess.run(
        ["git", "status", "--porcelain"], cwd=git_repo, capture_output=True, text=True, check=True
    )
    assert "src/calculator.py" in status.stdout


def test_write_new_file_reports_undecodable_existing_file(git_repo: Path) -> None:
    legacy = git_repo / "src" / "legacy.txt"
    legacy.write_bytes(b"caf\xe9\n")

    outcome = _registry(git_repo).dispatch("write_new_file", {"path": "src/legacy.txt", "content": "new"})

    payload = json.loads(outcome.output)
    assert outcome.failed
    assert payload["status"] == "error"
    assert "is not valid utf-8" in payload["message"]
    assert legacy.read_bytes() == b"caf\xe9\n"
