"""Working-directory containment and file rendering helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from .errors import PathEscapeError

SYNTAX_BY_EXTENSION = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".cs": "csharp",
    ".php": "php",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".swift": "swift",
    ".sh": "bash",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".sql": "sql",
    ".xml": "xml",
}


def ensure_path_in_working_dir(path: str | Path, working_dir: Path) -> Path:
    """Resolve ``path`` against ``working_dir`` and reject any escape.

    Symlinks are resolved before the containment check so a link pointing
    outside the root is rejected as well.
    """
    root = Path(working_dir).resolve()
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if resolved != root and not resolved.is_relative_to(root):
        raise PathEscapeError(f"File path {path} is outside the working directory")
    return resolved


def relative_display(path: Path, working_dir: Path) -> str:
    try:
        return path.resolve().relative_to(Path(working_dir).resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def syntax_for(path: str | Path, *, fallback: str = "text") -> str:
    return SYNTAX_BY_EXTENSION.get(Path(path).suffix.lower(), fallback)


def number_lines(content: str) -> str:
    return "\n".join(f"{index}:{line}" for index, line in enumerate(content.split("\n"), start=1))


def render_file(path: str, content: str, *, line_numbers: bool = False) -> str:
    body = number_lines(content) if line_numbers else content
    return f'<file path="{path}" syntax="{syntax_for(path)}">\n{body}\n</file>'


def render_files(
    paths: Iterable[str],
    working_dir: Path,
    *,
    encoding: str = "utf-8",
    line_numbers: bool = False,
) -> str:
    """Render files as ``<file>`` blocks; unreadable files become error blocks."""
    blocks: list[str] = []
    for raw in paths:
        try:
            resolved = ensure_path_in_working_dir(raw, working_dir)
            content = resolved.read_text(encoding=encoding)
        except PathEscapeError as error:
            blocks.append(f'<file path="{raw}" error="{error}" />')
            continue
        except FileNotFoundError:
            blocks.append(f'<file path="{raw}" error="File {raw} does not exist" />')
            continue
        except (OSError, UnicodeDecodeError) as error:
            blocks.append(f'<file path="{raw}" error="{error}" />')
            continue
        blocks.append(render_file(raw, content, line_numbers=line_numbers))
    return "\n\n".join(blocks)


__all__ = [
    "SYNTAX_BY_EXTENSION",
    "ensure_path_in_working_dir",
    "number_lines",
    "relative_display",
    "render_file",
    "render_files",
    "syntax_for",
]
