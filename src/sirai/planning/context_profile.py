"""Project discovery and the context snapshot that grounds planning prompts."""

from __future__ import annotations

import json
import logging
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import ContextConfig
from ..tools.files import walk_files
from ..tools.gitignore import IgnoreRules
from ..tools.paths import syntax_for
from .schemas import ContextProfile, Dependency, DirectoryNode, FileInfo

LOGGER = logging.getLogger(__name__)

MAX_ROOT_SEARCH_LEVELS = 10
GUIDELINES_FILE = ".cursorrules"

_PACKAGE_STACK = {
    "react": "React",
    "vue": "Vue.js",
    "angular": "Angular",
    "express": "Express",
    "next": "Next.js",
    "gatsby": "Gatsby",
}
_EXTENSION_STACK = [
    ({".py"}, "Python"),
    ({".java"}, "Java"),
    ({".go"}, "Go"),
    ({".rb"}, "Ruby"),
    ({".php"}, "PHP"),
    ({".cs"}, "C#"),
    ({".ts", ".tsx"}, "TypeScript"),
]
_REQUIREMENT_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._\-\[\],]*)\s*(.*)$")


def find_project_root(start: Path) -> Path:
    """Walk up from ``start`` looking for ``.git``; fall back to ``start``."""
    current = start.resolve()
    candidate = current
    for _ in range(MAX_ROOT_SEARCH_LEVELS):
        if (candidate / ".git").exists():
            return candidate
        if candidate.parent == candidate:
            break
        candidate = candidate.parent
    return current


def read_guidelines(root: Path) -> Optional[str]:
    """Return the project guideline text, if any."""
    path = root / GUIDELINES_FILE
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        LOGGER.warning("Cannot read %s: %s", path, error)
        return None


@dataclass(slots=True)
class ProjectContext:
    """Project root, working directory and guideline text for a session."""

    project_root: Path
    current_directory: Path
    guidelines: Optional[str] = None

    @classmethod
    def discover(cls, current_directory: Path | None = None) -> "ProjectContext":
        cwd = Path(current_directory or Path.cwd()).resolve()
        root = find_project_root(cwd)
        return cls(project_root=root, current_directory=cwd, guidelines=read_guidelines(root))

    def get_project_context(self) -> Dict[str, Any]:
        return {
            "project_root": self.project_root,
            "current_directory": self.current_directory,
            "guidelines": self.guidelines,
        }

    def create_context_string(self) -> str:
        if not self.guidelines:
            return ""
        return f"Project cursor rules:\n{self.guidelines}\n\n"


# ------------------------------------------------------------ dependencies
def parse_package_json(path: Path) -> List[Dependency]:
    data = json.loads(path.read_text(encoding="utf-8"))
    found: List[Dependency] = []
    for section in ("dependencies", "devDependencies"):
        entries = data.get(section) or {}
        if isinstance(entries, dict):
            found.extend(Dependency(name=str(name), version=str(version)) for name, version in entries.items())
    return found


def parse_requirements(path: Path) -> List[Dependency]:
    found: List[Dependency] = []
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        match = _REQUIREMENT_RE.match(line)
        if match:
            found.append(Dependency(name=match.group(1), version=match.group(2).strip()))
    return found


def parse_pyproject(path: Path) -> List[Dependency]:
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    entries = (data.get("project") or {}).get("dependencies") or []
    found: List[Dependency] = []
    for entry in entries:
        match = _REQUIREMENT_RE.match(str(entry))
        if match:
            found.append(Dependency(name=match.group(1), version=match.group(2).strip()))
    return found


_DEPENDENCY_FILES = {
    "package.json": parse_package_json,
    "requirements.txt": parse_requirements,
    "pyproject.toml": parse_pyproject,
}


def collect_dependencies(root: Path) -> List[Dependency]:
    found: List[Dependency] = []
    for name, parser in _DEPENDENCY_FILES.items():
        path = root / name
        if not path.is_file():
            continue
        try:
            found.extend(parser(path))
        except (OSError, ValueError, tomllib.TOMLDecodeError) as error:
            LOGGER.warning("Failed to parse %s: %s", path, error)
    return found


def detect_technology_stack(root: Path, files: List[FileInfo]) -> List[str]:
    stack: List[str] = []
    package_json = root / "package.json"
    if package_json.is_file():
        stack.append("Node.js")
        try:
            deps = json.loads(package_json.read_text(encoding="utf-8")).get("dependencies") or {}
        except (OSError, ValueError) as error:
            LOGGER.debug("Skipping package.json stack detection: %s", error)
            deps = {}
        stack.extend(label for key, label in _PACKAGE_STACK.items() if key in deps)

    extensions = {Path(info.path).suffix.lower() for info in files}
    stack.extend(label for exts, label in _EXTENSION_STACK if extensions & exts)

    if (root / "Dockerfile").exists() or (root / "docker-compose.yml").exists():
        stack.append("Docker")
    if (root / "kubernetes").is_dir():
        stack.append("Kubernetes")
    return stack


def build_directory_tree(root: Path, paths: List[str]) -> DirectoryNode:
    """Fold relative file paths into a nested :class:`DirectoryNode`."""
    tree = DirectoryNode(path=".", name=root.name or root.as_posix())
    for relative in paths:
        node = tree
        parts = relative.split("/")
        for depth, part in enumerate(parts, start=1):
            sub_path = "/".join(parts[:depth])
            child = next((item for item in node.children if item.name == part), None)
            if child is None:
                child = DirectoryNode(path=sub_path, name=part)
                node.children.append(child)
            node = child
    return tree


def build_context_profile(
    project: ProjectContext,
    config: ContextConfig | None = None,
    *,
    ignore_rules: IgnoreRules | None = None,
) -> ContextProfile:
    """Scan the project into a :class:`ContextProfile`.

    Scan failures are logged and yield a profile without file data.
    """
    settings = config or ContextConfig()
    root = project.project_root
    profile = ContextProfile(
        project_root=root.as_posix(),
        current_directory=project.current_directory.as_posix(),
        guidelines=project.create_context_string() or None,
    )
    try:
        rules = ignore_rules or IgnoreRules.load(root)
        paths = walk_files(root, root, depth=settings.max_depth, ignore_rules=rules)[: settings.max_files]
        files = []
        for relative in paths:
            try:
                size = (root / relative).stat().st_size
            except OSError:
                size = 0
            files.append(FileInfo(path=relative, language=syntax_for(relative, fallback="plaintext"), size=size))
        profile.files = files
        profile.dependencies = collect_dependencies(root)
        profile.technology_stack = detect_technology_stack(root, files)
        profile.directory_structure = build_directory_tree(root, paths)
    except OSError as error:
        LOGGER.warning("Project scan of %s failed: %s", root, error)
    return profile


__all__ = [
    "GUIDELINES_FILE",
    "ProjectContext",
    "build_context_profile",
    "build_directory_tree",
    "collect_dependencies",
    "detect_technology_stack",
    "find_project_root",
    "read_guidelines",
]
