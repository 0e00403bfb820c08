from __future__ import annotations

import json
import subprocess
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sirai.models.llm_client import LLMClient  # noqa: E402


def function_call(name: str, arguments: Mapping[str, Any], call_id: str = "call_1") -> Dict[str, Any]:
    """Build a Responses API turn that requests a single tool call."""
    return {
        "output": [
            {
                "type": "function_call",
                "call_id": call_id,
                "name": name,
                "arguments": json.dumps(arguments),
            }
        ],
        "usage": {"input_tokens": 10, "output_tokens": 5},
    }


def text_reply(text: str) -> Dict[str, Any]:
    """Build a Responses API turn carrying only assistant text."""
    return {
        "output": [
            {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "output_text", "text": text}],
            }
        ],
        "usage": {"input_tokens": 3, "output_tokens": 2},
    }


class ScriptedClient(LLMClient):
    """LLM client that replays canned Responses API turns in order."""

    def __init__(self, responses: Sequence[Any], model: str = "scripted", **kwargs: Any) -> None:
        kwargs.setdefault("retry_delay", 0.0)
        super().__init__(model=model, **kwargs)
        self._responses = list(responses)
        self.payloads: List[Dict[str, Any]] = []

    def _send(self, payload: Dict[str, Any]) -> Mapping[str, Any]:
        self.payloads.append(json.loads(json.dumps(payload)))
        if not self._responses:
            return text_reply("done")
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@dataclass(slots=True)
class ScriptedPrompter:
    """Prompter that answers from queues and records everything shown."""

    answers: List[str] = field(default_factory=list)
    confirmations: List[bool] = field(default_factory=list)
    choices: List[str] = field(default_factory=list)
    shown: List[str] = field(default_factory=list)
    asked: List[str] = field(default_factory=list)

    def ask(self, message: str, *, default: Optional[str] = None) -> str:
        self.asked.append(message)
        if not self.answers:
            raise EOFError
        return self.answers.pop(0)

    def confirm(self, message: str, *, default: bool = True) -> bool:
        self.asked.append(message)
        if not self.confirmations:
            return default
        return self.confirmations.pop(0)

    def choose(self, message: str, choices: Sequence[str]) -> str:
        self.asked.append(message)
        if not self.choices:
            return choices[0]
        return self.choices.pop(0)

    def show(self, message: str) -> None:
        self.shown.append(message)

    def output(self) -> str:
        return "\n".join(self.shown)


def _run_git(root: Path, *cmd: str) -> None:
    subprocess.run(
        ["git", *cmd],
        cwd=root,
        check=True,
        capture_output=True,
        text=True,
    )


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Create a small committed git repository with a clean working tree."""

    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    _run_git(repo_root, "init")
    _run_git(repo_root, "config", "user.email", "dev@example.com")
    _run_git(repo_root, "config", "user.name", "Sirai Tests")

    (repo_root / "src").mkdir()
    (repo_root / "src" / "calculator.py").write_text(
        "def add(left, right):\n    return left + right\n",
        encoding="utf-8",
    )
    (repo_root / ".gitignore").write_text("build/\n", encoding="utf-8")
    _run_git(repo_root, "add", ".")
    _run_git(repo_root, "commit", "-m", "Initial state")
    return repo_root


@pytest.fixture()
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()
