"""User interaction seams: approval requests, prompting, and the ask_user tool."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

import typer
from pydantic import Field

from ..planning.schemas import ToolArgsModel

MAX_QUESTIONS = 8


@dataclass(slots=True)
class ApprovalRequest:
    """A mutation awaiting user consent."""

    action: str
    target: str
    preview: str = ""

    def describe(self) -> str:
        return f"{self.action} {self.target}"


ApprovalCallback = Callable[[ApprovalRequest], bool]


class Prompter(Protocol):
    """Terminal-facing interaction used by tools and session states."""

    def ask(self, message: str, *, default: Optional[str] = None) -> str: ...

    def confirm(self, message: str, *, default: bool = True) -> bool: ...

    def choose(self, message: str, choices: Sequence[str]) -> str: ...

    def show(self, message: str) -> None: ...


class TyperPrompter:
    """Prompter backed by ``typer.prompt``/``typer.confirm``."""

    def ask(self, message: str, *, default: Optional[str] = None) -> str:
        if default is None:
            return str(typer.prompt(message, default="", show_default=False))
        return str(typer.prompt(message, default=default))

    def confirm(self, message: str, *, default: bool = True) -> bool:
        return bool(typer.confirm(message, default=default))

    def choose(self, message: str, choices: Sequence[str]) -> str:
        for index, choice in enumerate(choices, start=1):
            typer.echo(f"  {index}. {choice}")
        while True:
            raw = str(typer.prompt(message, default="1")).strip()
            if raw.isdigit() and 1 <= int(raw) <= len(choices):
                return choices[int(raw) - 1]
            for choice in choices:
                if raw.lower() == choice.lower():
                    return choice
            typer.echo(f"Please enter a number between 1 and {len(choices)}.")

    def show(self, message: str) -> None:
        typer.echo(message)


def prompter_approval(prompter: Prompter) -> ApprovalCallback:
    """Build an approval callback that asks through ``prompter``."""

    def _approve(request: ApprovalRequest) -> bool:
        if request.preview:
            prompter.show(request.preview)
        return prompter.confirm(f"Do you accept: {request.describe()}?", default=True)

    return _approve


class AskUserArgs(ToolArgsModel):
    questions: List[str] = Field(min_length=1, max_length=MAX_QUESTIONS)
    context: Optional[str] = None


def ask_user(args: AskUserArgs, prompter: Prompter) -> str:
    """Ask each question in turn and return the answers as JSON."""
    if args.context:
        prompter.show(args.context)
    total = len(args.questions)
    answers = []
    for index, question in enumerate(args.questions, start=1):
        answer = prompter.ask(f"Question {index}/{total}: {question}")
        answers.append({"question": question, "answer": answer})
    return json.dumps({"answers": answers})


__all__ = [
    "ApprovalCallback",
    "ApprovalRequest",
    "AskUserArgs",
    "MAX_QUESTIONS",
    "Prompter",
    "TyperPrompter",
    "ask_user",
    "prompter_approval",
]
