"""Fixed toolsets offered to each model role."""

from __future__ import annotations

from typing import List, Optional

from ..models.llm_client import LLMClient
from .capture import REPORT_IMPLEMENTATION, STORE_PLAN, STORE_VALIDATION_RESULT
from .delegate import delegate_tool
from .errors import ToolError
from .files import FIND_FILES, LIST_FILES, READ_FILES, WRITE_NEW_FILE
from .interaction import AskUserArgs, ask_user
from .patch import EDIT_FILE, PATCH_FILE
from .process import RUN_PROCESS
from .registry import ToolContext, ToolRegistry, ToolSpec


def _ask_user(args: AskUserArgs, context: ToolContext) -> str:
    if context.prompter is None:
        raise ToolError("No interactive user is available; continue with your best judgement.")
    return ask_user(args, context.prompter)


ASK_USER = ToolSpec(
    name="ask_user",
    description=(
        "Ask the user one or more clarifying questions (at most 8). Use it when the request is ambiguous "
        "or a preference is needed. Returns the answers in order."
    ),
    parameters=AskUserArgs,
    handler=_ask_user,
)


def planner_tools(context: ToolContext, *, delegate: Optional[LLMClient] = None) -> ToolRegistry:
    specs: List[ToolSpec] = [LIST_FILES]
    specs.append(delegate_tool(delegate) if delegate is not None else READ_FILES)
    specs.extend([ASK_USER, STORE_PLAN])
    return ToolRegistry(specs, context)


def pre_planner_tools(context: ToolContext) -> ToolRegistry:
    return ToolRegistry([READ_FILES, LIST_FILES], context)


def executor_tools(context: ToolContext) -> ToolRegistry:
    return ToolRegistry(
        [
            LIST_FILES,
            FIND_FILES,
            READ_FILES,
            WRITE_NEW_FILE,
            PATCH_FILE,
            EDIT_FILE,
            RUN_PROCESS,
            REPORT_IMPLEMENTATION,
        ],
        context,
    )


def validation_tools(context: ToolContext) -> ToolRegistry:
    return ToolRegistry([RUN_PROCESS, READ_FILES, LIST_FILES, FIND_FILES, STORE_VALIDATION_RESULT], context)


__all__ = ["ASK_USER", "executor_tools", "planner_tools", "pre_planner_tools", "validation_tools"]
