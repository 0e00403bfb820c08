"""The delegate_analysis_to_model tool: file analysis on a cheaper model."""

from __future__ import annotations

import json
import logging
from typing import Dict, List

from pydantic import Field

from ..models.llm_client import LLMClient, LLMClientError
from ..planning.schemas import ToolArgsModel
from ..prompts import DELEGATE_SYSTEM_PROMPT, render_delegate_prompt
from ..telemetry import emit_event
from .files import READ_FILES
from .paths import render_files
from .registry import ToolContext, ToolRegistry, ToolSpec

LOGGER = logging.getLogger(__name__)


class DelegateArgs(ToolArgsModel):
    paths: List[str] = Field(default_factory=list, description="Files to analyse, relative to the working directory.")
    queries: List[str] = Field(min_length=1, description="Questions or analysis tasks; answered one by one.")


def delegate_tool(client: LLMClient) -> ToolSpec:
    """Bind the delegate tool to the model that answers its queries."""

    def _delegate(args: DelegateArgs, context: ToolContext) -> str:
        rendered = render_files(args.paths, context.working_dir)
        nested = ToolRegistry([READ_FILES], context)

        answers: List[Dict[str, str]] = []
        for number, query in enumerate(args.queries, start=1):
            try:
                result = client.generate(
                    DELEGATE_SYSTEM_PROMPT,
                    render_delegate_prompt(rendered, query),
                    tools=nested,
                    label=f"delegate-{number}",
                )
                answer = result.text
            except LLMClientError as error:
                LOGGER.warning("Delegate query %s failed: %s", number, error)
                answer = f"Error: {error}"
            answers.append({"query": query, "answer": answer})
        emit_event("delegate.completed", queries=len(args.queries), files=len(args.paths))
        return json.dumps({"answers": answers})

    return ToolSpec(
        name="delegate_analysis_to_model",
        description=(
            "Delegate analysis of files to a smaller model. Provide the file paths and a list of queries; "
            "each query is answered against the file contents."
        ),
        parameters=DelegateArgs,
        handler=_delegate,
    )


__all__ = ["DelegateArgs", "delegate_tool"]
