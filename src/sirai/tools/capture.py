"""Terminal tools whose validated arguments are captured by the tool loop.

The handlers only acknowledge; the dispatch loop stores the arguments in the
generation result and the caller reads them from there once the loop ends.
"""

from __future__ import annotations

import json

from pydantic import BaseModel

from ..planning.schemas import ReportImplementationArgs, StorePlanArgs, StoreValidationArgs
from .registry import ToolContext, ToolSpec


def _ack(message: str):
    def _handler(_: BaseModel, __: ToolContext) -> str:
        return json.dumps({"result": message})

    return _handler


STORE_PLAN = ToolSpec(
    name="store_plan",
    description=(
        "Save the task plan for execution. Pass the generated plan as input to this tool. "
        "It must always be called once planning is finished."
    ),
    parameters=StorePlanArgs,
    handler=_ack("plan is saved, your mission is complete."),
    captures=True,
)

STORE_VALIDATION_RESULT = ToolSpec(
    name="store_validation_result",
    description=(
        "Save the validation result. Pass the validation verdict as input to this tool. "
        "It must always be called once validation is finished."
    ),
    parameters=StoreValidationArgs,
    handler=_ack("validation result is saved, your mission is complete."),
    captures=True,
)

REPORT_IMPLEMENTATION = ToolSpec(
    name="report_implementation",
    description=(
        "Report what this task implemented: a short summary, public interfaces added or changed, "
        "and any context future tasks should know. Call it once when the task is done."
    ),
    parameters=ReportImplementationArgs,
    handler=_ack("implementation report is saved."),
    captures=True,
)


__all__ = ["REPORT_IMPLEMENTATION", "STORE_PLAN", "STORE_VALIDATION_RESULT"]
