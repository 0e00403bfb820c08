"""Prompt templates shared by the planner, executor and validator."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .planning.schemas import TaskPlan, ValidationResult

PLANNER_SYSTEM_PROMPT = (
    "You are a task planning assistant. Analyse the user's request and produce a detailed, executable plan. "
    "The plan will be carried out automatically, without the user stepping in between subtasks."
)

SUBTASK_TEMPLATE = """<subtask_specification_template>
Title: [short descriptive title]

Context of the task: [what the executor must know; it has not seen the original request]

Goal: [what this subtask accomplishes]

Context:
- Files: [full paths of files to create or modify]
- Interfaces: [public interfaces to implement or use]
- Project Patterns: [project conventions to follow]

Requirements:
1. [requirement 1..n]

Input: [starting state]

Output: [expected deliverable]

Implementation Details:
[signatures, references and guidance that keep the code in a working state]
</subtask_specification_template>"""

SUBTASK_GUIDELINES = """## GUIDELINES FOR SUBTASKS
1. Atomic: one logical action per subtask (create one file, change one component). Do not split a single file change across subtasks unless unavoidable.
2. Standalone: the executor only sees the subtask specification, so include every detail it needs.
3. Precise paths: give full file paths, module names and interface definitions.
4. Implementation detail: guide the executor as a senior developer would guide a junior colleague.
5. Code patterns: quote existing project patterns where consistency matters.
6. Interfaces: state how the pieces interact.
7. Every subtask must leave the code base building and working."""

VALIDATION_GUIDANCE = """## VALIDATION INSTRUCTIONS
Once all subtasks are done the result is validated. Put numbered validation steps in the "validationInstructions" field of the plan. Each step names:
- the action (a command to run with run_process, or a file to inspect)
- the expected outcome
- how to interpret the result
Cover the main behaviour and the relevant edge cases, with exact commands."""

DELEGATE_GUIDANCE = """The "delegate_analysis_to_model" tool hands file analysis to a cheaper model. Batch your work: pass several files and several queries in a single call rather than many small calls. Queries are answered one by one, so batching costs no quality."""

PRE_PLANNER_SYSTEM_PROMPT = (
    "You are a pre-planning assistant. Perform a first analysis of a user request so the planner has less "
    "ground to cover: identify the key files, components, interfaces and code sections, and suggest a "
    "high-level approach. Be specific about files, locations and snippets."
)

PRE_PLANNER_INSTRUCTIONS = """## INSTRUCTIONS
1. Identify the components and requirements the request touches.
2. Read the files you need to understand the context and its dependencies.
3. List the main files to modify or create; verify assumptions before proposing new files.
4. Map the dependencies between those files.
5. Quote existing code snippets that matter for planning.

## OUTPUT FORMAT
ANALYSIS:
[your understanding of the request]

MAIN_FILES:
- [path]: [why it matters and what changes]

DEPENDENCIES:
- [path] depends on [path] because [reason]

RELEVANT_CODE_SNIPPETS:
[path]:
```
[snippet]
```
[why it matters]"""

EXECUTOR_SYSTEM_PROMPT = (
    "You are a software engineer implementing one subtask of a larger plan. Use the tools to inspect and "
    "change files; never paste file contents into your reply instead of writing them. When the work is "
    "done, call report_implementation once and stop calling tools."
)

VALIDATION_SYSTEM_PROMPT = (
    "You are a validation assistant. Check that the implementation satisfies the validation instructions. "
    "Run the commands you need, inspect files, and finish by calling store_validation_result with a "
    "status of PASSED or FAILED, a message, the failed tasks and suggested fixes."
)

DELEGATE_SYSTEM_PROMPT = (
    "You are a helpful assistant that analyses files and answers queries about them. Answer concisely and "
    "accurately from the file content; read further files yourself when the query requires it."
)


def render_planner_prompt(
    *,
    current_directory: Path,
    project_root: Path,
    listing: str,
    context_string: str,
    pre_planning: Optional[str] = None,
    delegate_enabled: bool = False,
) -> str:
    """Assemble the planner's instruction prompt."""
    sections = [
        PLANNER_SYSTEM_PROMPT,
        "PROJECT CONTEXT:\n"
        f"Current Directory: {current_directory.as_posix()}\n"
        f"Project Root: {project_root.as_posix()}",
        f'PROJECT DIRECTORY STRUCTURE (limited depth):\n"""\n{listing}\n"""',
    ]
    if pre_planning:
        sections.append(
            "## PRE-PLANNING ANALYSIS\n"
            "A simpler model produced this first analysis; use it as a starting point.\n\n"
            f"ANALYSIS:\n{pre_planning}"
        )
    gathering = (
        "## CONTEXT GATHERING PHASE\n"
        "Explore the project with the tools before planning. Look for the input files the task needs, "
        "dependencies and their versions, code patterns and architecture, configuration, how the project "
        "is built and verified, and the test framework in use.\n"
        "Use ask_user when the request is ambiguous or you need the user's preference."
    )
    if delegate_enabled:
        gathering = f"{gathering}\n\n{DELEGATE_GUIDANCE}"
    sections.append(gathering)
    sections.append(f"## PROJECT GUIDELINES\n{context_string.strip() or 'None provided.'}")
    sections.append(
        "## TASK PLANNING PHASE\n"
        "Break the request into executable subtasks. Write each subtask specification with this template:\n\n"
        f"{SUBTASK_TEMPLATE}"
    )
    sections.append(SUBTASK_GUIDELINES)
    sections.append(VALIDATION_GUIDANCE)
    sections.append(
        "Always finish context gathering by calling store_plan with arguments that follow its schema. "
        "Subtasks are objects and the specification is one of their fields. Include validationInstructions. "
        "Only after the plan is stored, reply with a short summary of your approach."
    )
    return "\n\n".join(sections)


def render_executor_prompt(
    *,
    specification: str,
    working_dir: Path,
    files: str = "",
    base_prompt: str = "",
) -> str:
    """Render the per-subtask prompt handed to the executor model."""
    lines = [
        "You are working on the following task:",
        specification,
        "",
        f"Your working directory is {working_dir.as_posix()}.",
        "Write files using the tools rather than printing their content.",
    ]
    if files:
        lines.extend(["", "Relevant files:", files])
    if base_prompt.strip():
        lines.extend(["", base_prompt.strip()])
    return "\n".join(lines)


def render_validation_prompt(plan: TaskPlan, auto_transcript: str = "") -> str:
    """Render the prompt asking the validation model for a verdict."""
    tasks = "\n".join(f"- {task.id}: {task.specification}" for task in plan.ordered_subtasks())
    prompt = (
        "Validate the execution of the following task plan using these validation instructions:\n\n"
        f"{plan.validation_instructions or ''}\n\n"
        f"Original request: {plan.original_request}\n\n"
        f"Tasks:\n{tasks}\n\n"
        "Be thorough and give actionable feedback."
    )
    if auto_transcript:
        prompt = f"{prompt}\n\nAutomatic checks already run:\n{auto_transcript}"
    return prompt


def render_regenerate_request(plan: TaskPlan, result: ValidationResult) -> str:
    """Build the next user request after a failed validation."""
    text = f"Please fix the following issues with the previous task execution:\n\n{result.message}\n\n"
    if result.suggested_fixes:
        text += f"Suggested fixes: {result.suggested_fixes}\n\n"
    return text + f"Original request: {plan.original_request}"


def render_fix_prompt(plan: TaskPlan, result: ValidationResult) -> str:
    """Render the free-form subtask used to repair validation failures."""
    parts = [
        "Title: Fix validation errors in the task implementation",
        "Context of the task: The current implementation failed validation and must be repaired.",
        "Goal: Resolve every validation error while keeping the rest of the implementation intact.",
        f"Validation Error Details:\n{result.message}",
    ]
    if result.failed_tasks:
        parts.append("Failed Tasks:\n" + "\n".join(f"- {task}" for task in result.failed_tasks))
    if result.suggested_fixes:
        parts.append(f"Suggested Fixes:\n{result.suggested_fixes}")
    parts.append(f"Original Request: {plan.original_request}")
    if plan.validation_instructions:
        parts.append(f"Validation Instructions:\n{plan.validation_instructions}")
    parts.append(
        "Requirements:\n"
        "1. Apply the suggested fixes.\n"
        "2. Stay consistent with the existing code base.\n"
        "3. Make sure every validation error is addressed."
    )
    return "\n\n".join(parts)


def render_delegate_prompt(files: str, query: str) -> str:
    return f"FILES:\n{files}\n\nQUERY:\n{query}"


def render_feedback_request(request: str, feedback: str) -> str:
    return f"{request}\n\nUser feedback on the plan: {feedback}"


__all__ = [
    "DELEGATE_SYSTEM_PROMPT",
    "EXECUTOR_SYSTEM_PROMPT",
    "PLANNER_SYSTEM_PROMPT",
    "PRE_PLANNER_INSTRUCTIONS",
    "PRE_PLANNER_SYSTEM_PROMPT",
    "VALIDATION_SYSTEM_PROMPT",
    "render_delegate_prompt",
    "render_executor_prompt",
    "render_feedback_request",
    "render_fix_prompt",
    "render_planner_prompt",
    "render_regenerate_request",
    "render_validation_prompt",
]
