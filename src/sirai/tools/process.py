"""The run_process tool: shell commands gated by a trusted-prefix list."""

from __future__ import annotations

import json
import logging
import os
import re
import signal
import subprocess
from typing import Sequence

from pydantic import Field

from ..planning.schemas import ToolArgsModel
from ..telemetry import emit_event
from .interaction import ApprovalRequest
from .registry import ToolContext, ToolSpec, canceled_payload, error_payload

LOGGER = logging.getLogger(__name__)

# Chained or substituted commands are never auto-trusted, whatever their prefix.
_SHELL_CONTROL = re.compile(r"[;&|`\n]|\$\(|>|<")


class RunProcessArgs(ToolArgsModel):
    command: str = Field(min_length=1, description="The shell command to execute.")
    timeout: int | None = Field(default=None, gt=0, description="Timeout in milliseconds (default 30000).")


def is_trusted_command(command: str, trusted_commands: Sequence[str]) -> bool:
    """Return ``True`` when ``command`` starts with a trusted prefix at a word boundary."""
    text = command.strip()
    if not text or _SHELL_CONTROL.search(text):
        return False
    for prefix in trusted_commands:
        candidate = prefix.strip()
        if not candidate:
            continue
        if text == candidate or text.startswith(candidate + " "):
            return True
    return False


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} characters]"


def _kill_process_group(process: subprocess.Popen[str]) -> None:
    if hasattr(os, "killpg"):
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:
        process.kill()
    # Pipes stay open while any descendant holds them, so never wait unbounded here.
    try:
        process.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        LOGGER.warning("Process group %s did not exit after being killed", process.pid)


def run_process(args: RunProcessArgs, context: ToolContext) -> str:
    timeout_ms = args.timeout or context.process_timeout_ms

    if not is_trusted_command(args.command, context.trusted_commands):
        request = ApprovalRequest(action="run", target=args.command)
        if not context.approve(request):
            emit_event("process.canceled", command=args.command)
            return canceled_payload("Command execution was not approved by the user.")

    LOGGER.debug("Running %r in %s", args.command, context.working_dir)
    # Own session so a timeout can stop the whole process group, not just the shell.
    process = subprocess.Popen(  # noqa: S602 - command gated by trust list or user approval
        args.command,
        shell=True,
        cwd=context.working_dir,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        errors="replace",
        start_new_session=True,
    )
    try:
        raw_stdout, raw_stderr = process.communicate(timeout=timeout_ms / 1000.0)
    except subprocess.TimeoutExpired:
        _kill_process_group(process)
        emit_event("process.timeout", command=args.command, timeout_ms=timeout_ms)
        return error_payload(f"Command timed out after {timeout_ms}ms")

    limit = context.max_output_chars
    stdout = _truncate(raw_stdout or "", limit)
    stderr = _truncate(raw_stderr or "", limit)
    emit_event("process.completed", command=args.command, exit_code=process.returncode)

    if process.returncode != 0:
        return json.dumps(
            {
                "status": "error",
                "message": f"Command exited with code {process.returncode}",
                "exitCode": process.returncode,
                "stdout": stdout,
                "stderr": stderr,
            }
        )
    if stderr:
        return f"Command executed with warnings:\n{stdout}\n\nWarnings:\n{stderr}"
    return stdout


RUN_PROCESS = ToolSpec(
    name="run_process",
    description=(
        "Run a shell command in the working directory. Commands outside the trusted list require "
        "user approval. Output is returned as text; failures return a JSON error."
    ),
    parameters=RunProcessArgs,
    handler=run_process,
)


__all__ = ["RUN_PROCESS", "RunProcessArgs", "is_trusted_command", "run_process"]
