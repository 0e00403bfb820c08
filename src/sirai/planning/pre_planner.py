"""Best-effort first analysis pass ahead of planning."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..models.llm_client import LLMClient
from ..prompts import PRE_PLANNER_INSTRUCTIONS, PRE_PLANNER_SYSTEM_PROMPT
from ..tools.files import walk_files
from ..tools.paths import render_files
from ..tools.registry import ToolContext
from ..tools.toolsets import pre_planner_tools
from .schemas import ContextProfile

LOGGER = logging.getLogger(__name__)

PRE_PLANNING_LISTING_DEPTH = 3


class PrePlanner:
    """Ask a cheaper model for a digest of the files a request touches."""

    def __init__(self, client: LLMClient, context: ToolContext) -> None:
        self._client = client
        self._context = context

    def analyze(
        self,
        request: str,
        profile: ContextProfile,
        *,
        referenced_files: Sequence[str] = (),
    ) -> str:
        listing = "\n".join(
            walk_files(
                self._context.working_dir,
                self._context.working_dir,
                depth=PRE_PLANNING_LISTING_DEPTH,
                ignore_rules=self._context.ignore_rules,
            )
        ) or "Could not retrieve directory structure."
        messages = [
            PRE_PLANNER_INSTRUCTIONS,
            f"PROJECT FILES:\n{listing}",
            f"PROJECT CONTEXT:\n{profile.create_context_string()}",
        ]
        if referenced_files:
            messages.append(render_files(referenced_files, self._context.working_dir))
        messages.append(f"USER REQUEST: {request}")

        result = self._client.generate(
            PRE_PLANNER_SYSTEM_PROMPT,
            messages,
            tools=pre_planner_tools(self._context),
            label="pre-planning",
        )
        return result.text

    def try_analyze(
        self,
        request: str,
        profile: ContextProfile,
        *,
        referenced_files: Sequence[str] = (),
    ) -> Optional[str]:
        """Run :meth:`analyze`, logging and swallowing any failure."""
        try:
            digest = self.analyze(request, profile, referenced_files=referenced_files)
        except Exception as error:  # noqa: BLE001 - pre-planning never blocks planning
            LOGGER.warning("Pre-planning failed: %s", error)
            return None
        LOGGER.info("Pre-planning completed")
        return digest or None


__all__ = ["PrePlanner"]
