"""Bounded JSON log of completed task plans."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from .schemas import SubtaskStatus, TaskPlan, utc_now

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TASKS = 50

_PLANS = TypeAdapter(List[TaskPlan])


class TaskHistory:
    """Append-and-truncate history stored as a JSON array of plans.

    Entries are serialized snapshots, so mutating a plan after :meth:`append`
    never changes what was persisted.
    """

    def __init__(self, path: Path, *, max_tasks: int = DEFAULT_MAX_TASKS) -> None:
        self.path = Path(path)
        self.max_tasks = max_tasks

    # ------------------------------------------------------------ storage
    def load(self) -> List[TaskPlan]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return _PLANS.validate_python(raw)
        except (OSError, ValueError, ValidationError) as error:
            LOGGER.warning("Ignoring unreadable task history %s: %s", self.path, error)
            return []

    def _save(self, plans: List[TaskPlan]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([plan.to_json_dict() for plan in plans], indent=2, ensure_ascii=False)
        fd, temp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".history-", suffix=".tmp")
        try:
            with open(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(temp_path, self.path)
        except OSError:
            Path(temp_path).unlink(missing_ok=True)
            raise

    # ---------------------------------------------------------- mutation
    def append(self, plan: TaskPlan) -> TaskPlan:
        """Persist a snapshot of ``plan`` and return the stored copy."""
        snapshot = plan.model_copy(deep=True)
        if snapshot.completed_at is None:
            snapshot.completed_at = utc_now()
            plan.completed_at = snapshot.completed_at
        plans = self.load()
        plans.append(snapshot)
        self._save(plans[-self.max_tasks :])
        return snapshot

    def clear(self) -> None:
        self._save([])

    # ----------------------------------------------------------- queries
    def completed(self, limit: Optional[int] = None) -> List[TaskPlan]:
        """Return stored plans, most recent first."""
        plans = list(reversed(self.load()))
        return plans if limit is None else plans[:limit]

    def summary(self, limit: int = 5) -> str:
        plans = self.completed(limit)
        if not plans:
            return "No previously completed tasks."
        lines = ["Previously completed tasks:"]
        for plan in plans:
            stamp = plan.completed_at.strftime("%Y-%m-%d %H:%M") if plan.completed_at else "unknown"
            verdict = f" [{plan.validation_result.status.value}]" if plan.validation_result else ""
            lines.append(f"- {stamp}: {plan.original_request}{verdict}")
        return "\n".join(lines)

    def implementation_details_summary(self, limit: int = 10) -> str:
        """Describe what recent subtasks changed, for executor base prompts."""
        entries: List[str] = []
        for plan in self.completed(limit):
            for subtask in plan.subtasks:
                details = subtask.implementation_details
                if details is None:
                    continue
                parts = [f"Task: {subtask.specification.splitlines()[0] if subtask.specification else subtask.id}"]
                if details.summary:
                    parts.append(f"Summary: {details.summary}")
                if details.modified_files:
                    parts.append(f"Modified files: {', '.join(details.modified_files)}")
                if details.public_interfaces:
                    parts.append(f"Public interfaces: {', '.join(details.public_interfaces)}")
                if details.additional_context:
                    parts.append(f"Additional context: {'; '.join(details.additional_context)}")
                entries.append("\n".join(parts))
        if not entries:
            return ""
        return "Previously implemented changes:\n\n" + "\n\n".join(entries)

    def prior_success_rate(self) -> Optional[float]:
        """Share of completed subtasks across history; ``None`` when empty."""
        total = 0
        succeeded = 0
        for plan in self.load():
            for subtask in plan.subtasks:
                total += 1
                if subtask.status is SubtaskStatus.COMPLETED:
                    succeeded += 1
        if total == 0:
            return None
        return succeeded / total


__all__ = ["DEFAULT_MAX_TASKS", "TaskHistory"]
