"""Deterministic client used when no remote model is configured.

It never performs network I/O. Tool loops are answered by calling the
capturing tool on offer with a minimal payload; structured requests get an
empty object and rely on model defaults.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from .llm_client import LLMClient

__all__ = ["OfflineLLMClient"]


def _estimate_tokens(value: Any) -> int:
    return max(1, len(json.dumps(value, default=str)) // 4)


def _last_user_text(items: List[Any]) -> str:
    for item in reversed(items):
        if not isinstance(item, Mapping) or item.get("role") != "user":
            continue
        content = item.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            texts = [part.get("text", "") for part in content if isinstance(part, Mapping)]
            return "\n".join(text for text in texts if text)
    return ""


class OfflineLLMClient(LLMClient):
    """Scripted stand-in for a real model; see module docstring."""

    def __init__(self, model: str = "offline", **kwargs: Any) -> None:
        super().__init__(model=model, **kwargs)
        self._call_counter = 0

    def _send(self, payload: Dict[str, Any]) -> Mapping[str, Any]:
        items = list(payload.get("input") or [])
        usage = {"input_tokens": _estimate_tokens(items), "output_tokens": 0}

        if "text" in payload and "tools" not in payload:
            return self._message("{}", usage)

        offered = {
            tool.get("name")
            for tool in payload.get("tools") or []
            if isinstance(tool, Mapping)
        }
        already_called = any(
            isinstance(item, Mapping) and item.get("type") == "function_call_output" for item in items
        )
        if already_called or not offered:
            return self._message("Offline model finished.", usage)

        call = self._scripted_call(offered, _last_user_text(items))
        if call is None:
            return self._message("Offline model has nothing to do.", usage)
        name, arguments = call
        self._call_counter += 1
        usage["output_tokens"] = _estimate_tokens(arguments)
        return {
            "output": [
                {
                    "type": "function_call",
                    "call_id": f"offline_{self._call_counter}",
                    "name": name,
                    "arguments": json.dumps(arguments),
                }
            ],
            "usage": usage,
        }

    @staticmethod
    def _scripted_call(offered: set, request: str) -> Optional[tuple[str, Dict[str, Any]]]:
        if "store_plan" in offered:
            return "store_plan", {
                "subtasks": [
                    {
                        "id": "task-1",
                        "specification": request or "No spec provided",
                        "complexity": "LOW",
                        "dependencies": [],
                        "filesToRead": [],
                    }
                ],
                "executionOrder": ["task-1"],
            }
        if "store_validation_result" in offered:
            return "store_validation_result", {
                "status": "PASSED",
                "message": "Offline validation accepted the changes.",
            }
        if "report_implementation" in offered:
            return "report_implementation", {
                "summary": "Offline model made no changes.",
                "publicInterfaces": [],
                "additionalContext": [],
            }
        return None

    @staticmethod
    def _message(text: str, usage: Dict[str, int]) -> Dict[str, Any]:
        usage["output_tokens"] = usage.get("output_tokens") or _estimate_tokens(text)
        return {
            "output": [
                {
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": text}],
                }
            ],
            "usage": usage,
        }
