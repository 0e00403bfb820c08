"""JSON transcript logs for every LLM call."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

LOGGER = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if hasattr(value, "model_dump"):
        try:
            return _json_safe(value.model_dump(mode="json"))
        except TypeError:
            pass
    if isinstance(value, Mapping):
        return {str(key): _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


def _slug(value: str, *, fallback: str = "call", max_length: int = 80) -> str:
    """Normalise identifiers for use in log filenames."""
    cleaned = re.sub(r"[^A-Za-z0-9]+", "-", value).strip("-")
    slug = cleaned or fallback
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix_length = max(max_length - len(digest) - 1, 1)
    prefix = slug[:prefix_length].rstrip("-") or slug[:prefix_length]
    return f"{prefix}-{digest}"


class TranscriptWriter:
    """Persist one JSON file per LLM call under ``logs_root``.

    Write failures are logged and never propagate; transcripts are a debugging
    aid, not part of the session state.
    """

    def __init__(self, logs_root: Path) -> None:
        self.logs_root = Path(logs_root)

    def write(self, label: str, entry: Mapping[str, Any]) -> Path | None:
        try:
            self.logs_root.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            LOGGER.warning("Cannot create transcript directory %s: %s", self.logs_root, error)
            return None

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        file_name = "__".join([_slug(label), timestamp]) + ".json"
        log_path = self.logs_root / file_name
        payload = {"timestamp": datetime.now(timezone.utc).isoformat(), "label": label}
        payload.update(_json_safe(dict(entry)))
        try:
            with log_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True, ensure_ascii=False)
        except OSError as error:
            LOGGER.warning("Failed to write transcript %s: %s", log_path, error)
            return None
        return log_path


__all__ = ["TranscriptWriter"]
