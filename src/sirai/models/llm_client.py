"""Client base class shared by all language-model integrations.

Two entry points are provided. :meth:`LLMClient.generate` drives a
tool-calling loop over the Responses API: each turn may request function
calls, every result is fed back before the next turn, and capturing tools
store their validated arguments in :attr:`GenerationResult.captured`.
:meth:`LLMClient.invoke_structured` asks for schema-constrained JSON and
retries on malformed output.
"""

from __future__ import annotations

import ast
import json
import logging
import re
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic.type_adapter import TypeAdapter

from .transcripts import TranscriptWriter

if TYPE_CHECKING:
    from ..tools.registry import ToolRegistry

__all__ = [
    "GenerationResult",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMToolLoopError",
    "LLMTransportError",
    "Pricing",
    "TokenUsage",
    "ToolCallRecord",
    "function_calls",
    "output_text",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def _close_schema(value: Any) -> Any:
    """Recursively tighten JSON Schema objects to disallow unknown keys."""
    if isinstance(value, dict):
        schema_type = value.get("type")
        if schema_type == "object":
            value["additionalProperties"] = False
            properties = value.get("properties")
            if isinstance(properties, dict):
                required = value.get("required")
                all_keys = list(properties.keys())
                if not isinstance(required, list):
                    required = all_keys
                else:
                    required.extend(key for key in all_keys if key not in required)
                value["required"] = required
                for key, child in list(properties.items()):
                    properties[key] = _close_schema(child)
        for key, child in list(value.items()):
            if key == "properties":
                continue
            value[key] = _close_schema(child)
    elif isinstance(value, list):
        return [_close_schema(item) for item in value]
    return value


class LLMClientError(RuntimeError):
    """Base error raised for LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns payload that is not valid JSON."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries due to repeated failures."""


class LLMToolLoopError(LLMClientError):
    """Raised when a tool-calling loop exceeds its turn budget."""


def _message(role: str, text: str) -> Dict[str, Any]:
    return {"role": role, "content": [{"type": "input_text", "text": text}]}


@dataclass(slots=True)
class LLMRequest(Generic[T]):
    """Typed structured-output request sent to an LLM."""

    prompt: str
    response_model: Type[T]
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.0
    max_attempts: Optional[int] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the JSON responses API."""
        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append(_message("system", self.system_prompt))
        messages.append(_message("user", self.prompt))

        schema_name = getattr(self.response_model, "__name__", "sirai_response")
        try:
            schema = TypeAdapter(self.response_model).json_schema()
        except Exception:  # pragma: no cover - exotic annotations
            schema = {"type": "object"}
        schema = _close_schema(schema)

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": messages,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": True,
                }
            },
        }
        if self.temperature not in (None, 0.0):
            payload["temperature"] = self.temperature
        if self.metadata:
            max_metadata_len = 512
            serialised_metadata: Dict[str, Any] = {}
            for key, value in self.metadata.items():
                if isinstance(value, str):
                    formatted = value
                else:
                    formatted = json.dumps(value, separators=(",", ":"), sort_keys=True)
                if len(formatted) > max_metadata_len:
                    formatted = f"{formatted[: max_metadata_len - 3]}..."
                serialised_metadata[key] = formatted
            payload["metadata"] = serialised_metadata
        return payload


@dataclass(slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    calls: int = 0

    def add(self, usage: Any) -> None:
        self.calls += 1
        if not isinstance(usage, Mapping):
            return
        self.input_tokens += int(usage.get("input_tokens") or 0)
        self.output_tokens += int(usage.get("output_tokens") or 0)


@dataclass(slots=True)
class Pricing:
    """USD price per million tokens."""

    input_per_million: float = 0.0
    output_per_million: float = 0.0

    def cost(self, usage: TokenUsage) -> float:
        return (
            usage.input_tokens * self.input_per_million
            + usage.output_tokens * self.output_per_million
        ) / 1_000_000


@dataclass(slots=True)
class ToolCallRecord:
    name: str
    arguments: str
    output: str
    failed: bool = False


@dataclass(slots=True)
class GenerationResult:
    """Outcome of a tool-calling generation."""

    text: str
    captured: Dict[str, BaseModel] = field(default_factory=dict)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
    turns: int = 0

    def capture(self, name: str) -> Optional[BaseModel]:
        return self.captured.get(name)


# ----------------------------------------------------------- response parsing
def output_text(response: Any) -> Optional[str]:
    """Return the assistant text carried by a Responses API payload."""
    if not isinstance(response, Mapping):
        return None
    direct = response.get("output_text")
    if isinstance(direct, str) and direct.strip():
        return direct

    texts: List[str] = []
    for container in (response.get("output"), response.get("outputs")):
        texts.extend(_collect_text(container))
    nested = response.get("response")
    if not texts and isinstance(nested, Mapping):
        texts.extend(_collect_text(nested.get("output") or nested.get("outputs")))
    if not texts:
        texts.extend(_collect_text(response.get("choices")))
    if not texts:
        return None
    return "\n".join(texts)


def _collect_text(container: Any) -> List[str]:
    if not container:
        return []
    if isinstance(container, Mapping):
        container = [container]
    texts: List[str] = []
    for item in container:
        if not isinstance(item, Mapping) or item.get("type") == "function_call":
            continue
        contents = item.get("content")
        if isinstance(contents, list):
            for content_item in contents:
                if not isinstance(content_item, Mapping):
                    continue
                json_payload = content_item.get("json")
                if isinstance(json_payload, (dict, list)):
                    texts.append(json.dumps(json_payload))
                    continue
                text = content_item.get("text")
                if isinstance(text, str) and text.strip():
                    texts.append(text)
            continue
        message = item.get("message")
        if isinstance(message, Mapping):
            text = message.get("content") or message.get("text")
            if isinstance(text, str) and text.strip():
                texts.append(text)
    return texts


def function_calls(response: Any) -> List[Mapping[str, Any]]:
    """Return the ``function_call`` output items of a Responses API payload."""
    if not isinstance(response, Mapping):
        return []
    output = response.get("output") or []
    if not isinstance(output, Sequence):
        return []
    return [item for item in output if isinstance(item, Mapping) and item.get("type") == "function_call"]


class LLMClient:
    """High-level helper shared by concrete transports.

    Subclasses implement :meth:`_send`, which posts a Responses API payload
    and returns the decoded response object.
    """

    def __init__(
        self,
        model: str,
        *,
        max_attempts: int = 5,
        retry_delay: float = 0.5,
        max_tool_turns: int = 40,
        pricing: Optional[Pricing] = None,
        transcripts: Optional[TranscriptWriter] = None,
    ) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._max_tool_turns = max_tool_turns
        self._pricing = pricing or Pricing()
        self._transcripts = transcripts
        self._usage = TokenUsage()

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    # ---------------------------------------------------------------- usage
    def get_token_usage(self) -> TokenUsage:
        return TokenUsage(
            input_tokens=self._usage.input_tokens,
            output_tokens=self._usage.output_tokens,
            calls=self._usage.calls,
        )

    def get_cost_in_usd(self) -> float:
        return self._pricing.cost(self._usage)

    # ------------------------------------------------------------ tool loop
    def generate(
        self,
        system_prompt: Optional[str],
        user_input: str | Sequence[str],
        *,
        tools: Optional["ToolRegistry"] = None,
        max_turns: Optional[int] = None,
        stop_on: Optional[Sequence[str]] = None,
        label: str = "generate",
    ) -> GenerationResult:
        """Run a tool-calling loop until the model stops requesting tools.

        ``stop_on`` names tools that end the loop once they have been called
        successfully; it defaults to every capturing tool in ``tools``.
        """
        turn_budget = max_turns or self._max_tool_turns
        stop_names = set(tools.capturing_tools() if stop_on is None and tools else stop_on or ())

        conversation: List[Dict[str, Any]] = []
        if system_prompt:
            conversation.append(_message("system", system_prompt))
        inputs = [user_input] if isinstance(user_input, str) else list(user_input)
        conversation.extend(_message("user", text) for text in inputs if text)

        result = GenerationResult(text="")
        error: Optional[Exception] = None
        try:
            for turn in range(1, turn_budget + 1):
                result.turns = turn
                payload: Dict[str, Any] = {"model": self._model, "input": list(conversation)}
                if tools is not None:
                    payload["tools"] = tools.payloads()
                response = self._send_with_retry(payload)
                self._usage.add(response.get("usage"))

                calls = function_calls(response)
                text = output_text(response) or ""
                if not calls:
                    result.text = text
                    return result

                conversation.extend(
                    dict(item) for item in response.get("output") or [] if isinstance(item, Mapping)
                )
                stop = False
                for call in calls:
                    name = str(call.get("name") or "")
                    arguments = call.get("arguments")
                    if tools is None:
                        outcome_output = json.dumps({"status": "error", "message": "No tools are available."})
                        failed, captured = True, None
                    else:
                        outcome = tools.dispatch(name, arguments)
                        outcome_output, failed, captured = outcome.output, outcome.failed, outcome.captured
                    result.tool_calls.append(
                        ToolCallRecord(
                            name=name,
                            arguments=arguments if isinstance(arguments, str) else json.dumps(arguments),
                            output=outcome_output,
                            failed=failed,
                        )
                    )
                    conversation.append(
                        {
                            "type": "function_call_output",
                            "call_id": call.get("call_id") or call.get("id"),
                            "output": outcome_output,
                        }
                    )
                    if captured is not None:
                        result.captured[name] = captured
                        if name in stop_names:
                            stop = True
                if stop:
                    result.text = text
                    return result

            raise LLMToolLoopError(f"Tool loop exceeded {turn_budget} turns for model {self._model}")
        except Exception as caught:
            error = caught
            raise
        finally:
            self._record(label, conversation=conversation, result=result, error=error)

    # ----------------------------------------------------- structured output
    def invoke(self, request: LLMRequest[T]) -> T:
        """Invoke the underlying model and return a validated response."""
        result, _ = self.invoke_structured(request)
        return result

    def generate_structured(
        self,
        prompt: str,
        response_model: Type[T],
        *,
        system_prompt: Optional[str] = None,
    ) -> T:
        return self.invoke(LLMRequest(prompt=prompt, response_model=response_model, system_prompt=system_prompt))

    def invoke_structured(
        self,
        request: LLMRequest[T],
        *,
        logger: Optional[
            Callable[[Dict[str, Any], Optional[str], Optional[Any], Optional[Exception], int], None]
        ] = None,
    ) -> tuple[T, Any]:
        """Invoke the model and return both the structured response and raw payload."""
        attempts = request.max_attempts or self._max_attempts
        last_error: Optional[Exception] = None
        adapter = TypeAdapter(request.response_model)

        for attempt in range(1, attempts + 1):
            payload = request.to_payload(self._model)
            raw: Optional[str] = None
            data: Optional[Any] = None
            try:
                raw = self._raw_invoke(payload)
                data = self._parse_json(raw)
                validated = adapter.validate_python(data)
            except (LLMResponseFormatError, ValidationError, LLMTransportError) as error:
                last_error = error
                if logger:
                    logger(payload, raw, data, error, attempt)
                if attempt >= attempts:
                    break
                time.sleep(self._retry_delay)
                continue
            if logger:
                logger(payload, raw, data, None, attempt)
            self._record("structured", conversation=payload["input"], result=data, error=None)
            return validated, data

        error_message = (
            f"Failed to produce schema-valid JSON after {attempts} attempt(s) for model "
            f"{request.model or self._model}"
        )
        self._record("structured", conversation=[], result=None, error=last_error)
        raise LLMRetryError(error_message) from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send a structured-output payload and return the model's text."""
        response = self._send_with_retry(payload, attempts=1)
        self._usage.add(response.get("usage"))
        text = output_text(response)
        if text is None:
            raise LLMResponseFormatError("Response did not contain output text.")
        return text

    # ------------------------------------------------------------ transport
    def _send(self, payload: Dict[str, Any]) -> Mapping[str, Any]:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _send().")

    def _send_with_retry(self, payload: Dict[str, Any], *, attempts: Optional[int] = None) -> Mapping[str, Any]:
        budget = attempts or self._max_attempts
        last_error: Optional[LLMTransportError] = None
        for attempt in range(1, budget + 1):
            try:
                response = self._send(payload)
            except LLMTransportError as error:
                last_error = error
                LOGGER.warning("Transport error on attempt %s/%s: %s", attempt, budget, error)
                if attempt < budget:
                    time.sleep(self._retry_delay)
                continue
            if not isinstance(response, Mapping):
                raise LLMResponseFormatError("Transport returned a non-object response.")
            return response
        if budget == 1 and last_error is not None:
            raise last_error
        raise LLMRetryError(f"Transport failed after {budget} attempt(s) for model {self._model}") from last_error

    def _record(self, label: str, *, conversation: Any, result: Any, error: Optional[Exception]) -> None:
        if self._transcripts is None:
            return
        entry: Dict[str, Any] = {"model": self._model, "input": conversation, "result": result}
        if error is not None:
            entry["error"] = f"{type(error).__name__}: {error}"
        self._transcripts.write(label, entry)

    # ---------------------------------------------------------- JSON repair
    @staticmethod
    def _parse_json(raw_response: str) -> Any:
        """Parse JSON payloads and normalize errors."""
        text = raw_response.strip()
        if not text:
            raise LLMResponseFormatError("Model returned an empty response.")

        text = _normalise_json_string(text)
        candidates = [text]
        repaired = _repair_json_payload(text)
        if repaired and repaired not in candidates:
            candidates.append(_normalise_json_string(repaired))

        for candidate in candidates:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                pythonic = _coerce_python_literal(candidate)
                if pythonic is not None:
                    return pythonic

        snippet = text[:200]
        raise LLMResponseFormatError(f"Model returned invalid JSON: {snippet}")


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    if not payload.startswith("```"):
        return payload
    fence_header_match = re.match(r"```(?:json)?", payload[:10], re.IGNORECASE)
    if not fence_header_match:
        return payload
    fence_end = payload.find("```", len(fence_header_match.group(0)))
    if fence_end == -1:
        return payload
    content_start = payload.find("\n", len(fence_header_match.group(0)))
    if content_start == -1:
        return payload
    return payload[content_start + 1 : fence_end].strip()


def _normalise_json_string(payload: str) -> str:
    """Normalise common non-JSON characters emitted by models."""
    if not payload:
        return payload
    translation = {
        0x201C: '"',
        0x201D: '"',
        0x2018: "'",
        0x2019: "'",
        0xFF07: "'",
        0x2014: "-",
        0x2013: "-",
        0x2026: "...",
        0x00A0: " ",
        0xFEFF: "",
    }
    return payload.translate(str.maketrans(translation))


def _strip_trailing_commas(payload: str) -> str:
    """Remove trailing commas before closing braces/brackets."""
    if not payload:
        return payload
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _repair_json_payload(raw: str) -> str | None:
    """Attempt to salvage JSON objects embedded in noisy output."""
    stripped = _strip_code_fence(raw.strip())
    if stripped == raw and "```" in raw:
        stripped = _strip_code_fence(raw)
    if not stripped:
        return None

    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        pass
    else:
        return stripped

    opening_idx = None
    expected: list[str] = []
    for index, char in enumerate(stripped):
        if char in "{[":
            if opening_idx is None:
                opening_idx = index
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected and opening_idx is not None:
                candidate = stripped[opening_idx : index + 1]
                return _strip_trailing_commas(candidate.strip())
    return None


def _coerce_python_literal(candidate: str) -> Any | None:
    """Fall back to Python literal parsing when JSON decoding fails."""
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, ValueError):
        return None
    return _normalise_literal(literal)


def _normalise_literal(value: Any) -> Any:
    """Convert Python literals into JSON-compatible structures recursively."""
    if isinstance(value, dict):
        return {str(key): _normalise_literal(sub) for key, sub in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalise_literal(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
