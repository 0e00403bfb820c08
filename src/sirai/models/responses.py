"""Production client that speaks the OpenAI Responses API over HTTP."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["ResponsesClient", "Transport"]

LOGGER = logging.getLogger(__name__)

Transport = Callable[[Dict[str, Any]], "str | Mapping[str, Any]"]

DEFAULT_BASE_URL = "https://api.openai.com/v1/responses"


class ResponsesClient(LLMClient):
    """Thin adapter around the Responses API.

    ``transport`` may be injected for tests; it receives the request payload
    and returns either the decoded response object or its JSON text.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = "gpt-5-mini",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(model=model, **kwargs)
        self._api_key = api_key or os.getenv("SIRAI_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url or DEFAULT_BASE_URL
        timeout_override = os.getenv("SIRAI_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                LOGGER.warning("Ignoring invalid SIRAI_TIMEOUT=%r", timeout_override)
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _send(self, payload: Dict[str, Any]) -> Mapping[str, Any]:
        try:
            raw_response = self._transport(payload)
        except LLMTransportError:
            raise
        except (OSError, ValueError) as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        if isinstance(raw_response, Mapping):
            return raw_response
        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError as error:
            raise LLMResponseFormatError(f"Response body is not JSON: {raw_response[:200]}") from error
        if not isinstance(data, Mapping):
            raise LLMResponseFormatError("Response body is not a JSON object.")
        return data

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport that targets the Responses endpoint."""
        import urllib.error
        import urllib.request

        LOGGER.debug("POST %s model=%s", self._base_url, payload.get("model"))
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
                "X-OpenAI-Client": "sirai/0.1",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Model response timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach model endpoint: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")
