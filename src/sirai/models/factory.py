"""Build and cache model clients by role and complexity tier."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from ..config import ModelSettings, ModelsConfig
from ..planning.schemas import LLMType
from .llm_client import LLMClient, Pricing, TokenUsage
from .offline import OfflineLLMClient
from .responses import ResponsesClient
from .transcripts import TranscriptWriter

__all__ = ["ModelConfigurationError", "ModelRouter", "ROLES"]

LOGGER = logging.getLogger(__name__)

ROLES = ("planning", "pre_planning", "validation", "delegate", "default")

ClientFactory = Callable[[ModelSettings], LLMClient]


class ModelConfigurationError(RuntimeError):
    """Raised when the default model client cannot be constructed."""


class ModelRouter:
    """Resolve the client to use for a role or an :class:`LLMType` tier.

    Unavailable role or tier models fall back to the default model; only the
    default itself is fatal. ``use_remote=False`` forces every lookup onto the
    offline client.
    """

    def __init__(
        self,
        config: ModelsConfig,
        *,
        transcripts: Optional[TranscriptWriter] = None,
        use_remote: bool = True,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._config = config
        self._transcripts = transcripts
        self._use_remote = use_remote
        self._factory = client_factory or self._build_client
        self._clients: Dict[str, LLMClient] = {}

    # ------------------------------------------------------------ lookups
    def default(self) -> LLMClient:
        cached = self._clients.get("default")
        if cached is not None:
            return cached
        try:
            client = self._factory(self._effective(self._config.default))
        except (ValueError, RuntimeError) as error:
            raise ModelConfigurationError(f"Failed to initialise the default model: {error}") from error
        self._clients["default"] = client
        return client

    def for_role(self, role: str) -> LLMClient:
        if role == "default":
            return self.default()
        settings = self._config.roles.get(role)
        if settings is None:
            return self.default()
        return self._optional(f"role:{role}", settings)

    def for_llm_type(self, llm_type: LLMType | str | None) -> LLMClient:
        try:
            tier = LLMType(str(getattr(llm_type, "value", llm_type)).upper()) if llm_type else LLMType.HYBRID
        except ValueError:
            tier = LLMType.HYBRID
        if tier is LLMType.REMOTE and self._config.remote is not None:
            return self._optional("tier:remote", self._config.remote)
        if tier is LLMType.LOCAL and self._config.local is not None:
            return self._optional("tier:local", self._config.local)
        return self.default()

    # -------------------------------------------------------------- usage
    def clients(self) -> List[LLMClient]:
        unique: List[LLMClient] = []
        for client in self._clients.values():
            if all(client is not seen for seen in unique):
                unique.append(client)
        return unique

    def total_usage(self) -> TokenUsage:
        total = TokenUsage()
        for client in self.clients():
            usage = client.get_token_usage()
            total.input_tokens += usage.input_tokens
            total.output_tokens += usage.output_tokens
            total.calls += usage.calls
        return total

    def total_cost(self) -> float:
        return sum(client.get_cost_in_usd() for client in self.clients())

    def usage_report(self) -> str:
        usage = self.total_usage()
        return (
            f"Token usage: {usage.input_tokens} input, {usage.output_tokens} output "
            f"across {usage.calls} call(s); estimated cost ${self.total_cost():.4f}"
        )

    # ----------------------------------------------------------- internals
    def _optional(self, key: str, settings: ModelSettings) -> LLMClient:
        cached = self._clients.get(key)
        if cached is not None:
            return cached
        try:
            client = self._factory(self._effective(settings))
        except (ValueError, RuntimeError) as error:
            LOGGER.warning("Model %s unavailable (%s); falling back to default", key, error)
            return self.default()
        self._clients[key] = client
        return client

    def _effective(self, settings: ModelSettings) -> ModelSettings:
        if self._use_remote:
            return settings
        return settings.model_copy(update={"provider": "offline"})

    def _build_client(self, settings: ModelSettings) -> LLMClient:
        options = dict(
            max_attempts=self._config.max_attempts,
            retry_delay=self._config.retry_delay,
            max_tool_turns=self._config.max_tool_turns,
            pricing=Pricing(settings.input_price_per_million, settings.output_price_per_million),
            transcripts=self._transcripts,
        )
        if settings.provider == "offline":
            return OfflineLLMClient(**options)
        return ResponsesClient(
            api_key=settings.api_key,
            base_url=settings.base_url,
            model=settings.model,
            timeout=settings.timeout,
            **options,
        )
