"""Model clients: the tool-calling base class, transports and routing."""

from .factory import ModelConfigurationError, ModelRouter
from .llm_client import (
    GenerationResult,
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMToolLoopError,
    LLMTransportError,
    Pricing,
    TokenUsage,
)
from .offline import OfflineLLMClient
from .responses import ResponsesClient
from .transcripts import TranscriptWriter

__all__ = [
    "GenerationResult",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMToolLoopError",
    "LLMTransportError",
    "ModelConfigurationError",
    "ModelRouter",
    "OfflineLLMClient",
    "Pricing",
    "ResponsesClient",
    "TokenUsage",
    "TranscriptWriter",
]
