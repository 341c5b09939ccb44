"""Switchyard: one conversation surface over many LLM backends.

Public API:
    - Router: route(), stream(), list_providers(), list_models()
    - RouteRequest / RouteResult: a routed call and its outcome
    - RouterConfig / ProviderSettings: configuration dataclasses
    - Canonical types: Message, ToolSchema, ToolCall, CanonicalResponse...
"""

from __future__ import annotations

import logging

from switchyard.capabilities import (
    CapabilityRegistry,
    ModelCapability,
    ReasoningMarker,
    ReasoningSpec,
)
from switchyard.config import ProviderSettings, RouterConfig, parse_selector
from switchyard.errors import (
    CancellationError,
    CapabilityMismatchError,
    ConfigurationError,
    FallbackExhaustedError,
    ProviderError,
    RateLimitError,
    SwitchyardError,
    TransformError,
)
from switchyard.retry import RetryPolicy
from switchyard.router import RouteRequest, RouteResult, Router
from switchyard.thinking import ThinkingStreamProcessor
from switchyard.types import (
    CanonicalRequest,
    CanonicalResponse,
    FallbackNotice,
    FinishReason,
    ImagePart,
    Message,
    ModelInfo,
    ProviderStatus,
    StreamDone,
    TextPart,
    ThinkingToken,
    ToolCall,
    ToolCallEvent,
    ToolSchema,
    Usage,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchyard-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("switchyard").addHandler(logging.NullHandler())

__all__ = [
    "CancellationError",
    "CanonicalRequest",
    "CanonicalResponse",
    "CapabilityMismatchError",
    "CapabilityRegistry",
    "ConfigurationError",
    "FallbackExhaustedError",
    "FallbackNotice",
    "FinishReason",
    "ImagePart",
    "Message",
    "ModelCapability",
    "ModelInfo",
    "ProviderError",
    "ProviderSettings",
    "ProviderStatus",
    "RateLimitError",
    "ReasoningMarker",
    "ReasoningSpec",
    "RetryPolicy",
    "RouteRequest",
    "RouteResult",
    "Router",
    "RouterConfig",
    "StreamDone",
    "SwitchyardError",
    "TextPart",
    "ThinkingStreamProcessor",
    "ThinkingToken",
    "ToolCall",
    "ToolCallEvent",
    "ToolSchema",
    "TransformError",
    "Usage",
    "parse_selector",
]
