"""Canonical conversation model shared by every adapter.

These are the only shapes the routing engine hands to, and receives from,
provider adapters. Provider-specific fields stay inside the adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import enum
import json
from typing import TYPE_CHECKING, Any, Literal, TypeAlias

from switchyard.errors import TransformError

if TYPE_CHECKING:
    from collections.abc import Mapping

Role = Literal["system", "user", "assistant", "tool"]
ROLES: frozenset[str] = frozenset({"system", "user", "assistant", "tool"})


class FinishReason(str, enum.Enum):
    """Why the model stopped producing output."""

    STOP = "STOP"
    MAX_TOKENS = "MAX_TOKENS"
    TOOL_CALL = "TOOL_CALL"
    OTHER = "OTHER"


@dataclass(frozen=True)
class TextPart:
    """Plain text content."""

    text: str


@dataclass(frozen=True)
class ImagePart:
    """Image content, either inline base64 ``data`` or a fetchable ``url``."""

    mime_type: str
    data: str | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        """Require exactly one image source."""
        if (self.data is None) == (self.url is None):
            raise TransformError(
                "ImagePart needs exactly one of data or url",
                hint="Pass ImagePart(mime_type='image/png', data=<base64>) or url=...",
            )


ContentPart: TypeAlias = TextPart | ImagePart


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is kept as the provider returned it: a raw JSON string for
    OpenAI-style dialects, an already-parsed mapping for the native dialect.
    """

    id: str
    name: str
    arguments: str | Mapping[str, Any] = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        """Return arguments as a dict, tolerating malformed JSON."""
        if not isinstance(self.arguments, str):
            return dict(self.arguments)
        if not self.arguments.strip():
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {"value": parsed}

    def raw_arguments(self) -> str:
        """Return arguments as a JSON string."""
        if isinstance(self.arguments, str):
            return self.arguments or "{}"
        return json.dumps(dict(self.arguments))


@dataclass(frozen=True)
class Message:
    """One conversational turn.

    ``content`` is either a string or a sequence of parts; sequences are
    normalized to a tuple. Assistant turns may carry ``tool_calls``; tool
    turns answer one of them via ``tool_call_id``.
    """

    role: Role
    content: str | tuple[ContentPart, ...] = ""
    tool_call_id: str | None = None
    name: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()

    def __post_init__(self) -> None:
        """Normalize list inputs to tuples."""
        if not isinstance(self.content, str):
            object.__setattr__(self, "content", tuple(self.content))
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def parts(self) -> tuple[ContentPart, ...]:
        if isinstance(self.content, str):
            return (TextPart(self.content),) if self.content else ()
        return self.content

    @property
    def text(self) -> str:
        """Text parts joined with newlines; image parts are skipped."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart) and p.text)

    @property
    def images(self) -> tuple[ImagePart, ...]:
        return tuple(p for p in self.parts if isinstance(p, ImagePart))


@dataclass(frozen=True)
class ToolSchema:
    """Caller-supplied tool declaration."""

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass(frozen=True)
class Usage:
    """Token accounting for one call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class CanonicalRequest:
    """Provider-agnostic generation request."""

    model: str
    conversation: tuple[Message, ...]
    tools: tuple[ToolSchema, ...] = ()
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False
    #: Overrides the capability's default reasoning level when set.
    reasoning_level: str | None = None

    def __post_init__(self) -> None:
        """Normalize list inputs to tuples."""
        if not isinstance(self.conversation, tuple):
            object.__setattr__(self, "conversation", tuple(self.conversation))
        if not isinstance(self.tools, tuple):
            object.__setattr__(self, "tools", tuple(self.tools))


@dataclass(frozen=True)
class CanonicalResponse:
    """Provider-agnostic generation result."""

    message: Message
    finish_reason: FinishReason = FinishReason.STOP
    usage: Usage = field(default_factory=Usage)
    #: Separated reasoning text, never replayed into the next turn.
    reasoning: str | None = None
    model: str | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class ModelInfo:
    """A model discovered on a provider."""

    id: str
    provider: str
    display_name: str = ""
    description: str = ""
    aliases: tuple[str, ...] = ()
    family: str | None = None
    context_window: int | None = None
    supports_reasoning: bool = False

    @property
    def selector(self) -> str:
        return f"{self.provider}:{self.id}"


@dataclass(frozen=True)
class ProviderStatus:
    """Result of one availability probe."""

    provider: str
    available: bool
    models: tuple[str, ...] = ()
    error: str | None = None
    hint: str | None = None
    #: Wall-clock epoch seconds of the probe.
    checked_at: float = 0.0
    response_time_s: float | None = None


# =============================================================================
# Streaming
# =============================================================================


@dataclass(frozen=True)
class ToolCallDelta:
    """An incremental piece of a streamed tool call, keyed by ``index``."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | Mapping[str, Any] = ""


@dataclass(frozen=True)
class StreamChunk:
    """One decoded chunk of a provider stream.

    ``reasoning`` is only filled by dialects that separate reasoning at the
    wire level; pattern-based separation happens later, on ``content``.
    """

    content: str = ""
    reasoning: str = ""
    tool_calls: tuple[ToolCallDelta, ...] = ()
    finish_reason: FinishReason | None = None
    usage: Usage | None = None


@dataclass(frozen=True)
class ThinkingToken:
    """A typed fragment of streamed output. Transient; never persisted."""

    kind: Literal["reasoning", "content"]
    text: str
    subject_hint: str | None = None


@dataclass(frozen=True)
class ToolCallEvent:
    """A complete tool call assembled from a stream."""

    tool_call: ToolCall


@dataclass(frozen=True)
class FallbackNotice:
    """Emitted when the router abandons one provider for the next."""

    abandoned: str
    selected: str
    reason: str


@dataclass(frozen=True)
class StreamDone:
    """Final event of a routed stream."""

    provider: str
    model: str
    finish_reason: FinishReason = FinishReason.STOP
    usage: Usage = field(default_factory=Usage)


StreamEvent: TypeAlias = ThinkingToken | ToolCallEvent
RouteEvent: TypeAlias = ThinkingToken | ToolCallEvent | FallbackNotice | StreamDone


def validate_request(request: CanonicalRequest) -> None:
    """Check conversation invariants; raise TransformError on violation."""
    if not request.model:
        raise TransformError("Request has no model", hint="Use a 'provider:model' selector.")
    if not request.conversation:
        raise TransformError("Request has an empty conversation")

    names = [t.name for t in request.tools]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise TransformError(f"Duplicate tool names: {', '.join(duplicates)}")

    issued: set[str] = set()
    for idx, msg in enumerate(request.conversation):
        if msg.role not in ROLES:
            raise TransformError(f"Message {idx} has unknown role {msg.role!r}")
        if msg.role == "assistant":
            issued.update(tc.id for tc in msg.tool_calls)
        elif msg.role == "tool":
            if not msg.tool_call_id or msg.tool_call_id not in issued:
                raise TransformError(
                    f"Tool message {idx} references unknown tool call "
                    f"{msg.tool_call_id!r}",
                    hint="Tool results must answer a tool call from an earlier assistant turn.",
                )
