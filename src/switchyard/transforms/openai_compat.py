"""OpenAI-compatible chat dialect (``POST /v1/chat/completions``).

Parts are flattened into a single text field per message; image parts on
user, system or assistant turns are the one exception and switch the message
to the list-of-parts form. Tool results carry text only.
Per-part metadata is lost in this dialect.
"""

from __future__ import annotations

import logging
from typing import Any

from switchyard.errors import TransformError
from switchyard.transforms.base import (
    Dialect,
    WireRequest,
    clamp,
    finish_reason_or_other,
    get_field,
    is_empty,
)
from switchyard.types import (
    CanonicalRequest,
    CanonicalResponse,
    FinishReason,
    ImagePart,
    Message,
    StreamChunk,
    TextPart,
    ToolCall,
    ToolCallDelta,
    Usage,
)

logger = logging.getLogger(__name__)

TEMPERATURE_RANGE = (0.0, 2.0)

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.MAX_TOKENS,
    "tool_calls": FinishReason.TOOL_CALL,
}


def _image_url(part: ImagePart) -> str:
    if part.url is not None:
        return part.url
    return f"data:{part.mime_type};base64,{part.data}"


def _content(message: Message) -> str | list[dict[str, Any]]:
    text = message.text
    images = message.images
    if not images:
        return text
    parts: list[dict[str, Any]] = []
    if text:
        parts.append({"type": "text", "text": text})
    parts.extend(
        {"type": "image_url", "image_url": {"url": _image_url(img)}} for img in images
    )
    return parts


def _message_to_wire(message: Message) -> dict[str, Any]:
    if message.role == "tool":
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "content": message.text,
        }
    if message.role == "assistant":
        out: dict[str, Any] = {"role": "assistant", "content": _content(message) or None}
        if message.tool_calls:
            out["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.raw_arguments()},
                }
                for tc in message.tool_calls
            ]
        return out
    out = {"role": message.role, "content": _content(message)}
    if message.name:
        out["name"] = message.name
    return out


def to_wire(request: CanonicalRequest) -> WireRequest:
    warnings: list[str] = []
    messages = [_message_to_wire(m) for m in request.conversation if not is_empty(m)]
    if not messages:
        raise TransformError("Every message was empty after transform")

    body: dict[str, Any] = {"model": request.model, "messages": messages}
    temperature = clamp(
        request.temperature,
        low=TEMPERATURE_RANGE[0],
        high=TEMPERATURE_RANGE[1],
        label="temperature",
        warnings=warnings,
    )
    if temperature is not None:
        body["temperature"] = temperature
    max_tokens = clamp(
        request.max_tokens, low=1, high=None, label="max_tokens", warnings=warnings
    )
    if max_tokens is not None:
        body["max_tokens"] = int(max_tokens)
    if request.tools:
        body["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": dict(t.parameters),
                },
            }
            for t in request.tools
        ]
    if request.stream:
        body["stream"] = True
        body["stream_options"] = {"include_usage": True}
    return WireRequest(Dialect.OPENAI_COMPAT, body, tuple(warnings))


def _reasoning_text(payload: dict[str, Any]) -> str:
    # LM Studio / DeepSeek use reasoning_content; Ollama uses reasoning.
    value = get_field(payload, "reasoning_content", "reasoning", default="")
    return value if isinstance(value, str) else ""


def _usage(payload: Any) -> Usage | None:
    if not isinstance(payload, dict):
        return None
    return Usage(
        prompt_tokens=int(payload.get("prompt_tokens") or 0),
        completion_tokens=int(payload.get("completion_tokens") or 0),
    )


def _tool_calls(raw: Any) -> tuple[ToolCall, ...]:
    calls: list[ToolCall] = []
    for idx, item in enumerate(raw or ()):
        function = item.get("function") or {}
        name = function.get("name")
        if not name:
            continue
        calls.append(
            ToolCall(
                id=item.get("id") or f"call_{idx}",
                name=name,
                arguments=function.get("arguments") or "{}",
            )
        )
    return tuple(calls)


def _message_from_wire(payload: dict[str, Any]) -> Message:
    role = payload.get("role") or "assistant"
    content = payload.get("content")
    if isinstance(content, list):
        parts: list[TextPart | ImagePart] = []
        for part in content:
            if part.get("type") == "text":
                parts.append(TextPart(part.get("text") or ""))
            elif part.get("type") == "image_url":
                url = (part.get("image_url") or {}).get("url") or ""
                parts.append(ImagePart(mime_type="image/*", url=url))
        content_value: str | tuple[TextPart | ImagePart, ...] = tuple(parts)
    else:
        content_value = content or ""
    return Message(
        role=role,
        content=content_value,
        tool_call_id=payload.get("tool_call_id"),
        name=payload.get("name"),
        tool_calls=_tool_calls(payload.get("tool_calls")),
    )


def from_wire(payload: dict[str, Any]) -> CanonicalResponse:
    if not isinstance(payload, dict):
        raise TransformError("Chat completion payload must be an object")
    choices = payload.get("choices") or []
    usage = _usage(payload.get("usage")) or Usage()
    if not choices:
        return CanonicalResponse(
            message=Message(role="assistant"),
            finish_reason=FinishReason.OTHER,
            usage=usage,
            model=payload.get("model"),
        )
    choice = choices[0]
    raw_message = choice.get("message") or {}
    message = _message_from_wire(raw_message)
    reasoning = _reasoning_text(raw_message)
    return CanonicalResponse(
        message=message,
        finish_reason=finish_reason_or_other(choice.get("finish_reason"), _FINISH_REASONS),
        usage=usage,
        reasoning=reasoning or None,
        model=payload.get("model"),
    )


def chunk_from_wire(payload: dict[str, Any]) -> StreamChunk:
    choices = payload.get("choices") or []
    usage = _usage(payload.get("usage"))
    if not choices:
        return StreamChunk(usage=usage)
    choice = choices[0]
    delta = choice.get("delta") or {}
    deltas = tuple(
        ToolCallDelta(
            index=int(item.get("index") or 0),
            id=item.get("id"),
            name=(item.get("function") or {}).get("name"),
            arguments=(item.get("function") or {}).get("arguments") or "",
        )
        for item in delta.get("tool_calls") or ()
    )
    finish = choice.get("finish_reason")
    return StreamChunk(
        content=delta.get("content") or "",
        reasoning=_reasoning_text(delta),
        tool_calls=deltas,
        finish_reason=(
            finish_reason_or_other(finish, _FINISH_REASONS) if finish else None
        ),
        usage=usage,
    )


def messages_from_wire(body: dict[str, Any]) -> tuple[Message, ...]:
    return tuple(_message_from_wire(m) for m in body.get("messages") or ())
