"""Native cloud dialect (Gemini ``generateContent``).

The canonical model was shaped after this dialect, so the transform is
close to identity: roles map ``assistant -> model``, system turns move to
``system_instruction`` and tool results become ``function_response`` parts.
Both snake_case (SDK ``model_dump``) and camelCase (raw REST) payloads are
accepted on the way back in.
"""

from __future__ import annotations

import json
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

TEMPERATURE_RANGE = (0.0, 2.0)

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "max_tokens": FinishReason.MAX_TOKENS,
}


def _tool_response(message: Message, call_names: dict[str, str]) -> dict[str, Any]:
    name = message.name or call_names.get(message.tool_call_id or "", "unknown_tool")
    response: dict[str, Any]
    try:
        parsed = json.loads(message.text) if message.text else {}
    except json.JSONDecodeError:
        parsed = None
    response = parsed if isinstance(parsed, dict) else {"result": message.text}
    return {
        "function_response": {
            "id": message.tool_call_id,
            "name": name,
            "response": response,
        }
    }


def _image(part: ImagePart) -> dict[str, Any]:
    if part.data is not None:
        return {"inline_data": {"mime_type": part.mime_type, "data": part.data}}
    return {"file_data": {"file_uri": part.url, "mime_type": part.mime_type}}


def _parts(message: Message) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            if part.text:
                parts.append({"text": part.text})
        else:
            parts.append(_image(part))
    for tc in message.tool_calls:
        parts.append(
            {
                "function_call": {
                    "id": tc.id,
                    "name": tc.name,
                    "args": tc.parsed_arguments(),
                }
            }
        )
    return parts


def to_wire(request: CanonicalRequest) -> WireRequest:
    warnings: list[str] = []
    system: list[str] = []
    contents: list[dict[str, Any]] = []
    call_names: dict[str, str] = {}

    for message in request.conversation:
        if is_empty(message):
            continue
        if message.role == "system":
            system.append(message.text)
        elif message.role == "tool":
            contents.append(
                {"role": "user", "parts": [_tool_response(message, call_names)]}
            )
        else:
            call_names.update((tc.id, tc.name) for tc in message.tool_calls)
            role = "model" if message.role == "assistant" else "user"
            contents.append({"role": role, "parts": _parts(message)})

    if not contents:
        raise TransformError("Every non-system message was empty after transform")

    config: dict[str, Any] = {}
    if system:
        config["system_instruction"] = "\n\n".join(system)
    temperature = clamp(
        request.temperature,
        low=TEMPERATURE_RANGE[0],
        high=TEMPERATURE_RANGE[1],
        label="temperature",
        warnings=warnings,
    )
    if temperature is not None:
        config["temperature"] = temperature
    max_tokens = clamp(
        request.max_tokens, low=1, high=None, label="max_tokens", warnings=warnings
    )
    if max_tokens is not None:
        config["max_output_tokens"] = int(max_tokens)
    if request.tools:
        config["tools"] = [
            {
                "function_declarations": [
                    {
                        "name": t.name,
                        "description": t.description,
                        "parameters": dict(t.parameters),
                    }
                    for t in request.tools
                ]
            }
        ]

    body = {"model": request.model, "contents": contents, "config": config}
    return WireRequest(Dialect.NATIVE, body, tuple(warnings))


def _split_parts(
    parts: list[dict[str, Any]],
) -> tuple[str, str, list[dict[str, Any]]]:
    text: list[str] = []
    thoughts: list[str] = []
    calls: list[dict[str, Any]] = []
    for part in parts:
        call = get_field(part, "function_call", "functionCall")
        if call is not None:
            calls.append(call)
            continue
        value = part.get("text")
        if not isinstance(value, str):
            continue
        (thoughts if part.get("thought") else text).append(value)
    return "".join(text), "".join(thoughts), calls


def _candidate_parts(payload: dict[str, Any]) -> tuple[list[dict[str, Any]], Any]:
    candidates = payload.get("candidates") or []
    if not candidates:
        return [], None
    candidate = candidates[0]
    content = candidate.get("content") or {}
    return content.get("parts") or [], get_field(
        candidate, "finish_reason", "finishReason"
    )


def _usage(payload: dict[str, Any]) -> Usage | None:
    meta = get_field(payload, "usage_metadata", "usageMetadata")
    if not isinstance(meta, dict):
        return None
    return Usage(
        prompt_tokens=int(get_field(meta, "prompt_token_count", "promptTokenCount", default=0)),
        completion_tokens=int(
            get_field(meta, "candidates_token_count", "candidatesTokenCount", default=0)
        ),
    )


def _tool_call(call: dict[str, Any], idx: int) -> ToolCall:
    name = call.get("name") or "unknown_tool"
    return ToolCall(
        id=call.get("id") or f"call_{idx}_{name}",
        name=name,
        arguments=call.get("args") or {},
    )


def from_wire(payload: dict[str, Any]) -> CanonicalResponse:
    if not isinstance(payload, dict):
        raise TransformError("generateContent payload must be an object")
    parts, raw_finish = _candidate_parts(payload)
    text, thoughts, calls = _split_parts(parts)
    tool_calls = tuple(_tool_call(c, i) for i, c in enumerate(calls))
    finish = finish_reason_or_other(raw_finish, _FINISH_REASONS)
    if tool_calls and finish in (FinishReason.STOP, FinishReason.OTHER):
        finish = FinishReason.TOOL_CALL
    return CanonicalResponse(
        message=Message(role="assistant", content=text, tool_calls=tool_calls),
        finish_reason=finish,
        usage=_usage(payload) or Usage(),
        reasoning=thoughts or None,
        model=get_field(payload, "model_version", "modelVersion"),
    )


def chunk_from_wire(payload: dict[str, Any]) -> StreamChunk:
    parts, raw_finish = _candidate_parts(payload)
    text, thoughts, calls = _split_parts(parts)
    # Native function calls arrive whole; each delta is a complete call.
    tool_calls = [_tool_call(c, i) for i, c in enumerate(calls)]
    deltas = tuple(
        ToolCallDelta(index=i, id=tc.id, name=tc.name, arguments=tc.arguments)
        for i, tc in enumerate(tool_calls)
    )
    finish: FinishReason | None = None
    if raw_finish:
        finish = finish_reason_or_other(raw_finish, _FINISH_REASONS)
        if deltas and finish == FinishReason.STOP:
            finish = FinishReason.TOOL_CALL
    return StreamChunk(
        content=text,
        reasoning=thoughts,
        tool_calls=deltas,
        finish_reason=finish,
        usage=_usage(payload),
    )


def messages_from_wire(body: dict[str, Any]) -> tuple[Message, ...]:
    messages: list[Message] = []
    config = body.get("config") or {}
    system = get_field(config, "system_instruction", "systemInstruction")
    if isinstance(system, str) and system:
        messages.append(Message(role="system", content=system))
    for content in body.get("contents") or ():
        parts = content.get("parts") or []
        responses = [
            get_field(p, "function_response", "functionResponse")
            for p in parts
            if get_field(p, "function_response", "functionResponse") is not None
        ]
        for resp in responses:
            payload = resp.get("response") or {}
            text = payload["result"] if set(payload) == {"result"} else json.dumps(payload)
            messages.append(
                Message(
                    role="tool",
                    content=text,
                    tool_call_id=resp.get("id"),
                    name=resp.get("name"),
                )
            )
        if responses:
            continue
        text, _, calls = _split_parts(parts)
        role = "assistant" if content.get("role") == "model" else "user"
        messages.append(
            Message(
                role=role,
                content=text,
                tool_calls=tuple(_tool_call(c, i) for i, c in enumerate(calls)),
            )
        )
    return tuple(messages)
