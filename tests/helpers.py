"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: the router tests need providers that
follow a script, nothing more.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
import json
from typing import Any

import httpx

from switchyard.errors import ProviderError
from switchyard.transforms import Dialect
from switchyard.types import (
    CanonicalRequest,
    CanonicalResponse,
    Message,
    ModelInfo,
    StreamChunk,
)


def connection_error(provider: str) -> ProviderError:
    return ProviderError(
        f"{provider} generate failed: connection refused",
        provider=provider,
        connection=True,
        phase="generate",
    )


def reply(text: str) -> CanonicalResponse:
    return CanonicalResponse(message=Message(role="assistant", content=text))


@dataclass
class ScriptedProvider:
    """Provider double that returns a scripted sequence of results/exceptions.

    ``script`` feeds ``generate``; ``stream_script`` holds one list of chunks
    (or exceptions) per ``generate_stream`` call.
    """

    name: str
    available: bool = True
    dialect: Dialect = Dialect.OPENAI_COMPAT
    models: list[ModelInfo] = field(default_factory=list)
    script: list[CanonicalResponse | BaseException] = field(default_factory=list)
    stream_script: list[list[StreamChunk | BaseException]] = field(default_factory=list)
    probe_delay_s: float = 0.0
    chunk_delay_s: float = 0.0
    last_error: str | None = None
    probe_calls: int = 0
    generate_calls: int = 0
    stream_calls: int = 0
    stream_closed: int = 0
    closed: bool = False
    requests: list[CanonicalRequest] = field(default_factory=list)
    reasoning_specs: list[Any] = field(default_factory=list)

    async def is_available(self) -> bool:
        self.probe_calls += 1
        if self.probe_delay_s:
            await asyncio.sleep(self.probe_delay_s)
        if not self.available:
            self.last_error = "ConnectError: connection refused"
        return self.available

    async def list_models(self) -> list[ModelInfo]:
        return list(self.models)

    async def describe_model(self, model_id: str) -> ModelInfo | None:
        return next((m for m in self.models if m.id == model_id), None)

    async def generate(
        self,
        request: CanonicalRequest,
        *,
        reasoning: Any = None,
        timeout_s: float | None = None,
    ) -> CanonicalResponse:
        del timeout_s
        self.generate_calls += 1
        self.requests.append(request)
        self.reasoning_specs.append(reasoning)
        if not self.script:
            return reply(f"ok:{self.name}")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_stream(
        self,
        request: CanonicalRequest,
        *,
        reasoning: Any = None,
        timeout_s: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        del timeout_s
        self.stream_calls += 1
        self.requests.append(request)
        self.reasoning_specs.append(reasoning)
        items = self.stream_script.pop(0) if self.stream_script else []
        try:
            for item in items:
                if self.chunk_delay_s:
                    await asyncio.sleep(self.chunk_delay_s)
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.stream_closed += 1

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# OpenAI-compatible wire fixtures
# =============================================================================


def completion_payload(
    content: str | None = "hello",
    *,
    finish_reason: str = "stop",
    tool_calls: list[dict[str, Any]] | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    message.update(extra or {})
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 5, "completion_tokens": 7, "total_tokens": 12},
    }


def chunk_payload(
    delta: dict[str, Any] | None = None,
    *,
    finish_reason: str | None = None,
    usage: dict[str, int] | None = None,
) -> dict[str, Any]:
    choices = (
        []
        if delta is None and finish_reason is None
        else [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}]
    )
    payload: dict[str, Any] = {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "test-model",
        "choices": choices,
    }
    if usage is not None:
        payload["usage"] = usage
    return payload


def sse_response(chunks: list[dict[str, Any]]) -> httpx.Response:
    body = "".join(f"data: {json.dumps(c)}\n\n" for c in chunks) + "data: [DONE]\n\n"
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=body.encode(),
    )


@dataclass
class Recorder:
    """``httpx.MockTransport`` handler that records requests and routes by path.

    Route values are callables returning a fresh response, or an exception to
    raise from the transport.
    """

    routes: dict[str, Any] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, json={"error": {"message": "not found"}})
        if isinstance(handler, BaseException):
            raise handler
        result: httpx.Response = handler(request)
        return result

    def bodies(self, path: str) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def json_route(payload: Any, status: int = 200) -> Any:
    return lambda _request: httpx.Response(status, json=payload)
