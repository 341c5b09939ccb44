"""Provider characterization tests.

These tests pin the exact shapes each adapter sends and accepts. The
OpenAI-compatible adapters run over ``httpx.MockTransport``; Gemini uses a
fake genai client. No real network calls are made.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from google.genai import types as genai_types
import httpx
import openai
import pytest

from switchyard.capabilities import ReasoningSpec
from switchyard.config import ProviderSettings
from switchyard.errors import ConfigurationError, ProviderError
from switchyard.providers import create_provider
from switchyard.providers.gemini import THINKING_BUDGETS, GeminiProvider
from switchyard.providers.lmstudio import LMStudioProvider
from switchyard.providers.ollama import OllamaProvider
from switchyard.providers.openai_compat import OpenAICompatibleProvider
from switchyard.types import (
    CanonicalRequest,
    FinishReason,
    Message,
    ToolSchema,
)
from tests.helpers import (
    Recorder,
    chunk_payload,
    completion_payload,
    json_route,
    sse_response,
)

pytestmark = pytest.mark.contract

CHAT = "/v1/chat/completions"
HELLO = (Message(role="user", content="hello"),)
NATIVE_EFFORT = ReasoningSpec(type="native", native_param_name="reasoning_effort", default_level="high")


def _settings(name: str, **kwargs: Any) -> ProviderSettings:
    hosts = {
        "ollama": "http://ollama.test",
        "lmstudio": "http://lmstudio.test",
        "openai": "http://openai.test",
        "gemini": "https://gemini.test",
    }
    return ProviderSettings.from_env(name, host=hosts[name], **kwargs)


def _request(**kwargs: Any) -> CanonicalRequest:
    return CanonicalRequest(model=kwargs.pop("model", "test-model"), conversation=HELLO, **kwargs)


# =============================================================================
# OpenAI-compatible request shape
# =============================================================================


@pytest.mark.asyncio
async def test_generate_sends_chat_completions_body_and_decodes_response() -> None:
    recorder = Recorder({CHAT: json_route(completion_payload("hi there"))})
    provider = OpenAICompatibleProvider(
        _settings("openai", api_key="sk-test"), http_client=recorder.client()
    )

    response = await provider.generate(
        _request(
            temperature=0.3,
            max_tokens=64,
            tools=(ToolSchema(name="search", description="Search the web"),),
        )
    )

    body = recorder.bodies(CHAT)[0]
    assert body["model"] == "test-model"
    assert body["messages"] == [{"role": "user", "content": "hello"}]
    assert body["temperature"] == 0.3
    assert body["max_tokens"] == 64
    assert body["tools"][0]["function"]["name"] == "search"
    assert "stream" not in body
    assert recorder.requests[0].headers["authorization"] == "Bearer sk-test"

    assert response.message.text == "hi there"
    assert response.finish_reason is FinishReason.STOP
    assert response.usage.prompt_tokens == 5
    assert response.usage.completion_tokens == 7


@pytest.mark.asyncio
async def test_generate_decodes_tool_calls_and_reasoning_field() -> None:
    payload = completion_payload(
        None,
        finish_reason="tool_calls",
        tool_calls=[
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "search", "arguments": '{"q": "x"}'},
            }
        ],
        extra={"reasoning": "need to look it up"},
    )
    recorder = Recorder({CHAT: json_route(payload)})
    provider = OllamaProvider(_settings("ollama"), http_client=recorder.client())

    response = await provider.generate(_request())

    assert response.finish_reason is FinishReason.TOOL_CALL
    assert response.message.tool_calls[0].name == "search"
    assert response.message.tool_calls[0].parsed_arguments() == {"q": "x"}
    assert response.reasoning == "need to look it up"


@pytest.mark.asyncio
async def test_ollama_injects_reasoning_effort_for_native_reasoning() -> None:
    recorder = Recorder({CHAT: json_route(completion_payload())})
    provider = OllamaProvider(_settings("ollama"), http_client=recorder.client())

    await provider.generate(_request(reasoning_level="low"), reasoning=NATIVE_EFFORT)
    await provider.generate(_request(), reasoning=NATIVE_EFFORT)
    await provider.generate(_request(), reasoning=ReasoningSpec())

    efforts = [body.get("reasoning_effort") for body in recorder.bodies(CHAT)]
    assert efforts == ["low", "high", None]


@pytest.mark.asyncio
async def test_non_sdk_reasoning_parameter_travels_as_extra_body_field() -> None:
    recorder = Recorder({CHAT: json_route(completion_payload())})
    provider = OpenAICompatibleProvider(_settings("openai"), http_client=recorder.client())
    spec = ReasoningSpec(type="native", native_param_name="think_level")

    await provider.generate(_request(reasoning_level="medium"), reasoning=spec)

    assert recorder.bodies(CHAT)[0]["think_level"] == "medium"


@pytest.mark.asyncio
async def test_lmstudio_never_injects_reasoning_parameters() -> None:
    recorder = Recorder({CHAT: json_route(completion_payload())})
    provider = LMStudioProvider(_settings("lmstudio"), http_client=recorder.client())

    await provider.generate(_request(reasoning_level="high"), reasoning=NATIVE_EFFORT)

    assert "reasoning_effort" not in recorder.bodies(CHAT)[0]


@pytest.mark.asyncio
async def test_clamped_parameters_surface_as_response_warnings() -> None:
    recorder = Recorder({CHAT: json_route(completion_payload())})
    provider = OpenAICompatibleProvider(_settings("openai"), http_client=recorder.client())

    response = await provider.generate(_request(temperature=5.0))

    assert recorder.bodies(CHAT)[0]["temperature"] == 2.0
    assert response.warnings and "temperature" in response.warnings[0]


# =============================================================================
# OpenAI-compatible streaming
# =============================================================================


@pytest.mark.asyncio
async def test_stream_decodes_content_tool_deltas_and_usage() -> None:
    chunks = [
        chunk_payload({"role": "assistant", "content": "Hel"}),
        chunk_payload({"content": "lo"}),
        chunk_payload(
            {
                "tool_calls": [
                    {"index": 0, "id": "call_1", "type": "function",
                     "function": {"name": "search", "arguments": '{"q"'}}
                ]
            }
        ),
        chunk_payload(
            {"tool_calls": [{"index": 0, "function": {"arguments": ': "x"}'}}]}
        ),
        chunk_payload(finish_reason="tool_calls"),
        chunk_payload(usage={"prompt_tokens": 3, "completion_tokens": 9, "total_tokens": 12}),
    ]
    recorder = Recorder({CHAT: lambda _req: sse_response(chunks)})
    provider = OpenAICompatibleProvider(_settings("openai"), http_client=recorder.client())

    decoded = [c async for c in provider.generate_stream(_request())]

    body = recorder.bodies(CHAT)[0]
    assert body["stream"] is True
    assert body["stream_options"] == {"include_usage": True}
    assert "".join(c.content for c in decoded) == "Hello"
    deltas = [d for c in decoded for d in c.tool_calls]
    assert deltas[0].id == "call_1" and deltas[0].name == "search"
    assert "".join(str(d.arguments) for d in deltas) == '{"q": "x"}'
    assert decoded[4].finish_reason is FinishReason.TOOL_CALL
    assert decoded[-1].usage is not None and decoded[-1].usage.completion_tokens == 9


@pytest.mark.asyncio
async def test_stream_surfaces_reasoning_deltas() -> None:
    chunks = [
        chunk_payload({"reasoning_content": "thinking"}),
        chunk_payload({"content": "done"}, finish_reason="stop"),
    ]
    recorder = Recorder({CHAT: lambda _req: sse_response(chunks)})
    provider = LMStudioProvider(_settings("lmstudio"), http_client=recorder.client())

    decoded = [c async for c in provider.generate_stream(_request())]

    assert [(c.reasoning, c.content) for c in decoded] == [("thinking", ""), ("", "done")]


# =============================================================================
# Error mapping through the SDK
# =============================================================================


@pytest.mark.asyncio
async def test_server_error_maps_to_retriable_provider_error() -> None:
    recorder = Recorder({CHAT: json_route({"error": {"message": "boom"}}, status=500)})
    provider = OpenAICompatibleProvider(_settings("openai"), http_client=recorder.client())

    with pytest.raises(ProviderError) as exc:
        await provider.generate(_request())

    assert exc.value.status_code == 500
    assert exc.value.retriable is True
    assert exc.value.connection is False
    assert exc.value.phase == "generate"
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_refused_connection_maps_to_connection_class_error() -> None:
    recorder = Recorder({CHAT: httpx.ConnectError("connection refused")})
    provider = OllamaProvider(_settings("ollama"), http_client=recorder.client())

    with pytest.raises(ProviderError) as exc:
        await provider.generate(_request())

    assert exc.value.connection is True
    assert exc.value.provider == "ollama"
    assert exc.value.hint is not None and "ollama serve" in exc.value.hint


@pytest.mark.asyncio
async def test_stream_open_failure_maps_to_connection_class_error() -> None:
    recorder = Recorder({CHAT: httpx.ConnectError("connection refused")})
    provider = OllamaProvider(_settings("ollama"), http_client=recorder.client())

    with pytest.raises(ProviderError) as exc:
        async for _ in provider.generate_stream(_request()):
            pass

    assert exc.value.connection is True
    assert exc.value.phase == "stream"


@pytest.mark.asyncio
async def test_mid_stream_error_event_maps_to_provider_error() -> None:
    chunks = [
        chunk_payload({"content": "partial"}),
        {"error": {"message": "model crashed"}},
    ]
    recorder = Recorder({CHAT: lambda _req: sse_response(chunks)})
    provider = OllamaProvider(_settings("ollama"), http_client=recorder.client())

    received: list[str] = []
    with pytest.raises(ProviderError) as exc:
        async for chunk in provider.generate_stream(_request()):
            received.append(chunk.content)

    assert received == ["partial"]
    assert exc.value.provider == "ollama"
    assert exc.value.phase == "stream"
    assert exc.value.connection is False
    assert isinstance(exc.value.__cause__, openai.APIError)
    assert "model crashed" in str(exc.value)


# =============================================================================
# Availability and discovery
# =============================================================================


@pytest.mark.asyncio
async def test_probe_reports_available_and_unreachable() -> None:
    up = OllamaProvider(
        _settings("ollama"),
        http_client=Recorder({"/api/tags": json_route({"models": []})}).client(),
    )
    down = OllamaProvider(
        _settings("ollama"),
        http_client=Recorder({"/api/tags": httpx.ConnectError("refused")}).client(),
    )

    assert await up.is_available() is True
    assert up.last_error is None
    assert await down.is_available() is False
    assert down.last_error is not None and "ConnectError" in down.last_error


@pytest.mark.asyncio
async def test_probe_treats_http_errors_as_unavailable() -> None:
    provider = LMStudioProvider(
        _settings("lmstudio"),
        http_client=Recorder({"/v1/models": json_route({}, status=500)}).client(),
    )

    assert await provider.is_available() is False
    assert provider.last_error is not None and "500" in provider.last_error


@pytest.mark.asyncio
async def test_ollama_lists_native_tags_with_size_and_quantization() -> None:
    tags = {
        "models": [
            {
                "name": "gpt-oss:20b",
                "size": 13_780_000_000,
                "details": {
                    "family": "gptoss",
                    "parameter_size": "20.9B",
                    "quantization_level": "MXFP4",
                },
            }
        ]
    }
    provider = OllamaProvider(
        _settings("ollama"), http_client=Recorder({"/api/tags": json_route(tags)}).client()
    )

    [model] = await provider.list_models()

    assert model.id == "gpt-oss:20b"
    assert model.display_name == "gpt-oss:20b (20.9B) [MXFP4]"
    assert model.description == "Family: gptoss | Size: 13.78GB"
    assert model.family == "gptoss"
    assert "medium" in model.aliases


@pytest.mark.asyncio
async def test_ollama_listing_falls_back_to_openai_models_endpoint() -> None:
    recorder = Recorder(
        {
            "/api/tags": json_route({}, status=404),
            "/v1/models": json_route({"data": [{"id": "llama3:8b", "owned_by": "library"}]}),
        }
    )
    provider = OllamaProvider(_settings("ollama"), http_client=recorder.client())

    models = await provider.list_models()

    assert [m.id for m in models] == ["llama3:8b"]
    assert models[0].description == "Provider: library"


@pytest.mark.asyncio
async def test_lmstudio_hides_embedding_only_models() -> None:
    listing = {
        "data": [
            {"id": "openai/gpt-oss-20b", "owned_by": "organization_owner",
             "capabilities": {"chat": True, "completion": True}},
            {"id": "text-embedding-nomic", "capabilities": {"chat": False, "embeddings": True}},
            {"id": "plain-model"},
        ]
    }
    provider = LMStudioProvider(
        _settings("lmstudio"), http_client=Recorder({"/v1/models": json_route(listing)}).client()
    )

    models = await provider.list_models()

    assert [m.id for m in models] == ["openai/gpt-oss-20b", "plain-model"]
    assert models[0].display_name == "openai/gpt-oss-20b (20B)"
    assert models[0].description == "Provider: organization_owner | Capabilities: Chat, Completion"


@pytest.mark.asyncio
async def test_malformed_listing_is_a_provider_error() -> None:
    provider = OpenAICompatibleProvider(
        _settings("openai"),
        http_client=Recorder({"/v1/models": json_route({"data": [{"nope": 1}]})}).client(),
    )

    with pytest.raises(ProviderError, match="malformed"):
        await provider.list_models()


@pytest.mark.asyncio
async def test_describe_model_resolves_aliases() -> None:
    tags = {"models": [{"name": "gpt-oss:20b"}]}
    provider = OllamaProvider(
        _settings("ollama"), http_client=Recorder({"/api/tags": json_route(tags)}).client()
    )

    info = await provider.describe_model("medium")

    assert info is not None and info.id == "gpt-oss:20b"
    assert await provider.describe_model("missing") is None


@pytest.mark.asyncio
async def test_injected_http_client_is_not_closed() -> None:
    client = Recorder().client()
    provider = OllamaProvider(_settings("ollama"), http_client=client)

    await provider.aclose()

    assert client.is_closed is False
    await client.aclose()


def test_create_provider_picks_adapter_per_name() -> None:
    assert isinstance(create_provider(_settings("ollama")), OllamaProvider)
    assert isinstance(create_provider(_settings("lmstudio")), LMStudioProvider)
    assert type(create_provider(_settings("openai"))) is OpenAICompatibleProvider
    assert isinstance(create_provider(_settings("gemini", api_key="k")), GeminiProvider)


# =============================================================================
# Gemini (native dialect)
# =============================================================================


def _gemini_response(parts: list[dict[str, Any]], finish: str = "STOP") -> Any:
    return genai_types.GenerateContentResponse.model_validate(
        {
            "candidates": [
                {"content": {"role": "model", "parts": parts}, "finish_reason": finish}
            ],
            "usage_metadata": {"prompt_token_count": 4, "candidates_token_count": 6},
        }
    )


def _fake_genai_client(
    *, response: Any = None, chunks: list[Any] | None = None, captured: dict[str, Any]
) -> Any:
    async def fake_generate_content(**kwargs: Any) -> Any:
        captured.update(kwargs)
        return response

    async def fake_generate_content_stream(**kwargs: Any) -> Any:
        captured.update(kwargs)

        async def gen() -> Any:
            for chunk in chunks or ():
                yield chunk

        return gen()

    fake_models = MagicMock()
    fake_models.generate_content = fake_generate_content
    fake_models.generate_content_stream = fake_generate_content_stream
    client = MagicMock()
    client.aio.models = fake_models
    return client


@pytest.mark.asyncio
async def test_gemini_generate_maps_thinking_budget_and_thought_parts() -> None:
    captured: dict[str, Any] = {}
    response = _gemini_response([{"text": "weighing options", "thought": True}, {"text": "42"}])
    provider = GeminiProvider(
        _settings("gemini", api_key="k"),
        client=_fake_genai_client(response=response, captured=captured),
    )
    spec = ReasoningSpec(type="native", default_level="medium")
    request = CanonicalRequest(
        model="gemini-2.5-flash",
        conversation=(
            Message(role="system", content="Be concise."),
            Message(role="user", content="What is 6*7?"),
        ),
        reasoning_level="low",
    )

    result = await provider.generate(request, reasoning=spec, timeout_s=30)

    assert captured["model"] == "gemini-2.5-flash"
    assert captured["contents"] == [{"role": "user", "parts": [{"text": "What is 6*7?"}]}]
    config = captured["config"]
    assert config["system_instruction"] == "Be concise."
    assert config["thinking_config"] == {
        "include_thoughts": True,
        "thinking_budget": THINKING_BUDGETS["low"],
    }
    assert config["http_options"] == {"timeout": 30_000}

    assert result.message.text == "42"
    assert result.reasoning == "weighing options"
    assert result.finish_reason is FinishReason.STOP
    assert result.usage.total_tokens == 10


@pytest.mark.asyncio
async def test_gemini_generate_omits_thinking_config_without_native_reasoning() -> None:
    captured: dict[str, Any] = {}
    provider = GeminiProvider(
        _settings("gemini", api_key="k"),
        client=_fake_genai_client(response=_gemini_response([{"text": "ok"}]), captured=captured),
    )

    await provider.generate(_request(model="gemini-2.0-flash"))

    assert "thinking_config" not in captured["config"]


@pytest.mark.asyncio
async def test_gemini_stream_decodes_thoughts_text_and_function_calls() -> None:
    captured: dict[str, Any] = {}
    chunks = [
        _gemini_response([{"text": "plan", "thought": True}], finish=None),
        _gemini_response([{"text": "calling"}], finish=None),
        _gemini_response(
            [{"function_call": {"id": "fc_1", "name": "search", "args": {"q": "x"}}}]
        ),
    ]
    provider = GeminiProvider(
        _settings("gemini", api_key="k"),
        client=_fake_genai_client(chunks=chunks, captured=captured),
    )

    decoded = [c async for c in provider.generate_stream(_request(model="gemini-2.5-flash"))]

    assert [c.reasoning for c in decoded] == ["plan", "", ""]
    assert [c.content for c in decoded] == ["", "calling", ""]
    [delta] = decoded[-1].tool_calls
    assert (delta.id, delta.name, delta.arguments) == ("fc_1", "search", {"q": "x"})
    assert decoded[-1].finish_reason is FinishReason.TOOL_CALL


@pytest.mark.asyncio
async def test_gemini_sdk_errors_are_wrapped() -> None:
    async def failing(**_kwargs: Any) -> Any:
        raise httpx.ConnectError("dns failure")

    client = MagicMock()
    client.aio.models.generate_content = failing
    provider = GeminiProvider(_settings("gemini", api_key="k"), client=client)

    with pytest.raises(ProviderError) as exc:
        await provider.generate(_request(model="gemini-2.5-flash"))

    assert exc.value.connection is True
    assert str(exc.value).startswith("Gemini generate failed")


@pytest.mark.asyncio
async def test_gemini_without_key_is_unavailable_and_cannot_generate() -> None:
    provider = GeminiProvider(_settings("gemini"))

    assert await provider.is_available() is False
    assert provider.last_error == "GEMINI_API_KEY is not set"
    assert await provider.list_models() == []
    with pytest.raises(ConfigurationError, match="API key"):
        await provider.generate(_request(model="gemini-2.5-flash"))


@pytest.mark.asyncio
async def test_gemini_lists_generate_content_models_only() -> None:
    listing = {
        "models": [
            {
                "name": "models/gemini-2.5-flash",
                "displayName": "Gemini 2.5 Flash",
                "inputTokenLimit": 1_048_576,
                "supportedGenerationMethods": ["generateContent", "countTokens"],
                "thinking": True,
            },
            {
                "name": "models/text-embedding-004",
                "supportedGenerationMethods": ["embedContent"],
            },
        ]
    }
    recorder = Recorder({"/v1beta/models": json_route(listing)})
    provider = GeminiProvider(_settings("gemini", api_key="k"), http_client=recorder.client())

    models = await provider.list_models()

    assert [m.id for m in models] == ["gemini-2.5-flash"]
    assert models[0].display_name == "Gemini 2.5 Flash"
    assert models[0].context_window == 1_048_576
    assert models[0].supports_reasoning is True
    assert models[0].aliases == ("flash",)
    assert recorder.requests[0].headers["x-goog-api-key"] == "k"
