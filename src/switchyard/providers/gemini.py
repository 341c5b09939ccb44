"""Gemini adapter (native dialect, via google-genai)."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import dataclasses
import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from switchyard._http import PROBE_TIMEOUT_S
from switchyard.errors import ConfigurationError, ProviderError
from switchyard.providers._errors import wrap_provider_error
from switchyard.providers.registry import PROVIDERS
from switchyard.transforms import Dialect, chunk_from_wire, from_wire, to_wire
from switchyard.types import ModelInfo

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.capabilities import ReasoningSpec
    from switchyard.config import ProviderSettings
    from switchyard.types import CanonicalRequest, CanonicalResponse, StreamChunk

logger = logging.getLogger(__name__)

#: Thinking token budgets per reasoning level.
THINKING_BUDGETS: dict[str, int] = {"low": 1024, "medium": 8192, "high": 24576}


class _GeminiModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    display_name: str | None = Field(default=None, alias="displayName")
    description: str | None = None
    input_token_limit: int | None = Field(default=None, alias="inputTokenLimit")
    supported_generation_methods: list[str] = Field(
        default_factory=list, alias="supportedGenerationMethods"
    )
    thinking: bool = False


class _GeminiModels(BaseModel):
    models: list[_GeminiModel] = []


class GeminiProvider:
    """Google Gemini API provider."""

    dialect = Dialect.NATIVE

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        probe_timeout_s: float = PROBE_TIMEOUT_S,
        client: Any = None,
    ) -> None:
        """Create the adapter; the genai client is built lazily."""
        self.settings = settings
        self.name = settings.name
        self.probe_timeout_s = probe_timeout_s
        self.last_error: str | None = None
        self._http = http_client
        self._owns_http = http_client is None
        self._client: Any = client
        self._owns_client = client is None

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            if not self.settings.api_key:
                raise ConfigurationError(
                    "Gemini requires an API key",
                    hint="Set GEMINI_API_KEY.",
                )
            from google import genai
            from google.genai import types

            self._client = genai.Client(
                api_key=self.settings.api_key,
                http_options=types.HttpOptions(base_url=self.settings.host),
            )
        return self._client

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def _get_models(self, timeout_s: float) -> httpx.Response:
        return await self._get_http().get(
            f"{self.settings.host}/v1beta/models",
            headers={"x-goog-api-key": self.settings.api_key or ""},
            timeout=timeout_s,
        )

    async def is_available(self) -> bool:
        """Probe the models endpoint; a missing key means unavailable."""
        if not self.settings.api_key:
            self.last_error = "GEMINI_API_KEY is not set"
            return False
        try:
            response = await self._get_models(self.probe_timeout_s)
        except httpx.HTTPError as e:
            self.last_error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            return False
        if not response.is_success:
            self.last_error = f"HTTP {response.status_code} from Gemini models endpoint"
            return False
        self.last_error = None
        return True

    async def list_models(self) -> list[ModelInfo]:
        """List models that support ``generateContent``."""
        if not self.settings.api_key:
            return []
        try:
            response = await self._get_models(self.probe_timeout_s * 2)
            response.raise_for_status()
            listing = _GeminiModels.model_validate(response.json())
        except asyncio.CancelledError:
            raise
        except ValidationError as e:
            raise ProviderError(
                "Gemini returned a malformed model listing",
                provider=self.name,
                cause=e,
                phase="list_models",
            ) from e
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="list_models") from e

        aliases = PROVIDERS[self.name].aliases
        models: list[ModelInfo] = []
        for m in listing.models:
            methods = m.supported_generation_methods
            if methods and "generateContent" not in methods:
                continue
            model_id = m.name.removeprefix("models/")
            models.append(
                ModelInfo(
                    id=model_id,
                    provider=self.name,
                    display_name=m.display_name or model_id,
                    description=m.description or "",
                    aliases=tuple(a for a, t in aliases.items() if t == model_id),
                    family="gemini",
                    context_window=m.input_token_limit,
                    supports_reasoning=m.thinking,
                )
            )
        return models

    async def describe_model(self, model_id: str) -> ModelInfo | None:
        """Return listing metadata for *model_id*, if listed."""
        for info in await self.list_models():
            if info.id == model_id or model_id in info.aliases:
                return info
        return None

    def _prepare(
        self,
        request: CanonicalRequest,
        reasoning: ReasoningSpec | None,
        timeout_s: float | None,
    ) -> tuple[tuple[str, ...], dict[str, Any]]:
        wire = to_wire(self.dialect, request)
        for warning in wire.warnings:
            logger.warning("%s: %s", self.name, warning)
        config = dict(wire.body["config"])
        if reasoning is not None and reasoning.type == "native":
            level = request.reasoning_level or reasoning.default_level or "medium"
            config["thinking_config"] = {
                "include_thoughts": True,
                "thinking_budget": THINKING_BUDGETS.get(level, THINKING_BUDGETS["medium"]),
            }
        if timeout_s is not None:
            config["http_options"] = {"timeout": int(timeout_s * 1000)}
        kwargs = {
            "model": wire.body["model"],
            "contents": wire.body["contents"],
            "config": config,
        }
        return wire.warnings, kwargs

    async def generate(
        self,
        request: CanonicalRequest,
        *,
        reasoning: ReasoningSpec | None = None,
        timeout_s: float | None = None,
    ) -> CanonicalResponse:
        """Generate content from the Gemini model."""
        warnings, kwargs = self._prepare(request, reasoning, timeout_s)
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.name,
                phase="generate",
                message="Gemini generate failed",
            ) from e

        result = from_wire(self.dialect, response.model_dump(mode="json", exclude_none=True))
        if warnings:
            result = dataclasses.replace(result, warnings=warnings)
        return result

    async def generate_stream(
        self,
        request: CanonicalRequest,
        *,
        reasoning: ReasoningSpec | None = None,
        timeout_s: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream decoded chunks from ``generate_content_stream``."""
        _, kwargs = self._prepare(request, reasoning, timeout_s)
        client = self._get_client()
        try:
            stream = await client.aio.models.generate_content_stream(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(
                e,
                provider=self.name,
                phase="stream",
                message="Gemini stream failed",
            ) from e

        async with aclosing(stream) as chunks:
            try:
                async for chunk in chunks:
                    yield chunk_from_wire(
                        self.dialect, chunk.model_dump(mode="json", exclude_none=True)
                    )
            except (asyncio.CancelledError, ProviderError):
                raise
            except Exception as e:
                raise wrap_provider_error(e, provider=self.name, phase="stream") from e

    async def aclose(self) -> None:
        """Close underlying client resources."""
        client, self._client = self._client, None
        if client is not None and self._owns_client:
            await client.aio.aclose()
        http, self._http = self._http, None
        if http is not None and self._owns_http:
            await http.aclose()
