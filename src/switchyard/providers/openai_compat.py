"""Generic OpenAI-compatible provider (``/v1/chat/completions``).

Parameterized by base URL, API key and a reasoning-injection hook. Local
runtimes subclass it and override only their defaults, their model-listing
shape and how a reasoning level enters the request body.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from switchyard._http import PROBE_TIMEOUT_S
from switchyard.errors import ProviderError
from switchyard.providers._errors import wrap_provider_error
from switchyard.providers.registry import PROVIDERS
from switchyard.transforms import Dialect, chunk_from_wire, from_wire, to_wire
from switchyard.types import ModelInfo

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.capabilities import ReasoningSpec
    from switchyard.config import ProviderSettings
    from switchyard.transforms import WireRequest
    from switchyard.types import CanonicalRequest, CanonicalResponse, StreamChunk

logger = logging.getLogger(__name__)

# Keyword arguments accepted by ``chat.completions.create``; anything else in
# the wire body travels in ``extra_body``.
_SDK_FIELDS = frozenset(
    {
        "model",
        "messages",
        "temperature",
        "top_p",
        "max_tokens",
        "max_completion_tokens",
        "tools",
        "tool_choice",
        "parallel_tool_calls",
        "stream",
        "stream_options",
        "stop",
        "seed",
        "reasoning_effort",
        "response_format",
        "frequency_penalty",
        "presence_penalty",
        "user",
    }
)


class ModelEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    owned_by: str | None = None
    created: int | None = None


class ModelListing(BaseModel):
    data: list[ModelEntry] = []


class OpenAICompatibleProvider:
    """Adapter for any server speaking the OpenAI chat-completions dialect."""

    dialect = Dialect.OPENAI_COMPAT
    #: Probe endpoint, relative to the host.
    health_path = "/v1/models"
    listing_model: type[ModelListing] = ModelListing

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        probe_timeout_s: float = PROBE_TIMEOUT_S,
    ) -> None:
        """Create the adapter; network clients are built lazily."""
        self.settings = settings
        self.name = settings.name
        self.probe_timeout_s = probe_timeout_s
        self.last_error: str | None = None
        self._http = http_client
        self._owns_http = http_client is None
        self._client: Any = None

    # ------------------------------------------------------------------ clients

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                base_url=self.settings.base_url,
                api_key=self.settings.api_key or "not-needed",
                http_client=self._get_http(),
                # Retries belong to the routing engine.
                max_retries=0,
            )
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        if not self.settings.api_key:
            return {}
        return {"Authorization": f"Bearer {self.settings.api_key}"}

    # ---------------------------------------------------------------- discovery

    async def is_available(self) -> bool:
        """Probe the health endpoint with a short timeout."""
        url = f"{self.settings.host}{self.health_path}"
        try:
            response = await self._get_http().get(
                url, headers=self._auth_headers(), timeout=self.probe_timeout_s
            )
        except httpx.HTTPError as e:
            self.last_error = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            logger.debug("%s probe failed: %s", self.name, self.last_error)
            return False
        if not response.is_success:
            self.last_error = f"HTTP {response.status_code} from {url}"
            return False
        self.last_error = None
        return True

    async def _get_json(self, path: str, *, timeout_s: float | None = None) -> Any:
        url = f"{self.settings.host}{path}"
        try:
            response = await self._get_http().get(
                url,
                headers=self._auth_headers(),
                timeout=timeout_s or self.probe_timeout_s * 2,
            )
            response.raise_for_status()
            return response.json()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="list_models") from e

    async def list_models(self) -> list[ModelInfo]:
        """List models via the OpenAI-compatible ``/v1/models`` endpoint."""
        payload = await self._get_json("/v1/models")
        try:
            listing = self.listing_model.model_validate(payload)
        except ValidationError as e:
            raise ProviderError(
                f"{self.name} returned a malformed model listing",
                provider=self.name,
                cause=e,
                phase="list_models",
            ) from e
        return [
            self._model_info(entry) for entry in listing.data if self._include(entry)
        ]

    def _include(self, entry: ModelEntry) -> bool:
        return True

    def _model_info(self, entry: ModelEntry) -> ModelInfo:
        description = f"Provider: {entry.owned_by}" if entry.owned_by else ""
        return ModelInfo(
            id=entry.id,
            provider=self.name,
            display_name=entry.id,
            description=description,
            aliases=self._aliases_for(entry.id),
        )

    def _aliases_for(self, model_id: str) -> tuple[str, ...]:
        spec = PROVIDERS.get(self.name)
        if spec is None:
            return ()
        return tuple(a for a, target in spec.aliases.items() if target == model_id)

    async def describe_model(self, model_id: str) -> ModelInfo | None:
        """Return listing metadata for *model_id*, if listed."""
        for info in await self.list_models():
            if info.id == model_id or model_id in info.aliases:
                return info
        return None

    # --------------------------------------------------------------- generation

    def _apply_reasoning(
        self,
        body: dict[str, Any],
        reasoning: ReasoningSpec | None,
        level: str | None,
    ) -> None:
        """Inject the reasoning-level parameter, if the model takes one natively."""
        if reasoning is None or reasoning.type != "native":
            return
        if not reasoning.native_param_name:
            return
        body[reasoning.native_param_name] = level or reasoning.default_level or "medium"

    def _prepare(
        self,
        request: CanonicalRequest,
        reasoning: ReasoningSpec | None,
    ) -> tuple[WireRequest, dict[str, Any]]:
        wire = to_wire(self.dialect, request)
        for warning in wire.warnings:
            logger.warning("%s: %s", self.name, warning)
        body = dict(wire.body)
        self._apply_reasoning(body, reasoning, request.reasoning_level)

        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in body.items():
            (kwargs if key in _SDK_FIELDS else extra)[key] = value
        if extra:
            kwargs["extra_body"] = extra
        logger.debug(
            "%s request: model=%s messages=%d stream=%s",
            self.name,
            body.get("model"),
            len(body.get("messages", ())),
            body.get("stream", False),
        )
        return wire, kwargs

    async def generate(
        self,
        request: CanonicalRequest,
        *,
        reasoning: ReasoningSpec | None = None,
        timeout_s: float | None = None,
    ) -> CanonicalResponse:
        """Generate a complete response via chat completions."""
        wire, kwargs = self._prepare(dataclasses.replace(request, stream=False), reasoning)
        client = self._get_client()
        try:
            completion = await client.chat.completions.create(**kwargs, timeout=timeout_s)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="generate") from e

        response = from_wire(self.dialect, completion.model_dump())
        if wire.warnings:
            response = dataclasses.replace(response, warnings=wire.warnings)
        return response

    async def generate_stream(
        self,
        request: CanonicalRequest,
        *,
        reasoning: ReasoningSpec | None = None,
        timeout_s: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream decoded chunks; closing this iterator closes the HTTP response."""
        _, kwargs = self._prepare(dataclasses.replace(request, stream=True), reasoning)
        client = self._get_client()
        try:
            stream = await client.chat.completions.create(**kwargs, timeout=timeout_s)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise wrap_provider_error(e, provider=self.name, phase="stream") from e

        async with stream:
            try:
                async for chunk in stream:
                    yield chunk_from_wire(self.dialect, chunk.model_dump())
            except (asyncio.CancelledError, ProviderError):
                raise
            except Exception as e:
                raise wrap_provider_error(e, provider=self.name, phase="stream") from e

    async def aclose(self) -> None:
        """Close underlying client resources."""
        client, self._client = self._client, None
        if client is not None and self._owns_http:
            await client.close()
        http, self._http = self._http, None
        if http is not None and self._owns_http:
            await http.aclose()
