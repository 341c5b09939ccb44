"""Ollama adapter.

Chat goes through the OpenAI-compatible endpoint; discovery prefers the
native ``/api/tags`` listing, which carries size and quantization details.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, ValidationError

from switchyard.errors import ProviderError
from switchyard.providers.openai_compat import OpenAICompatibleProvider
from switchyard.types import ModelInfo

if TYPE_CHECKING:
    from switchyard.capabilities import ReasoningSpec

logger = logging.getLogger(__name__)


class _TagDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    family: str | None = None
    parameter_size: str | None = None
    quantization_level: str | None = None


class _Tag(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    model: str | None = None
    size: int | None = None
    parameter_size: str | None = None
    quantization_level: str | None = None
    details: _TagDetails | None = None


class _Tags(BaseModel):
    models: list[_Tag] = []


class OllamaProvider(OpenAICompatibleProvider):
    """Local Ollama server."""

    health_path = "/api/tags"

    async def list_models(self) -> list[ModelInfo]:
        """List installed models, falling back to ``/v1/models``."""
        try:
            payload = await self._get_json("/api/tags")
            tags = _Tags.model_validate(payload)
        except (ProviderError, ValidationError) as e:
            logger.debug("ollama /api/tags unusable (%s); trying /v1/models", e)
            return await super().list_models()
        return [self._tag_info(tag) for tag in tags.models]

    def _tag_info(self, tag: _Tag) -> ModelInfo:
        name = tag.name or tag.model or "unknown"
        details = tag.details or _TagDetails()
        size = details.parameter_size or tag.parameter_size
        quant = details.quantization_level or tag.quantization_level

        display = [name]
        if size:
            display.append(f"({size})")
        if quant:
            display.append(f"[{quant}]")

        description: list[str] = []
        if details.family:
            description.append(f"Family: {details.family}")
        if tag.size:
            description.append(f"Size: {tag.size / 1e9:.2f}GB")

        return ModelInfo(
            id=name,
            provider=self.name,
            display_name=" ".join(display),
            description=" | ".join(description),
            aliases=self._aliases_for(name),
            family=details.family,
        )

    def _apply_reasoning(
        self,
        body: dict[str, Any],
        reasoning: ReasoningSpec | None,
        level: str | None,
    ) -> None:
        # Ollama takes the level as ``reasoning_effort`` on its compat endpoint.
        if reasoning is None or reasoning.type != "native":
            return
        param = reasoning.native_param_name or "reasoning_effort"
        body[param] = level or reasoning.default_level or "medium"
