"""LM Studio adapter."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from switchyard.providers.openai_compat import (
    ModelEntry,
    ModelListing,
    OpenAICompatibleProvider,
)
from switchyard.types import ModelInfo

if TYPE_CHECKING:
    from switchyard.capabilities import ReasoningSpec

_SIZE_RE = re.compile(r"(\d+[bB])")


class _Capabilities(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chat: bool | None = None
    completion: bool | None = None
    embeddings: bool | None = None


class _LMStudioEntry(ModelEntry):
    capabilities: _Capabilities | None = None


class _LMStudioListing(ModelListing):
    data: list[_LMStudioEntry] = []


class LMStudioProvider(OpenAICompatibleProvider):
    """Local LM Studio server.

    Embedding-only models (``capabilities.chat == false``) are hidden from
    listings. Reasoning levels are not injected; LM Studio models that think
    do so inline, and the stream processor separates it.
    """

    listing_model = _LMStudioListing

    def _include(self, entry: ModelEntry) -> bool:
        caps = getattr(entry, "capabilities", None)
        return caps is None or caps.chat is not False

    def _model_info(self, entry: ModelEntry) -> ModelInfo:
        match = _SIZE_RE.search(entry.id)
        display = f"{entry.id} ({match.group(1).upper()})" if match else entry.id

        description: list[str] = []
        if entry.owned_by:
            description.append(f"Provider: {entry.owned_by}")
        caps = getattr(entry, "capabilities", None)
        if caps is not None:
            names = [
                label
                for label, on in (
                    ("Chat", caps.chat),
                    ("Completion", caps.completion),
                    ("Embeddings", caps.embeddings),
                )
                if on
            ]
            if names:
                description.append(f"Capabilities: {', '.join(names)}")

        return ModelInfo(
            id=entry.id,
            provider=self.name,
            display_name=display,
            description=" | ".join(description),
            aliases=self._aliases_for(entry.id),
        )

    def _apply_reasoning(
        self,
        body: dict[str, Any],
        reasoning: ReasoningSpec | None,
        level: str | None,
    ) -> None:
        return None
