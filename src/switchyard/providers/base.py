"""Provider protocol: the surface every backend adapter exposes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from switchyard.capabilities import ReasoningSpec
    from switchyard.transforms import Dialect
    from switchyard.types import CanonicalRequest, CanonicalResponse, ModelInfo, StreamChunk


@runtime_checkable
class Provider(Protocol):
    """Minimal provider protocol.

    Adapters never swallow errors: network failures and non-2xx responses
    surface as ``ProviderError``. ``is_available`` is the one exception; it
    answers a yes/no question and records the reason in ``last_error``.
    """

    name: str
    dialect: Dialect
    last_error: str | None

    async def is_available(self) -> bool:
        """Lightweight reachability probe with a short timeout."""
        ...

    async def list_models(self) -> list[ModelInfo]:
        """Return the models this provider currently serves."""
        ...

    async def describe_model(self, model_id: str) -> ModelInfo | None:
        """Return listing metadata for one model, if the provider knows it."""
        ...

    async def generate(
        self,
        request: CanonicalRequest,
        *,
        reasoning: ReasoningSpec | None = None,
        timeout_s: float | None = None,
    ) -> CanonicalResponse:
        """Run a complete (non-streaming) generation."""
        ...

    def generate_stream(
        self,
        request: CanonicalRequest,
        *,
        reasoning: ReasoningSpec | None = None,
        timeout_s: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream decoded chunks; closing the iterator closes the upstream read."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
