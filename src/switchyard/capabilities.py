"""Per-model capability registry.

Lookup order for ``provider:model``: a refreshed (dynamic) record, the exact
static key, the most specific wildcard key, then a default record with no
reasoning. Records are frozen and replaced wholesale, never edited in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import functools
import logging
import re
import time
from typing import TYPE_CHECKING, Literal

from switchyard._singleflight import SingleFlightCache

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from switchyard.types import ModelInfo

logger = logging.getLogger(__name__)

ReasoningType = Literal["none", "native", "pattern"]

#: Input windows above this size are taken as a hint of multimodal support.
VISION_CONTEXT_THRESHOLD = 100_000

_VISION_HINTS = ("vision", "llava", "multimodal")
_TOOL_HINTS = ("tool", "function", "instruct")
_REASONING_HINTS = ("think", "reason", "-r1")


@dataclass(frozen=True)
class ReasoningMarker:
    """An opening/closing pair that delimits inline reasoning text."""

    opener: str
    closer: str

    @functools.cached_property
    def pattern(self) -> re.Pattern[str]:
        return re.compile(
            re.escape(self.opener) + r"(.*?)" + re.escape(self.closer), re.DOTALL
        )


THINK = ReasoningMarker("<think>", "</think>")
THINKING = ReasoningMarker("<thinking>", "</thinking>")
REASONING_BRACKETS = ReasoningMarker("[REASONING]", "[/REASONING]")


@dataclass(frozen=True)
class ReasoningSpec:
    """How a model exposes its reasoning.

    - ``none``: no reasoning channel; the stream passes through untouched.
    - ``native``: the provider separates reasoning on the wire, optionally
      driven by a request parameter (``native_param_name``).
    - ``pattern``: reasoning arrives inline, delimited by ``markers``, which
      are tried in order.
    """

    type: ReasoningType = "none"
    native_param_name: str | None = None
    markers: tuple[ReasoningMarker, ...] = ()
    default_level: str | None = None

    @property
    def patterns(self) -> tuple[re.Pattern[str], ...]:
        return tuple(m.pattern for m in self.markers)


@dataclass(frozen=True)
class ModelCapability:
    """What one model (or family of models) can do."""

    model_id_pattern: str
    supports_text: bool = True
    supports_vision: bool = False
    supports_tools: bool = False
    reasoning: ReasoningSpec = field(default_factory=ReasoningSpec)


def default_capability(key: str = "*") -> ModelCapability:
    """Record used when nothing more specific is known.

    Tools default to supported: OpenAI-compatible servers accept tool
    declarations and ignore them when the model cannot use them.
    """
    return ModelCapability(model_id_pattern=key, supports_tools=True)


STATIC_CAPABILITIES: tuple[ModelCapability, ...] = (
    ModelCapability(
        "gemini:gemini-2.5-*",
        supports_vision=True,
        supports_tools=True,
        reasoning=ReasoningSpec(type="native", default_level="medium"),
    ),
    ModelCapability("gemini:gemini-2.0-*", supports_vision=True, supports_tools=True),
    ModelCapability(
        "ollama:gpt-oss:*",
        supports_tools=True,
        reasoning=ReasoningSpec(
            type="native", native_param_name="reasoning_effort", default_level="high"
        ),
    ),
    ModelCapability(
        "ollama:deepseek-r1:*",
        reasoning=ReasoningSpec(type="native", default_level="high"),
    ),
    ModelCapability("ollama:llava*", supports_vision=True),
    ModelCapability(
        "lmstudio:*gpt-oss*",
        supports_tools=True,
        reasoning=ReasoningSpec(
            type="pattern", markers=(THINKING, REASONING_BRACKETS, THINK)
        ),
    ),
    ModelCapability("openai:gpt-4o*", supports_vision=True, supports_tools=True),
)


def capability_key(provider: str, model_id: str) -> str:
    return f"{provider}:{model_id}"


def _wildcard_regex(pattern: str) -> re.Pattern[str]:
    return re.compile(
        "^" + re.escape(pattern).replace(r"\*", ".*") + "$", re.IGNORECASE
    )


def infer_capability(base: ModelCapability, info: ModelInfo) -> ModelCapability:
    """Enrich *base* with heuristics over listing metadata.

    Vision and tool support come from the inference; reasoning is only ever
    upgraded, never downgraded.
    """
    haystack = " ".join((info.id, info.display_name, info.description)).lower()
    vision = any(h in haystack for h in _VISION_HINTS) or (
        info.context_window or 0
    ) > VISION_CONTEXT_THRESHOLD
    tools = any(h in haystack for h in _TOOL_HINTS)

    reasoning = base.reasoning
    if reasoning.type == "none" and (
        info.supports_reasoning or any(h in haystack for h in _REASONING_HINTS)
    ):
        reasoning = ReasoningSpec(type="pattern", markers=(THINK,))

    return replace(
        base,
        model_id_pattern=capability_key(info.provider, info.id),
        supports_vision=vision,
        supports_tools=tools,
        reasoning=reasoning,
    )


class CapabilityRegistry:
    """Static table plus a TTL cache of dynamically refreshed records.

    Example:
        registry = CapabilityRegistry()
        cap = registry.get_capability("ollama", "gpt-oss:20b")
        cap.reasoning.type  # "native"
    """

    def __init__(
        self,
        entries: Iterable[ModelCapability] = STATIC_CAPABILITIES,
        *,
        ttl_s: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Load the static table; dynamic records expire after *ttl_s*."""
        self._static: dict[str, ModelCapability] = {}
        self._wildcards: tuple[tuple[re.Pattern[str], ModelCapability], ...] = ()
        self._dynamic: SingleFlightCache[str, ModelCapability] = SingleFlightCache(
            ttl_s=ttl_s, clock=clock
        )
        for entry in entries:
            self.register(entry)

    def register(self, capability: ModelCapability) -> None:
        """Add or replace a static record (exact key or ``*`` wildcard)."""
        key = capability.model_id_pattern
        static = {**self._static, key: capability}
        # Longer patterns are more specific and win.
        wildcards = tuple(
            (_wildcard_regex(k), cap)
            for k, cap in sorted(static.items(), key=lambda kv: -len(kv[0]))
            if "*" in k
        )
        self._static, self._wildcards = static, wildcards

    def static_capability(self, provider: str, model_id: str) -> ModelCapability:
        """Lookup ignoring dynamic refreshes."""
        key = capability_key(provider, model_id)
        exact = self._static.get(key)
        if exact is not None:
            return exact
        for regex, cap in self._wildcards:
            if regex.match(key):
                return cap
        return default_capability(key)

    def get_capability(self, provider: str, model_id: str) -> ModelCapability:
        """Return the best-known capability record for ``provider:model``."""
        refreshed = self._dynamic.get(capability_key(provider, model_id))
        if refreshed is not None:
            return refreshed
        return self.static_capability(provider, model_id)

    async def refresh(
        self,
        provider: str,
        model_id: str,
        describe: Callable[[], Awaitable[ModelInfo | None]],
        *,
        force: bool = False,
    ) -> ModelCapability:
        """Best-effort refresh from live metadata, coalesced per key.

        Failures leave the current record in place.
        """
        key = capability_key(provider, model_id)
        base = self.static_capability(provider, model_id)

        async def load() -> ModelCapability:
            info = await describe()
            if info is None:
                return base
            return infer_capability(base, info)

        try:
            return await self._dynamic.get_or_load(key, load, force=force)
        except Exception as e:
            logger.debug("Capability refresh for %s failed: %s", key, e)
            return self.get_capability(provider, model_id)

    def clear(self, provider: str | None = None, model_id: str | None = None) -> None:
        """Drop refreshed records (all, or one ``provider:model``)."""
        if provider is None or model_id is None:
            self._dynamic.clear()
        else:
            self._dynamic.clear(capability_key(provider, model_id))
