"""Provider strategy table.

One ``ProviderSpec`` per backend. Adding a provider means adding one entry
here plus one small adapter class; the routing engine never changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import importlib
from typing import TYPE_CHECKING, Any

from switchyard.errors import ConfigurationError
from switchyard.transforms import Dialect

if TYPE_CHECKING:
    from collections.abc import Mapping

    from switchyard.config import ProviderSettings
    from switchyard.providers.base import Provider


@dataclass(frozen=True)
class ProviderSpec:
    """Static description of one provider backend."""

    name: str
    display_name: str
    dialect: Dialect
    #: ``module:Class`` path, imported lazily so unused SDKs stay unloaded.
    adapter: str
    default_host: str
    default_model: str
    default_api_key: str | None = None
    is_local: bool = False
    aliases: Mapping[str, str] = field(default_factory=dict)
    start_hint: str | None = None

    @property
    def env_prefix(self) -> str:
        return self.name.upper()


PROVIDERS: dict[str, ProviderSpec] = {
    "gemini": ProviderSpec(
        name="gemini",
        display_name="Google",
        dialect=Dialect.NATIVE,
        adapter="switchyard.providers.gemini:GeminiProvider",
        default_host="https://generativelanguage.googleapis.com",
        default_model="gemini-2.5-flash",
        aliases={
            "pro": "gemini-2.5-pro",
            "flash": "gemini-2.5-flash",
            "flash-lite": "gemini-2.5-flash-lite",
        },
        start_hint="Set GEMINI_API_KEY to enable the native cloud provider.",
    ),
    "ollama": ProviderSpec(
        name="ollama",
        display_name="Ollama",
        dialect=Dialect.OPENAI_COMPAT,
        adapter="switchyard.providers.ollama:OllamaProvider",
        default_host="http://localhost:11434",
        default_model="gpt-oss:20b",
        default_api_key="ollama",
        is_local=True,
        aliases={
            "small": "hopephoto/Qwen3-4B-Instruct-2507_q8:latest",
            "medium": "gpt-oss:20b",
            "large": "qwen3-coder:latest",
        },
        start_hint="Start Ollama with `ollama serve` or set OLLAMA_HOST.",
    ),
    "lmstudio": ProviderSpec(
        name="lmstudio",
        display_name="LM Studio",
        dialect=Dialect.OPENAI_COMPAT,
        adapter="switchyard.providers.lmstudio:LMStudioProvider",
        default_host="http://localhost:1234",
        default_model="local-model",
        default_api_key="lm-studio",
        is_local=True,
        start_hint="Start the LM Studio server (Developer tab) or set LMSTUDIO_HOST.",
    ),
    "openai": ProviderSpec(
        name="openai",
        display_name="OpenAI",
        dialect=Dialect.OPENAI_COMPAT,
        adapter="switchyard.providers.openai_compat:OpenAICompatibleProvider",
        default_host="https://api.openai.com",
        default_model="gpt-4o-mini",
        start_hint="Set OPENAI_API_KEY, or point OPENAI_HOST at any compatible server.",
    ),
}


def get_spec(name: str) -> ProviderSpec:
    """Return the spec for *name* or raise ConfigurationError."""
    spec = PROVIDERS.get(name.lower())
    if spec is None:
        raise ConfigurationError(
            f"Unknown provider: {name!r}",
            hint=f"Supported providers: {', '.join(sorted(PROVIDERS))}",
        )
    return spec


def create_provider(settings: ProviderSettings, **kwargs: Any) -> Provider:
    """Instantiate the adapter registered for ``settings.name``."""
    spec = get_spec(settings.name)
    module_name, _, class_name = spec.adapter.partition(":")
    adapter_cls = getattr(importlib.import_module(module_name), class_name)
    provider: Provider = adapter_cls(settings, **kwargs)
    return provider
