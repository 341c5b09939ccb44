"""Configuration: frozen provider settings and router tuning.

Per-provider values resolve in this order: explicit argument, then the
``{PROVIDER}_HOST`` / ``{PROVIDER}_API_KEY`` / ``{PROVIDER}_MODEL``
environment variables, then the provider table defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os

from dotenv import load_dotenv

from switchyard._http import GENERATE_TIMEOUT_S, PROBE_TIMEOUT_S
from switchyard.errors import ConfigurationError
from switchyard.providers.registry import PROVIDERS, get_spec
from switchyard.retry import RetryPolicy

load_dotenv()

DEFAULT_PROVIDER = "gemini"


def _normalize_host(host: str) -> str:
    host = host.strip().rstrip("/")
    if host.endswith("/v1"):
        host = host[: -len("/v1")]
    return host


@dataclass(frozen=True)
class ProviderSettings:
    """Resolved connection settings for one provider.

    Example:
        settings = ProviderSettings.from_env("ollama")
        # host comes from OLLAMA_HOST, falling back to http://localhost:11434
    """

    name: str
    host: str
    api_key: str | None = None
    model: str = ""
    timeout_s: float | None = None

    @classmethod
    def from_env(
        cls,
        name: str,
        *,
        host: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout_s: float | None = None,
    ) -> ProviderSettings:
        """Build settings for *name* from arguments, environment and defaults."""
        spec = get_spec(name)
        prefix = spec.env_prefix
        resolved_host = host or os.environ.get(f"{prefix}_HOST") or spec.default_host
        resolved_key = (
            api_key or os.environ.get(f"{prefix}_API_KEY") or spec.default_api_key
        )
        resolved_model = model or os.environ.get(f"{prefix}_MODEL") or spec.default_model
        return cls(
            name=spec.name,
            host=_normalize_host(resolved_host),
            api_key=resolved_key,
            model=resolved_model,
            timeout_s=timeout_s,
        )

    @property
    def base_url(self) -> str:
        """OpenAI-compatible API root (``{host}/v1``)."""
        return f"{self.host}/v1"

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"ProviderSettings(name={self.name!r}, host={self.host!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, model={self.model!r})"
        )

    __repr__ = __str__


@dataclass(frozen=True)
class RouterConfig:
    """Immutable configuration for the routing engine.

    Example:
        config = RouterConfig(providers=("ollama", "gemini"), health_ttl_s=10)
    """

    default_provider: str = DEFAULT_PROVIDER
    providers: tuple[str, ...] = tuple(PROVIDERS)
    #: Explicit settings win over environment resolution for these providers.
    settings: tuple[ProviderSettings, ...] = ()
    health_ttl_s: float = 30.0
    capability_ttl_s: float = 3600.0
    probe_timeout_s: float = PROBE_TIMEOUT_S
    generate_timeout_s: float | None = GENERATE_TIMEOUT_S
    #: None means unlimited; streams are long-lived by nature.
    stream_timeout_s: float | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    fallback_enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not isinstance(self.providers, tuple):
            object.__setattr__(self, "providers", tuple(self.providers))
        if not isinstance(self.settings, tuple):
            object.__setattr__(self, "settings", tuple(self.settings))

        for name in (self.default_provider, *self.providers):
            if name not in PROVIDERS:
                raise ConfigurationError(
                    f"Unknown provider: {name!r}",
                    hint=f"Supported providers: {', '.join(sorted(PROVIDERS))}",
                )
        if self.default_provider not in self.providers:
            raise ConfigurationError(
                f"default_provider {self.default_provider!r} is not in providers",
                hint="Add it to RouterConfig(providers=...).",
            )
        if self.health_ttl_s < 0 or self.capability_ttl_s < 0:
            raise ConfigurationError(
                "Cache TTLs must be >= 0",
                hint="Use 0 to disable caching entirely.",
            )
        if self.probe_timeout_s <= 0:
            raise ConfigurationError(
                f"probe_timeout_s must be > 0, got {self.probe_timeout_s}",
                hint="Availability probes should use a short 2-3 second timeout.",
            )
        for label, value in (
            ("generate_timeout_s", self.generate_timeout_s),
            ("stream_timeout_s", self.stream_timeout_s),
        ):
            if value is not None and value <= 0:
                raise ConfigurationError(
                    f"{label} must be > 0 or None, got {value}",
                )

    def settings_for(self, name: str) -> ProviderSettings:
        """Return explicit settings for *name*, or resolve them from the environment."""
        for s in self.settings:
            if s.name == name:
                return s
        return ProviderSettings.from_env(name)


def parse_selector(
    selector: str, *, default_provider: str = DEFAULT_PROVIDER
) -> tuple[str, str]:
    """Split a ``provider:model`` selector.

    Only a known provider name counts as a prefix, so model ids that contain
    colons (``ollama:gpt-oss:20b``) survive intact. The model part may be
    empty, meaning "the provider's default model". Aliases are resolved.
    """
    selector = selector.strip()
    provider, sep, rest = selector.partition(":")
    if sep and provider.lower() in PROVIDERS:
        name, model = provider.lower(), rest.strip()
    elif selector.lower() in PROVIDERS:
        name, model = selector.lower(), ""
    else:
        name, model = default_provider, selector
    return name, resolve_alias(name, model)


def resolve_alias(provider: str, model: str) -> str:
    """Map a provider-specific alias (``small``, ``pro``...) to a model id."""
    return get_spec(provider).aliases.get(model, model)
