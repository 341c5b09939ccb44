"""Routing engine: the single call surface over every provider.

``Router.route`` resolves a ``provider:model`` selector, checks the model's
capabilities, runs the call through the adapter and walks the fallback chain
on connection-class failures. Streams pass through the thinking processor
and honour a caller-supplied cancellation event.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field, replace
import logging
from typing import TYPE_CHECKING

from switchyard._cancellation import iterate_cancellable
from switchyard.capabilities import CapabilityRegistry
from switchyard.config import RouterConfig, parse_selector, resolve_alias
from switchyard.errors import (
    CapabilityMismatchError,
    ConfigurationError,
    FallbackExhaustedError,
    ProviderError,
)
from switchyard.fallback import Candidate, build_chain, is_fallback_trigger, log_fallback
from switchyard.health import HealthMonitor
from switchyard.providers.registry import create_provider
from switchyard.retry import retry_async, should_retry_generate
from switchyard.thinking import ThinkingStreamProcessor, separate_reasoning
from switchyard.types import (
    CanonicalRequest,
    FallbackNotice,
    FinishReason,
    Message,
    StreamDone,
    ToolSchema,
    Usage,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping

    import httpx

    from switchyard.capabilities import ModelCapability
    from switchyard.providers.base import Provider
    from switchyard.types import CanonicalResponse, ModelInfo, ProviderStatus, RouteEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteRequest:
    """One routed call.

    Example:
        RouteRequest(
            selector="ollama:gpt-oss:20b",
            conversation=(Message(role="user", content="hi"),),
        )
    """

    selector: str
    conversation: tuple[Message, ...]
    tools: tuple[ToolSchema, ...] = ()
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False
    #: ``low``/``medium``/``high``; overrides the model's default level.
    reasoning_level: str | None = None
    #: Explicit fallback selectors. ``()`` disables fallback for this call.
    fallback: tuple[str, ...] | None = None
    timeout_s: float | None = None
    cancel: asyncio.Event | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        """Normalize list inputs to tuples."""
        for name in ("conversation", "tools"):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))
        if self.fallback is not None and not isinstance(self.fallback, tuple):
            object.__setattr__(self, "fallback", tuple(self.fallback))


@dataclass(frozen=True)
class RouteResult:
    """A completed call, naming the provider that actually served it."""

    response: CanonicalResponse
    provider: str
    model: str
    requested: str
    #: ``(selector, error)`` for every provider abandoned on the way.
    failures: tuple[tuple[str, BaseException], ...] = ()

    @property
    def selector(self) -> str:
        return f"{self.provider}:{self.model}"

    @property
    def fell_back(self) -> bool:
        return self.selector != self.requested


class Router:
    """Multi-provider router with health-aware fallback.

    Example:
        async with Router() as router:
            result = await router.route(
                RouteRequest("ollama:", (Message(role="user", content="hi"),))
            )
            print(result.selector, result.response.message.text)
    """

    def __init__(
        self,
        config: RouterConfig | None = None,
        *,
        providers: Mapping[str, Provider] | None = None,
        capabilities: CapabilityRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Build a router; adapters not passed in are created on first use."""
        self.config = config or RouterConfig()
        self.capabilities = capabilities or CapabilityRegistry(
            ttl_s=self.config.capability_ttl_s
        )
        self._providers: dict[str, Provider] = dict(providers or {})
        self._http_client = http_client
        self.health = HealthMonitor(
            self.get_provider,
            self.config.providers,
            ttl_s=self.config.health_ttl_s,
        )

    async def __aenter__(self) -> Router:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------- resolution

    def get_provider(self, name: str) -> Provider:
        """Return the adapter for *name*, creating it on first use."""
        if name not in self.config.providers:
            raise ConfigurationError(
                f"Provider {name!r} is not enabled",
                hint=f"Enabled providers: {', '.join(self.config.providers)}",
            )
        provider = self._providers.get(name)
        if provider is None:
            provider = create_provider(
                self.config.settings_for(name),
                http_client=self._http_client,
                probe_timeout_s=self.config.probe_timeout_s,
            )
            self._providers[name] = provider
        return provider

    def default_model(self, provider: str) -> str:
        return resolve_alias(provider, self.config.settings_for(provider).model)

    def resolve(self, selector: str) -> Candidate:
        """Parse *selector* into a provider and a concrete model id."""
        provider, model = parse_selector(
            selector, default_provider=self.config.default_provider
        )
        if provider not in self.config.providers:
            raise ConfigurationError(
                f"Provider {provider!r} is not enabled",
                hint=f"Enabled providers: {', '.join(self.config.providers)}",
            )
        return Candidate(provider, model or self.default_model(provider))

    def _chain(self, request: RouteRequest) -> list[Candidate]:
        requested = self.resolve(request.selector)
        overrides = None
        if request.fallback is not None:
            overrides = [self.resolve(s) for s in request.fallback]
        return build_chain(
            requested,
            default_model=self.default_model,
            available=self.config.providers,
            overrides=overrides,
            enabled=self.config.fallback_enabled,
        )

    async def _capability(
        self, candidate: Candidate, request: RouteRequest, provider: Provider
    ) -> ModelCapability:
        """Return the model's capability, or raise CapabilityMismatchError."""
        capability = self.capabilities.get_capability(candidate.provider, candidate.model)
        if not _missing_feature(capability, request):
            return capability

        # Static knowledge says no; live metadata may know better.
        capability = await self.capabilities.refresh(
            candidate.provider,
            candidate.model,
            lambda: provider.describe_model(candidate.model),
        )
        feature = _missing_feature(capability, request)
        if feature:
            raise CapabilityMismatchError(
                f"{candidate.selector} does not support {feature}",
                provider=candidate.provider,
                model=candidate.model,
                feature=feature,
                hint=f"Choose a model with {feature} support.",
            )
        return capability

    def _canonical(self, request: RouteRequest, model: str, *, stream: bool) -> CanonicalRequest:
        return CanonicalRequest(
            model=model,
            conversation=request.conversation,
            tools=request.tools,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            stream=stream,
            reasoning_level=request.reasoning_level,
        )

    async def _admit(
        self,
        index: int,
        candidate: Candidate,
        request: RouteRequest,
        failures: list[tuple[str, BaseException]],
    ) -> tuple[Provider, ModelCapability] | None:
        """Health- and capability-check a candidate; None means skip it."""
        provider = self.get_provider(candidate.provider)
        if index > 0:
            status = await self.health.check_one(candidate.provider)
            if not status.available:
                err = ProviderError(
                    f"{candidate.provider} unavailable: {status.error}",
                    provider=candidate.provider,
                    connection=True,
                    phase="health",
                    hint=status.hint,
                )
                failures.append((candidate.selector, err))
                logger.warning("Skipping %s: %s", candidate.selector, status.error)
                return None
        try:
            capability = await self._capability(candidate, request, provider)
        except CapabilityMismatchError as e:
            if index == 0:
                raise
            failures.append((candidate.selector, e))
            logger.warning("Skipping %s: %s", candidate.selector, e)
            return None
        return provider, capability

    # ---------------------------------------------------------------- routing

    async def route(self, request: RouteRequest) -> RouteResult | AsyncIterator[RouteEvent]:
        """Route one call.

        Returns a ``RouteResult`` for non-streaming requests, or the event
        stream from ``stream()`` when ``request.stream`` is set.
        """
        if request.stream:
            return self.stream(request)
        return await self.generate(request)

    async def generate(self, request: RouteRequest) -> RouteResult:
        """Run a complete (non-streaming) call with retry and fallback."""
        chain = self._chain(request)
        failures: list[tuple[str, BaseException]] = []
        timeout_s = request.timeout_s or self.config.generate_timeout_s

        for index, candidate in enumerate(chain):
            admitted = await self._admit(index, candidate, request, failures)
            if admitted is None:
                continue
            provider, capability = admitted
            canonical = self._canonical(request, candidate.model, stream=False)
            try:
                response = await retry_async(
                    lambda: provider.generate(
                        canonical, reasoning=capability.reasoning, timeout_s=timeout_s
                    ),
                    policy=self.config.retry,
                    should_retry=should_retry_generate,
                )
            except ProviderError as e:
                if len(chain) == 1 or not is_fallback_trigger(e):
                    raise
                self._abandon(chain, index, e, failures)
                continue

            return RouteResult(
                response=_split_reasoning(response, capability),
                provider=candidate.provider,
                model=candidate.model,
                requested=chain[0].selector,
                failures=tuple(failures),
            )

        raise FallbackExhaustedError(
            failures, hint="Start a local runtime or configure a cloud API key."
        )

    async def stream(self, request: RouteRequest) -> AsyncIterator[RouteEvent]:
        """Stream typed events: thinking tokens, tool calls, then ``StreamDone``.

        Fallback happens only before the first event reaches the caller and is
        announced with a ``FallbackNotice``. Setting ``request.cancel`` stops
        the upstream read and raises ``CancellationError``.
        """
        chain = self._chain(request)
        failures: list[tuple[str, BaseException]] = []
        timeout_s = request.timeout_s or self.config.stream_timeout_s

        for index, candidate in enumerate(chain):
            admitted = await self._admit(index, candidate, request, failures)
            if admitted is None:
                continue
            provider, capability = admitted
            if failures:
                abandoned, error = failures[-1]
                yield FallbackNotice(
                    abandoned=abandoned, selected=candidate.selector, reason=str(error)
                )

            processor = ThinkingStreamProcessor(capability.reasoning)
            upstream = provider.generate_stream(
                self._canonical(request, candidate.model, stream=True),
                reasoning=capability.reasoning,
                timeout_s=timeout_s,
            )
            started = False
            try:
                async with aclosing(iterate_cancellable(upstream, request.cancel)) as chunks:
                    async for chunk in chunks:
                        for event in processor.feed(chunk):
                            started = True
                            yield event
            except ProviderError as e:
                if started or len(chain) == 1 or not is_fallback_trigger(e):
                    raise
                self._abandon(chain, index, e, failures)
                continue

            for event in processor.finish():
                yield event
            yield StreamDone(
                provider=candidate.provider,
                model=candidate.model,
                finish_reason=processor.finish_reason or FinishReason.STOP,
                usage=processor.usage or Usage(),
            )
            return

        raise FallbackExhaustedError(
            failures, hint="Start a local runtime or configure a cloud API key."
        )

    def _abandon(
        self,
        chain: list[Candidate],
        index: int,
        error: ProviderError,
        failures: list[tuple[str, BaseException]],
    ) -> None:
        candidate = chain[index]
        failures.append((candidate.selector, error))
        self.health.record_failure(candidate.provider, error)
        log_fallback(candidate, str(error), chain[index + 1] if index + 1 < len(chain) else None)

    # -------------------------------------------------------------- discovery

    async def list_providers(self, *, force: bool = False) -> list[ProviderStatus]:
        """Availability of every configured provider."""
        return await self.health.check_all(force=force)

    async def list_models(self, provider: str | None = None) -> list[ModelInfo]:
        """Models of one provider, or of every available provider."""
        if provider is not None:
            return await self.get_provider(provider).list_models()

        names = await self.health.healthy_providers()
        results = await asyncio.gather(
            *(self.get_provider(n).list_models() for n in names),
            return_exceptions=True,
        )
        models: list[ModelInfo] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("Listing models for %s failed: %s", name, result)
                continue
            models.extend(result)
        return models

    async def aclose(self) -> None:
        """Close every adapter created or registered with this router."""
        providers, self._providers = self._providers, {}
        for name, provider in providers.items():
            try:
                await provider.aclose()
            except Exception as e:
                logger.warning("Failed to close provider %s: %s", name, e)


def _missing_feature(capability: ModelCapability, request: RouteRequest) -> str | None:
    if any(m.images for m in request.conversation) and not capability.supports_vision:
        return "vision"
    if request.tools and not capability.supports_tools:
        return "tools"
    return None


def _split_reasoning(response: CanonicalResponse, capability: ModelCapability) -> CanonicalResponse:
    """Move inline reasoning out of a complete response's content."""
    if capability.reasoning.type != "pattern" or not isinstance(response.message.content, str):
        return response
    thoughts, content = separate_reasoning(response.message.content, capability.reasoning)
    if thoughts is None:
        return response
    reasoning = "\n\n".join(r for r in (response.reasoning, thoughts) if r)
    message = replace(response.message, content=content)
    return replace(response, message=message, reasoning=reasoning)

