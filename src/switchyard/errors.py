"""Exception hierarchy for Switchyard."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class SwitchyardError(Exception):
    """Base exception for all Switchyard errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(SwitchyardError):
    """Configuration validation or resolution failed."""


class TransformError(SwitchyardError):
    """Canonical input could not be translated to a wire dialect.

    Fatal for the request: never retried, never a fallback trigger.
    """


class ProviderError(SwitchyardError):
    """A provider call failed at the network or HTTP layer.

    ``retriable`` marks failures worth retrying against the same provider
    (429, 5xx). ``connection`` marks connection-class failures (unreachable
    host, refused connection, DNS failure, 503) which make the routing
    engine walk its fallback chain.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        cause: BaseException | None = None,
        retriable: bool = False,
        connection: bool = False,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        phase: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.cause = cause
        self.retriable = retriable
        self.connection = connection
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.phase = phase


class RateLimitError(ProviderError):
    """Rate limit exceeded (HTTP 429)."""


class CapabilityMismatchError(SwitchyardError):
    """The resolved model lacks a feature the request needs."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        model: str,
        feature: str,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.model = model
        self.feature = feature


class CancellationError(SwitchyardError):
    """The caller cancelled an in-progress stream."""


class FallbackExhaustedError(SwitchyardError):
    """Every provider in the fallback chain failed."""

    def __init__(
        self,
        failures: Sequence[tuple[str, BaseException]],
        *,
        hint: str | None = None,
    ) -> None:
        self.failures = tuple(failures)
        detail = "; ".join(f"{selector}: {err}" for selector, err in self.failures)
        super().__init__(
            f"All {len(self.failures)} providers failed ({detail})",
            hint=hint,
        )

