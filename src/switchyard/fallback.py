"""Fallback chain construction.

Only connection-class failures move a request down the chain. Everything
else (bad requests, refusals, tool errors) surfaces to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from switchyard.errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

CLOUD_DEFAULT = "gemini"

#: Which provider to try after each one.
SECONDARY: dict[str, str] = {
    "ollama": "lmstudio",
    "lmstudio": "ollama",
    "gemini": "ollama",
    "openai": "ollama",
}


@dataclass(frozen=True)
class Candidate:
    """One ``provider:model`` entry of a fallback chain."""

    provider: str
    model: str

    @property
    def selector(self) -> str:
        return f"{self.provider}:{self.model}"


def is_fallback_trigger(exc: BaseException) -> bool:
    """Whether *exc* is a connection-class failure."""
    return isinstance(exc, ProviderError) and exc.connection


def build_chain(
    requested: Candidate,
    *,
    default_model: Callable[[str], str],
    available: Iterable[str],
    overrides: Iterable[Candidate] | None = None,
    enabled: bool = True,
) -> list[Candidate]:
    """Return ``[requested, secondary, cloud-default]`` without duplicates.

    Fallback entries use each provider's default model. Explicit *overrides*
    replace the default tail; an empty override disables fallback.
    """
    if not enabled:
        return [requested]
    allowed = set(available)
    if overrides is not None:
        tail = [c for c in overrides if c.provider in allowed]
    else:
        tail = [
            Candidate(name, default_model(name))
            for name in (SECONDARY.get(requested.provider), CLOUD_DEFAULT)
            if name is not None and name in allowed
        ]

    chain = [requested]
    seen = {requested.provider} if overrides is None else {requested.selector}
    for candidate in tail:
        key = candidate.provider if overrides is None else candidate.selector
        if key in seen:
            continue
        seen.add(key)
        chain.append(candidate)
    return chain


def log_fallback(abandoned: Candidate, reason: str, selected: Candidate | None) -> None:
    """Warn that *abandoned* was dropped, and what comes next."""
    if selected is None:
        logger.warning("Abandoning %s (%s); no providers left", abandoned.selector, reason)
    else:
        logger.warning(
            "Abandoning %s (%s); falling back to %s",
            abandoned.selector,
            reason,
            selected.selector,
        )
