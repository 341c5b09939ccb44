"""Mapping from SDK and transport exceptions to ``ProviderError``.

Every adapter funnels its failures through ``wrap_provider_error``. The
routing engine then decides between retry, fallback and surfacing from the
structured fields alone, never from message text.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
import re
import socket
from typing import TYPE_CHECKING, Any

import httpx

from switchyard._http import CONNECTION_STATUS_CODES, RETRYABLE_STATUS_CODES
from switchyard.errors import ProviderError, RateLimitError
from switchyard.providers.registry import PROVIDERS

if TYPE_CHECKING:
    from collections.abc import Iterator

# Nothing is listening. Read timeouts and protocol errors mean the server
# was reached, so they are not listed.
_UNREACHABLE: tuple[type[BaseException], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    ConnectionError,
    socket.gaierror,
)

# google.rpc.RetryInfo carries a protobuf Duration such as "8.35s".
_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


@dataclass(frozen=True)
class ErrorFacts:
    """What an exception chain says about a failed provider call."""

    status_code: int | None = None
    retry_after_s: float | None = None
    unreachable: bool = False

    @property
    def connection(self) -> bool:
        return self.unreachable or self.status_code in CONNECTION_STATUS_CODES

    @property
    def retriable(self) -> bool:
        return self.retry_after_s is not None or self.status_code in RETRYABLE_STATUS_CODES


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc*, then its causes and contexts breadth-first, each once."""
    queue: deque[BaseException] = deque([exc])
    seen: set[int] = set()
    while queue:
        current = queue.popleft()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        queue.extend(
            e for e in (current.__cause__, current.__context__) if e is not None
        )


def _http_status(e: BaseException) -> int | None:
    candidates = [getattr(e, attr, None) for attr in ("status_code", "status", "code")]
    candidates.append(getattr(getattr(e, "response", None), "status_code", None))
    for value in candidates:
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def _header_delay(e: BaseException) -> float | None:
    headers: Any = getattr(getattr(e, "response", None), "headers", None)
    if headers is None:
        return None
    raw = headers.get("Retry-After")
    if not isinstance(raw, str):
        return None
    try:
        seconds = float(raw.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _retry_info_delay(e: BaseException) -> float | None:
    details: Any = getattr(e, "details", None)
    error: Any = details.get("error") if isinstance(details, dict) else None
    if not isinstance(error, dict):
        return None
    for entry in error.get("details") or ():
        if not isinstance(entry, dict) or "RetryInfo" not in str(entry.get("@type", "")):
            continue
        match = _DURATION_RE.match(str(entry.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def _retry_delay(e: BaseException) -> float | None:
    value = getattr(e, "retry_after", None)
    if isinstance(value, (int, float)) and value >= 0:
        return float(value)
    delay = _header_delay(e)
    return delay if delay is not None else _retry_info_delay(e)


def inspect_error(exc: BaseException) -> ErrorFacts:
    """Collect status code, retry delay and reachability from *exc*'s chain.

    The outermost value of each fact wins.
    """
    status: int | None = None
    delay: float | None = None
    unreachable = False
    for e in _exception_chain(exc):
        if status is None:
            status = _http_status(e)
        if delay is None:
            delay = _retry_delay(e)
        unreachable = unreachable or isinstance(e, _UNREACHABLE)
    return ErrorFacts(status_code=status, retry_after_s=delay, unreachable=unreachable)


def _hint(provider: str, facts: ErrorFacts, cause: str) -> str | None:
    prefix = provider.upper()
    mentions_key = "api key" in cause.lower() or "api_key" in cause.lower()
    if facts.status_code in (401, 403) or (facts.status_code == 400 and mentions_key):
        return f"Check credentials (try setting {prefix}_API_KEY)."
    if facts.connection:
        spec = PROVIDERS.get(provider)
        if spec is not None and spec.start_hint:
            return spec.start_hint
        return f"Check that {prefix}_HOST points at a running server."
    if facts.status_code == 404:
        return f"Check the model name (or set {prefix}_MODEL)."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> ProviderError:
    """Return *exc* as a ``ProviderError`` carrying retry and fallback metadata.

    ``asyncio.CancelledError`` is re-raised untouched. An existing
    ``ProviderError`` only has its missing context filled in.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    if isinstance(exc, ProviderError):
        exc.provider = exc.provider or provider
        exc.phase = exc.phase or phase
        exc.hint = exc.hint or hint
        return exc

    facts = inspect_error(exc)
    cause = str(exc) or type(exc).__name__
    status_note = "" if facts.status_code is None else f" (status={facts.status_code})"
    err_cls = RateLimitError if facts.status_code == 429 else ProviderError
    return err_cls(
        f"{message or f'{provider} {phase} failed'}{status_note}: {cause}",
        provider=provider,
        cause=exc,
        retriable=facts.retriable,
        connection=facts.connection,
        status_code=facts.status_code,
        retry_after_s=facts.retry_after_s,
        phase=phase,
        hint=hint if hint is not None else _hint(provider, facts, cause),
    )
