"""Provider health monitor with a short-lived, coalesced status cache."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from switchyard._singleflight import SingleFlightCache
from switchyard.errors import SwitchyardError
from switchyard.providers.registry import PROVIDERS
from switchyard.types import ProviderStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from switchyard.providers.base import Provider

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Lazily probes providers and caches ``ProviderStatus`` per provider.

    Concurrent checks for one provider share a single probe. Cached entries
    are replaced whole after the probe finishes; readers never wait on it.
    """

    def __init__(
        self,
        get_provider: Callable[[str], Provider],
        names: Iterable[str],
        *,
        ttl_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        include_models: bool = True,
    ) -> None:
        """Create a monitor over *names*; adapters come from *get_provider*."""
        self._get_provider = get_provider
        self.names = tuple(names)
        self.include_models = include_models
        self._cache: SingleFlightCache[str, ProviderStatus] = SingleFlightCache(
            ttl_s=ttl_s, clock=clock
        )

    async def check_one(self, name: str, *, force: bool = False) -> ProviderStatus:
        """Return the cached status for *name*, probing on miss or expiry."""
        cached = None if force else self._cache.get(name)
        if cached is not None:
            logger.debug("Health cache hit for %s", name)
            return cached
        return await self._cache.get_or_load(name, lambda: self._probe(name), force=force)

    async def check_all(self, *, force: bool = False) -> list[ProviderStatus]:
        """Check every configured provider concurrently."""
        return list(
            await asyncio.gather(*(self.check_one(n, force=force) for n in self.names))
        )

    async def healthy_providers(self) -> list[str]:
        """Names of providers currently reachable, in configured order."""
        return [s.provider for s in await self.check_all() if s.available]

    def cached(self, name: str) -> ProviderStatus | None:
        """Cached status without probing (None when missing or expired)."""
        return self._cache.get(name)

    def record_failure(self, name: str, error: BaseException | str) -> ProviderStatus:
        """Mark *name* unavailable after a failed call."""
        status = ProviderStatus(
            provider=name,
            available=False,
            error=str(error),
            hint=getattr(error, "hint", None) or _start_hint(name),
            checked_at=time.time(),
        )
        self._cache.set(name, status)
        return status

    def clear(self, name: str | None = None) -> None:
        """Forget cached status for one provider, or for all."""
        self._cache.clear(name)

    async def _probe(self, name: str) -> ProviderStatus:
        logger.debug("Probing provider %s", name)
        started = time.perf_counter()
        try:
            provider = self._get_provider(name)
            available = await provider.is_available()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._unavailable(name, f"{type(e).__name__}: {e}", started, e)

        if not available:
            return self._unavailable(name, provider.last_error, started)

        models: tuple[str, ...] = ()
        if self.include_models:
            try:
                models = tuple(m.id for m in await provider.list_models())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("Model listing for %s failed: %s", name, e)
        elapsed = time.perf_counter() - started
        logger.debug("Provider %s available (%.2fs, %d models)", name, elapsed, len(models))
        return ProviderStatus(
            provider=name,
            available=True,
            models=models,
            checked_at=time.time(),
            response_time_s=elapsed,
        )

    def _unavailable(
        self,
        name: str,
        error: str | None,
        started: float,
        exc: BaseException | None = None,
    ) -> ProviderStatus:
        hint = exc.hint if isinstance(exc, SwitchyardError) else None
        logger.debug("Provider %s unavailable: %s", name, error)
        return ProviderStatus(
            provider=name,
            available=False,
            error=error or "unreachable",
            hint=hint or _start_hint(name),
            checked_at=time.time(),
            response_time_s=time.perf_counter() - started,
        )


def _start_hint(name: str) -> str | None:
    spec = PROVIDERS.get(name)
    return spec.start_hint if spec is not None else None
