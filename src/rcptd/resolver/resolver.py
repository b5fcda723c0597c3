"""
Resolver: the unit served across the privilege channel.

Puts the [QueryCache][rcptd.resolver.cache.QueryCache] in front of the
[DecisionEngine][rcptd.resolver.engine.DecisionEngine], coalesces
concurrent queries for the same address into one in-flight resolution, and
bounds every query by ``request_timeout``. A query that overruns its
deadline is answered ``Deferred(timeout)`` while the shielded resolution
keeps running and still populates the cache for the next caller.

Each query captures one Config Store snapshot up front; the verdict is
computed and cached against that snapshot's generation even if a reload
happens mid-flight.
"""

from __future__ import annotations

import asyncio
from collections.abc import Hashable
from typing import Any

from rcptd.core.logger import Logger
from rcptd.models import Address, Reason, Verdict

from .cache import QueryCache
from .config_store import ConfigSnapshot, ConfigStore
from .configs import ResolverConfig
from .engine import DecisionEngine


class Resolver:
    """Cached, coalescing, deadline-bounded front end to the Decision Engine.

    Args:
        store: Loaded Config Store.
        engine: Decision Engine; built from ``store`` and ``config`` if omitted.
        cache: Query Cache; built from ``config.cache`` if omitted and
            caching is enabled.
        config: Resolver settings.
    """

    def __init__(
        self,
        store: ConfigStore,
        engine: DecisionEngine | None = None,
        cache: QueryCache | None = None,
        config: ResolverConfig | None = None,
    ) -> None:
        self._config = config or ResolverConfig()
        self._store = store
        self._engine = engine or DecisionEngine(store, config=self._config)
        if cache is None and self._config.cache.enabled:
            cache = QueryCache.from_config(self._config.cache)
        self._cache = cache
        self._inflight: dict[Hashable, asyncio.Task[Verdict]] = {}
        self._logger = Logger("rcptd.resolver")
        self._queries = 0
        self._cache_hits = 0
        self._coalesced = 0
        self._timeouts = 0

    @property
    def config(self) -> ResolverConfig:
        return self._config

    @property
    def store(self) -> ConfigStore:
        return self._store

    @property
    def cache(self) -> QueryCache | None:
        return self._cache

    def parse(self, raw: str, hint: str | None = None) -> Address:
        """Parse ``raw`` with this resolver's case rules.

        Raises:
            ValueError: If the address is malformed.
        """
        return Address.parse(
            raw, hint=hint, case_sensitive=self._config.case_sensitive_local_part
        )

    async def resolve_raw(self, raw: str, hint: str | None = None) -> Verdict:
        """Parse and resolve; a malformed address is Undeliverable, never an error."""
        try:
            address = self.parse(raw, hint)
        except ValueError:
            return Verdict.undeliverable(Reason.MALFORMED_ADDRESS)
        return await self.resolve(address)

    async def resolve(self, address: Address) -> Verdict:
        """Answer one query within ``request_timeout``."""
        if not self._config.case_sensitive_local_part:
            lowered = address.local_part.lower()
            if lowered != address.local_part:
                address = Address(lowered, address.domain, address.hint)

        self._queries += 1
        snapshot = self._store.snapshot
        key = address.key

        if self._cache is not None:
            cached = self._cache.get(key, snapshot.generation)
            if cached is not None:
                self._cache_hits += 1
                return cached

        flight_key = (key, snapshot.generation)
        task = self._inflight.get(flight_key)
        if task is None:
            task = asyncio.create_task(self._compute(address, snapshot))
            self._inflight[flight_key] = task
            task.add_done_callback(lambda t: self._finished(flight_key, t))
        else:
            self._coalesced += 1

        try:
            return await asyncio.wait_for(
                asyncio.shield(task), timeout=self._config.request_timeout
            )
        except TimeoutError:
            self._timeouts += 1
            self._logger.warning(
                "request_deferred",
                address=str(address),
                reason=Reason.TIMEOUT,
                timeout=self._config.request_timeout,
            )
            return Verdict.deferred(Reason.TIMEOUT)

    async def _compute(self, address: Address, snapshot: ConfigSnapshot) -> Verdict:
        verdict = await self._engine.decide(address, snapshot)
        if self._cache is not None:
            self._cache.put(address.key, verdict, snapshot.generation)
        return verdict

    def _finished(self, flight_key: Hashable, task: asyncio.Task[Verdict]) -> None:
        if self._inflight.get(flight_key) is task:
            del self._inflight[flight_key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("resolution_failed", error=str(exc), error_type=type(exc).__name__)

    async def close(self) -> None:
        """Cancel in-flight resolutions (used on shutdown)."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

    def stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {
            "queries": self._queries,
            "cache_hits": self._cache_hits,
            "coalesced": self._coalesced,
            "timeouts": self._timeouts,
            "inflight": len(self._inflight),
        }
        if self._cache is not None:
            cache_stats = self._cache.stats()
            stats["cache_size"] = cache_stats.size
            stats["cache_evictions"] = cache_stats.evictions
        return stats
