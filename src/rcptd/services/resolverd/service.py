"""
Privileged resolver service.

Owns the [ConfigStore][rcptd.resolver.config_store.ConfigStore], the
[Resolver][rcptd.resolver.resolver.Resolver] (Query Cache + Decision
Engine) and the [ChannelServer][rcptd.channel.server.ChannelServer] that
answers the unprivileged listener. It is the only process that reads users'
home directories.

Lifecycle:
    1. ``__aenter__``: load the Config Store (fatal on error), build the
       Resolver, start serving the channel on a Unix socket or on the
       inherited socketpair end.
    2. ``run()``: reload when backing data changed, purge expired cache
       entries, log statistics and update gauges.
    3. ``request_reload()`` (SIGHUP): reload as soon as possible instead of
       waiting for the next cycle.
    4. ``__aexit__``: stop the channel and cancel in-flight resolutions.

See Also:
    [Listener][rcptd.services.listener.Listener]: The peer process.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, ClassVar

from rcptd.channel.server import ChannelServer
from rcptd.core.base_service import BaseService
from rcptd.models.constants import ServiceName
from rcptd.resolver import ConfigStore, DecisionEngine, Resolver

from .configs import ResolverdConfig


if TYPE_CHECKING:
    import socket
    from types import TracebackType

    from rcptd.resolver.backends import DotFileStorage


class Resolverd(BaseService[ResolverdConfig]):
    """Privileged half of rcptd.

    Args:
        config: Service configuration.
        channel_socket: Connected socketpair end (fork mode). When omitted
            the channel is served on ``config.channel.path``.
        store: Pre-built Config Store (tests); built from
            ``config.delivery`` otherwise.
        storage: Dot-file storage override (tests).
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.RESOLVERD
    CONFIG_CLASS: ClassVar[type[ResolverdConfig]] = ResolverdConfig

    def __init__(
        self,
        config: ResolverdConfig | None = None,
        *,
        channel_socket: socket.socket | None = None,
        store: ConfigStore | None = None,
        storage: DotFileStorage | None = None,
    ) -> None:
        super().__init__(config)
        self._store = store or ConfigStore(self._config.delivery)
        engine = DecisionEngine(self._store, storage, self._config.resolver)
        self._resolver = Resolver(self._store, engine, config=self._config.resolver)
        self._channel = ChannelServer(self._resolver, self._config.channel)
        self._channel_socket = channel_socket
        self._reload_event = asyncio.Event()
        self._reload_task: asyncio.Task[None] | None = None
        self._reload_lock = asyncio.Lock()

    @property
    def store(self) -> ConfigStore:
        return self._store

    @property
    def resolver(self) -> Resolver:
        return self._resolver

    async def __aenter__(self) -> Resolverd:
        await super().__aenter__()

        snapshot = await asyncio.to_thread(self._store.load)
        self.set_gauge("config_generation", snapshot.generation)

        if self._channel_socket is not None:
            await self._channel.serve_socket(self._channel_socket)
        else:
            await self._channel.start()

        self._reload_task = asyncio.create_task(self._reload_loop())
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        if self._reload_task is not None:
            self._reload_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reload_task
            self._reload_task = None
        await self._channel.stop()
        await self._resolver.close()
        self._logger.info("channel_stopped")
        await super().__aexit__(_exc_type, _exc_val, _exc_tb)

    # -------------------------------------------------------------------------
    # Reloading
    # -------------------------------------------------------------------------

    def request_reload(self) -> None:
        """Reload the configuration soon (safe from signal handlers)."""
        self._reload_event.set()

    async def _reload_loop(self) -> None:
        while True:
            await self._reload_event.wait()
            self._reload_event.clear()
            await self.reload(reason="signal")

    async def reload(self, reason: str = "manual") -> bool:
        """Reload the Config Store in a worker thread.

        Returns:
            True if a new generation is active.
        """
        async with self._reload_lock:
            previous = self._store.generation
            ok = await asyncio.to_thread(self._store.reload)
            if not ok:
                self.inc_counter("config_reload_failures")
                return False

            generation = self._store.generation
            cache = self._resolver.cache
            dropped = cache.purge_expired(generation) if cache is not None else 0
            self.inc_counter("config_reloads")
            self.set_gauge("config_generation", generation)
            self._logger.info(
                "config_reloaded",
                reason=reason,
                previous_generation=previous,
                generation=generation,
                cache_dropped=dropped,
            )
            return True

    # -------------------------------------------------------------------------
    # Maintenance Cycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Reload on change, purge the cache and report statistics."""
        if await asyncio.to_thread(self._store.is_stale):
            await self.reload(reason="stale")

        purged = 0
        cache = self._resolver.cache
        if cache is not None:
            purged = cache.purge_expired(self._store.generation)

        stats = self._resolver.stats()
        self._logger.info(
            "cycle_stats",
            generation=self._store.generation,
            cache_purged=purged,
            connections=self._channel.connections,
            **stats,
        )
        for name, value in stats.items():
            self.set_gauge(name, value)
        self.set_gauge("channel_connections", self._channel.connections)
