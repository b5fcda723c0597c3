"""
Unprivileged query listener service.

Accepts recipient queries from the SMTP daemon on TCP, a Unix stream socket
or UDP, validates them, forwards them to the privileged resolver through a
[ChannelClient][rcptd.channel.client.ChannelClient], and writes exactly
one response per query. Malformed input is answered
``UNDELIVERABLE malformed-address``; it never crashes the process or stalls
a connection.

Lifecycle:
    1. ``__aenter__``: bind the listening socket, drop root privileges,
       connect the channel (failure is logged; the client retries per
       request).
    2. ``run()``: log per-cycle query statistics and update Prometheus
       counters.
    3. ``__aexit__``: close the listening socket and the channel.

See Also:
    [Resolverd][rcptd.services.resolverd.Resolverd]: The peer process.
    [protocol][rcptd.services.listener.protocol]: Request and response
        line format.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import time
from collections import Counter
from typing import TYPE_CHECKING, Any, ClassVar

from rcptd.channel.client import ChannelClient
from rcptd.channel.privileges import drop_privileges
from rcptd.channel.protocol import read_line
from rcptd.core.base_service import BaseService
from rcptd.core.exceptions import PrivilegeChannelError
from rcptd.models import Address, Reason, Verdict
from rcptd.models.constants import ServiceName

from .configs import ListenerConfig
from .protocol import format_response, parse_request


if TYPE_CHECKING:
    import socket
    from types import TracebackType


_CYCLE_STATS = ("deliverable", "undeliverable", "deferred", "malformed", "channel_errors")


class _DatagramProtocol(asyncio.DatagramProtocol):
    """One query per datagram, answered to the sender."""

    def __init__(self, listener: Listener) -> None:
        self._listener = listener
        self._transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self._listener._spawn(self._reply(data, addr))

    async def _reply(self, data: bytes, addr: Any) -> None:
        response = await self._listener.answer(data)
        if self._transport is not None and not self._transport.is_closing():
            self._transport.sendto(response.encode() + b"\n", addr)


class Listener(BaseService[ListenerConfig]):
    """Unprivileged half of rcptd.

    Args:
        config: Service configuration.
        client: Channel client override (tests).
        channel_socket: Connected socketpair end (fork mode).
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.LISTENER
    CONFIG_CLASS: ClassVar[type[ListenerConfig]] = ListenerConfig

    def __init__(
        self,
        config: ListenerConfig | None = None,
        *,
        client: ChannelClient | None = None,
        channel_socket: socket.socket | None = None,
    ) -> None:
        super().__init__(config)
        self._client = client or ChannelClient(self._config.channel, sock=channel_socket)
        self._server: asyncio.Server | None = None
        self._datagram: asyncio.DatagramTransport | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._counts: Counter[str] = Counter()
        self._connections = 0

    @property
    def sockets(self) -> list[Any]:
        """Bound listening sockets (useful with port 0)."""
        if self._server is not None:
            return list(self._server.sockets)
        if self._datagram is not None:
            return [self._datagram.get_extra_info("socket")]
        return []

    async def __aenter__(self) -> Listener:
        await super().__aenter__()
        await self._bind()

        privileges = self._config.privileges
        drop_privileges(privileges.user, privileges.group)

        try:
            await self._client.connect()
        except PrivilegeChannelError as e:
            self._logger.critical("channel_unavailable", error=str(e))
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        if self._server is not None:
            self._server.close()
        if self._datagram is not None:
            self._datagram.close()
            self._datagram = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._server is not None:
            await self._server.wait_closed()
            self._server = None
            if self._config.transport == "unix":
                with contextlib.suppress(FileNotFoundError):
                    self._config.path.unlink()
        await self._client.close()
        self._logger.info("listener_stopped")
        await super().__aexit__(_exc_type, _exc_val, _exc_tb)

    async def _bind(self) -> None:
        config = self._config
        limit = config.max_line_length
        if config.transport == "tcp":
            self._server = await asyncio.start_server(
                self._handle_stream, config.host, config.port, limit=limit
            )
        elif config.transport == "unix":
            with contextlib.suppress(FileNotFoundError):
                config.path.unlink()
            self._server = await asyncio.start_unix_server(
                self._handle_stream, path=str(config.path), limit=limit
            )
            os.chmod(config.path, config.socket_mode)
        else:
            loop = asyncio.get_running_loop()
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramProtocol(self), local_addr=(config.host, config.port)
            )
            self._datagram = transport  # type: ignore[assignment]

        self._logger.info(
            "listener_started",
            transport=config.transport,
            address=str(config.path) if config.transport == "unix" else f"{config.host}:{config.port}",
        )

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -------------------------------------------------------------------------
    # Query Handling
    # -------------------------------------------------------------------------

    async def answer(self, raw: bytes) -> str:
        """Answer one raw request line or datagram with one response line."""
        started = time.monotonic()
        verdict = await self._verdict_for(raw)
        self._counts[str(verdict.status)] += 1
        self.observe_query(str(verdict.status), time.monotonic() - started)
        return format_response(verdict)

    async def _verdict_for(self, raw: bytes) -> Verdict:
        line = raw.rstrip(b"\r\n")
        if len(line) > self._config.max_line_length:
            self._counts["malformed"] += 1
            return Verdict.undeliverable(Reason.MALFORMED_ADDRESS)
        try:
            address, hint = parse_request(line.decode("utf-8"))
            Address.parse(address, hint=hint, case_sensitive=True)
        except ValueError:
            # UnicodeDecodeError is a ValueError too.
            self._counts["malformed"] += 1
            return Verdict.undeliverable(Reason.MALFORMED_ADDRESS)

        try:
            return await asyncio.wait_for(
                self._client.query(address, hint), timeout=self._config.request_timeout
            )
        except TimeoutError:
            self._logger.warning("request_deferred", address=address, reason=Reason.TIMEOUT)
            return Verdict.deferred(Reason.TIMEOUT)
        except PrivilegeChannelError as e:
            self._counts["channel_errors"] += 1
            self._logger.critical("channel_unavailable", error=str(e))
            return Verdict.deferred(Reason.CHANNEL_UNAVAILABLE)

    async def _handle_stream(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        peer = writer.get_extra_info("peername")
        logger = self._logger.bind(peer=str(peer) if peer else "local")
        self._connections += 1
        try:
            while self.is_running:
                try:
                    line = await asyncio.wait_for(
                        read_line(reader), timeout=self._config.idle_timeout
                    )
                except TimeoutError:
                    logger.debug("connection_idle_timeout")
                    break
                if line is None:
                    self._counts["malformed"] += 1
                    response = format_response(Verdict.undeliverable(Reason.MALFORMED_ADDRESS))
                elif not line:
                    break
                else:
                    response = await self.answer(line)
                writer.write(response.encode() + b"\n")
                await writer.drain()
        except (ConnectionError, OSError) as e:
            logger.debug("connection_error", error=str(e))
        finally:
            self._connections -= 1
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()

    # -------------------------------------------------------------------------
    # Maintenance Cycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Log per-cycle query statistics and update Prometheus counters."""
        counts, self._counts = self._counts, Counter()
        stats = {name: counts.get(name, 0) for name in _CYCLE_STATS}
        self._logger.info(
            "cycle_stats",
            connections=self._connections,
            channel_connected=self._client.is_connected,
            **stats,
        )
        for name, value in counts.items():
            self.inc_counter(f"queries_{name}", value)
        self.set_gauge("connections", self._connections)
        self.set_gauge("channel_connected", int(self._client.is_connected))
