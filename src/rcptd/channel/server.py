"""
Privileged end of the privilege-separation channel.

[ChannelServer][rcptd.channel.server.ChannelServer] reads request frames,
answers each with the [Resolver][rcptd.resolver.Resolver] in its own task,
and writes responses as they complete, so a slow lookup never blocks the
answers queued behind it. Writes to one connection are serialized with a
lock. A malformed frame is answered with ``undeliverable`` /
``malformed-request`` and the connection stays open.
"""

from __future__ import annotations

import asyncio
import contextlib
import grp
import os
import socket

from rcptd.core.exceptions import ChannelProtocolError
from rcptd.core.logger import Logger
from rcptd.models import Reason, Verdict
from rcptd.resolver import Resolver

from .configs import ChannelServerConfig
from .protocol import ChannelResponse, decode_request, encode_response, read_line


class ChannelServer:
    """Serves the Resolver on a Unix socket or an inherited socketpair end.

    Args:
        resolver: The Resolver answering queries.
        config: Socket path, permissions and frame limit.
    """

    def __init__(self, resolver: Resolver, config: ChannelServerConfig | None = None) -> None:
        self._resolver = resolver
        self._config = config or ChannelServerConfig()
        self._server: asyncio.Server | None = None
        self._connections: set[asyncio.Task[None]] = set()
        self._logger = Logger("rcptd.channel.server")

    @property
    def connections(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        """Listen on ``config.path``, replacing a stale socket file.

        Raises:
            OSError: If the socket cannot be bound.
        """
        path = self._config.path
        path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(FileNotFoundError):
            path.unlink()

        self._server = await asyncio.start_unix_server(
            self._handle, path=str(path), limit=self._config.max_frame_size
        )
        os.chmod(path, self._config.mode)
        if self._config.group is not None:
            os.chown(path, -1, grp.getgrnam(self._config.group).gr_gid)
        self._logger.info("channel_listening", path=str(path), mode=oct(self._config.mode))

    async def serve_socket(self, sock: socket.socket) -> None:
        """Serve one already-connected socket (fork mode) in the background."""
        reader, writer = await asyncio.open_unix_connection(
            sock=sock, limit=self._config.max_frame_size
        )
        self._track(asyncio.create_task(self._serve(reader, writer)))
        self._logger.info("channel_attached", fd=sock.fileno())

    async def stop(self) -> None:
        """Stop accepting, then cancel every open connection."""
        server, self._server = self._server, None
        if server is not None:
            server.close()
        tasks = list(self._connections)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if server is not None:
            await server.wait_closed()
            with contextlib.suppress(FileNotFoundError):
                self._config.path.unlink()

    def _track(self, task: asyncio.Task[None]) -> None:
        self._connections.add(task)
        task.add_done_callback(self._connections.discard)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._track(task)
        await self._serve(reader, writer)

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        write_lock = asyncio.Lock()
        pending: set[asyncio.Task[None]] = set()
        try:
            while True:
                try:
                    line = await read_line(reader)
                except OSError as e:
                    self._logger.warning("channel_read_failed", error=str(e))
                    break
                if line is None:
                    await self._send(writer, write_lock, ChannelResponse.malformed(None))
                    continue
                if not line:
                    break
                task = asyncio.create_task(self._answer(line, writer, write_lock))
                pending.add(task)
                task.add_done_callback(pending.discard)
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        finally:
            for task in pending:
                task.cancel()
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
            self._logger.debug("channel_connection_closed")

    async def _answer(
        self,
        line: bytes,
        writer: asyncio.StreamWriter,
        write_lock: asyncio.Lock,
    ) -> None:
        try:
            request = decode_request(line, self._config.max_frame_size)
        except ChannelProtocolError as e:
            self._logger.warning("channel_malformed_request", error=str(e), id=e.request_id)
            await self._send(writer, write_lock, ChannelResponse.malformed(e.request_id))
            return

        try:
            verdict = await self._resolver.resolve_raw(request.address, request.hint)
        except Exception as e:  # Intentionally broad: error boundary for one channel request
            self._logger.error(
                "channel_request_failed", error=str(e), error_type=type(e).__name__
            )
            verdict = Verdict.deferred(Reason.BACKEND_ERROR)
        await self._send(writer, write_lock, ChannelResponse.from_verdict(request.id, verdict))

    async def _send(
        self,
        writer: asyncio.StreamWriter,
        write_lock: asyncio.Lock,
        response: ChannelResponse,
    ) -> None:
        frame = encode_response(response, self._config.max_frame_size)
        async with write_lock:
            if writer.is_closing():
                return
            try:
                writer.write(frame)
                await writer.drain()
            except OSError as e:
                self._logger.debug("channel_write_failed", error=str(e))
