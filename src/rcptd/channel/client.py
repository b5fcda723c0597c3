"""
Unprivileged end of the privilege-separation channel.

[ChannelClient][rcptd.channel.client.ChannelClient] multiplexes any number
of concurrent queries over a single stream connection. Each request gets a
fresh id and a future; a background reader task routes every response to
the future with the matching id, so no caller ever sees another caller's
answer even when the resolver replies out of order.

The client either connects to the resolver's Unix socket (split mode, with
automatic reconnection on the next request after a failure) or wraps one
end of a ``socketpair`` inherited across ``fork`` (fork mode, single use).
"""

from __future__ import annotations

import asyncio
import itertools
import socket
from pathlib import Path
from types import TracebackType
from typing import Self

from rcptd.core.exceptions import ChannelProtocolError, PrivilegeChannelError
from rcptd.core.logger import Logger
from rcptd.models import Verdict

from .configs import ChannelClientConfig
from .protocol import ChannelRequest, decode_response, encode_request


class ChannelClient:
    """Multiplexing client for the resolver channel.

    Args:
        config: Socket path, connect timeout and frame limit.
        sock: Connected socket (fork mode). When given, ``config.path`` is
            ignored and the client cannot reconnect once the socket closes.

    Examples:
        ```python
        async with ChannelClient(ChannelClientConfig(path=Path("/run/rcptd/resolver.sock"))) as client:
            verdict = await client.query("bob@example.com")
        ```
    """

    def __init__(
        self,
        config: ChannelClientConfig | None = None,
        *,
        sock: socket.socket | None = None,
    ) -> None:
        self._config = config or ChannelClientConfig()
        self._sock = sock
        self._sock_used = False
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._pending: dict[int, asyncio.Future[Verdict]] = {}
        self._ids = itertools.count(1)
        self._connect_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._logger = Logger("rcptd.channel.client")

    @property
    def path(self) -> Path:
        return self._config.path

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection if it is not already open.

        Raises:
            PrivilegeChannelError: If the resolver cannot be reached.
        """
        async with self._connect_lock:
            if self.is_connected:
                return
            limit = self._config.max_frame_size
            try:
                if self._sock is not None:
                    if self._sock_used:
                        raise PrivilegeChannelError("Inherited channel socket is closed")
                    self._sock_used = True
                    reader, writer = await asyncio.open_unix_connection(sock=self._sock, limit=limit)
                else:
                    reader, writer = await asyncio.wait_for(
                        asyncio.open_unix_connection(str(self._config.path), limit=limit),
                        timeout=self._config.connect_timeout,
                    )
            except (OSError, TimeoutError) as e:
                raise PrivilegeChannelError(
                    f"Cannot reach resolver at {self._config.path}: {e or type(e).__name__}"
                ) from e

            self._reader, self._writer = reader, writer
            self._reader_task = asyncio.create_task(self._read_loop(reader))
            self._logger.info("channel_connected", path=str(self._config.path))

    async def close(self) -> None:
        """Close the connection and fail every pending request."""
        writer, task = self._writer, self._reader_task
        self._writer = self._reader = None
        self._reader_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
        self._fail_pending(PrivilegeChannelError("Channel closed"))

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _fail_pending(self, error: PrivilegeChannelError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        max_frame_size = self._config.max_frame_size
        error = PrivilegeChannelError("Resolver closed the channel")
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    response = decode_response(line, max_frame_size)
                except ChannelProtocolError as e:
                    self._logger.warning("channel_bad_response", error=str(e))
                    if e.request_id is not None and e.request_id in self._pending:
                        future = self._pending.pop(e.request_id)
                        if not future.done():
                            future.set_exception(e)
                    continue
                if response.id is None:
                    self._logger.warning("channel_unattributed_response", reason=response.reason)
                    continue
                future = self._pending.pop(response.id, None)
                if future is not None and not future.done():
                    future.set_result(response.to_verdict())
        except (OSError, ValueError) as e:
            error = PrivilegeChannelError(f"Channel read failed: {e}")
        finally:
            if self._reader is reader:
                writer = self._writer
                self._writer = self._reader = None
                if writer is not None:
                    writer.close()
            self._fail_pending(error)
        self._logger.warning("channel_disconnected", error=str(error))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def query(self, address: str, hint: str | None = None) -> Verdict:
        """Ask the resolver about one address.

        Raises:
            PrivilegeChannelError: If the channel is unreachable or breaks
                before the answer arrives.
        """
        await self.connect()
        writer = self._writer
        if writer is None:
            raise PrivilegeChannelError("Channel is not connected")

        request_id = next(self._ids)
        frame = encode_request(ChannelRequest(request_id, address, hint), self._config.max_frame_size)
        future: asyncio.Future[Verdict] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            async with self._write_lock:
                writer.write(frame)
                await writer.drain()
            return await future
        except OSError as e:
            raise PrivilegeChannelError(f"Channel write failed: {e}") from e
        finally:
            self._pending.pop(request_id, None)
