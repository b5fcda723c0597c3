"""Listener service configuration models.

See Also:
    [Listener][rcptd.services.listener.Listener]: The service class that
        consumes these configurations.
    [BaseServiceConfig][rcptd.core.base_service.BaseServiceConfig]: Base
        class providing ``interval``, ``max_consecutive_failures``, and
        ``metrics`` fields.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator

from rcptd.channel.configs import ChannelClientConfig, PrivilegesConfig
from rcptd.core.base_service import BaseServiceConfig
from rcptd.core.metrics import MetricsConfig


def _default_metrics() -> MetricsConfig:
    return MetricsConfig(port=9326)


class ListenerConfig(BaseServiceConfig):
    """Configuration for the unprivileged query listener.

    Attributes:
        transport: ``tcp`` or ``unix`` (one query per line, pipelining
            allowed) or ``udp`` (one query per datagram).
        host: Bind address for ``tcp`` and ``udp``.
        port: Port for ``tcp`` and ``udp``.
        path: Socket path for ``unix``.
        socket_mode: Permission bits of the ``unix`` socket.
        request_timeout: Seconds before a query is answered ``DEFERRED timeout``.
        idle_timeout: Seconds a stream connection may stay silent.
        max_line_length: Longest accepted request line in bytes.
        channel: Connection to the resolver process.
        privileges: Account switched to after binding.
    """

    transport: Literal["tcp", "unix", "udp"] = "tcp"
    host: str = Field(default="127.0.0.1", min_length=1, description="Bind address")
    port: int = Field(default=10025, ge=1, le=65535, description="Listen port")
    path: Path = Path("/run/rcptd/query.sock")
    socket_mode: int = Field(default=0o666, ge=0, le=0o777)
    request_timeout: float = Field(default=5.0, gt=0, le=120.0)
    idle_timeout: float = Field(default=60.0, gt=0, le=3600.0)
    max_line_length: int = Field(default=1024, ge=128, le=65536)
    channel: ChannelClientConfig = Field(default_factory=ChannelClientConfig)
    privileges: PrivilegesConfig = Field(default_factory=PrivilegesConfig)
    metrics: MetricsConfig = Field(default_factory=_default_metrics)

    @model_validator(mode="after")
    def _validate_frame_fits(self) -> ListenerConfig:
        if self.max_line_length + 64 > self.channel.max_frame_size:
            msg = (
                f"max_line_length ({self.max_line_length}) does not fit in a "
                f"channel frame ({self.channel.max_frame_size} bytes)"
            )
            raise ValueError(msg)
        return self
