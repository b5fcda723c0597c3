"""Privilege channel configuration models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from .protocol import MAX_FRAME_SIZE


DEFAULT_SOCKET_PATH = Path("/run/rcptd/resolver.sock")


class ChannelServerConfig(BaseModel):
    """Privileged side of the channel.

    Attributes:
        path: Unix socket the resolver listens on (split mode).
        mode: Permission bits applied to the socket.
        group: Group owning the socket, so the listener's group can connect.
        max_frame_size: Longest accepted frame in bytes.
    """

    path: Path = DEFAULT_SOCKET_PATH
    mode: int = Field(default=0o660, ge=0, le=0o777)
    group: str | None = None
    max_frame_size: int = Field(default=MAX_FRAME_SIZE, ge=512, le=65536)


class ChannelClientConfig(BaseModel):
    """Unprivileged side of the channel.

    Attributes:
        path: Unix socket of the resolver (split mode).
        connect_timeout: Seconds allowed for (re)connecting.
        max_frame_size: Longest accepted frame in bytes.
    """

    path: Path = DEFAULT_SOCKET_PATH
    connect_timeout: float = Field(default=2.0, gt=0, le=60.0)
    max_frame_size: int = Field(default=MAX_FRAME_SIZE, ge=512, le=65536)


class PrivilegesConfig(BaseModel):
    """Account the listener switches to after binding its socket.

    Attributes:
        user: Unprivileged user name; ``None`` keeps the current identity.
        group: Group name; defaults to the user's primary group.
    """

    user: str | None = "qmaild"
    group: str | None = None
