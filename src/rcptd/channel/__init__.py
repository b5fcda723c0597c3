"""Privilege-separation channel between the listener and the resolver.

The unprivileged [Listener][rcptd.services.listener.Listener] never touches
home directories; it forwards each query through a
[ChannelClient][rcptd.channel.client.ChannelClient] to the
[ChannelServer][rcptd.channel.server.ChannelServer] running inside the
privileged [Resolverd][rcptd.services.resolverd.Resolverd].

Attributes:
    ChannelClient: Multiplexing client (request id -> future).
    ChannelServer: Resolver-side frame server.
    drop_privileges: Switch to an unprivileged account after binding.
    MAX_FRAME_SIZE: Default frame limit in bytes.
    read_line: Line reader that swallows overlong lines whole.
"""

from .client import ChannelClient
from .configs import ChannelClientConfig, ChannelServerConfig, PrivilegesConfig
from .privileges import drop_privileges
from .protocol import (
    MAX_FRAME_SIZE,
    ChannelRequest,
    ChannelResponse,
    decode_request,
    decode_response,
    encode_request,
    encode_response,
    read_line,
)
from .server import ChannelServer


__all__ = [
    "MAX_FRAME_SIZE",
    "ChannelClient",
    "ChannelClientConfig",
    "ChannelRequest",
    "ChannelResponse",
    "ChannelServer",
    "ChannelServerConfig",
    "PrivilegesConfig",
    "decode_request",
    "decode_response",
    "drop_privileges",
    "encode_request",
    "encode_response",
    "read_line",
]
