"""rcptd exception hierarchy.

Provides typed exceptions for every error category so that callers can
tell client errors, transient backend trouble, and broken infrastructure
apart, while ``CancelledError`` propagates untouched.

Exception hierarchy:

```text
RcptdError (base -- never raised directly)
├── ConfigurationError        -- bad YAML, unreadable or corrupt backing data
├── MalformedAddress          -- client error, answered as Undeliverable
├── UnknownContext            -- hint names no configured context
├── BackendError              -- Local-User Source or dot-file storage failure
│   └── BackendTimeout        -- backend too slow, answered as Deferred
└── PrivilegeChannelError     -- privilege boundary unreachable or broken
    └── ChannelProtocolError  -- malformed frame on the channel
```

See Also:
    [DecisionEngine][rcptd.resolver.engine.DecisionEngine]: Converts every
        [BackendError][rcptd.core.exceptions.BackendError] into a verdict.
    [ConfigStore][rcptd.resolver.config_store.ConfigStore]: Raises
        [ConfigurationError][rcptd.core.exceptions.ConfigurationError] on
        load failures.
    [ChannelClient][rcptd.channel.client.ChannelClient]: Raises
        [PrivilegeChannelError][rcptd.core.exceptions.PrivilegeChannelError]
        when the resolver process cannot be reached.
"""

from __future__ import annotations


class RcptdError(Exception):
    """Base exception for all rcptd errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(RcptdError):
    """Invalid, missing, or unreadable configuration.

    Fatal at startup. On a runtime reload the Config Store logs it and keeps
    serving the previous snapshot.
    """


# ---------------------------------------------------------------------------
# Client input
# ---------------------------------------------------------------------------


class MalformedAddress(RcptdError, ValueError):
    """Recipient address cannot be parsed.

    Always answered with an Undeliverable-shaped response and never retried.
    """


class UnknownContext(RcptdError):
    """The query hint names no configured context.

    Answered as ``Undeliverable(unknown-context)``.
    """


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class BackendError(RcptdError):
    """A Local-User Source or dot-file storage lookup failed.

    See Also:
        [BackendTimeout][rcptd.core.exceptions.BackendTimeout]: Subclass
            for lookups that exceeded their deadline.
    """


class BackendTimeout(BackendError):
    """A backend lookup did not finish within ``backend_timeout``.

    Yields a Deferred verdict; retrying is the caller's decision.
    """


# ---------------------------------------------------------------------------
# Privilege channel
# ---------------------------------------------------------------------------


class PrivilegeChannelError(RcptdError):
    """The channel to the privileged resolver is unreachable or broken.

    Fatal for the affected request, which is answered as Deferred.
    """


class ChannelProtocolError(PrivilegeChannelError):
    """A frame on the privilege channel could not be decoded.

    Attributes:
        request_id: Id of the offending request when it could be recovered
            from the frame, otherwise ``None``.
    """

    def __init__(self, message: str, request_id: int | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id
