"""Shared constants for the models layer.

Defines the enumerations that travel between the resolver, the privilege
channel, and the query listener. Placing them here avoids circular
dependencies between the models and the layers that consume them.

See Also:
    [Verdict][rcptd.models.verdict.Verdict]: Carries a
        [VerdictStatus][rcptd.models.constants.VerdictStatus] and a
        [Reason][rcptd.models.constants.Reason].
    [DomainClassification][rcptd.models.domain.DomainClassification]:
        Carries a [DomainKind][rcptd.models.constants.DomainKind].
"""

from __future__ import annotations

from enum import StrEnum


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging and metrics.

    Attributes:
        RESOLVERD: Privileged resolver process that owns the Config Store,
            the Query Cache, and the Decision Engine
            ([Resolverd][rcptd.services.resolverd.Resolverd]).
        LISTENER: Unprivileged network-facing query listener
            ([Listener][rcptd.services.listener.Listener]).
    """

    RESOLVERD = "resolverd"
    LISTENER = "listener"


class DomainKind(StrEnum):
    """How a recipient domain is handled by the mail system.

    Attributes:
        LOCAL: Delivered to system users (qmail ``control/locals``).
        VIRTUAL: Hosted domain mapped to an owner prefix
            (qmail ``control/virtualdomains``).
        RELAY: Accepted for forwarding, never delivered locally.
        UNKNOWN: Not classified; accepted or rejected per policy.
    """

    LOCAL = "local"
    VIRTUAL = "virtual"
    RELAY = "relay"
    UNKNOWN = "unknown"


class VerdictStatus(StrEnum):
    """Three-way answer returned for every recipient query."""

    DELIVERABLE = "deliverable"
    UNDELIVERABLE = "undeliverable"
    DEFERRED = "deferred"


class DirectiveKind(StrEnum):
    """What a matched dot-file tells the mail system to do.

    Attributes:
        BOUNCE: Invokes a bounce program (``bouncesaying``).
        DELEGATION: Hands off to an external delivery agent
            (``vdelivermail``) that is assumed to accept.
        FORWARD: Forwards to another address (``&addr`` lines).
        DELIVERY: Mailbox, maildir, program, or empty file.
    """

    BOUNCE = "bounce"
    DELEGATION = "delegation"
    FORWARD = "forward"
    DELIVERY = "delivery"


class Reason(StrEnum):
    """Machine-readable reason strings attached to verdicts."""

    RELAY = "relay"
    ACCEPT_UNKNOWN_DOMAIN = "accept-unknown-domain"
    UNKNOWN_DOMAIN = "unknown-domain"
    UNKNOWN_CONTEXT = "unknown-context"
    NO_SUCH_USER = "no-such-user"
    NO_SUCH_EXTENSION = "no-such-extension"
    DEFAULT_DELIVERY = "default-delivery"
    BOUNCE = "bounce"
    MALFORMED_ADDRESS = "malformed-address"
    MALFORMED_REQUEST = "malformed-request"
    BACKEND_TIMEOUT = "backend-timeout"
    BACKEND_ERROR = "backend-error"
    CHANNEL_UNAVAILABLE = "channel-unavailable"
    TIMEOUT = "timeout"


# RFC 5321 section 4.5.3.1 size limits
MAX_LOCAL_PART_LENGTH = 64
MAX_DOMAIN_LENGTH = 255
