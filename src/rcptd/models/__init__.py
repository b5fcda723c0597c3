"""Pure frozen dataclasses with zero I/O for addresses, domains, owners, and verdicts.

The models layer is the foundation of the package DAG. It has **no
dependencies** on any other rcptd package -- only the Python standard
library. Every model uses ``@dataclass(frozen=True, slots=True)`` and
validates in ``__post_init__`` so invalid instances never escape the
constructor.

Attributes:
    Address: Normalized ``local-part@domain`` recipient with optional
        virtual-hosting hint.
    DomainClassification: Local / Virtual / Relay / Unknown classification
        of a recipient domain.
    LocalUser: Mailbox owner record produced by a Local-User Source.
    Verdict: Deliverable / Undeliverable / Deferred answer with diagnostics.

See Also:
    [rcptd.resolver][rcptd.resolver]: Produces verdicts from these models.
    [rcptd.channel][rcptd.channel]: Carries them across the privilege
        boundary.
"""

from .address import Address
from .constants import (
    MAX_DOMAIN_LENGTH,
    MAX_LOCAL_PART_LENGTH,
    DirectiveKind,
    DomainKind,
    Reason,
    ServiceName,
    VerdictStatus,
)
from .domain import DomainClassification
from .user import LocalUser
from .verdict import Verdict


__all__ = [
    "MAX_DOMAIN_LENGTH",
    "MAX_LOCAL_PART_LENGTH",
    "Address",
    "DirectiveKind",
    "DomainClassification",
    "DomainKind",
    "LocalUser",
    "Reason",
    "ServiceName",
    "Verdict",
    "VerdictStatus",
]
