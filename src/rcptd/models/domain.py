"""Domain classification derived from a Config Store snapshot."""

from __future__ import annotations

from dataclasses import dataclass

from ._validation import validate_instance, validate_optional_str
from .constants import DomainKind


@dataclass(frozen=True, slots=True)
class DomainClassification:
    """How a single recipient domain is handled.

    Derived once per query and never mutated afterwards.

    Attributes:
        kind: One of the [DomainKind][rcptd.models.constants.DomainKind]
            values.
        target: Owner prefix for ``VIRTUAL`` domains, ``None`` otherwise.
        accept: For ``UNKNOWN`` domains, whether the active context accepts
            unclassified domains. Always ``False`` for other kinds.

    Raises:
        ValueError: If a ``VIRTUAL`` classification has no target, or a
            non-virtual one carries a target.
    """

    kind: DomainKind
    target: str | None = None
    accept: bool = False

    def __post_init__(self) -> None:
        validate_instance(self.kind, DomainKind, "kind")
        validate_optional_str(self.target, "target")
        if self.kind == DomainKind.VIRTUAL and self.target is None:
            raise ValueError("virtual classification requires a target prefix")
        if self.kind != DomainKind.VIRTUAL and self.target is not None:
            raise ValueError(f"{self.kind} classification must not carry a target")
        if self.accept and self.kind != DomainKind.UNKNOWN:
            raise ValueError("accept only applies to unknown domains")

    @classmethod
    def local(cls) -> DomainClassification:
        return cls(DomainKind.LOCAL)

    @classmethod
    def virtual(cls, target: str) -> DomainClassification:
        return cls(DomainKind.VIRTUAL, target=target)

    @classmethod
    def relay(cls) -> DomainClassification:
        return cls(DomainKind.RELAY)

    @classmethod
    def unknown(cls, *, accept: bool = False) -> DomainClassification:
        return cls(DomainKind.UNKNOWN, accept=accept)
