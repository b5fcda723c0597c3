"""
Immutable deliverability verdicts.

A [Verdict][rcptd.models.verdict.Verdict] is created once per query by the
Decision Engine (or by the channel client when decoding a response), may be
stored in the Query Cache, and is never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass

from ._validation import validate_instance, validate_optional_str
from .constants import DirectiveKind, VerdictStatus


@dataclass(frozen=True, slots=True)
class Verdict:
    """Three-way deliverability answer with optional diagnostics.

    Attributes:
        status: Deliverable, Undeliverable, or Deferred.
        reason: Machine-readable reason (see
            [Reason][rcptd.models.constants.Reason]). Required for
            Undeliverable and Deferred verdicts.
        matched: Dot-file name that decided the verdict, if any.
        owner: Owner whose dot-file matched, if any.
        catchall: Whether a catch-all candidate fired.
        directive: Interpretation of the matched dot-file's content.
        detail: Pre-rendered diagnostic string, set when a verdict is
            decoded from the privilege channel instead of the structured
            fields above.

    Examples:
        ```python
        v = Verdict.deliverable(matched=".qmail-bob-default", owner="vhost", catchall=False)
        v.diagnostic   # 'matched=.qmail-bob-default owner=vhost'
        Verdict.deferred("backend-timeout").is_definitive   # False
        ```
    """

    status: VerdictStatus
    reason: str | None = None
    matched: str | None = None
    owner: str | None = None
    catchall: bool = False
    directive: DirectiveKind | None = None
    detail: str | None = None

    def __post_init__(self) -> None:
        validate_instance(self.status, VerdictStatus, "status")
        validate_optional_str(self.reason, "reason")
        validate_optional_str(self.matched, "matched")
        validate_optional_str(self.owner, "owner")
        validate_optional_str(self.detail, "detail")
        if self.directive is not None:
            validate_instance(self.directive, DirectiveKind, "directive")
        if self.status != VerdictStatus.DELIVERABLE and self.reason is None:
            raise ValueError(f"{self.status} verdict requires a reason")

    @classmethod
    def deliverable(
        cls,
        reason: str | None = None,
        *,
        matched: str | None = None,
        owner: str | None = None,
        catchall: bool = False,
        directive: DirectiveKind | None = None,
    ) -> Verdict:
        return cls(VerdictStatus.DELIVERABLE, reason, matched, owner, catchall, directive)

    @classmethod
    def undeliverable(
        cls,
        reason: str,
        *,
        matched: str | None = None,
        owner: str | None = None,
        catchall: bool = False,
        directive: DirectiveKind | None = None,
    ) -> Verdict:
        return cls(VerdictStatus.UNDELIVERABLE, reason, matched, owner, catchall, directive)

    @classmethod
    def deferred(cls, reason: str) -> Verdict:
        return cls(VerdictStatus.DEFERRED, reason)

    @property
    def is_definitive(self) -> bool:
        """Whether the verdict is a final yes/no answer (not Deferred)."""
        return self.status != VerdictStatus.DEFERRED

    @property
    def diagnostic(self) -> str | None:
        """Space-separated ``key=value`` diagnostics, or ``None`` if empty."""
        if self.detail is not None:
            return self.detail
        parts: list[str] = []
        if self.matched:
            parts.append(f"matched={self.matched}")
        if self.owner:
            parts.append(f"owner={self.owner}")
        if self.catchall:
            parts.append("catchall=yes")
        if self.directive is not None:
            parts.append(f"directive={self.directive}")
        return " ".join(parts) or None
