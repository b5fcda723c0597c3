"""
Unit tests for models.verdict, models.domain and models.user modules.

Tests:
- Verdict factories, reason requirement, diagnostics rendering
- DomainClassification invariants
- LocalUser validation
"""

import pytest

from rcptd.models import (
    DirectiveKind,
    DomainClassification,
    DomainKind,
    LocalUser,
    Reason,
    Verdict,
    VerdictStatus,
)


class TestVerdict:
    """Verdict construction and properties."""

    def test_deliverable_without_reason(self):
        v = Verdict.deliverable()
        assert v.status == VerdictStatus.DELIVERABLE
        assert v.reason is None
        assert v.is_definitive

    def test_undeliverable_requires_reason(self):
        with pytest.raises(ValueError, match="requires a reason"):
            Verdict(VerdictStatus.UNDELIVERABLE)

    def test_deferred_not_definitive(self):
        v = Verdict.deferred(Reason.BACKEND_TIMEOUT)
        assert v.status == VerdictStatus.DEFERRED
        assert v.reason == "backend-timeout"
        assert not v.is_definitive

    def test_status_type_checked(self):
        with pytest.raises(TypeError):
            Verdict("deliverable")  # type: ignore[arg-type]

    def test_diagnostic_from_fields(self):
        v = Verdict.deliverable(
            matched=".qmail-bob-default",
            owner="vhost",
            catchall=True,
            directive=DirectiveKind.FORWARD,
        )
        assert v.diagnostic == (
            "matched=.qmail-bob-default owner=vhost catchall=yes directive=forward"
        )

    def test_diagnostic_empty(self):
        assert Verdict.deliverable(Reason.RELAY).diagnostic is None

    def test_diagnostic_prefers_detail(self):
        v = Verdict(VerdictStatus.DELIVERABLE, detail="matched=.qmail owner=bob")
        assert v.diagnostic == "matched=.qmail owner=bob"

    def test_immutable(self):
        v = Verdict.deliverable()
        with pytest.raises(AttributeError):
            v.reason = "x"  # type: ignore[misc]

    def test_equality(self):
        assert Verdict.undeliverable(Reason.BOUNCE, owner="bob") == Verdict.undeliverable(
            Reason.BOUNCE, owner="bob"
        )


class TestDomainClassification:
    """DomainClassification invariants."""

    def test_virtual_requires_target(self):
        with pytest.raises(ValueError, match="target"):
            DomainClassification(DomainKind.VIRTUAL)

    def test_local_rejects_target(self):
        with pytest.raises(ValueError, match="target"):
            DomainClassification(DomainKind.LOCAL, target="x")

    def test_accept_only_for_unknown(self):
        with pytest.raises(ValueError, match="accept"):
            DomainClassification(DomainKind.RELAY, accept=True)

    def test_factories(self):
        assert DomainClassification.local().kind == DomainKind.LOCAL
        assert DomainClassification.virtual("vhost").target == "vhost"
        assert DomainClassification.relay().kind == DomainKind.RELAY
        assert DomainClassification.unknown(accept=True).accept is True


class TestLocalUser:
    """LocalUser validation."""

    def test_defaults(self):
        user = LocalUser(name="bob", home="/home/bob")
        assert user.uid == -1
        assert user.gid == -1
        assert user.exists is True

    def test_empty_home_rejected(self):
        with pytest.raises(ValueError):
            LocalUser(name="bob", home="")

    def test_uid_type_checked(self):
        with pytest.raises(TypeError):
            LocalUser(name="bob", home="/home/bob", uid="1000")  # type: ignore[arg-type]
