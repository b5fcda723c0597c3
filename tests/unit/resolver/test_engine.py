"""
Unit tests for resolver.engine module.

Tests:
- Domain classification outcomes (relay, unknown, accept-unknown)
- Local and virtual resolution with extension and catch-all matching
- Owner-missing catch-all resolution
- Directive interpretation (bounce, delegation, forward, delivery)
- Backend timeouts and failures mapped to Deferred verdicts
- Determinism for a fixed snapshot
"""

import threading
import time

import pytest

from rcptd.core.exceptions import BackendError
from rcptd.models import Address, DirectiveKind, LocalUser, Reason, Verdict, VerdictStatus
from rcptd.resolver import DecisionEngine, DotFileConfig, LocalUserSource, ResolverConfig


def addr(raw, hint=None):
    return Address.parse(raw, hint=hint)


class SlowUserSource(LocalUserSource):
    """Delegates to another source, sleeping first while ``slow`` is set."""

    def __init__(self, inner, delay=0.5):
        self.inner = inner
        self.delay = delay
        self.slow = True

    def lookup_user(self, name):
        if self.slow:
            time.sleep(self.delay)
        return self.inner.lookup_user(name)


class FailingUserSource(LocalUserSource):
    def lookup_user(self, name):
        raise BackendError("directory server unreachable")


class CountingUserSource(LocalUserSource):
    def __init__(self, inner):
        self.inner = inner
        self.calls = 0
        self._lock = threading.Lock()

    def lookup_user(self, name):
        with self._lock:
            self.calls += 1
        return self.inner.lookup_user(name)


class TestScenarios:
    """End-to-end decisions over the ``mail`` fixture."""

    async def test_local_user_with_dotfile(self, mail, engine):
        mail.dotfile("alice", ".qmail", "./Maildir/\n")
        verdict = await engine.decide(addr("alice@example.com"))
        assert verdict == Verdict.deliverable(
            matched=".qmail", owner="alice", directive=DirectiveKind.DELIVERY
        )

    async def test_extension_without_match(self, engine):
        verdict = await engine.decide(addr("alice-foo@example.com"))
        assert verdict.status == VerdictStatus.UNDELIVERABLE
        assert verdict.reason == Reason.NO_SUCH_EXTENSION
        assert verdict.owner == "alice"

    async def test_virtual_extension_default(self, mail, engine):
        mail.dotfile("vhost", ".qmail-bob-default", "./Maildir/\n")
        verdict = await engine.decide(addr("bob-anything@example.net"))
        assert verdict.status == VerdictStatus.DELIVERABLE
        assert verdict.matched == ".qmail-bob-default"
        assert verdict.owner == "vhost"
        assert verdict.catchall is False

    async def test_unknown_domain(self, engine):
        verdict = await engine.decide(addr("bob@nowhere.test"))
        assert verdict == Verdict.undeliverable(Reason.UNKNOWN_DOMAIN)

    async def test_backend_timeout_then_recovery(self, mail):
        source = SlowUserSource(mail.users, delay=0.5)
        mail.users = source
        mail.dotfile("alice", ".qmail", "")
        engine = mail.engine(backend_timeout=0.05)

        verdict = await engine.decide(addr("alice@example.com"))
        assert verdict == Verdict.deferred(Reason.BACKEND_TIMEOUT)

        source.slow = False
        verdict = await engine.decide(addr("alice@example.com"))
        assert verdict.status == VerdictStatus.DELIVERABLE


class TestClassification:
    """Outcomes decided by the domain map alone."""

    async def test_relay(self, engine):
        assert await engine.decide(addr("anyone@relay.example")) == Verdict.deliverable(
            Reason.RELAY
        )

    async def test_relay_ignores_local_part(self, engine):
        a = await engine.decide(addr("a@relay.example"))
        b = await engine.decide(addr("zz-top-x@relay.example"))
        assert a == b

    async def test_accept_unknown(self, mail):
        mail.write_map({"accept_unknown_domains": True})
        verdict = await mail.engine().decide(addr("x@nowhere.test"))
        assert verdict == Verdict.deliverable(Reason.ACCEPT_UNKNOWN_DOMAIN)

    async def test_unknown_context(self, engine):
        verdict = await engine.decide(addr("bob@example.com", hint="missing"))
        assert verdict == Verdict.undeliverable(Reason.UNKNOWN_CONTEXT)

    async def test_context_hint(self, mail, engine):
        mail.dotfile("tenant", ".qmail-bob", "")
        verdict = await engine.decide(addr("bob@customer.example", hint="tenant-a"))
        assert verdict.owner == "tenant"
        assert verdict.status == VerdictStatus.DELIVERABLE


class TestLocalResolution:
    """Local domain owner and extension handling."""

    async def test_extension_file(self, mail, engine):
        mail.dotfile("bob", ".qmail-sales", "./Maildir-sales/\n")
        verdict = await engine.decide(addr("bob-sales@example.com"))
        assert verdict.matched == ".qmail-sales"
        assert verdict.owner == "bob"

    async def test_owner_default(self, mail, engine):
        mail.dotfile("bob", ".qmail-default", "")
        verdict = await engine.decide(addr("bob-sales-eu@example.com"))
        assert verdict.matched == ".qmail-default"
        assert verdict.catchall is False

    async def test_plain_user_without_dotfile(self, engine):
        verdict = await engine.decide(addr("bob@example.com"))
        assert verdict.reason == Reason.NO_SUCH_EXTENSION

    async def test_implicit_mailbox(self, mail):
        engine = mail.engine(dotfiles=DotFileConfig(implicit_mailbox=True))
        verdict = await engine.decide(addr("bob@example.com"))
        assert verdict == Verdict.deliverable(Reason.DEFAULT_DELIVERY, owner="bob")

    async def test_implicit_mailbox_not_for_extensions(self, mail):
        engine = mail.engine(dotfiles=DotFileConfig(implicit_mailbox=True))
        verdict = await engine.decide(addr("bob-x@example.com"))
        assert verdict.reason == Reason.NO_SUCH_EXTENSION

    async def test_terminal_catchall_for_existing_owner(self, mail, engine):
        mail.dotfile("alias", ".qmail-default", "./Maildir/\n")
        verdict = await engine.decide(addr("bob-x@example.com"))
        assert verdict.status == VerdictStatus.DELIVERABLE
        assert verdict.owner == "alias"
        assert verdict.catchall is True


class TestCatchall:
    """Owner missing: the catch-all owner's chain decides."""

    async def test_no_such_user(self, engine):
        verdict = await engine.decide(addr("mallory@example.com"))
        assert verdict == Verdict.undeliverable(Reason.NO_SUCH_USER)

    async def test_local_catchall(self, mail, engine):
        mail.dotfile("alias", ".qmail-mallory", "&abuse@example.org\n")
        verdict = await engine.decide(addr("mallory@example.com"))
        assert verdict.matched == ".qmail-mallory"
        assert verdict.owner == "alias"
        assert verdict.catchall is True
        assert verdict.directive == DirectiveKind.FORWARD

    async def test_local_catchall_default(self, mail, engine):
        mail.dotfile("alias", ".qmail-default", "")
        verdict = await engine.decide(addr("mallory-x@example.com"))
        assert verdict.matched == ".qmail-default"
        assert verdict.catchall is True

    async def test_virtual_owner_missing(self, mail):
        mail.write_map({"virtual_domains": {"ghost.example": "ghost"}})
        mail.dotfile("alias", ".qmail-ghost-default", "")
        verdict = await mail.engine().decide(addr("anyone@ghost.example"))
        assert verdict.matched == ".qmail-ghost-default"
        assert verdict.catchall is True

    async def test_catchall_disabled(self, mail):
        mail.dotfile("alias", ".qmail-default", "")
        engine = mail.engine(dotfiles=DotFileConfig(catchall_user=None))
        verdict = await engine.decide(addr("mallory@example.com"))
        assert verdict.reason == Reason.NO_SUCH_USER


class TestDirectives:
    """Interpretation of matched dot-file content."""

    @pytest.mark.parametrize(
        ("content", "expected"),
        [
            ("", DirectiveKind.DELIVERY),
            ("# only a comment\n", DirectiveKind.DELIVERY),
            ("./Maildir/\n", DirectiveKind.DELIVERY),
            ("/var/mail/bob\n", DirectiveKind.DELIVERY),
            ("|/usr/bin/procmail\n", DirectiveKind.DELIVERY),
            ("&carol@example.org\n", DirectiveKind.FORWARD),
            ("carol@example.org\n", DirectiveKind.FORWARD),
            ("|/home/vpopmail/bin/vdelivermail '' bounce-no-mailbox\n", DirectiveKind.DELEGATION),
            ("|bouncesaying 'No such address.'\n", DirectiveKind.BOUNCE),
            ("./Maildir/\n&carol@example.org\n", DirectiveKind.FORWARD),
            ("&carol@example.org\n|bouncesaying gone\n./Maildir/\n", DirectiveKind.BOUNCE),
            ("|bouncesaying 'unterminated\n", DirectiveKind.BOUNCE),
        ],
    )
    def test_interpret(self, engine, content, expected):
        assert engine.interpret(content) == expected

    async def test_bounce_is_undeliverable(self, mail, engine):
        mail.dotfile("bob", ".qmail-old", "|bouncesaying 'This address is retired.'\n")
        verdict = await engine.decide(addr("bob-old@example.com"))
        assert verdict.status == VerdictStatus.UNDELIVERABLE
        assert verdict.reason == Reason.BOUNCE
        assert verdict.directive == DirectiveKind.BOUNCE

    async def test_delegation_is_deliverable(self, mail, engine):
        mail.dotfile("vhost", ".qmail-default", "| /usr/bin/vdelivermail '' bounce-no-mailbox\n")
        verdict = await engine.decide(addr("whoever@example.net"))
        assert verdict.status == VerdictStatus.DELIVERABLE
        assert verdict.directive == DirectiveKind.DELEGATION

    async def test_custom_markers(self, mail):
        mail.dotfile("bob", ".qmail-x", "|/opt/reject\n")
        engine = mail.engine(dotfiles=DotFileConfig(bounce_markers=["reject"]))
        verdict = await engine.decide(addr("bob-x@example.com"))
        assert verdict.reason == Reason.BOUNCE


class TestBackendFailures:
    """Backend errors never escape decide()."""

    async def test_backend_error(self, mail):
        mail.users = FailingUserSource()
        verdict = await mail.engine().decide(addr("bob@example.com"))
        assert verdict == Verdict.deferred(Reason.BACKEND_ERROR)

    async def test_relay_needs_no_backend(self, mail):
        mail.users = FailingUserSource()
        verdict = await mail.engine().decide(addr("bob@relay.example"))
        assert verdict.status == VerdictStatus.DELIVERABLE


class TestDeterminism:
    """Same snapshot and backend state, same verdict."""

    async def test_idempotent(self, mail, engine):
        mail.dotfile("bob", ".qmail-default", "")
        first = await engine.decide(addr("bob-a-b@example.com"))
        second = await engine.decide(addr("bob-a-b@example.com"))
        assert first == second

    async def test_explicit_snapshot(self, mail, engine):
        snapshot = engine.store.snapshot
        mail.write_map({"local_domains": []})
        engine.store.load()
        verdict = await engine.decide(addr("bob@example.com"), snapshot)
        assert verdict.owner == "bob"

    async def test_owner_looked_up_once_per_step(self, mail):
        counting = CountingUserSource(mail.users)
        mail.users = counting
        mail.dotfile("bob", ".qmail", "")
        await mail.engine().decide(addr("bob@example.com"))
        # owner plus the catch-all owner
        assert counting.calls == 2


class TestDisabledOwner:
    """Owners with exists=False are ignored."""

    async def test_disabled(self, mail, tmp_path):
        class Disabled(LocalUserSource):
            def lookup_user(self, name):
                return LocalUser(name=name, home=str(tmp_path), exists=False)

        mail.users = Disabled()
        verdict = await mail.engine().decide(addr("bob@example.com"))
        assert verdict.reason == Reason.NO_SUCH_USER
