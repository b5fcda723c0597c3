"""
Decision Engine: the qmail address-resolution algorithm.

Given a normalized [Address][rcptd.models.Address] and one
[ConfigSnapshot][rcptd.resolver.config_store.ConfigSnapshot], the engine
classifies the domain, finds the mailbox owner, walks the Dot-File Chain and
interprets the matched file, producing exactly one
[Verdict][rcptd.models.Verdict]. It never raises for backend trouble:
slow lookups become ``Deferred(backend-timeout)`` and failing ones
``Deferred(backend-error)``.

Blocking backend calls (passwd, filesystem) run in worker threads through
``asyncio.to_thread``, each bounded by ``backend_timeout``. The steps of one
decision are strictly sequential.

See Also:
    [Resolver][rcptd.resolver.resolver.Resolver]: Puts the Query Cache and
        request coalescing in front of the engine.
"""

from __future__ import annotations

import asyncio
import os
import shlex
from collections.abc import Callable
from typing import Any, TypeVar

from rcptd.core.exceptions import BackendError, BackendTimeout, UnknownContext
from rcptd.core.logger import Logger
from rcptd.models import (
    Address,
    DirectiveKind,
    DomainClassification,
    DomainKind,
    LocalUser,
    Reason,
    Verdict,
)

from .backends import DotFileStorage, HomeDirStorage, LocalUserSource
from .config_store import ConfigSnapshot, ConfigStore
from .configs import ResolverConfig
from .dotfile import DotFileResolver, MatchedFile


T = TypeVar("T")

_DIRECTIVE_PRIORITY = {
    DirectiveKind.BOUNCE: 3,
    DirectiveKind.DELEGATION: 2,
    DirectiveKind.FORWARD: 1,
    DirectiveKind.DELIVERY: 0,
}


class DecisionEngine:
    """Combines classification, user lookup and dot-file matching.

    Args:
        store: Loaded Config Store; its Local-User Source is used for owner
            lookups.
        storage: Dot-file storage. Defaults to
            [HomeDirStorage][rcptd.resolver.backends.HomeDirStorage].
        config: Timeouts, case handling and dot-file rules.

    Examples:
        ```python
        engine = DecisionEngine(store, config=ResolverConfig())
        verdict = await engine.decide(Address.parse("bob-sales@example.com"))
        verdict.status      # VerdictStatus.DELIVERABLE
        verdict.diagnostic  # 'matched=.qmail-sales owner=bob directive=delivery'
        ```
    """

    def __init__(
        self,
        store: ConfigStore,
        storage: DotFileStorage | None = None,
        config: ResolverConfig | None = None,
    ) -> None:
        self._config = config or ResolverConfig()
        self._store = store
        dotfiles = self._config.dotfiles
        self._dotfiles = DotFileResolver(
            storage or HomeDirStorage(max_file_size=dotfiles.max_file_size),
            dotfiles,
            case_sensitive=self._config.case_sensitive_local_part,
        )
        self._bounce_markers = frozenset(dotfiles.bounce_markers)
        self._delegation_markers = frozenset(dotfiles.delegation_markers)
        self._logger = Logger("rcptd.engine")

    @property
    def store(self) -> ConfigStore:
        return self._store

    async def decide(self, address: Address, snapshot: ConfigSnapshot | None = None) -> Verdict:
        """Resolve ``address`` against ``snapshot`` (default: the current one).

        Returns:
            The verdict. Backend failures are reported as Deferred and an
            unknown hint as ``Undeliverable(unknown-context)``.
        """
        snapshot = snapshot if snapshot is not None else self._store.snapshot
        try:
            return await self._decide(address, snapshot)
        except UnknownContext as e:
            self._logger.debug("unknown_context", address=str(address), error=str(e))
            return Verdict.undeliverable(Reason.UNKNOWN_CONTEXT)
        except BackendTimeout as e:
            self._logger.warning("backend_timeout", address=str(address), error=str(e))
            return Verdict.deferred(Reason.BACKEND_TIMEOUT)
        except (BackendError, OSError) as e:
            self._logger.error("backend_error", address=str(address), error=str(e))
            return Verdict.deferred(Reason.BACKEND_ERROR)

    # -------------------------------------------------------------------------
    # Resolution Steps
    # -------------------------------------------------------------------------

    async def _decide(self, address: Address, snapshot: ConfigSnapshot) -> Verdict:
        classification = snapshot.classify(address.domain, address.hint, address.local_part)

        if classification.kind == DomainKind.RELAY:
            return Verdict.deliverable(Reason.RELAY)
        if classification.kind == DomainKind.UNKNOWN:
            if classification.accept:
                return Verdict.deliverable(Reason.ACCEPT_UNKNOWN_DOMAIN)
            return Verdict.undeliverable(Reason.UNKNOWN_DOMAIN)

        user, extension = self._dotfiles.split(address.local_part)
        is_local = classification.kind == DomainKind.LOCAL
        owner_name = user if is_local else classification.target

        users = snapshot.users if snapshot.users is not None else self._store.users
        owner = await self._lookup(users, owner_name)
        if owner is None:
            return await self._resolve_catchall(address, classification, users)

        catchall_owner = owner if not is_local else await self._catchall_owner(users)
        chain = self._dotfiles.resolve(
            user, extension, owner, catchall_owner, strip_user=is_local
        )
        matched = await self._backend(self._dotfiles.first_existing, chain)

        if matched is None:
            if is_local and not extension and self._config.dotfiles.implicit_mailbox:
                return Verdict.deliverable(Reason.DEFAULT_DELIVERY, owner=owner.name)
            return Verdict.undeliverable(Reason.NO_SUCH_EXTENSION, owner=owner.name)
        return self._verdict_for(matched)

    async def _resolve_catchall(
        self,
        address: Address,
        classification: DomainClassification,
        users: LocalUserSource,
    ) -> Verdict:
        """No owner: try the domain-wide catch-all with the full qmail local name."""
        catchall_owner = await self._catchall_owner(users)
        if catchall_owner is None:
            return Verdict.undeliverable(Reason.NO_SUCH_USER)

        local_name = address.local_part
        if classification.kind == DomainKind.VIRTUAL:
            local_name = f"{classification.target}{self._config.dotfiles.separator}{local_name}"
        user, extension = self._dotfiles.split(local_name)

        chain = self._dotfiles.resolve(
            user, extension, catchall_owner, catchall_owner, strip_user=False
        )
        matched = await self._backend(self._dotfiles.first_existing, chain)
        if matched is None:
            return Verdict.undeliverable(Reason.NO_SUCH_USER)
        return self._verdict_for(matched, catchall=True)

    async def _catchall_owner(self, users: LocalUserSource) -> LocalUser | None:
        name = self._config.dotfiles.catchall_user
        if not name:
            return None
        return await self._lookup(users, name)

    async def _lookup(self, users: LocalUserSource, name: str | None) -> LocalUser | None:
        if not name:
            return None
        user = await self._backend(users.lookup_user, name)
        if user is None or not user.exists:
            return None
        return user

    async def _backend(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking backend call in a worker thread under ``backend_timeout``."""
        timeout = self._config.backend_timeout
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
        except TimeoutError:
            raise BackendTimeout(
                f"{getattr(func, '__qualname__', func)} exceeded {timeout}s"
            ) from None

    # -------------------------------------------------------------------------
    # Content Interpretation
    # -------------------------------------------------------------------------

    def _verdict_for(self, matched: MatchedFile, *, catchall: bool = False) -> Verdict:
        directive = self.interpret(matched.content)
        fields: dict[str, Any] = {
            "matched": matched.filename,
            "owner": matched.owner.name,
            "catchall": catchall or matched.catchall,
            "directive": directive,
        }
        if directive == DirectiveKind.BOUNCE:
            return Verdict.undeliverable(Reason.BOUNCE, **fields)
        return Verdict.deliverable(**fields)

    def interpret(self, content: str) -> DirectiveKind:
        """Classify dot-file content; the strongest directive of any line wins.

        Bounce beats delegation, which beats forwarding, which beats plain
        delivery. An empty file is plain delivery (the owner's default
        mailbox).
        """
        result = DirectiveKind.DELIVERY
        for raw in content.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            directive = self._interpret_line(line)
            if _DIRECTIVE_PRIORITY[directive] > _DIRECTIVE_PRIORITY[result]:
                result = directive
            if result == DirectiveKind.BOUNCE:
                break
        return result

    def _interpret_line(self, line: str) -> DirectiveKind:
        if line.startswith("|"):
            program = _program_name(line[1:])
            if program in self._bounce_markers:
                return DirectiveKind.BOUNCE
            if program in self._delegation_markers:
                return DirectiveKind.DELEGATION
            return DirectiveKind.DELIVERY
        if line.startswith("&"):
            return DirectiveKind.FORWARD
        if line.startswith(("/", ".")):
            return DirectiveKind.DELIVERY
        return DirectiveKind.FORWARD


def _program_name(command: str) -> str | None:
    """Basename of the program a ``|command`` line runs."""
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()
    if not tokens:
        return None
    return os.path.basename(tokens[0])
