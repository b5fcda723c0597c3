"""
Dot-File Resolver: qmail extension and catch-all matching.

Turns an owner plus a qmail local name (``user`` and its extension
segments) into an ordered
[DotFileChain][rcptd.resolver.dotfile.DotFileChain] of candidate
delivery-instruction files, then probes them in order and returns the
first one that exists. For ``bob-sales-eu`` the chain is::

    bob-sales-eu
    bob-sales-default
    bob-default
    default            (terminal catch-all, in the catch-all owner's home)

Content is read but not interpreted here; that is the
[DecisionEngine][rcptd.resolver.engine.DecisionEngine]'s job.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from rcptd.models import LocalUser

from .backends import DotFileStorage
from .configs import DotFileConfig


@dataclass(frozen=True, slots=True)
class Candidate:
    """One probe in a Dot-File Chain.

    Attributes:
        name: qmail local name this candidate stands for
            (``bob-sales-default``, or ``default`` for the terminal one).
        filename: File looked up in the owner's directory.
        owner: Owner whose directory holds the file.
        catchall: Whether this is the terminal domain-wide catch-all.
    """

    name: str
    filename: str
    owner: LocalUser
    catchall: bool = False


@dataclass(frozen=True, slots=True)
class DotFileChain:
    """Candidates ordered from most to least specific."""

    user: str
    extension: tuple[str, ...]
    candidates: tuple[Candidate, ...]

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self.candidates)

    def __len__(self) -> int:
        return len(self.candidates)


@dataclass(frozen=True, slots=True)
class MatchedFile:
    """The first existing candidate of a chain and its raw content."""

    candidate: Candidate
    content: str

    @property
    def filename(self) -> str:
        return self.candidate.filename

    @property
    def owner(self) -> LocalUser:
        return self.candidate.owner

    @property
    def catchall(self) -> bool:
        return self.candidate.catchall


class DotFileResolver:
    """Builds and probes Dot-File Chains against a storage backend.

    Args:
        storage: Where dot-files live.
        config: Naming rules (prefix, separator, default token).
        case_sensitive: Keep the case of name segments in filenames.
    """

    def __init__(
        self,
        storage: DotFileStorage,
        config: DotFileConfig | None = None,
        *,
        case_sensitive: bool = False,
    ) -> None:
        self._storage = storage
        self._config = config or DotFileConfig()
        self._case_sensitive = case_sensitive

    @property
    def config(self) -> DotFileConfig:
        return self._config

    def split(self, local_name: str) -> tuple[str, tuple[str, ...]]:
        """Split a local name into ``user`` and its extension segments.

        Splitting is purely positional; empty segments are kept.
        """
        user, *extension = local_name.split(self._config.separator)
        return user, tuple(extension)

    def _filename(self, segments: list[str], *, strip_user: bool) -> str:
        if strip_user:
            segments = segments[1:]
        parts = [s.replace(".", ":") for s in segments]
        if not self._case_sensitive:
            parts = [p.lower() for p in parts]
        if not parts:
            return self._config.prefix
        return self._config.prefix + "-" + "-".join(parts)

    def resolve(
        self,
        user: str,
        extension: tuple[str, ...] | list[str],
        owner: LocalUser,
        catchall_owner: LocalUser | None,
        *,
        strip_user: bool,
    ) -> DotFileChain:
        """Build the chain for ``user`` + ``extension`` owned by ``owner``.

        Args:
            user: First segment of the local name.
            extension: Remaining segments, in order.
            owner: Owner whose directory holds the per-user candidates.
            catchall_owner: Owner of the terminal ``default`` candidate, or
                ``None`` to omit it.
            strip_user: Drop the user portion from filenames (the owner *is*
                the user, as for local domains).

        Returns:
            ``len(extension) + 1`` per-owner candidates followed by the
            terminal catch-all when ``catchall_owner`` is given.
        """
        extension = tuple(extension)
        default = self._config.default_token
        sep = self._config.separator
        candidates: list[Candidate] = []

        for keep in range(len(extension), -1, -1):
            segments = [user, *extension[:keep]]
            if keep < len(extension):
                segments.append(default)
            candidates.append(
                Candidate(
                    name=sep.join(segments),
                    filename=self._filename(segments, strip_user=strip_user),
                    owner=owner,
                )
            )

        if catchall_owner is not None:
            candidates.append(
                Candidate(
                    name=default,
                    filename=f"{self._config.prefix}-{default}",
                    owner=catchall_owner,
                    catchall=True,
                )
            )

        return DotFileChain(user=user, extension=extension, candidates=tuple(candidates))

    def first_existing(self, chain: DotFileChain) -> MatchedFile | None:
        """Return the first candidate that exists as a regular file.

        Blocking; run it in a worker thread.

        Raises:
            BackendError: If the storage cannot answer.
        """
        for candidate in chain:
            if self._storage.exists(candidate.owner, candidate.filename):
                content = self._storage.read(candidate.owner, candidate.filename)
                return MatchedFile(candidate=candidate, content=content)
        return None
