"""
Pluggable data sources consumed by the Decision Engine.

Two interfaces separate the resolution algorithm from where the data lives:

* [LocalUserSource][rcptd.resolver.backends.LocalUserSource] answers
  "does this mailbox owner exist, and where are its dot-files?".
  Implementations cover the system passwd database, qmail's
  ``users/assign`` file, and owners declared in YAML.
* [DotFileStorage][rcptd.resolver.backends.DotFileStorage] answers
  "does this owner have this delivery-instruction file, and what does it
  say?". [HomeDirStorage][rcptd.resolver.backends.HomeDirStorage] reads
  from the owner's home directory, which is why it must run in the
  privileged resolver process.

All methods are blocking; the engine calls them from worker threads.
SQL, LDAP, or DNS sources plug in by implementing the same interfaces.
"""

from __future__ import annotations

import os
import pwd
from abc import ABC, abstractmethod
from collections.abc import Hashable, Mapping
from pathlib import Path

from rcptd.core.exceptions import BackendError, ConfigurationError
from rcptd.core.logger import Logger
from rcptd.models import LocalUser

from .configs import StaticUserConfig, UserSourceConfig


_logger = Logger("rcptd.backends")


def file_token(path: Path) -> tuple[int, int] | None:
    """Change-detection token for a backing file: ``(mtime_ns, size)`` or ``None``."""
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ConfigurationError(f"Cannot stat {path}: {e}") from e
    return (st.st_mtime_ns, st.st_size)


# =============================================================================
# Local-User Sources
# =============================================================================


class LocalUserSource(ABC):
    """Interface required of any mailbox owner backend."""

    @abstractmethod
    def lookup_user(self, name: str) -> LocalUser | None:
        """Return the owner called ``name``, or ``None`` if there is none.

        Raises:
            BackendError: If the backend itself failed (not for unknown names).
        """

    def loaded(self) -> LocalUserSource:
        """Return a source over freshly read backing data.

        Called by the Config Store on every load. The receiver is left
        untouched, so a load that fails later publishes nothing. Sources
        without cached tables return themselves.

        Raises:
            ConfigurationError: If the backing data is missing or malformed.
        """
        return self

    def change_token(self) -> Hashable:
        """Opaque token that changes whenever the backing data changes."""
        return None

    def changed_since(self, token: Hashable) -> bool:
        """Whether the backing data changed since ``token`` was taken."""
        return self.change_token() != token


class PasswdUserSource(LocalUserSource):
    """System accounts from the passwd database (qmail-getpw semantics).

    Accounts below ``min_uid`` are never mailbox owners, and when
    ``require_home`` is set an account whose home directory is missing is
    treated as unknown.
    """

    PASSWD_FILE = Path("/etc/passwd")

    def __init__(self, *, min_uid: int = 1, require_home: bool = True) -> None:
        self._min_uid = min_uid
        self._require_home = require_home

    def lookup_user(self, name: str) -> LocalUser | None:
        if not name or "\x00" in name:
            return None
        try:
            entry = pwd.getpwnam(name)
        except KeyError:
            return None
        except OSError as e:
            raise BackendError(f"passwd lookup failed for {name!r}: {e}") from e

        if entry.pw_uid < self._min_uid:
            return None
        if self._require_home and not os.path.isdir(entry.pw_dir):
            return None
        return LocalUser(
            name=entry.pw_name,
            home=entry.pw_dir,
            uid=entry.pw_uid,
            gid=entry.pw_gid,
        )

    def change_token(self) -> Hashable:
        return file_token(self.PASSWD_FILE)


class AssignUserSource(LocalUserSource):
    """Owners from a qmail ``users/assign`` file.

    Understands both entry forms::

        =local:user:uid:gid:homedir:dash:ext:
        +prefix:user:uid:gid:homedir:dash:pre:

    An owner name matches an ``=`` entry exactly; otherwise the longest
    ``+`` prefix that ``name + "-"`` starts with wins, so the assignment
    ``+vhost-:...`` makes ``vhost`` an owner. Parsing stops at a line that
    consists of a single ``.``.
    """

    def __init__(
        self,
        path: Path,
        exact: Mapping[str, LocalUser] | None = None,
        prefixes: list[tuple[str, LocalUser]] | None = None,
    ) -> None:
        self._path = path
        self._exact = dict(exact or {})
        self._prefixes = sorted(prefixes or [], key=lambda item: len(item[0]), reverse=True)

    def loaded(self) -> AssignUserSource:
        token = file_token(self._path)
        if token is None:
            raise ConfigurationError(f"users/assign file not found: {self._path}")
        try:
            text = self._path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ConfigurationError(f"Cannot read {self._path}: {e}") from e

        exact, prefixes = self._parse(text)
        return AssignUserSource(self._path, exact, prefixes)

    def _parse(self, text: str) -> tuple[dict[str, LocalUser], list[tuple[str, LocalUser]]]:
        exact: dict[str, LocalUser] = {}
        prefixes: list[tuple[str, LocalUser]] = []

        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if line == ".":
                break
            if not line or line.startswith("#"):
                continue
            kind, fields = line[0], line[1:].split(":")
            if kind not in "=+" or len(fields) < 7:
                raise ConfigurationError(f"{self._path}:{lineno}: malformed assignment")
            key, user, uid, gid, home = fields[:5]
            try:
                record = LocalUser(name=user, home=home, uid=int(uid), gid=int(gid))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"{self._path}:{lineno}: {e}") from e
            if kind == "=":
                exact[key.lower()] = record
            else:
                prefixes.append((key.lower(), record))
        return exact, prefixes

    def lookup_user(self, name: str) -> LocalUser | None:
        key = name.lower()
        if key in self._exact:
            return self._exact[key]
        dashed = key + "-"
        for prefix, record in self._prefixes:
            if dashed.startswith(prefix):
                return record
        return None

    def change_token(self) -> Hashable:
        return file_token(self._path)


class StaticUserSource(LocalUserSource):
    """Owners declared in the daemon configuration."""

    def __init__(self, users: Mapping[str, StaticUserConfig]) -> None:
        self._users = {
            name: LocalUser(
                name=name,
                home=str(entry.home),
                uid=entry.uid,
                gid=entry.gid,
                exists=entry.exists,
            )
            for name, entry in users.items()
        }

    def lookup_user(self, name: str) -> LocalUser | None:
        return self._users.get(name)


def build_user_source(config: UserSourceConfig) -> LocalUserSource:
    """Instantiate the Local-User Source selected by ``config.backend``."""
    if config.backend == "passwd":
        return PasswdUserSource(min_uid=config.min_uid, require_home=config.require_home)
    if config.backend == "assign":
        return AssignUserSource(config.assign_file)
    return StaticUserSource(config.users)


# =============================================================================
# Dot-File Storage
# =============================================================================


class DotFileStorage(ABC):
    """Per-owner storage of delivery-instruction files."""

    @abstractmethod
    def exists(self, owner: LocalUser, filename: str) -> bool:
        """Whether ``owner`` has a delivery-instruction file called ``filename``.

        Raises:
            BackendError: If the storage cannot answer (e.g. permission denied).
        """

    @abstractmethod
    def read(self, owner: LocalUser, filename: str) -> str:
        """Return the content of an existing file.

        Raises:
            BackendError: If the file cannot be read.
        """


class HomeDirStorage(DotFileStorage):
    """Dot-files stored directly in the owner's home directory.

    Filenames containing a path separator or null byte never exist, so a
    hostile local-part cannot escape the owner's directory.
    """

    def __init__(self, *, max_file_size: int = 65536) -> None:
        self._max_file_size = max_file_size

    @staticmethod
    def _safe(filename: str) -> bool:
        return bool(filename) and filename not in (".", "..") and not any(
            c in filename for c in ("/", "\x00")
        )

    def exists(self, owner: LocalUser, filename: str) -> bool:
        if not self._safe(filename):
            return False
        path = Path(owner.home) / filename
        try:
            return path.is_file()
        except OSError as e:
            raise BackendError(f"Cannot stat {path}: {e}") from e

    def read(self, owner: LocalUser, filename: str) -> str:
        if not self._safe(filename):
            raise BackendError(f"Refusing unsafe dot-file name {filename!r}")
        path = Path(owner.home) / filename
        try:
            with path.open("rb") as f:
                data = f.read(self._max_file_size)
        except OSError as e:
            raise BackendError(f"Cannot read {path}: {e}") from e
        if len(data) == self._max_file_size:
            _logger.warning("dotfile_truncated", path=str(path), limit=self._max_file_size)
        return data.decode("utf-8", errors="replace")
