"""
Config Store: declarative delivery configuration with hot reload.

Loads the domain maps consulted by the Decision Engine from two optional
sources and merges them into one immutable
[ConfigSnapshot][rcptd.resolver.config_store.ConfigSnapshot]:

* a qmail ``control/`` directory (``locals``/``me``, ``virtualdomains``,
  ``rcpthosts``), and
* a YAML map file validated by pydantic, which may also declare named
  contexts selected per query by a hint.

Entries from the map file win over the control directory when both name
the same domain. Every successful load bumps a generation counter that the
Query Cache uses to discard verdicts computed against older data. The new
snapshot is fully built before it replaces the old one in a single
assignment, so concurrent readers never observe a half-loaded state.

See Also:
    [DeliveryConfig][rcptd.resolver.configs.DeliveryConfig]: Selects the
        backing files.
    [Resolverd][rcptd.services.resolverd.Resolverd]: Calls
        [is_stale()][rcptd.resolver.config_store.ConfigStore.is_stale] every
        cycle and [reload()][rcptd.resolver.config_store.ConfigStore.reload]
        on change or SIGHUP.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rcptd.core.exceptions import ConfigurationError, UnknownContext
from rcptd.core.logger import Logger
from rcptd.core.yaml import load_yaml
from rcptd.models import DomainClassification

from .backends import LocalUserSource, build_user_source, file_token
from .configs import DeliveryConfig


# ---------------------------------------------------------------------------
# Map File Schema
# ---------------------------------------------------------------------------


class DomainMapFile(BaseModel):
    """One domain map as written in the YAML map file.

    ``virtual_domains`` keys use the qmail ``virtualdomains`` forms:
    ``domain``, ``.parent`` (every subdomain of ``parent``),
    ``user@domain`` (one address) and ``""`` (every non-local domain).
    """

    model_config = ConfigDict(extra="forbid")

    local_domains: list[str] = Field(default_factory=list)
    virtual_domains: dict[str, str] = Field(default_factory=dict)
    relay_domains: list[str] = Field(default_factory=list)
    accept_unknown_domains: bool = False


class MapFile(DomainMapFile):
    """Top level of the YAML map file: the default map plus named contexts."""

    contexts: dict[str, DomainMapFile] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Domain Map
# ---------------------------------------------------------------------------


def _normalize_domain(name: str) -> str:
    return name.strip().lower().rstrip(".")


def _parents(domain: str) -> Iterable[str]:
    """Yield ``a.b.c`` -> ``b.c``, ``c`` (most specific first)."""
    labels = domain.split(".")
    for i in range(1, len(labels)):
        yield ".".join(labels[i:])


@dataclass(frozen=True, slots=True)
class DomainMap:
    """Immutable classification tables for one context.

    Attributes:
        local: Domains delivered to system users.
        virtual: Exact virtual domains mapped to owner prefixes.
        virtual_wildcard: Parent domains whose subdomains are virtual.
        virtual_address: Single ``user@domain`` addresses mapped to prefixes.
        virtual_catchall: Prefix for every otherwise unclassified domain.
        relay: Domains accepted for forwarding.
        relay_wildcard: Parent domains whose subdomains are relayed.
        accept_unknown: Whether unclassified domains are accepted.
    """

    local: frozenset[str] = frozenset()
    virtual: Mapping[str, str] = field(default_factory=dict)
    virtual_wildcard: Mapping[str, str] = field(default_factory=dict)
    virtual_address: Mapping[str, str] = field(default_factory=dict)
    virtual_catchall: str | None = None
    relay: frozenset[str] = frozenset()
    relay_wildcard: frozenset[str] = frozenset()
    accept_unknown: bool = False

    @staticmethod
    def _mapped(prefix: str) -> DomainClassification:
        # An empty prefix is qmail's exception syntax: the domain stays local.
        return DomainClassification.virtual(prefix) if prefix else DomainClassification.local()

    def classify(self, domain: str, local_part: str | None = None) -> DomainClassification:
        """Classify ``domain``, checking single-address mappings first."""
        if local_part is not None:
            prefix = self.virtual_address.get(f"{local_part.lower()}@{domain}")
            if prefix is not None:
                return self._mapped(prefix)

        if domain in self.local:
            return DomainClassification.local()
        if domain in self.virtual:
            return self._mapped(self.virtual[domain])
        for parent in _parents(domain):
            if parent in self.virtual_wildcard:
                return self._mapped(self.virtual_wildcard[parent])
        if self.virtual_catchall is not None:
            return self._mapped(self.virtual_catchall)

        if domain in self.relay:
            return DomainClassification.relay()
        if any(parent in self.relay_wildcard for parent in _parents(domain)):
            return DomainClassification.relay()

        return DomainClassification.unknown(accept=self.accept_unknown)


class _MapBuilder:
    """Mutable accumulator where the latest assignment of a domain wins."""

    def __init__(self) -> None:
        self.local: set[str] = set()
        self.virtual: dict[str, str] = {}
        self.virtual_wildcard: dict[str, str] = {}
        self.virtual_address: dict[str, str] = {}
        self.virtual_catchall: str | None = None
        self.relay: set[str] = set()
        self.relay_wildcard: set[str] = set()
        self.accept_unknown = False

    def _forget(self, domain: str) -> None:
        self.local.discard(domain)
        self.virtual.pop(domain, None)
        self.relay.discard(domain)

    def add_local(self, name: str) -> None:
        domain = _normalize_domain(name)
        if domain:
            self._forget(domain)
            self.local.add(domain)

    def add_virtual(self, key: str, prefix: str) -> None:
        key = key.strip().lower()
        prefix = prefix.strip()
        if "@" in key:
            local_part, _, domain = key.rpartition("@")
            self.virtual_address[f"{local_part}@{_normalize_domain(domain)}"] = prefix
        elif not key:
            self.virtual_catchall = prefix
        elif key.startswith("."):
            self.virtual_wildcard[_normalize_domain(key[1:])] = prefix
        else:
            domain = _normalize_domain(key)
            self._forget(domain)
            self.virtual[domain] = prefix

    def add_relay(self, name: str) -> None:
        name = name.strip().lower()
        if name.startswith("."):
            self.relay_wildcard.add(_normalize_domain(name[1:]))
            return
        domain = _normalize_domain(name)
        if domain and domain not in self.local and domain not in self.virtual:
            self.relay.add(domain)

    def apply(self, entry: DomainMapFile) -> None:
        for name in entry.local_domains:
            self.add_local(name)
        for key, prefix in entry.virtual_domains.items():
            self.add_virtual(key, prefix)
        for name in entry.relay_domains:
            self.add_relay(name)
        self.accept_unknown = entry.accept_unknown_domains

    def build(self) -> DomainMap:
        return DomainMap(
            local=frozenset(self.local),
            virtual=dict(self.virtual),
            virtual_wildcard=dict(self.virtual_wildcard),
            virtual_address=dict(self.virtual_address),
            virtual_catchall=self.virtual_catchall,
            relay=frozenset(self.relay),
            relay_wildcard=frozenset(self.relay_wildcard),
            accept_unknown=self.accept_unknown,
        )


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ConfigSnapshot:
    """One fully loaded, immutable view of the delivery configuration.

    Attributes:
        generation: Load counter; strictly increases with every load.
        default: Domain map used when a query carries no hint.
        contexts: Named domain maps selected by the query hint.
        tokens: Change tokens of the backing files at load time.
        user_token: Change token of the Local-User Source at load time.
        users: Local-User Source read in the same load as the maps.
    """

    generation: int
    default: DomainMap
    contexts: Mapping[str, DomainMap] = field(default_factory=dict)
    tokens: Mapping[Path, Hashable] = field(default_factory=dict)
    user_token: Hashable = None
    users: LocalUserSource | None = None

    def domain_map(self, hint: str | None = None) -> DomainMap:
        """Return the map for ``hint``.

        Raises:
            UnknownContext: If ``hint`` names no configured context.
        """
        if hint is None:
            return self.default
        try:
            return self.contexts[hint]
        except KeyError:
            raise UnknownContext(f"Unknown context: {hint!r}") from None

    def classify(
        self,
        domain: str,
        hint: str | None = None,
        local_part: str | None = None,
    ) -> DomainClassification:
        return self.domain_map(hint).classify(domain, local_part)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ConfigStore:
    """Loads, caches and hot-reloads the delivery configuration.

    Examples:
        ```python
        store = ConfigStore(DeliveryConfig(map_file=Path("delivery.yaml")))
        store.load()
        store.classify("example.com")   # DomainClassification(kind=LOCAL, ...)
        if store.is_stale():
            store.reload()
        ```
    """

    def __init__(
        self,
        config: DeliveryConfig,
        users: LocalUserSource | None = None,
    ) -> None:
        self._config = config
        self._users = users if users is not None else build_user_source(config.users)
        self._lock = threading.Lock()
        self._generation = 0
        self._snapshot: ConfigSnapshot | None = None
        self._logger = Logger("rcptd.config_store")

    @property
    def users(self) -> LocalUserSource:
        """Local-User Source of the current snapshot, or the configured one before loading."""
        snapshot = self._snapshot
        if snapshot is None or snapshot.users is None:
            return self._users
        return snapshot.users

    @property
    def generation(self) -> int:
        """Generation of the current snapshot (0 before the first load)."""
        return self._generation

    @property
    def snapshot(self) -> ConfigSnapshot:
        """The current snapshot.

        Raises:
            ConfigurationError: If nothing has been loaded yet.
        """
        snapshot = self._snapshot
        if snapshot is None:
            raise ConfigurationError("Config store has not been loaded")
        return snapshot

    def classify(
        self,
        domain: str,
        hint: str | None = None,
        local_part: str | None = None,
    ) -> DomainClassification:
        """Classify ``domain`` against the current snapshot."""
        return self.snapshot.classify(_normalize_domain(domain), hint, local_part)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _backing_files(self) -> list[Path]:
        files: list[Path] = []
        if self._config.control_dir is not None:
            control = self._config.control_dir
            files += [
                control / "locals",
                control / "me",
                control / "virtualdomains",
                control / "rcpthosts",
            ]
        if self._config.map_file is not None:
            files.append(self._config.map_file)
        return files

    def _current_tokens(self) -> dict[Path, Hashable]:
        return {path: file_token(path) for path in self._backing_files()}

    def load(self) -> ConfigSnapshot:
        """Read every backing source and swap in a new snapshot.

        Raises:
            ConfigurationError: If any source is missing, unreadable or
                malformed. The previous snapshot stays in place.
        """
        tokens = self._current_tokens()
        user_token = self._users.change_token()
        users = self._users.loaded()

        builder = _MapBuilder()
        if self._config.control_dir is not None:
            self._load_control_dir(self._config.control_dir, builder)

        contexts: dict[str, DomainMap] = {}
        if self._config.map_file is not None:
            map_file = self._load_map_file(self._config.map_file)
            builder.apply(map_file)
            for name, entry in map_file.contexts.items():
                context_builder = _MapBuilder()
                context_builder.apply(entry)
                contexts[name] = context_builder.build()

        default = builder.build()
        with self._lock:
            generation = self._generation + 1
            snapshot = ConfigSnapshot(
                generation=generation,
                default=default,
                contexts=contexts,
                tokens=tokens,
                user_token=user_token,
                users=users,
            )
            self._snapshot = snapshot
            self._generation = generation

        self._logger.info(
            "config_loaded",
            generation=generation,
            local=len(default.local),
            virtual=len(default.virtual) + len(default.virtual_wildcard),
            relay=len(default.relay) + len(default.relay_wildcard),
            contexts=len(contexts),
        )
        return snapshot

    def is_stale(self) -> bool:
        """Whether any backing file or the user source changed since the last load."""
        snapshot = self._snapshot
        if snapshot is None:
            return True
        try:
            if self._current_tokens() != dict(snapshot.tokens):
                return True
        except ConfigurationError:
            return True
        return self._users.changed_since(snapshot.user_token)

    def reload(self) -> bool:
        """Load again, keeping the previous snapshot if loading fails.

        Returns:
            True if a new snapshot was installed.
        """
        try:
            self.load()
        except ConfigurationError as e:
            self._logger.error(
                "config_reload_failed",
                error=str(e),
                generation=self._generation,
            )
            return False
        return True

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    @staticmethod
    def _read_lines(path: Path) -> list[str] | None:
        """Significant lines of a control file, or ``None`` if it is absent."""
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ConfigurationError(f"Cannot read {path}: {e}") from e
        lines = (line.strip() for line in text.splitlines())
        return [line for line in lines if line and not line.startswith("#")]

    def _load_control_dir(self, control: Path, builder: _MapBuilder) -> None:
        if not control.is_dir():
            raise ConfigurationError(f"Control directory not found: {control}")

        locals_ = self._read_lines(control / "locals")
        if locals_ is None:
            locals_ = self._read_lines(control / "me") or []
        for name in locals_:
            builder.add_local(name)

        for lineno, line in enumerate(self._read_lines(control / "virtualdomains") or [], 1):
            key, sep, prefix = line.partition(":")
            if not sep:
                raise ConfigurationError(
                    f"{control / 'virtualdomains'}:{lineno}: missing ':' in {line!r}"
                )
            builder.add_virtual(key, prefix)

        for name in self._read_lines(control / "rcpthosts") or []:
            builder.add_relay(name)

    @staticmethod
    def _load_map_file(path: Path) -> MapFile:
        try:
            data = load_yaml(path)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Map file not found: {path}") from e
        try:
            return MapFile.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid map file {path}: {e}") from e
