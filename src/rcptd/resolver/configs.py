"""Resolver configuration models.

See Also:
    [ResolverdConfig][rcptd.services.resolverd.ResolverdConfig]: Service
        config that embeds these models.
    [ConfigStore][rcptd.resolver.config_store.ConfigStore]: Consumes
        [DeliveryConfig][rcptd.resolver.configs.DeliveryConfig].
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class StaticUserConfig(BaseModel):
    """A mailbox owner declared directly in configuration."""

    home: Path
    uid: int = Field(default=-1)
    gid: int = Field(default=-1)
    exists: bool = Field(default=True)


class UserSourceConfig(BaseModel):
    """Selects and configures the Local-User Source.

    Attributes:
        backend: ``passwd`` (system accounts), ``assign`` (qmail
            ``users/assign``), or ``static`` (``users`` below).
        min_uid: Lowest uid accepted from the passwd database. qmail never
            delivers to root, hence the default of 1.
        require_home: Ignore passwd accounts whose home directory is missing.
        assign_file: Path of the qmail ``users/assign`` source file.
        users: Owners for the ``static`` backend, keyed by name.
    """

    backend: Literal["passwd", "assign", "static"] = "passwd"
    min_uid: int = Field(default=1, ge=0)
    require_home: bool = True
    assign_file: Path = Path("/var/qmail/users/assign")
    users: dict[str, StaticUserConfig] = Field(default_factory=dict)


class DeliveryConfig(BaseModel):
    """Backing data loaded by the Config Store.

    Attributes:
        map_file: YAML delivery map (domains, relay policy, contexts).
        control_dir: qmail ``control/`` directory (``locals``, ``me``,
            ``virtualdomains``, ``rcpthosts``).
        users: Local-User Source selection.
    """

    map_file: Path | None = None
    control_dir: Path | None = None
    users: UserSourceConfig = Field(default_factory=UserSourceConfig)

    @model_validator(mode="after")
    def _require_source(self) -> DeliveryConfig:
        if self.map_file is None and self.control_dir is None:
            raise ValueError("delivery requires map_file, control_dir, or both")
        return self


class DotFileConfig(BaseModel):
    """Dot-file naming and interpretation.

    Attributes:
        prefix: Base filename of delivery-instruction files.
        separator: Character splitting a local-part into user and
            extension segments.
        default_token: Literal that replaces trailing segments in
            catch-all candidates.
        catchall_user: Owner of domain-wide catch-all files for local
            domains (qmail's ``alias`` user). ``None`` disables them.
        bounce_markers: Programs whose invocation marks a bounce.
        delegation_markers: Delivery agents that always accept.
        implicit_mailbox: Treat an existing local user with no extension and
            no dot-file as deliverable (the MTA's default delivery).
        max_file_size: Bytes read from a matched dot-file.
    """

    prefix: str = ".qmail"
    separator: str = "-"
    default_token: str = "default"
    catchall_user: str | None = "alias"
    bounce_markers: list[str] = Field(default_factory=lambda: ["bouncesaying"])
    delegation_markers: list[str] = Field(default_factory=lambda: ["vdelivermail"])
    implicit_mailbox: bool = False
    max_file_size: int = Field(default=65536, ge=1024)

    @field_validator("separator")
    @classmethod
    def _single_char(cls, v: str) -> str:
        if len(v) != 1 or v.isalnum() or v in "@/.":
            raise ValueError("separator must be a single punctuation character other than @ / .")
        return v

    @field_validator("prefix", "default_token")
    @classmethod
    def _no_slash(cls, v: str) -> str:
        if not v or "/" in v:
            raise ValueError("must be non-empty and must not contain '/'")
        return v


class CacheConfig(BaseModel):
    """Query Cache sizing and expiry.

    Attributes:
        enabled: Disable to resolve every query from scratch.
        capacity: Maximum entries before least-recently-used eviction.
        ttl: Seconds a Deliverable verdict stays valid.
        negative_ttl: Seconds an Undeliverable verdict stays valid.
    """

    enabled: bool = True
    capacity: int = Field(default=10_000, ge=1)
    ttl: float = Field(default=300.0, gt=0)
    negative_ttl: float = Field(default=60.0, gt=0)


class ResolverConfig(BaseModel):
    """Decision Engine and Resolver settings.

    Attributes:
        backend_timeout: Deadline for each Local-User Source or dot-file
            storage call.
        request_timeout: Deadline for a whole query inside the resolver.
        case_sensitive_local_part: Keep local-part case when normalizing.
    """

    backend_timeout: float = Field(default=2.0, gt=0, le=60.0)
    request_timeout: float = Field(default=5.0, gt=0, le=120.0)
    case_sensitive_local_part: bool = False
    dotfiles: DotFileConfig = Field(default_factory=DotFileConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
