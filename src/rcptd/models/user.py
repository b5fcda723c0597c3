"""Local mailbox owner records produced by Local-User Sources."""

from __future__ import annotations

from dataclasses import dataclass

from ._validation import validate_instance, validate_str_not_empty


@dataclass(frozen=True, slots=True)
class LocalUser:
    """A system or virtual mailbox owner.

    Sources return ``None`` for unknown names; a record with
    ``exists=False`` describes a declared but disabled owner and is treated
    the same as an unknown one by the Decision Engine.

    Attributes:
        name: Owner identity (login name or assign-file user).
        home: Directory holding the owner's dot-files.
        uid: Numeric user id, ``-1`` when not applicable.
        gid: Numeric group id, ``-1`` when not applicable.
        exists: Whether the owner may receive mail.
    """

    name: str
    home: str
    uid: int = -1
    gid: int = -1
    exists: bool = True

    def __post_init__(self) -> None:
        validate_str_not_empty(self.name, "name")
        validate_str_not_empty(self.home, "home")
        validate_instance(self.uid, int, "uid")
        validate_instance(self.gid, int, "gid")
        validate_instance(self.exists, bool, "exists")
