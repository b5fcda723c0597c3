"""Dropping root privileges in the network-facing process."""

from __future__ import annotations

import grp
import os
import pwd

from rcptd.core.exceptions import ConfigurationError, RcptdError
from rcptd.core.logger import Logger


_logger = Logger("rcptd.privileges")


def drop_privileges(user: str | None, group: str | None = None) -> tuple[int, int]:
    """Switch to ``user``/``group`` and clear supplementary groups.

    A no-op when not running as root or when ``user`` is ``None``.

    Returns:
        The ``(uid, gid)`` the process runs as afterwards.

    Raises:
        ConfigurationError: If the user or group does not exist.
        RcptdError: If root privileges could not be given up.
    """
    if user is None or os.geteuid() != 0:
        return os.getuid(), os.getgid()

    try:
        entry = pwd.getpwnam(user)
    except KeyError:
        raise ConfigurationError(f"Unknown user: {user!r}") from None
    try:
        gid = grp.getgrnam(group).gr_gid if group else entry.pw_gid
    except KeyError:
        raise ConfigurationError(f"Unknown group: {group!r}") from None

    os.setgroups([])
    os.setgid(gid)
    os.setuid(entry.pw_uid)

    if entry.pw_uid != 0 and (os.getuid() == 0 or os.geteuid() == 0):
        raise RcptdError("Failed to drop root privileges")

    _logger.info("privileges_dropped", user=user, uid=entry.pw_uid, gid=gid)
    return entry.pw_uid, gid
