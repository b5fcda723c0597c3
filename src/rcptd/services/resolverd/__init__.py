"""Privileged resolver process.

See Also:
    [Resolverd][rcptd.services.resolverd.service.Resolverd]: The service class.
    [ResolverdConfig][rcptd.services.resolverd.configs.ResolverdConfig]:
        Service configuration.
"""

from .configs import ResolverdConfig
from .service import Resolverd


__all__ = ["Resolverd", "ResolverdConfig"]
