"""Unprivileged query listener.

See Also:
    [Listener][rcptd.services.listener.service.Listener]: The service class.
    [ListenerConfig][rcptd.services.listener.configs.ListenerConfig]:
        Service configuration.
    [protocol][rcptd.services.listener.protocol]: Line protocol helpers.
"""

from .configs import ListenerConfig
from .service import Listener


__all__ = ["Listener", "ListenerConfig"]
