"""The two rcptd processes.

Services are the top layer of the diamond DAG, depending on
[rcptd.channel][rcptd.channel], [rcptd.resolver][rcptd.resolver],
[rcptd.core][rcptd.core], and [rcptd.models][rcptd.models]. Each service
extends [BaseService][rcptd.core.base_service.BaseService]: it starts its
servers in ``__aenter__`` and uses ``async def run()`` for one maintenance
cycle.

```text
SMTP daemon -> Listener --(channel)--> Resolverd
```

Attributes:
    Resolverd: Privileged process. Owns the Config Store, the Query Cache
        and the Decision Engine; serves the channel; reloads on change or
        SIGHUP.
    Listener: Unprivileged process. Speaks the query line protocol on
        TCP, Unix or UDP sockets and forwards queries over the channel.

See Also:
    [BaseService][rcptd.core.base_service.BaseService]: Abstract base
        class both services extend.
"""

from .listener import Listener, ListenerConfig
from .resolverd import Resolverd, ResolverdConfig


__all__ = [
    "Listener",
    "ListenerConfig",
    "Resolverd",
    "ResolverdConfig",
]
