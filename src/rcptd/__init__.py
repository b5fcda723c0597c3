r"""rcptd -- Recipient deliverability resolution daemon for qmail-style mail systems.

Answers "would this envelope recipient be accepted for delivery?" using the
qmail resolution rules (virtual domains, local users, ``.qmail`` extension
and catch-all files) without delivering anything. Two cooperating processes
keep the network-facing side unprivileged:

```text
SMTP daemon -> Listener (unprivileged) -> channel -> Resolverd (privileged)
```

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
              services         Listener and Resolverd processes
             /        \
        channel        |       Privilege-separation wire protocol
             \        /
              resolver         Config Store, engine, cache
                 |
               core            Base service, exceptions, logging, metrics
                 |
              models           Pure frozen dataclasses (zero I/O)
```

Note:
    For lightweight usage, import directly from subpackages::

        from rcptd.models import Address
        from rcptd.resolver import Resolver

    Top-level imports (``from rcptd import Address``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("rcptd")

__all__ = [
    "Address",
    "BaseService",
    "ChannelClient",
    "ChannelServer",
    "ConfigStore",
    "DecisionEngine",
    "Listener",
    "ListenerConfig",
    "Logger",
    "QueryCache",
    "Resolver",
    "Resolverd",
    "ResolverdConfig",
    "Verdict",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "Address": ("rcptd.models", "Address"),
    "Verdict": ("rcptd.models", "Verdict"),
    "BaseService": ("rcptd.core", "BaseService"),
    "Logger": ("rcptd.core", "Logger"),
    "ConfigStore": ("rcptd.resolver", "ConfigStore"),
    "DecisionEngine": ("rcptd.resolver", "DecisionEngine"),
    "QueryCache": ("rcptd.resolver", "QueryCache"),
    "Resolver": ("rcptd.resolver", "Resolver"),
    "ChannelClient": ("rcptd.channel", "ChannelClient"),
    "ChannelServer": ("rcptd.channel", "ChannelServer"),
    "Listener": ("rcptd.services", "Listener"),
    "ListenerConfig": ("rcptd.services", "ListenerConfig"),
    "Resolverd": ("rcptd.services", "Resolverd"),
    "ResolverdConfig": ("rcptd.services", "ResolverdConfig"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'rcptd' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
