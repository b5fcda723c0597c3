"""Address resolution: configuration, backends, dot-file matching, decisions, caching.

Everything in this package runs inside the privileged resolver process.
It depends on [rcptd.core][rcptd.core] and [rcptd.models][rcptd.models] and
is consumed by [rcptd.services.resolverd][rcptd.services.resolverd] and the
``check`` CLI command.

```text
Resolver -> QueryCache
         -> DecisionEngine -> ConfigStore -> LocalUserSource
                           -> DotFileResolver -> DotFileStorage
```

Attributes:
    ConfigStore: Loads domain maps from YAML and qmail ``control/`` files
        with generation-counted hot reload.
    DecisionEngine: The qmail address-resolution algorithm.
    DotFileResolver: Builds and probes Dot-File Chains.
    QueryCache: LRU + TTL + generation verdict cache.
    Resolver: Cache, coalescing and deadlines in front of the engine.
"""

from .backends import (
    AssignUserSource,
    DotFileStorage,
    HomeDirStorage,
    LocalUserSource,
    PasswdUserSource,
    StaticUserSource,
    build_user_source,
)
from .cache import CacheStats, QueryCache
from .config_store import ConfigSnapshot, ConfigStore, DomainMap
from .configs import (
    CacheConfig,
    DeliveryConfig,
    DotFileConfig,
    ResolverConfig,
    StaticUserConfig,
    UserSourceConfig,
)
from .dotfile import Candidate, DotFileChain, DotFileResolver, MatchedFile
from .engine import DecisionEngine
from .resolver import Resolver


__all__ = [
    "AssignUserSource",
    "CacheConfig",
    "CacheStats",
    "Candidate",
    "ConfigSnapshot",
    "ConfigStore",
    "DecisionEngine",
    "DeliveryConfig",
    "DomainMap",
    "DotFileChain",
    "DotFileConfig",
    "DotFileResolver",
    "DotFileStorage",
    "HomeDirStorage",
    "LocalUserSource",
    "MatchedFile",
    "PasswdUserSource",
    "QueryCache",
    "Resolver",
    "ResolverConfig",
    "StaticUserConfig",
    "StaticUserSource",
    "UserSourceConfig",
    "build_user_source",
]
