"""Resolverd service configuration models.

See Also:
    [Resolverd][rcptd.services.resolverd.Resolverd]: The service class that
        consumes these configurations.
    [BaseServiceConfig][rcptd.core.base_service.BaseServiceConfig]: Base
        class providing ``interval``, ``max_consecutive_failures``, and
        ``metrics`` fields.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field

from rcptd.channel.configs import ChannelServerConfig
from rcptd.core.base_service import BaseServiceConfig
from rcptd.resolver.configs import DeliveryConfig, ResolverConfig


def _default_delivery() -> DeliveryConfig:
    return DeliveryConfig(control_dir=Path("/var/qmail/control"))


class ResolverdConfig(BaseServiceConfig):
    """Configuration for the privileged resolver process.

    ``interval`` controls how often the Config Store is checked for changes
    and expired cache entries are purged.

    Attributes:
        resolver: Decision Engine, dot-file and Query Cache settings.
        delivery: Backing data for the Config Store.
        channel: Unix socket served to the listener (split mode).
    """

    interval: float = Field(default=10.0, ge=1.0, description="Seconds between reload checks")
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    delivery: DeliveryConfig = Field(default_factory=_default_delivery)
    channel: ChannelServerConfig = Field(default_factory=ChannelServerConfig)
