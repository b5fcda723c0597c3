"""Core layer providing the foundation for both rcptd processes.

Sits in the middle of the package DAG -- depends only on
``rcptd.models`` and is depended upon by ``rcptd.resolver``,
``rcptd.channel`` and ``rcptd.services``.

Attributes:
    BaseService: Abstract generic base class with lifecycle management
        ([run()][rcptd.core.base_service.BaseService.run] /
        [run_forever()][rcptd.core.base_service.BaseService.run_forever] /
        shutdown), factory methods, and Prometheus metrics integration.
    Logger: Structured logger supporting key=value and JSON output modes.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
    Exceptions: ``RcptdError`` hierarchy in
        [rcptd.core.exceptions][rcptd.core.exceptions].
    YAML: Safe YAML loading via [load_yaml()][rcptd.core.yaml.load_yaml].
"""

from .base_service import BaseService, BaseServiceConfig, ConfigT
from .exceptions import (
    BackendError,
    BackendTimeout,
    ChannelProtocolError,
    ConfigurationError,
    MalformedAddress,
    PrivilegeChannelError,
    RcptdError,
    UnknownContext,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    QUERY_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .yaml import load_yaml


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "QUERY_DURATION_SECONDS",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "BackendError",
    "BackendTimeout",
    "BaseService",
    "BaseServiceConfig",
    "ChannelProtocolError",
    "ConfigT",
    "ConfigurationError",
    "Logger",
    "MalformedAddress",
    "MetricsConfig",
    "MetricsServer",
    "PrivilegeChannelError",
    "RcptdError",
    "StructuredFormatter",
    "UnknownContext",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
