"""
Prometheus metrics collection and HTTP exposition.

Defines module-level metric objects (singletons, thread-safe) shared by the
resolver and listener processes. ``BaseService.run_forever()`` records cycle
counts and durations; services add their own counters and gauges through
``set_gauge()`` / ``inc_counter()`` and time individual queries with
``QUERY_DURATION_SECONDS``.

The ``MetricsServer`` provides an async HTTP endpoint (via aiohttp) for
Prometheus scraping. Configuration is handled through ``MetricsConfig``,
which is embedded in every service's YAML configuration.

Architecture:
    SERVICE_INFO:               Static metadata set once at startup.
    SERVICE_GAUGE:              Point-in-time values (cache size, generation).
    SERVICE_COUNTER:            Cumulative totals (queries, cache hits, reloads).
    CYCLE_DURATION_SECONDS:     Maintenance cycle duration histogram.
    QUERY_DURATION_SECONDS:     Per-query latency histogram by verdict status.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    The endpoint is only started when ``enabled`` is True. The resolver and
    listener processes need distinct ports when both expose metrics.
    """

    enabled: bool = Field(default=False, description="Enable metrics collection")
    port: int = Field(default=9325, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Common Service Metrics
# ---------------------------------------------------------------------------

SERVICE_INFO = Info(
    "rcptd_service",
    "Service information and metadata",
)

CYCLE_DURATION_SECONDS = Histogram(
    "rcptd_cycle_duration_seconds",
    "Duration of a maintenance cycle in seconds",
    ["service"],
    buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30),
)

# Query latency is dominated by backend lookups; buckets cover cache hits
# (sub-millisecond) up to the largest sensible request deadline.
QUERY_DURATION_SECONDS = Histogram(
    "rcptd_query_duration_seconds",
    "Time to answer one recipient query",
    ["service", "status"],
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)

SERVICE_GAUGE = Gauge(
    "rcptd_service_gauge",
    "Service gauge values (point-in-time state)",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "rcptd_service_counter",
    "Service counter values (cumulative totals)",
    ["service", "name"],
)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible /metrics endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=9326))
        await server.start()
        # ... service runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for Prometheus scrape requests.

        No-op if metrics are disabled.

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Stop the HTTP server. Safe to call repeatedly or before start()."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        output = generate_latest()
        return web.Response(body=output, headers={"Content-Type": CONTENT_TYPE_LATEST})


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Create and start a metrics server.

    Returns:
        A running MetricsServer. Callers must ``stop()`` it on shutdown to
        release the bound port.
    """
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
