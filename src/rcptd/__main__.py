"""CLI entry point for rcptd.

Runs either process on its own (split mode, talking over the Unix socket
configured in both files), both at once from a single root-started command
(fork mode, talking over a ``socketpair``), or answers a single query
offline.

Examples:
    ```bash
    rcptd resolverd --config config/services/resolverd.yaml
    rcptd listener --log-level DEBUG
    rcptd serve
    rcptd check bob-sales@example.com
    rcptd check info@customer.example --hint tenant-a
    ```

Exit codes of ``check`` follow qmail conventions: 0 deliverable,
100 undeliverable, 111 deferred.
"""

import argparse
import asyncio
import logging
import os
import signal
import socket
import sys
from pathlib import Path
from typing import Any, NamedTuple

from pydantic import ValidationError

from rcptd.core import start_metrics_server
from rcptd.core.base_service import BaseService
from rcptd.core.exceptions import ConfigurationError
from rcptd.core.logger import Logger, StructuredFormatter
from rcptd.core.yaml import load_yaml
from rcptd.models import VerdictStatus
from rcptd.models.constants import ServiceName
from rcptd.resolver import ConfigStore, Resolver
from rcptd.services.listener import Listener
from rcptd.services.listener.protocol import format_response
from rcptd.services.resolverd import Resolverd, ResolverdConfig


CONFIG_BASE = Path("config")

EXIT_DELIVERABLE = 0
EXIT_UNDELIVERABLE = 100
EXIT_DEFERRED = 111


class ServiceEntry(NamedTuple):
    """Registry entry mapping a service to its class and default config path."""

    cls: type[BaseService[Any]]
    config_path: Path


SERVICE_REGISTRY: dict[str, ServiceEntry] = {
    ServiceName.RESOLVERD: ServiceEntry(Resolverd, CONFIG_BASE / "services" / "resolverd.yaml"),
    ServiceName.LISTENER: ServiceEntry(Listener, CONFIG_BASE / "services" / "listener.yaml"),
}

logger = Logger("cli")


async def run_service(
    service_name: str,
    service_class: type[BaseService[Any]],
    service_dict: dict[str, Any],
    *,
    once: bool,
    **kwargs: Any,
) -> int:
    """Run a service in one-shot or continuous mode.

    In one-shot mode the service starts, runs a single maintenance cycle and
    exits. In continuous mode a Prometheus metrics server is started and the
    service runs until SIGINT or SIGTERM; SIGHUP asks Resolverd to reload.

    Args:
        service_name: Service identifier used for logging.
        service_class: The BaseService subclass to instantiate.
        service_dict: Parsed service configuration.
        once: If True, run a single cycle and exit.
        **kwargs: Extra constructor arguments (e.g. ``channel_socket``).

    Returns:
        Exit code: 0 for success, 1 for failure.
    """
    try:
        service = service_class.from_dict(service_dict, **kwargs)
    except ValidationError as e:
        logger.error(f"{service_name}_config_invalid", error=str(e))
        return 1

    # One-shot mode: single cycle, no metrics server
    if once:
        try:
            async with service:
                await service.run()
            logger.info(f"{service_name}_completed")
            return 0
        except Exception as e:  # Intentionally broad: CLI error boundary for one-shot mode
            logger.error(f"{service_name}_failed", error=str(e))
            return 1

    # Continuous mode: metrics server + indefinite operation
    metrics_config = service.config.metrics
    try:
        metrics_server = await start_metrics_server(metrics_config)
    except OSError as e:
        logger.error("metrics_server_failed", error=str(e), port=metrics_config.port)
        return 1

    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        service.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)
    if isinstance(service, Resolverd):
        loop.add_signal_handler(signal.SIGHUP, service.request_reload)

    try:
        async with service:
            await service.run_forever()
        return 0
    except Exception as e:  # Intentionally broad: CLI error boundary for continuous mode
        logger.error(f"{service_name}_failed", error=str(e))
        return 1
    finally:
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


def serve(resolverd_dict: dict[str, Any], listener_dict: dict[str, Any]) -> int:
    """Fork mode: resolver in this process, listener in a forked child.

    The processes share a ``socketpair``. The child drops privileges after
    binding its socket; the parent keeps them to read home directories.
    Must be called before any event loop exists.
    """
    parent_sock, child_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    pid = os.fork()

    if pid == 0:
        parent_sock.close()
        code = 1
        try:
            code = asyncio.run(
                run_service(
                    ServiceName.LISTENER,
                    Listener,
                    listener_dict,
                    once=False,
                    channel_socket=child_sock,
                )
            )
        finally:
            os._exit(code)

    child_sock.close()
    logger.info("listener_forked", pid=pid)
    try:
        code = asyncio.run(
            run_service(
                ServiceName.RESOLVERD,
                Resolverd,
                resolverd_dict,
                once=False,
                channel_socket=parent_sock,
            )
        )
    finally:
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
        _, status = os.waitpid(pid, 0)
        logger.info("listener_exited", pid=pid, status=os.waitstatus_to_exitcode(status))
    return code


async def check(config_dict: dict[str, Any], address: str, hint: str | None) -> int:
    """Resolve one address in-process and print the protocol response line."""
    try:
        config = ResolverdConfig(**config_dict)
    except ValidationError as e:
        logger.error("resolverd_config_invalid", error=str(e))
        return 1

    store = ConfigStore(config.delivery)
    try:
        await asyncio.to_thread(store.load)
    except ConfigurationError as e:
        logger.error("config_load_failed", error=str(e))
        return 1

    resolver = Resolver(store, config=config.resolver)
    verdict = await resolver.resolve_raw(address, hint)
    print(format_response(verdict))  # noqa: T201

    if verdict.status == VerdictStatus.DELIVERABLE:
        return EXIT_DELIVERABLE
    if verdict.status == VerdictStatus.UNDELIVERABLE:
        return EXIT_UNDELIVERABLE
    return EXIT_DEFERRED


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="rcptd",
        description="Recipient deliverability resolution daemon",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    for name in SERVICE_REGISTRY:
        sub = commands.add_parser(name, help=f"Run the {name} process")
        sub.add_argument(
            "--config",
            type=Path,
            help=f"Service config path (default: config/services/{name}.yaml)",
        )
        sub.add_argument(
            "--once",
            action="store_true",
            help="Run one maintenance cycle and exit (default: run continuously)",
        )

    serve_parser = commands.add_parser("serve", help="Run both processes (fork mode)")
    serve_parser.add_argument(
        "--resolverd-config",
        type=Path,
        default=SERVICE_REGISTRY[ServiceName.RESOLVERD].config_path,
        help="Resolverd config path",
    )
    serve_parser.add_argument(
        "--listener-config",
        type=Path,
        default=SERVICE_REGISTRY[ServiceName.LISTENER].config_path,
        help="Listener config path",
    )

    check_parser = commands.add_parser("check", help="Resolve one address and exit")
    check_parser.add_argument("address", help="Recipient address")
    check_parser.add_argument("--hint", help="Virtual-hosting context name")
    check_parser.add_argument(
        "--config",
        type=Path,
        default=SERVICE_REGISTRY[ServiceName.RESOLVERD].config_path,
        help="Resolverd config path",
    )

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Configure the root logger with structured formatting.

    Installs a ``StructuredFormatter`` on the root handler so that all
    log output -- from both ``Logger`` (with ``structured_kv`` extra) and
    plain ``logging.getLogger()`` calls -- is unified as
    ``level name message key=value ...``.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML file as a dict, returning ``{}`` if the file does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(path)


def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args and dispatch the command."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        if args.command == "serve":
            return serve(
                _load_yaml_dict(args.resolverd_config),
                _load_yaml_dict(args.listener_config),
            )
        if args.command == "check":
            return asyncio.run(check(_load_yaml_dict(args.config), args.address, args.hint))

        entry = SERVICE_REGISTRY[args.command]
        service_dict = _load_yaml_dict(args.config or entry.config_path)
        return asyncio.run(
            run_service(args.command, entry.cls, service_dict, once=args.once)
        )
    except ConfigurationError as e:
        logger.error("config_load_failed", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
