"""Argument parsing, configuration loading, and command dispatch."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import signal
import sys
import threading
from types import FrameType
from typing import Any

from .client import MetadataClient
from .config import AppConfig, load_config, validate
from .exceptions import ConfigError, MetadataError
from .logging_config import configure_logging, error_fields
from .models import to_dict
from .watcher import VersionWatcher

logger = logging.getLogger(__name__)

_SELF_RESOURCES = ("host", "container", "service", "stack")
_LISTINGS = ("services", "stacks", "containers", "hosts", "networks", "environments")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="infra-metadata",
        description="Query the infrastructure metadata service",
    )
    parser.add_argument("-c", "--config", help="Path to the YAML configuration file")
    parser.add_argument("--url", help="Metadata service base URL (overrides config)")
    parser.add_argument("--ip", help="Source IP forwarded for request attribution")
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration and exit",
    )

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("version", help="Print the current metadata version")
    sub.add_parser("region", help="Print the region name")

    p_self = sub.add_parser("self", help="Show the caller's own entity")
    p_self.add_argument("resource", choices=_SELF_RESOURCES)

    p_list = sub.add_parser("list", help="List all entities of a kind")
    p_list.add_argument("resource", choices=_LISTINGS)

    p_service = sub.add_parser("service", help="Resolve a service by stack and name")
    p_service.add_argument("--stack", required=True)
    p_service.add_argument("--name", required=True)
    p_service.add_argument("--environment", help="Resolve through this environment")
    p_service.add_argument("--region", help="Region of the environment (default: own region)")

    p_host = sub.add_parser("host", help="Show a host by UUID")
    p_host.add_argument("uuid")

    p_containers = sub.add_parser("containers", help="List the containers of a service")
    p_containers.add_argument("--stack", required=True)
    p_containers.add_argument("--service", required=True)

    p_watch = sub.add_parser("watch", help="Print each metadata version change")
    p_watch.add_argument("--interval", type=float, help="Polling interval in seconds")
    return parser


def _resolve_config(args: argparse.Namespace) -> AppConfig:
    config = load_config(args.config, check=False) if args.config else AppConfig()
    overrides: dict[str, Any] = {}
    if args.url:
        overrides["url"] = args.url
    if args.ip:
        overrides["source_ip"] = args.ip
    if overrides:
        config = dataclasses.replace(
            config, metadata=dataclasses.replace(config.metadata, **overrides),
        )
    validate(config)
    return config


def _emit(value: Any) -> None:
    if isinstance(value, list):
        data: Any = [to_dict(v) for v in value]
    elif dataclasses.is_dataclass(value):
        data = to_dict(value)
    else:
        data = value
    print(json.dumps(data, indent=2, default=str))


def _dispatch(client: MetadataClient, args: argparse.Namespace) -> Any:
    if args.command == "version":
        return client.get_version()
    if args.command == "region":
        return client.get_region_name()
    if args.command == "self":
        return getattr(client, f"get_self_{args.resource}")()
    if args.command == "list":
        return getattr(client, f"get_{args.resource}")()
    if args.command == "service":
        if args.environment and args.region:
            return client.get_service_by_region_environment(
                args.region, args.environment, args.stack, args.name,
            )
        if args.environment:
            return client.get_service_by_environment(args.environment, args.stack, args.name)
        return client.get_service_by_name(args.stack, args.name)
    if args.command == "host":
        return client.get_host(args.uuid)
    if args.command == "containers":
        return client.get_service_containers(args.service, args.stack)
    raise ValueError(f"Unknown command: {args.command}")


def _run_watch(client: MetadataClient, config: AppConfig, interval: float | None) -> int:
    stop = threading.Event()

    def _handle_shutdown(signum: int, frame: FrameType | None) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    def _print_version(version: str) -> None:
        print(json.dumps({"version": version}), flush=True)

    watcher = VersionWatcher(
        client.get_version,
        interval or config.watch.interval_seconds,
        callback=_print_version,
        eager_check=config.watch.eager_check,
        notify_initial=config.watch.notify_initial,
    )
    watcher.start()
    stop.wait()
    watcher.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load config (minimal logging until config is loaded)
    try:
        config = _resolve_config(args)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    configure_logging(config.logging)

    if args.validate:
        logger.info("Configuration is valid")
        return 0

    if not args.command:
        parser.print_usage(sys.stderr)
        return 2

    try:
        with MetadataClient.from_config(config.metadata) as client:
            if args.command == "watch":
                return _run_watch(client, config, args.interval)
            _emit(_dispatch(client, args))
    except MetadataError as exc:
        logger.error("%s", exc, extra=error_fields(exc))
        return 1

    return 0
