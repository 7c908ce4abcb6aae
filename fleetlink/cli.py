"""Command-line interface for fleetlink.

Loads settings (config file, environment, CLI overrides), builds the device
registry from the inventory and runs one fleet operation. Results are
printed to stdout as JSON; logs go to stderr.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from fleetlink import __version__
from fleetlink.config import Settings, load_settings_from_file, set_settings
from fleetlink.domain.exceptions import DeviceError
from fleetlink.infra.observability.logging import setup_logging
from fleetlink.infra.observability.tracing import setup_tracing
from fleetlink.registry import DeviceRegistry, initialize_registry

logger = logging.getLogger(__name__)


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="fleetlink",
        description="fleetlink - uniform status/command/config access to a device fleet",
    )

    parser.add_argument(
        "--config", "-c", type=Path, help="Path to configuration file (YAML or TOML)"
    )
    parser.add_argument("--devices", "-d", type=Path, help="Device inventory (JSON or YAML)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument("--log-format", choices=["json", "text"], help="Log output format")
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="List configured devices")
    list_cmd.add_argument("--filter", help="Substring over id, name, family and tags")
    list_cmd.add_argument("--family", help="Device family tag")
    list_cmd.add_argument("--tag", help="Device tag")

    status_cmd = commands.add_parser("status", help="Device status (all devices if no id)")
    status_cmd.add_argument("device_id", nargs="?", help="Device id")
    status_cmd.add_argument("--family", help="Device family tag")
    status_cmd.add_argument("--tag", help="Device tag")
    status_cmd.add_argument("--concurrency", type=int, help="Parallel status workers")

    test_cmd = commands.add_parser("test", help="Test connectivity to a device")
    test_cmd.add_argument("device_id", help="Device id")

    exec_cmd = commands.add_parser("exec", help="Execute a command on a device")
    exec_cmd.add_argument("device_id", help="Device id")
    exec_cmd.add_argument("device_command", help="Command text")

    config_cmd = commands.add_parser("config", help="Fetch device configuration")
    config_cmd.add_argument("device_id", help="Device id")
    config_cmd.add_argument("--section", help="Configuration section")

    children_cmd = commands.add_parser("children", help="List sub-entities of a device")
    children_cmd.add_argument("device_id", help="Device id")

    return parser


def load_config_from_cli(parsed_args: argparse.Namespace) -> Settings:
    """Build settings from a config file (if any), environment and CLI overrides."""
    if parsed_args.config:
        settings = load_settings_from_file(parsed_args.config)
    else:
        settings = Settings()

    cli_overrides: dict[str, Any] = {}

    if parsed_args.devices is not None:
        cli_overrides["devices_file"] = parsed_args.devices

    if parsed_args.log_level is not None:
        cli_overrides["log_level"] = parsed_args.log_level

    if parsed_args.log_format is not None:
        cli_overrides["log_format"] = parsed_args.log_format

    if cli_overrides:
        settings = Settings(**{**settings.model_dump(), **cli_overrides})

    return settings


async def run_command(registry: DeviceRegistry, args: argparse.Namespace) -> Any:
    """Run one CLI command against the registry and return a JSON-able result."""
    if args.command == "list":
        devices = registry.list_devices(filter=args.filter, family=args.family, tag=args.tag)
        return [d.summary() for d in devices]

    if args.command == "status":
        if args.device_id:
            status = await registry.get_status(args.device_id)
            return status.model_dump(mode="json")
        statuses = await registry.get_all_statuses(
            family=args.family, tag=args.tag, concurrency=args.concurrency
        )
        return [s.model_dump(mode="json") for s in statuses]

    if args.command == "test":
        connected = await registry.test_connection(args.device_id)
        return {"device": args.device_id, "connected": connected}

    if args.command == "exec":
        result = await registry.execute_command(args.device_id, args.device_command)
        return result.model_dump(mode="json")

    if args.command == "config":
        config = await registry.get_config(args.device_id, args.section)
        return {"device": args.device_id, "section": args.section, "config": config}

    if args.command == "children":
        return await registry.list_children(args.device_id)

    raise ValueError(f"Unknown command: {args.command}")


async def _run(args: argparse.Namespace, settings: Settings) -> Any:
    registry = initialize_registry(settings)
    try:
        return await run_command(registry, args)
    finally:
        await registry.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the fleetlink CLI.

    Returns:
        Exit code (0 for success, 1 for configuration or device errors)
    """
    args = create_argument_parser().parse_args(argv)

    try:
        settings = load_config_from_cli(args)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    set_settings(settings)
    setup_logging(level=settings.log_level, json_format=settings.log_format == "json")
    setup_tracing(console_export=settings.tracing_console_export)

    try:
        result = asyncio.run(_run(args, settings))
    except DeviceError as e:
        logger.error(f"{e.kind.value}: {e.message}", extra={"error_kind": e.kind.value})
        print(json.dumps({"error": e.to_dict()}, indent=2, default=str))
        return 1
    except (ValueError, yaml.YAMLError) as e:
        # Unreadable or invalid inventory
        logger.error(f"Configuration error: {e}")
        return 1

    print(json.dumps(result, indent=2, default=str))

    if args.command == "test" and not result["connected"]:
        return 1
    if args.command == "exec" and not result["success"]:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
