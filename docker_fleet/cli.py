"""Command line entry point for Docker Fleet."""

import argparse
import asyncio
import os
import sys

from .core.config_loader import DEFAULT_CONFIG_FILE, FleetConfig, load_config
from .core.exceptions import DockerFleetError
from .core.logging_config import get_fleet_logger, setup_logging
from .fleet import Fleet


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    default_log_level = os.getenv("LOG_LEVEL", "INFO")
    default_config = os.getenv("DOCKER_FLEET_CONFIG", DEFAULT_CONFIG_FILE)

    parser = argparse.ArgumentParser(
        prog="docker-fleet", description="Agentless Docker fleet management over SSH"
    )
    parser.add_argument("--config", default=default_config, help="Configuration file path")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--log-dir", default=os.getenv("LOG_DIR"), help="Directory for log files (console only if unset)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("validate-config", help="Validate configuration and list servers")

    test_parser = subparsers.add_parser("test-connection", help="Probe a server over SSH")
    test_parser.add_argument("server_id", help="Server id from the configuration")

    exec_parser = subparsers.add_parser("exec", help="Run a command on a server")
    exec_parser.add_argument("server_id", help="Server id from the configuration")
    exec_parser.add_argument("remote_command", nargs=argparse.REMAINDER, help="Command to run")

    return parser.parse_args(argv)


def _validate_config(config: FleetConfig) -> int:
    print(f"Configuration is valid: {config.config_file}")
    for server in config.servers.values():
        print(f"  {server.id}: {server.key}:{server.port}")
    if not config.servers:
        print("  (no servers configured)")
    return 0


async def _test_connection(config: FleetConfig, server_id: str) -> int:
    fleet = Fleet(config)
    result = await fleet.test_connection(server_id)
    if result.online:
        print(f"{server_id}: online")
        return 0
    print(f"{server_id}: offline ({result.error})")
    return 1


async def _exec(config: FleetConfig, server_id: str, command: str) -> int:
    async with Fleet(config) as fleet:
        result = await fleet.exec(server_id, command)
    if result.stdout:
        sys.stdout.write(result.stdout)
    if result.stderr:
        sys.stderr.write(result.stderr)
    return result.exit_code


def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    config.log_level = args.log_level

    if args.command == "validate-config":
        return _validate_config(config)
    if args.command == "test-connection":
        return asyncio.run(_test_connection(config, args.server_id))

    command = " ".join(args.remote_command).strip()
    if not command:
        print("exec requires a command", file=sys.stderr)
        return 2
    return asyncio.run(_exec(config, args.server_id, command))


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(log_dir=args.log_dir, log_level=args.log_level)
    logger = get_fleet_logger()

    try:
        exit_code = run(args)
    except DockerFleetError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 130

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
