"""Command-line interface for the VirtFusion provisioning adapter."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

from virtfusion.config import (
    API_KEY_SETTING,
    HOST_SETTING,
    TIMEOUT_SETTING,
    load_service_config,
    resolve_config_path,
)
from virtfusion.database import Database, resolve_database_path
from virtfusion.errors import VirtFusionError
from virtfusion.gateway import PanelGateway
from virtfusion.service import VirtFusionService

logger = logging.getLogger("virtfusion.main")

KNOWN_COMMANDS = {"serve", "init-db", "configure", "test-connection", "packages"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="VirtFusion provisioning utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the settings and order database")

    serve_parser = subparsers.add_parser("serve", help="Start the host hook API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for the hook API (default: 8080)",
    )

    configure_parser = subparsers.add_parser(
        "configure", help="Store the panel host and API key from a YAML file"
    )
    configure_parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration (default: $VIRTFUSION_CONFIG or config/virtfusion.yaml)",
    )

    subparsers.add_parser("test-connection", help="Check the stored panel settings")
    subparsers.add_parser("packages", help="List the enabled packages on the panel")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database() -> Database:
    db_path = resolve_database_path(os.getenv("VIRTFUSION_DB_PATH"))
    database = Database(db_path)
    database.initialize()
    logger.info("Database initialised at %s", db_path)
    return database


def _serve(*, database: Database, host: str, port: int) -> None:
    from virtfusion.api import create_app
    import uvicorn

    logger.info("Starting VirtFusion hook API on http://%s:%s", host, port)
    uvicorn.run(create_app(database=database), host=host, port=port, log_level="info")


def _configure(database: Database, config_path: str | None) -> int:
    path = Path(config_path).expanduser() if config_path else resolve_config_path()
    try:
        config = load_service_config(path)
    except FileNotFoundError:
        print(f"Configuration file not found: {path}")
        return 1
    except VirtFusionError as exc:
        print(exc)
        return 1

    try:
        database.set_settings(
            {
                HOST_SETTING: config.host,
                API_KEY_SETTING: config.api_key,
                TIMEOUT_SETTING: str(config.timeout) if config.timeout is not None else None,
            }
        )
    except VirtFusionError as exc:
        print(exc)
        return 1
    print(f"Stored VirtFusion settings for {config.host}")
    return 0


def _test_connection(database: Database) -> int:
    try:
        gateway = PanelGateway.from_settings(database)
    except VirtFusionError as exc:
        print(exc)
        return 1

    check = VirtFusionService.test_connection(gateway)
    print(check.message)
    return 0 if check.ok else 1


def _list_packages(database: Database) -> int:
    try:
        packages = VirtFusionService.list_enabled_packages(PanelGateway.from_settings(database))
    except VirtFusionError as exc:
        print(exc)
        return 1

    if not packages:
        print("No enabled packages found on the panel.")
        return 0

    print(f"{'ID':>6}  Name")
    print("-" * 40)
    for package_id, name in packages.items():
        print(f"{package_id!s:>6}  {name}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    database = _initialise_database()

    if args.command == "serve":
        _serve(database=database, host=args.host, port=args.port)
    elif args.command == "configure":
        return _configure(database, args.config)
    elif args.command == "test-connection":
        return _test_connection(database)
    elif args.command == "packages":
        return _list_packages(database)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
