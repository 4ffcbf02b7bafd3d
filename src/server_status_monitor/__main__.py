"""CLI entry point for the server status monitor.

Usage:
    python -m server_status_monitor [options]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import logging.config
import sys
from typing import NoReturn

from pydantic import ValidationError

from server_status_monitor import __version__
from server_status_monitor.config import Settings, clear_settings_cache, get_settings
from server_status_monitor.engine import MonitorEngine
from server_status_monitor.errors import StoreError
from server_status_monitor.prober.client import SUPPORTED_VARIANTS
from server_status_monitor.shutdown import (
    PHASE_CLIENTS,
    PHASE_STORE,
    PHASE_TIMERS,
    GracefulShutdown,
)

APP_NAME = "Server Status Monitor"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def parse_endpoint(value: str) -> tuple[str, int]:
    """Split ``HOST:PORT`` for argparse."""
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"expected HOST:PORT, got {value!r}")
    try:
        port_number = int(port)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid port in {value!r}") from e
    if not 1 <= port_number <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range in {value!r}")
    return host, port_number


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="server-status-monitor",
        description="Monitor game servers, track incidents and notify subscribers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m server_status_monitor                     Run the monitor
  python -m server_status_monitor --config-check      Validate config and exit
  python -m server_status_monitor --check-once        Check every target once and exit
  python -m server_status_monitor --add-target play.example.net:19132 --name Lobby
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )

    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit without monitoring",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log notifications instead of sending them",
    )

    parser.add_argument(
        "--http-port",
        type=int,
        default=None,
        help="Override HTTP port (default: from settings)",
    )

    parser.add_argument(
        "--check-once",
        action="store_true",
        help="Check every active target once, print status snapshots and exit",
    )

    target = parser.add_argument_group("adding a target")
    target.add_argument(
        "--add-target",
        type=parse_endpoint,
        metavar="HOST:PORT",
        default=None,
        help="Register a target and exit",
    )
    target.add_argument("--name", default=None, help="Display name (default: HOST)")
    target.add_argument(
        "--variant",
        choices=SUPPORTED_VARIANTS,
        default="bedrock",
        help="Server protocol variant (default: bedrock)",
    )
    target.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Poll interval in seconds (default: check_interval setting)",
    )

    return parser


def configure_logging(level: str) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "aiohttp.access": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_banner() -> None:
    """Print the application startup banner."""
    banner = f"""
╔══════════════════════════════════════════════════════════════╗
║                                                              ║
║   {APP_NAME:^56}   ║
║   {"v" + APP_VERSION:^56}   ║
║                                                              ║
╚══════════════════════════════════════════════════════════════╝
"""
    print(banner)


def print_config_summary(settings: Settings) -> None:
    """Print a summary of the configuration with secrets masked."""
    summary = settings.redacted_summary()

    def on_off(key: str) -> str:
        return "configured" if summary[key] == "True" else "not configured"

    print("Configuration:")
    print(f"  Database: {summary['database_url']}")
    print(f"  Redis: {summary['redis_url']}")
    print(f"  Status API: {summary['probe_api_url']}")
    print(f"  Log Level: {summary['log_level']}")
    print(f"  HTTP Port: {summary['http_port']}")
    print(f"  Dry Run: {summary['dry_run']}")
    print(f"  Telegram: {on_off('telegram_enabled')}")
    print(f"  WhatsApp: {on_off('whatsapp_enabled')}")
    print(f"  Email: {on_off('email_enabled')}")
    print()


def validate_config() -> Settings | None:
    """Validate and load configuration.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            print(f"  {field}: {error['msg']}", file=sys.stderr)
        return None


def run_config_check(settings: Settings) -> int:
    """Print the validated configuration.

    Returns:
        Exit code (0 for success).
    """
    print("Configuration is valid!")
    print()
    print_config_summary(settings)

    if not (settings.telegram.enabled or settings.whatsapp.enabled or settings.email.enabled):
        print("Warning: no notification channel is configured.")
        print()

    print("All checks passed. Ready to run.")
    return EXIT_SUCCESS


async def run_add_target(
    settings: Settings,
    endpoint: tuple[str, int],
    *,
    name: str | None,
    variant: str,
    interval: int | None,
) -> int:
    """Register a target in the store and exit."""
    logger = logging.getLogger(__name__)
    engine = MonitorEngine(settings)
    host, port = endpoint
    try:
        await engine.db.connect()
        await engine.config_store.seed_defaults()
        target = await engine.add_target(
            name or host, host, port, variant=variant, poll_interval=interval
        )
    except (StoreError, ValueError) as e:
        logger.error("Could not add target: %s", e)
        return EXIT_ERROR
    finally:
        await engine.stop()

    print(f"Added target {target.id}: {target.name} ({target.endpoint}, {target.variant})")
    return EXIT_SUCCESS


async def run_check_once(settings: Settings) -> int:
    """Check every active target once and print the snapshots as JSON."""
    logger = logging.getLogger(__name__)
    engine = MonitorEngine(settings)
    try:
        await engine.start(monitor=False, start_http=False)
        snapshots = await engine.check_all_once()
    except StoreError as e:
        logger.error("Check failed: %s", e)
        return EXIT_ERROR
    finally:
        await engine.stop()

    print(json.dumps(snapshots, indent=2, default=str))
    return EXIT_SUCCESS


async def run_monitor(settings: Settings, shutdown_timeout: float = 30.0) -> int:
    """Run the monitor until SIGTERM/SIGINT.

    Returns:
        Exit code.
    """
    logger = logging.getLogger(__name__)
    shutdown = GracefulShutdown(timeout=shutdown_timeout)

    try:
        async with shutdown:
            engine = MonitorEngine(settings)

            shutdown.register_cleanup(engine.stop_timers, phase=PHASE_TIMERS)
            shutdown.register_cleanup(engine.stop_clients, phase=PHASE_CLIENTS)
            shutdown.register_cleanup(engine.close_store, phase=PHASE_STORE)

            logger.info("Starting monitor...")
            await engine.start()

            logger.info("Monitor running. Press Ctrl+C to stop.")
            await shutdown.wait()

            logger.info("Shutdown signal received, stopping monitor...")

        return EXIT_SUCCESS
    except StoreError as e:
        logger.error("Cannot start without the store: %s", e)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Monitor failed: %s", e)
        return EXIT_ERROR


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    overrides: dict[str, object] = {}
    if args.dry_run:
        overrides["dry_run"] = True
    if args.http_port is not None:
        if not 1 <= args.http_port <= 65535:
            print(f"Invalid --http-port: {args.http_port}", file=sys.stderr)
            sys.exit(EXIT_CONFIG_ERROR)
        overrides["http_port"] = args.http_port
    if overrides:
        settings = settings.model_copy(update=overrides)

    log_level = args.log_level or settings.log_level
    configure_logging(log_level)

    if args.add_target is not None:
        sys.exit(
            asyncio.run(
                run_add_target(
                    settings,
                    args.add_target,
                    name=args.name,
                    variant=args.variant,
                    interval=args.interval,
                )
            )
        )

    if args.check_once:
        sys.exit(asyncio.run(run_check_once(settings)))

    print_banner()

    if args.config_check:
        sys.exit(run_config_check(settings))

    print_config_summary(settings)

    sys.exit(asyncio.run(run_monitor(settings)))


if __name__ == "__main__":
    main()
