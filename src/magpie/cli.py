"""
Command-line interface for magpie.

This module provides the main CLI entry point with commands for:
- run: Aggregate (and optionally validate) blocklists into one file
- stats: Show per-source health statistics
- reset: Clear the blacklist for a source URL
- self-test: Validate configuration and check connectivity
- config: Configuration management

Settings are layered: ``MAGPIE_*`` environment variables (a ``.env`` file is
honoured) provide defaults, a JSON config file replaces them, and command
line flags override both.
"""

import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict, fields
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from . import __version__
from .config import (
    DEFAULT_RESOLVERS,
    FetchConfig,
    LoggingConfig,
    PipelineConfig,
    RetryConfig,
    TrackingConfig,
    ValidationConfig,
)
from .event_logger import EventLogger, NullLogger
from .exceptions import MagpieError, PersistenceError
from .health_tracker import HealthTracker
from .pipeline import Pipeline
from .reporter import MAX_ERRORS_SHOWN, ConsoleReporter, render_stats_table
from .self_test import SelfTest, run_self_test


DEFAULT_CONFIG_PATH = Path.home() / ".magpie" / "config.json"
DEFAULT_SOURCE_FILE = "sources.txt"
DEFAULT_OUTPUT_FILE = "aggregated.txt"
DEFAULT_DATA_DIR = "./data"


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def parse_resolvers(value: str) -> list[str]:
    """Split a comma-separated resolver list, dropping empty entries."""
    return [part.strip() for part in value.split(",") if part.strip()]


def create_default_config(source_file: Optional[Path] = None) -> PipelineConfig:
    """
    Create a configuration from built-in defaults and ``MAGPIE_*`` variables.

    Args:
        source_file: Source list path; falls back to MAGPIE_SOURCE

    Returns:
        PipelineConfig with default settings
    """
    if source_file is None:
        source_file = Path(_env_str("MAGPIE_SOURCE", DEFAULT_SOURCE_FILE))

    return PipelineConfig(
        source_file=source_file,
        output_file=Path(_env_str("MAGPIE_OUTPUT", DEFAULT_OUTPUT_FILE)),
        fetch=FetchConfig(
            concurrency=_env_int("MAGPIE_FETCH_WORKERS", 5),
        ),
        retry=RetryConfig(
            attempts=_env_int("MAGPIE_RETRY_ATTEMPTS", 3),
        ),
        validation=ValidationConfig(
            enable_dns=_env_bool("MAGPIE_DNS", True),
            enable_http=_env_bool("MAGPIE_HTTP", False),
            concurrency=_env_int("MAGPIE_WORKERS", 100),
            resolvers=parse_resolvers(
                _env_str("MAGPIE_RESOLVERS", ",".join(DEFAULT_RESOLVERS))
            ),
            enable_cache=_env_bool("MAGPIE_CACHE", True),
        ),
        tracking=TrackingConfig(
            enabled=_env_bool("MAGPIE_TRACKING", True),
            data_dir=Path(_env_str("MAGPIE_DATA_DIR", DEFAULT_DATA_DIR)),
        ),
        logging=LoggingConfig(
            level=_env_str("MAGPIE_LOG_LEVEL", "info").lower(),
            output_format=_env_str("MAGPIE_LOG_FORMAT", "text").lower(),
        ),
        connectivity_check=_env_bool("MAGPIE_CONNECTIVITY_CHECK", True),
    )


def _read_section(section_type, data: dict, **defaults):
    """Build one config section from its JSON object, ignoring unknown keys."""
    known = {f.name for f in fields(section_type)}
    values = dict(defaults)
    values.update((key, value) for key, value in data.items() if key in known)
    return section_type(**values)


def load_config_from_file(config_path: Path) -> Optional[PipelineConfig]:
    """
    Read a JSON config file written by ``magpie config init``.

    Sections and keys that are missing fall back to defaults. Returns None
    when the file does not exist or cannot be parsed.
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        validation = _read_section(
            ValidationConfig,
            data.get("validation", {}),
            resolvers=list(DEFAULT_RESOLVERS),
        )
        validation.resolvers = list(validation.resolvers)

        tracking = _read_section(
            TrackingConfig,
            data.get("tracking", {}),
            data_dir=DEFAULT_DATA_DIR,
        )
        tracking.data_dir = Path(tracking.data_dir)

        return PipelineConfig(
            source_file=Path(data.get("source_file", DEFAULT_SOURCE_FILE)),
            output_file=Path(data.get("output_file", DEFAULT_OUTPUT_FILE)),
            fetch=_read_section(FetchConfig, data.get("fetch", {})),
            retry=_read_section(RetryConfig, data.get("retry", {})),
            validation=validation,
            tracking=tracking,
            logging=_read_section(LoggingConfig, data.get("logging", {})),
            strict_sources=data.get("strict_sources", True),
            connectivity_check=data.get("connectivity_check", True),
            connectivity_hosts=data.get("connectivity_hosts"),
        )

    except (json.JSONDecodeError, AttributeError, TypeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: PipelineConfig, config_path: Path) -> bool:
    """Write ``config`` as indented JSON, creating parent directories."""
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            # Paths are the only non-JSON values
            json.dump(asdict(config), f, indent=2, ensure_ascii=False, default=str)
        return True
    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def create_logger(config: LoggingConfig) -> EventLogger:
    """Build the event logger for a run; silent mode discards everything."""
    if config.silent:
        return NullLogger()
    level = "warn" if config.quiet else config.level
    return EventLogger(output_format=config.output_format, level=level)


def _load_config(config_arg: Optional[str]) -> Optional[PipelineConfig]:
    if not config_arg:
        return create_default_config()
    config = load_config_from_file(Path(config_arg))
    if config is None:
        print(f"Error: Could not load config from {config_arg}", file=sys.stderr)
    return config


def apply_run_args(config: PipelineConfig, args: argparse.Namespace) -> PipelineConfig:
    """Override config values with every flag given on the command line."""
    if args.source:
        config.source_file = Path(args.source)
    if args.output:
        config.output_file = Path(args.output)
    if args.dns is not None:
        config.validation.enable_dns = args.dns
    if args.http is not None:
        config.validation.enable_http = args.http
    if args.workers is not None:
        config.validation.concurrency = args.workers
    if args.fetch_workers is not None:
        config.fetch.concurrency = args.fetch_workers
    if args.resolvers is not None:
        config.validation.resolvers = parse_resolvers(args.resolvers)
    if args.cache is not None:
        config.validation.enable_cache = args.cache
    if args.data_dir:
        config.tracking.data_dir = Path(args.data_dir)
    if args.no_tracking:
        config.tracking.enabled = False
    if args.connectivity_check is not None:
        config.connectivity_check = args.connectivity_check
    if args.lenient:
        config.strict_sources = False
    if args.log_level:
        config.logging.level = args.log_level
    if args.log_format:
        config.logging.output_format = args.log_format
    if args.quiet:
        config.logging.quiet = True
    if args.silent:
        config.logging.silent = True
        config.logging.quiet = True
    return config


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    config = _load_config(args.config)
    if config is None:
        return 1
    apply_run_args(config, args)

    if not args.source and not args.config and not os.getenv("MAGPIE_SOURCE"):
        print("Error: -s/--source is required", file=sys.stderr)
        return 1

    logger = create_logger(config.logging)
    reporter = ConsoleReporter(logger=logger, quiet=config.logging.quiet)
    pipeline = Pipeline(config, listener=reporter, logger=logger)

    logger.info(
        "CLI",
        f"Starting aggregation from {config.source_file}",
        {"mode": config.validation.mode.value},
    )

    try:
        asyncio.run(pipeline.run())
    except MagpieError as e:
        if not config.logging.silent:
            print(f"Error: {e.message}", file=sys.stderr)
            errors = pipeline.summary.errors
            for message in errors[:MAX_ERRORS_SHOWN]:
                print(f"  - {message}", file=sys.stderr)
            if len(errors) > MAX_ERRORS_SHOWN:
                print(f"  ... and {len(errors) - MAX_ERRORS_SHOWN} more", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        if not config.logging.silent:
            print("Interrupted", file=sys.stderr)
        return 1

    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Handle the 'stats' command."""
    data_dir = Path(args.data_dir or _env_str("MAGPIE_DATA_DIR", DEFAULT_DATA_DIR))
    try:
        tracker = HealthTracker.open(data_dir)
    except PersistenceError as e:
        print(f"Error: Failed to load stats: {e.message}", file=sys.stderr)
        return 1

    print(render_stats_table(tracker))
    return 0


def cmd_reset(args: argparse.Namespace) -> int:
    """Handle the 'reset' command."""
    data_dir = Path(args.data_dir or _env_str("MAGPIE_DATA_DIR", DEFAULT_DATA_DIR))
    try:
        tracker = HealthTracker.open(data_dir)
        if not tracker.reset_url(args.url):
            print(f"No stats recorded for: {args.url}")
            return 1
        tracker.save()
    except PersistenceError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(f"Reset blacklist for: {args.url}")
    return 0


def cmd_self_test(args: argparse.Namespace) -> int:
    """Handle the 'self-test' command."""
    config = _load_config(args.config)
    if config is None:
        return 1
    if args.source:
        config.source_file = Path(args.source)

    result = asyncio.run(run_self_test(config=config, print_output=True))

    return 0 if result.success else 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Source file: {config.source_file}")
        print(f"  Output file: {config.output_file}")
        print(f"  Validation: {config.validation.mode.value}")
        print(f"  Workers: {config.validation.concurrency}")
        print(f"  Fetch workers: {config.fetch.concurrency}")
        print(f"  Resolvers: {', '.join(config.validation.resolvers) or 'system'}")
        print(f"  Cache: {config.validation.enable_cache}")
        print(f"  Tracking: {config.tracking.enabled} ({config.tracking.data_dir})")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        config = create_default_config()
        if save_config_to_file(config, config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        result = SelfTest(config).validate_config()
        for warning in result.warnings:
            print(f"Warning: {warning}")
        if not result.valid:
            for error in result.errors:
                print(f"Error: {error}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="magpie",
        description="High-performance blocklist aggregator with DNS validation",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'run' command
    run_parser = subparsers.add_parser(
        "run",
        help="Aggregate blocklists from a source file",
    )
    run_parser.add_argument(
        "--source", "-s",
        help="Source file containing URLs to fetch (one per line)",
    )
    run_parser.add_argument(
        "--output", "-o",
        help=f"Output file for aggregated domains (default: {DEFAULT_OUTPUT_FILE})",
    )
    run_parser.add_argument(
        "--dns",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="DNS validation - A, AAAA, CNAME (default: on)",
    )
    run_parser.add_argument(
        "--http",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="HTTP validation in addition to DNS (default: off)",
    )
    run_parser.add_argument(
        "--workers", "-w",
        type=int,
        help="Concurrent validation workers (default: 100)",
    )
    run_parser.add_argument(
        "--fetch-workers", "-f",
        type=int,
        help="Concurrent URL fetchers (default: 5)",
    )
    run_parser.add_argument(
        "--resolvers", "-r",
        help="Comma-separated DNS resolvers, empty for the system resolver",
    )
    run_parser.add_argument(
        "--cache",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="DNS result caching with a 5 minute TTL (default: on)",
    )
    run_parser.add_argument(
        "--data-dir",
        help=f"Directory for stats.json (default: {DEFAULT_DATA_DIR})",
    )
    run_parser.add_argument(
        "--no-tracking",
        action="store_true",
        help="Disable URL health tracking and auto-filtering",
    )
    run_parser.add_argument(
        "--connectivity-check",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Check internet connectivity before fetching (default: on)",
    )
    run_parser.add_argument(
        "--lenient",
        action="store_true",
        help="Skip malformed lines in the source file instead of failing",
    )
    run_parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warn", "error"],
        help="Minimum log level (default: info)",
    )
    run_parser.add_argument(
        "--log-format",
        choices=["text", "json", "both"],
        help="Log output format (default: text)",
    )
    run_parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Quiet mode - minimal output",
    )
    run_parser.add_argument(
        "--silent",
        action="store_true",
        help="Silent mode - no output",
    )
    run_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    run_parser.set_defaults(func=cmd_run)

    # 'stats' command
    stats_parser = subparsers.add_parser(
        "stats",
        help="Display source health statistics",
    )
    stats_parser.add_argument(
        "--data-dir",
        help=f"Directory holding stats.json (default: {DEFAULT_DATA_DIR})",
    )
    stats_parser.set_defaults(func=cmd_stats)

    # 'reset' command
    reset_parser = subparsers.add_parser(
        "reset",
        help="Clear the blacklist for a source URL",
    )
    reset_parser.add_argument(
        "url",
        help="Source URL to reset",
    )
    reset_parser.add_argument(
        "--data-dir",
        help=f"Directory holding stats.json (default: {DEFAULT_DATA_DIR})",
    )
    reset_parser.set_defaults(func=cmd_reset)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    # 'self-test' command
    self_test_parser = subparsers.add_parser(
        "self-test",
        help="Validate configuration and check connectivity",
    )
    self_test_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    self_test_parser.add_argument(
        "--source", "-s",
        help="Source file to check",
    )
    self_test_parser.set_defaults(func=cmd_self_test)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
