#!/usr/bin/env python3
"""
Machine Uptime Monitor - Entry Point

Runs the status evaluation tick and the midnight boundary tick against the
configured SQLite database, with an HTTP server for health and reports.

Usage:
    uptime-monitor                       # Start with default config
    uptime-monitor --config my.yaml      # Use custom config file
    uptime-monitor --dry-run             # Print config and exit
    uptime-monitor --verbose             # Enable debug logging
"""

import argparse
import asyncio
import os
import sys

from uptime_monitor import __version__
from uptime_monitor.common.config import MonitorConfig, load_config_file
from uptime_monitor.common.exceptions import ConfigError
from uptime_monitor.common.logging_setup import get_service_logger, setup_logging
from uptime_monitor.services.monitor import run_service

# Default configuration path
DEFAULT_CONFIG_PATH = "config.yaml"


def print_startup_banner(config: MonitorConfig, config_path: str):
    """Print startup information."""
    print()
    print("=" * 60)
    print("  MACHINE UPTIME MONITOR")
    print("=" * 60)
    print()
    print(f"  Config: {config_path}")
    print(f"  Database: {config.database.path}")
    print(f"  Default timezone: {config.default_timezone}")
    print()
    print(f"  Evaluate every {config.evaluator.interval_s:g}s "
          f"(lookback {config.evaluator.lookback_minutes:g}min, "
          f"down after {config.evaluator.down_threshold_minutes:g}min)")
    print(f"  Split at local midnight, checked every {config.splitter.interval_s:g}s")
    if config.health.enabled:
        print(f"  Health: http://{config.health.host}:{config.health.port}/health")
    else:
        print("  Health: disabled")
    print()
    print("=" * 60)
    print()


async def main_async(config: MonitorConfig, verbose: bool = False):
    """
    Async main function that runs the monitor service.

    Args:
        config: Loaded monitor configuration
        verbose: Enable verbose logging
    """
    if verbose:
        # Plain text in verbose/debug mode
        setup_logging("DEBUG", json_format=False)
    else:
        setup_logging(
            os.environ.get("UPTIME_LOG_LEVEL", "INFO"),
            json_format=os.environ.get("UPTIME_LOG_FORMAT", "json").lower() == "json",
        )

    logger = get_service_logger("main")
    logger.info(f"Starting Machine Uptime Monitor v{__version__}")

    try:
        await run_service(config)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.critical(f"Monitor failed: {e}")
        raise


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Machine Uptime Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    uptime-monitor                       # Start with default config
    uptime-monitor --config my.yaml      # Use custom config file
    uptime-monitor --dry-run             # Validate config and exit
    uptime-monitor -v                    # Enable debug logging
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without starting"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Machine Uptime Monitor v{__version__}"
    )

    args = parser.parse_args()

    try:
        config = load_config_file(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print_startup_banner(config, args.config)

    if args.dry_run:
        print("Dry run mode - configuration valid")
        print("Exiting without starting services")
        sys.exit(0)

    print("Starting monitor...")
    print("Press Ctrl+C to stop")
    print()

    try:
        asyncio.run(main_async(config, verbose=args.verbose))
    except KeyboardInterrupt:
        print("\nShutdown complete")
        sys.exit(0)


if __name__ == "__main__":
    main()
