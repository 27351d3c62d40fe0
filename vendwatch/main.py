#!/usr/bin/env python3
"""
vendwatch - Main Entry Point

Loads the monitor configuration and runs the monitor.

Usage:
    vendwatch                          # Use default monitor.yaml
    vendwatch --config my.yaml         # Use custom config file
    vendwatch --dry-run                # Print config and exit
    vendwatch --once                   # Run one detection + cleaning cycle
    vendwatch --serve --port 8000      # HTTP API with the monitor running

Without --once or --serve the monitor runs headless until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

import uvicorn
import yaml

from .common.config import MonitorConfig, load_monitor_config
from .common.exceptions import ConfigValidationError
from .common.logging_setup import get_service_logger
from .monitor import MonitorController, build_controller

logger = get_service_logger("main")


def load_config(config_path: str) -> MonitorConfig:
    """
    Load and validate configuration from a YAML file.

    Exits the process when the file is missing, unreadable or invalid.
    """
    path = Path(config_path)
    if not path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        sys.exit(1)

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading configuration: {e}")
        sys.exit(1)

    try:
        config = load_monitor_config(data)
    except ConfigValidationError as e:
        for error in e.errors:
            logger.error(f"Config error: {error}")
        sys.exit(1)

    logger.info(f"Loaded configuration from {config_path}")
    return config


def print_config_summary(config: MonitorConfig):
    """Print a summary of the configuration."""
    print("\n" + "=" * 60)
    print("  VENDWATCH MONITOR")
    print("=" * 60)

    print(f"\n  Storage: {config.storage.backend}")

    print("\n  Monitor:")
    print(f"    - Poll interval: {config.monitor.poll_interval_s}s")
    print(f"    - Cleaning interval: {config.monitor.cleaning_interval_s}s")
    print(f"    - Max concurrency: {config.monitor.max_concurrency}")

    print("\n  Offline thresholds:")
    print(f"    - Offline after: {config.default_offline_minutes} min")
    print(f"    - Critical after: {config.critical_offline_minutes} min")

    print("\n  Cleaning thresholds (days routine/deep/emergency/overdue):")
    for machine_type, t in config.cleaning_thresholds.items():
        print(f"    - {machine_type.value}: {t.routine}/{t.deep}/{t.emergency}/{t.overdue}")

    if config.storage.backend == "memory":
        print(f"\n  Machines: {len(config.machines)}")
        for machine in config.machines:
            print(f"    - {machine.id}: {machine.display_name} [{machine.type.value}]")

    print("=" * 60 + "\n")


async def run_once(controller: MonitorController) -> None:
    detector_stats, cleaning_stats = await controller.run_once()
    print(json.dumps(
        {"detector": detector_stats.to_dict(), "cleaning": cleaning_stats.to_dict()},
        indent=2,
    ))
    await controller.shutdown()


async def run_forever(controller: MonitorController) -> None:
    """Run the monitor until a shutdown signal arrives."""
    stop_event = asyncio.Event()

    def shutdown():
        logger.info("Shutdown requested...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    await controller.start()
    try:
        await stop_event.wait()
    finally:
        await controller.shutdown()


def serve(controller: MonitorController, host: str, port: int) -> None:
    """Run the HTTP API; uvicorn handles SIGINT/SIGTERM and the lifespan stops the monitor."""
    from .api import create_app

    app = create_app(controller, start_monitor=True)
    uvicorn.run(app, host=host, port=port, log_config=None)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="vendwatch - vending fleet monitor"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="monitor.yaml",
        help="Path to configuration file (default: monitor.yaml)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print configuration and exit without starting the monitor"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one detection and cleaning cycle, print the stats and exit"
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Run the HTTP API with the monitor in its lifespan"
    )
    parser.add_argument("--host", default="0.0.0.0", help="API bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="API port (default: 8000)")

    args = parser.parse_args()

    config = load_config(args.config)
    print_config_summary(config)

    if args.dry_run:
        print("Dry run mode - exiting without starting the monitor")
        sys.exit(0)

    controller = build_controller(config)

    if args.serve:
        serve(controller, args.host, args.port)
        return

    try:
        if args.once:
            asyncio.run(run_once(controller))
        else:
            logger.info("Starting monitor...")
            print("Press Ctrl+C to stop\n")
            asyncio.run(run_forever(controller))
    except KeyboardInterrupt:
        print("\nStopped by user")


if __name__ == "__main__":
    main()
