"""
fleetrun CLI - Main entry point.

Usage:
    fleetrun -f deploy.yaml                  # one host at a time
    fleetrun -f deploy.yaml --workers 8      # eight hosts in parallel
    fleetrun -f deploy.yaml --log-level DEBUG
"""

import argparse
import logging
import sys
import threading
from functools import partial
from pathlib import Path

from fleetrun import __version__
from fleetrun.core.config import Config
from fleetrun.jobs.manager import TaskManager, configure_logging
from fleetrun.ssh.client import new_client


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetrun",
        description="Copy files and run commands on many hosts over SSH",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fleetrun -f deploy.yaml
  fleetrun -f deploy.yaml -w 8 --timeout 10
  FLEETRUN_CONFIG=deploy.yaml fleetrun
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config", "-f",
        help="Config file, accepts YAML (or set FLEETRUN_CONFIG)"
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        help="Hosts to process in parallel (default: execution.max_workers, 1)"
    )
    parser.add_argument(
        "--timeout",
        type=int,
        help="Override SSH connect timeout (seconds)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: logging.level from config, INFO)"
    )
    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = Config.load(Path(args.config) if args.config else None)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    level_name = args.log_level or config.logging.level
    configure_logging(
        level=getattr(logging, level_name, logging.INFO),
        log_file=str(config.logging.file) if config.logging.file else None,
    )

    workers = args.workers if args.workers is not None else config.execution.max_workers
    if workers < 1:
        print("Error: --workers must be at least 1", file=sys.stderr)
        return 1
    timeout = args.timeout if args.timeout is not None else config.execution.timeout

    if not config.devices:
        print("Warning: no devices in config, nothing to do", file=sys.stderr)

    manager = TaskManager(
        config.conn_infos(),
        config.copy,
        config.execute,
        client_factory=partial(new_client, timeout=timeout),
    )

    runner = threading.Thread(target=manager.start, args=(workers,), name="fleetrun-pool", daemon=True)
    runner.start()

    for record in manager.results():
        print(f"----{record.device}----\n{record.log}", flush=True)

    runner.join()
    return 0


if __name__ == "__main__":
    sys.exit(main())
