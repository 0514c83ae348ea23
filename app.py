#!/usr/bin/env python3
"""
Credit Risk & Settlement Engine - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
- engine mode: risk monitor, reconciliation sweep and due
  settlement processing run until SIGINT/SIGTERM
- api mode: same engine plus the admin API served by uvicorn

============================================================
USAGE
============================================================
Direct execution:
    python app.py --mode engine
    python app.py --mode api --port 8080 --config config.yaml

Environment-based configuration:
    DATABASE_URL=postgresql://... LOG_LEVEL=DEBUG python app.py --persist

============================================================
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from core.database import Database
from core.logging_setup import setup_logging
from container import EngineConfig, EngineContainer


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="credit-settlement-engine",
        description="Credit risk monitoring and trade settlement reconciliation engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Runtime Modes:
  engine  - Background monitoring, settlement and reconciliation only
  api     - Engine plus the admin REST API

Examples:
  %(prog)s --mode engine
  %(prog)s --mode api --host 0.0.0.0 --port 8000
  %(prog)s --mode engine --config config.yaml --persist
        """,
    )

    parser.add_argument(
        "--mode", "-m",
        type=str,
        choices=["engine", "api"],
        default=os.getenv("RUNTIME_MODE", "engine"),
        help="Runtime mode (default: engine)",
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        metavar="PATH",
        help="YAML configuration file (credit_risk, settlement, notifications sections)",
    )

    parser.add_argument(
        "--persist",
        action="store_true",
        help="Store state in DATABASE_URL instead of memory",
    )

    # --------------------------------------------------------
    # API Options
    # --------------------------------------------------------
    api_group = parser.add_argument_group("API Options")

    api_group.add_argument("--host", type=str, default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    api_group.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        default="text",
        help="Logging format (default: text)",
    )

    return parser


def build_container(args: argparse.Namespace) -> EngineContainer:
    """Wire the engine from CLI arguments."""
    config = EngineConfig.from_yaml(args.config) if args.config else EngineConfig.from_env()
    database: Optional[Database] = Database.from_env() if args.persist else None
    return EngineContainer(config=config, database=database)


# ============================================================
# RUNNERS
# ============================================================

async def run_engine(container: EngineContainer) -> int:
    """Run the engine until a shutdown signal arrives."""
    logger = logging.getLogger(__name__)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

    await container.start()
    logger.info("Engine running (press Ctrl+C to stop)...")

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutdown requested")
        await container.stop()

    return 0


async def run_api(container: EngineContainer, host: str, port: int, log_level: str) -> int:
    """Run the engine and serve the admin API. uvicorn handles signals."""
    import uvicorn

    from admin_api.main import create_app

    app = create_app(container)
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level=log_level.lower()))

    await container.start()
    try:
        await server.serve()
    finally:
        await container.stop()

    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    logger = setup_logging(level=args.log_level, log_format=args.log_format)
    logger.info(f"Starting in {args.mode} mode")

    try:
        container = build_container(args)
        if args.mode == "api":
            return asyncio.run(run_api(container, args.host, args.port, args.log_level))
        return asyncio.run(run_engine(container))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
