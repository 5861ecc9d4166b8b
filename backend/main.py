#!/usr/bin/env python3
"""
Command-line entry point for the risk loop.

Loads configuration, wires the loop controller, optionally serves the
operator API and runs cycles until SIGINT/SIGTERM.
"""

import argparse
import json
import logging
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from riskloop import __version__
from riskloop.config import Config
from riskloop.loop_controller import LoopController
from riskloop.services.shutdown_service import ShutdownService

LIVE_MODE_GRACE_SECONDS = 5
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "uvicorn.access", "openai._base_client", "ccxt")


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(log_dir: str = "logs", verbose: bool = False, json_logs: bool = False) -> None:
    """
    Configure root logging to stdout and a log file in log_dir.

    Args:
        log_dir: Directory for riskloop.log (and riskloop.json with json_logs)
        verbose: DEBUG instead of INFO
        json_logs: Emit JSON lines on every handler and add riskloop.json
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    formatter = JSONFormatter() if json_logs else logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    handlers = [logging.StreamHandler(sys.stdout), logging.FileHandler(directory / "riskloop.log", mode="a")]
    if json_logs:
        handlers.append(logging.FileHandler(directory / "riskloop.json", mode="a"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=handlers, force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="riskloop",
        description="Decision and risk-control loop for autonomous leveraged trading agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                          # paper trading with ./.env
  python main.py --env .env.live          # alternate environment file
  python main.py --once --no-api          # single cycle, summary printed as JSON

Configuration is read from environment variables; see .env.example.
Keep RUN_MODE=paper until thresholds and agents have been checked.
        """,
    )
    parser.add_argument("--env", default=".env", help="Environment file to load (default: .env)")
    parser.add_argument("--log-dir", default="logs", help="Directory for log files (default: logs)")
    parser.add_argument("--verbose", action="store_true", help="DEBUG logging")
    parser.add_argument("--json-logs", action="store_true", help="Structured JSON logs")
    parser.add_argument("--once", action="store_true", help="Run one cycle and exit")
    parser.add_argument("--no-api", action="store_true", help="Do not serve the operator API")
    parser.add_argument("--version", action="version", version=f"riskloop {__version__}")
    return parser


def load_config(env_file: str) -> Optional[Config]:
    """Load env_file (if not the default) and build the Config; None on error."""
    logger = logging.getLogger(__name__)
    if env_file != ".env":
        if not Path(env_file).exists():
            logger.error(f"[ERROR] Environment file not found: {env_file}")
            return None
        load_dotenv(env_file, override=True)

    try:
        config = Config.from_env()
    except ValueError as e:
        logger.error(f"[ERROR] Configuration error: {e}")
        logger.error("See .env.example for the supported variables.")
        return None

    logger.info(
        f"[OK] Configuration loaded: mode={config.run_mode}, symbols={','.join(config.symbols)}, "
        f"interval={config.cycle_interval_minutes}m"
    )
    return config


def confirm_live_mode() -> bool:
    """Give the operator a few seconds to abort before real orders are sent."""
    logger = logging.getLogger(__name__)
    logger.warning("!" * 80)
    logger.warning("LIVE MODE: orders will be sent to the exchange with real funds")
    logger.warning(f"Press Ctrl+C within {LIVE_MODE_GRACE_SECONDS} seconds to abort...")
    logger.warning("!" * 80)
    try:
        time.sleep(LIVE_MODE_GRACE_SECONDS)
    except KeyboardInterrupt:
        logger.info("Aborted by operator")
        return False
    return True


def start_api_server(controller: LoopController, host: str, port: int) -> threading.Thread:
    """Register the controller with the operator API and serve it from a daemon thread."""
    import uvicorn
    import api_server

    logger = logging.getLogger(__name__)
    api_server.loop_controller_instance = controller

    def serve():
        try:
            uvicorn.run(api_server.app, host=host, port=port, log_level="warning")
        except Exception as e:
            logger.error(f"[ERROR] Operator API stopped: {e}", exc_info=True)

    thread = threading.Thread(target=serve, name="operator-api", daemon=True)
    thread.start()
    logger.info(f"Operator API listening on http://{host}:{port}")
    return thread


def run_until_stopped(controller: LoopController) -> None:
    """Start the scheduler and block until a shutdown signal stops it."""
    logger = logging.getLogger(__name__)
    shutdown_service = ShutdownService(controller)
    shutdown_service.register_signal_handlers()

    controller.start()
    logger.info("Scheduler started, press Ctrl+C to stop after the current cycle")
    try:
        while not controller.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        shutdown_service.shutdown()
        controller.wait()
    logger.info("Loop stopped")


def main(argv=None) -> int:
    """
    Run the loop.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.log_dir, verbose=args.verbose, json_logs=args.json_logs)
    logger = logging.getLogger(__name__)
    logger.info(f"riskloop v{__version__} starting")

    config = load_config(args.env)
    if config is None:
        return 1
    if config.run_mode == "live" and not confirm_live_mode():
        return 0

    try:
        controller = LoopController(config)
    except (ValueError, OSError) as e:
        logger.error(f"[ERROR] Failed to initialize loop controller: {e}", exc_info=True)
        return 1

    if args.once:
        summary = controller.run_cycle_once()
        print(json.dumps(summary.to_dict(), indent=2, default=str))
        return 0 if summary.failed == 0 else 1

    if not args.no_api:
        start_api_server(controller, config.api_host, config.api_port)
    run_until_stopped(controller)
    return 0


if __name__ == "__main__":
    sys.exit(main())
