"""Main entry point for Market Intel.

Subcommands:
  worker   — run the ingestion worker until interrupted
  trigger  — queue an "ingest now" command
  ingest   — run one ingestion pass in-process
  feed     — print the ranked feed (JSON lines)
  report   — print the cached / regenerated market report
  refresh  — ingest, then force a new report
  chat     — ask a question grounded in the latest news
"""

import argparse
import json
import logging
import sys
import threading

from .app import MarketIntel
from .config import load_config
from .errors import USER_FACING_MESSAGE, MarketIntelError

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging to stdout."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _run_worker(app: MarketIntel) -> None:
    app.start_worker()
    try:
        # Block the main thread; the worker runs on its own thread
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down worker...")


def _run_command(app: MarketIntel, args: argparse.Namespace) -> None:
    if args.command == "worker":
        _run_worker(app)
    elif args.command == "trigger":
        task = app.trigger_ingestion()
        print(json.dumps({"status": "Scrape triggered", "task_id": task.id}))
    elif args.command == "ingest":
        print(app.ingest_now().model_dump_json(indent=2))
    elif args.command == "feed":
        for item in app.intel_feed():
            print(item.model_dump_json())
    elif args.command == "report":
        print(app.market_report().model_dump_json(indent=2))
    elif args.command == "refresh":
        print(app.refresh_all().model_dump_json(indent=2))
    elif args.command == "chat":
        print(app.chat(" ".join(args.message)))


def run(args: argparse.Namespace) -> int:
    """Execute one subcommand; returns the process exit code."""
    _setup_logging(args.verbose)
    config, settings = load_config(args.config)

    try:
        app = MarketIntel.connect(config, settings)
    except (MarketIntelError, ValueError):
        logger.exception("❌ Fatal: could not connect to infrastructure")
        print(USER_FACING_MESSAGE, file=sys.stderr)
        return 1

    try:
        _run_command(app, args)
    except (MarketIntelError, ValueError):
        logger.exception("Command %s failed", args.command)
        print(USER_FACING_MESSAGE, file=sys.stderr)
        return 1
    finally:
        app.close()
    return 0


def cli() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Market Intel - financial news ingestion & reports")
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to config.yaml (default: config.yaml)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("worker", help="Run the ingestion worker")
    sub.add_parser("trigger", help="Queue an ingestion run")
    sub.add_parser("ingest", help="Run one ingestion pass now")
    sub.add_parser("feed", help="Print ranked recent news")
    sub.add_parser("report", help="Print the market report")
    sub.add_parser("refresh", help="Ingest, then regenerate the report")
    chat = sub.add_parser("chat", help="Ask about recent news")
    chat.add_argument("message", nargs="+")

    args = parser.parse_args()
    sys.exit(run(args))


if __name__ == "__main__":
    cli()
