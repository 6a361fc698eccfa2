"""
SolChat entry point.

This file handles startup concerns (arg-parsing, env setup, logging) and launches the appropriate
interface (API server, or the API plus the terminal chat client).
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from solchat.api.app import run_api
from solchat.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # Request lines from the RPC and API clients are noise at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the SolChat application.

    This function sets up the command-line interface, initializes logging, and starts the
    application in either API or CLI mode.
    """
    if argv is None:
        argv = sys.argv[1:]

    # Ensure the data directory exists
    data_dir = Path(settings.DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)
    # Ensure the data directory is writable
    if not data_dir.is_dir() or not os.access(data_dir, os.W_OK):
        logger.error("Data directory is not writable: %s", data_dir)
        sys.exit(1)

    parser = argparse.ArgumentParser(description="Run the SolChat Solana wallet assistant")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Launch the REST API only, or the API plus the terminal chat client (default: api)",
    )
    parser.add_argument(
        "--network",
        choices=["devnet", "mainnet"],
        type=str.lower,
        default=settings.DEFAULT_NETWORK,
        help="Cluster the chat client starts on (default from env: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override settings with command-line arguments
    settings.LOG_LEVEL = args.log_level
    settings.DEFAULT_NETWORK = args.network

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting SolChat [%s mode, %s]", args.mode, settings.DEFAULT_NETWORK)
    logger.debug("Settings: %s", settings.model_dump(exclude={"ANTHROPIC_API_KEY", "OPENAI_API_KEY"}))

    if args.mode == "api":
        # Run only the API server
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return

    import threading  # pylint: disable=import-outside-toplevel

    # Start API server in a separate thread
    api_thread = threading.Thread(
        target=run_api,
        kwargs={
            "host": "0.0.0.0",
            "port": settings.API_PORT,
            "reload": False,  # Reload doesn't work well with threading
            "log_level": "warning",
        },
        daemon=True,
    )
    api_thread.start()

    # Lazy import to avoid CLI dependencies if not needed
    from solchat.client.cli import (  # pylint: disable=import-outside-toplevel
        run_cli,
    )

    # Run CLI in main thread
    run_cli()


if __name__ == "__main__":
    main()
