#!/usr/bin/env python
"""Main entry point for the Zero Friction Brain MCP server."""
import argparse
import logging
import os
import sys
from pathlib import Path

from zbrain_mcp.config import config
from zbrain_mcp.models.schema import IdScheme
from zbrain_mcp.observability import configure_logging
from zbrain_mcp.server.mcp_server import BrainMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Zero Friction Brain MCP Server")
    parser.add_argument(
        "--vault-dir",
        help="Root directory of the Markdown vault",
        type=str,
        default=os.environ.get("ZBRAIN_VAULT_DIR")
    )
    parser.add_argument(
        "--id-type",
        help="Numbering scheme for new Zettel notes",
        choices=[scheme.value for scheme in IdScheme],
        default=None
    )
    parser.add_argument(
        "--watch",
        help="Classify tagged inbox notes automatically as they change",
        action="store_true"
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("ZBRAIN_LOG_LEVEL", "INFO")
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.vault_dir:
        config.vault_dir = Path(args.vault_dir)
    if args.id_type:
        config.zk_id_type = IdScheme(args.id_type)
    if args.watch:
        config.auto_watch = True


def main():
    """Run the Zero Friction Brain MCP server."""
    args = parse_args()
    update_config(args)

    # Configure logging (console + persistent file logging with rotation)
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(level=log_level, console=True)
    except Exception as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    if not config.gemini_api_key:
        logger.warning(
            "ZBRAIN_GEMINI_API_KEY is not set; classifier tools will report an error"
        )

    try:
        logger.info(f"Using vault: {config.get_vault_path()}")
        server = BrainMcpServer()
    except Exception as e:
        logger.error(f"Failed to initialize server: {e}")
        sys.exit(1)

    if config.auto_watch:
        server.start_watching()

    try:
        logger.info("Starting Zero Friction Brain MCP server")
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
