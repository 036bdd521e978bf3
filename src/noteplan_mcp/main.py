#!/usr/bin/env python
"""Command-line entry point: ``noteplan-mcp``."""
import argparse
import logging
import os
import shutil
import sys
from pathlib import Path

from noteplan_mcp import __version__
from noteplan_mcp.config import config
from noteplan_mcp.models.db_models import init_db
from noteplan_mcp.observability import configure_logging
from noteplan_mcp.server.mcp_server import NotePlanMcpServer
from noteplan_mcp.storage.local_store import CALENDAR_DIR, NOTES_DIR


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="noteplan-mcp",
        description="Serve a NotePlan note tree and its spaces over MCP (stdio).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--storage-path",
        default=os.environ.get("NOTEPLAN_STORAGE_PATH"),
        help="NotePlan data root holding Notes/ and Calendar/",
    )
    parser.add_argument(
        "--database-path",
        default=os.environ.get("NOTEPLAN_DATABASE_PATH"),
        help="SQLite file backing spaces",
    )
    parser.add_argument(
        "--ripgrep-path",
        default=None,
        help="ripgrep executable used for content search (default: rg on PATH)",
    )
    parser.add_argument(
        "--no-ripgrep",
        action="store_true",
        help="Always use the in-process scan for content search",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("NOTEPLAN_LOG_LEVEL", "INFO"),
    )
    parser.add_argument(
        "--log-dir",
        default=os.environ.get("NOTEPLAN_LOG_DIR"),
        help="Directory for rotating log files (default: ~/.noteplan-mcp/logs)",
    )
    return parser.parse_args(argv)


def update_config(args):
    """Apply command-line overrides to the global config."""
    if args.storage_path:
        config.storage_path = Path(args.storage_path)
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.ripgrep_path:
        config.ripgrep_path = args.ripgrep_path
    if args.no_ripgrep:
        config.ripgrep_enabled = False


def _check_storage_root(root: Path, logger: logging.Logger) -> None:
    missing = [name for name in (NOTES_DIR, CALENDAR_DIR) if not (root / name).is_dir()]
    if missing:
        logger.warning(
            f"{root} has no {' or '.join(missing)} folder; "
            "it will be created on first write"
        )


def main():
    args = parse_args()
    update_config(args)

    level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        configure_logging(log_dir=args.log_dir, level=level)
    except OSError as e:
        logging.basicConfig(level=level, stream=sys.stderr)
        logging.getLogger(__name__).warning(f"File logging disabled: {e}")
    logger = logging.getLogger(__name__)

    storage_root = config.get_storage_root()
    storage_root.mkdir(parents=True, exist_ok=True)
    _check_storage_root(storage_root, logger)

    if config.ripgrep_enabled and shutil.which(config.ripgrep_path) is None:
        logger.warning(
            f"ripgrep not found at {config.ripgrep_path!r}; content search will use the slower scan"
        )

    try:
        engine = init_db()
    except Exception as e:
        logger.error(f"Could not open spaces database {config.get_db_url()}: {e}")
        sys.exit(1)

    logger.info(f"noteplan-mcp {__version__} serving {storage_root}")
    try:
        NotePlanMcpServer(engine=engine, storage_root=storage_root).run()
    except Exception as e:
        logger.error(f"Server stopped: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
