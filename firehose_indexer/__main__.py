"""
Firehose indexer entry point.

    python -m firehose_indexer [--cursor-file PATH] [--stats-interval N]
                               [--log-level LEVEL] [--create-schema]
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .config import IndexerConfig
from .errors import ConfigError
from .supervisor import IndexerSupervisor

logger = logging.getLogger("firehose_indexer")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Community firehose indexer')
    parser.add_argument('--cursor-file', help='Cursor file path (overrides CURSOR_FILE)')
    parser.add_argument('--stats-interval', type=int, help='Seconds between stats lines (overrides STATS_INTERVAL)')
    parser.add_argument('--log-level', help='Logging level (overrides LOG_LEVEL)')
    parser.add_argument('--create-schema', action='store_true', help='Create tables if missing')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = IndexerConfig.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        logger.error(f"[Indexer] {e}")
        return 1

    if args.cursor_file:
        config.cursor_file = args.cursor_file
    if args.stats_interval:
        config.stats_interval = args.stats_interval
    if args.log_level:
        config.log_level = args.log_level.upper()
    if args.create_schema:
        config.create_schema = True

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    supervisor = IndexerSupervisor(config)
    return asyncio.run(supervisor.run())


if __name__ == "__main__":
    sys.exit(main())
