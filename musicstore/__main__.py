"""
musicstore - command line entry point

Run with: python -m musicstore --database-dir DIR {init,info}
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from musicstore.config import format_last_import, load_library_settings
from musicstore.core.music_db import MusicDatabase

# Tables reported by `info`, in catalog order.
INFO_TABLES = ("Share", "Folder", "Artist", "Album", "Genre", "Song")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="musicstore",
        description="Create and inspect the music library metadata database",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "-d",
        "--database-dir",
        type=Path,
        default=Path("."),
        help="Directory holding MusicDatabase.db3 (default: current directory)",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Library settings TOML file (default: built-in defaults)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    parser.add_argument(
        "command",
        choices=("init", "info"),
        help="init: open or create the database; info: print schema version and row counts",
    )

    return parser.parse_args(argv)


async def run_command(args: argparse.Namespace) -> int:
    """Execute one CLI command against the database. Returns the exit code."""
    settings = load_library_settings(args.config)
    db = MusicDatabase(args.database_dir, settings)

    if not await db.open():
        return 1

    try:
        if args.command == "info":
            version = await db.get_schema_version()
            print(f"Database:       {db.database_name}")
            print(f"Schema version: {version if version is not None else 'unknown'}")
            print(f"Last import:    {format_last_import(settings.last_import)}")
            for table in INFO_TABLES:
                result = await db.execute_query(f"SELECT COUNT(*) FROM {table};")
                print(f"{table + ':':<16}{result.get(0, 0, default='?')}")
    finally:
        await db.close()

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    try:
        return asyncio.run(run_command(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
