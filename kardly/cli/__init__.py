"""CLI entry point and subcommand assembly."""

import argparse
import logging
import sys

from kardly.db import get_db_path


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="kardly",
        description="Kardly - photocard catalog and collection backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--db",
        metavar="PATH",
        help="Database path (default: $HOME/.kardly/kardly.sqlite, or KARDLY_DB env var)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    from kardly.cli import add, catalog, db_cmd, server

    for module in [db_cmd, add, catalog, server]:
        module.register(subparsers)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.db_path = get_db_path(args.db)

    return args.func(args)
