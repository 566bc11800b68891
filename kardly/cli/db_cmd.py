"""Database management commands: kardly db init/status"""

from kardly.db import SCHEMA_VERSION, PhotocardRepository, get_connection, init_db
from kardly.db.schema import get_current_version


def register(subparsers):
    """Register the db subcommand."""
    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", metavar="<subcommand>")

    init_parser = db_subparsers.add_parser("init", help="Initialize or migrate database")
    init_parser.add_argument(
        "--force", action="store_true", help="Recreate tables even if they exist"
    )
    init_parser.set_defaults(func=run_init)

    status_parser = db_subparsers.add_parser("status", help="Show schema version and row counts")
    status_parser.set_defaults(func=run_status)

    db_parser.set_defaults(func=lambda args: db_parser.print_help())


def run_init(args):
    """Initialize the database."""
    conn = get_connection(args.db_path)

    created = init_db(conn, force=args.force)

    if created:
        print(f"Database initialized at: {args.db_path}")
        print(f"Schema version: {SCHEMA_VERSION}")
    else:
        print(f"Database already up to date (version {SCHEMA_VERSION})")
        print(f"Location: {args.db_path}")


def run_status(args):
    """Print schema version and table sizes."""
    conn = get_connection(args.db_path)
    version = get_current_version(conn)

    print(f"Location: {args.db_path}")
    if version == 0:
        print("Not initialized (run: kardly db init)")
        return
    print(f"Schema version: {version}" + ("" if version >= SCHEMA_VERSION else f" (latest {SCHEMA_VERSION})"))

    for table in ("kpop_groups", "group_members", "albums", "user_collections"):
        count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        print(f"  {table:<18} {count}")
    print(f"  {'photocards':<18} {PhotocardRepository(conn).count()}")
