"""Add command: kardly add <image> [--group ID] [--member ID] [--album ID]"""

import mimetypes
import sys
from pathlib import Path

from kardly.db import ConnectionPool, get_connection, init_db
from kardly.errors import UploadRejectedError
from kardly.services.add_photocard import PhotocardWorkflow
from kardly.services.asset_store import get_asset_store
from kardly.services.uploads import build_upload_intent

mimetypes.add_type("image/webp", ".webp")


def register(subparsers):
    """Register the add subcommand."""
    parser = subparsers.add_parser(
        "add",
        help="Upload an image and create a photocard",
        description="Upload a photocard image to the asset store and record it.",
    )
    parser.add_argument("image", help="Path to a JPG, PNG or WEBP image")
    parser.add_argument("--group", dest="group_id", metavar="ID", help="Group ID")
    parser.add_argument("--member", dest="member_id", metavar="ID", help="Member ID")
    parser.add_argument("--album", dest="album_id", metavar="ID", help="Album ID")
    parser.add_argument("--user", dest="user_id", metavar="ID", help="Owner user ID")
    parser.set_defaults(func=run)


def run(args):
    """Run the add command."""
    path = Path(args.image).expanduser()
    if not path.is_file():
        print(f"Error: file not found: {path}", file=sys.stderr)
        return 1

    init_db(get_connection(args.db_path))

    content_type = mimetypes.guess_type(path.name)[0]
    try:
        intent = build_upload_intent(
            path.read_bytes(),
            content_type,
            path.name,
            group_id=args.group_id,
            member_id=args.member_id,
            album_id=args.album_id,
        )
    except UploadRejectedError as e:
        print(f"{e.return_code}: {e.message}", file=sys.stderr)
        for err in e.errors:
            print(f"  {err['field']}: {err['message']}", file=sys.stderr)
        return 1

    pool = ConnectionPool(args.db_path, size=1)
    try:
        result = PhotocardWorkflow(pool, get_asset_store()).create(intent, user_id=args.user_id)
    finally:
        pool.close()

    if not result.ok:
        print(f"{result.return_code}: {result.message}", file=sys.stderr)
        return 1

    print(f"Added photocard {result.photocard_id}")
    print(f"  Image: {result.image_url}")
    return 0
