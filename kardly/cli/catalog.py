"""Catalog commands: kardly groups|members|albums list/create"""

import sys

from kardly.db import AlbumRepository, GroupRepository, MemberRepository, get_connection, init_db
from kardly.errors import InvalidReferenceError


def register(subparsers):
    """Register the groups, members and albums subcommands."""
    # groups
    groups = subparsers.add_parser("groups", help="List or create groups")
    gsub = groups.add_subparsers(dest="catalog_action", metavar="<action>")
    p = gsub.add_parser("list", help="List groups")
    p.add_argument("--search", metavar="TEXT", help="Filter by name substring")
    p = gsub.add_parser("create", help="Create a group (returns existing on name match)")
    p.add_argument("name", help="Group name")
    p.add_argument("--image-url", metavar="URL", help="Group image URL")
    groups.set_defaults(func=run_groups)

    # members
    members = subparsers.add_parser("members", help="List or create group members")
    msub = members.add_subparsers(dest="catalog_action", metavar="<action>")
    p = msub.add_parser("list", help="List members")
    p.add_argument("--group", dest="group_id", metavar="ID", help="Only members of this group")
    p.add_argument("--search", metavar="TEXT", help="Filter by name or stage name")
    p = msub.add_parser("create", help="Create a member (returns existing on name match)")
    p.add_argument("group_id", help="Group ID")
    p.add_argument("name", help="Member name")
    p.add_argument("--stage-name", metavar="NAME", help="Stage name")
    p.add_argument("--image-url", metavar="URL", help="Member image URL")
    members.set_defaults(func=run_members)

    # albums
    albums = subparsers.add_parser("albums", help="List or create albums")
    asub = albums.add_subparsers(dest="catalog_action", metavar="<action>")
    p = asub.add_parser("list", help="List albums")
    p.add_argument("--group", dest="group_id", metavar="ID", help="Only albums of this group")
    p.add_argument("--search", metavar="TEXT", help="Filter by title substring")
    p = asub.add_parser("create", help="Create an album (returns existing on title match)")
    p.add_argument("group_id", help="Group ID")
    p.add_argument("title", help="Album title")
    p.add_argument("--cover-url", metavar="URL", help="Cover image URL")
    albums.set_defaults(func=run_albums)


def _open(args):
    conn = get_connection(args.db_path)
    init_db(conn)
    return conn


def _report(kind, label, entity_id, created):
    verb = "Created" if created else "Already exists:"
    print(f"{verb} {kind} {label} ({entity_id})")


def run_groups(args):
    """Run the groups command."""
    conn = _open(args)
    repo = GroupRepository(conn)

    if args.catalog_action == "create":
        group, created = repo.find_or_create(args.name, args.image_url)
        conn.commit()
        _report("group", group.name, group.id, created)
    elif args.catalog_action == "list":
        rows = repo.list(search=args.search)
        for g in rows:
            print(f"{g.id}  {g.name}")
        print(f"{len(rows)} group(s)")
    else:
        print("Usage: kardly groups {list,create}")


def run_members(args):
    """Run the members command."""
    conn = _open(args)
    repo = MemberRepository(conn)

    if args.catalog_action == "create":
        try:
            member, created = repo.find_or_create(args.group_id, args.name, args.stage_name, args.image_url)
        except InvalidReferenceError as e:
            print(f"{e.return_code}: {e.message}", file=sys.stderr)
            return 1
        conn.commit()
        _report("member", member.stage_name or member.name, member.id, created)
    elif args.catalog_action == "list":
        rows = repo.list(group_id=args.group_id, search=args.search)
        for m in rows:
            stage = f" [{m['stage_name']}]" if m["stage_name"] else ""
            print(f"{m['id']}  {m['name']}{stage}  ({m['group_name']})")
        print(f"{len(rows)} member(s)")
    else:
        print("Usage: kardly members {list,create}")


def run_albums(args):
    """Run the albums command."""
    conn = _open(args)
    repo = AlbumRepository(conn)

    if args.catalog_action == "create":
        try:
            album, created = repo.find_or_create(args.group_id, args.title, args.cover_url)
        except InvalidReferenceError as e:
            print(f"{e.return_code}: {e.message}", file=sys.stderr)
            return 1
        conn.commit()
        _report("album", album.title, album.id, created)
    elif args.catalog_action == "list":
        rows = repo.list(group_id=args.group_id, search=args.search)
        for a in rows:
            print(f"{a['id']}  {a['title']}  ({a['group_name']})")
        print(f"{len(rows)} album(s)")
    else:
        print("Usage: kardly albums {list,create}")
