"""HTTP API server: kardly serve --port 3000"""

import json
import logging
import re
import sys
from functools import partial
from http.server import BaseHTTPRequestHandler, HTTPServer
from socketserver import ThreadingMixIn
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from kardly.db import (
    AlbumRepository,
    CollectionRepository,
    ConnectionPool,
    GroupRepository,
    MemberRepository,
    PhotocardRepository,
    get_connection,
    get_db_path,
    init_db,
)
from kardly import response
from kardly.errors import (
    AuthenticationRequired,
    KardlyError,
    ReturnCode,
    UploadRejectedError,
    ValidationFailure,
)
from kardly.services.add_photocard import PhotocardWorkflow
from kardly.services.asset_store import AssetStore, get_asset_store
from kardly.services.uploads import MAX_UPLOAD_BYTES, build_upload_intent
from kardly.utils import is_uuid, now_iso

log = logging.getLogger(__name__)

# Multipart framing and form fields on top of the image itself
_MULTIPART_OVERHEAD = 64 * 1024

_TOGGLE_FLAGS = {
    "/api/collection/toggle-owned": ("owned", "is_owned", "Added to collection", "Removed from collection"),
    "/api/collection/toggle-wishlist": ("wishlisted", "is_wishlisted", "Added to wishlist", "Removed from wishlist"),
    "/api/collection/toggle-favorite": ("favorite", "is_favorite", "Added to favorites", "Removed from favorites"),
}


class ThreadingHTTPServer(ThreadingMixIn, HTTPServer):
    daemon_threads = True


class KardlyApp:
    """Shared state for request handlers: the pool and the workflow."""

    def __init__(self, pool: ConnectionPool, store: AssetStore):
        self.pool = pool
        self.store = store
        self.workflow = PhotocardWorkflow(pool, store)


def _parse_multipart(body: bytes, boundary: str) -> Tuple[Dict[str, str], Dict[str, Tuple[str, str, bytes]]]:
    """Split a multipart/form-data body into form fields and files.

    Files map field name -> (filename, content_type, data).
    """
    fields: Dict[str, str] = {}
    files: Dict[str, Tuple[str, str, bytes]] = {}

    for part in body.split(f"--{boundary}".encode()):
        if not part or part.strip() in (b"", b"--"):
            continue

        header_end = part.find(b"\r\n\r\n")
        if header_end == -1:
            continue
        header_str = part[:header_end].decode("utf-8", errors="replace")
        content = part[header_end + 4:]
        if content.endswith(b"\r\n"):
            content = content[:-2]

        name_match = re.search(r'name="([^"]*)"', header_str)
        if not name_match:
            continue
        name = name_match.group(1)

        filename_match = re.search(r'filename="([^"]*)"', header_str)
        if filename_match:
            ctype_match = re.search(r"Content-Type:\s*([^\r\n]+)", header_str, re.IGNORECASE)
            ctype = ctype_match.group(1).strip() if ctype_match else "application/octet-stream"
            if name in files:
                raise UploadRejectedError("Only one file can be uploaded at a time", ReturnCode.TOO_MANY_FILES)
            files[name] = (filename_match.group(1), ctype, content)
        else:
            fields[name] = content.decode("utf-8", errors="replace").strip()

    return fields, files


def _opt_uuid(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value in (None, ""):
        return None
    if not isinstance(value, str) or not is_uuid(value):
        raise ValidationFailure(f"{key} must be a valid UUID")
    return value


def _req_str(data: Dict[str, Any], key: str, max_len: int) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailure(f"{key} is required")
    value = value.strip()
    if len(value) > max_len:
        raise ValidationFailure(f"{key} must be at most {max_len} characters")
    return value


def _opt_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValidationFailure(f"{key} must be a string")
    return value.strip()


def _int(data: Dict[str, Any], key: str, default: int, lo: int, hi: Optional[int] = None) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailure(f"{key} must be an integer")
    if value < lo or (hi is not None and value > hi):
        raise ValidationFailure(f"{key} is out of range")
    return value


class KardlyHandler(BaseHTTPRequestHandler):
    """HTTP handler for the Kardly JSON API."""

    def __init__(self, app: KardlyApp, *args, **kwargs):
        self.app = app
        super().__init__(*args, **kwargs)

    # ── Routing ──

    def do_GET(self):
        path = urlparse(self.path).path

        if path == "/health":
            self._send_json({"return_code": ReturnCode.SUCCESS, "status": "healthy", "timestamp": now_iso()})
        else:
            self._send_json(response.error(ReturnCode.NOT_FOUND, "Endpoint not found"), 404)

    def do_POST(self):
        path = urlparse(self.path).path

        routes = {
            "/api/add_photocard": self._api_add_photocard,
            "/api/photocards": self._api_photocards,
            "/api/groups": self._api_groups,
            "/api/groups/create": self._api_groups_create,
            "/api/members": self._api_members,
            "/api/members/create": self._api_members_create,
            "/api/albums": self._api_albums,
            "/api/albums/create": self._api_albums_create,
            "/api/collection/status": self._api_collection_status,
            "/api/collection/photocards": self._api_collection_photocards,
        }

        if path in routes:
            self._dispatch(routes[path])
        elif path in _TOGGLE_FLAGS:
            self._dispatch(partial(self._api_collection_toggle, path))
        else:
            self._send_json(response.error(ReturnCode.NOT_FOUND, "Endpoint not found"), 404)

    def _dispatch(self, handler):
        try:
            body, status = handler()
        except AuthenticationRequired as e:
            body, status = response.from_exception(e), 401
        except KardlyError as e:
            body, status = response.from_exception(e), response.http_status(e.return_code)
        except Exception:
            log.exception("Unhandled error on %s", self.path)
            body, status = response.server_error("An unexpected error occurred"), 500
        self._send_json(body, status)

    # ── Request helpers ──

    def _principal(self) -> Optional[str]:
        """User id asserted by the fronting auth layer, if any."""
        return self.headers.get("X-User-Id") or None

    def _require_principal(self) -> str:
        user_id = self._principal()
        if not user_id:
            raise AuthenticationRequired("Authentication required")
        return user_id

    def _read_json_body(self) -> Dict[str, Any]:
        content_length = int(self.headers.get("Content-Length", 0))
        if content_length == 0:
            return {}
        body = self.rfile.read(content_length)
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            raise ValidationFailure("Invalid JSON")
        if not isinstance(data, dict):
            raise ValidationFailure("Expected a JSON object")
        return data

    # ── Photocards ──

    def _api_add_photocard(self):
        content_type = self.headers.get("Content-Type", "")
        if "multipart/form-data" not in content_type or "boundary=" not in content_type:
            raise UploadRejectedError("Expected multipart/form-data")

        content_length = int(self.headers.get("Content-Length", 0))
        if content_length > MAX_UPLOAD_BYTES + _MULTIPART_OVERHEAD:
            raise UploadRejectedError("File size exceeds 5MB limit", ReturnCode.FILE_TOO_LARGE)

        boundary = content_type.split("boundary=")[1].split(";")[0].strip().strip('"')
        fields, files = _parse_multipart(self.rfile.read(content_length), boundary)

        unexpected = [name for name in files if name != "image"]
        if unexpected:
            raise UploadRejectedError("Unexpected file field", ReturnCode.UNEXPECTED_FIELD)

        filename, file_ctype, data = files.get("image", (None, None, None))
        intent = build_upload_intent(
            data,
            file_ctype,
            filename,
            group_id=fields.get("group_id"),
            member_id=fields.get("member_id"),
            album_id=fields.get("album_id"),
        )

        result = self.app.workflow.create(intent, user_id=self._principal())
        status = 201 if result.ok else response.http_status(result.return_code)
        return result.to_dict(), status

    def _api_photocards(self):
        user_id = self._require_principal()
        data = self._read_json_body()
        limit = _int(data, "limit", 50, 1, 100)
        offset = _int(data, "offset", 0, 0)

        with self.app.pool.connection() as conn:
            rows, total = PhotocardRepository(conn).list(
                user_id=user_id,
                group_id=_opt_uuid(data, "group_id"),
                member_id=_opt_uuid(data, "member_id"),
                album_id=_opt_uuid(data, "album_id"),
                search=_opt_str(data, "search"),
                limit=limit,
                offset=offset,
            )

        return response.success(photocards=rows, count=len(rows), total=total, limit=limit, offset=offset), 200

    # ── Catalog ──

    def _api_groups(self):
        data = self._read_json_body()
        with self.app.pool.connection() as conn:
            groups = [
                {"id": g.id, "name": g.name, "image_url": g.image_url, "is_active": g.is_active, "created_at": g.created_at}
                for g in GroupRepository(conn).list(search=_opt_str(data, "search"))
            ]
        return response.success(groups=groups, count=len(groups)), 200

    def _api_groups_create(self):
        data = self._read_json_body()
        name = _req_str(data, "name", 100)
        image_url = _opt_str(data, "image_url")

        with self.app.pool.connection() as conn:
            group, created = GroupRepository(conn).find_or_create(name, image_url)

        return response.success(
            group_id=group.id,
            name=group.name,
            image_url=group.image_url,
            is_active=group.is_active,
            created_at=group.created_at,
            already_exists=not created,
        ), 201 if created else 200

    def _api_members(self):
        data = self._read_json_body()
        with self.app.pool.connection() as conn:
            members = MemberRepository(conn).list(
                group_id=_opt_uuid(data, "group_id"),
                search=_opt_str(data, "search"),
            )
        return response.success(members=members, count=len(members)), 200

    def _api_members_create(self):
        data = self._read_json_body()
        group_id = _opt_uuid(data, "group_id")
        if group_id is None:
            raise ValidationFailure("group_id is required")
        name = _req_str(data, "name", 100)
        stage_name = _opt_str(data, "stage_name")
        if stage_name and len(stage_name) > 100:
            raise ValidationFailure("stage_name must be at most 100 characters")

        with self.app.pool.connection() as conn:
            member, created = MemberRepository(conn).find_or_create(
                group_id, name, stage_name, _opt_str(data, "image_url")
            )

        return response.success(
            member_id=member.id,
            group_id=member.group_id,
            name=member.name,
            stage_name=member.stage_name,
            image_url=member.image_url,
            is_active=member.is_active,
            created_at=member.created_at,
            already_exists=not created,
        ), 201 if created else 200

    def _api_albums(self):
        data = self._read_json_body()
        with self.app.pool.connection() as conn:
            albums = AlbumRepository(conn).list(
                group_id=_opt_uuid(data, "group_id"),
                search=_opt_str(data, "search"),
            )
        return response.success(albums=albums, count=len(albums)), 200

    def _api_albums_create(self):
        data = self._read_json_body()
        group_id = _opt_uuid(data, "group_id")
        if group_id is None:
            raise ValidationFailure("group_id is required")
        title = _req_str(data, "title", 200)

        with self.app.pool.connection() as conn:
            album, created = AlbumRepository(conn).find_or_create(
                group_id, title, _opt_str(data, "cover_image_url")
            )

        return response.success(
            album_id=album.id,
            group_id=album.group_id,
            title=album.title,
            cover_image_url=album.cover_image_url,
            created_at=album.created_at,
            already_exists=not created,
        ), 201 if created else 200

    # ── Collection overlay ──

    def _api_collection_toggle(self, path: str):
        flag, key, on_msg, off_msg = _TOGGLE_FLAGS[path]
        user_id = self._require_principal()
        data = self._read_json_body()
        photocard_id = _opt_uuid(data, "photocard_id")
        if photocard_id is None:
            raise ValidationFailure("photocard_id must be a valid UUID")

        with self.app.pool.connection() as conn:
            value = CollectionRepository(conn).toggle(user_id, photocard_id, flag)

        return response.success(photocard_id=photocard_id, message=on_msg if value else off_msg, **{key: value}), 200

    def _api_collection_status(self):
        user_id = self._require_principal()
        data = self._read_json_body()
        ids = data.get("photocard_ids")
        if not isinstance(ids, list):
            raise ValidationFailure("photocard_ids must be an array")
        if not all(isinstance(i, str) and is_uuid(i) for i in ids):
            raise ValidationFailure("Each photocard_id must be a valid UUID")

        with self.app.pool.connection() as conn:
            statuses = CollectionRepository(conn).statuses(user_id, ids)

        return response.success(statuses=[s.to_dict() for s in statuses]), 200

    def _api_collection_photocards(self):
        user_id = self._require_principal()
        data = self._read_json_body()
        status = data.get("status")
        if status not in CollectionRepository.STATUS_FILTERS:
            raise ValidationFailure("status must be owned, wishlist, unallocated, or favorites")
        limit = _int(data, "limit", 50, 1, 100)
        offset = _int(data, "offset", 0, 0)

        with self.app.pool.connection() as conn:
            rows = CollectionRepository(conn).list_by_status(user_id, status, limit, offset)

        return response.success(photocards=rows, count=len(rows), status=status), 200

    # ── Output ──

    def _send_json(self, obj, status=200):
        body = json.dumps(obj).encode()
        try:
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        except (BrokenPipeError, ConnectionResetError):
            log.warning("Client disconnected before response to %s %s", self.command, self.path)

    def log_message(self, format, *args):
        log.info("%s - %s", self.address_string(), format % args)


def make_server(
    db_path: Optional[str] = None,
    store: Optional[AssetStore] = None,
    host: str = "",
    port: int = 3000,
    workers: int = 8,
) -> ThreadingHTTPServer:
    """Build a server bound to (host, port); the caller runs serve_forever()."""
    db_path = get_db_path(db_path)
    init_db(get_connection(db_path))

    app = KardlyApp(ConnectionPool(db_path, size=workers), store or get_asset_store())
    server = ThreadingHTTPServer((host, port), partial(KardlyHandler, app))
    server.app = app
    return server


def register(subparsers):
    """Register the serve subcommand."""
    parser = subparsers.add_parser(
        "serve",
        help="Start the HTTP API server",
        description="Serve the Kardly JSON API.",
    )
    parser.add_argument("--host", default="", help="Interface to bind (default: all)")
    parser.add_argument("--port", type=int, default=3000, help="Port to serve on (default: 3000)")
    parser.add_argument(
        "--workers", type=int, default=8, help="Database connections in the pool (default: 8)"
    )
    parser.set_defaults(func=run)


def run(args):
    """Run the serve command."""
    store = get_asset_store()
    if not store.ping():
        print(f"Warning: asset store {type(store).__name__} is not reachable", file=sys.stderr)

    server = make_server(args.db_path, store, args.host, args.port, args.workers)

    print(f"Kardly server running at http://{args.host or 'localhost'}:{args.port}")
    print(f"Database: {args.db_path}")
    print(f"Asset store: {type(store).__name__}")
    print("Press Ctrl+C to stop.")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down.")
    finally:
        server.server_close()
        server.app.pool.close()
    return 0
