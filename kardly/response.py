"""Uniform result envelope: every response carries a return_code."""

from typing import Any, Dict, Optional

from kardly.errors import KardlyError, ReturnCode

# HTTP status per return code; anything unlisted is a client error.
_STATUS = {
    ReturnCode.SUCCESS: 200,
    ReturnCode.PHOTOCARD_NOT_FOUND: 404,
    ReturnCode.NOT_FOUND: 404,
    ReturnCode.UNAUTHORIZED: 403,
    ReturnCode.UPLOAD_FAILED: 500,
    ReturnCode.DATABASE_ERROR: 500,
    ReturnCode.SERVER_ERROR: 500,
}


def http_status(return_code: str) -> int:
    return _STATUS.get(return_code, 400)


def success(**data: Any) -> Dict[str, Any]:
    """Build a success envelope."""
    body = {"return_code": ReturnCode.SUCCESS}
    body.update(data)
    return body


def error(return_code: str, message: str, **data: Any) -> Dict[str, Any]:
    """Build an error envelope."""
    body = {"return_code": return_code, "message": message}
    body.update(data)
    return body


def from_exception(exc: KardlyError, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body = error(exc.return_code, exc.message)
    errors = getattr(exc, "errors", None)
    if errors:
        body["errors"] = errors
    if extra:
        body.update(extra)
    return body


def server_error(message: str = "Internal server error") -> Dict[str, Any]:
    return error(ReturnCode.SERVER_ERROR, message)
