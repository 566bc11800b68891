"""Failure taxonomy and stable return codes."""

from typing import List, Optional


class ReturnCode:
    """Stable classification codes carried by every result envelope."""

    SUCCESS = "SUCCESS"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    TOO_MANY_FILES = "TOO_MANY_FILES"
    UNEXPECTED_FIELD = "UNEXPECTED_FIELD"
    INVALID_GROUP = "INVALID_GROUP"
    INVALID_MEMBER = "INVALID_MEMBER"
    INVALID_ALBUM = "INVALID_ALBUM"
    MEMBER_GROUP_MISMATCH = "MEMBER_GROUP_MISMATCH"
    ALBUM_GROUP_MISMATCH = "ALBUM_GROUP_MISMATCH"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    DATABASE_ERROR = "DATABASE_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    PHOTOCARD_NOT_FOUND = "PHOTOCARD_NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"


class KardlyError(Exception):
    """Base error: a classified failure with a caller-safe message."""

    return_code = ReturnCode.SERVER_ERROR

    def __init__(self, message: str, return_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if return_code is not None:
            self.return_code = return_code


class ValidationFailure(KardlyError):
    """Caller input is wrong; correcting it and retrying can succeed."""

    return_code = ReturnCode.VALIDATION_ERROR


class UploadRejectedError(ValidationFailure):
    """The inbound upload was refused before any workflow stage ran."""

    def __init__(self, message: str, return_code: Optional[str] = None, errors: Optional[List[dict]] = None):
        super().__init__(message, return_code)
        self.errors = errors or []


class InvalidReferenceError(ValidationFailure):
    """A referenced group, member or album does not exist."""

    _CODES = {
        "group": ReturnCode.INVALID_GROUP,
        "member": ReturnCode.INVALID_MEMBER,
        "album": ReturnCode.INVALID_ALBUM,
    }

    def __init__(self, kind: str, ref_id: str):
        self.kind = kind
        self.ref_id = ref_id
        super().__init__(f"{kind.capitalize()} ID does not exist", self._CODES[kind])


class GroupMismatchError(ValidationFailure):
    """A member or album belongs to a different group than the one given."""

    _CODES = {
        "member": ReturnCode.MEMBER_GROUP_MISMATCH,
        "album": ReturnCode.ALBUM_GROUP_MISMATCH,
    }

    def __init__(self, kind: str, ref_id: str, group_id: str):
        self.kind = kind
        self.ref_id = ref_id
        self.group_id = group_id
        super().__init__(
            f"{kind.capitalize()} does not belong to the specified group",
            self._CODES[kind],
        )


class AssetStoreError(Exception):
    """Raised by remote asset store clients on upload/delete failure."""


class UploadFailedError(KardlyError):
    """The remote store did not accept the payload."""

    return_code = ReturnCode.UPLOAD_FAILED


class PersistError(KardlyError):
    """Insert or commit failed after a successful upload."""

    return_code = ReturnCode.DATABASE_ERROR


class NotFoundError(KardlyError):
    return_code = ReturnCode.NOT_FOUND


class PermissionDenied(KardlyError):
    return_code = ReturnCode.UNAUTHORIZED


class AuthenticationRequired(PermissionDenied):
    """No authenticated principal accompanied the request."""
