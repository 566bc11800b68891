"""Intake checks for an uploaded photocard image."""

from dataclasses import dataclass, field
from typing import Optional

from kardly.errors import ReturnCode, UploadRejectedError
from kardly.services.references import References
from kardly.utils import is_uuid

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")
MAX_UPLOAD_BYTES = 5 * 1024 * 1024


@dataclass
class UploadIntent:
    """One incoming image plus the references it should be filed under."""
    data: bytes
    content_type: str
    filename: str = "photocard"
    references: References = field(default_factory=References)

    @property
    def size(self) -> int:
        return len(self.data)


def build_upload_intent(
    data: Optional[bytes],
    content_type: Optional[str],
    filename: Optional[str] = None,
    group_id: Optional[str] = None,
    member_id: Optional[str] = None,
    album_id: Optional[str] = None,
) -> UploadIntent:
    """
    Validate raw upload inputs and build an UploadIntent.

    Raises:
        UploadRejectedError: missing image, disallowed type, oversize
            payload, or a reference id that is not a UUID
    """
    if not data:
        raise UploadRejectedError("Image file is required")

    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype not in ALLOWED_CONTENT_TYPES:
        raise UploadRejectedError(
            "Invalid file type. Only JPG, JPEG, PNG, and WEBP images are allowed.",
            ReturnCode.INVALID_FILE_TYPE,
        )

    if len(data) > MAX_UPLOAD_BYTES:
        raise UploadRejectedError("File size exceeds 5MB limit", ReturnCode.FILE_TOO_LARGE)

    refs = References.of(group_id, member_id, album_id)
    errors = []
    for name, value in (("group_id", refs.group_id), ("member_id", refs.member_id), ("album_id", refs.album_id)):
        if value is not None and not is_uuid(value):
            errors.append({"field": name, "message": f"{name} must be a valid UUID"})
    if errors:
        raise UploadRejectedError("Validation failed", errors=errors)

    return UploadIntent(
        data=data,
        content_type=ctype,
        filename=filename or "photocard",
        references=refs,
    )
