"""
Tests for upload intake checks.

To run: pytest tests/test_uploads.py -v
"""

import pytest

from kardly.errors import ReturnCode, UploadRejectedError
from kardly.services.uploads import MAX_UPLOAD_BYTES, build_upload_intent
from kardly.utils import is_uuid

GROUP = "3f2b8c1e-6a4d-4e2f-9b7a-1c2d3e4f5a6b"


class TestBuildUploadIntent:
    def test_valid(self):
        intent = build_upload_intent(b"img", "image/png", "card.png", group_id=GROUP)
        assert intent.data == b"img"
        assert intent.content_type == "image/png"
        assert intent.filename == "card.png"
        assert intent.references.group_id == GROUP
        assert intent.references.member_id is None
        assert intent.size == 3

    def test_missing_image(self):
        with pytest.raises(UploadRejectedError) as exc:
            build_upload_intent(None, "image/png")
        assert exc.value.return_code == ReturnCode.VALIDATION_ERROR
        assert exc.value.message == "Image file is required"

    def test_empty_image(self):
        with pytest.raises(UploadRejectedError):
            build_upload_intent(b"", "image/png")

    @pytest.mark.parametrize("ctype", ["image/gif", "text/plain", "", None, "application/octet-stream"])
    def test_rejected_types(self, ctype):
        with pytest.raises(UploadRejectedError) as exc:
            build_upload_intent(b"img", ctype)
        assert exc.value.return_code == ReturnCode.INVALID_FILE_TYPE

    @pytest.mark.parametrize("ctype", ["image/jpeg", "image/jpg", "image/png", "image/webp"])
    def test_allowed_types(self, ctype):
        assert build_upload_intent(b"img", ctype).content_type == ctype

    def test_content_type_normalized(self):
        intent = build_upload_intent(b"img", "Image/PNG; charset=binary")
        assert intent.content_type == "image/png"

    def test_exactly_limit_accepted(self):
        intent = build_upload_intent(b"x" * MAX_UPLOAD_BYTES, "image/jpeg")
        assert intent.size == MAX_UPLOAD_BYTES

    def test_over_limit(self):
        with pytest.raises(UploadRejectedError) as exc:
            build_upload_intent(b"x" * (MAX_UPLOAD_BYTES + 1), "image/jpeg")
        assert exc.value.return_code == ReturnCode.FILE_TOO_LARGE

    def test_non_uuid_references(self):
        with pytest.raises(UploadRejectedError) as exc:
            build_upload_intent(b"img", "image/png", member_id="abc", album_id="123")
        assert exc.value.return_code == ReturnCode.VALIDATION_ERROR
        assert exc.value.message == "Validation failed"
        assert [e["field"] for e in exc.value.errors] == ["member_id", "album_id"]

    def test_blank_references_are_absent(self):
        intent = build_upload_intent(b"img", "image/png", group_id="", member_id="", album_id="")
        assert intent.references.group_id is None
        assert intent.references.album_id is None

    def test_default_filename(self):
        assert build_upload_intent(b"img", "image/png").filename == "photocard"


class TestIsUuid:
    def test_canonical(self):
        assert is_uuid(GROUP)
        assert is_uuid(GROUP.upper())

    @pytest.mark.parametrize("value", [None, "", "abc", GROUP.replace("-", ""), "{" + GROUP + "}"])
    def test_not_canonical(self, value):
        assert not is_uuid(value)
