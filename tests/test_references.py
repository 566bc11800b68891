"""
Tests for reference validation.

To run: pytest tests/test_references.py -v
"""

import pytest

from kardly.errors import GroupMismatchError, InvalidReferenceError, ReturnCode
from kardly.services.references import References, ReferenceValidator

MISSING = "00000000-0000-4000-8000-000000000000"


class TestReferencesOf:
    def test_empty_strings_are_absent(self):
        refs = References.of("", "", "")
        assert refs == References()

    def test_values_kept(self):
        refs = References.of("g", None, "a")
        assert refs.group_id == "g"
        assert refs.member_id is None
        assert refs.album_id == "a"


class TestReferenceValidator:
    def test_nothing_to_check(self, test_db):
        _, conn = test_db
        refs = References()
        assert ReferenceValidator().validate(conn, refs) is refs

    def test_full_match(self, test_db, catalog):
        _, conn = test_db
        refs = References.of(catalog["G1"], catalog["M_G1"], catalog["A1"])
        assert ReferenceValidator().validate(conn, refs) == refs

    def test_unknown_group(self, test_db, catalog):
        _, conn = test_db
        with pytest.raises(InvalidReferenceError) as exc:
            ReferenceValidator().validate(conn, References.of(MISSING))
        assert exc.value.return_code == ReturnCode.INVALID_GROUP
        assert exc.value.message == "Group ID does not exist"

    def test_unknown_member(self, test_db, catalog):
        _, conn = test_db
        with pytest.raises(InvalidReferenceError) as exc:
            ReferenceValidator().validate(conn, References.of(catalog["G1"], MISSING))
        assert exc.value.return_code == ReturnCode.INVALID_MEMBER

    def test_unknown_album(self, test_db, catalog):
        _, conn = test_db
        with pytest.raises(InvalidReferenceError) as exc:
            ReferenceValidator().validate(conn, References.of(album_id=MISSING))
        assert exc.value.return_code == ReturnCode.INVALID_ALBUM

    def test_member_in_other_group(self, test_db, catalog):
        _, conn = test_db
        with pytest.raises(GroupMismatchError) as exc:
            ReferenceValidator().validate(conn, References.of(catalog["G1"], catalog["M1"]))
        assert exc.value.return_code == ReturnCode.MEMBER_GROUP_MISMATCH
        assert exc.value.group_id == catalog["G1"]

    def test_album_in_other_group(self, test_db, catalog):
        _, conn = test_db
        with pytest.raises(GroupMismatchError) as exc:
            ReferenceValidator().validate(conn, References.of(catalog["G2"], album_id=catalog["A1"]))
        assert exc.value.return_code == ReturnCode.ALBUM_GROUP_MISMATCH

    def test_member_and_album_without_group(self, test_db, catalog):
        """Without a group only existence is checked."""
        _, conn = test_db
        refs = References.of(member_id=catalog["M1"], album_id=catalog["A1"])
        assert ReferenceValidator().validate(conn, refs) == refs

    def test_group_checked_before_member(self, test_db, catalog):
        _, conn = test_db
        with pytest.raises(InvalidReferenceError) as exc:
            ReferenceValidator().validate(conn, References.of(MISSING, MISSING, MISSING))
        assert exc.value.kind == "group"

    def test_does_not_write(self, test_db, catalog):
        _, conn = test_db
        ReferenceValidator().validate(conn, References.of(catalog["G1"], catalog["M_G1"]))
        assert not conn.in_transaction
