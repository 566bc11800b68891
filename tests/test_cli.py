"""
Tests for the kardly command line.

To run: pytest tests/test_cli.py -v
"""

import pytest

from kardly.cli import main
from kardly.db import PhotocardRepository

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


@pytest.fixture(autouse=True)
def local_assets(monkeypatch, tmp_path):
    for name in ("CLOUDINARY_URL", "CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("KARDLY_HOME", str(tmp_path / "home"))


class TestDbCommands:
    def test_init_and_status(self, test_db, capsys):
        db_path, _ = test_db
        main(["--db", db_path, "db", "init"])
        assert "already up to date" in capsys.readouterr().out

        main(["--db", db_path, "db", "status"])
        out = capsys.readouterr().out
        assert "Schema version: 2" in out
        assert "photocards" in out


class TestCatalogCommands:
    def test_group_create_and_list(self, test_db, capsys):
        db_path, _ = test_db
        main(["--db", db_path, "groups", "create", "Aurora"])
        assert capsys.readouterr().out.startswith("Created group Aurora")

        main(["--db", db_path, "groups", "create", "aurora"])
        assert "Already exists" in capsys.readouterr().out

        main(["--db", db_path, "groups", "list"])
        assert "1 group(s)" in capsys.readouterr().out

    def test_member_unknown_group(self, test_db, capsys):
        db_path, _ = test_db
        rc = main(["--db", db_path, "members", "create", "00000000-0000-4000-8000-000000000000", "X"])
        assert rc == 1
        assert "INVALID_GROUP" in capsys.readouterr().err

    def test_albums_list(self, test_db, catalog, capsys):
        db_path, _ = test_db
        main(["--db", db_path, "albums", "list", "--group", catalog["G2"]])
        out = capsys.readouterr().out
        assert "Orbit" in out
        assert "1 album(s)" in out


class TestAddCommand:
    def test_add(self, test_db, catalog, tmp_path, capsys):
        db_path, conn = test_db
        image = tmp_path / "front.png"
        image.write_bytes(PNG)

        rc = main(["--db", db_path, "add", str(image), "--group", catalog["G1"], "--user", "user-1"])

        assert rc == 0
        assert "Added photocard" in capsys.readouterr().out
        assert PhotocardRepository(conn).count() == 1
        assert list((tmp_path / "home" / "assets").iterdir())

    def test_add_mismatch(self, test_db, catalog, tmp_path, capsys):
        db_path, conn = test_db
        image = tmp_path / "front.png"
        image.write_bytes(PNG)

        rc = main(["--db", db_path, "add", str(image), "--group", catalog["G1"], "--member", catalog["M1"]])

        assert rc == 1
        assert "MEMBER_GROUP_MISMATCH" in capsys.readouterr().err
        assert PhotocardRepository(conn).count() == 0
        assert not (tmp_path / "home" / "assets").exists()

    def test_add_rejects_type(self, test_db, tmp_path, capsys):
        db_path, _ = test_db
        image = tmp_path / "notes.txt"
        image.write_text("hello")

        assert main(["--db", db_path, "add", str(image)]) == 1
        assert "INVALID_FILE_TYPE" in capsys.readouterr().err

    def test_add_missing_file(self, test_db, tmp_path):
        db_path, _ = test_db
        assert main(["--db", db_path, "add", str(tmp_path / "nope.png")]) == 1
