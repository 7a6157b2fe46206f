"""
Unit tests for the MongoDB migration runner.

Discovery and loading use temporary migration files; application runs
against mongomock.
"""

from pathlib import Path
from unittest.mock import MagicMock

import mongomock
import pytest

from scripts.migrate_db import (
    DEFAULT_MIGRATIONS_DIR,
    MIGRATIONS_COLLECTION,
    discover_migrations,
    load_migration_module,
    run_migrations,
)


def write_migration(directory: Path, filename: str, version: str, body: str = "pass") -> None:
    (directory / filename).write_text(f'VERSION = "{version}"\ndef up(db):\n    {body}\n')


class TestDiscovery:
    def test_sorted_by_version(self, tmp_path):
        write_migration(tmp_path, "010_third.py", "010")
        write_migration(tmp_path, "001_first.py", "001")
        write_migration(tmp_path, "002_second.py", "002")
        (tmp_path / "__init__.py").write_text("")
        (tmp_path / "helpers.py").write_text("")

        assert [v for v, _ in discover_migrations(tmp_path)] == ["001", "002", "010"]

    def test_duplicate_versions(self, tmp_path):
        write_migration(tmp_path, "001_a.py", "001")
        write_migration(tmp_path, "001_b.py", "001")

        with pytest.raises(ValueError, match="Duplicate migration version"):
            discover_migrations(tmp_path)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ValueError, match="does not exist"):
            discover_migrations(tmp_path / "nope")

    def test_repository_migrations_are_discoverable(self):
        versions = [v for v, _ in discover_migrations(DEFAULT_MIGRATIONS_DIR)]
        assert versions[:2] == ["001", "002"]


class TestLoading:
    def test_valid_module(self, tmp_path):
        write_migration(tmp_path, "001_first.py", "001")

        version, up = load_migration_module(tmp_path / "001_first.py")

        assert version == "001"
        assert callable(up)

    def test_missing_version(self, tmp_path):
        (tmp_path / "001_bad.py").write_text("def up(db):\n    pass\n")

        with pytest.raises(ValueError, match="missing VERSION"):
            load_migration_module(tmp_path / "001_bad.py")

    def test_non_string_version(self, tmp_path):
        (tmp_path / "001_bad.py").write_text("VERSION = 1\ndef up(db):\n    pass\n")

        with pytest.raises(ValueError, match="must be a string"):
            load_migration_module(tmp_path / "001_bad.py")

    def test_missing_up(self, tmp_path):
        (tmp_path / "001_bad.py").write_text('VERSION = "001"\n')

        with pytest.raises(ValueError, match="missing up"):
            load_migration_module(tmp_path / "001_bad.py")


class TestRunMigrations:
    @pytest.fixture
    def db(self):
        return mongomock.MongoClient()["reveal_test"]

    def test_applies_pending_in_order(self, db, tmp_path):
        write_migration(tmp_path, "001_first.py", "001", 'db.marks.insert_one({"v": "001"})')
        write_migration(tmp_path, "002_second.py", "002", 'db.marks.insert_one({"v": "002"})')

        applied = run_migrations(db, tmp_path)

        assert applied == ["001", "002"]
        assert [d["v"] for d in db.marks.find()] == ["001", "002"]
        assert {d["version"] for d in db[MIGRATIONS_COLLECTION].find()} == {"001", "002"}

    def test_applied_versions_skipped(self, db, tmp_path):
        write_migration(tmp_path, "001_first.py", "001", 'db.marks.insert_one({"v": "001"})')
        db[MIGRATIONS_COLLECTION].insert_one({"version": "001"})

        assert run_migrations(db, tmp_path) == []
        assert db.marks.count_documents({}) == 0

    def test_dry_run_applies_nothing(self, db, tmp_path):
        write_migration(tmp_path, "001_first.py", "001", 'db.marks.insert_one({"v": "001"})')

        assert run_migrations(db, tmp_path, dry_run=True) == ["001"]
        assert db.marks.count_documents({}) == 0
        assert db[MIGRATIONS_COLLECTION].count_documents({}) == 0

    def test_version_must_match_filename(self, db, tmp_path):
        write_migration(tmp_path, "003_mismatch.py", "004")

        with pytest.raises(ValueError, match="does not match filename"):
            run_migrations(db, tmp_path)

    def test_failed_migration_not_recorded(self, db, tmp_path):
        write_migration(tmp_path, "001_boom.py", "001", 'raise RuntimeError("boom")')

        with pytest.raises(RuntimeError, match="boom"):
            run_migrations(db, tmp_path)

        assert db[MIGRATIONS_COLLECTION].count_documents({}) == 0


def test_inference_collections_migration_indexes():
    _, up = load_migration_module(DEFAULT_MIGRATIONS_DIR / "001_inference_collections.py")
    db = MagicMock()

    up(db)

    db.create_collection.assert_called_once()
    assert db.create_collection.call_args.args[0] == "inference_runs"
    db.editor_docs.create_index.assert_called_once_with([("floor_key", 1)], unique=True)
    db.projects.create_index.assert_called_once_with([("client_name", 1), ("slug", 1)], unique=True)


def test_run_failure_origin_migration_extends_validator():
    _, up = load_migration_module(DEFAULT_MIGRATIONS_DIR / "002_run_failure_origin_and_launch.py")
    db = MagicMock()

    up(db)

    args = db.command.call_args
    assert args.args == ("collMod", "inference_runs")
    properties = args.kwargs["validator"]["$jsonSchema"]["properties"]
    assert properties["failure_origin"] == {"enum": ["engine", "host", None]}
    assert properties["launch"]["required"] == ["claim_id", "claimed_at"]
    assert "status" in properties
