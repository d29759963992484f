"""Tests for SettingsDB key/value persistence."""

import sqlite3

import pytest

from settings_db import SCHEMA_VERSION, SettingsDB


@pytest.fixture
def db(tmp_path):
    return SettingsDB(tmp_path / "nested" / "settings.db")


class TestSettingsDB:

    def test_creates_parent_dir_and_schema(self, db):
        assert db.db_path.exists()
        conn = sqlite3.connect(db.db_path)
        try:
            version = conn.execute("SELECT version FROM schema_version").fetchone()[0]
        finally:
            conn.close()
        assert version == SCHEMA_VERSION

    def test_reopen_keeps_single_version_row(self, db):
        SettingsDB(db.db_path)
        conn = sqlite3.connect(db.db_path)
        try:
            rows = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
        finally:
            conn.close()
        assert rows == 1

    def test_missing_key(self, db):
        assert db.get_user_setting("missing") is None

    def test_json_values_round_trip(self, db):
        db.set_user_setting("a", ["x", "y"])
        db.set_user_setting("b", {"nested": True})
        assert db.get_user_setting("a") == ["x", "y"]
        assert db.get_all_user_settings() == {"a": ["x", "y"], "b": {"nested": True}}

    def test_upsert(self, db):
        db.set_user_setting("k", 1)
        db.set_user_setting("k", 2)
        assert db.get_user_setting("k") == 2

    def test_false_is_stored(self, db):
        db.set_user_setting("flag", False)
        assert db.get_user_setting("flag") is False

    def test_delete(self, db):
        db.set_user_setting("k", 1)
        db.delete_user_setting("k")
        assert db.get_user_setting("k") is None
