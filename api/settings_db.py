"""
SQLite persistence for tagger settings.

Only user overrides are stored, as JSON values in a key/value table.
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

SCHEMA_VERSION = 1


class SettingsDB:
    """Key/value store for user settings."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self):
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                );

                CREATE TABLE IF NOT EXISTS user_settings (
                    key TEXT PRIMARY KEY,
                    value JSON NOT NULL,
                    updated_at TEXT DEFAULT (datetime('now'))
                );
            """)
            row = conn.execute("SELECT version FROM schema_version").fetchone()
            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    def get_user_setting(self, key: str) -> Optional[Any]:
        """Get a user setting by key. Returns the parsed JSON value, or None if not found."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM user_settings WHERE key = ?", (key,)
            ).fetchone()
            if row:
                return json.loads(row["value"])
        return None

    def set_user_setting(self, key: str, value: Any):
        """Set a user setting. Creates or updates."""
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO user_settings (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = datetime('now')
                """,
                (key, json.dumps(value))
            )

    def delete_user_setting(self, key: str):
        with self._connection() as conn:
            conn.execute("DELETE FROM user_settings WHERE key = ?", (key,))

    def get_all_user_settings(self) -> dict[str, Any]:
        """Get all user settings as a dict."""
        with self._connection() as conn:
            rows = conn.execute("SELECT key, value FROM user_settings").fetchall()
            return {row["key"]: json.loads(row["value"]) for row in rows}
