"""
SQLite Index Store

Single-file backend for development and tests. Timestamps are stored as
ISO 8601 text in UTC so lexical order matches chronological order.
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import StoreError
from .base import IndexStore
from .schema import SQLITE_TYPES


class SqliteStore(IndexStore):
    """IndexStore backed by sqlite3."""

    PLACEHOLDER = "?"
    GREATEST = "MAX"
    TYPES = SQLITE_TYPES

    def __init__(self, db_path: str = ":memory:"):
        """
        Open (or create) the database file.

        Args:
            db_path: Path to SQLite database, or ":memory:"

        Raises:
            StoreError: If the database cannot be opened
        """
        super().__init__()
        self.db_path = db_path
        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"Failed to open database {db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row

    def _cursor(self):
        return self.conn.cursor()

    def _begin(self) -> None:
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to begin transaction: {e}") from e

    def _adapt(self, value: Any) -> Any:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
        if isinstance(value, bool):
            return int(value)
        return value
