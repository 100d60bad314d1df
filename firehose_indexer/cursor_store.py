"""
Cursor Store

Persists the firehose position as a single text-encoded integer so a restart
resumes near the last processed event instead of replaying history.

RULES:
- Corrupt or missing file = start from the transport default (never fatal)
- None never overwrites existing progress
- Persisted value never decreases
- Write failures are logged; the in-memory cursor keeps tracking progress
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class CursorStore:
    """File-backed cursor persistence."""

    def __init__(self, path: Union[str, Path] = ".cursor"):
        self.path = Path(path)
        self._last_saved: Optional[int] = None

    @property
    def last_saved(self) -> Optional[int]:
        """Last value loaded from or written to disk."""
        return self._last_saved

    def load(self) -> Optional[int]:
        """
        Read the persisted cursor.

        Returns:
            Cursor value, or None if the file is absent, empty, unreadable
            or does not contain an integer
        """
        try:
            data = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            logger.info(f"[Cursor] No cursor file at {self.path}, starting from live stream")
            return None
        except OSError as e:
            logger.warning(f"[Cursor] Could not read {self.path}: {e}")
            return None

        try:
            cursor = int(data)
        except ValueError:
            logger.warning(f"[Cursor] Ignoring corrupt cursor file {self.path}: {data[:32]!r}")
            return None

        if cursor < 0:
            logger.warning(f"[Cursor] Ignoring negative cursor {cursor} in {self.path}")
            return None

        self._last_saved = cursor
        logger.info(f"[Cursor] Resuming from cursor: {cursor}")
        return cursor

    def save(self, cursor: Optional[int]) -> bool:
        """
        Persist the cursor (best effort).

        Args:
            cursor: Latest delivered sequence number, or None

        Returns:
            True if the value was written to disk
        """
        if cursor is None:
            return False

        if self._last_saved is not None and cursor <= self._last_saved:
            if cursor < self._last_saved:
                logger.warning(
                    f"[Cursor] Refusing to move cursor backwards ({cursor} < {self._last_saved})"
                )
            return False

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(str(cursor), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"[Cursor] Error saving cursor to {self.path}: {e}")
            return False

        self._last_saved = cursor
        logger.debug(f"[Cursor] Saved cursor {cursor}")
        return True
