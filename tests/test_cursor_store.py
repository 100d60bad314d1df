"""
Unit Tests for Cursor Store

RULE: Corrupt or missing cursor is never fatal.
RULE: Persisted cursor never decreases.
"""

import os
import tempfile
from unittest.mock import patch

from firehose_indexer.cursor_store import CursorStore


class TestCursorStore:
    """File-backed cursor persistence."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, ".cursor")
        self.store = CursorStore(self.path)

    def teardown_method(self):
        for name in os.listdir(self.temp_dir):
            os.remove(os.path.join(self.temp_dir, name))
        os.rmdir(self.temp_dir)

    def test_load_missing_file(self):
        assert self.store.load() is None

    def test_save_and_load(self):
        assert self.store.save(1725911162329308)

        assert CursorStore(self.path).load() == 1725911162329308
        with open(self.path) as f:
            assert f.read() == "1725911162329308"

    def test_load_corrupt_file(self):
        with open(self.path, "w") as f:
            f.write("not-a-number")

        assert self.store.load() is None

    def test_load_empty_file(self):
        open(self.path, "w").close()

        assert self.store.load() is None

    def test_load_negative_value(self):
        with open(self.path, "w") as f:
            f.write("-5")

        assert self.store.load() is None

    def test_load_tolerates_whitespace(self):
        with open(self.path, "w") as f:
            f.write("42\n")

        assert self.store.load() == 42
        assert self.store.last_saved == 42

    def test_save_none_keeps_progress(self):
        self.store.save(100)

        assert not self.store.save(None)
        assert CursorStore(self.path).load() == 100

    def test_save_never_moves_backwards(self):
        self.store.save(100)

        assert not self.store.save(50)
        assert not self.store.save(100)
        assert CursorStore(self.path).load() == 100
        assert self.store.last_saved == 100

    def test_loaded_value_is_floor(self):
        """A restarted process cannot write below the value it resumed from."""
        self.store.save(100)
        restarted = CursorStore(self.path)
        restarted.load()

        assert not restarted.save(99)
        assert restarted.save(101)

    def test_no_temp_file_left_behind(self):
        self.store.save(7)

        assert os.listdir(self.temp_dir) == [".cursor"]

    def test_write_failure_is_not_fatal(self):
        with patch("firehose_indexer.cursor_store.os.replace", side_effect=OSError("disk full")):
            assert not self.store.save(100)

        assert self.store.last_saved is None
        assert self.store.save(100)

    def test_creates_parent_directory(self):
        nested = CursorStore(os.path.join(self.temp_dir, "state", "cursor"))

        assert nested.save(5)
        assert nested.load() == 5
        os.remove(os.path.join(self.temp_dir, "state", "cursor"))
        os.rmdir(os.path.join(self.temp_dir, "state"))
