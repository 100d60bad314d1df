"""
Unit Tests for SQLite Index Store

Tests:
- Insert-or-ignore semantics per table
- Counter adjustment and floors
- Transaction commit / rollback
- Store selection from DATABASE_URL
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from firehose_indexer.errors import ConfigError, StoreError
from firehose_indexer.records import CommunityRecord, PostRecord, VoteRecord
from firehose_indexer.storage import SqliteStore, open_store

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
POST_URI = "at://did:plc:bob/mlcommons.community.post/p1"
COMMUNITY_URI = "at://did:plc:alice/mlcommons.community.community/python"


def make_post(text="hello", created_at=NOW, tags=None, parent=None):
    return PostRecord(
        community_uri=COMMUNITY_URI,
        text=text,
        created_at=created_at,
        tags=tags,
        reply_parent=parent,
        reply_root=parent,
    )


def make_vote(direction="up", subject=POST_URI):
    return VoteRecord(subject_uri=subject, direction=direction, created_at=NOW)


class TestSqliteStore:
    """Store operations against a temporary database file."""

    def setup_method(self):
        fd, self.temp_db = tempfile.mkstemp(suffix='.db')
        os.close(fd)
        self.store = SqliteStore(self.temp_db)
        self.store.create_schema()

    def teardown_method(self):
        self.store.close()
        try:
            os.remove(self.temp_db)
        except (PermissionError, FileNotFoundError):
            pass

    def test_create_schema_is_repeatable(self):
        self.store.create_schema()

    def test_post_insert_then_update(self):
        assert self.store.upsert_post(POST_URI, "p1", "cid1", "did:plc:bob", make_post(tags=("a", "b")), NOW)
        assert not self.store.upsert_post(POST_URI, "p1", "cid2", "did:plc:bob", make_post(text="edited"), NOW)

        post = self.store.get_post(POST_URI)
        assert post.text == "edited"
        assert post.cid == "cid2"
        assert post.tags is None
        assert post.created_at == NOW
        assert not post.is_reply

    def test_post_tags_round_trip(self):
        self.store.upsert_post(POST_URI, "p1", "cid1", "did:plc:bob", make_post(tags=("a", "b")), NOW)

        assert self.store.get_post(POST_URI).tags == ("a", "b")

    def test_delete_missing_post_returns_false(self):
        assert not self.store.delete_post(POST_URI)

    def test_vote_unique_per_author_and_subject(self):
        assert self.store.insert_vote("at://v1", "v1", "did:plc:carol", make_vote(), NOW)
        assert not self.store.insert_vote("at://v1", "v1", "did:plc:carol", make_vote(), NOW)
        assert not self.store.insert_vote("at://v2", "v2", "did:plc:carol", make_vote(), NOW)

        assert self.store.get_vote_for_subject("did:plc:carol", POST_URI).uri == "at://v1"

    def test_count_vote_total_is_net(self):
        self.store.insert_vote("at://v1", "v1", "did:plc:a", make_vote("up"), NOW)
        self.store.insert_vote("at://v2", "v2", "did:plc:b", make_vote("up"), NOW)
        self.store.insert_vote("at://v3", "v3", "did:plc:c", make_vote("down"), NOW)

        assert self.store.count_vote_total(POST_URI) == 1
        assert self.store.count_vote_total("at://nothing") == 0

    def test_adjust_counter_missing_row(self):
        assert not self.store.adjust_counter("posts", POST_URI, "vote_count", 1)

    def test_adjust_counter_floors_comment_count(self):
        self.store.upsert_post(POST_URI, "p1", "cid1", "did:plc:bob", make_post(), NOW)

        assert self.store.adjust_counter("posts", POST_URI, "comment_count", -1)
        assert self.store.get_post(POST_URI).comment_count == 0

    def test_vote_count_may_go_negative(self):
        self.store.upsert_post(POST_URI, "p1", "cid1", "did:plc:bob", make_post(), NOW)

        self.store.adjust_counter("posts", POST_URI, "vote_count", -2)
        assert self.store.get_post(POST_URI).vote_count == -2

    def test_adjust_counter_rejects_unknown_column(self):
        with pytest.raises(ValueError):
            self.store.adjust_counter("posts", POST_URI, "text", 1)
        with pytest.raises(ValueError):
            self.store.adjust_counter("votes", POST_URI, "vote_count", 1)

    def test_set_post_flag_rejects_unknown_column(self):
        with pytest.raises(ValueError):
            self.store.set_post_flag(POST_URI, "text", True)

    def test_community_upsert_and_tombstone(self):
        record = CommunityRecord(
            name=None, display_name=None, description="About", avatar=None, banner=None,
            visibility="public", post_permissions="anyone", created_at=None,
        )
        assert self.store.upsert_community(COMMUNITY_URI, "python", "cid", "did:plc:alice", record, NOW)

        community = self.store.get_community(COMMUNITY_URI)
        assert community.name == "python"
        assert community.display_name == "python"
        assert community.created_at == NOW

        assert self.store.tombstone_community(COMMUNITY_URI, NOW)
        assert not self.store.tombstone_community(COMMUNITY_URI, NOW)
        assert self.store.get_community(COMMUNITY_URI).is_deleted

    def test_transaction_commits(self):
        with self.store.transaction():
            self.store.upsert_post(POST_URI, "p1", "cid1", "did:plc:bob", make_post(), NOW)
            self.store.adjust_counter("posts", POST_URI, "vote_count", 3)

        assert self.store.get_post(POST_URI).vote_count == 3

    def test_transaction_rolls_back_on_error(self):
        with pytest.raises(RuntimeError):
            with self.store.transaction():
                self.store.upsert_post(POST_URI, "p1", "cid1", "did:plc:bob", make_post(), NOW)
                raise RuntimeError("boom")

        assert self.store.get_post(POST_URI) is None

    def test_nested_transaction_joins_outer(self):
        with pytest.raises(RuntimeError):
            with self.store.transaction():
                with self.store.transaction():
                    self.store.upsert_post(POST_URI, "p1", "cid1", "did:plc:bob", make_post(), NOW)
                raise RuntimeError("boom")

        assert self.store.get_post(POST_URI) is None

    def test_list_posts_created_since(self):
        old = "at://did:plc:bob/mlcommons.community.post/old"
        self.store.upsert_post(POST_URI, "p1", "cid1", "did:plc:bob", make_post(), NOW)
        self.store.upsert_post(old, "old", "cid2", "did:plc:bob", make_post(created_at=NOW - timedelta(days=10)), NOW)

        recent = self.store.list_posts_created_since(NOW - timedelta(days=7))

        assert [post.uri for post in recent] == [POST_URI]

    def test_sql_error_raises_store_error(self):
        with pytest.raises(StoreError, match="Failed to execute"):
            self.store._execute("INSERT INTO no_such_table VALUES (%s)", (1,))

    def test_context_manager_closes(self):
        with SqliteStore(":memory:") as store:
            store.create_schema()
        assert store.conn is None


class TestOpenStore:
    """DATABASE_URL scheme selection."""

    def test_sqlite_memory(self):
        store = open_store("sqlite:///:memory:")
        try:
            assert isinstance(store, SqliteStore)
            assert store.db_path == ":memory:"
        finally:
            store.close()

    def test_sqlite_file(self, tmp_path):
        path = tmp_path / "nested" / "index.db"
        store = open_store(f"sqlite:///{path}")
        try:
            assert store.db_path == str(path)
            assert path.parent.exists()
        finally:
            store.close()

    def test_unsupported_scheme(self):
        with pytest.raises(ConfigError, match="Unsupported"):
            open_store("mysql://localhost/db")
