"""
Index Store

Write/query interface the indexer consumes: upsert-by-URI per record kind,
delete-by-URI, counter adjustment scoped to a URI, and point lookups.

The SQL is shared; subclasses supply the connection, the placeholder style
and the column type names for their dialect.

RULES:
- Inserts are insert-or-ignore; the boolean result says whether a row was created
- Statements outside transaction() commit immediately
- Driver errors are re-raised as StoreError (fail closed)
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ..errors import StoreError
from ..records import (
    CommunityRecord,
    FlairRecord,
    ModActionRecord,
    PostRecord,
    SubscriptionRecord,
    VoteRecord,
)
from .models import (
    CommunityRow,
    FlairRow,
    ModActionRow,
    PostRow,
    SubscriptionRow,
    UserRow,
    VoteRow,
)
from .schema import POSTGRES_TYPES, schema_statements

logger = logging.getLogger(__name__)

# table -> (key column, {counter column: floor at zero})
COUNTER_COLUMNS = {
    "posts": ("uri", {"vote_count": False, "comment_count": True}),
    "communities": ("uri", {"member_count": True, "post_count": True}),
    "users": ("did", {"post_karma": False, "comment_karma": False}),
}

POST_FLAG_COLUMNS = ("is_removed", "is_pinned", "is_locked")


def to_datetime(value: Any) -> Optional[datetime]:
    """Normalize a stored timestamp (datetime or ISO text) to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class AtomicTransaction:
    """Context manager grouping several store writes into one commit."""

    def __init__(self, store: "IndexStore"):
        self._store = store
        self._outermost = False

    def __enter__(self):
        self._outermost = self._store._transaction_depth == 0
        if self._outermost:
            self._store._begin()
        self._store._transaction_depth += 1
        return self._store

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._store._transaction_depth -= 1
        if not self._outermost:
            return False

        if exc_type is not None:
            self._store._rollback_quietly()
            return False

        try:
            self._store._commit()
        except Exception as e:
            self._store._rollback_quietly()
            raise StoreError(f"Failed to commit transaction: {e}") from e
        return False


class IndexStore:
    """
    Relational projection of the firehose.

    Subclasses must set conn and implement _cursor() / _begin().
    """

    PLACEHOLDER = "%s"
    GREATEST = "GREATEST"
    TYPES: Dict[str, str] = POSTGRES_TYPES

    def __init__(self):
        self.conn = None
        self._transaction_depth = 0

    # =========================================================================
    # Connection plumbing
    # =========================================================================

    def _cursor(self):
        raise NotImplementedError

    def _begin(self) -> None:
        raise NotImplementedError

    def _commit(self) -> None:
        self.conn.commit()

    def _rollback_quietly(self) -> None:
        try:
            self.conn.rollback()
        except Exception:
            logger.exception("Rollback failed")

    def _adapt(self, value: Any) -> Any:
        """Convert a Python value for the driver. Identity by default."""
        return value

    def _sql(self, query: str) -> str:
        if self.PLACEHOLDER != "%s":
            return query.replace("%s", self.PLACEHOLDER)
        return query

    def _run(self, query: str, params: Sequence[Any], fetch: Optional[str] = None):
        cursor = self._cursor()
        try:
            cursor.execute(self._sql(query), tuple(self._adapt(p) for p in params))
            if fetch == "one":
                result = cursor.fetchone()
                result = dict(result) if result is not None else None
            elif fetch == "all":
                result = [dict(row) for row in cursor.fetchall()]
            else:
                result = cursor.rowcount
        except Exception as e:
            if self._transaction_depth == 0:
                self._rollback_quietly()
            raise StoreError(f"Failed to execute statement: {e}") from e
        finally:
            cursor.close()

        if self._transaction_depth == 0:
            self._commit()
        return result

    def _execute(self, query: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement. Returns affected row count."""
        return self._run(query, params)

    def _fetchone(self, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        return self._run(query, params, fetch="one")

    def _fetchall(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return self._run(query, params, fetch="all")

    def transaction(self) -> AtomicTransaction:
        """
        Group writes into one unit of work.

        Usage:
            with store.transaction():
                store.insert_vote(...)
                store.adjust_counter(...)
        """
        return AtomicTransaction(self)

    def create_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self.transaction():
            for statement in schema_statements(self.TYPES):
                self._execute(statement)
        logger.info("Index schema created/verified")

    def close(self) -> None:
        """Close database connection."""
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # =========================================================================
    # Users
    # =========================================================================

    def ensure_user(self, did: str, now: datetime) -> bool:
        """Create the user row if absent. Returns True if created."""
        return self._execute(
            """
            INSERT INTO users (did, post_karma, comment_karma, created_at, updated_at)
            VALUES (%s, 0, 0, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (did, now, now),
        ) > 0

    def get_user(self, did: str) -> Optional[UserRow]:
        row = self._fetchone(
            "SELECT did, post_karma, comment_karma FROM users WHERE did = %s", (did,)
        )
        if row is None:
            return None
        return UserRow(did=row["did"], post_karma=row["post_karma"], comment_karma=row["comment_karma"])

    # =========================================================================
    # Communities
    # =========================================================================

    def get_community(self, uri: str) -> Optional[CommunityRow]:
        row = self._fetchone("SELECT * FROM communities WHERE uri = %s", (uri,))
        if row is None:
            return None
        return CommunityRow(
            uri=row["uri"],
            creator_did=row["creator_did"],
            name=row["name"],
            display_name=row["display_name"],
            description=row["description"],
            visibility=row["visibility"],
            post_permissions=row["post_permissions"],
            member_count=row["member_count"],
            post_count=row["post_count"],
            is_deleted=bool(row["is_deleted"]),
            created_at=to_datetime(row["created_at"]),
        )

    def upsert_community(
        self,
        uri: str,
        rkey: str,
        cid: Optional[str],
        creator_did: str,
        record: CommunityRecord,
        now: datetime,
    ) -> bool:
        """
        Insert the community, or overwrite its mutable fields.

        A tombstoned community is revived by a later create/update.

        Returns:
            True if a new row was inserted
        """
        name = record.name or rkey
        inserted = self._execute(
            """
            INSERT INTO communities (
                uri, rkey, cid, creator_did, name, display_name, description,
                avatar, banner, visibility, post_permissions,
                member_count, post_count, is_deleted, created_at, indexed_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 0, 0, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (
                uri, rkey, cid, creator_did, name, record.display_name or name,
                record.description, record.avatar, record.banner,
                record.visibility, record.post_permissions,
                False, record.created_at or now, now, now,
            ),
        ) > 0
        if inserted:
            return True

        self._execute(
            """
            UPDATE communities SET
                cid = %s,
                name = COALESCE(%s, name),
                display_name = COALESCE(%s, display_name),
                description = %s,
                avatar = %s,
                banner = %s,
                visibility = %s,
                post_permissions = %s,
                is_deleted = %s,
                updated_at = %s
            WHERE uri = %s
            """,
            (
                cid, record.name, record.display_name, record.description,
                record.avatar, record.banner, record.visibility,
                record.post_permissions, False, now, uri,
            ),
        )
        return False

    def tombstone_community(self, uri: str, now: datetime) -> bool:
        """Mark a community deleted, keeping its posts. Returns True if a live row was tombstoned."""
        return self._execute(
            "UPDATE communities SET is_deleted = %s, updated_at = %s WHERE uri = %s AND is_deleted = %s",
            (True, now, uri, False),
        ) > 0

    def set_community_counts(self, uri: str, member_count: int, post_count: int) -> bool:
        return self._execute(
            "UPDATE communities SET member_count = %s, post_count = %s WHERE uri = %s",
            (member_count, post_count, uri),
        ) > 0

    def count_members(self, community_uri: str) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS total FROM subscriptions WHERE community_uri = %s",
            (community_uri,),
        )
        return int(row["total"]) if row else 0

    def count_top_level_posts(self, community_uri: str) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS total FROM posts WHERE community_uri = %s AND reply_parent IS NULL",
            (community_uri,),
        )
        return int(row["total"]) if row else 0

    # =========================================================================
    # Posts
    # =========================================================================

    def _row_to_post(self, row: Dict[str, Any]) -> PostRow:
        tags = row["tags"]
        return PostRow(
            uri=row["uri"],
            rkey=row["rkey"],
            cid=row["cid"],
            author_did=row["author_did"],
            community_uri=row["community_uri"],
            title=row["title"],
            text=row["text"],
            tags=tuple(json.loads(tags)) if tags else None,
            reply_parent=row["reply_parent"],
            reply_root=row["reply_root"],
            flair_uri=row["flair_uri"],
            vote_count=row["vote_count"],
            comment_count=row["comment_count"],
            hot_score=float(row["hot_score"]),
            trending_score=float(row["trending_score"]),
            is_removed=bool(row["is_removed"]),
            is_pinned=bool(row["is_pinned"]),
            is_locked=bool(row["is_locked"]),
            created_at=to_datetime(row["created_at"]),
            indexed_at=to_datetime(row["indexed_at"]),
        )

    def get_post(self, uri: str) -> Optional[PostRow]:
        row = self._fetchone("SELECT * FROM posts WHERE uri = %s", (uri,))
        return self._row_to_post(row) if row else None

    def upsert_post(
        self,
        uri: str,
        rkey: str,
        cid: str,
        author_did: str,
        record: PostRecord,
        now: datetime,
    ) -> bool:
        """
        Insert the post, or overwrite its mutable fields.

        Reply linkage, community and author never change after insert.

        Returns:
            True if a new row was inserted
        """
        tags = json.dumps(list(record.tags)) if record.tags is not None else None
        inserted = self._execute(
            """
            INSERT INTO posts (
                uri, rkey, cid, author_did, community_uri, title, text,
                embed_type, embed_data, tags, lang, reply_parent, reply_root, flair_uri,
                vote_count, comment_count, hot_score, trending_score,
                is_removed, is_pinned, is_locked, created_at, indexed_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                      0, 0, 0, 0, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (
                uri, rkey, cid, author_did, record.community_uri, record.title, record.text,
                record.embed_type, record.embed_data, tags, record.lang,
                record.reply_parent, record.reply_root, record.flair_uri,
                False, False, False, record.created_at, now,
            ),
        ) > 0
        if inserted:
            return True

        self._execute(
            """
            UPDATE posts SET
                cid = %s,
                title = %s,
                text = %s,
                embed_type = %s,
                embed_data = %s,
                tags = %s,
                lang = %s,
                flair_uri = %s,
                indexed_at = %s
            WHERE uri = %s
            """,
            (
                cid, record.title, record.text, record.embed_type, record.embed_data,
                tags, record.lang, record.flair_uri, now, uri,
            ),
        )
        return False

    def delete_post(self, uri: str) -> bool:
        return self._execute("DELETE FROM posts WHERE uri = %s", (uri,)) > 0

    def set_post_flag(self, uri: str, column: str, value: bool) -> bool:
        if column not in POST_FLAG_COLUMNS:
            raise ValueError(f"Not a post flag: {column}")
        return self._execute(
            f"UPDATE posts SET {column} = %s WHERE uri = %s", (value, uri)
        ) > 0

    def set_post_counts(self, uri: str, vote_count: int, comment_count: int) -> bool:
        return self._execute(
            "UPDATE posts SET vote_count = %s, comment_count = %s WHERE uri = %s",
            (vote_count, comment_count, uri),
        ) > 0

    def set_post_scores(self, uri: str, hot_score: float, trending_score: float) -> bool:
        return self._execute(
            "UPDATE posts SET hot_score = %s, trending_score = %s WHERE uri = %s",
            (hot_score, trending_score, uri),
        ) > 0

    def count_replies(self, parent_uri: str) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS total FROM posts WHERE reply_parent = %s", (parent_uri,)
        )
        return int(row["total"]) if row else 0

    def list_posts_created_since(self, since: datetime, limit: Optional[int] = None) -> List[PostRow]:
        """Posts created at or after `since`, newest first."""
        query = "SELECT * FROM posts WHERE created_at >= %s ORDER BY created_at DESC"
        params: List[Any] = [since]
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        rows = self._fetchall(query, params)
        return [self._row_to_post(row) for row in rows]

    # =========================================================================
    # Votes
    # =========================================================================

    def _row_to_vote(self, row: Dict[str, Any]) -> VoteRow:
        return VoteRow(
            uri=row["uri"],
            author_did=row["author_did"],
            subject_uri=row["subject_uri"],
            direction=row["direction"],
            created_at=to_datetime(row["created_at"]),
        )

    def get_vote(self, uri: str) -> Optional[VoteRow]:
        row = self._fetchone("SELECT * FROM votes WHERE uri = %s", (uri,))
        return self._row_to_vote(row) if row else None

    def get_vote_for_subject(self, author_did: str, subject_uri: str) -> Optional[VoteRow]:
        row = self._fetchone(
            "SELECT * FROM votes WHERE author_did = %s AND subject_uri = %s",
            (author_did, subject_uri),
        )
        return self._row_to_vote(row) if row else None

    def insert_vote(self, uri: str, rkey: str, author_did: str, record: VoteRecord, now: datetime) -> bool:
        """Insert-or-ignore; rejected on duplicate URI or duplicate (author, subject)."""
        return self._execute(
            """
            INSERT INTO votes (uri, rkey, author_did, subject_uri, direction, created_at, indexed_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (uri, rkey, author_did, record.subject_uri, record.direction, record.created_at, now),
        ) > 0

    def update_vote_direction(self, uri: str, direction: str) -> bool:
        return self._execute(
            "UPDATE votes SET direction = %s WHERE uri = %s", (direction, uri)
        ) > 0

    def delete_vote(self, uri: str) -> bool:
        return self._execute("DELETE FROM votes WHERE uri = %s", (uri,)) > 0

    def count_vote_total(self, subject_uri: str) -> int:
        """Net vote total for a subject: +1 per up, -1 per down."""
        row = self._fetchone(
            """
            SELECT COALESCE(SUM(CASE WHEN direction = 'up' THEN 1 ELSE -1 END), 0) AS total
            FROM votes WHERE subject_uri = %s
            """,
            (subject_uri,),
        )
        return int(row["total"]) if row else 0

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def get_subscription(self, uri: str) -> Optional[SubscriptionRow]:
        row = self._fetchone("SELECT * FROM subscriptions WHERE uri = %s", (uri,))
        if row is None:
            return None
        return SubscriptionRow(
            uri=row["uri"],
            user_did=row["user_did"],
            community_uri=row["community_uri"],
            created_at=to_datetime(row["created_at"]),
        )

    def insert_subscription(self, uri: str, user_did: str, record: SubscriptionRecord, now: datetime) -> bool:
        """Insert-or-ignore; one subscription per (user, community)."""
        return self._execute(
            """
            INSERT INTO subscriptions (uri, user_did, community_uri, created_at, indexed_at)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (uri, user_did, record.community_uri, record.created_at or now, now),
        ) > 0

    def delete_subscription(self, uri: str) -> bool:
        return self._execute("DELETE FROM subscriptions WHERE uri = %s", (uri,)) > 0

    # =========================================================================
    # Flairs
    # =========================================================================

    def get_flair(self, uri: str) -> Optional[FlairRow]:
        row = self._fetchone("SELECT * FROM post_flairs WHERE uri = %s", (uri,))
        if row is None:
            return None
        return FlairRow(
            uri=row["uri"],
            community_uri=row["community_uri"],
            name=row["name"],
            color=row["color"],
            background_color=row["background_color"],
            is_mod_only=bool(row["is_mod_only"]),
        )

    def upsert_flair(self, uri: str, record: FlairRecord, now: datetime) -> bool:
        inserted = self._execute(
            """
            INSERT INTO post_flairs (
                uri, community_uri, name, color, background_color, is_mod_only, created_at, indexed_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (
                uri, record.community_uri, record.name, record.color,
                record.background_color, record.is_mod_only, record.created_at or now, now,
            ),
        ) > 0
        if inserted:
            return True

        self._execute(
            """
            UPDATE post_flairs SET
                name = %s, color = %s, background_color = %s, is_mod_only = %s, indexed_at = %s
            WHERE uri = %s
            """,
            (record.name, record.color, record.background_color, record.is_mod_only, now, uri),
        )
        return False

    def delete_flair(self, uri: str) -> bool:
        return self._execute("DELETE FROM post_flairs WHERE uri = %s", (uri,)) > 0

    # =========================================================================
    # Moderation actions
    # =========================================================================

    def get_mod_action(self, uri: str) -> Optional[ModActionRow]:
        row = self._fetchone("SELECT * FROM moderation_actions WHERE uri = %s", (uri,))
        if row is None:
            return None
        return ModActionRow(
            uri=row["uri"],
            community_uri=row["community_uri"],
            moderator_did=row["moderator_did"],
            action=row["action"],
            target_post_uri=row["target_post_uri"],
            target_user_did=row["target_user_did"],
            reason=row["reason"],
            created_at=to_datetime(row["created_at"]),
        )

    def insert_mod_action(self, uri: str, moderator_did: str, record: ModActionRecord, now: datetime) -> bool:
        return self._execute(
            """
            INSERT INTO moderation_actions (
                uri, community_uri, moderator_did, action, target_post_uri,
                target_user_did, reason, duration, created_at, indexed_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (
                uri, record.community_uri, moderator_did, record.action,
                record.target_post_uri, record.target_user_did, record.reason,
                record.duration, record.created_at or now, now,
            ),
        ) > 0

    def delete_mod_action(self, uri: str) -> bool:
        return self._execute("DELETE FROM moderation_actions WHERE uri = %s", (uri,)) > 0

    # =========================================================================
    # Counters
    # =========================================================================

    def adjust_counter(self, table: str, key: str, column: str, delta: int) -> bool:
        """
        Atomically add delta to a counter column of the row identified by key.

        Counters flagged as floored never drop below zero.

        Returns:
            True if the row exists (and was updated)
        """
        if table not in COUNTER_COLUMNS:
            raise ValueError(f"No counters on table: {table}")
        key_column, columns = COUNTER_COLUMNS[table]
        if column not in columns:
            raise ValueError(f"Not a counter column: {table}.{column}")

        if columns[column]:
            expression = f"{self.GREATEST}({column} + %s, 0)"
        else:
            expression = f"{column} + %s"
        return self._execute(
            f"UPDATE {table} SET {column} = {expression} WHERE {key_column} = %s",
            (delta, key),
        ) > 0
