"""
Index Schema

DDL for the tables the indexer writes. Column types differ per dialect, so
statements are templates filled with the dialect's type names.

Tables are created with IF NOT EXISTS; there is no migration tooling.
"""

from typing import Dict, List

SQLITE_TYPES: Dict[str, str] = {
    "ts": "TEXT",
    "bool": "INTEGER",
    "false": "0",
    "float": "REAL",
}

POSTGRES_TYPES: Dict[str, str] = {
    "ts": "TIMESTAMPTZ",
    "bool": "BOOLEAN",
    "false": "FALSE",
    "float": "DOUBLE PRECISION",
}

TABLES = [
    """
    CREATE TABLE IF NOT EXISTS users (
        did TEXT PRIMARY KEY,
        post_karma INTEGER NOT NULL DEFAULT 0,
        comment_karma INTEGER NOT NULL DEFAULT 0,
        created_at {ts} NOT NULL,
        updated_at {ts} NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS communities (
        uri TEXT PRIMARY KEY,
        rkey TEXT NOT NULL,
        cid TEXT,
        creator_did TEXT NOT NULL,
        name TEXT NOT NULL,
        display_name TEXT NOT NULL,
        description TEXT,
        avatar TEXT,
        banner TEXT,
        visibility TEXT NOT NULL DEFAULT 'public',
        post_permissions TEXT NOT NULL DEFAULT 'anyone',
        member_count INTEGER NOT NULL DEFAULT 0,
        post_count INTEGER NOT NULL DEFAULT 0,
        is_deleted {bool} NOT NULL DEFAULT {false},
        created_at {ts} NOT NULL,
        indexed_at {ts} NOT NULL,
        updated_at {ts} NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS posts (
        uri TEXT PRIMARY KEY,
        rkey TEXT NOT NULL,
        cid TEXT NOT NULL,
        author_did TEXT NOT NULL,
        community_uri TEXT NOT NULL,
        title TEXT,
        text TEXT NOT NULL,
        embed_type TEXT,
        embed_data TEXT,
        tags TEXT,
        lang TEXT,
        reply_parent TEXT,
        reply_root TEXT,
        flair_uri TEXT,
        vote_count INTEGER NOT NULL DEFAULT 0,
        comment_count INTEGER NOT NULL DEFAULT 0,
        hot_score {float} NOT NULL DEFAULT 0,
        trending_score {float} NOT NULL DEFAULT 0,
        is_removed {bool} NOT NULL DEFAULT {false},
        is_pinned {bool} NOT NULL DEFAULT {false},
        is_locked {bool} NOT NULL DEFAULT {false},
        created_at {ts} NOT NULL,
        indexed_at {ts} NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS votes (
        uri TEXT PRIMARY KEY,
        rkey TEXT NOT NULL,
        author_did TEXT NOT NULL,
        subject_uri TEXT NOT NULL,
        direction TEXT NOT NULL,
        created_at {ts} NOT NULL,
        indexed_at {ts} NOT NULL,
        CONSTRAINT votes_author_subject_unique UNIQUE (author_did, subject_uri)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        uri TEXT PRIMARY KEY,
        user_did TEXT NOT NULL,
        community_uri TEXT NOT NULL,
        created_at {ts} NOT NULL,
        indexed_at {ts} NOT NULL,
        CONSTRAINT subscriptions_user_community_unique UNIQUE (user_did, community_uri)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS moderation_actions (
        uri TEXT PRIMARY KEY,
        community_uri TEXT NOT NULL,
        moderator_did TEXT NOT NULL,
        action TEXT NOT NULL,
        target_post_uri TEXT,
        target_user_did TEXT,
        reason TEXT,
        duration TEXT,
        created_at {ts} NOT NULL,
        indexed_at {ts} NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS post_flairs (
        uri TEXT PRIMARY KEY,
        community_uri TEXT NOT NULL,
        name TEXT NOT NULL,
        color TEXT,
        background_color TEXT,
        is_mod_only {bool} NOT NULL DEFAULT {false},
        created_at {ts} NOT NULL,
        indexed_at {ts} NOT NULL
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS posts_community_created_idx ON posts(community_uri, created_at)",
    "CREATE INDEX IF NOT EXISTS posts_community_hot_idx ON posts(community_uri, hot_score)",
    "CREATE INDEX IF NOT EXISTS posts_author_created_idx ON posts(author_did, created_at)",
    "CREATE INDEX IF NOT EXISTS posts_reply_parent_idx ON posts(reply_parent)",
    "CREATE INDEX IF NOT EXISTS votes_subject_idx ON votes(subject_uri)",
    "CREATE INDEX IF NOT EXISTS subscriptions_community_idx ON subscriptions(community_uri)",
    "CREATE INDEX IF NOT EXISTS mod_actions_community_idx ON moderation_actions(community_uri)",
    "CREATE INDEX IF NOT EXISTS post_flairs_community_idx ON post_flairs(community_uri)",
]


def schema_statements(types: Dict[str, str]) -> List[str]:
    """All CREATE statements for a dialect, tables first."""
    return [table.format(**types).strip() for table in TABLES] + list(INDEXES)
