"""
Storage layer for the firehose indexer.

open_store() picks the backend from the DATABASE_URL scheme:
    sqlite:///path/to/index.db   -> SqliteStore
    sqlite:///:memory:           -> SqliteStore (in-memory)
    postgres://... / postgresql://... -> PostgresStore
"""

from ..errors import ConfigError
from .base import AtomicTransaction, IndexStore
from .models import (
    CommunityRow,
    FlairRow,
    ModActionRow,
    PostRow,
    SubscriptionRow,
    UserRow,
    VoteRow,
)
from .sqlite_store import SqliteStore
from .postgres_store import PostgresStore

SQLITE_PREFIX = "sqlite:///"
POSTGRES_PREFIXES = ("postgres://", "postgresql://")


def open_store(database_url: str) -> IndexStore:
    """
    Open the store named by a database URL.

    Raises:
        ConfigError: If the URL scheme is not supported
        StoreError: If the connection fails
    """
    if database_url.startswith(SQLITE_PREFIX):
        return SqliteStore(database_url[len(SQLITE_PREFIX):] or ":memory:")
    if database_url.startswith(POSTGRES_PREFIXES):
        return PostgresStore(database_url)
    raise ConfigError(f"Unsupported DATABASE_URL scheme: {database_url.split(':', 1)[0]}")


__all__ = [
    'AtomicTransaction',
    'IndexStore',
    'SqliteStore',
    'PostgresStore',
    'open_store',
    'UserRow',
    'CommunityRow',
    'PostRow',
    'VoteRow',
    'SubscriptionRow',
    'FlairRow',
    'ModActionRow',
]
