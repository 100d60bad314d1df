"""
Firehose Indexer Package

Resumable, at-least-once indexer that projects community records from the
Jetstream firehose into a relational store.

Components:
- cursor_store: Stream position persistence
- firehose: Websocket subscription with reconnect and ordered delivery
- handlers: Per-collection event router
- derived: Counter and ranking score maintenance
- supervisor: Process lifecycle, checkpoints, signals
- storage: SQLite / PostgreSQL index stores
"""

from .cache import TTLCache
from .config import IndexerConfig
from .cursor_store import CursorStore
from .derived import DerivedStateMaintainer
from .errors import (
    IndexerError,
    ConfigError,
    StoreError,
    RecordValidationError,
    FrameDecodeError,
    FirehoseConnectionError,
)
from .events import Operation, StreamEvent, decode_frame, make_uri
from .firehose import ConnectionState, FirehoseClient, JETSTREAM_URL
from .handlers import EventRouter
from .ranking import hot_score, trending_score
from .stats import IndexerStats
from .supervisor import IndexerSupervisor, SupervisorState

__all__ = [
    # Events
    'Operation',
    'StreamEvent',
    'decode_frame',
    'make_uri',
    # Core components
    'CursorStore',
    'FirehoseClient',
    'ConnectionState',
    'JETSTREAM_URL',
    'EventRouter',
    'DerivedStateMaintainer',
    'IndexerSupervisor',
    'SupervisorState',
    # Services
    'IndexerConfig',
    'IndexerStats',
    'TTLCache',
    'hot_score',
    'trending_score',
    # Errors
    'IndexerError',
    'ConfigError',
    'StoreError',
    'RecordValidationError',
    'FrameDecodeError',
    'FirehoseConnectionError',
]
