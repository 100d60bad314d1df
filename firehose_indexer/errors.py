"""
Indexer Exceptions

Recoverable errors (per event, per frame, per checkpoint) are caught at the
component that owns them. Only ConfigError and a StoreError raised while the
store is being opened stop the process.
"""


class IndexerError(Exception):
    """Base class for all indexer errors."""


class ConfigError(IndexerError):
    """Required configuration is missing or invalid. Fatal at startup."""


class StoreError(IndexerError, RuntimeError):
    """Store connection or write failed."""


class RecordValidationError(IndexerError, ValueError):
    """A record payload is missing required fields or has the wrong shape."""


class FrameDecodeError(IndexerError, ValueError):
    """A transport frame could not be decoded into a StreamEvent."""


class FirehoseConnectionError(IndexerError):
    """Reconnect attempts exhausted."""
