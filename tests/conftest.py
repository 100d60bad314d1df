"""Shared fixtures: temporary SQLite store, fixed clock, event builders."""

import asyncio
import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytest

from firehose_indexer.cache import TTLCache
from firehose_indexer.derived import DerivedStateMaintainer
from firehose_indexer.events import Operation, StreamEvent
from firehose_indexer.handlers import EventRouter
from firehose_indexer.records import (
    COMMUNITY_COLLECTION,
    MOD_ACTION_COLLECTION,
    POST_COLLECTION,
    SUBSCRIPTION_COLLECTION,
    VOTE_COLLECTION,
)
from firehose_indexer.stats import IndexerStats
from firehose_indexer.storage import SqliteStore

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
CREATED_AT = "2024-06-01T10:00:00.000Z"

ALICE = "did:plc:alice"
BOB = "did:plc:bob"
CAROL = "did:plc:carol"


@pytest.fixture
def store():
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    store = SqliteStore(path)
    store.create_schema()
    yield store
    store.close()
    try:
        os.remove(path)
    except (PermissionError, FileNotFoundError):
        pass


@pytest.fixture
def stats():
    return IndexerStats()


@pytest.fixture
def cache():
    return TTLCache(default_ttl=300)


@pytest.fixture
def maintainer(store):
    return DerivedStateMaintainer(store, now=lambda: NOW)


@pytest.fixture
def router(store, maintainer, stats, cache):
    return EventRouter(store, maintainer, stats, cache, now=lambda: NOW)


class EventFactory:
    """Builds StreamEvents with increasing sequence numbers."""

    def __init__(self):
        self.seq = 0

    def event(
        self,
        collection: str,
        did: str,
        rkey: str,
        record: Optional[Dict[str, Any]] = None,
        operation: Operation = Operation.CREATE,
        seq: Optional[int] = None,
    ) -> StreamEvent:
        if seq is None:
            self.seq += 1
            seq = self.seq
        return StreamEvent(
            seq=seq,
            did=did,
            collection=collection,
            rkey=rkey,
            operation=operation,
            record=record if operation is not Operation.DELETE else None,
            cid=None if operation is Operation.DELETE else f"bafy{rkey}",
            rev="rev1",
        )

    def delete(self, collection: str, did: str, rkey: str) -> StreamEvent:
        return self.event(collection, did, rkey, operation=Operation.DELETE)

    def community(self, did: str, rkey: str, **fields) -> StreamEvent:
        record = {"name": rkey, "createdAt": CREATED_AT}
        record.update(fields)
        return self.event(COMMUNITY_COLLECTION, did, rkey, record)

    def post(self, did: str, rkey: str, community_uri: str, text: str = "hello",
             parent: Optional[str] = None, operation: Operation = Operation.CREATE, **fields) -> StreamEvent:
        record = {"text": text, "communityRef": {"uri": community_uri}, "createdAt": CREATED_AT}
        if parent is not None:
            record["reply"] = {"parent": {"uri": parent}, "root": {"uri": parent}}
        record.update(fields)
        return self.event(POST_COLLECTION, did, rkey, record, operation=operation)

    def vote(self, did: str, rkey: str, subject_uri: str, direction: str = "up") -> StreamEvent:
        record = {"subject": {"uri": subject_uri}, "direction": direction, "createdAt": CREATED_AT}
        return self.event(VOTE_COLLECTION, did, rkey, record)

    def subscription(self, did: str, rkey: str, community_uri: str) -> StreamEvent:
        record = {"community": community_uri, "createdAt": CREATED_AT}
        return self.event(SUBSCRIPTION_COLLECTION, did, rkey, record)

    def mod_action(self, did: str, rkey: str, community_uri: str, action: str,
                   subject: Optional[str] = None) -> StreamEvent:
        record = {"community": community_uri, "action": action, "createdAt": CREATED_AT}
        if subject is not None:
            record["subject"] = {"uri": subject}
        return self.event(MOD_ACTION_COLLECTION, did, rkey, record)


@pytest.fixture
def events():
    return EventFactory()


def jetstream_frame(seq: int, collection: str = POST_COLLECTION, did: str = "did:plc:abc",
                    rkey: Optional[str] = None, record: Optional[Dict[str, Any]] = None,
                    operation: str = "create") -> str:
    """Serialize a Jetstream commit frame."""
    commit = {
        "rev": "rev",
        "operation": operation,
        "collection": collection,
        "rkey": rkey or f"p{seq}",
        "cid": "bafy",
    }
    if operation != "delete":
        commit["record"] = record if record is not None else {"text": "hi"}
    return json.dumps({"did": did, "time_us": seq, "kind": "commit", "commit": commit})


class FakeWebSocket:
    """Yields queued frames, then optionally fails or stays open until closed."""

    def __init__(self, frames, error=None, hold_open=True):
        self.frames = list(frames)
        self.error = error
        self.hold_open = hold_open
        self.closed = asyncio.Event()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed.set()
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.frames:
            if self.closed.is_set():
                return
            yield message
        if self.error is not None:
            raise self.error
        if self.hold_open:
            await self.closed.wait()

    async def close(self):
        self.closed.set()


class FakeConnector:
    """Stands in for websockets.connect; hands out sockets (or raises) in order."""

    def __init__(self, *attempts):
        self.attempts = list(attempts)
        self.urls = []
        self.kwargs = []

    def __call__(self, url, **kwargs):
        self.urls.append(url)
        self.kwargs.append(kwargs)
        attempt = self.attempts.pop(0)
        if isinstance(attempt, Exception):
            raise attempt
        return attempt
