"""
Firehose Event Schema

Immutable representation of a single repository mutation delivered by the
Jetstream firehose, plus the decoder that turns a raw frame into one.

Frame format (commit kind):
{
  "did": "did:plc:abc",
  "time_us": 1725911162329308,
  "kind": "commit",
  "commit": {
    "rev": "3l3qo2vutsw2b",
    "operation": "create",
    "collection": "mlcommons.community.post",
    "rkey": "3l3qo2vuowo2b",
    "record": {...},
    "cid": "bafyrei..."
  }
}

Identity and account frames carry no commit and are not indexed.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .errors import FrameDecodeError


class Operation(str, Enum):
    """Repository mutation kind."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def make_uri(did: str, collection: str, rkey: str) -> str:
    """Build the at:// URI identifying a record."""
    return f"at://{did}/{collection}/{rkey}"


@dataclass(frozen=True)
class StreamEvent:
    """
    One commit from the firehose.

    Fields:
        seq: Jetstream time_us, monotonic; used as the cursor
        did: Repository owner
        collection: Record collection NSID
        rkey: Record key within the collection
        operation: create / update / delete
        record: Record payload (None for delete)
        cid: Commit content hash (None for delete)
        rev: Repository revision
    """
    seq: int
    did: str
    collection: str
    rkey: str
    operation: Operation
    record: Optional[Dict[str, Any]] = None
    cid: Optional[str] = None
    rev: Optional[str] = None

    @property
    def uri(self) -> str:
        return make_uri(self.did, self.collection, self.rkey)

    def describe(self) -> str:
        """Short context string for log lines."""
        return (
            f"seq={self.seq} op={self.operation.value} "
            f"collection={self.collection} did={self.did} uri={self.uri}"
        )


def decode_frame(message: Union[str, bytes]) -> Optional[StreamEvent]:
    """
    Decode a raw Jetstream frame.

    Returns:
        StreamEvent for commit frames, None for frames that carry no commit
        (identity, account)

    Raises:
        FrameDecodeError: If the frame is not valid JSON or a commit frame is
            missing required fields
    """
    if isinstance(message, bytes):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameDecodeError(f"Frame is not UTF-8: {e}")

    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Frame is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise FrameDecodeError("Frame is not a JSON object")

    if data.get("kind") != "commit":
        return None

    commit = data.get("commit")
    if not isinstance(commit, dict):
        raise FrameDecodeError("Commit frame has no commit body")

    seq = data.get("time_us")
    if isinstance(seq, bool) or not isinstance(seq, int):
        raise FrameDecodeError(f"Commit frame has invalid time_us: {seq!r}")

    did = data.get("did")
    collection = commit.get("collection")
    rkey = commit.get("rkey")
    for name, value in (("did", did), ("collection", collection), ("rkey", rkey)):
        if not isinstance(value, str) or not value:
            raise FrameDecodeError(f"Commit frame missing {name}")

    try:
        operation = Operation(commit.get("operation"))
    except ValueError:
        raise FrameDecodeError(f"Unknown operation: {commit.get('operation')!r}")

    record = commit.get("record")
    if operation is not Operation.DELETE and not isinstance(record, dict):
        raise FrameDecodeError(f"{operation.value} frame has no record payload")

    return StreamEvent(
        seq=seq,
        did=did,
        collection=collection,
        rkey=rkey,
        operation=operation,
        record=record if operation is not Operation.DELETE else None,
        cid=commit.get("cid"),
        rev=commit.get("rev"),
    )
