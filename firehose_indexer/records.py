"""
Typed Record Payloads

One frozen dataclass per indexed collection. RECORD_TYPES maps a collection
NSID to its record type; anything not in the map is an unknown kind and is
ignored by the router.

RULE: Validation only - no store access.
RULE: Missing required fields raise RecordValidationError.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Type

from .errors import RecordValidationError

# Collection NSIDs
COMMUNITY_COLLECTION = "mlcommons.community.community"
COMMUNITY_DEFINITION_COLLECTION = "mlcommons.community.definition"
POST_COLLECTION = "mlcommons.community.post"
VOTE_COLLECTION = "mlcommons.community.vote"
SUBSCRIPTION_COLLECTION = "mlcommons.community.subscription"
MOD_ACTION_COLLECTION = "mlcommons.community.modAction"
FLAIR_COLLECTION = "mlcommons.community.flair"

VOTE_DIRECTIONS = ("up", "down")
VISIBILITIES = ("public", "unlisted", "private")
POST_PERMISSIONS = ("anyone", "approved", "moderators")

MOD_ACTIONS = (
    "remove_post", "restore_post", "pin_post", "unpin_post", "lock_post", "unlock_post",
    "ban_user", "unban_user", "mute_user", "unmute_user",
    "update_rules", "add_flair", "remove_flair",
    "add_moderator", "remove_moderator",
)

# Moderation actions that change post state: action -> (column, value)
POST_STATE_ACTIONS: Dict[str, Tuple[str, bool]] = {
    "remove_post": ("is_removed", True),
    "restore_post": ("is_removed", False),
    "pin_post": ("is_pinned", True),
    "unpin_post": ("is_pinned", False),
    "lock_post": ("is_locked", True),
    "unlock_post": ("is_locked", False),
}


_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


def parse_datetime(value: Any, field_name: str = "createdAt") -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Raises:
        RecordValidationError: If the value is missing or unparseable
    """
    if not isinstance(value, str) or not value:
        raise RecordValidationError(f"Missing {field_name}")
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise RecordValidationError(f"Invalid {field_name}: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _optional_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return parse_datetime(value)
    except RecordValidationError:
        return None


def _required_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise RecordValidationError(f"Missing {key}")
    return value


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if isinstance(value, str) and value:
        return value
    return None


def _ref_uri(value: Any) -> Optional[str]:
    """Accept either a bare URI string or a strongRef-style {"uri": ...} object."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict):
        uri = value.get("uri")
        if isinstance(uri, str) and uri:
            return uri
    return None


def _json_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


@dataclass(frozen=True)
class CommunityRecord:
    name: Optional[str]
    display_name: Optional[str]
    description: Optional[str]
    avatar: Optional[str]  # JSON blob ref
    banner: Optional[str]  # JSON blob ref
    visibility: str
    post_permissions: str
    created_at: Optional[datetime]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CommunityRecord":
        visibility = payload.get("visibility") or "public"
        if visibility not in VISIBILITIES:
            raise RecordValidationError(f"Invalid visibility: {visibility!r}")
        post_permissions = payload.get("postPermissions") or "anyone"
        if post_permissions not in POST_PERMISSIONS:
            raise RecordValidationError(f"Invalid postPermissions: {post_permissions!r}")
        return cls(
            name=_optional_str(payload, "name"),
            display_name=_optional_str(payload, "displayName"),
            description=_optional_str(payload, "description"),
            avatar=_json_or_none(payload.get("avatar")),
            banner=_json_or_none(payload.get("banner")),
            visibility=visibility,
            post_permissions=post_permissions,
            created_at=_optional_datetime(payload.get("createdAt")),
        )


@dataclass(frozen=True)
class PostRecord:
    community_uri: str
    text: str
    created_at: datetime
    title: Optional[str] = None
    embed_type: Optional[str] = None
    embed_data: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None
    lang: Optional[str] = None
    reply_parent: Optional[str] = None
    reply_root: Optional[str] = None
    flair_uri: Optional[str] = None

    @property
    def is_reply(self) -> bool:
        return self.reply_parent is not None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PostRecord":
        text = payload.get("text")
        if not isinstance(text, str):
            raise RecordValidationError("Missing text")

        community_uri = _ref_uri(payload.get("communityRef"))
        if community_uri is None:
            raise RecordValidationError("Missing communityRef")

        embed = payload.get("embed")
        embed_type = None
        if isinstance(embed, dict):
            embed_type = embed.get("type") or embed.get("$type")

        tags = payload.get("tags")
        if tags is not None:
            if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
                raise RecordValidationError("tags must be a list of strings")
            tags = tuple(tags)

        reply = payload.get("reply")
        reply_parent = reply_root = None
        if isinstance(reply, dict):
            reply_parent = _ref_uri(reply.get("parent"))
            reply_root = _ref_uri(reply.get("root")) or reply_parent

        return cls(
            community_uri=community_uri,
            text=text,
            created_at=parse_datetime(payload.get("createdAt")),
            title=_optional_str(payload, "title"),
            embed_type=embed_type,
            embed_data=_json_or_none(embed),
            tags=tags,
            lang=_optional_str(payload, "lang"),
            reply_parent=reply_parent,
            reply_root=reply_root,
            flair_uri=_ref_uri(payload.get("flair")),
        )


@dataclass(frozen=True)
class VoteRecord:
    subject_uri: str
    direction: str
    created_at: datetime

    @property
    def value(self) -> int:
        return 1 if self.direction == "up" else -1

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "VoteRecord":
        subject_uri = _ref_uri(payload.get("subject"))
        if subject_uri is None:
            raise RecordValidationError("Missing subject.uri")
        direction = payload.get("direction")
        if direction not in VOTE_DIRECTIONS:
            raise RecordValidationError(f"Invalid direction: {direction!r}")
        return cls(
            subject_uri=subject_uri,
            direction=direction,
            created_at=parse_datetime(payload.get("createdAt")),
        )


@dataclass(frozen=True)
class SubscriptionRecord:
    community_uri: str
    created_at: Optional[datetime]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SubscriptionRecord":
        community_uri = _ref_uri(payload.get("community"))
        if community_uri is None:
            raise RecordValidationError("Missing community")
        return cls(
            community_uri=community_uri,
            created_at=_optional_datetime(payload.get("createdAt")),
        )


@dataclass(frozen=True)
class FlairRecord:
    community_uri: str
    name: str
    color: Optional[str]
    background_color: Optional[str]
    is_mod_only: bool
    created_at: Optional[datetime]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "FlairRecord":
        community_uri = _ref_uri(payload.get("community"))
        if community_uri is None:
            raise RecordValidationError("Missing community")
        return cls(
            community_uri=community_uri,
            name=_required_str(payload, "name"),
            color=_optional_str(payload, "color"),
            background_color=_optional_str(payload, "backgroundColor"),
            is_mod_only=payload.get("isModOnly") is True,
            created_at=_optional_datetime(payload.get("createdAt")),
        )


@dataclass(frozen=True)
class ModActionRecord:
    community_uri: str
    action: str
    target_post_uri: Optional[str]
    target_user_did: Optional[str]
    reason: Optional[str]
    duration: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ModActionRecord":
        community_uri = _ref_uri(payload.get("community"))
        if community_uri is None:
            raise RecordValidationError("Missing community")
        action = payload.get("action")
        if action not in MOD_ACTIONS:
            raise RecordValidationError(f"Unknown moderation action: {action!r}")
        target_post_uri = _ref_uri(payload.get("subject"))
        if action in POST_STATE_ACTIONS and target_post_uri is None:
            raise RecordValidationError(f"{action} requires subject")
        return cls(
            community_uri=community_uri,
            action=action,
            target_post_uri=target_post_uri,
            target_user_did=_optional_str(payload, "targetUser"),
            reason=_optional_str(payload, "reason"),
            duration=_optional_str(payload, "duration"),
            created_at=_optional_datetime(payload.get("createdAt")),
        )


RECORD_TYPES: Dict[str, Type] = {
    COMMUNITY_COLLECTION: CommunityRecord,
    COMMUNITY_DEFINITION_COLLECTION: CommunityRecord,
    POST_COLLECTION: PostRecord,
    VOTE_COLLECTION: VoteRecord,
    SUBSCRIPTION_COLLECTION: SubscriptionRecord,
    MOD_ACTION_COLLECTION: ModActionRecord,
    FLAIR_COLLECTION: FlairRecord,
}

INDEXED_COLLECTIONS = tuple(RECORD_TYPES)


def decode_record(collection: str, payload: Optional[Dict[str, Any]]):
    """
    Decode a payload into the record type registered for its collection.

    Returns:
        Record instance, or None when the collection is not indexed

    Raises:
        RecordValidationError: If the payload is missing or invalid
    """
    record_type = RECORD_TYPES.get(collection)
    if record_type is None:
        return None
    if not isinstance(payload, dict):
        raise RecordValidationError(f"Missing record payload for {collection}")
    return record_type.from_payload(payload)
