"""
Store Row Types

Read-side views of indexed rows. Writers take the record dataclasses from
firehose_indexer.records plus identity fields; readers get these back.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class UserRow:
    did: str
    post_karma: int
    comment_karma: int


@dataclass(frozen=True)
class CommunityRow:
    uri: str
    creator_did: str
    name: str
    display_name: str
    description: Optional[str]
    visibility: str
    post_permissions: str
    member_count: int
    post_count: int
    is_deleted: bool
    created_at: datetime


@dataclass(frozen=True)
class PostRow:
    uri: str
    rkey: str
    cid: str
    author_did: str
    community_uri: str
    title: Optional[str]
    text: str
    tags: Optional[Tuple[str, ...]]
    reply_parent: Optional[str]
    reply_root: Optional[str]
    flair_uri: Optional[str]
    vote_count: int
    comment_count: int
    hot_score: float
    trending_score: float
    is_removed: bool
    is_pinned: bool
    is_locked: bool
    created_at: datetime
    indexed_at: datetime

    @property
    def is_reply(self) -> bool:
        return self.reply_parent is not None


@dataclass(frozen=True)
class VoteRow:
    uri: str
    author_did: str
    subject_uri: str
    direction: str
    created_at: datetime

    @property
    def value(self) -> int:
        return 1 if self.direction == "up" else -1


@dataclass(frozen=True)
class SubscriptionRow:
    uri: str
    user_did: str
    community_uri: str
    created_at: datetime


@dataclass(frozen=True)
class FlairRow:
    uri: str
    community_uri: str
    name: str
    color: Optional[str]
    background_color: Optional[str]
    is_mod_only: bool


@dataclass(frozen=True)
class ModActionRow:
    uri: str
    community_uri: str
    moderator_did: str
    action: str
    target_post_uri: Optional[str]
    target_user_did: Optional[str]
    reason: Optional[str]
    created_at: datetime
