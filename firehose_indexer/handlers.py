"""
Event Router

Dispatches a decoded StreamEvent by collection and operation and applies it
to the index store.

RULES:
- One store transaction per event: all of its writes land, or none do
- create/update upsert by URI; delete of a missing row is a no-op
- Unknown collections are ignored (forward compatibility)
- A failing event is counted and logged, never re-raised: the stream continues
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from .cache import TTLCache
from .derived import DerivedStateMaintainer, utcnow
from .events import Operation, StreamEvent
from .records import (
    COMMUNITY_COLLECTION,
    COMMUNITY_DEFINITION_COLLECTION,
    FLAIR_COLLECTION,
    MOD_ACTION_COLLECTION,
    POST_COLLECTION,
    POST_STATE_ACTIONS,
    SUBSCRIPTION_COLLECTION,
    VOTE_COLLECTION,
    CommunityRecord,
    FlairRecord,
    ModActionRecord,
    PostRecord,
    SubscriptionRecord,
    VoteRecord,
    decode_record,
)
from .stats import IndexerStats
from .storage.base import IndexStore
from .storage.models import CommunityRow

logger = logging.getLogger(__name__)

COMMUNITY_CACHE_PREFIX = "community:"


class EventRouter:
    """
    Applies firehose events to the store.

    RULE: Single consumer - handle() is awaited one event at a time.
    """

    def __init__(
        self,
        store: IndexStore,
        maintainer: DerivedStateMaintainer,
        stats: IndexerStats,
        cache: Optional[TTLCache] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Index store
            maintainer: Derived-state maintainer over the same store
            stats: Shared processing counters
            cache: Community row cache (a private one is created if omitted)
            now: Wall clock for indexed_at (injectable for tests)
        """
        self.store = store
        self.maintainer = maintainer
        self.stats = stats
        self.cache = cache if cache is not None else TTLCache()
        self._now = now

        # collection -> (upsert, delete)
        self._handlers: Dict[str, Tuple[Callable, Callable]] = {
            COMMUNITY_COLLECTION: (self._upsert_community, self._delete_community),
            COMMUNITY_DEFINITION_COLLECTION: (self._upsert_community, self._delete_community),
            POST_COLLECTION: (self._upsert_post, self._delete_post),
            VOTE_COLLECTION: (self._upsert_vote, self._delete_vote),
            SUBSCRIPTION_COLLECTION: (self._upsert_subscription, self._delete_subscription),
            FLAIR_COLLECTION: (self._upsert_flair, self._delete_flair),
            MOD_ACTION_COLLECTION: (self._upsert_mod_action, self._delete_mod_action),
        }

    async def handle(self, event: StreamEvent) -> bool:
        """
        Apply one event.

        Returns:
            True if applied or deliberately ignored, False if it failed
        """
        self.stats.record_processed()

        handlers = self._handlers.get(event.collection)
        if handlers is None:
            logger.debug(f"[Handler] Ignoring unknown collection {event.collection}")
            self.stats.record_ignored()
            return True

        upsert, delete = handlers
        try:
            with self.store.transaction():
                if event.operation is Operation.DELETE:
                    delete(event)
                else:
                    record = decode_record(event.collection, event.record)
                    self.store.ensure_user(event.did, self._now())
                    upsert(event, record)
        except Exception as e:
            self.stats.record_error()
            # Rows cached during the rolled-back transaction may be stale
            self.cache.delete_pattern(COMMUNITY_CACHE_PREFIX + "*")
            logger.error(f"[Handler] Failed to apply event {event.describe()}: {type(e).__name__}: {e}")
            logger.debug("[Handler] Traceback", exc_info=True)
            return False

        return True

    # =========================================================================
    # Community cache
    # =========================================================================

    def _get_community(self, uri: str) -> Optional[CommunityRow]:
        key = COMMUNITY_CACHE_PREFIX + uri
        community = self.cache.get(key)
        if community is None:
            community = self.store.get_community(uri)
            if community is not None:
                self.cache.set(key, community)
        return community

    def _invalidate_community(self, uri: str) -> None:
        self.cache.delete(COMMUNITY_CACHE_PREFIX + uri)

    # =========================================================================
    # Communities
    # =========================================================================

    def _upsert_community(self, event: StreamEvent, record: CommunityRecord) -> None:
        inserted = self.store.upsert_community(
            event.uri, event.rkey, event.cid, event.did, record, self._now()
        )
        self._invalidate_community(event.uri)
        if inserted:
            logger.info(f"[Handler] Community created: {event.uri}")
            # Subscriptions and posts may have arrived first
            self.maintainer.reconcile_community(event.uri)

    def _delete_community(self, event: StreamEvent) -> None:
        if self.store.tombstone_community(event.uri, self._now()):
            logger.info(f"[Handler] Community deleted: {event.uri}")
        self._invalidate_community(event.uri)

    # =========================================================================
    # Posts and replies
    # =========================================================================

    def _upsert_post(self, event: StreamEvent, record: PostRecord) -> None:
        inserted = self.store.upsert_post(
            event.uri, event.rkey, event.cid or "", event.did, record, self._now()
        )
        if not inserted:
            logger.debug(f"[Handler] Post updated: {event.uri}")
            return

        if record.is_reply:
            self.maintainer.apply_reply(record.reply_parent, 1)
        elif self.maintainer.adjust_community_posts(record.community_uri, 1):
            self._invalidate_community(record.community_uri)

        # Votes and replies may have arrived first
        post = self.maintainer.reconcile_post(event.uri)
        self.maintainer.adjust_karma(post, post.vote_count)

    def _delete_post(self, event: StreamEvent) -> None:
        post = self.store.get_post(event.uri)
        if post is None:
            logger.debug(f"[Handler] Delete for unknown post {event.uri}")
            return

        self.store.delete_post(event.uri)
        if post.is_reply:
            self.maintainer.apply_reply(post.reply_parent, -1)
        elif self.maintainer.adjust_community_posts(post.community_uri, -1):
            self._invalidate_community(post.community_uri)
        self.maintainer.adjust_karma(post, -post.vote_count)

    # =========================================================================
    # Votes
    # =========================================================================

    def _upsert_vote(self, event: StreamEvent, record: VoteRecord) -> None:
        existing = self.store.get_vote(event.uri)
        if existing is not None:
            if existing.subject_uri == record.subject_uri:
                if existing.direction == record.direction:
                    logger.debug(f"[Handler] Duplicate vote ignored: {event.uri}")
                    return
                self.store.update_vote_direction(event.uri, record.direction)
                self.maintainer.apply_vote(record.subject_uri, record.value - existing.value)
                return
            # Same record now points at another subject: retract the old one
            self.store.delete_vote(event.uri)
            self.maintainer.apply_vote(existing.subject_uri, -existing.value)

        prior = self.store.get_vote_for_subject(event.did, record.subject_uri)
        if prior is not None:
            logger.debug(f"[Handler] Vote {prior.uri} replaced by {event.uri}")
            self.store.delete_vote(prior.uri)
            self.maintainer.apply_vote(prior.subject_uri, -prior.value)

        if self.store.insert_vote(event.uri, event.rkey, event.did, record, self._now()):
            self.maintainer.apply_vote(record.subject_uri, record.value)

    def _delete_vote(self, event: StreamEvent) -> None:
        vote = self.store.get_vote(event.uri)
        if vote is None:
            logger.debug(f"[Handler] Delete for unknown vote {event.uri}")
            return
        self.store.delete_vote(event.uri)
        self.maintainer.apply_vote(vote.subject_uri, -vote.value)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def _upsert_subscription(self, event: StreamEvent, record: SubscriptionRecord) -> None:
        if not self.store.insert_subscription(event.uri, event.did, record, self._now()):
            return
        if self.maintainer.adjust_members(record.community_uri, 1):
            self._invalidate_community(record.community_uri)

    def _delete_subscription(self, event: StreamEvent) -> None:
        subscription = self.store.get_subscription(event.uri)
        if subscription is None:
            return
        self.store.delete_subscription(event.uri)
        if self.maintainer.adjust_members(subscription.community_uri, -1):
            self._invalidate_community(subscription.community_uri)

    # =========================================================================
    # Flairs
    # =========================================================================

    def _upsert_flair(self, event: StreamEvent, record: FlairRecord) -> None:
        self.store.upsert_flair(event.uri, record, self._now())

    def _delete_flair(self, event: StreamEvent) -> None:
        self.store.delete_flair(event.uri)

    # =========================================================================
    # Moderation
    # =========================================================================

    def _upsert_mod_action(self, event: StreamEvent, record: ModActionRecord) -> None:
        if not self.store.insert_mod_action(event.uri, event.did, record, self._now()):
            logger.debug(f"[Handler] Duplicate moderation action ignored: {event.uri}")
            return

        effect = POST_STATE_ACTIONS.get(record.action)
        if effect is None:
            return

        community = self._get_community(record.community_uri)
        if community is None or community.creator_did != event.did:
            logger.warning(
                f"[Handler] {record.action} by {event.did} on {record.community_uri} "
                f"not authorized; recorded only"
            )
            return

        post = self.store.get_post(record.target_post_uri)
        if post is None or post.community_uri != record.community_uri:
            logger.debug(f"[Handler] {record.action} target not in community: {record.target_post_uri}")
            return

        column, value = effect
        self.store.set_post_flag(post.uri, column, value)
        logger.info(f"[Handler] {record.action} applied to {post.uri}")

    def _delete_mod_action(self, event: StreamEvent) -> None:
        self.store.delete_mod_action(event.uri)
