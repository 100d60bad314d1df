"""
Derived-State Maintainer

Keeps counters and ranking scores consistent with the fact tables as a side
effect of applying events, without full rescans.

Counters are adjusted only when the owning row exists. Facts that arrive
before their subject (a vote before its post, a reply before its parent, a
subscription before its community) are stored by the router and counted
when the subject is created: reconcile_post() / reconcile_community()
recount one record from the fact tables with point queries.

RULE: Called inside the router's per-event transaction; never commits itself.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from .ranking import age_in_hours, hot_score, trending_score
from .storage.base import IndexStore
from .storage.models import CommunityRow, PostRow

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DerivedStateMaintainer:
    """Counter and score maintenance over an IndexStore."""

    def __init__(self, store: IndexStore, now: Callable[[], datetime] = utcnow):
        """
        Args:
            store: Index store the router writes to
            now: Wall clock for score ages (injectable for tests)
        """
        self.store = store
        self._now = now

    # =========================================================================
    # Incremental updates
    # =========================================================================

    def apply_vote(self, subject_uri: str, delta: int) -> bool:
        """
        Move a post's vote_count by delta and propagate to scores and karma.

        Args:
            subject_uri: URI of the voted post
            delta: Signed change (+1/-1 per vote, +-2 for a direction flip)

        Returns:
            True if the subject exists and was updated
        """
        if delta == 0:
            return self.store.get_post(subject_uri) is not None
        if not self.store.adjust_counter("posts", subject_uri, "vote_count", delta):
            logger.debug(f"[Derived] Vote subject not indexed yet: {subject_uri}")
            return False

        post = self.store.get_post(subject_uri)
        self.adjust_karma(post, delta)
        self.recompute_scores(post)
        return True

    def apply_reply(self, parent_uri: str, delta: int) -> bool:
        """Move the immediate parent's comment_count by delta (floor 0). No recursion."""
        if not self.store.adjust_counter("posts", parent_uri, "comment_count", delta):
            logger.debug(f"[Derived] Reply parent not indexed yet: {parent_uri}")
            return False
        self.recompute_scores(self.store.get_post(parent_uri))
        return True

    def adjust_community_posts(self, community_uri: str, delta: int) -> bool:
        return self.store.adjust_counter("communities", community_uri, "post_count", delta)

    def adjust_members(self, community_uri: str, delta: int) -> bool:
        return self.store.adjust_counter("communities", community_uri, "member_count", delta)

    def adjust_karma(self, post: PostRow, delta: int) -> None:
        """Credit the post author: post_karma for top-level posts, comment_karma for replies."""
        if delta == 0:
            return
        column = "comment_karma" if post.is_reply else "post_karma"
        self.store.ensure_user(post.author_did, self._now())
        self.store.adjust_counter("users", post.author_did, column, delta)

    def recompute_scores(self, post: PostRow) -> Tuple[float, float]:
        """Recompute and store hot/trending scores from the row's current counters."""
        age = age_in_hours(post.created_at, self._now())
        hot = hot_score(post.vote_count, age)
        trending = trending_score(post.vote_count, post.comment_count, age)
        self.store.set_post_scores(post.uri, hot, trending)
        return hot, trending

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile_post(self, uri: str) -> Optional[PostRow]:
        """
        Recount a post's vote_count and comment_count from the fact tables.

        Returns:
            The refreshed row, or None if the post is not indexed
        """
        post = self.store.get_post(uri)
        if post is None:
            return None

        vote_count = self.store.count_vote_total(uri)
        comment_count = self.store.count_replies(uri)
        if (vote_count, comment_count) != (post.vote_count, post.comment_count):
            logger.info(
                f"[Derived] Reconciled {uri}: votes {post.vote_count} -> {vote_count}, "
                f"comments {post.comment_count} -> {comment_count}"
            )
            self.store.set_post_counts(uri, vote_count, comment_count)
            post = self.store.get_post(uri)

        self.recompute_scores(post)
        return post

    def reconcile_community(self, uri: str) -> Optional[CommunityRow]:
        """Recount a community's member_count and post_count from the fact tables."""
        community = self.store.get_community(uri)
        if community is None:
            return None

        member_count = self.store.count_members(uri)
        post_count = self.store.count_top_level_posts(uri)
        if (member_count, post_count) != (community.member_count, community.post_count):
            logger.info(
                f"[Derived] Reconciled {uri}: members {community.member_count} -> {member_count}, "
                f"posts {community.post_count} -> {post_count}"
            )
            self.store.set_community_counts(uri, member_count, post_count)
            community = self.store.get_community(uri)
        return community

    # =========================================================================
    # Batch recompute
    # =========================================================================

    def recalculate_hot_scores(self, max_age_days: int = 7) -> int:
        """
        Recompute scores for every post younger than max_age_days.

        Older posts have decayed to near zero and are left as they are.

        Returns:
            Number of posts updated
        """
        since = self._now() - timedelta(days=max_age_days)
        with self.store.transaction():
            posts = self.store.list_posts_created_since(since)
            for post in posts:
                self.recompute_scores(post)
        logger.info(f"[Derived] Recalculated scores for {len(posts)} posts")
        return len(posts)
