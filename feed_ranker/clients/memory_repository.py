"""
In-process Repository backed by plain dicts.

Used for local development (REPOSITORY_BACKEND=memory) and by the test
suite. Query semantics mirror SqlRepository, including the ordering rules
and id tie-breaks, so pages are reproducible.
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from feed_ranker.clients.repository import Repository
from feed_ranker.ranking.types import (
    Impression,
    Interaction,
    LikedPost,
    MediaKind,
    Post,
    ScoreUpdate,
    View,
)

logger = logging.getLogger(__name__)


class MemoryRepository(Repository):
    def __init__(self) -> None:
        self.posts: dict[str, Post] = {}
        self.following: dict[str, set[str]] = defaultdict(set)   # follower → followees
        self.memberships: dict[str, set[str]] = defaultdict(set)  # user → groups
        self.likes: dict[str, list[tuple[datetime, str]]] = defaultdict(list)
        self.interactions: dict[str, list[Interaction]] = defaultdict(list)
        self.impressions: dict[tuple[str, str], Impression] = {}

    # ── Seeding helpers ───────────────────────────────────────────────────

    def add_post(self, post: Post) -> Post:
        self.posts[post.id] = post
        return post

    def add_posts(self, posts: Iterable[Post]) -> None:
        for post in posts:
            self.add_post(post)

    def follow(self, follower_id: str, followee_id: str) -> None:
        self.following[follower_id].add(followee_id)

    def join_group(self, user_id: str, group_id: str) -> None:
        self.memberships[user_id].add(group_id)

    def like(self, user_id: str, post_id: str, at: datetime) -> None:
        self.likes[user_id].append((at, post_id))

    def view(self, user_id: str, post_id: str, at: datetime) -> None:
        self.interactions[user_id].append(
            Interaction(viewer_id=user_id, post_id=post_id, interaction_type="view", created_at=at)
        )

    # ── Social graph ──────────────────────────────────────────────────────

    async def _follows(self, viewer_id: str) -> set[str]:
        return set(self.following.get(viewer_id, ()))

    async def _followers(self, viewer_id: str) -> set[str]:
        return {f for f, followees in self.following.items() if viewer_id in followees}

    async def _follows_of_many(self, user_ids: list[str]) -> dict[str, set[str]]:
        return {uid: set(self.following[uid]) for uid in user_ids if self.following.get(uid)}

    async def _groups_of(self, user_id: str) -> set[str]:
        return set(self.memberships.get(user_id, ()))

    async def _groups_of_many(self, user_ids: list[str]) -> dict[str, set[str]]:
        return {uid: set(self.memberships[uid]) for uid in user_ids if self.memberships.get(uid)}

    # ── Interaction log ───────────────────────────────────────────────────

    async def _recent_likes(self, viewer_id: str, limit: int) -> list[LikedPost]:
        rows = sorted(self.likes.get(viewer_id, ()), reverse=True)[:limit]
        liked = []
        for _, post_id in rows:
            post = self.posts.get(post_id)
            if post:
                liked.append(
                    LikedPost(post_id=post.id, author_id=post.author_id, hashtags=post.hashtags)
                )
        return liked

    async def _recent_views(self, viewer_id: str, limit: int) -> list[View]:
        rows = sorted(
            (i for i in self.interactions.get(viewer_id, ()) if i.interaction_type == "view"),
            key=lambda i: (i.created_at, i.post_id),
            reverse=True,
        )
        views = []
        for row in rows[:limit]:
            post = self.posts.get(row.post_id)
            if post:
                views.append(View(post_id=post.id, author_id=post.author_id, viewed_at=row.created_at))
        return views

    async def _recent_impressions(self, viewer_id: str, since: datetime) -> set[str]:
        return {
            imp.post_id
            for (vid, _), imp in self.impressions.items()
            if vid == viewer_id and imp.created_at >= since
        }

    # ── Candidate queries ─────────────────────────────────────────────────

    def _eligible(
        self,
        kind: Optional[MediaKind],
        exclude_author: str,
        exclude_ids: frozenset[str],
    ) -> list[Post]:
        return [
            p
            for p in self.posts.values()
            if (kind is None or p.media_kind == kind)
            and p.author_id != exclude_author
            and p.id not in exclude_ids
        ]

    @staticmethod
    def _by_newest(posts: list[Post]) -> list[Post]:
        return sorted(posts, key=lambda p: (-p.created_at.timestamp(), p.id))

    @staticmethod
    def _by_likes(posts: list[Post]) -> list[Post]:
        return sorted(posts, key=lambda p: (-p.like_count, p.id))

    async def _candidates_recent(self, kind, since, exclude_author, limit, exclude_ids):
        posts = [p for p in self._eligible(kind, exclude_author, exclude_ids) if p.created_at >= since]
        ordered = self._by_newest(posts) if kind == MediaKind.VIDEO else self._by_likes(posts)
        return ordered[:limit]

    async def _candidates_viral(self, kind, before, min_likes, exclude_author, limit, exclude_ids):
        posts = [
            p
            for p in self._eligible(kind, exclude_author, exclude_ids)
            if p.created_at < before and p.like_count >= min_likes
        ]
        return self._by_likes(posts)[:limit]

    async def _candidates_popular(self, kind, since, exclude_author, limit, exclude_ids):
        posts = [
            p
            for p in self._eligible(kind, exclude_author, exclude_ids)
            if since is None or p.created_at >= since
        ]
        return self._by_likes(posts)[:limit]

    # ── Writes ────────────────────────────────────────────────────────────

    async def _write_impressions(self, rows: list[Impression]) -> None:
        for row in rows:
            self.impressions[(row.viewer_id, row.post_id)] = row

    async def _write_scores(self, rows: list[ScoreUpdate]) -> None:
        for row in rows:
            post = self.posts.get(row.post_id)
            if post:
                self.posts[row.post_id] = post.model_copy(update={"algorithm_score": row.final})

    async def _write_interaction(self, row: Interaction) -> None:
        self.interactions[row.viewer_id].append(row)
