"""
Repository adapter for TiDB over async SQLAlchemy.

Every call opens its own short-lived session so that independent reads can
run concurrently on separate pooled connections. Timestamps are stored as
naive UTC.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_ranker import models
from feed_ranker.clients.repository import Repository
from feed_ranker.database import AsyncSessionLocal, dispose_db, init_db
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


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_post(row: models.Post) -> Post:
    return Post(
        id=row.post_id,
        author_id=row.author_id,
        created_at=row.created_at,
        media_kind=MediaKind(row.media_kind),
        like_count=row.like_count or 0,
        comment_count=row.comment_count or 0,
        view_count=row.view_count or 0,
        hashtags=frozenset(row.hashtags or ()),
        algorithm_score=row.algorithm_score,
    )


class SqlRepository(Repository):
    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal
    ) -> None:
        self._sessions = session_factory

    async def start(self) -> None:
        await init_db()

    async def stop(self) -> None:
        await dispose_db()

    async def _scalars(self, stmt) -> list:
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _rows(self, stmt) -> list:
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return list(result.all())

    # ── Social graph ──────────────────────────────────────────────────────

    async def _follows(self, viewer_id: str) -> set[str]:
        stmt = select(models.Follow.following_id).where(models.Follow.follower_id == viewer_id)
        return set(await self._scalars(stmt))

    async def _followers(self, viewer_id: str) -> set[str]:
        stmt = select(models.Follow.follower_id).where(models.Follow.following_id == viewer_id)
        return set(await self._scalars(stmt))

    async def _follows_of_many(self, user_ids: list[str]) -> dict[str, set[str]]:
        stmt = select(models.Follow.follower_id, models.Follow.following_id).where(
            models.Follow.follower_id.in_(user_ids)
        )
        follows: dict[str, set[str]] = {}
        for follower_id, following_id in await self._rows(stmt):
            follows.setdefault(follower_id, set()).add(following_id)
        return follows

    async def _groups_of(self, user_id: str) -> set[str]:
        stmt = select(models.GroupMember.group_id).where(models.GroupMember.user_id == user_id)
        return set(await self._scalars(stmt))

    async def _groups_of_many(self, user_ids: list[str]) -> dict[str, set[str]]:
        stmt = select(models.GroupMember.user_id, models.GroupMember.group_id).where(
            models.GroupMember.user_id.in_(user_ids)
        )
        groups: dict[str, set[str]] = {}
        for user_id, group_id in await self._rows(stmt):
            groups.setdefault(user_id, set()).add(group_id)
        return groups

    # ── Interaction log ───────────────────────────────────────────────────

    async def _recent_likes(self, viewer_id: str, limit: int) -> list[LikedPost]:
        stmt = (
            select(models.Like.post_id, models.Post.author_id, models.Post.hashtags)
            .join(models.Post, models.Post.post_id == models.Like.post_id)
            .where(models.Like.user_id == viewer_id)
            .order_by(models.Like.created_at.desc())
            .limit(limit)
        )
        return [
            LikedPost(post_id=post_id, author_id=author_id, hashtags=frozenset(tags or ()))
            for post_id, author_id, tags in await self._rows(stmt)
        ]

    async def _recent_views(self, viewer_id: str, limit: int) -> list[View]:
        stmt = (
            select(
                models.VideoTracking.post_id,
                models.Post.author_id,
                models.VideoTracking.created_at,
            )
            .join(models.Post, models.Post.post_id == models.VideoTracking.post_id)
            .where(
                models.VideoTracking.user_id == viewer_id,
                models.VideoTracking.interaction_type == "view",
            )
            .order_by(models.VideoTracking.created_at.desc())
            .limit(limit)
        )
        return [
            View(post_id=post_id, author_id=author_id, viewed_at=ts)
            for post_id, author_id, ts in await self._rows(stmt)
        ]

    async def _recent_impressions(self, viewer_id: str, since: datetime) -> set[str]:
        stmt = select(models.PostImpression.post_id).where(
            models.PostImpression.user_id == viewer_id,
            models.PostImpression.created_at >= _naive_utc(since),
        )
        return set(await self._scalars(stmt))

    # ── Candidate queries ─────────────────────────────────────────────────

    @staticmethod
    def _base_query(
        kind: Optional[MediaKind], exclude_author: str, exclude_ids: frozenset[str]
    ):
        stmt = select(models.Post).where(models.Post.author_id != exclude_author)
        if kind is not None:
            stmt = stmt.where(models.Post.media_kind == kind.value)
        if exclude_ids:
            stmt = stmt.where(models.Post.post_id.not_in(sorted(exclude_ids)))
        return stmt

    async def _candidates_recent(self, kind, since, exclude_author, limit, exclude_ids):
        stmt = self._base_query(kind, exclude_author, exclude_ids).where(
            models.Post.created_at >= _naive_utc(since)
        )
        if kind == MediaKind.VIDEO:
            stmt = stmt.order_by(models.Post.created_at.desc(), models.Post.post_id)
        else:
            # Photos compete on engagement rather than recency
            stmt = stmt.order_by(models.Post.like_count.desc(), models.Post.post_id)
        return [_to_post(row) for row in await self._scalars(stmt.limit(limit))]

    async def _candidates_viral(self, kind, before, min_likes, exclude_author, limit, exclude_ids):
        stmt = (
            self._base_query(kind, exclude_author, exclude_ids)
            .where(
                models.Post.created_at < _naive_utc(before),
                models.Post.like_count >= min_likes,
            )
            .order_by(models.Post.like_count.desc(), models.Post.post_id)
            .limit(limit)
        )
        return [_to_post(row) for row in await self._scalars(stmt)]

    async def _candidates_popular(self, kind, since, exclude_author, limit, exclude_ids):
        stmt = self._base_query(kind, exclude_author, exclude_ids)
        if since is not None:
            stmt = stmt.where(models.Post.created_at >= _naive_utc(since))
        stmt = stmt.order_by(models.Post.like_count.desc(), models.Post.post_id).limit(limit)
        return [_to_post(row) for row in await self._scalars(stmt)]

    # ── Writes ────────────────────────────────────────────────────────────

    async def _write_impressions(self, rows: list[Impression]) -> None:
        stmt = mysql_insert(models.PostImpression).values(
            [
                {
                    "user_id": r.viewer_id,
                    "post_id": r.post_id,
                    "source": r.source.value,
                    "session_id": r.session_id,
                    "created_at": _naive_utc(r.created_at),
                }
                for r in rows
            ]
        )
        # Re-serving a post only refreshes its impression
        stmt = stmt.on_duplicate_key_update(
            source=stmt.inserted.source,
            session_id=stmt.inserted.session_id,
            created_at=stmt.inserted.created_at,
        )
        async with self._sessions.begin() as session:
            await session.execute(stmt)

    async def _write_scores(self, rows: list[ScoreUpdate]) -> None:
        async with self._sessions.begin() as session:
            await session.execute(
                update(models.Post),
                [{"post_id": r.post_id, "algorithm_score": r.final} for r in rows],
            )

    async def _write_interaction(self, row: Interaction) -> None:
        async with self._sessions.begin() as session:
            session.add(
                models.VideoTracking(
                    user_id=row.viewer_id,
                    post_id=row.post_id,
                    interaction_type=row.interaction_type,
                    watch_duration_seconds=row.watch_seconds,
                    completion_percentage=row.completion,
                    session_id=row.session_id,
                    created_at=_naive_utc(row.created_at),
                )
            )
