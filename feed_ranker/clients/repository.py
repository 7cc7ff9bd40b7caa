"""
Repository contract — the only way the ranker reaches stored data.

Reads never raise: a failing read is logged, counted, noted in the current
request's ReadFailures tracker and answered with an empty collection.
Writes are best-effort and report success as a bool.

Concrete adapters implement the underscore-prefixed coroutines; the public
methods add the failure contract on top.
"""
import abc
import logging
from contextvars import ContextVar
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from feed_ranker.ranking.types import (
    Impression,
    Interaction,
    LikedPost,
    MediaKind,
    Post,
    ScoreUpdate,
    View,
)
from feed_ranker.telemetry import REPOSITORY_READ_ERRORS

logger = logging.getLogger(__name__)

T = TypeVar("T")

_failed_reads: ContextVar[Optional[set[str]]] = ContextVar("failed_reads", default=None)


class ReadFailures:
    """
    Collects the labels of repository reads that failed while active.

    Tasks spawned inside the block (asyncio.gather, create_task) inherit the
    same set through the copied context.
    """

    def __init__(self) -> None:
        self.ops: set[str] = set()
        self._token = None

    def __enter__(self) -> "ReadFailures":
        self._token = _failed_reads.set(self.ops)
        return self

    def __exit__(self, *exc_info) -> None:
        _failed_reads.reset(self._token)

    def covers(self, ops: Iterable[str]) -> bool:
        return all(op in self.ops for op in ops)


def recent_label(kind: MediaKind) -> str:
    return f"candidates_recent:{kind.value}"


def viral_label(kind: MediaKind) -> str:
    return f"candidates_viral:{kind.value}"


def popular_label(kind: Optional[MediaKind]) -> str:
    return f"candidates_popular:{kind.value if kind else 'any'}"


class Repository(abc.ABC):
    """Read/write facade over posts, the social graph and the interaction log."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    # ── Failure contract ──────────────────────────────────────────────────

    async def _read(self, op: str, call: Awaitable[T], empty: Callable[[], T]) -> T:
        try:
            return await call
        except Exception as exc:
            logger.warning("Repository read %s failed: %s; treating as empty", op, exc)
            REPOSITORY_READ_ERRORS.labels(op=op.split(":")[0]).inc()
            failures = _failed_reads.get()
            if failures is not None:
                failures.add(op)
            return empty()

    async def _write(self, op: str, call: Awaitable[None]) -> bool:
        try:
            await call
            return True
        except Exception as exc:
            logger.warning("Repository write %s failed: %s", op, exc)
            return False

    # ── Social graph ──────────────────────────────────────────────────────

    async def follows(self, viewer_id: str) -> set[str]:
        return await self._read("follows", self._follows(viewer_id), set)

    async def followers(self, viewer_id: str) -> set[str]:
        return await self._read("followers", self._followers(viewer_id), set)

    async def follows_of_many(self, user_ids: Iterable[str]) -> dict[str, set[str]]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        return await self._read("follows_of_many", self._follows_of_many(ids), dict)

    async def groups_of(self, user_id: str) -> set[str]:
        return await self._read("groups_of", self._groups_of(user_id), set)

    async def groups_of_many(self, user_ids: Iterable[str]) -> dict[str, set[str]]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        return await self._read("groups_of_many", self._groups_of_many(ids), dict)

    # ── Interaction log ───────────────────────────────────────────────────

    async def recent_likes(self, viewer_id: str, limit: int) -> list[LikedPost]:
        return await self._read("recent_likes", self._recent_likes(viewer_id, limit), list)

    async def recent_views(self, viewer_id: str, limit: int) -> list[View]:
        """Most recent first."""
        return await self._read("recent_views", self._recent_views(viewer_id, limit), list)

    async def recent_impressions(self, viewer_id: str, since: datetime) -> set[str]:
        return await self._read(
            "recent_impressions", self._recent_impressions(viewer_id, since), set
        )

    # ── Candidate queries ─────────────────────────────────────────────────

    async def candidates_recent(
        self,
        kind: MediaKind,
        since: datetime,
        exclude_author: str,
        limit: int,
        exclude_ids: frozenset[str] = frozenset(),
    ) -> list[Post]:
        """Videos newest first; images by like_count desc."""
        if limit <= 0:
            return []
        return await self._read(
            recent_label(kind),
            self._candidates_recent(kind, since, exclude_author, limit, exclude_ids),
            list,
        )

    async def candidates_viral(
        self,
        kind: MediaKind,
        before: datetime,
        min_likes: int,
        exclude_author: str,
        limit: int,
        exclude_ids: frozenset[str] = frozenset(),
    ) -> list[Post]:
        if limit <= 0:
            return []
        return await self._read(
            viral_label(kind),
            self._candidates_viral(kind, before, min_likes, exclude_author, limit, exclude_ids),
            list,
        )

    async def candidates_popular(
        self,
        kind: Optional[MediaKind],
        since: Optional[datetime],
        exclude_author: str,
        limit: int,
        exclude_ids: frozenset[str] = frozenset(),
    ) -> list[Post]:
        """By like_count desc; kind=None spans all media, since=None has no floor."""
        if limit <= 0:
            return []
        return await self._read(
            popular_label(kind),
            self._candidates_popular(kind, since, exclude_author, limit, exclude_ids),
            list,
        )

    # ── Writes ────────────────────────────────────────────────────────────

    async def write_impressions(self, rows: list[Impression]) -> bool:
        if not rows:
            return True
        return await self._write("write_impressions", self._write_impressions(rows))

    async def write_scores(self, rows: list[ScoreUpdate]) -> bool:
        if not rows:
            return True
        return await self._write("write_scores", self._write_scores(rows))

    async def write_interaction(self, row: Interaction) -> bool:
        return await self._write("write_interaction", self._write_interaction(row))

    # ── Adapter hooks ─────────────────────────────────────────────────────

    @abc.abstractmethod
    async def _follows(self, viewer_id: str) -> set[str]: ...

    @abc.abstractmethod
    async def _followers(self, viewer_id: str) -> set[str]: ...

    @abc.abstractmethod
    async def _follows_of_many(self, user_ids: list[str]) -> dict[str, set[str]]: ...

    @abc.abstractmethod
    async def _groups_of(self, user_id: str) -> set[str]: ...

    @abc.abstractmethod
    async def _groups_of_many(self, user_ids: list[str]) -> dict[str, set[str]]: ...

    @abc.abstractmethod
    async def _recent_likes(self, viewer_id: str, limit: int) -> list[LikedPost]: ...

    @abc.abstractmethod
    async def _recent_views(self, viewer_id: str, limit: int) -> list[View]: ...

    @abc.abstractmethod
    async def _recent_impressions(self, viewer_id: str, since: datetime) -> set[str]: ...

    @abc.abstractmethod
    async def _candidates_recent(
        self, kind, since, exclude_author, limit, exclude_ids
    ) -> list[Post]: ...

    @abc.abstractmethod
    async def _candidates_viral(
        self, kind, before, min_likes, exclude_author, limit, exclude_ids
    ) -> list[Post]: ...

    @abc.abstractmethod
    async def _candidates_popular(
        self, kind, since, exclude_author, limit, exclude_ids
    ) -> list[Post]: ...

    @abc.abstractmethod
    async def _write_impressions(self, rows: list[Impression]) -> None: ...

    @abc.abstractmethod
    async def _write_scores(self, rows: list[ScoreUpdate]) -> None: ...

    @abc.abstractmethod
    async def _write_interaction(self, row: Interaction) -> None: ...
