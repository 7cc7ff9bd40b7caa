"""
Impression bookkeeping: which posts a viewer has been shown, and the
repeat cooldown derived from it.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Sequence

from feed_ranker.clients.repository import Repository
from feed_ranker.ranking.types import FeedSource, Impression, Post
from feed_ranker.ranking.writer import BackgroundWriter, Sink

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImpressionStore:
    def __init__(
        self,
        repository: Repository,
        writer: BackgroundWriter,
        cooldown_days: int = 7,
        extra_sinks: Iterable[tuple[str, Sink]] = (),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._writer = writer
        self._cooldown = timedelta(days=max(0, cooldown_days))
        self._extra_sinks = list(extra_sinks)
        self._clock = clock

    async def excluded_for(self, viewer_id: str) -> set[str]:
        """Post ids shown to the viewer inside the cooldown window."""
        if not self._cooldown:
            return set()
        return await self._repository.recent_impressions(viewer_id, self._clock() - self._cooldown)

    def record(
        self,
        viewer_id: str,
        posts: Sequence[Post],
        source: FeedSource,
        session_id: str,
    ) -> list[Impression]:
        """Queue one impression per served post; the write happens later."""
        return self.record_ids(viewer_id, [post.id for post in posts], source, session_id)

    def record_ids(
        self,
        viewer_id: str,
        post_ids: Sequence[str],
        source: FeedSource,
        session_id: str,
    ) -> list[Impression]:
        now = self._clock()
        rows = [
            Impression(
                viewer_id=viewer_id,
                post_id=post_id,
                source=source,
                session_id=session_id,
                created_at=now,
            )
            for post_id in dict.fromkeys(post_ids)
        ]
        if not rows:
            return rows
        self._writer.submit("impressions", self._repository.write_impressions, rows)
        for name, sink in self._extra_sinks:
            self._writer.submit(name, sink, rows)
        logger.debug("Queued %d impressions for viewer=%s", len(rows), viewer_id)
        return rows
