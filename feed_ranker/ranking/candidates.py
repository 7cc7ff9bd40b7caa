"""
Candidate generation.

The pool is the union of three buckets queried concurrently:

  recent videos  — newest first, inside the recent window   (video_share of quota)
  recent images  — by like_count, inside the recent window  (the rest of quota)
  viral videos   — older than the window, like_count ≥ min  (small fixed bucket)

Results are concatenated in that order, deduplicated keeping the first
occurrence, and stripped of the viewer's own posts and excluded ids.
"""
import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from feed_ranker.clients.repository import Repository
from feed_ranker.config import Settings, settings as default_settings
from feed_ranker.ranking.types import MediaKind, Post
from feed_ranker.telemetry import FEED_CANDIDATES_TOTAL

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def split_quota(total: int, video_share: float) -> tuple[int, int]:
    """Split a quota into (videos, images); videos get the rounding."""
    videos = min(total, math.ceil(total * video_share))
    return videos, total - videos


def merge_unique(
    streams: Iterable[Iterable[Post]],
    viewer_id: str,
    excluded: Iterable[str] = (),
) -> list[Post]:
    excluded = set(excluded)
    seen: set[str] = set()
    merged: list[Post] = []
    for stream in streams:
        for post in stream:
            if post.id in seen or post.id in excluded or post.author_id == viewer_id:
                continue
            seen.add(post.id)
            merged.append(post)
    return merged


class CandidateSource:
    def __init__(
        self,
        repository: Repository,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._config = config
        self._clock = clock

    def pool_target(self, page_size: int) -> int:
        return page_size * self._config.pool_multiplier

    async def candidates(
        self,
        viewer_id: str,
        excluded: Iterable[str] = (),
        page_size: Optional[int] = None,
    ) -> list[Post]:
        cfg = self._config
        excluded = frozenset(excluded)
        video_quota, image_quota = split_quota(
            self.pool_target(page_size or cfg.default_page_size), cfg.video_share
        )
        window_start = self._clock() - timedelta(days=cfg.recent_window_days)

        videos, images, viral = await asyncio.gather(
            self._repository.candidates_recent(
                MediaKind.VIDEO, window_start, viewer_id, video_quota, excluded
            ),
            self._repository.candidates_recent(
                MediaKind.IMAGE, window_start, viewer_id, image_quota, excluded
            ),
            self._repository.candidates_viral(
                MediaKind.VIDEO,
                window_start,
                cfg.viral_min_likes,
                viewer_id,
                cfg.viral_limit,
                excluded,
            ),
        )

        FEED_CANDIDATES_TOTAL.labels(bucket="recent_video").inc(len(videos))
        FEED_CANDIDATES_TOTAL.labels(bucket="recent_image").inc(len(images))
        FEED_CANDIDATES_TOTAL.labels(bucket="viral").inc(len(viral))

        pool = merge_unique((videos, images, viral), viewer_id, excluded)
        logger.info(
            "Candidates for viewer=%s: videos=%d images=%d viral=%d unique=%d",
            viewer_id,
            len(videos),
            len(images),
            len(viral),
            len(pool),
        )
        return pool
