"""
Cold-start and fallback pages for viewers the personalised path cannot serve.

  trending  — most-liked posts of the last week, video_share/rest split,
              lightly shuffled with a seeded random term and a video bonus
  popular   — most-liked posts of any kind and any age
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from feed_ranker.clients.repository import Repository
from feed_ranker.config import Settings, settings as default_settings
from feed_ranker.ranking.candidates import merge_unique, split_quota
from feed_ranker.ranking.scorer import seeded_unit
from feed_ranker.ranking.types import MediaKind, Post

logger = logging.getLogger(__name__)

LIKE_WEIGHT = 0.7
RANDOM_WEIGHT = 0.3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ColdStartSource:
    def __init__(
        self,
        repository: Repository,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._config = config
        self._clock = clock

    def shuffle(self, posts: Iterable[Post], session_id: str, refresh_nonce: int) -> list[Post]:
        bonus = self._config.cold_start_video_bonus

        def weight(post: Post) -> float:
            noise = seeded_unit("cold_start", session_id, refresh_nonce, post.id)
            return (
                LIKE_WEIGHT * post.like_count
                + RANDOM_WEIGHT * noise
                + (bonus if post.media_kind == MediaKind.VIDEO else 0.0)
            )

        return sorted(posts, key=lambda p: (-weight(p), p.id))

    async def trending(
        self,
        viewer_id: str,
        excluded: Iterable[str],
        page_size: int,
        session_id: str,
        refresh_nonce: int,
    ) -> list[Post]:
        cfg = self._config
        excluded = frozenset(excluded)
        video_quota, image_quota = split_quota(page_size * cfg.cold_start_overfetch, cfg.video_share)
        since = self._clock() - timedelta(days=cfg.cold_start_window_days)

        videos, images = await asyncio.gather(
            self._repository.candidates_popular(
                MediaKind.VIDEO, since, viewer_id, video_quota, excluded
            ),
            self._repository.candidates_popular(
                MediaKind.IMAGE, since, viewer_id, image_quota, excluded
            ),
        )
        pool = merge_unique((videos, images), viewer_id, excluded)
        logger.info(
            "Cold start for viewer=%s: trending videos=%d images=%d",
            viewer_id,
            len(videos),
            len(images),
        )
        return self.shuffle(pool, session_id, refresh_nonce)

    async def popular(self, viewer_id: str, excluded: Iterable[str], page_size: int) -> list[Post]:
        """Pure popularity, no time window, no media split."""
        excluded = frozenset(excluded)
        posts = await self._repository.candidates_popular(
            None, None, viewer_id, page_size * self._config.cold_start_overfetch, excluded
        )
        return merge_unique((posts,), viewer_id, excluded)
