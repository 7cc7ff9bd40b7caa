"""
Viewer context: social graph, group memberships and recent interest signals.
"""
import asyncio
import logging
from collections import Counter

from feed_ranker.clients.repository import Repository
from feed_ranker.config import Settings, settings as default_settings
from feed_ranker.ranking.types import UserContext

logger = logging.getLogger(__name__)


class UserContextBuilder:
    def __init__(self, repository: Repository, config: Settings = default_settings) -> None:
        self._repository = repository
        self._config = config

    async def build(self, viewer_id: str) -> UserContext:
        """
        Fan out the context reads and merge them.

        A failed read yields an empty field; the build itself never fails.
        """
        follows, followers, groups, likes, views = await asyncio.gather(
            self._repository.follows(viewer_id),
            self._repository.followers(viewer_id),
            self._repository.groups_of(viewer_id),
            self._repository.recent_likes(viewer_id, self._config.recent_likes_limit),
            self._repository.recent_views(viewer_id, self._config.recent_views_limit),
        )

        liked_hashtags = frozenset(tag for like in likes for tag in like.hashtags)
        viewed_authors = Counter(view.author_id for view in views)
        recent_authors = Counter(
            view.author_id for view in views[: self._config.diversity_views_window]
        )

        context = UserContext(
            friends=frozenset(follows),
            followers=frozenset(followers),
            mutuals=frozenset(follows & followers),
            groups=frozenset(groups),
            liked_hashtags=liked_hashtags,
            viewed_authors=dict(viewed_authors),
            recent_authors=dict(recent_authors),
        )
        logger.debug(
            "Context for viewer=%s: friends=%d groups=%d hashtags=%d viewed_authors=%d",
            viewer_id,
            len(context.friends),
            len(context.groups),
            len(context.liked_hashtags),
            len(context.viewed_authors),
        )
        return context
