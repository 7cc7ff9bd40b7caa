"""
Hand-weighted scoring.

Each post gets four component scores and a final score:

  relevance    [0, 1]    social + interest affinity with the author / content
  engagement   [0, 1]    like/comment rates squeezed through a sigmoid
  freshness    [0, 1]    linear decay over a week, boosted for early virality
  diversity    [0, 0.3]  penalty for authors the viewer has just watched

  final = w_r·relevance + w_e·engagement + w_f·freshness − w_d·diversity + jitter

The jitter is derived from (session_id, refresh_nonce, post_id), so a
cached page is reproducible while a new refresh nonce reshuffles near-ties.
"""
import asyncio
import hashlib
import logging
import math
from datetime import datetime
from typing import Mapping, Optional, Sequence

from feed_ranker.clients.repository import Repository
from feed_ranker.config import Settings, settings as default_settings
from feed_ranker.ranking.types import Candidate, Post, Scores, UserContext

logger = logging.getLogger(__name__)

RELEVANCE_BASE = 0.1
FRIEND_BONUS = 0.8
GROUP_BONUS = 0.6
GROUP_SATURATION = 3
HASHTAG_BONUS = 0.4
HASHTAG_SATURATION = 5
VIEWED_AUTHOR_BONUS = 0.3
VIEWED_AUTHOR_MIN_VIEWS = 2
MUTUAL_FOLLOW_STEP = 0.05
MUTUAL_FOLLOW_CAP = 0.2

MIN_VIEWS_FOR_STATS = 10
NEUTRAL_COMPLETION = 0.5
SIGMOID_STEEPNESS = 15
SIGMOID_MIDPOINT = 0.05

FRESHNESS_HORIZON_HOURS = 168

DIVERSITY_STEP = 0.1
DIVERSITY_CAP = 0.3


def seeded_unit(*parts: object) -> float:
    """Deterministic pseudo-random number in [0, 1) for the given parts."""
    key = "\x1f".join(str(p) for p in parts).encode("utf-8")
    digest = hashlib.blake2b(key, digest_size=8).digest()
    return int.from_bytes(digest, "big") / 2**64


def jitter(session_id: str, refresh_nonce: int, post_id: str, scale: float = 0.05) -> float:
    return seeded_unit(session_id, refresh_nonce, post_id) * scale


def sigmoid(x: float, steepness: float = SIGMOID_STEEPNESS, midpoint: float = SIGMOID_MIDPOINT) -> float:
    z = -steepness * (x - midpoint)
    if z > 700:  # math.exp overflow
        return 0.0
    return 1.0 / (1.0 + math.exp(z))


def relevance_score(
    post: Post,
    context: UserContext,
    author_groups: frozenset[str] | set[str] = frozenset(),
    author_follows: frozenset[str] | set[str] = frozenset(),
) -> float:
    score = RELEVANCE_BASE

    if post.author_id in context.friends:
        score += FRIEND_BONUS

    common_groups = len(context.groups & author_groups)
    if common_groups:
        score += GROUP_BONUS * min(1.0, common_groups / GROUP_SATURATION)

    common_tags = len(post.hashtags & context.liked_hashtags)
    if common_tags:
        score += HASHTAG_BONUS * min(1.0, common_tags / HASHTAG_SATURATION)

    if context.viewed_authors.get(post.author_id, 0) > VIEWED_AUTHOR_MIN_VIEWS:
        score += VIEWED_AUTHOR_BONUS

    mutual_follows = len(context.friends & author_follows)
    if mutual_follows:
        score += min(MUTUAL_FOLLOW_CAP, mutual_follows * MUTUAL_FOLLOW_STEP)

    return min(1.0, score)


def engagement_score(post: Post) -> float:
    views = max(post.view_count, 1)
    like_rate = post.like_count / views
    comment_rate = post.comment_count / views

    # Watch-time is not in the post row; estimate completion from engagement.
    completion = NEUTRAL_COMPLETION
    if views > MIN_VIEWS_FOR_STATS:
        completion = min(0.9, 0.3 + 2 * like_rate + 3 * comment_rate)

    raw = 0.4 * like_rate + 0.3 * comment_rate + 0.3 * completion
    return sigmoid(raw)


def freshness_score(
    post: Post,
    now: datetime,
    viral_likes: int = 100,
    viral_hours: float = 24.0,
    viral_factor: float = 1.5,
) -> float:
    hours = max(0.0, (now - post.created_at).total_seconds() / 3600)
    score = max(0.0, 1.0 - hours / FRESHNESS_HORIZON_HOURS)
    if hours < viral_hours and post.like_count > viral_likes:
        score *= viral_factor
    return min(1.0, score)


def diversity_penalty(post: Post, recent_authors: Mapping[str, int]) -> float:
    return min(DIVERSITY_CAP, DIVERSITY_STEP * recent_authors.get(post.author_id, 0))


class Scorer:
    def __init__(self, repository: Repository, config: Settings = default_settings) -> None:
        self._repository = repository
        self._config = config

    def combine(
        self,
        relevance: float,
        engagement: float,
        freshness: float,
        penalty: float,
        noise: float,
    ) -> float:
        cfg = self._config
        return (
            cfg.weight_relevance * relevance
            + cfg.weight_engagement * engagement
            + cfg.weight_freshness * freshness
            - cfg.weight_diversity * penalty
            + noise
        )

    def score_post(
        self,
        post: Post,
        context: UserContext,
        now: datetime,
        session_id: str,
        refresh_nonce: int,
        author_groups: Optional[set[str]] = None,
        author_follows: Optional[set[str]] = None,
    ) -> Candidate:
        cfg = self._config
        relevance = relevance_score(
            post, context, author_groups or frozenset(), author_follows or frozenset()
        )
        engagement = engagement_score(post)
        freshness = freshness_score(
            post, now, cfg.viral_boost_likes, cfg.viral_boost_hours, cfg.viral_boost_factor
        )
        penalty = diversity_penalty(post, context.recent_authors)
        noise = jitter(session_id, refresh_nonce, post.id, cfg.jitter_max)
        return Candidate(
            post=post,
            scores=Scores(
                relevance=relevance,
                engagement=engagement,
                freshness=freshness,
                diversity_penalty=penalty,
                final=self.combine(relevance, engagement, freshness, penalty, noise),
            ),
        )

    async def score(
        self,
        pool: Sequence[Post],
        context: UserContext,
        now: datetime,
        session_id: str,
        refresh_nonce: int,
    ) -> list[Candidate]:
        """Score the pool; author lookups are batched and fetched concurrently."""
        if not pool:
            return []
        authors = {post.author_id for post in pool}
        author_groups, author_follows = await asyncio.gather(
            self._repository.groups_of_many(authors),
            self._repository.follows_of_many(authors),
        )
        # CPU-only from here on
        scored = [
            self.score_post(
                post,
                context,
                now,
                session_id,
                refresh_nonce,
                author_groups.get(post.author_id),
                author_follows.get(post.author_id),
            )
            for post in pool
        ]
        logger.debug("Scored %d candidates across %d authors", len(scored), len(authors))
        return scored
