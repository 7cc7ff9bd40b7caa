"""
Pydantic request / response schemas for the HTTP layer.
Kept separate from the ranking records so the wire format can evolve
independently of the pipeline.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from feed_ranker.config import settings
from feed_ranker.ranking.types import Candidate, FeedSource, MediaKind, Post, Scores


# ──────────────────────────── Feed ────────────────────────────────────────

class FeedRequest(BaseModel):
    viewer_id: UUID
    page_size: int = Field(settings.default_page_size, ge=1, le=settings.max_page_size)
    session_id: str = Field(..., min_length=1, max_length=100)
    session_opened_at: datetime
    refresh_nonce: int = Field(0, ge=0)
    force_refresh: bool = False
    exclude_post_ids: list[UUID] = Field(default_factory=list, max_length=settings.max_exclude_ids)

    @property
    def viewer(self) -> str:
        return str(self.viewer_id)

    @property
    def excluded(self) -> list[str]:
        return sorted({str(pid) for pid in self.exclude_post_ids})


class FeedItem(BaseModel):
    """A ranked post as served to the client."""
    id: str
    author_id: str
    media_kind: MediaKind
    created_at: datetime
    like_count: int
    comment_count: int
    view_count: int
    hashtags: list[str]
    # None on cold_start / fallback pages, where nothing was scored
    scores: Optional[Scores] = None

    @classmethod
    def from_post(cls, post: Post, scores: Optional[Scores] = None) -> "FeedItem":
        return cls(
            id=post.id,
            author_id=post.author_id,
            media_kind=post.media_kind,
            created_at=post.created_at,
            like_count=post.like_count,
            comment_count=post.comment_count,
            view_count=post.view_count,
            hashtags=sorted(post.hashtags),
            scores=scores,
        )

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> "FeedItem":
        return cls.from_post(candidate.post, candidate.scores)


class PerformanceStats(BaseModel):
    execution_time_ms: float
    cache_lookup_ms: float
    db_query_ms: float


class VariationStats(BaseModel):
    previous_count: int
    current_count: int
    different_count: int
    variation: float
    low_variation: bool


class FeedResponse(BaseModel):
    items: list[FeedItem]
    source: FeedSource
    cache_hit: bool = False
    next_refresh_nonce: int
    total_candidates: int = 0
    performance_stats: Optional[PerformanceStats] = None
    variation_stats: Optional[VariationStats] = None


# ──────────────────────────── Impressions / interactions ──────────────────

class ImpressionRecord(BaseModel):
    viewer_id: UUID
    post_ids: list[UUID] = Field(..., min_length=1, max_length=settings.max_page_size)
    session_id: str = Field(..., min_length=1, max_length=100)
    source: FeedSource = FeedSource.PERSONALIZED


class InteractionRecord(BaseModel):
    viewer_id: UUID
    post_id: UUID
    interaction_type: str = Field(..., pattern="^(view|like|comment|share|skip)$")
    watch_seconds: float = Field(0.0, ge=0)
    completion: float = Field(0.0, ge=0, le=1)
    session_id: Optional[str] = Field(None, max_length=100)


class ErrorBody(BaseModel):
    error: str
    message: str
