"""
Domain records shared by the ranking components and the storage adapters.

The social graph is only ever carried as sets of ids; nothing here holds a
reference to another user or post object.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, Field


def _as_utc(value: datetime) -> datetime:
    # MySQL DATETIME columns come back naive; they are stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class MediaKind(str, Enum):
    VIDEO = "video"
    IMAGE = "image"


class FeedSource(str, Enum):
    PERSONALIZED = "personalized"
    COLD_START = "cold_start"
    FALLBACK = "fallback"


class Post(BaseModel):
    id: str
    author_id: str
    created_at: UtcDatetime
    media_kind: MediaKind
    like_count: int = Field(0, ge=0)
    comment_count: int = Field(0, ge=0)
    view_count: int = Field(0, ge=0)
    hashtags: frozenset[str] = frozenset()
    # Last computed final score, kept for analytics only.
    algorithm_score: Optional[float] = None

    class Config:
        frozen = True


class Scores(BaseModel):
    relevance: float
    engagement: float
    freshness: float
    diversity_penalty: float
    final: float


class Candidate(BaseModel):
    """A post with its component scores attached."""
    post: Post
    scores: Scores


class LikedPost(BaseModel):
    post_id: str
    author_id: str
    hashtags: frozenset[str] = frozenset()


class View(BaseModel):
    post_id: str
    author_id: str
    viewed_at: UtcDatetime


class UserContext(BaseModel):
    friends: frozenset[str] = frozenset()       # authors the viewer follows
    followers: frozenset[str] = frozenset()     # users following the viewer
    mutuals: frozenset[str] = frozenset()       # follow in both directions
    groups: frozenset[str] = frozenset()
    liked_hashtags: frozenset[str] = frozenset()
    viewed_authors: dict[str, int] = {}         # over the last N views
    recent_authors: dict[str, int] = {}         # over the last few views

    @property
    def is_cold(self) -> bool:
        return not (self.friends or self.groups or self.liked_hashtags)


class Impression(BaseModel):
    viewer_id: str
    post_id: str
    source: FeedSource
    session_id: str
    created_at: UtcDatetime


class Interaction(BaseModel):
    viewer_id: str
    post_id: str
    interaction_type: str
    watch_seconds: float = 0.0
    completion: float = 0.0
    session_id: Optional[str] = None
    created_at: UtcDatetime


class ScoreUpdate(BaseModel):
    post_id: str
    final: float
