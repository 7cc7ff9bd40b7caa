"""
Shared fixtures: an in-memory corpus, a fixed clock and a ranker wired to
both.
"""
import os

os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("REPOSITORY_BACKEND", "memory")

import pytest

from feed_ranker.config import Settings
from feed_ranker.ranking.cache import MemoryPageCache
from feed_ranker.ranking.ranker import Ranker
from feed_ranker.ranking.writer import BackgroundWriter
from tests.factories import NOW, FlakyRepository


@pytest.fixture
def config() -> Settings:
    # Generous deadline: the in-memory corpus is fast but CI machines are not.
    return Settings(request_deadline_ms=5000, tracing_enabled=False)


@pytest.fixture
def repo() -> FlakyRepository:
    return FlakyRepository()


@pytest.fixture
async def writer():
    writer = BackgroundWriter(queue_size=100, workers=2)
    await writer.start()
    yield writer
    await writer.stop(drain_timeout=1.0)


@pytest.fixture
def page_cache(config) -> MemoryPageCache:
    return MemoryPageCache(config.cache_ttl_seconds)


@pytest.fixture
def ranker(repo, page_cache, writer, config) -> Ranker:
    return Ranker(repo, page_cache, writer, config=config, clock=lambda: NOW)
