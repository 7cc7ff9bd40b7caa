"""
Tests for impression bookkeeping and the background write path.
"""
import asyncio

import pytest

from feed_ranker.ranking.impressions import ImpressionStore
from feed_ranker.ranking.types import FeedSource
from feed_ranker.ranking.writer import BackgroundWriter
from tests.factories import NOW, add_impression, make_post, uid


@pytest.fixture
def store(repo, writer) -> ImpressionStore:
    return ImpressionStore(repo, writer, cooldown_days=7, clock=lambda: NOW)


class TestCooldown:
    async def test_only_recent_impressions_are_excluded(self, repo, store):
        recent = repo.add_post(make_post("recent", "a"))
        stale = repo.add_post(make_post("stale", "a"))
        add_impression(repo, "viewer", recent, days_ago=3)
        add_impression(repo, "viewer", stale, days_ago=9)
        add_impression(repo, "someone-else", stale, days_ago=1)

        assert await store.excluded_for(uid("viewer")) == {recent.id}

    async def test_zero_days_disables_cooldown(self, repo, writer):
        post = repo.add_post(make_post("p", "a"))
        add_impression(repo, "viewer", post, days_ago=0)
        store = ImpressionStore(repo, writer, cooldown_days=0, clock=lambda: NOW)

        assert await store.excluded_for(uid("viewer")) == set()


class TestRecord:
    async def test_impressions_land_after_drain(self, repo, writer, store):
        posts = [make_post("p1", "a"), make_post("p2", "b")]

        rows = store.record(uid("viewer"), posts, FeedSource.COLD_START, "s-1")
        await writer.drain()

        assert len(rows) == 2
        stored = repo.impressions[(uid("viewer"), uid("p1"))]
        assert stored.source == FeedSource.COLD_START
        assert stored.session_id == "s-1"
        assert stored.created_at == NOW

    async def test_duplicate_ids_recorded_once(self, writer, store):
        rows = store.record_ids(uid("viewer"), [uid("p"), uid("p")], FeedSource.PERSONALIZED, "s")
        assert len(rows) == 1

    async def test_extra_sinks_receive_the_same_rows(self, repo, writer):
        seen = []

        async def sink(rows):
            seen.extend(rows)
            return True

        store = ImpressionStore(repo, writer, extra_sinks=[("kafka", sink)], clock=lambda: NOW)
        store.record_ids(uid("viewer"), [uid("p")], FeedSource.PERSONALIZED, "s")
        await writer.drain()

        assert [row.post_id for row in seen] == [uid("p")]

    async def test_write_failure_is_absorbed(self, repo, writer, store):
        repo.failing.add("write_impressions")

        store.record(uid("viewer"), [make_post("p", "a")], FeedSource.PERSONALIZED, "s")
        await writer.drain()

        assert repo.impressions == {}


class TestWriter:
    async def test_full_queue_drops_oldest_batch(self):
        received = []

        async def sink(batch):
            received.append(batch)
            return True

        writer = BackgroundWriter(queue_size=2, workers=1)
        writer.submit("test", sink, ["first"])
        writer.submit("test", sink, ["second"])
        writer.submit("test", sink, ["third"])
        assert writer.pending == 2

        await writer.start()
        await writer.drain()
        await writer.stop()

        assert received == [["second"], ["third"]]

    async def test_failing_sink_does_not_stop_workers(self):
        received = []

        async def broken(batch):
            raise RuntimeError("boom")

        async def sink(batch):
            received.append(batch)
            return True

        writer = BackgroundWriter(queue_size=10, workers=1)
        await writer.start()
        writer.submit("broken", broken, [1])
        writer.submit("ok", sink, [2])
        await asyncio.wait_for(writer.drain(), timeout=1.0)
        await writer.stop()

        assert received == [[2]]

    async def test_empty_batches_are_ignored(self):
        writer = BackgroundWriter(queue_size=1, workers=1)
        writer.submit("test", None, [])
        assert writer.pending == 0
