"""
Feed ranker — the orchestrator behind POST /feed.

  1. Cache probe      fingerprint(viewer, page_size, session, nonce, exclusions)
  2. Exclusions       client list ∪ impression cooldown set
  3. Fan-out          user context ∥ candidate pool
  4. Cold start       thin context or thin pool → trending, then popularity
  5. Personalised     score → diversify
  6. Respond          cache the page, then queue impressions and analytics scores

Steps 1–5 run under the request deadline. Impressions are queued only once a
page is complete, so a cancelled or timed-out request never records any.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from opentelemetry import trace

from feed_ranker.clients.repository import (
    ReadFailures,
    Repository,
    popular_label,
    recent_label,
    viral_label,
)
from feed_ranker.config import Settings, settings as default_settings
from feed_ranker.errors import DeadlineExceeded, RepositoryUnavailable
from feed_ranker.ranking.cache import PageCache, SafePageCache, fingerprint
from feed_ranker.ranking.candidates import CandidateSource
from feed_ranker.ranking.cold_start import ColdStartSource
from feed_ranker.ranking.context import UserContextBuilder
from feed_ranker.ranking.diversifier import Diversifier
from feed_ranker.ranking.impressions import ImpressionStore
from feed_ranker.ranking.scorer import Scorer
from feed_ranker.ranking.types import (
    Candidate,
    FeedSource,
    Interaction,
    MediaKind,
    Post,
    ScoreUpdate,
)
from feed_ranker.ranking.writer import BackgroundWriter, Sink
from feed_ranker.schemas import (
    FeedItem,
    FeedRequest,
    FeedResponse,
    ImpressionRecord,
    InteractionRecord,
    PerformanceStats,
    VariationStats,
)
from feed_ranker.telemetry import (
    AUTHOR_CAP_RELAXED,
    FEED_LATENCY,
    FEED_PAGES_TOTAL,
    LOW_VARIATION_TOTAL,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Reads whose joint failure means no page can be produced at all
CORPUS_READS = (
    recent_label(MediaKind.VIDEO),
    recent_label(MediaKind.IMAGE),
    viral_label(MediaKind.VIDEO),
    popular_label(None),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Page:
    posts: list[Post]
    source: FeedSource
    candidates: list[Candidate] = field(default_factory=list)
    total_candidates: int = 0
    relaxed: bool = False
    previous_ids: list[str] = field(default_factory=list)
    db_ms: float = 0.0

    def items(self) -> list[FeedItem]:
        if self.candidates:
            return [FeedItem.from_candidate(c) for c in self.candidates]
        return [FeedItem.from_post(p) for p in self.posts]


class Ranker:
    def __init__(
        self,
        repository: Repository,
        cache: PageCache,
        writer: BackgroundWriter,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
        impression_sinks: Iterable[tuple[str, Sink]] = (),
    ) -> None:
        self.repository = repository
        self.cache = SafePageCache(cache)
        self.writer = writer
        self._config = config
        self._clock = clock

        self.impressions = ImpressionStore(
            repository, writer, config.cooldown_days, impression_sinks, clock
        )
        self.context_builder = UserContextBuilder(repository, config)
        self.candidate_source = CandidateSource(repository, config, clock)
        self.scorer = Scorer(repository, config)
        self.diversifier = Diversifier(config.max_per_author, config.author_cap_relaxation)
        self.cold_start = ColdStartSource(repository, config, clock)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def start(self) -> None:
        await self.repository.start()
        await self.writer.start()

    async def stop(self) -> None:
        await self.writer.stop()
        await self.cache.close()
        await self.repository.stop()

    # ── Request protocol ──────────────────────────────────────────────────

    async def rank(self, request: FeedRequest) -> FeedResponse:
        started = time.perf_counter()
        deadline = self._config.request_deadline_ms / 1000

        with tracer.start_as_current_span("rank_feed") as span:
            span.set_attribute("viewer.id", request.viewer)
            span.set_attribute("feed.page_size", request.page_size)
            span.set_attribute("feed.refresh_nonce", request.refresh_nonce)

            try:
                response, page = await asyncio.wait_for(
                    self._serve(request, started), timeout=deadline
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Feed for viewer=%s missed the %d ms deadline",
                    request.viewer,
                    self._config.request_deadline_ms,
                )
                raise DeadlineExceeded(
                    f"feed not ready within {self._config.request_deadline_ms} ms"
                )

            if page is not None:
                self._after_response(request, page)

            span.set_attribute("feed.source", response.source.value)
            span.set_attribute("feed.cache_hit", response.cache_hit)
            span.set_attribute("feed.items", len(response.items))

        latency = time.perf_counter() - started
        FEED_LATENCY.observe(latency)
        if latency * 1000 > self._config.latency_warn_ms:
            logger.warning(
                "Feed latency above threshold: viewer=%s %.1f ms (source=%s, items=%d)",
                request.viewer,
                latency * 1000,
                response.source.value,
                len(response.items),
            )
        return response

    async def _serve(
        self, request: FeedRequest, started: float
    ) -> tuple[FeedResponse, Optional[Page]]:
        key = fingerprint(
            request.viewer,
            request.page_size,
            request.session_id,
            request.refresh_nonce,
            request.excluded,
        )

        cache_ms = 0.0
        if not request.force_refresh:
            t0 = time.perf_counter()
            cached = await self.cache.get(key, FeedResponse.model_validate_json)
            cache_ms = (time.perf_counter() - t0) * 1000
            if cached is not None:
                logger.info("Cache hit for viewer=%s in %.1f ms", request.viewer, cache_ms)
                return (
                    cached.model_copy(
                        update={
                            "cache_hit": True,
                            "performance_stats": PerformanceStats(
                                execution_time_ms=round((time.perf_counter() - started) * 1000, 2),
                                cache_lookup_ms=round(cache_ms, 2),
                                db_query_ms=0.0,
                            ),
                        }
                    ),
                    None,
                )

        page = await self._build_page(request)
        items = page.items()
        response = FeedResponse(
            items=items,
            source=page.source,
            cache_hit=False,
            next_refresh_nonce=request.refresh_nonce + 1,
            total_candidates=page.total_candidates,
            performance_stats=PerformanceStats(
                execution_time_ms=round((time.perf_counter() - started) * 1000, 2),
                cache_lookup_ms=round(cache_ms, 2),
                db_query_ms=round(page.db_ms, 2),
            ),
            variation_stats=self._variation(request, page),
        )
        await self.cache.set(key, response.model_dump_json())
        return response, page

    async def _build_page(self, request: FeedRequest) -> Page:
        viewer = request.viewer
        page_size = request.page_size

        with ReadFailures() as failures:
            t0 = time.perf_counter()
            with tracer.start_as_current_span("stage_exclusions"):
                cooldown_ids, previous_ids = await asyncio.gather(
                    self.impressions.excluded_for(viewer),
                    self._previous_page_ids(request),
                )
            excluded = set(request.excluded) | cooldown_ids

            with tracer.start_as_current_span("stage_retrieval"):
                context, pool = await asyncio.gather(
                    self.context_builder.build(viewer),
                    self.candidate_source.candidates(viewer, excluded, page_size),
                )

            if context.is_cold or len(pool) < page_size:
                logger.info(
                    "Cold start for viewer=%s (cold_context=%s, pool=%d, page_size=%d)",
                    viewer,
                    context.is_cold,
                    len(pool),
                    page_size,
                )
                with tracer.start_as_current_span("stage_cold_start"):
                    page = await self._cold_start_page(request, excluded, previous_ids)
            else:
                with tracer.start_as_current_span("stage_scoring"):
                    scored = await self.scorer.score(
                        pool,
                        context,
                        self._clock(),
                        request.session_id,
                        request.refresh_nonce,
                    )
                selection = self.diversifier.diversify(scored, page_size, demote=previous_ids)
                page = Page(
                    posts=[c.post for c in selection.items],
                    source=FeedSource.PERSONALIZED,
                    candidates=selection.items,
                    total_candidates=len(pool),
                    relaxed=selection.relaxed,
                )

            page.db_ms = (time.perf_counter() - t0) * 1000
            page.previous_ids = previous_ids

            if not page.posts and failures.covers(CORPUS_READS):
                logger.error(
                    "Every candidate query failed for viewer=%s: %s",
                    viewer,
                    sorted(failures.ops),
                )
                raise RepositoryUnavailable("post store unavailable")

        return page

    async def _cold_start_page(
        self, request: FeedRequest, excluded: set[str], previous_ids: list[str]
    ) -> Page:
        viewer, page_size = request.viewer, request.page_size
        trending = await self.cold_start.trending(
            viewer, excluded, page_size, request.session_id, request.refresh_nonce
        )
        source = FeedSource.COLD_START
        ordered = trending
        if len(trending) < page_size:
            # Top up rather than return a short page
            popular = await self.cold_start.popular(
                viewer, excluded | {p.id for p in trending}, page_size
            )
            ordered = trending + popular
            if not trending:
                source = FeedSource.FALLBACK

        selection = self.diversifier.select(
            ordered, page_size, post_of=lambda p: p, demote=previous_ids
        )
        return Page(
            posts=selection.items,
            source=source,
            total_candidates=len(ordered),
            relaxed=selection.relaxed,
        )

    async def _previous_page_ids(self, request: FeedRequest) -> list[str]:
        """Ids served under the previous refresh nonce, if still cached."""
        if request.refresh_nonce == 0:
            return []
        key = fingerprint(
            request.viewer,
            request.page_size,
            request.session_id,
            request.refresh_nonce - 1,
            request.excluded,
        )
        previous = await self.cache.peek(key, FeedResponse.model_validate_json)
        if previous is None:
            return []
        return [item.id for item in previous.items]

    def _variation(self, request: FeedRequest, page: Page) -> Optional[VariationStats]:
        if not page.previous_ids:
            return None
        window = min(request.page_size, self._config.default_page_size)
        previous = page.previous_ids[:window]
        current = [p.id for p in page.posts[:window]]
        seen = set(previous)
        different = sum(1 for pid in current if pid not in seen)
        stats = VariationStats(
            previous_count=len(previous),
            current_count=len(current),
            different_count=different,
            variation=round(different / len(current), 4) if current else 0.0,
            low_variation=different < min(self._config.min_refresh_delta, len(current)),
        )
        if stats.low_variation:
            LOW_VARIATION_TOTAL.inc()
            logger.warning(
                "low_variation: viewer=%s refresh_nonce=%d different=%d/%d candidates=%d",
                request.viewer,
                request.refresh_nonce,
                different,
                len(current),
                page.total_candidates,
            )
        return stats

    def _after_response(self, request: FeedRequest, page: Page) -> None:
        FEED_PAGES_TOTAL.labels(source=page.source.value).inc()
        if page.relaxed:
            AUTHOR_CAP_RELAXED.inc()

        self.impressions.record(request.viewer, page.posts, page.source, request.session_id)
        if page.candidates:
            self.writer.submit(
                "scores",
                self.repository.write_scores,
                [ScoreUpdate(post_id=c.post.id, final=c.scores.final) for c in page.candidates],
            )
        logger.info(
            "Served %d posts to viewer=%s (source=%s, nonce=%d)",
            len(page.posts),
            request.viewer,
            page.source.value,
            request.refresh_nonce,
        )

    # ── Client-reported events ────────────────────────────────────────────

    def record_impressions(self, record: ImpressionRecord) -> int:
        rows = self.impressions.record_ids(
            str(record.viewer_id),
            [str(pid) for pid in record.post_ids],
            record.source,
            record.session_id,
        )
        return len(rows)

    def record_interaction(self, record: InteractionRecord) -> None:
        self.writer.submit(
            "interactions",
            self.repository.write_interaction,
            Interaction(
                viewer_id=str(record.viewer_id),
                post_id=str(record.post_id),
                interaction_type=record.interaction_type,
                watch_seconds=record.watch_seconds,
                completion=record.completion,
                session_id=record.session_id,
                created_at=self._clock(),
            ),
        )
