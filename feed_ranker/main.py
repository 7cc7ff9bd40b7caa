"""
Feed Ranker API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Build the repository (TiDB via SQLAlchemy, or in-memory)
  3. Connect the page cache (process-local, or Redis)
  4. Start the Kafka impression producer (when enabled)
  5. Start the background writer workers
  6. Expose Prometheus /metrics endpoint
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from feed_ranker.clients.repository import Repository
from feed_ranker.config import Settings, settings as default_settings
from feed_ranker.errors import FeedError, InvalidRequest
from feed_ranker.ranking.cache import MemoryPageCache, PageCache
from feed_ranker.ranking.ranker import Ranker
from feed_ranker.ranking.writer import BackgroundWriter
from feed_ranker.routers import feed
from feed_ranker.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=default_settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


def build_repository(config: Settings) -> Repository:
    if config.repository_backend == "memory":
        from feed_ranker.clients.memory_repository import MemoryRepository

        return MemoryRepository()
    from feed_ranker.clients.sql_repository import SqlRepository

    return SqlRepository()


async def build_cache(config: Settings) -> PageCache:
    if config.cache_backend == "redis":
        from feed_ranker.clients.redis_client import RedisPageCache, init_redis

        return RedisPageCache(await init_redis(), config.cache_ttl_seconds)
    return MemoryPageCache(config.cache_ttl_seconds, config.cache_max_entries)


def create_app(
    config: Settings = default_settings,
    repository: Optional[Repository] = None,
    cache: Optional[PageCache] = None,
) -> FastAPI:
    """Build the API; tests pass their own repository and cache."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup and shutdown of all external connections."""
        logger.info("Starting Feed Ranker API (env=%s)", config.environment)

        impression_sinks = []
        if config.kafka_enabled:
            from feed_ranker.clients.kafka_producer import (
                init_kafka,
                publish_impressions,
            )

            await init_kafka()
            impression_sinks.append(("impression_events", publish_impressions))

        ranker = Ranker(
            repository or build_repository(config),
            cache or await build_cache(config),
            BackgroundWriter(config.impression_queue_size, config.impression_workers),
            config=config,
            impression_sinks=impression_sinks,
        )
        await ranker.start()
        app.state.ranker = ranker

        logger.info("All services connected. API ready.")
        yield

        logger.info("Shutting down...")
        await ranker.stop()
        if config.kafka_enabled:
            from feed_ranker.clients.kafka_producer import stop_kafka

            await stop_kafka()

    setup_tracing()

    app = FastAPI(
        title="Feed Ranker API",
        description=(
            "Personalised short-video feed: candidate pool, hand-weighted "
            "scoring, author diversification and session-stable refreshes."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(FeedError)
    async def feed_error_handler(request: Request, exc: FeedError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        error = InvalidRequest(f"{where}: {first.get('msg', 'malformed request')}")
        return JSONResponse(status_code=error.status_code, content=error.to_body())

    # ── Routers ────────────────────────────────────────────────────────────
    app.include_router(feed.router, prefix="/feed", tags=["Feed"])

    # ── Prometheus metrics endpoint ────────────────────────────────────────
    app.mount("/metrics", make_asgi_app())

    # ── OTel FastAPI instrumentation ──────────────────────────────────────
    instrument_app(app)

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "service": config.service_name}

    return app


app = create_app()
