"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for the ranking pipeline, the page cache and the
    best-effort write path

Both are initialised once at startup and injected into FastAPI via middleware.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Histogram

from feed_ranker.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
FEED_LATENCY = Histogram(
    "feed_latency_seconds",
    "End-to-end latency of POST /feed",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0],
)

FEED_PAGES_TOTAL = Counter(
    "feed_pages_total",
    "Pages served, by the path that produced them",
    ["source"],  # 'personalized' | 'cold_start' | 'fallback'
)

FEED_CACHE_REQUESTS = Counter(
    "feed_cache_requests_total",
    "Page cache lookups",
    ["result"],  # 'hit' | 'miss' | 'error'
)

FEED_CANDIDATES_TOTAL = Counter(
    "feed_candidates_total",
    "Candidate posts returned per bucket query",
    ["bucket"],  # 'recent_video' | 'recent_image' | 'viral'
)

AUTHOR_CAP_RELAXED = Counter(
    "feed_author_cap_relaxed_total",
    "Pages that needed the per-author cap relaxed to avoid a short page",
)

LOW_VARIATION_TOTAL = Counter(
    "feed_low_variation_total",
    "Refreshes that differed from the previous page in too few positions",
)

REPOSITORY_READ_ERRORS = Counter(
    "repository_read_errors_total",
    "Repository reads that failed and were absorbed as empty results",
    ["op"],
)

WRITE_FAILURES = Counter(
    "feed_write_failures_total",
    "Best-effort writes (impressions, scores, interactions) that failed",
    ["sink"],
)

IMPRESSION_QUEUE_DROPPED = Counter(
    "impression_queue_dropped_total",
    "Queued write batches dropped because the background queue was full",
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing() -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.tracing_enabled:
        logger.info("OTel tracing disabled by configuration")
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    # Auto-instrument the storage libraries so their spans appear in traces
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)
