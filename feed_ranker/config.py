"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB / MySQL (post store, social graph, interaction log) ───────────
    db_host: str = "tidb"
    db_port: int = 4000
    db_user: str = "root"
    db_password: str = ""
    db_database: str = "feed"
    repository_backend: Literal["sql", "memory"] = "sql"

    @property
    def database_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_database}"
        )

    # ── Page cache ─────────────────────────────────────────────────────────
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_host: str = "redis"
    redis_port: int = 6379
    cache_ttl_seconds: float = 30.0
    cache_max_entries: int = 10_000

    # ── Impression sinks ───────────────────────────────────────────────────
    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_impressions: str = "impressions"
    impression_queue_size: int = 1000
    impression_workers: int = 4

    # ── Request shape ──────────────────────────────────────────────────────
    default_page_size: int = 12
    max_page_size: int = 50
    max_exclude_ids: int = 500
    request_deadline_ms: int = 500
    latency_warn_ms: int = 200

    # ── Candidate pool ─────────────────────────────────────────────────────
    pool_multiplier: int = 10            # pool ≈ page_size × multiplier
    video_share: float = 0.8             # remainder goes to images
    recent_window_days: int = 30
    viral_limit: int = 15
    viral_min_likes: int = 10

    # ── User context ───────────────────────────────────────────────────────
    recent_likes_limit: int = 100
    recent_views_limit: int = 200
    diversity_views_window: int = 20     # views counted by the diversity penalty

    # ── Scoring ────────────────────────────────────────────────────────────
    weight_relevance: float = 0.4
    weight_engagement: float = 0.3
    weight_freshness: float = 0.2
    weight_diversity: float = 0.1
    jitter_max: float = 0.05
    viral_boost_likes: int = 100
    viral_boost_hours: float = 24.0
    viral_boost_factor: float = 1.5

    # ── Diversification / refresh ──────────────────────────────────────────
    max_per_author: int = 2
    author_cap_relaxation: int = 1
    min_refresh_delta: int = 5

    # ── Impressions / cold start ───────────────────────────────────────────
    cooldown_days: int = 7               # 0 disables the cooldown filter
    cold_start_window_days: int = 7
    cold_start_overfetch: int = 4
    cold_start_video_bonus: float = 0.1

    # ── Observability ──────────────────────────────────────────────────────
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "feed-ranker"
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
