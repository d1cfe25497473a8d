"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFLICT_POLICIES = ("auto-merge", "flag-for-review")
# Connections reserved for request threads on top of the queue workers.
REQUEST_CONNECTIONS = 10


class ConfigError(RuntimeError):
    """Raised when configuration values make the worker unusable."""


@dataclass(frozen=True)
class Settings:
    database_url: str
    openai_api_key: str
    embedding_api_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-ada-002"
    embedding_timeout: float = 30.0
    default_phone_region: str = "IN"
    conflict_policy: str = "auto-merge"
    worker_port: int = 9000
    queue_max_concurrent: int = 3
    queue_retry_delay_ms: int = 5000
    queue_max_retries: int = 3
    queue_batch_size: int = 5
    queue_poll_interval_ms: int = 1000
    queue_task_timeout: float = 120.0
    queue_durable: bool = False
    db_pool_max_conn: int = 13


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    openai_api_key = os.getenv("OPENAI_API_KEY", "")
    embedding_api_url = os.getenv("EMBEDDING_API_URL", "https://api.openai.com/v1").rstrip("/")
    embedding_model = os.getenv("EMBEDDING_MODEL", "text-embedding-ada-002")
    embedding_timeout = float(os.getenv("EMBEDDING_TIMEOUT", "30"))
    default_phone_region_raw = os.getenv("DEFAULT_PHONE_REGION")
    default_phone_region = default_phone_region_raw.strip().upper() if default_phone_region_raw else "IN"
    conflict_policy = os.getenv("SERVICE_CONFLICT_POLICY", "auto-merge").strip().lower()
    worker_port = int(os.getenv("WORKER_PORT") or os.getenv("PORT") or "9000")

    if conflict_policy not in CONFLICT_POLICIES:
        raise ConfigError(
            f"SERVICE_CONFLICT_POLICY must be one of {', '.join(CONFLICT_POLICIES)}; got {conflict_policy!r}"
        )

    queue_max_concurrent = int(os.getenv("EMBED_QUEUE_MAX_CONCURRENT", "3"))
    db_pool_max_conn = int(os.getenv("DB_POOL_MAX_CONN") or queue_max_concurrent + REQUEST_CONNECTIONS)
    if db_pool_max_conn <= queue_max_concurrent:
        raise ConfigError(
            f"DB_POOL_MAX_CONN ({db_pool_max_conn}) must exceed EMBED_QUEUE_MAX_CONCURRENT ({queue_max_concurrent})"
        )

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not openai_api_key:
        logger.warning("OPENAI_API_KEY is not configured; embedding requests will fail.")

    return Settings(
        database_url=database_url,
        openai_api_key=openai_api_key,
        embedding_api_url=embedding_api_url,
        embedding_model=embedding_model,
        embedding_timeout=embedding_timeout,
        default_phone_region=default_phone_region,
        conflict_policy=conflict_policy,
        worker_port=worker_port,
        queue_max_concurrent=queue_max_concurrent,
        queue_retry_delay_ms=int(os.getenv("EMBED_QUEUE_RETRY_DELAY_MS", "5000")),
        queue_max_retries=int(os.getenv("EMBED_QUEUE_MAX_RETRIES", "3")),
        queue_batch_size=int(os.getenv("EMBED_QUEUE_BATCH_SIZE", "5")),
        queue_poll_interval_ms=int(os.getenv("EMBED_QUEUE_POLL_INTERVAL_MS", "1000")),
        queue_task_timeout=float(os.getenv("EMBED_QUEUE_TASK_TIMEOUT_S", "120")),
        queue_durable=_env_flag("EMBED_QUEUE_DURABLE"),
        db_pool_max_conn=db_pool_max_conn,
    )
