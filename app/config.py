"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the recipe pipeline service and its workers."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  redis_url: str
  scrape_queue: str
  ai_queue: str
  invent_queue: str
  progress_channel: str
  visibility_timeout_seconds: int
  claim_ttl_seconds: int
  max_deliveries: int
  poll_timeout_seconds: int
  reaper_interval_seconds: int
  worker_error_backoff_seconds: float
  scrape_concurrency: int
  ai_concurrency: int
  invent_concurrency: int
  scrape_workers: int
  ai_workers: int
  invent_workers: int
  ai_api_key: str | None
  ai_base_url: str | None
  ai_model: str
  ai_token_budget: int
  ai_retry_delays: tuple[float, ...]
  scrape_output_dir: str
  scrape_timeout_seconds: float
  browser_timeout_seconds: float
  browser_fallback_enabled: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  auth_required: bool
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  gateway_client_queue_size: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  """Split a comma-separated CORS origin list."""
  if not raw:
    return ("http://localhost:5173",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("RECIPES_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("RECIPES_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  """Read an integer setting and reject zero or negative values."""
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_delays(raw: str | None) -> tuple[float, ...]:
  """Parse comma-separated retry delays in seconds."""
  if raw is None or raw.strip() == "":
    return (2.0, 5.0, 10.0)

  delays = tuple(float(part) for part in raw.split(",") if part.strip())
  if any(delay < 0 for delay in delays):
    raise ValueError("RECIPES_AI_RETRY_DELAYS must contain non-negative seconds.")
  return delays


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("RECIPES_ENV", "development").lower()
  debug = _parse_bool(os.getenv("RECIPES_DEBUG"))

  visibility_timeout_seconds = _positive_int("RECIPES_VISIBILITY_TIMEOUT_SECONDS", "300")
  claim_ttl_seconds = _positive_int("RECIPES_CLAIM_TTL_SECONDS", "240")
  # A redelivered task must be able to claim its key once the dead owner's claim lapses.
  if claim_ttl_seconds >= visibility_timeout_seconds:
    raise ValueError("RECIPES_CLAIM_TTL_SECONDS must be lower than RECIPES_VISIBILITY_TIMEOUT_SECONDS.")

  max_deliveries = _positive_int("RECIPES_MAX_DELIVERIES", "5")
  poll_timeout_seconds = _positive_int("RECIPES_POLL_TIMEOUT_SECONDS", "5")
  reaper_interval_seconds = _positive_int("RECIPES_REAPER_INTERVAL_SECONDS", "15")

  worker_error_backoff_seconds = float(os.getenv("RECIPES_WORKER_ERROR_BACKOFF_SECONDS", "0.5"))
  if worker_error_backoff_seconds < 0:
    raise ValueError("RECIPES_WORKER_ERROR_BACKOFF_SECONDS must not be negative.")

  # Unprefixed names are kept for deployments configured for the previous server.
  ai_token_budget = int(os.getenv("RECIPES_AI_TOKEN_BUDGET", "128000"))
  if ai_token_budget <= 0:
    raise ValueError("RECIPES_AI_TOKEN_BUDGET must be a positive integer.")

  log_max_bytes = _positive_int("RECIPES_LOG_MAX_BYTES", "5242880")
  log_backup_count = int(os.getenv("RECIPES_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("RECIPES_LOG_BACKUP_COUNT must be zero or a positive integer.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("RECIPES_ALLOWED_ORIGINS") or os.getenv("CORS_ORIGIN")),
    redis_url=os.getenv("RECIPES_REDIS_URL") or os.getenv("REDIS_URL") or "redis://localhost:6379/0",
    scrape_queue=os.getenv("RECIPES_SCRAPE_QUEUE", "scrape"),
    ai_queue=os.getenv("RECIPES_AI_QUEUE") or os.getenv("AI_QUEUE_NAME") or "ai",
    invent_queue=os.getenv("RECIPES_INVENT_QUEUE", "invent"),
    progress_channel=os.getenv("RECIPES_PROGRESS_CHANNEL", "progressChannel"),
    visibility_timeout_seconds=visibility_timeout_seconds,
    claim_ttl_seconds=claim_ttl_seconds,
    max_deliveries=max_deliveries,
    poll_timeout_seconds=poll_timeout_seconds,
    reaper_interval_seconds=reaper_interval_seconds,
    worker_error_backoff_seconds=worker_error_backoff_seconds,
    scrape_concurrency=_positive_int("RECIPES_SCRAPE_CONCURRENCY", os.getenv("SCRAPE_CONCURRENCY", "2")),
    ai_concurrency=_positive_int("RECIPES_AI_CONCURRENCY", os.getenv("AI_CONCURRENCY", "1")),
    invent_concurrency=_positive_int("RECIPES_INVENT_CONCURRENCY", "1"),
    scrape_workers=_positive_int("RECIPES_SCRAPE_WORKERS", os.getenv("WORKERS_SCRAPE_COUNT", "1")),
    ai_workers=_positive_int("RECIPES_AI_WORKERS", os.getenv("WORKERS_AI_COUNT", "1")),
    invent_workers=_positive_int("RECIPES_INVENT_WORKERS", "1"),
    ai_api_key=_optional_str(os.getenv("RECIPES_AI_API_KEY") or os.getenv("AI_API_KEY") or os.getenv("OPENAI_API_KEY")),
    ai_base_url=_optional_str(os.getenv("RECIPES_AI_BASE_URL") or os.getenv("AI_API_ENDPOINT")),
    ai_model=os.getenv("RECIPES_AI_MODEL") or os.getenv("AI_MODEL") or "gpt-4o-mini",
    ai_token_budget=ai_token_budget,
    ai_retry_delays=_parse_delays(os.getenv("RECIPES_AI_RETRY_DELAYS")),
    scrape_output_dir=os.getenv("RECIPES_SCRAPE_OUTPUT_DIR", "./data/scrapes").strip(),
    scrape_timeout_seconds=float(os.getenv("RECIPES_SCRAPE_TIMEOUT_SECONDS", "30")),
    browser_timeout_seconds=float(os.getenv("RECIPES_BROWSER_TIMEOUT_SECONDS", "60")),
    browser_fallback_enabled=_parse_bool(os.getenv("RECIPES_BROWSER_FALLBACK_ENABLED"), default=True),
    pg_dsn=os.getenv("RECIPES_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("RECIPES_PG_CONNECT_TIMEOUT", "5"),
    auth_required=_parse_bool(os.getenv("RECIPES_AUTH_REQUIRED"), default=True),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("RECIPES_LOG_HTTP_4XX")),
    gateway_client_queue_size=_positive_int("RECIPES_GATEWAY_CLIENT_QUEUE_SIZE", "256"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring the queue or AI configuration."""
  debug = _parse_bool(os.getenv("RECIPES_DEBUG"))
  pg_connect_timeout = int(os.getenv("RECIPES_PG_CONNECT_TIMEOUT", "5"))
  if pg_connect_timeout <= 0:
    raise ValueError("RECIPES_PG_CONNECT_TIMEOUT must be a positive integer.")

  pg_dsn = os.getenv("RECIPES_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
