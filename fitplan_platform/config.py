"""Application configuration objects."""

from __future__ import annotations

import os
from datetime import timedelta
from functools import lru_cache
from typing import Any, Type

from sqlalchemy.pool import NullPool


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class BaseConfig:
    """Shared defaults across all environments."""

    APP_NAME = "FitPlan Platform"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite+pysqlite:///fitplan_dev.db",
    )
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change_me")
    JWT_TOKEN_LOCATION = ("headers", "query_string")
    JWT_QUERY_STRING_NAME = "token"
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(
        seconds=int(os.getenv("JWT_ACCESS_TOKEN_EXPIRES_SEC", "43200"))
    )

    AI_API_KEY = os.getenv("AI_API_KEY") or os.getenv("GEMINI_API_KEY", "")
    AI_API_BASE = os.getenv(
        "AI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
    )
    AI_PRIMARY_MODEL = os.getenv("AI_PRIMARY_MODEL", "gemini-2.0-flash-exp")
    AI_FALLBACK_MODELS = _env_list("AI_FALLBACK_MODELS", "gemini-flash-latest,gemini-2.5-flash")
    AI_CHUNK_MODELS = _env_list("AI_CHUNK_MODELS", "gemini-flash-latest,gemini-2.5-flash")
    AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.7"))
    AI_CONNECT_TIMEOUT_SEC = int(os.getenv("AI_CONNECT_TIMEOUT_SEC", "15"))
    AI_READ_TIMEOUT_SEC = int(os.getenv("AI_READ_TIMEOUT_SEC", "90"))
    AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", "3"))
    AI_RETRY_BACKOFF_SEC = float(os.getenv("AI_RETRY_BACKOFF_SEC", "2.0"))
    AI_CHUNK_DELAY_SEC = float(os.getenv("AI_CHUNK_DELAY_SEC", "2.0"))
    AI_CHUNK_MAX_TOKENS = int(os.getenv("AI_CHUNK_MAX_TOKENS", "4000"))
    AI_WEEK_MAX_TOKENS = int(os.getenv("AI_WEEK_MAX_TOKENS", "8000"))
    MAX_CONCURRENT_AI_CALLS = int(os.getenv("MAX_CONCURRENT_AI_CALLS", "4"))

    CACHE_EXACT_THRESHOLD = float(os.getenv("CACHE_EXACT_THRESHOLD", "0.90"))
    CACHE_ADAPT_THRESHOLD = float(os.getenv("CACHE_ADAPT_THRESHOLD", "0.80"))
    CACHE_LOW_THRESHOLD = float(os.getenv("CACHE_LOW_THRESHOLD", "0.75"))
    CACHE_TTL_DAYS = int(os.getenv("CACHE_TTL_DAYS", "90"))
    CACHE_CANDIDATE_LIMIT = int(os.getenv("CACHE_CANDIDATE_LIMIT", "20"))
    ADAPT_MIN_CONFIDENCE = float(os.getenv("ADAPT_MIN_CONFIDENCE", "0.70"))

    DAILY_AI_LIMIT = int(os.getenv("DAILY_AI_LIMIT", "50"))
    MONTHLY_BUDGET_USD = float(os.getenv("MONTHLY_BUDGET_USD", "500"))
    COST_PER_GENERATION_USD = float(os.getenv("COST_PER_GENERATION_USD", "0.08"))
    COST_PER_1K_TOKENS = float(os.getenv("COST_PER_1K_TOKENS", "0.0001"))

    PLAN_INTER_WEEK_DELAY_SEC = float(os.getenv("PLAN_INTER_WEEK_DELAY_SEC", "5"))
    PLAN_QUOTA_BACKOFF_SEC = float(os.getenv("PLAN_QUOTA_BACKOFF_SEC", "30"))
    PLAN_STALE_GENERATING_SECONDS = int(os.getenv("PLAN_STALE_GENERATING_SECONDS", "900"))
    PLAN_JOBS_SYNC = os.getenv("PLAN_JOBS_SYNC", "false").lower() in {"1", "true", "yes"}
    PLAN_INIT_RATE_LIMIT = os.getenv("PLAN_INIT_RATE_LIMIT", "10 per hour")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    RATE_LIMIT_DEFAULTS = [limit.strip() for limit in os.getenv("RATE_LIMIT_DEFAULTS", "200 per minute;1000 per day").split(";") if limit.strip()]
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    JSON_SORT_KEYS = False
    SQLITE_TIMEOUT_SEC = int(os.getenv("SQLITE_TIMEOUT_SEC", "15"))
    SQLITE_BUSY_TIMEOUT_MS = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "15000"))
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "poolclass": NullPool,
            "connect_args": {"timeout": SQLITE_TIMEOUT_SEC, "check_same_thread": False},
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_pre_ping": True,
            "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "10")),
            "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", "30")),
        }


class DevConfig(BaseConfig):
    DEBUG = True


class ProdConfig(BaseConfig):
    DEBUG = False


class TestConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite+pysqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"check_same_thread": False},
    }
    JWT_SECRET_KEY = "test-secret-key-with-enough-length"
    AI_API_KEY = "test-key"
    AI_RETRY_BACKOFF_SEC = 0.0
    AI_CHUNK_DELAY_SEC = 0.0
    PLAN_INTER_WEEK_DELAY_SEC = 0.0
    PLAN_QUOTA_BACKOFF_SEC = 0.0
    PLAN_JOBS_SYNC = True
    RATELIMIT_ENABLED = False


CONFIG_ALIASES: dict[str, Type[BaseConfig]] = {
    "dev": DevConfig,
    "development": DevConfig,
    "prod": ProdConfig,
    "production": ProdConfig,
    "test": TestConfig,
    "testing": TestConfig,
}


@lru_cache
def resolve_config(name_or_class: Any) -> Any:
    """Resolve config argument to the object expected by `app.config.from_object`."""

    if name_or_class is None:
        return DevConfig
    if isinstance(name_or_class, str):
        return CONFIG_ALIASES.get(name_or_class, name_or_class)
    return name_or_class
