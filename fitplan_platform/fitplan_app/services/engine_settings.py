"""Immutable settings passed into the orchestrator and generation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from flask import current_app


@dataclass(frozen=True)
class SimilarityPolicy:
    objective_weight: float = 2.0
    training_weight: float = 1.5
    biometrics_weight: float = 1.0
    nutrition_weight: float = 0.8
    diet_penalty: float = 0.15
    days_penalty: float = 0.10
    competition_penalty: float = 0.20
    intolerance_penalty: float = 0.30
    goal_penalty: float = 0.25
    experience_penalty: float = 0.20


@dataclass(frozen=True)
class EngineSettings:
    api_key: str = ""
    api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    week_models: tuple[str, ...] = ("gemini-2.0-flash-exp", "gemini-flash-latest", "gemini-2.5-flash")
    chunk_models: tuple[str, ...] = ("gemini-flash-latest", "gemini-2.5-flash")
    temperature: float = 0.7
    connect_timeout_sec: int = 15
    read_timeout_sec: int = 90
    max_retries: int = 3
    retry_backoff_sec: float = 2.0
    chunk_delay_sec: float = 2.0
    chunk_max_tokens: int = 4000
    week_max_tokens: int = 8000
    max_concurrent_calls: int = 4

    exact_threshold: float = 0.90
    adapt_threshold: float = 0.80
    low_threshold: float = 0.75
    min_adapt_confidence: float = 0.70
    cache_ttl_days: int = 90
    candidate_limit: int = 20
    similarity: SimilarityPolicy = field(default_factory=SimilarityPolicy)

    daily_ai_limit: int = 50
    monthly_budget_usd: float = 500.0
    cost_per_generation_usd: float = 0.08
    cost_per_1k_tokens: float = 0.0001

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "EngineSettings":
        primary = config.get("AI_PRIMARY_MODEL", "gemini-2.0-flash-exp")
        fallbacks = [m for m in config.get("AI_FALLBACK_MODELS", []) if m != primary]
        return cls(
            api_key=config.get("AI_API_KEY", ""),
            api_base=config.get("AI_API_BASE", cls.api_base),
            week_models=tuple([primary, *fallbacks]),
            chunk_models=tuple(config.get("AI_CHUNK_MODELS") or cls.chunk_models),
            temperature=float(config.get("AI_TEMPERATURE", 0.7)),
            connect_timeout_sec=int(config.get("AI_CONNECT_TIMEOUT_SEC", 15)),
            read_timeout_sec=int(config.get("AI_READ_TIMEOUT_SEC", 90)),
            max_retries=max(0, int(config.get("AI_MAX_RETRIES", 3))),
            retry_backoff_sec=float(config.get("AI_RETRY_BACKOFF_SEC", 2.0)),
            chunk_delay_sec=float(config.get("AI_CHUNK_DELAY_SEC", 2.0)),
            chunk_max_tokens=int(config.get("AI_CHUNK_MAX_TOKENS", 4000)),
            week_max_tokens=int(config.get("AI_WEEK_MAX_TOKENS", 8000)),
            max_concurrent_calls=max(1, int(config.get("MAX_CONCURRENT_AI_CALLS", 4))),
            exact_threshold=float(config.get("CACHE_EXACT_THRESHOLD", 0.90)),
            adapt_threshold=float(config.get("CACHE_ADAPT_THRESHOLD", 0.80)),
            low_threshold=float(config.get("CACHE_LOW_THRESHOLD", 0.75)),
            min_adapt_confidence=float(config.get("ADAPT_MIN_CONFIDENCE", 0.70)),
            cache_ttl_days=int(config.get("CACHE_TTL_DAYS", 90)),
            candidate_limit=int(config.get("CACHE_CANDIDATE_LIMIT", 20)),
            daily_ai_limit=int(config.get("DAILY_AI_LIMIT", 50)),
            monthly_budget_usd=float(config.get("MONTHLY_BUDGET_USD", 500)),
            cost_per_generation_usd=float(config.get("COST_PER_GENERATION_USD", 0.08)),
            cost_per_1k_tokens=float(config.get("COST_PER_1K_TOKENS", 0.0001)),
        )


def get_engine_settings() -> EngineSettings:
    app = current_app
    settings = app.extensions.get("engine_settings")
    if settings is None:
        settings = EngineSettings.from_config(app.config)
        app.extensions["engine_settings"] = settings
    return settings
