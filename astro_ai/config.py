# =============================================
# File: astro_ai/config.py
# Purpose: Env-driven settings for the AI services (read at call time)
# =============================================
from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 20
    window_seconds: float = 3600.0

    @classmethod
    def from_env(cls, prefix: str = "RL", default_max: int = 20) -> "RateLimitConfig":
        return cls(
            max_requests=_env_int(f"{prefix}_MAX_REQS", default_max),
            window_seconds=_env_float(f"{prefix}_WINDOW_SECONDS", 3600.0),
        )


@dataclass(frozen=True)
class ChatConfig:
    provider_timeout_s: float = 2.0
    max_attempts: int = 3
    backoff_base_ms: float = 100.0
    allow_fallback: bool = False
    max_message_chars: int = 2000
    oversize_policy: str = "truncate"  # "truncate" | "reject"
    max_reply_chars: int = 4000
    history_turns: int = 10
    session_ttl_s: float = 1800.0
    provider_workers: int = 8  # per provider; timed-out calls hold a worker until they return

    @classmethod
    def from_env(cls) -> "ChatConfig":
        policy = os.getenv("CHAT_OVERSIZE_POLICY", "truncate").strip().lower()
        if policy not in ("truncate", "reject"):
            policy = "truncate"
        return cls(
            provider_timeout_s=_env_float("CHAT_PROVIDER_TIMEOUT_SECONDS", 2.0),
            max_attempts=max(1, _env_int("CHAT_MAX_ATTEMPTS", 3)),
            backoff_base_ms=_env_float("CHAT_BACKOFF_BASE_MS", 100.0),
            allow_fallback=_env_bool("CHAT_ALLOW_FALLBACK", False),
            max_message_chars=_env_int("CHAT_MAX_MESSAGE_CHARS", 2000),
            oversize_policy=policy,
            max_reply_chars=_env_int("CHAT_MAX_REPLY_CHARS", 4000),
            history_turns=_env_int("CHAT_HISTORY_TURNS", 10),
            session_ttl_s=_env_float("SESSION_TTL_SECONDS", 1800.0),
            provider_workers=max(1, _env_int("CHAT_PROVIDER_WORKERS", 8)),
        )


@dataclass(frozen=True)
class LLMConfig:
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 900
    api_key: str | None = None

    @classmethod
    def from_env(cls) -> "LLMConfig":
        return cls(
            model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
            temperature=_env_float("LLM_TEMPERATURE", 0.2),
            max_tokens=_env_int("LLM_MAX_TOKENS", 900),
            api_key=os.getenv("OPENAI_API_KEY") or None,
        )


@dataclass(frozen=True)
class SearchConfig:
    max_query_chars: int = 1000
    max_results: int = 10
    embed_timeout_s: float = 5.0
    embed_workers: int = 4
    backend: str = "memory"  # "memory" | "chroma"
    chroma_path: str = "store/chroma"
    chroma_collection: str = "astro_kb"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"

    @classmethod
    def from_env(cls) -> "SearchConfig":
        return cls(
            max_query_chars=_env_int("SEARCH_MAX_QUERY_CHARS", 1000),
            max_results=_env_int("SEARCH_MAX_RESULTS", 10),
            embed_timeout_s=_env_float("SEARCH_EMBED_TIMEOUT_SECONDS", 5.0),
            embed_workers=max(1, _env_int("SEARCH_EMBED_WORKERS", 4)),
            backend=os.getenv("VECTOR_BACKEND", "memory").strip().lower(),
            chroma_path=os.getenv("CHROMA_PATH", "store/chroma"),
            chroma_collection=os.getenv("CHROMA_COLLECTION", "astro_kb"),
            embedding_model=os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-MiniLM-L6-v2"),
        )


@dataclass(frozen=True)
class RecommendConfig:
    max_recommendations: int = 5
    history_days: float = 30.0
    half_life_days: float = 7.0
    max_delta: float = 0.3
    preference_boost: float = 0.1

    @classmethod
    def from_env(cls) -> "RecommendConfig":
        return cls(
            max_recommendations=_env_int("REC_MAX_RECOMMENDATIONS", 5),
            history_days=_env_float("REC_HISTORY_DAYS", 30.0),
            half_life_days=_env_float("REC_HALF_LIFE_DAYS", 7.0),
            max_delta=_env_float("REC_MAX_DELTA", 0.3),
            preference_boost=_env_float("REC_PREFERENCE_BOOST", 0.1),
        )
