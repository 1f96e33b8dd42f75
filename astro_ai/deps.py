# =============================================
# File: astro_ai/deps.py
# Purpose: Service container + FastAPI dependency / envelope helpers
# =============================================
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from astro_ai.config import ChatConfig, LLMConfig, RecommendConfig, SearchConfig
from astro_ai.models import Envelope
from astro_ai.services.chat import ChatService
from astro_ai.services.providers import default_providers
from astro_ai.services.recommender import RecommendationEngine
from astro_ai.services.sessions import InMemorySessionStore
from astro_ai.services.vector_store import VectorStore
from astro_ai.utils.errors import HTTP_STATUS
from astro_ai.utils import slog
from astro_ai.utils.ratelimit import RateLimiter


@dataclass
class Services:
    chat: ChatService
    recommendations: RecommendationEngine
    vectors: VectorStore


def build_services(
    chat: Optional[ChatService] = None,
    recommendations: Optional[RecommendationEngine] = None,
    vectors: Optional[VectorStore] = None,
) -> Services:
    """Wire the default collaborators from env; any service can be passed in pre-built."""
    if chat is None:
        chat_cfg = ChatConfig.from_env()
        primary, fallback = default_providers(LLMConfig.from_env())
        chat = ChatService(
            sessions=InMemorySessionStore(ttl_seconds=chat_cfg.session_ttl_s),
            limiter=RateLimiter.from_env("RL", 20),
            provider=primary,
            fallback=fallback,
            config=chat_cfg,
        )
    if recommendations is None:
        recommendations = RecommendationEngine(
            config=RecommendConfig.from_env(),
            limiter=RateLimiter.from_env("REC_RL", 30),
        )
    if vectors is None:
        vectors = VectorStore(config=SearchConfig.from_env())
    return Services(chat=chat, recommendations=recommendations, vectors=vectors)


def get_services(request: Request) -> Services:
    return request.app.state.services


def envelope_response(request: Request, env: Envelope, status_code: int = 200) -> JSONResponse:
    """Map an envelope to a JSON response; error codes decide the status."""
    headers = {}
    if not env.success and env.error is not None:
        status_code = HTTP_STATUS.get(env.error.code, 500)
        if env.metadata.retry_after_s is not None:
            headers["Retry-After"] = str(max(1, int(round(env.metadata.retry_after_s))))

    slog.annotate(
        request.state,
        service_request_id=env.metadata.request_id,
        error_code=env.error.code.value if env.error is not None else None,
        content_filtered=env.metadata.content_filtered,
        fallback_used=env.metadata.fallback_used or None,
    )

    return JSONResponse(status_code=status_code, content=env.to_json(), headers=headers)
