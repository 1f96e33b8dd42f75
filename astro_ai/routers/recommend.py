# astro_ai/routers/recommend.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request

from astro_ai.deps import Services, envelope_response, get_services
from astro_ai.models import RecommendationOptions

router = APIRouter(prefix="/recommendations", tags=["recommend"])


@router.get("")
def get_recommendations(
    request: Request,
    user_id: Optional[str] = Query(default=None, max_length=128),
    max_recommendations: Optional[int] = Query(default=None, ge=1, le=50),
    min_confidence: Optional[float] = Query(default=None, ge=0.0, le=1.0),
    category: Optional[str] = Query(default=None, max_length=64),
    services: Services = Depends(get_services),
):
    """
    Personalized recommendations: {scripts: [...], articles: [...]}, each list
    sorted by confidence (desc). Anonymous callers are rate limited by client IP.
    """
    opts = RecommendationOptions(
        max_recommendations=max_recommendations,
        min_confidence=min_confidence,
        category=category,
    )
    client_ip = request.client.host if request.client else None
    env = services.recommendations.get_recommendations(user_id, opts, rate_key=client_ip)
    return envelope_response(request, env)


@router.post("/interactions")
def track_interaction(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
):
    env = services.recommendations.track_interaction(payload)
    return envelope_response(request, env, status_code=201)


@router.put("/preferences")
def update_preferences(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    services: Services = Depends(get_services),
):
    return envelope_response(request, services.recommendations.update_user_preferences(payload))


@router.get("/preferences/{user_id}")
def get_preferences(user_id: str, request: Request, services: Services = Depends(get_services)):
    return envelope_response(request, services.recommendations.get_preferences(user_id))
