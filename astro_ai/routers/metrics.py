# =============================================
# File: astro_ai/routers/metrics.py
# Purpose: /metrics: request counters + live service gauges (sessions, index)
# =============================================
from __future__ import annotations
from typing import Any, Dict

from fastapi import APIRouter, Depends

from astro_ai.deps import Services, get_services
from astro_ai.utils.metrics import snapshot

router = APIRouter(tags=["metrics"])


def _gauges(services: Services) -> Dict[str, Any]:
    sessions = services.chat.sessions
    stats = services.vectors.get_stats()
    return {
        # custom SessionStore implementations may not be sized
        "active_sessions": len(sessions) if hasattr(sessions, "__len__") else None,
        "indexed_documents": stats["document_count"],
        "vector_backend": stats["backend"],
    }


@router.get("/metrics")
def get_metrics(services: Services = Depends(get_services)):
    """In-process counters/histograms plus a few gauges read at request time."""
    data = snapshot()
    data["gauges"] = _gauges(services)
    return data
