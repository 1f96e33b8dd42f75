# astro_ai/routers/search.py
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic import BaseModel

from astro_ai.deps import Services, envelope_response, get_services
from astro_ai.models import Envelope, ErrorInfo, ResponseMetadata, SearchOptions, SearchResponse
from astro_ai.services.vector_store import UNAVAILABLE
from astro_ai.utils.errors import ErrorCode, ServiceError

router = APIRouter(prefix="/search", tags=["search"])


# --------- Schemas ---------

class SearchRequest(BaseModel):
    query: Optional[str] = None
    options: Optional[Dict[str, Any]] = None


def _wrap(started: float, resp: SearchResponse) -> Envelope:
    """Search rejections keep the SearchResponse as data and add an error."""
    meta = ResponseMetadata(
        processing_time_ms=round((time.perf_counter() - started) * 1000, 3),
        content_filtered=resp.query_filtered,
    )
    if resp.error is None:
        return Envelope(success=True, data=resp, metadata=meta)
    code = ErrorCode.SERVICE_UNAVAILABLE if resp.error == UNAVAILABLE else ErrorCode.VALIDATION
    return Envelope(success=False, data=resp, error=ErrorInfo(code=code, message=resp.error), metadata=meta)


# --------- Endpoints ---------

@router.get("")
def search_get(
    request: Request,
    q: str = Query(default=""),
    max_results: Optional[int] = Query(default=None, ge=1, le=100),
    similarity: Optional[float] = Query(default=None, ge=0.0, le=1.0),
    category: Optional[str] = Query(default=None, max_length=64),
    services: Services = Depends(get_services),
):
    started = time.perf_counter()
    opts = SearchOptions(max_results=max_results, similarity=similarity, category=category)
    return envelope_response(request, _wrap(started, services.vectors.search(q, opts)))


@router.post("")
def search_post(request: Request, payload: SearchRequest, services: Services = Depends(get_services)):
    started = time.perf_counter()
    return envelope_response(request, _wrap(started, services.vectors.search(payload.query, payload.options)))


@router.post("/documents")
def add_documents(
    request: Request,
    payload: Dict[str, Any] | List[Dict[str, Any]] = Body(...),
    services: Services = Depends(get_services),
):
    """Index one document or a list of documents ({id, text, embedding?, metadata?}); a list is all or nothing."""
    started = time.perf_counter()
    docs = payload if isinstance(payload, list) else [payload]
    try:
        stored = services.vectors.add_documents(docs)
    except ServiceError as e:
        return envelope_response(request, Envelope.fail(e, started))
    data = {"indexed": [{"id": d.id, "dimension": len(d.embedding or [])} for d in stored]}
    return envelope_response(request, Envelope.ok(data, started), status_code=201)


@router.delete("/documents/{doc_id}")
def remove_document(doc_id: str, request: Request, services: Services = Depends(get_services)):
    started = time.perf_counter()
    removed = services.vectors.remove_document(doc_id)
    return envelope_response(request, Envelope.ok({"removed": removed}, started))


@router.get("/stats")
def stats(request: Request, services: Services = Depends(get_services)):
    started = time.perf_counter()
    return envelope_response(request, Envelope.ok(services.vectors.get_stats(), started))
