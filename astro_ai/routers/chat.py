# astro_ai/routers/chat.py
from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterator, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from astro_ai.deps import Services, envelope_response, get_services
from astro_ai.utils import slog

router = APIRouter(prefix="/chat", tags=["chat"])


class CreateSessionRequest(BaseModel):
    context: Optional[Dict[str, Any]] = None


class SendMessageRequest(BaseModel):
    """
    - message: the visitor's text (emptiness is checked by the service, not here).
    - user_id: optional caller identity; rate limiting falls back to the session id.
    - allow_fallback: opt in to the secondary provider for this message.
    """
    message: Optional[str] = None
    user_id: Optional[str] = Field(default=None, max_length=128)
    allow_fallback: Optional[bool] = None


@router.post("/sessions")
def create_session(
    request: Request,
    payload: Optional[CreateSessionRequest] = Body(default=None),
    services: Services = Depends(get_services),
):
    env = services.chat.create_session(payload.context if payload else None)
    return envelope_response(request, env, status_code=201)


@router.get("/sessions/{session_id}")
def get_session(session_id: str, request: Request, services: Services = Depends(get_services)):
    return envelope_response(request, services.chat.get_session(session_id))


@router.post("/sessions/{session_id}/messages")
def send_message(
    session_id: str,
    payload: SendMessageRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    env = services.chat.send_message(
        session_id,
        payload.message or "",
        user_id=payload.user_id,
        allow_fallback=payload.allow_fallback,
    )
    if env.success:
        reply = env.data["response"]
        slog.annotate(request.state, provider=reply.metadata.get("provider"), model=reply.metadata.get("model"))
    return envelope_response(request, env)


@router.delete("/sessions/{session_id}")
def close_session(session_id: str, request: Request, services: Services = Depends(get_services)):
    return envelope_response(request, services.chat.close_session(session_id))


# --------- Streaming ---------

def _chunk_reply(text: str, max_chars: int = 80) -> Iterator[str]:
    """Word-bounded pieces of `text`; joined back together they give `text` unchanged."""
    buf = ""
    for piece in re.findall(r"\s*\S+\s*", text or ""):
        if buf and len(buf) + len(piece) > max_chars:
            yield buf
            buf = piece
        else:
            buf += piece
    if buf:
        yield buf


def _sse(data: str, event: Optional[str] = None) -> str:
    # One data line per text line, as SSE requires
    lines = "".join(f"data: {line}\n" for line in data.split("\n"))
    if event:
        return f"event: {event}\n{lines}\n"
    return f"{lines}\n"


@router.post("/sessions/{session_id}/messages/stream")
def stream_message(
    session_id: str,
    payload: SendMessageRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    """
    Server-Sent Events variant of send_message.
    The message goes through the regular pipeline first (validation, rate limit,
    sanitizing, dispatch, atomic append), so failures come back as a normal JSON
    envelope with its status code. On success the stored reply is streamed:
      - data: <reply chunk>             (repeated)
      - event: meta / data: {...}       (request id, provider, model, tokens, flags)
      - data: [DONE]
    """
    env = services.chat.send_message(
        session_id,
        payload.message or "",
        user_id=payload.user_id,
        allow_fallback=payload.allow_fallback,
    )
    if not env.success:
        return envelope_response(request, env)

    reply = env.data["response"]
    slog.annotate(
        request.state,
        service_request_id=env.metadata.request_id,
        provider=reply.metadata.get("provider"),
        model=reply.metadata.get("model"),
        content_filtered=env.metadata.content_filtered,
        fallback_used=env.metadata.fallback_used or None,
        streamed=True,
    )
    meta = {
        "request_id": env.metadata.request_id,
        "session_id": env.data["session"].id,
        "message_id": reply.id,
        "provider": reply.metadata.get("provider"),
        "model": reply.metadata.get("model"),
        "tokens_used": env.metadata.tokens_used,
        "content_filtered": bool(env.metadata.content_filtered),
        "fallback_used": bool(env.metadata.fallback_used),
    }

    def event_generator():
        for chunk in _chunk_reply(reply.content):
            yield _sse(chunk)
        yield _sse(json.dumps(meta), event="meta")
        yield _sse("[DONE]")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
