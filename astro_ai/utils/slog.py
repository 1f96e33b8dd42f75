# =============================================
# File: astro_ai/utils/slog.py
# Purpose: JSON event log for the AI services + per-request log context
# =============================================
from __future__ import annotations
import hashlib
import json
import logging
import os
import uuid
from typing import Any, Dict, Optional

_LOGGER_NAME = "astro_ai"

_logger = logging.getLogger(_LOGGER_NAME)
if not _logger.handlers:
    _logger.setLevel(getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO))
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _logger.addHandler(_handler)
    _logger.propagate = True  # pytest caplog


def qhash(text: str) -> str:
    """10-char sha256 of the normalized text. User text itself never goes to the log."""
    norm = " ".join((text or "").strip().lower().split())
    return hashlib.sha256(norm.encode("utf-8")).hexdigest()[:10]


def new_request_id() -> str:
    return uuid.uuid4().hex


def _emit(record: Dict[str, Any]) -> None:
    # None fields are noise in the log; drop them
    clean = {k: v for k, v in record.items() if v is not None}
    _logger.info(json.dumps(clean, ensure_ascii=False, default=str))


def log_event(event: str, **fields: Any) -> None:
    _emit({"event": event, **fields})


def request_context(state: Any) -> Dict[str, Any]:
    """The mutable log context a request carries on `request.state` (created on first use)."""
    ctx: Optional[Dict[str, Any]] = getattr(state, "log_context", None)
    if ctx is None:
        ctx = {}
        state.log_context = ctx
    return ctx


def annotate(state: Any, **fields: Any) -> None:
    """Add fields to the request's `request.completed` line (None values are skipped)."""
    ctx = request_context(state)
    ctx.update({k: v for k, v in fields.items() if v is not None})


def finalize_request_log(
    request_id: str,
    method: str,
    path: str,
    status: int,
    latency_ms: int,
    client_ip: str | None,
    ctx: Dict[str, Any] | None = None,
) -> None:
    payload: Dict[str, Any] = {
        "event": "request.completed",
        "request_id": request_id,
        "method": method,
        "path": path,
        "status": status,
        "latency_ms": latency_ms,
        "client_ip": client_ip or "",
        "rate_limited": status == 429,
    }
    # router-supplied fields win over the defaults above
    payload.update(ctx or {})
    _emit(payload)
