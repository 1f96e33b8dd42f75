# =============================================
# File: astro_ai/services/sessions.py
# Purpose: Chat session store (per-session locks, TTL expiry, atomic appends)
# =============================================
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Protocol, Sequence, Tuple

from astro_ai.models import Message, Role, Session, SessionStatus, utcnow
from astro_ai.utils.errors import NotFoundError, SessionClosedError
from astro_ai.utils.locks import KeyedLocks


class SessionStore(Protocol):
    def create(self, context: Optional[Dict[str, Any]] = None) -> Session: ...

    def get(self, session_id: str) -> Session: ...

    def append_messages(
        self,
        session_id: str,
        messages: Sequence[Message],
        context_update: Optional[Dict[str, Any]] = None,
        response_time_ms: Optional[float] = None,
    ) -> Session: ...

    def close(self, session_id: str) -> Session: ...

    def lock(self, session_id: str): ...


class InMemorySessionStore:
    """
    Sessions keyed by id. Readers always get deep copies, so a half-built
    update is never visible outside the store.

    Two levels of locking:
      - `lock(session_id)`: exclusive per-session lock, held by ChatService for a
        whole send (dispatch + append) so appends follow arrival order.
      - `_table_lock`: short critical section around the dict itself.
    """

    def __init__(self, ttl_seconds: float = 1800.0, clock=time.time) -> None:
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._sessions: Dict[str, Tuple[Session, float]] = {}  # id -> (session, last_touch)
        self._table_lock = threading.Lock()
        self._session_locks = KeyedLocks()

    # ---- helpers ----

    def _expired(self, touched: float) -> bool:
        return self._ttl > 0 and (self._clock() - touched) > self._ttl

    def _live(self, session_id: str) -> Session:
        """Caller holds _table_lock."""
        entry = self._sessions.get(session_id)
        if entry is None:
            raise NotFoundError()
        session, touched = entry
        if self._expired(touched):
            self._sessions.pop(session_id, None)
            raise NotFoundError()
        return session

    # ---- API ----

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        with self._session_locks.hold(session_id):
            yield

    def create(self, context: Optional[Dict[str, Any]] = None) -> Session:
        session = Session(context=dict(context or {}))
        with self._table_lock:
            self._sessions[session.id] = (session, self._clock())
        return session.model_copy(deep=True)

    def get(self, session_id: str) -> Session:
        with self._table_lock:
            return self._live(session_id).model_copy(deep=True)

    def append_messages(
        self,
        session_id: str,
        messages: Sequence[Message],
        context_update: Optional[Dict[str, Any]] = None,
        response_time_ms: Optional[float] = None,
    ) -> Session:
        with self._table_lock:
            current = self._live(session_id)
            if current.status is SessionStatus.CLOSED:
                raise SessionClosedError()

            # Build the next version fully, then swap it in.
            nxt = current.model_copy(deep=True)
            nxt.messages.extend(messages)
            if context_update:
                nxt.context.update(context_update)

            meta = nxt.metadata
            meta.total_tokens += sum(m.tokens for m in messages)
            meta.message_count = len(nxt.messages)
            if response_time_ms is not None:
                replies = sum(1 for m in nxt.messages if m.role is Role.ASSISTANT)
                prev = max(0, replies - sum(1 for m in messages if m.role is Role.ASSISTANT))
                if replies:
                    meta.avg_response_time_ms = round(
                        (meta.avg_response_time_ms * prev + response_time_ms) / replies, 3
                    )
            nxt.updated_at = utcnow()

            self._sessions[session_id] = (nxt, self._clock())
            return nxt.model_copy(deep=True)

    def close(self, session_id: str) -> Session:
        with self._table_lock:
            current = self._live(session_id)
            nxt = current.model_copy(update={"status": SessionStatus.CLOSED, "updated_at": utcnow()})
            self._sessions[session_id] = (nxt, self._clock())
            return nxt.model_copy(deep=True)

    def purge_expired(self) -> int:
        """Drop expired sessions; returns how many were removed."""
        with self._table_lock:
            dead = [sid for sid, (_, touched) in self._sessions.items() if self._expired(touched)]
            for sid in dead:
                del self._sessions[sid]
            return len(dead)

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._sessions)
