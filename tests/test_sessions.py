# =============================================
# File: tests/test_sessions.py
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import pytest

from astro_ai.models import Message, Role, SessionStatus
from astro_ai.services.sessions import InMemorySessionStore
from astro_ai.utils.errors import ErrorCode, NotFoundError, SessionClosedError


class _Clock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t


def _pair(user="hi", reply="hello", tokens=(1, 2)):
    return [
        Message(role=Role.USER, content=user, tokens=tokens[0]),
        Message(role=Role.ASSISTANT, content=reply, tokens=tokens[1]),
    ]


def test_create_then_get_round_trip():
    store = InMemorySessionStore()
    s = store.create({"industry": "finance"})
    got = store.get(s.id)
    assert got.id == s.id
    assert got.messages == []
    assert got.context == {"industry": "finance"}
    assert got.status is SessionStatus.ACTIVE


def test_get_unknown_raises_not_found():
    with pytest.raises(NotFoundError) as ei:
        InMemorySessionStore().get("nope")
    assert ei.value.code is ErrorCode.NOT_FOUND


def test_append_is_atomic_and_updates_metadata():
    store = InMemorySessionStore()
    s = store.create()
    store.append_messages(s.id, _pair(tokens=(3, 5)), response_time_ms=100.0)
    updated = store.append_messages(s.id, _pair(tokens=(1, 1)), context_update={"industry": "retail"},
                                    response_time_ms=300.0)
    assert [m.role for m in updated.messages] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
    assert updated.metadata.total_tokens == 10
    assert updated.metadata.message_count == 4
    assert updated.metadata.avg_response_time_ms == pytest.approx(200.0)
    assert updated.context["industry"] == "retail"


def test_returned_sessions_are_copies():
    store = InMemorySessionStore()
    s = store.create()
    got = store.get(s.id)
    got.messages.append(Message(role=Role.USER, content="sneaky"))
    got.context["x"] = 1
    fresh = store.get(s.id)
    assert fresh.messages == [] and "x" not in fresh.context


def test_closed_session_rejects_appends():
    store = InMemorySessionStore()
    s = store.create()
    closed = store.close(s.id)
    assert closed.status is SessionStatus.CLOSED
    # still retrievable after close
    assert store.get(s.id).status is SessionStatus.CLOSED
    with pytest.raises(SessionClosedError) as ei:
        store.append_messages(s.id, _pair())
    assert ei.value.code is ErrorCode.VALIDATION


def test_close_unknown_raises():
    with pytest.raises(NotFoundError):
        InMemorySessionStore().close("missing")


def test_ttl_expiry_is_lazy_and_reported_as_not_found():
    clock = _Clock(0.0)
    store = InMemorySessionStore(ttl_seconds=1800, clock=clock)
    s = store.create()
    clock.t = 1000
    store.append_messages(s.id, _pair())  # touch refreshes the TTL
    clock.t = 2700
    assert store.get(s.id).id == s.id
    clock.t = 2700 + 1801
    with pytest.raises(NotFoundError):
        store.get(s.id)
    assert len(store) == 0


def test_purge_expired():
    clock = _Clock(0.0)
    store = InMemorySessionStore(ttl_seconds=10, clock=clock)
    store.create()
    store.create()
    clock.t = 5
    keep = store.create()
    clock.t = 12
    assert store.purge_expired() == 2
    assert store.get(keep.id).id == keep.id
