# =============================================
# File: tests/test_api.py
# Purpose: HTTP surface: envelopes, status codes, headers (TestClient, no network)
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import re
import zlib

from fastapi.testclient import TestClient

from astro_ai.config import ChatConfig, RecommendConfig, SearchConfig
from astro_ai.deps import build_services
from astro_ai.main import create_app
from astro_ai.services.catalog import StaticCatalog
from astro_ai.services.chat import ChatService
from astro_ai.services.profiles import InteractionStore, PreferenceStore
from astro_ai.services.providers import TemplateProvider
from astro_ai.services.recommender import RecommendationEngine
from astro_ai.services.retrieval import InMemoryIndex
from astro_ai.services.sessions import InMemorySessionStore
from astro_ai.services.vector_store import VectorStore
from astro_ai.utils.ratelimit import RateLimiter


class HashEmbedder:
    def embed(self, text):
        vec = [0.0] * 256
        for tok in re.findall(r"\w+", text.lower()):
            vec[zlib.crc32(tok.encode("utf-8")) % 256] += 1.0
        return vec


def _client(chat_limit=20, rec_limit=30):
    chat = ChatService(
        sessions=InMemorySessionStore(),
        limiter=RateLimiter(limit=chat_limit, window_seconds=3600),
        provider=TemplateProvider(),
        config=ChatConfig(),
    )
    recs = RecommendationEngine(
        catalog=StaticCatalog(),
        interactions=InteractionStore(),
        preferences=PreferenceStore(),
        config=RecommendConfig(),
        limiter=RateLimiter(limit=rec_limit, window_seconds=60),
    )
    vectors = VectorStore(embedder=HashEmbedder(), index=InMemoryIndex(), config=SearchConfig())
    app = create_app(services=build_services(chat=chat, recommendations=recs, vectors=vectors))
    return TestClient(app)


def _session(client):
    r = client.post("/chat/sessions")
    assert r.status_code == 201
    return r.json()["data"]["session"]["id"]


# ---------- chat ----------

def test_health():
    assert _client().get("/health").json() == {"status": "ok"}


def test_chat_round_trip():
    client = _client()
    sid = _session(client)
    r = client.post(f"/chat/sessions/{sid}/messages", json={"message": "Hello"})
    assert r.status_code == 200
    assert r.headers.get("X-Request-ID")
    body = r.json()
    assert body["success"] is True
    assert body["data"]["response"]["role"] == "assistant"
    assert body["metadata"]["content_filtered"] is False
    assert body["metadata"]["tokens_used"] > 0
    assert "error" not in body

    got = client.get(f"/chat/sessions/{sid}").json()
    assert len(got["data"]["session"]["messages"]) == 2


def test_session_context_from_body():
    client = _client()
    r = client.post("/chat/sessions", json={"context": {"industry": "retail"}})
    assert r.json()["data"]["session"]["context"] == {"industry": "retail"}


def test_empty_message_is_400():
    client = _client()
    sid = _session(client)
    for payload in ({"message": ""}, {}):
        r = client.post(f"/chat/sessions/{sid}/messages", json=payload)
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "VALIDATION"


def test_unknown_session_is_404():
    r = _client().get("/chat/sessions/nope")
    assert r.status_code == 404
    body = r.json()
    assert body["success"] is False
    assert body["error"]["code"] == "NOT_FOUND"


def test_malicious_message_is_filtered():
    client = _client()
    sid = _session(client)
    r = client.post(f"/chat/sessions/{sid}/messages", json={"message": "<script>alert('xss')</script>"})
    assert r.status_code == 200
    body = r.json()
    assert body["metadata"]["content_filtered"] is True
    assert "<script" not in body["data"]["response"]["content"].lower()


def test_rate_limited_chat_returns_429_with_retry_after():
    client = _client(chat_limit=2)
    sid = _session(client)
    for _ in range(2):
        assert client.post(f"/chat/sessions/{sid}/messages", json={"message": "Hi", "user_id": "u1"}).status_code == 200
    r = client.post(f"/chat/sessions/{sid}/messages", json={"message": "Hi", "user_id": "u1"})
    assert r.status_code == 429
    assert r.json()["error"]["code"] == "RATE_LIMIT"
    assert int(r.headers["Retry-After"]) >= 1


def test_closed_session():
    client = _client()
    sid = _session(client)
    r = client.delete(f"/chat/sessions/{sid}")
    assert r.json()["data"]["session"]["status"] == "closed"
    r = client.post(f"/chat/sessions/{sid}/messages", json={"message": "Hello"})
    assert r.status_code == 400


# ---------- recommendations ----------

def test_recommendations_respect_min_confidence():
    r = _client().get("/recommendations", params={"user_id": "u1", "min_confidence": 0.7})
    assert r.status_code == 200
    data = r.json()["data"]
    items = data["scripts"] + data["articles"]
    assert items
    assert all(it["confidence"] >= 0.7 for it in items)


def test_interactions_change_ranking():
    client = _client()
    r = client.post("/recommendations/interactions", json={"user_id": "u1", "action": "like", "item_id": "script-2"})
    assert r.status_code == 201
    scripts = client.get("/recommendations", params={"user_id": "u1"}).json()["data"]["scripts"]
    assert scripts[0]["id"] == "script-2"


def test_bad_interaction_is_400():
    r = _client().post("/recommendations/interactions", json={"user_id": "u1", "action": "poke", "item_id": "x"})
    assert r.status_code == 400


def test_preferences_round_trip():
    client = _client()
    r = client.put("/recommendations/preferences", json={"user_id": "u1", "exclude_categories": ["ml-ops"]})
    assert r.status_code == 200
    prefs = client.get("/recommendations/preferences/u1").json()["data"]["preferences"]
    assert prefs["exclude_categories"] == ["ml-ops"]
    scripts = client.get("/recommendations", params={"user_id": "u1"}).json()["data"]["scripts"]
    assert "script-1" not in [s["id"] for s in scripts]


def test_anonymous_recommendations_are_rate_limited():
    client = _client(rec_limit=1)
    assert client.get("/recommendations").status_code == 200
    r = client.get("/recommendations")
    assert r.status_code == 429
    assert "Retry-After" in r.headers


# ---------- search ----------

DOCS = [
    {"id": "vec", "text": "vector search with embeddings", "metadata": {"category": "insights"}},
    {"id": "cost", "text": "cloud cost optimization", "metadata": {"category": "services"}},
    {"id": "k8s", "text": "kubernetes deployments at scale", "metadata": {"category": "services"}},
]


def _indexed_client():
    client = _client()
    r = client.post("/search/documents", json=DOCS)
    assert r.status_code == 201
    assert [d["id"] for d in r.json()["data"]["indexed"]] == ["vec", "cost", "k8s"]
    return client


def test_search_get_and_post():
    client = _indexed_client()
    r = client.get("/search", params={"q": "vector search"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["results"][0]["document_id"] == "vec"
    assert data["vectors_searched"] == 3

    r = client.post("/search", json={"query": "cloud cost optimization", "options": {"similarity": 0.99}})
    assert [x["document_id"] for x in r.json()["data"]["results"]] == ["cost"]


def test_empty_search_is_400_with_error_text():
    r = _indexed_client().get("/search", params={"q": ""})
    assert r.status_code == 400
    body = r.json()
    assert body["error"]["code"] == "VALIDATION"
    assert body["data"]["error"] == "Invalid or empty search query"
    assert body["data"]["results"] == []
    assert body["metadata"]["content_filtered"] is True


def test_long_search_is_400():
    r = _indexed_client().post("/search", json={"query": "x" * 1001})
    assert r.status_code == 400
    assert r.json()["data"]["error"] == "Search query too long"


def test_bad_document_is_400():
    r = _client().post("/search/documents", json={"id": "x", "text": ""})
    assert r.status_code == 400


def test_batch_with_invalid_third_document_indexes_nothing():
    client = _client()
    batch = DOCS[:2] + [{"id": "bad", "text": ""}]
    r = client.post("/search/documents", json=batch)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION"
    assert client.get("/search/stats").json()["data"]["document_count"] == 0


def test_stats_and_delete():
    client = _indexed_client()
    assert client.get("/search/stats").json()["data"]["document_count"] == 3
    assert client.delete("/search/documents/cost").json()["data"] == {"removed": True}
    assert client.get("/search/stats").json()["data"]["document_count"] == 2


def test_metrics_endpoint():
    client = _client()
    client.get("/health")
    m = client.get("/metrics").json()
    assert "requests_total" in m["counters"]
    assert m["latency_ms"]["buckets"][-1] == "+Inf"
