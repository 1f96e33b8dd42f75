# =============================================
# File: tests/test_recommender.py
# Purpose: Recommendation scoring, filtering, ranking and preference handling
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import threading
from datetime import datetime, timedelta, timezone

import pytest

from astro_ai.config import RecommendConfig
from astro_ai.models import Interaction, UserPreferences
from astro_ai.services.catalog import Candidate, StaticCatalog
from astro_ai.services.profiles import InteractionStore, PreferenceStore
from astro_ai.services.recommender import RecommendationEngine
from astro_ai.utils.errors import ErrorCode
from astro_ai.utils.ratelimit import RateLimiter

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _engine(items=None, limiter=None, preferences=None, **cfg):
    return RecommendationEngine(
        catalog=StaticCatalog(items),
        interactions=InteractionStore(),
        preferences=preferences or PreferenceStore(),
        config=RecommendConfig(**cfg),
        limiter=limiter,
        clock=lambda: NOW,
    )


def _ids(items):
    return [it.id for it in items]


def _track(engine, user, action, item, days_ago=0.0):
    env = engine.track_interaction(
        {"user_id": user, "action": action, "item_id": item, "timestamp": NOW - timedelta(days=days_ago)}
    )
    assert env.success


# ---------- defaults ----------

def test_defaults_rank_by_base_score():
    env = _engine().get_recommendations()
    assert env.success is True
    assert _ids(env.data["scripts"]) == ["script-1", "script-2", "script-3", "script-4", "script-5"]
    assert _ids(env.data["articles"]) == ["article-1", "article-2", "article-4", "article-3"]
    for it in env.data["scripts"] + env.data["articles"]:
        assert 0.0 <= it.confidence <= 1.0
        assert it.reasoning


def test_min_confidence_filters_every_item():
    env = _engine().get_recommendations("u1", {"min_confidence": 0.7})
    items = env.data["scripts"] + env.data["articles"]
    assert items
    assert all(it.confidence >= 0.7 for it in items)
    assert _ids(env.data["scripts"]) == ["script-1", "script-2", "script-3"]


def test_max_recommendations_truncates_each_list():
    env = _engine().get_recommendations("u1", {"max_recommendations": 2})
    assert _ids(env.data["scripts"]) == ["script-1", "script-2"]
    assert _ids(env.data["articles"]) == ["article-1", "article-2"]


def test_engine_default_limit_applies():
    env = _engine(max_recommendations=3).get_recommendations("u1")
    assert len(env.data["scripts"]) == 3


def test_empty_catalog_returns_empty_lists():
    env = _engine(items=[]).get_recommendations("u1")
    assert env.success is True
    assert env.data == {"scripts": [], "articles": []}


def test_ties_break_on_id():
    items = [
        Candidate("b", "B", "x", "script", 0.5),
        Candidate("a", "A", "x", "script", 0.5),
        Candidate("c", "C", "x", "script", 0.6),
    ]
    env = _engine(items=items).get_recommendations()
    assert _ids(env.data["scripts"]) == ["c", "a", "b"]


def test_category_option_filters_candidates():
    env = _engine().get_recommendations("u1", {"category": "cloud"})
    assert _ids(env.data["scripts"]) == ["script-4"]
    assert _ids(env.data["articles"]) == ["article-4"]


def test_invalid_options_are_validation_errors():
    env = _engine().get_recommendations("u1", {"min_confidence": 2})
    assert env.success is False
    assert env.error.code is ErrorCode.VALIDATION


# ---------- interaction history ----------

def test_like_lifts_item_above_higher_base():
    eng = _engine()
    _track(eng, "u1", "like", "script-2")
    scripts = eng.get_recommendations("u1").data["scripts"]
    assert _ids(scripts)[:2] == ["script-2", "script-1"]
    assert scripts[0].confidence == pytest.approx(0.87)
    assert "recent activity" in scripts[0].reasoning
    assert "highly recommended" in scripts[0].reasoning


def test_like_spreads_to_same_category():
    eng = _engine()
    _track(eng, "u1", "like", "script-3")
    by_id = {it.id: it.confidence for it in eng.get_recommendations("u1").data["scripts"]}
    assert by_id["script-3"] == pytest.approx(0.82)
    assert by_id["script-5"] == pytest.approx(0.74)  # also devops
    assert by_id["script-1"] == pytest.approx(0.85)  # untouched


def test_dislike_pushes_item_down():
    eng = _engine()
    _track(eng, "u1", "dislike", "script-1")
    scripts = eng.get_recommendations("u1").data["scripts"]
    assert _ids(scripts)[-1] == "script-1"
    assert scripts[-1].confidence == pytest.approx(0.55)


def test_older_interactions_weigh_less():
    eng = _engine()
    _track(eng, "u1", "like", "script-2", days_ago=7)
    by_id = {it.id: it.confidence for it in eng.get_recommendations("u1").data["scripts"]}
    assert by_id["script-2"] == pytest.approx(0.82)


def test_interactions_outside_history_window_are_ignored():
    eng = _engine()
    _track(eng, "u1", "like", "script-5", days_ago=40)
    by_id = {it.id: it.confidence for it in eng.get_recommendations("u1").data["scripts"]}
    assert by_id["script-5"] == pytest.approx(0.64)


def test_history_is_per_user():
    eng = _engine()
    _track(eng, "u1", "dislike", "script-1")
    scripts = eng.get_recommendations("u2").data["scripts"]
    assert _ids(scripts)[0] == "script-1"


def test_confidence_is_clamped_to_unit_interval():
    items = [Candidate("hi", "High", "c1", "script", 0.95), Candidate("lo", "Low", "c2", "script", 0.1)]
    eng = _engine(items=items)
    for _ in range(5):
        _track(eng, "u1", "like", "hi")
        _track(eng, "u1", "dislike", "lo")
    by_id = {it.id: it.confidence for it in eng.get_recommendations("u1").data["scripts"]}
    assert by_id["hi"] == 1.0
    assert by_id["lo"] == 0.0


def test_naive_timestamps_are_treated_as_utc():
    eng = _engine()
    env = eng.track_interaction(
        {"user_id": "u1", "action": "like", "item_id": "script-2", "timestamp": "2026-01-15T12:00:00"}
    )
    assert env.success
    assert env.data["interaction"].timestamp.tzinfo is not None
    assert _ids(eng.get_recommendations("u1").data["scripts"])[0] == "script-2"


@pytest.mark.parametrize(
    "payload",
    [
        {"user_id": "u1", "action": "explode", "item_id": "script-1"},
        {"user_id": "", "action": "like", "item_id": "script-1"},
        {"user_id": "u1", "action": "like"},
    ],
)
def test_bad_interactions_are_rejected(payload):
    env = _engine().track_interaction(payload)
    assert env.error.code is ErrorCode.VALIDATION


def test_concurrent_tracking_for_different_users():
    eng = _engine()
    users = [f"user-{i}" for i in range(8)]

    def worker(uid):
        for _ in range(50):
            eng.track_interaction(Interaction(user_id=uid, action="click", item_id="script-1", timestamp=NOW))

    threads = [threading.Thread(target=worker, args=(u,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    for uid in users:
        assert len(eng.interactions.history(uid)) == 50


# ---------- preferences ----------

def test_preferred_category_gets_a_boost():
    eng = _engine()
    assert eng.update_user_preferences({"user_id": "u1", "categories": ["cloud"]}).success
    scripts = eng.get_recommendations("u1").data["scripts"]
    assert _ids(scripts)[:3] == ["script-1", "script-4", "script-2"]
    assert "Matches your interest" in scripts[1].reasoning


def test_excluded_categories_are_dropped():
    eng = _engine()
    eng.update_user_preferences(UserPreferences(user_id="u1", exclude_categories=["ml-ops", "research"]))
    env = eng.get_recommendations("u1")
    assert "script-1" not in _ids(env.data["scripts"])
    assert "article-1" not in _ids(env.data["articles"])


def test_preferences_last_write_wins():
    eng = _engine()
    eng.update_user_preferences({"user_id": "u1", "max_recommendations": 1})
    eng.update_user_preferences({"user_id": "u1", "max_recommendations": 2})
    env = eng.get_recommendations("u1")
    assert len(env.data["scripts"]) == 2
    assert eng.get_preferences("u1").data["preferences"].max_recommendations == 2


def test_options_override_preferences():
    eng = _engine()
    eng.update_user_preferences({"user_id": "u1", "max_recommendations": 1, "min_confidence": 0.8})
    env = eng.get_recommendations("u1", {"max_recommendations": 3, "min_confidence": 0.0})
    assert len(env.data["scripts"]) == 3


def test_preferences_do_not_leak_between_users():
    eng = _engine()
    eng.update_user_preferences({"user_id": "u1", "exclude_categories": ["ml-ops"]})
    assert "script-1" in _ids(eng.get_recommendations("u2").data["scripts"])


def test_unknown_user_gets_default_preferences():
    prefs = _engine().get_preferences("nobody").data["preferences"]
    assert prefs.user_id == "nobody"
    assert prefs.categories == []


def test_invalid_preferences_rejected():
    env = _engine().update_user_preferences({"user_id": "u1", "max_recommendations": 0})
    assert env.error.code is ErrorCode.VALIDATION


def test_preferences_persist_to_json(tmp_path):
    path = str(tmp_path / "prefs" / "users.json")
    store = PreferenceStore(path=path)
    store.set(UserPreferences(user_id="u1", categories=["devops"]))
    reloaded = PreferenceStore(path=path)
    assert reloaded.get("u1").categories == ["devops"]


# ---------- rate limiting ----------

def test_anonymous_requests_limited_by_rate_key():
    eng = _engine(limiter=RateLimiter(limit=2, window_seconds=60))
    assert eng.get_recommendations(rate_key="203.0.113.9").success
    assert eng.get_recommendations(rate_key="203.0.113.9").success
    env = eng.get_recommendations(rate_key="203.0.113.9")
    assert env.error.code is ErrorCode.RATE_LIMIT
    assert env.metadata.retry_after_s > 0
    assert eng.get_recommendations(rate_key="198.51.100.1").success
