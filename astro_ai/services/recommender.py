# =============================================
# File: astro_ai/services/recommender.py
# Purpose: Recommendation scoring: base score + interaction history + preferences
# =============================================
from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from astro_ai.config import RecommendConfig
from astro_ai.models import (
    Envelope,
    Interaction,
    InteractionAction,
    RecommendationItem,
    RecommendationOptions,
    UserPreferences,
    utcnow,
)
from astro_ai.services.catalog import Candidate, CatalogSource, StaticCatalog
from astro_ai.services.profiles import InteractionStore, PreferenceStore
from astro_ai.utils import metrics, slog
from astro_ai.utils.errors import RateLimitError, ServiceError, ServiceUnavailableError, ValidationError
from astro_ai.utils.ratelimit import RateLimiter

ACTION_WEIGHTS: Dict[InteractionAction, float] = {
    InteractionAction.LIKE: 0.10,
    InteractionAction.CLICK: 0.05,
    InteractionAction.DISLIKE: -0.15,
    InteractionAction.DISMISS: -0.10,
}

_NEGATIVE = (InteractionAction.DISLIKE, InteractionAction.DISMISS)


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _reasoning(cand: Candidate, confidence: float, delta: float, pref_hit: bool) -> str:
    if delta > 0:
        base = f"Based on your recent activity in {cand.category}."
    elif pref_hit:
        base = f"Matches your interest in {cand.category}."
    elif delta < 0:
        base = "Ranked lower after your feedback on similar items."
    else:
        base = f"Popular with teams working on {cand.category}."

    if confidence > 0.8:
        return f"{base} This is a highly recommended match for your needs."
    if confidence > 0.6:
        return f"{base} This should provide significant value for your work."
    return f"{base} This could be a good fit depending on your specific requirements."


class RecommendationEngine:
    """
    Scores catalog candidates for a user and returns two ranked lists
    (scripts, articles), each sorted by (-confidence, id).
    """

    def __init__(
        self,
        catalog: Optional[CatalogSource] = None,
        interactions: Optional[InteractionStore] = None,
        preferences: Optional[PreferenceStore] = None,
        config: Optional[RecommendConfig] = None,
        limiter: Optional[RateLimiter] = None,
        clock=utcnow,
    ) -> None:
        self.catalog = catalog or StaticCatalog()
        self.interactions = interactions or InteractionStore()
        self.preferences = preferences or PreferenceStore()
        self.config = config or RecommendConfig.from_env()
        self.limiter = limiter
        self._clock = clock

    # ---------- scoring ----------

    def _interaction_delta(
        self,
        cand: Candidate,
        history: Sequence[Interaction],
        categories: Dict[str, Optional[str]],
        now: datetime,
    ) -> float:
        total = 0.0
        for inter in history:
            category = inter.category or categories.get(inter.item_id)
            same_item = inter.item_id == cand.id
            if not same_item and category != cand.category:
                continue
            weight = ACTION_WEIGHTS[inter.action]
            if same_item and inter.action in _NEGATIVE:
                weight *= 2
            age_days = max(0.0, (now - inter.timestamp).total_seconds() / 86400.0)
            total += weight * (0.5 ** (age_days / self.config.half_life_days))
        bound = self.config.max_delta
        return _clamp(total, -bound, bound)

    def score(
        self,
        candidates: Sequence[Candidate],
        history: Sequence[Interaction],
        prefs: Optional[UserPreferences],
        now: Optional[datetime] = None,
    ) -> List[RecommendationItem]:
        """Pure scoring: no filtering by confidence, no truncation."""
        now = now or self._clock()
        categories = {c.id: c.category for c in candidates}
        excluded = set(prefs.exclude_categories) if prefs else set()
        liked_cats = set(prefs.categories) if prefs else set()
        liked_levels = set(prefs.complexity) if prefs else set()

        items: List[RecommendationItem] = []
        for cand in candidates:
            if cand.category in excluded:
                continue
            delta = self._interaction_delta(cand, history, categories, now)
            pref_delta = 0.0
            if cand.category in liked_cats:
                pref_delta += self.config.preference_boost
            if cand.metadata.get("complexity") in liked_levels:
                pref_delta += self.config.preference_boost
            confidence = round(_clamp(cand.base_score + delta + pref_delta, 0.0, 1.0), 4)
            items.append(
                RecommendationItem(
                    id=cand.id,
                    title=cand.title,
                    description=cand.description,
                    category=cand.category,
                    kind=cand.kind,
                    confidence=confidence,
                    reasoning=_reasoning(cand, confidence, delta, pref_delta > 0),
                    metadata=dict(cand.metadata),
                )
            )
        items.sort(key=lambda it: (-it.confidence, it.id))
        return items

    # ---------- API ----------

    def get_recommendations(
        self,
        user_id: Optional[str] = None,
        options: Optional[RecommendationOptions | Dict[str, Any]] = None,
        rate_key: Optional[str] = None,
    ) -> Envelope:
        started = time.perf_counter()
        try:
            if isinstance(options, dict):
                try:
                    options = RecommendationOptions.model_validate(options)
                except PydanticValidationError as e:
                    raise ValidationError("Recommendation options are invalid.", detail=str(e)) from e
            opts = options or RecommendationOptions()
            uid = user_id.strip() if isinstance(user_id, str) and user_id.strip() else None

            key = uid or rate_key
            if self.limiter is not None and key:
                decision = self.limiter.check(key)
                if not decision.allowed:
                    metrics.record_rate_limit_hit()
                    raise RateLimitError(retry_after_s=decision.reset_after_s,
                                         message="Too many requests. Please try again later.")

            prefs = self.preferences.get(uid) if uid else None
            now = self._clock()
            history = (
                self.interactions.history(uid, since=now - timedelta(days=self.config.history_days))
                if uid else []
            )
            candidates = self.catalog.candidates(uid)
            if opts.category:
                candidates = [c for c in candidates if c.category == opts.category]

            limit = opts.max_recommendations or (prefs.max_recommendations if prefs else None) \
                or self.config.max_recommendations
            if opts.min_confidence is not None:
                min_conf = opts.min_confidence
            elif prefs is not None and prefs.min_confidence is not None:
                min_conf = prefs.min_confidence
            else:
                min_conf = 0.0

            ranked = [it for it in self.score(candidates, history, prefs, now) if it.confidence >= min_conf]
            scripts = [it for it in ranked if it.kind == "script"][:limit]
            articles = [it for it in ranked if it.kind == "article"][:limit]
        except RateLimitError as e:
            return Envelope.fail(e, started, retry_after_s=round(e.retry_after_s, 3))
        except ServiceError as e:
            return Envelope.fail(e, started)
        except Exception:
            logger.exception("[recommend] scoring failed")
            return Envelope.fail(ServiceUnavailableError("Recommendations are temporarily unavailable."), started)

        slog.log_event(
            "recommend.served",
            user=slog.qhash(uid) if uid else None,
            scripts=len(scripts),
            articles=len(articles),
            history=len(history),
            min_confidence=min_conf,
        )
        logger.info(f"[recommend] user={uid or '-'} k={limit} scripts={len(scripts)} articles={len(articles)}")
        return Envelope.ok({"scripts": scripts, "articles": articles}, started)

    def track_interaction(self, interaction: Interaction | Dict[str, Any]) -> Envelope:
        started = time.perf_counter()
        try:
            if not isinstance(interaction, Interaction):
                try:
                    interaction = Interaction.model_validate(interaction)
                except PydanticValidationError as e:
                    raise ValidationError("Interaction needs a user id, an item id and a known action.",
                                          detail=str(e)) from e
            self.interactions.record(interaction)
        except ServiceError as e:
            return Envelope.fail(e, started)
        return Envelope.ok({"recorded": True, "interaction": interaction}, started)

    def update_user_preferences(self, prefs: UserPreferences | Dict[str, Any]) -> Envelope:
        started = time.perf_counter()
        try:
            if not isinstance(prefs, UserPreferences):
                try:
                    prefs = UserPreferences.model_validate(prefs)
                except PydanticValidationError as e:
                    raise ValidationError("Preferences are invalid.", detail=str(e)) from e
            stored = self.preferences.set(prefs)
        except ServiceError as e:
            return Envelope.fail(e, started)
        logger.info(f"[recommend] preferences updated user={stored.user_id}")
        return Envelope.ok({"preferences": stored}, started)

    def get_preferences(self, user_id: str) -> Envelope:
        started = time.perf_counter()
        if not isinstance(user_id, str) or not user_id.strip():
            return Envelope.fail(ValidationError("A user id is required."), started)
        prefs = self.preferences.get(user_id.strip()) or UserPreferences(user_id=user_id.strip())
        return Envelope.ok({"preferences": prefs}, started)
