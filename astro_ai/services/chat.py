# =============================================
# File: astro_ai/services/chat.py
# Purpose: ChatService: validate -> rate-limit -> sanitize -> dispatch -> compose
# =============================================
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from astro_ai.config import ChatConfig
from astro_ai.models import Envelope, Message, Role, SessionStatus
from astro_ai.services.providers import ProviderClient, ProviderReply, TemplateProvider
from astro_ai.services.sessions import InMemorySessionStore, SessionStore
from astro_ai.utils import metrics, slog
from astro_ai.utils.errors import (
    InvalidProviderResponseError,
    InvalidResponseError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
    RequestCancelled,
    ServiceError,
    ServiceTimeoutError,
    ServiceUnavailableError,
    SessionClosedError,
    TransientProviderError,
    ValidationError,
)
from astro_ai.utils.intents import classify_intent, extract_profile
from astro_ai.utils.prompting import build_chat_messages, estimate_tokens
from astro_ai.utils.ratelimit import RateLimiter
from astro_ai.utils.retry import CancelToken, RetryPolicy, WorkerPool, call_with_deadline, call_with_retry
from astro_ai.utils.sanitize import (
    REMOVED_MARKER,
    Action,
    ContentSanitizer,
    truncate,
)
from astro_ai.utils.timing import timer

SAFE_REPLY = "I'm sorry, I can't help with that request. Is there anything else about our services I can help with?"

_MAX_CONTEXT_VALUE_CHARS = 200


class ChatService:
    """
    Answers chat messages for a session.

    Per request: Validating -> RateLimiting -> Sanitizing -> Dispatching ->
    Composing. Dispatch and append run under the session's exclusive lock, so
    concurrent sends on one session are applied in lock-arrival order and a
    reader never sees the user turn without its reply.
    """

    def __init__(
        self,
        sessions: Optional[SessionStore] = None,
        limiter: Optional[RateLimiter] = None,
        provider: Optional[ProviderClient] = None,
        fallback: Optional[ProviderClient] = None,
        config: Optional[ChatConfig] = None,
        sleep=None,
    ) -> None:
        self.config = config or ChatConfig.from_env()
        self.sessions = sessions or InMemorySessionStore(ttl_seconds=self.config.session_ttl_s)
        self.limiter = limiter or RateLimiter.from_env()
        self.provider = provider or TemplateProvider()
        self.fallback = fallback
        self._sleep = sleep
        self.inbound = ContentSanitizer(pii_action=Action.FLAG)
        self.outbound = ContentSanitizer(pii_action=Action.REDACT)
        # Separate pools: a hung primary must not starve its fallback.
        self._primary_pool = WorkerPool(f"provider-{self.provider.name}", self.config.provider_workers)
        self._fallback_pool = (
            WorkerPool(f"fallback-{fallback.name}", self.config.provider_workers) if fallback is not None else None
        )

    # ---------- sessions ----------

    def _require_id(self, session_id: Any) -> str:
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValidationError("A valid session id is required.")
        return session_id.strip()

    def _clean_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if context is None:
            return {}
        if not isinstance(context, dict):
            raise ValidationError("Session context must be an object of key/value pairs.")
        out: Dict[str, Any] = {}
        for key, val in context.items():
            if isinstance(val, str):
                val = truncate(self.inbound.sanitize(val).cleaned, _MAX_CONTEXT_VALUE_CHARS)
            elif isinstance(val, (list, tuple)):
                val = [self.inbound.sanitize(str(v)).cleaned for v in val if str(v).strip()]
            out[str(key)] = val
        return out

    def create_session(self, context: Optional[Dict[str, Any]] = None) -> Envelope:
        started = time.perf_counter()
        try:
            session = self.sessions.create(self._clean_context(context))
        except ServiceError as e:
            return Envelope.fail(e, started)
        logger.info(f"[chat] session created id={session.id}")
        return Envelope.ok({"session": session}, started)

    def get_session(self, session_id: str) -> Envelope:
        started = time.perf_counter()
        try:
            session = self.sessions.get(self._require_id(session_id))
        except ServiceError as e:
            return Envelope.fail(e, started)
        return Envelope.ok({"session": session}, started)

    def close_session(self, session_id: str) -> Envelope:
        started = time.perf_counter()
        try:
            sid = self._require_id(session_id)
            with self.sessions.lock(sid):
                session = self.sessions.close(sid)
        except ServiceError as e:
            return Envelope.fail(e, started)
        logger.info(f"[chat] session closed id={sid}")
        return Envelope.ok({"session": session}, started)

    # ---------- messages ----------

    def _validate(self, session_id: Any, message: Any) -> Tuple[str, str, bool]:
        sid = self._require_id(session_id)
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message must be a non-empty string.")
        text = message.strip()
        oversized = len(text) > self.config.max_message_chars
        if oversized and self.config.oversize_policy == "reject":
            raise ValidationError(
                f"Message is too long. Please keep it under {self.config.max_message_chars} characters."
            )
        session = self.sessions.get(sid)
        if session.status is SessionStatus.CLOSED:
            raise SessionClosedError()
        return sid, text, oversized

    def _policy(self, allow_fallback: Optional[bool]) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.config.max_attempts,
            base_delay_ms=self.config.backoff_base_ms,
            attempt_timeout_s=self.config.provider_timeout_s,
            allow_fallback=self.config.allow_fallback if allow_fallback is None else bool(allow_fallback),
            sleep=self._sleep,
        )

    def _call_provider(
        self,
        provider: ProviderClient,
        pool: Optional[WorkerPool],
        messages: List[Dict[str, str]],
        context: Dict[str, Any],
        policy: RetryPolicy,
        cancel: Optional[CancelToken],
        session_id: str,
    ) -> ProviderReply:
        def attempt(n: int) -> ProviderReply:
            try:
                reply = call_with_deadline(
                    lambda: provider.complete(messages, timeout=policy.attempt_timeout_s, context=context),
                    policy.attempt_timeout_s,
                    cancel,
                    pool=pool,
                )
            except ProviderError:
                raise
            except TimeoutError as e:
                # before OSError, which it subclasses
                raise ProviderTimeoutError(f"{type(e).__name__}: {e}") from e
            except OSError as e:
                # ConnectionError / socket errors from custom clients
                raise TransientProviderError(f"{type(e).__name__}: {e}") from e
            except Exception as e:
                raise ProviderError(f"{type(e).__name__}: {e}") from e
            if not isinstance(reply, ProviderReply) or not isinstance(reply.content, str) or not reply.content.strip():
                raise InvalidProviderResponseError("provider returned no usable content")
            return reply

        def on_retry(n: int, delay_s: float, err: ProviderError) -> None:
            metrics.incr("provider_retries_total")
            slog.log_event(
                "chat.provider_retry",
                session_id=session_id,
                provider=provider.name,
                attempt=n,
                delay_ms=int(delay_s * 1000),
                error=type(err).__name__,
            )

        return call_with_retry(attempt, policy, cancel=cancel, on_retry=on_retry)

    @staticmethod
    def _surface(err: ProviderError) -> ServiceError:
        if isinstance(err, RequestCancelled):
            return ServiceTimeoutError("The request was cancelled before the assistant answered.", detail=str(err))
        if isinstance(err, InvalidProviderResponseError):
            return InvalidResponseError(detail=str(err))
        if isinstance(err, ProviderTimeoutError):
            return ServiceTimeoutError(detail=str(err))
        return ServiceUnavailableError(detail=str(err))

    def _dispatch(
        self,
        messages: List[Dict[str, str]],
        context: Dict[str, Any],
        policy: RetryPolicy,
        cancel: Optional[CancelToken],
        session_id: str,
    ) -> Tuple[ProviderReply, Dict[str, Any]]:
        try:
            reply = self._call_provider(self.provider, self._primary_pool, messages, context, policy, cancel, session_id)
            return reply, {}
        except ProviderError as e:
            metrics.incr("provider_failures_total")
            # Cancellation and malformed payloads are terminal: no fallback.
            if isinstance(e, (RequestCancelled, InvalidProviderResponseError)):
                raise self._surface(e) from e
            if not (policy.allow_fallback and self.fallback is not None):
                raise self._surface(e) from e
            primary_err = e

        metrics.incr("provider_fallbacks_total")
        logger.warning(
            f"[chat] primary provider failed ({type(primary_err).__name__}); "
            f"falling back {self.provider.name} -> {self.fallback.name}"
        )
        slog.log_event(
            "chat.fallback",
            session_id=session_id,
            original_provider=self.provider.name,
            actual_provider=self.fallback.name,
            error=type(primary_err).__name__,
        )
        try:
            reply = self._call_provider(
                self.fallback, self._fallback_pool, messages, context, policy, cancel, session_id
            )
        except ProviderError as e:
            metrics.incr("provider_failures_total")
            raise self._surface(e) from e
        return reply, {
            "fallback_used": True,
            "original_provider": self.provider.name,
            "actual_provider": self.fallback.name,
        }

    def send_message(
        self,
        session_id: str,
        message: str,
        user_id: Optional[str] = None,
        allow_fallback: Optional[bool] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Envelope:
        started = time.perf_counter()
        content_filtered: Optional[bool] = None
        try:
            # 1) Validating
            sid, text, oversized = self._validate(session_id, message)

            # 2) RateLimiting
            key = user_id.strip() if isinstance(user_id, str) and user_id.strip() else sid
            decision = self.limiter.check(key)
            if not decision.allowed:
                metrics.record_rate_limit_hit()
                slog.log_event("chat.rate_limited", session_id=sid, key_hash=slog.qhash(key),
                               retry_after_s=decision.reset_after_s)
                raise RateLimitError(retry_after_s=decision.reset_after_s)

            # 3) Sanitizing
            if oversized:
                text = truncate(text, self.config.max_message_chars)
            result = self.inbound.sanitize(text)
            content_filtered = result.flagged or oversized
            content = result.cleaned or REMOVED_MARKER
            if content_filtered:
                metrics.incr("content_filtered_total")

            # 4) Dispatching + 5) Composing, one unit per session
            policy = self._policy(allow_fallback)
            with self.sessions.lock(sid):
                session = self.sessions.get(sid)
                if session.status is SessionStatus.CLOSED:
                    raise SessionClosedError()
                history = [{"role": m.role.value, "content": m.content} for m in session.messages]
                provider_msgs = build_chat_messages(
                    session.context, history, content, history_turns=self.config.history_turns
                )
                with timer() as elapsed:
                    reply, fallback_meta = self._dispatch(provider_msgs, session.context, policy, cancel, sid)
                response_ms = elapsed()
                metrics.record_provider_latency(reply.provider, response_ms)

                out = self.outbound.sanitize(reply.content)
                answer = truncate(out.cleaned, self.config.max_reply_chars) or SAFE_REPLY
                if not self.outbound.is_clean(answer):
                    answer = SAFE_REPLY

                user_msg = Message(role=Role.USER, content=content, tokens=estimate_tokens(content))
                assistant_msg = Message(
                    role=Role.ASSISTANT,
                    content=answer,
                    tokens=reply.tokens if reply.tokens is not None else estimate_tokens(answer),
                    metadata={
                        "model": reply.model,
                        "provider": reply.provider,
                        "intent": classify_intent(content),
                        "output_filtered": out.flagged,
                    },
                )
                user_texts = [m.content for m in session.messages if m.role is Role.USER] + [content]
                profile = extract_profile(user_texts)
                context_update = {k: v for k, v in profile.items() if k not in session.context}
                updated = self.sessions.append_messages(
                    sid, [user_msg, assistant_msg], context_update=context_update, response_time_ms=response_ms
                )
        except ServiceError as e:
            if e.detail:
                logger.info(f"[chat] {e.code.value}: {e.detail}")
            meta: Dict[str, Any] = {}
            if content_filtered is not None:
                meta["content_filtered"] = content_filtered
            if isinstance(e, RateLimitError):
                meta["retry_after_s"] = round(e.retry_after_s, 3)
            return Envelope.fail(e, started, **meta)
        except Exception:
            logger.exception("[chat] unexpected failure in send_message")
            return Envelope.fail(ServiceUnavailableError(), started)

        tokens_used = user_msg.tokens + assistant_msg.tokens
        slog.log_event(
            "chat.message",
            session_id=sid,
            qhash=slog.qhash(content),
            content_filtered=content_filtered,
            provider=reply.provider,
            model=reply.model,
            tokens=tokens_used,
            response_ms=response_ms,
            fallback_used=bool(fallback_meta),
        )
        return Envelope.ok(
            {"response": assistant_msg, "user_message": user_msg, "session": updated},
            started,
            tokens_used=tokens_used,
            content_filtered=content_filtered,
            **fallback_meta,
        )
