# =============================================
# File: astro_ai/services/providers.py
# Purpose: LLM provider collaborators (OpenAI SDK v1 + offline template provider)
# =============================================
from __future__ import annotations

import zlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import openai
from openai import OpenAI

from astro_ai.config import LLMConfig
from astro_ai.utils.errors import (
    InvalidProviderResponseError,
    ProviderError,
    ProviderTimeoutError,
    TransientProviderError,
)
from astro_ai.utils.intents import (
    PRICING_BY_SIZE,
    RESPONSE_TEMPLATES,
    classify_intent,
)


@dataclass(frozen=True)
class ProviderReply:
    content: str
    model: str
    provider: str
    tokens: Optional[int] = None


class ProviderClient(Protocol):
    name: str

    def complete(
        self,
        messages: List[Dict[str, str]],
        timeout: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ProviderReply: ...


class OpenAIProvider:
    """
    Chat Completions via the OpenAI SDK. The SDK's own retries are disabled
    (max_retries=0); ChatService owns the retry policy.
    """
    name = "openai"

    def __init__(self, config: Optional[LLMConfig] = None, client: Any = None) -> None:
        self.config = config or LLMConfig.from_env()
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = OpenAI(api_key=self.config.api_key, max_retries=0)
        return self._client

    def complete(
        self,
        messages: List[Dict[str, str]],
        timeout: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ProviderReply:
        client = self._get_client()
        try:
            resp = client.chat.completions.create(
                model=self.config.model,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                messages=messages,
                timeout=timeout,
            )
        # Order matters: APITimeoutError subclasses APIConnectionError.
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(str(e)) from e
        except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as e:
            raise TransientProviderError(str(e)) from e
        except openai.APIStatusError as e:
            raise ProviderError(f"status {e.status_code}") from e

        choices = getattr(resp, "choices", None) or []
        if not choices:
            raise InvalidProviderResponseError("no choices in completion")
        content = getattr(choices[0].message, "content", None)
        if not isinstance(content, str) or not content.strip():
            raise InvalidProviderResponseError("empty completion content")

        usage = getattr(resp, "usage", None)
        tokens = getattr(usage, "completion_tokens", None) if usage is not None else None
        return ProviderReply(
            content=content.strip(),
            model=getattr(resp, "model", None) or self.config.model,
            provider=self.name,
            tokens=tokens,
        )


class TemplateProvider:
    """
    Offline provider: answers from canned templates chosen by intent.
    Deterministic (template picked by crc32 of the user text), never fails.
    Used when no API key is configured and as the fallback provider.
    """
    name = "template"
    model = "astro-templates-v1"

    def _pick(self, options: List[str], seed: str) -> str:
        return options[zlib.crc32(seed.encode("utf-8")) % len(options)]

    def complete(
        self,
        messages: List[Dict[str, str]],
        timeout: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ProviderReply:
        user_text = ""
        for m in reversed(messages):
            if m.get("role") == "user":
                user_text = m.get("content") or ""
                break
        ctx = context or {}
        intent = classify_intent(user_text)

        if intent == "greeting":
            text = self._pick(RESPONSE_TEMPLATES["greeting"], user_text)
        elif intent == "pricing":
            size = ctx.get("company_size")
            base = PRICING_BY_SIZE.get(size, "Project costs depend on scope; most engagements range from $10,000 to $100,000.")
            text = f"{base} {RESPONSE_TEMPLATES['next_steps'][0]}"
        elif intent in ("technical", "timeline", "portfolio"):
            text = self._pick(RESPONSE_TEMPLATES[intent], user_text)
        elif intent == "service_inquiry":
            text = f"{self._pick(RESPONSE_TEMPLATES['service_overview'], user_text)} {RESPONSE_TEMPLATES['next_steps'][0]}"
        else:
            text = (
                "Thanks for your message. I can tell you about our AI consulting, cloud architecture, "
                "ML engineering and partnership services. What would you like to know?"
            )

        industry = ctx.get("industry")
        if industry and intent in ("service_inquiry", "technical"):
            text += f" We have delivered several projects in {industry}."

        return ProviderReply(content=text, model=self.model, provider=self.name, tokens=None)


def default_providers(config: Optional[LLMConfig] = None) -> tuple:
    """(primary, fallback): OpenAI when a key is configured, else templates only."""
    cfg = config or LLMConfig.from_env()
    fallback = TemplateProvider()
    if cfg.api_key:
        return OpenAIProvider(cfg), fallback
    return fallback, None
