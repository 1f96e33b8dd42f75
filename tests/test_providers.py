# =============================================
# File: tests/test_providers.py
# Purpose: OpenAI provider error mapping (fake SDK client) + template provider
# =============================================
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

from types import SimpleNamespace

import httpx
import openai
import pytest

from astro_ai.config import LLMConfig
from astro_ai.services.providers import (
    OpenAIProvider,
    TemplateProvider,
    default_providers,
)
from astro_ai.utils.errors import (
    InvalidProviderResponseError,
    ProviderError,
    ProviderTimeoutError,
    TransientProviderError,
)

_REQ = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
MESSAGES = [{"role": "system", "content": "sys"}, {"role": "user", "content": "Hello"}]


class FakeCompletions:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.result


def _completion(content="Hi! How can I help?", tokens=7, model="gpt-4o-mini-2024"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        model=model,
        usage=SimpleNamespace(completion_tokens=tokens),
    )


def _provider(result=None, error=None):
    completions = FakeCompletions(result=result, error=error)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    cfg = LLMConfig(model="gpt-4o-mini", temperature=0.1, max_tokens=200, api_key="sk-test")
    return OpenAIProvider(cfg, client=client), completions


def _status(cls, code):
    return cls(f"status {code}", response=httpx.Response(code, request=_REQ), body=None)


# ---------- OpenAI ----------

def test_openai_reply_is_mapped():
    provider, completions = _provider(result=_completion("  Hi! How can I help?  "))
    reply = provider.complete(MESSAGES, timeout=1.5)
    assert reply.content == "Hi! How can I help?"
    assert reply.provider == "openai"
    assert reply.model == "gpt-4o-mini-2024"
    assert reply.tokens == 7
    assert completions.kwargs["timeout"] == 1.5
    assert completions.kwargs["model"] == "gpt-4o-mini"
    assert completions.kwargs["messages"] == MESSAGES


@pytest.mark.parametrize(
    "error, expected",
    [
        (openai.APITimeoutError(request=_REQ), ProviderTimeoutError),
        (openai.APIConnectionError(request=_REQ), TransientProviderError),
        (_status(openai.RateLimitError, 429), TransientProviderError),
        (_status(openai.InternalServerError, 500), TransientProviderError),
    ],
)
def test_transient_sdk_errors_are_retryable(error, expected):
    provider, _ = _provider(error=error)
    with pytest.raises(expected) as ei:
        provider.complete(MESSAGES)
    assert ei.value.retryable is True


@pytest.mark.parametrize("cls, code", [(openai.BadRequestError, 400), (openai.AuthenticationError, 401)])
def test_client_errors_are_not_retryable(cls, code):
    provider, _ = _provider(error=_status(cls, code))
    with pytest.raises(ProviderError) as ei:
        provider.complete(MESSAGES)
    assert ei.value.retryable is False
    assert str(code) in str(ei.value)


@pytest.mark.parametrize(
    "result",
    [
        SimpleNamespace(choices=[], model="m", usage=None),
        _completion(content=""),
        _completion(content=None),
    ],
)
def test_unusable_completions_are_invalid(result):
    provider, _ = _provider(result=result)
    with pytest.raises(InvalidProviderResponseError):
        provider.complete(MESSAGES)


def test_missing_usage_leaves_tokens_unset():
    provider, _ = _provider(result=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content="ok"))], model=None, usage=None))
    reply = provider.complete(MESSAGES)
    assert reply.tokens is None
    assert reply.model == "gpt-4o-mini"


# ---------- Templates ----------

def _ask(text, context=None):
    return TemplateProvider().complete([{"role": "user", "content": text}], context=context)


def test_template_greeting():
    reply = _ask("Hello there")
    assert reply.provider == "template"
    assert "Astro Intelligence" in reply.content


def test_template_pricing_uses_company_size():
    assert "$5,000" in _ask("How much does it cost?", {"company_size": "startup"}).content
    assert "$75,000" in _ask("What is the price?", {"company_size": "enterprise"}).content
    assert "depend on scope" in _ask("What is the price?").content


def test_template_mentions_industry_for_service_questions():
    reply = _ask("I need consulting help", {"industry": "healthcare"})
    assert "healthcare" in reply.content
    assert "consultation" in reply.content


def test_template_is_deterministic():
    assert _ask("Hi").content == _ask("Hi").content


def test_template_handles_unknown_topics():
    assert _ask("xyzzy").content.startswith("Thanks for your message")


def test_default_providers_follow_api_key():
    primary, fallback = default_providers(LLMConfig(api_key="sk-test"))
    assert primary.name == "openai" and fallback.name == "template"
    primary, fallback = default_providers(LLMConfig(api_key=None))
    assert primary.name == "template" and fallback is None
