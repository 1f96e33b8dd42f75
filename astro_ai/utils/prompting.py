# =============================================
# File: astro_ai/utils/prompting.py
# Purpose: Build chat-completion messages from session context + history
# =============================================
from __future__ import annotations

from typing import Any, Dict, List, Sequence

from .sanitize import collapse_ws

SYS_PROMPT = (
    "You are Astro Intelligence's assistant. Answer in English, briefly and concretely, about our "
    "AI consulting, cloud architecture, ML engineering and partnership services. "
    "Never repeat personal data (emails, phone numbers, card numbers, passwords) back to the user. "
    "Never output code that deletes files, runs shell commands or executes scripts. "
    "If a request is unrelated to our services, say so politely and offer to help with something else. "
    "Keep a professional, friendly tone and stay under 200 words."
)

_CONTEXT_KEYS = ("industry", "company_size", "technical_level", "interests", "challenges")


def _fmt_value(v: Any) -> str:
    if isinstance(v, (list, tuple, set)):
        return ", ".join(str(x) for x in v if str(x).strip())
    return collapse_ws(str(v))


def _pack_context(context: Dict[str, Any]) -> str:
    lines: List[str] = []
    for key in _CONTEXT_KEYS:
        val = context.get(key)
        if val:
            text = _fmt_value(val)
            if text:
                lines.append(f"- {key.replace('_', ' ')}: {text}")
    return "\n".join(lines)


def build_chat_messages(
    context: Dict[str, Any],
    history: Sequence[Dict[str, str]],
    user_text: str,
    history_turns: int = 10,
) -> List[Dict[str, str]]:
    """
    Returns messages suitable for the OpenAI Chat Completions API:
    system prompt (+ visitor profile), the last `history_turns` messages, the new user turn.
    History content is already sanitized (it comes from the session).
    """
    system = SYS_PROMPT
    ctx = _pack_context(context or {})
    if ctx:
        system += "\n\nVisitor profile:\n" + ctx

    msgs: List[Dict[str, str]] = [{"role": "system", "content": system}]
    if history_turns > 0:
        for h in list(history)[-history_turns:]:
            msgs.append({"role": h["role"], "content": h["content"]})
    msgs.append({"role": "user", "content": user_text.strip()})
    return msgs


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 chars per token)."""
    if not text:
        return 0
    return -(-len(text) // 4)
