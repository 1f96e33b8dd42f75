# =============================================
# File: astro_ai/utils/sanitize.py
# Purpose: Rule-table content sanitizer (XSS / SQLi / command injection / PII)
# =============================================
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Tuple

REMOVED_MARKER = "[REMOVED]"
REDACTED_MARKER = "[REDACTED]"

_ALLOWED_SCHEMES = ("http://", "https://", "kb://")
_WHITESPACE_RE = re.compile(r"\s+")


class Action(str, Enum):
    REDACT = "redact"  # replace with the marker token
    STRIP = "strip"    # delete
    FLAG = "flag"      # detect only


class Category(str, Enum):
    XSS = "xss"
    SQL = "sql_injection"
    COMMAND = "command_injection"
    DYNAMIC = "dynamic_execution"
    PII = "pii"
    ENCODING = "encoding"


@dataclass(frozen=True)
class Rule:
    name: str
    category: Category
    pattern: re.Pattern
    action: Action


def _rule(name: str, category: Category, pattern: str, action: Action, flags: int = re.IGNORECASE) -> Rule:
    return Rule(name, category, re.compile(pattern, flags), action)


# Order matters: XSS, SQL, command, dynamic execution, PII, encoding.
DEFAULT_RULES: Tuple[Rule, ...] = (
    # (a) markup / XSS
    _rule("script_block", Category.XSS, r"<\s*script\b[^>]*>.*?<\s*/\s*script\s*>", Action.REDACT, re.IGNORECASE | re.DOTALL),
    _rule("script_tag", Category.XSS, r"<\s*/?\s*script\b[^>]*>?", Action.REDACT),
    _rule("javascript_uri", Category.XSS, r"javascript\s*:", Action.REDACT),
    _rule(
        "event_handler",
        Category.XSS,
        r"\bon(?:abort|animation\w*|auxclick|before\w+|blur|change|click|contextmenu|copy|cut|dblclick|drag\w*|drop"
        r"|error|focus\w*|hashchange|input|invalid|key(?:down|press|up)|load\w*|message|mouse\w+|paste|pointer\w+"
        r"|reset|resize|scroll|select|show|submit|toggle|touch\w+|transition\w*|unload|wheel)\s*=",
        Action.REDACT,
    ),
    _rule("angle_brackets", Category.XSS, r"[<>]", Action.STRIP, 0),
    # (b) SQL injection
    _rule("sql_drop", Category.SQL, r"\bdrop\s+(?:table|database)\b", Action.REDACT),
    _rule("sql_delete", Category.SQL, r"\bdelete\s+from\b", Action.REDACT),
    _rule("sql_insert", Category.SQL, r"\binsert\s+into\b", Action.REDACT),
    _rule("sql_union", Category.SQL, r"\bunion\s+(?:all\s+)?select\b", Action.REDACT),
    _rule("sql_tautology", Category.SQL, r"'\s*or\s*'?\d+'?\s*=\s*'?\d+'?", Action.REDACT),
    _rule("sql_comment", Category.SQL, r"[;']\s*--|/\*.*?\*/", Action.REDACT, re.IGNORECASE | re.DOTALL),
    # (c) command injection
    _rule("cmd_rm", Category.COMMAND, r"(?:[;&|]+\s*)?\brm\s+-[a-z]*[rf][a-z]*\b(?:\s+\S+)?", Action.REDACT),
    _rule("cmd_subshell", Category.COMMAND, r"\$\([^)]*\)", Action.REDACT),
    _rule("cmd_backticks", Category.COMMAND, r"`[^`]*`", Action.REDACT),
    _rule("cmd_pipe_shell", Category.COMMAND, r"\|\s*(?:ba|z|k)?sh\b", Action.REDACT),
    _rule("cmd_sensitive_read", Category.COMMAND, r"(?:[;&|]+\s*)?\bcat\s+/etc/\S*", Action.REDACT),
    # (d) dynamic execution
    _rule("eval_call", Category.DYNAMIC, r"\beval\s*\(", Action.FLAG),
    _rule("function_ctor", Category.DYNAMIC, r"\bnew\s+Function\s*\(", Action.FLAG),
    _rule("set_timeout", Category.DYNAMIC, r"\bsetTimeout\s*\(", Action.FLAG),
    _rule("set_interval", Category.DYNAMIC, r"\bsetInterval\s*\(", Action.FLAG),
    # (e) PII (action decided by policy, see ContentSanitizer.pii_action)
    _rule("ssn", Category.PII, r"\b\d{3}-\d{2}-\d{4}\b", Action.FLAG, 0),
    _rule("credit_card", Category.PII, r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b", Action.FLAG, 0),
    _rule("email", Category.PII, r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", Action.FLAG, 0),
    _rule("phone", Category.PII, r"\(\d{3}\)\s*\d{3}-\d{4}|\b\d{3}[-.]\d{3}[-.]\d{4}\b", Action.FLAG, 0),
    _rule("street_address", Category.PII, r"\b\d{1,5}\s+\w+\s+(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln)\b", Action.FLAG),
    _rule("password", Category.PII, r"password\w*", Action.FLAG),
    _rule("token", Category.PII, r"token:\s*\S*", Action.FLAG),
    # (f) control characters and encoded variants
    _rule("control_chars", Category.ENCODING, r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F]", Action.STRIP, 0),
    _rule("url_encoded", Category.ENCODING, r"%(?:3C|3E|22|27)", Action.FLAG),
    _rule("html_entity", Category.ENCODING, r"&(?:lt|gt|quot|#x27|#39|#60|#62);", Action.FLAG),
    _rule("unicode_escape", Category.ENCODING, r"\\u[0-9A-Fa-f]{4}", Action.FLAG, 0),
)

# Characters that only matter to SQL payloads; dropped from search queries.
# Apostrophes inside words ("what's") survive.
_QUERY_PUNCT_RE = re.compile(r"(?<![A-Za-z])'|'(?![A-Za-z])|[;\"{}()]|--")


@dataclass(frozen=True)
class SanitizeResult:
    cleaned: str
    flagged: bool
    matched: Tuple[str, ...] = field(default_factory=tuple)


class ContentSanitizer:
    """
    Applies DEFAULT_RULES in order. Pure: same input, same output.

    pii_action controls what happens to PII matches (FLAG keeps the text,
    REDACT replaces it with REDACTED_MARKER). Everything else follows the rule's
    own action.
    """

    def __init__(
        self,
        rules: Iterable[Rule] = DEFAULT_RULES,
        marker: str = REMOVED_MARKER,
        pii_action: Action = Action.FLAG,
        pii_marker: str = REDACTED_MARKER,
    ) -> None:
        self.rules: Tuple[Rule, ...] = tuple(rules)
        self.marker = marker
        self.pii_action = pii_action
        self.pii_marker = pii_marker

    def _action_for(self, rule: Rule) -> Action:
        if rule.category is Category.PII:
            return self.pii_action
        return rule.action

    def _apply(self, text: str, marker: str, pii_marker: str) -> Tuple[str, List[str]]:
        matched: List[str] = []

        # Compatibility forms (full-width brackets, math letters) are normalized
        # first so the markup rules see what a browser would render.
        normalized = unicodedata.normalize("NFKC", text)
        if normalized != text:
            matched.append("unicode_normalized")
            text = normalized

        for rule in self.rules:
            if not rule.pattern.search(text):
                continue
            matched.append(rule.name)
            action = self._action_for(rule)
            if action is Action.REDACT:
                repl = pii_marker if rule.category is Category.PII else marker
                text = rule.pattern.sub(repl, text)
            elif action is Action.STRIP:
                text = rule.pattern.sub("", text)
        return text, matched

    def sanitize(self, text: str) -> SanitizeResult:
        if not text:
            return SanitizeResult("", False)
        cleaned, matched = self._apply(text, self.marker, self.pii_marker)
        cleaned = cleaned.strip()
        return SanitizeResult(cleaned, bool(matched), tuple(matched))

    def scrub(self, text: str) -> str:
        """
        Query / read-time variant: redactions delete instead of leaving a marker,
        SQL punctuation is dropped and whitespace collapsed.
        """
        if not text:
            return ""
        cleaned, _ = self._apply(text, "", "")
        cleaned = _QUERY_PUNCT_RE.sub(" ", cleaned)
        return collapse_ws(cleaned)

    def is_clean(self, text: str) -> bool:
        """True when no redacting rule matches (used to assert outputs)."""
        for rule in self.rules:
            if self._action_for(rule) is Action.REDACT and rule.pattern.search(text or ""):
                return False
        return True


def safe_url(url: str) -> str:
    if not url:
        return ""
    u = url.strip()
    if any(u.lower().startswith(s) for s in _ALLOWED_SCHEMES):
        return u
    return ""


def collapse_ws(text: str) -> str:
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def truncate(text: str, max_chars: int) -> str:
    if max_chars and len(text) > max_chars:
        return text[:max_chars].rstrip() + "…"
    return text
