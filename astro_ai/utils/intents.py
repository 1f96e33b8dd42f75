# =============================================
# File: astro_ai/utils/intents.py
# Purpose: Keyword intent classifier, reply templates and visitor-profile extraction
# =============================================
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List

INTENT_PATTERNS: Dict[str, List[re.Pattern]] = {
    "greeting": [
        re.compile(r"^(hi|hello|hey|good morning|good afternoon|good evening)\b", re.I),
        re.compile(r"^(greetings|salutations|howdy)\b", re.I),
    ],
    "pricing": [
        re.compile(r"\b(price|cost|fee|budget|quote|estimate|pricing)\b", re.I),
        re.compile(r"\b(how much|what does it cost|affordable)\b", re.I),
    ],
    "timeline": [
        re.compile(r"\b(when|timeline|schedule|delivery|duration|how long)\b", re.I),
        re.compile(r"\b(urgent|asap|immediate|quickly)\b", re.I),
    ],
    "portfolio": [
        re.compile(r"\b(portfolio|case study|examples|previous work|experience)\b", re.I),
        re.compile(r"\b(clients|projects|success stories)\b", re.I),
    ],
    "technical": [
        re.compile(r"\b(technical|architecture|implementation|integration|development)\b", re.I),
        re.compile(r"\b(api|database|infrastructure|deployment|security)\b", re.I),
    ],
    "service_inquiry": [
        re.compile(r"\b(service|consulting|help|solution|expertise|project)\b", re.I),
        re.compile(r"\b(need|want|looking for|interested in|require)\b", re.I),
    ],
}

RESPONSE_TEMPLATES: Dict[str, List[str]] = {
    "greeting": [
        "Hello! I'm the Astro Intelligence assistant. I can help you explore our AI and cloud services. What brings you here today?",
        "Hi there! Welcome to Astro Intelligence. Ask me about our consulting services or the technology challenges you are facing.",
    ],
    "service_overview": [
        "Astro Intelligence focuses on four areas: AI Consulting (strategy and implementation), Cloud Architecture "
        "(scalable infrastructure), ML Engineering (production-ready models) and Strategic Partnerships.",
        "We offer technology consulting across AI strategy, cloud infrastructure design, machine learning "
        "implementation and strategic technology partnerships.",
    ],
    "technical": [
        "Our engineers work with AWS, Azure and GCP, ML frameworks such as PyTorch and TensorFlow, and "
        "architectures built on microservices, Kubernetes and serverless.",
    ],
    "timeline": [
        "Typical timelines: AI strategy 2-4 weeks, cloud architecture design 3-6 weeks, ML model development "
        "6-12 weeks, full implementations 3-9 months. What timeline are you targeting?",
    ],
    "portfolio": [
        "Recent work includes an AI trading platform for a fintech client (75% faster processing), predictive "
        "analytics for healthcare and a retail recommendation engine (45% more conversions). Want details on one?",
    ],
    "next_steps": [
        "Would you like to schedule a consultation to discuss your specific needs?",
    ],
}

PRICING_BY_SIZE = {
    "startup": "Our startup-friendly packages start at $5,000 for focused consulting engagements.",
    "small": "For small businesses, typical projects range from $10,000 to $50,000.",
    "medium": "Mid-size companies usually invest $25,000 to $100,000 for comprehensive solutions.",
    "enterprise": "Enterprise engagements typically range from $75,000 to $500,000+ depending on scope.",
}

INDUSTRY_CLASSIFICATIONS: Dict[str, List[str]] = {
    "technology": ["tech", "software", "saas", "startup", "fintech"],
    "healthcare": ["health", "medical", "pharma", "biotech", "hospital"],
    "finance": ["finance", "banking", "insurance", "investment", "trading"],
    "retail": ["retail", "ecommerce", "consumer", "marketplace", "fashion"],
    "manufacturing": ["manufacturing", "industrial", "automotive", "aerospace"],
    "education": ["education", "university", "school", "learning", "training"],
    "government": ["government", "public sector", "federal", "municipal"],
    "nonprofit": ["nonprofit", "ngo", "charity", "foundation"],
}

COMPANY_SIZE_INDICATORS: Dict[str, List[str]] = {
    "startup": ["startup", "early stage", "seed", "series a", "small team"],
    "small": ["small business", "sme", "10-50", "growing", "local"],
    "medium": ["mid-size", "50-500", "established", "regional", "expanding"],
    "enterprise": ["enterprise", "500+", "multinational", "fortune"],
}

_CHALLENGES = {
    "scale": "scalability",
    "security": "security",
    "cost": "cost-optimization",
    "performance": "performance",
    "integration": "integration",
}

_INTERESTS = {
    "AI Consulting": ["artificial intelligence", " ai ", "ai strategy", "genai", "llm"],
    "Cloud Architecture": ["cloud", "aws", "azure", "gcp", "kubernetes"],
    "ML Engineering": ["machine learning", " ml ", "mlops", "model deployment"],
}


def classify_intent(text: str) -> str:
    t = (text or "").strip().lower()
    for intent, patterns in INTENT_PATTERNS.items():
        if any(p.search(t) for p in patterns):
            return intent
    return "general"


def _contains_any(text: str, words: Iterable[str]) -> bool:
    return any(w in text for w in words)


def extract_profile(user_texts: Iterable[str]) -> Dict[str, Any]:
    """
    Infer industry / company size / challenges / interests from what the visitor wrote.
    Only keys with a signal are returned, so the result can be merged into a session context.
    """
    text = " " + " ".join(t.lower() for t in user_texts if t) + " "
    profile: Dict[str, Any] = {}

    for industry, keywords in INDUSTRY_CLASSIFICATIONS.items():
        if _contains_any(text, keywords):
            profile["industry"] = industry
            break

    for size, indicators in COMPANY_SIZE_INDICATORS.items():
        if _contains_any(text, indicators):
            profile["company_size"] = size
            break

    challenges = [label for kw, label in _CHALLENGES.items() if kw in text]
    if challenges:
        profile["challenges"] = challenges

    interests = [name for name, kws in _INTERESTS.items() if _contains_any(text, kws)]
    if interests:
        profile["interests"] = interests

    return profile
