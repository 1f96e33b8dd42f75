# =============================================
# File: astro_ai/utils/metrics.py
# Purpose: In-process counters & latency histograms behind GET /metrics
# =============================================
from __future__ import annotations
from typing import Any, Dict, List, Optional
import threading
import time

_lock = threading.Lock()

COUNTERS = (
    "requests_total",
    "rate_limit_hits_total",
    "content_filtered_total",
    "provider_retries_total",
    "provider_fallbacks_total",
    "provider_failures_total",
    "searches_total",
)

# Upper bounds in ms; one extra overflow slot
LATENCY_BUCKETS_MS: List[int] = [50, 100, 200, 500, 1000, 2000, 5000, 10000]
_MAX_SAMPLES = 1000


class _Histogram:
    """Fixed buckets + a bounded window of raw samples for avg/p95. Caller holds _lock."""

    def __init__(self) -> None:
        self.counts: List[int] = [0] * (len(LATENCY_BUCKETS_MS) + 1)
        self.samples: List[float] = []
        self.total = 0

    def observe(self, ms: float) -> None:
        slot = next((i for i, upper in enumerate(LATENCY_BUCKETS_MS) if ms <= upper), len(LATENCY_BUCKETS_MS))
        self.counts[slot] += 1
        self.total += 1
        self.samples.append(ms)
        if len(self.samples) > _MAX_SAMPLES:
            del self.samples[: len(self.samples) - _MAX_SAMPLES]

    def summary(self) -> Dict[str, float]:
        xs = sorted(self.samples)
        return {
            "count": float(self.total),
            "avg_latency_ms": sum(xs) / len(xs) if xs else 0.0,
            "p95_latency_ms": xs[int(0.95 * (len(xs) - 1))] if xs else 0.0,
        }


_counters: Dict[str, int] = {}
_provider_usage: Dict[str, int] = {}
_error_codes: Dict[str, int] = {}
_requests = _Histogram()
_endpoints: Dict[str, _Histogram] = {}   # "METHOD /route/{template}" -> histogram
_providers: Dict[str, _Histogram] = {}   # provider name -> dispatch latency


def _bump(table: Dict[str, int], key: str, n: int = 1) -> None:
    table[key] = table.get(key, 0) + n


def record_request(latency_ms: float, provider: Optional[str], error_code: Optional[str] = None) -> None:
    with _lock:
        _bump(_counters, "requests_total")
        if provider:
            _bump(_provider_usage, provider)
        if error_code:
            _bump(_error_codes, error_code)
        _requests.observe(float(latency_ms))


def record_endpoint(method: str, path: str, latency_ms: float) -> None:
    """`path` should be the route template so ids in URLs don't multiply the keys."""
    with _lock:
        _endpoints.setdefault(f"{method.upper()} {path}", _Histogram()).observe(float(latency_ms))


def record_provider_latency(provider: str, latency_ms: float) -> None:
    with _lock:
        _providers.setdefault(provider, _Histogram()).observe(float(latency_ms))


def incr(name: str, n: int = 1) -> None:
    with _lock:
        _bump(_counters, name, n)


def record_rate_limit_hit() -> None:
    incr("rate_limit_hits_total")


def snapshot() -> Dict[str, Any]:
    with _lock:
        counters = {name: 0 for name in COUNTERS}
        counters.update(_counters)
        return {
            "counters": counters,
            "provider_usage": dict(_provider_usage),
            "errors": dict(_error_codes),
            "latency_ms": {
                "buckets": list(LATENCY_BUCKETS_MS) + ["+Inf"],
                "counts": list(_requests.counts),
            },
            "performance": {
                "endpoints": {k: h.summary() for k, h in _endpoints.items()},
                "providers": {k: h.summary() for k, h in _providers.items()},
                "generated_at": time.time(),
            },
        }


def reset() -> None:
    global _requests
    with _lock:
        _counters.clear()
        _provider_usage.clear()
        _error_codes.clear()
        _endpoints.clear()
        _providers.clear()
        _requests = _Histogram()
