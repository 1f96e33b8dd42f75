# =============================================
# File: astro_ai/utils/ratelimit.py
# Purpose: Per-key sliding-window rate limiter
# =============================================
from __future__ import annotations

import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Deque, Optional, Protocol

from astro_ai.config import RateLimitConfig
from astro_ai.utils.locks import KeyedLocks


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    limit: int
    reset_after_s: float = 0.0


class RateLimitStore(Protocol):
    """Storage for per-key timestamp windows. Must make `admit` atomic per key."""

    def admit(self, key: str, now: float, limit: int, window_s: float) -> RateLimitDecision: ...

    def clear(self, key: Optional[str] = None) -> None: ...


def _expired(dq: Deque[float], cutoff: float) -> bool:
    try:
        return dq[-1] <= cutoff
    except IndexError:
        return True


class InMemoryRateLimitStore:
    """
    key -> deque of request timestamps, one lock per key.

    Every `sweep_every` admits, keys whose whole window has expired are
    dropped. The map is also capped at `max_keys`: past that, the least
    recently used keys are evicted (and start over with a fresh quota).
    """

    def __init__(self, max_keys: int = 500, sweep_every: int = 100) -> None:
        self._windows: "OrderedDict[str, Deque[float]]" = OrderedDict()
        self._locks = KeyedLocks()
        self._map_lock = threading.Lock()  # map structure only; taken after a key lock, never before
        self.max_keys = max(1, max_keys)
        self.sweep_every = max(1, sweep_every)
        self._admits = 0

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._windows)

    def _window_for(self, key: str) -> Deque[float]:
        with self._map_lock:
            dq = self._windows.get(key)
            if dq is None:
                dq = self._windows[key] = deque()
            else:
                self._windows.move_to_end(key)
            return dq

    def admit(self, key: str, now: float, limit: int, window_s: float) -> RateLimitDecision:
        with self._locks.hold(key):
            dq = self._window_for(key)

            # Drop timestamps outside the window
            cutoff = now - window_s
            while dq and dq[0] <= cutoff:
                dq.popleft()

            if len(dq) >= limit:
                reset_after = max(0.0, dq[0] + window_s - now) if dq else window_s
                decision = RateLimitDecision(False, 0, limit, reset_after)
            else:
                dq.append(now)
                reset_after = max(0.0, dq[0] + window_s - now)
                decision = RateLimitDecision(True, limit - len(dq), limit, reset_after)
        self._maybe_sweep(now - window_s)
        return decision

    def _maybe_sweep(self, cutoff: float) -> None:
        with self._map_lock:
            self._admits += 1
            overflow = len(self._windows) - self.max_keys
            if overflow <= 0 and self._admits % self.sweep_every:
                return
            idle = [k for k, dq in self._windows.items() if _expired(dq, cutoff)]
            skip = set(idle)
            lru = [k for k in self._windows if k not in skip][: max(0, overflow - len(idle))]
        for key in idle:
            self._evict(key, cutoff)
        for key in lru:
            self._evict(key, None)

    def _evict(self, key: str, cutoff: Optional[float]) -> None:
        # Re-check under the key's lock: it may have been used since the scan.
        with self._locks.hold(key):
            with self._map_lock:
                dq = self._windows.get(key)
                if dq is None:
                    return
                if cutoff is None or _expired(dq, cutoff):
                    del self._windows[key]

    def clear(self, key: Optional[str] = None) -> None:
        if key is None:
            with self._map_lock:
                self._windows.clear()
            return
        with self._locks.hold(key):
            with self._map_lock:
                self._windows.pop(key, None)

    def window(self, key: str) -> list[float]:
        """Copy of the timestamps currently retained for `key` (tests/inspection)."""
        with self._locks.hold(key):
            with self._map_lock:
                return list(self._windows.get(key, ()))


class RateLimiter:
    def __init__(
        self,
        limit: int = 20,
        window_seconds: float = 3600.0,
        store: Optional[RateLimitStore] = None,
        clock=time.time,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self.window_seconds = float(window_seconds)
        self.store: RateLimitStore = store or InMemoryRateLimitStore()
        self._clock = clock

    @classmethod
    def from_env(cls, prefix: str = "RL", default_max: int = 20, store: Optional[RateLimitStore] = None) -> "RateLimiter":
        cfg = RateLimitConfig.from_env(prefix=prefix, default_max=default_max)
        return cls(limit=cfg.max_requests, window_seconds=cfg.window_seconds, store=store)

    def check(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        """Record a request for `key` if it fits in the trailing window."""
        if not key:
            raise ValueError("rate limit key must be non-empty")
        ts = self._clock() if now is None else float(now)
        return self.store.admit(key, ts, self.limit, self.window_seconds)

    def reset(self, key: Optional[str] = None) -> None:
        """For tests: clear counters for one key or all keys."""
        self.store.clear(key)
