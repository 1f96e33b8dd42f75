# =============================================
# File: astro_ai/utils/retry.py
# Purpose: Retry policy, cancellation token and deadline-bound calls for
#          external collaborators (LLM providers, embedders)
# =============================================
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from astro_ai.utils.errors import PoolSaturatedError, ProviderError, ProviderTimeoutError, RequestCancelled

T = TypeVar("T")

_POLL_S = 0.02


class WorkerPool:
    """
    Bounded thread pool owned by one collaborator (a provider, an embedder).

    A timed-out call keeps its worker until the collaborator returns, so the
    pool counts every submitted call until it finishes. Once all workers are
    taken, `submit` raises PoolSaturatedError at once instead of queueing
    behind hung calls.
    """

    def __init__(self, name: str, max_workers: int = 8) -> None:
        self.name = name
        self.max_workers = max(1, int(max_workers))
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"astro-{name}")
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def _release(self, _fut: Future) -> None:
        with self._lock:
            self._in_flight -= 1

    def submit(self, fn: Callable[[], T]) -> Future:
        with self._lock:
            if self._in_flight >= self.max_workers:
                raise PoolSaturatedError(f"{self.name}: all {self.max_workers} workers busy")
            self._in_flight += 1
        try:
            fut = self._executor.submit(fn)
        except BaseException:
            with self._lock:
                self._in_flight -= 1
            raise
        fut.add_done_callback(self._release)
        return fut


# For callers that don't bring their own pool.
_default_pool = WorkerPool("io", max_workers=16)


class CancelToken:
    """
    Cooperative cancellation with an optional absolute deadline.
    `cancel()` may be called from any thread.
    """

    def __init__(self, timeout_s: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = (time.monotonic() + timeout_s) if timeout_s is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def sleep(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if cancelled meanwhile."""
        rem = self.remaining()
        if rem is not None and rem < seconds:
            self._event.wait(rem)
            self._event.set()
            return True
        return self._event.wait(seconds)


@dataclass
class RetryPolicy:
    """
    max_attempts counts the first call: 3 means two retries.
    Backoff before retry n (1-based) is base_delay_ms * 2**(n-1): 100, 200, 400 ms...
    `sleep` overrides the cancellable sleep (tests inject a recorder).
    """
    max_attempts: int = 3
    base_delay_ms: float = 100.0
    attempt_timeout_s: Optional[float] = 2.0
    allow_fallback: bool = False
    sleep: Optional[Callable[[float], None]] = None

    def backoff_s(self, attempt: int) -> float:
        return (self.base_delay_ms * (2 ** (attempt - 1))) / 1000.0


def call_with_deadline(
    fn: Callable[[], T],
    timeout_s: Optional[float],
    cancel: Optional[CancelToken] = None,
    pool: Optional[WorkerPool] = None,
) -> T:
    """
    Run `fn` on `pool` and wait at most `timeout_s` (and never past the
    token's deadline). The worker thread can't be killed; on timeout we stop
    waiting and let it finish in the background, still counted by the pool.
    """
    if cancel is not None and cancel.cancelled:
        raise RequestCancelled("cancelled before dispatch")

    budget = timeout_s
    if cancel is not None and cancel.remaining() is not None:
        rem = cancel.remaining()
        budget = rem if budget is None else min(budget, rem)

    fut: Future = (pool or _default_pool).submit(fn)
    started = time.monotonic()
    while True:
        done, _ = wait_futures([fut], timeout=_POLL_S)
        if done:
            return fut.result()
        if cancel is not None and cancel.cancelled:
            fut.cancel()
            raise RequestCancelled("cancelled while waiting")
        if budget is not None and time.monotonic() - started >= budget:
            fut.cancel()
            raise ProviderTimeoutError(f"no answer within {budget:.2f}s")


def call_with_retry(
    fn: Callable[[int], T],
    policy: RetryPolicy,
    cancel: Optional[CancelToken] = None,
    on_retry: Optional[Callable[[int, float, ProviderError], None]] = None,
) -> T:
    """
    Call fn(attempt) until it succeeds, raises a non-retryable ProviderError or
    attempts run out (then the last error is re-raised).
    """
    last: Optional[ProviderError] = None
    for attempt in range(1, max(1, policy.max_attempts) + 1):
        if cancel is not None and cancel.cancelled:
            raise RequestCancelled("cancelled between attempts")
        try:
            return fn(attempt)
        except ProviderError as e:
            if not e.retryable:
                raise
            last = e
            if attempt >= policy.max_attempts:
                break
            delay = policy.backoff_s(attempt)
            if on_retry is not None:
                on_retry(attempt, delay, e)
            if policy.sleep is not None:
                policy.sleep(delay)
            elif cancel is not None:
                if cancel.sleep(delay):
                    raise RequestCancelled("cancelled during backoff")
            else:
                time.sleep(delay)
    assert last is not None
    raise last
