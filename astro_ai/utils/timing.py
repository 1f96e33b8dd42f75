# astro_ai/utils/timing.py
import time
from contextlib import contextmanager


@contextmanager
def timer():
    """Yields a callable returning elapsed milliseconds (float, 3 decimals)."""
    t0 = time.perf_counter()
    yield lambda: round((time.perf_counter() - t0) * 1000, 3)
