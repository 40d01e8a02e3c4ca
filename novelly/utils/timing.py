"""
Timing utilities for measuring pipeline phases.
"""
import time
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def now_ms() -> float:
    """Get current time in milliseconds using perf_counter for high precision."""
    return time.perf_counter() * 1000


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@contextmanager
def time_operation(label: str, log: Optional[logging.Logger] = None):
    """
    Log how long the wrapped block took, at debug level.

    Example:
        with time_operation("[Hydration] batch 1"):
            await run_batch()
    """
    start = now_ms()
    try:
        yield
    finally:
        elapsed = now_ms() - start
        (log or logger).debug(f"{label} took {elapsed:.2f}ms")
