"""Timing and memory instrumentation for pipeline steps."""
from __future__ import annotations

import logging
import resource
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class Stopwatch:
    """Elapsed wall-clock time since construction, in milliseconds."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._start) * 1000)


@contextmanager
def timed(operation: str, **context) -> Iterator[Stopwatch]:
    """Log "<operation> completed" with its duration when the block exits normally."""
    watch = Stopwatch()
    yield watch
    logger.info(
        f"{operation} completed",
        extra={"operation": operation, "duration_ms": watch.elapsed_ms(), **context},
    )


def log_memory_usage(context: str = "") -> None:
    """Log the peak resident set size of the process so far.

    The value only grows, so it is logged once a request has finished.
    """
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes on Linux
    peak_mb = peak / (1024 * 1024) if sys.platform == "darwin" else peak / 1024
    logger.info("Peak memory usage", extra={"context": context, "peak_rss_mb": round(peak_mb, 1)})
