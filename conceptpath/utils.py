"""
Utility helpers for the Concept Path Engine.

Provides:
- Structured logging configuration with timestamps.
- Stage timing for pipeline steps.
- Half-up rounding for percentages.
- Case-insensitive keyword matching.
"""

import contextlib
import logging
import math
import time
from typing import Generator, Iterable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(
    level: int = logging.INFO,
    fmt: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt: str = "%Y-%m-%dT%H:%M:%S%z",
) -> None:
    """Configure the root logger with timestamped structured output."""
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt, force=True)


@contextlib.contextmanager
def timed(label: str) -> Generator[None, None, None]:
    """Context manager that logs elapsed wall-clock time for *label*."""
    t0 = time.monotonic()
    yield
    elapsed = time.monotonic() - t0
    logger.info("⏱  %s completed in %.3fs.", label, elapsed)


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> int:
    """Round a non-negative percentage the way the UI displays it (2.5 → 3)."""
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def split_goals(goal: str) -> list:
    """Split a free-text goal on commas into trimmed, non-empty keywords."""
    return [g.strip() for g in goal.split(",") if g.strip()]


def keyword_matches(keyword: str, text: str) -> bool:
    """Case-insensitive substring match of *keyword* in *text*."""
    return keyword.lower() in (text or "").lower()


def any_tag_matches(keyword: str, tags: Iterable[str]) -> bool:
    """``True`` if *keyword* equals one of *tags* (case-insensitive)."""
    needle = keyword.lower()
    return any(t.lower() == needle for t in tags)
