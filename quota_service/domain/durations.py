"""Time-segment table and window arithmetic shared by rules and counters."""

from __future__ import annotations

import re
import time
from typing import Callable, Final

from .errors import InvalidSegmentError, ParseError

SEGMENT_SECONDS: Final[dict[str, int]] = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
    "month": 2592000,
    "year": 31536000,
}

# Segments whose windows start on absolute clock boundaries; the rest roll from "now".
ALIGNED_SEGMENTS: Final[frozenset[str]] = frozenset({"second", "minute", "hour", "day"})

_DURATION_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*(\d+)\s+([a-z]+?)s?\s*$", re.IGNORECASE)


def seconds_for(segment: str) -> int:
    """Return the window length in seconds for ``segment``."""
    try:
        return SEGMENT_SECONDS[segment]
    except (KeyError, TypeError):
        raise InvalidSegmentError(segment) from None


def now(clock: Callable[[], float] = time.time) -> int:
    """Return the current epoch time floored to whole seconds."""
    return int(clock())


def window_start(segment: str, at: int) -> int:
    """Return the epoch second at which the window containing ``at`` began.

    Parameters
    ----------
    segment:
        Time-segment name, e.g. ``"minute"``.
    at:
        Reference epoch timestamp in whole seconds.
    """
    length = seconds_for(segment)
    if segment in ALIGNED_SEGMENTS:
        return at - (at % length)
    return at


def window_expiry(segment: str, at: int) -> int:
    """Return the epoch second at which the window containing ``at`` ends.

    Aligned segments end on the next clock boundary so every key sharing the
    window agrees on its expiry. Rolling segments end one full length after
    ``at``. The result is always strictly greater than ``at``.

    Raises
    ------
    InvalidSegmentError
        When ``segment`` is not a recognised name.
    """
    return window_start(segment, at) + seconds_for(segment)


def start_of_minute(at: int) -> int:
    return window_start("minute", at)


def start_of_hour(at: int) -> int:
    return window_start("hour", at)


def parse_duration(text: str) -> int:
    """Convert strings such as ``"1 hour"`` or ``"15 minutes"`` into seconds."""
    if not isinstance(text, str):
        raise ParseError(f"duration must be a string, got {type(text).__name__}")
    match = _DURATION_PATTERN.match(text)
    if match is None:
        raise ParseError(f"malformed duration: {text!r}")
    count, unit = match.groups()
    length = SEGMENT_SECONDS.get(unit.lower())
    if length is None:
        raise ParseError(f"unknown duration unit in {text!r}")
    return int(count) * length
