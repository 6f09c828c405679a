"""Expiry length parsing and the millisecond clock expiries are measured on."""

import math
import re
import time

from restcache.types import Duration

_DURATION_PATTERN = re.compile(r"^(\d+)(ms|s|m|h|d)$")
_UNITS: dict[str, int] = {
    "ms": 1,
    "s": 1000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
}
_NEVER = ("inf", "infinity", "never")


def parse_duration(duration: Duration) -> float:
    """Parse an expiry length to milliseconds.

    Integers pass through. ``math.inf`` (or ``"inf"``/``"never"``) means the
    entry never expires.
    """
    if isinstance(duration, bool):
        raise ValueError(f"Invalid duration: {duration!r}")
    if isinstance(duration, int):
        if duration < 0:
            raise ValueError(f"Invalid duration: {duration!r}")
        return duration
    if isinstance(duration, float):
        if math.isinf(duration) and duration > 0:
            return duration
        raise ValueError(f"Invalid duration: {duration!r}")

    if duration.lower() in _NEVER:
        return math.inf

    match = _DURATION_PATTERN.match(duration)
    if not match:
        raise ValueError(f"Invalid duration: {duration!r}")

    value, unit = match.groups()
    return int(value) * _UNITS[unit]


def now_ms() -> float:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)
