from __future__ import annotations

"""
Coerce oracle timestamps into float seconds.

Design intent:
- Treat every oracle timestamp as untrusted: numbers, "MM:SS", "HH:MM:SS", "12.5s".
- Never raise on bad input; unparseable values collapse to 0.0.
"""

import math
import re
from typing import Any

_LEADING_NUMBER_RE = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _finite_or_zero(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def _strict_part(part: str) -> float:
    stripped = part.strip()
    if not stripped:
        return 0.0
    try:
        return float(stripped)
    except ValueError:
        return math.nan


def _leading_float(text: str) -> float:
    match = _LEADING_NUMBER_RE.match(text)
    if match is None:
        return math.nan
    return float(match.group(0))


def parse_time_to_seconds(value: Any) -> float:
    """
    Convert a timestamp in any of the accepted shapes to seconds.

    Numbers pass through unchanged. Strings with two colon-separated parts are
    read as minutes:seconds, three parts as hours:minutes:seconds. Anything else
    is read as a leading float ("45.5", "12s"). None, empty and unparseable
    values return 0.0.
    """

    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return _finite_or_zero(float(value))

    text = str(value).strip()
    if not text:
        return 0.0

    if ":" in text:
        parts = [_strict_part(item) for item in text.split(":")]
        if len(parts) == 2:
            return _finite_or_zero(parts[0] * 60 + parts[1])
        if len(parts) == 3:
            return _finite_or_zero(parts[0] * 3600 + parts[1] * 60 + parts[2])

    return _finite_or_zero(_leading_float(text))
