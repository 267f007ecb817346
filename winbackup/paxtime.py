"""Parsing and formatting of PAX time records (seconds with an optional fraction)."""

from __future__ import annotations

import re

_NS_PER_SECOND = 10**9
_MAX_NANOSECOND_DIGITS = 9
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_SECONDS = re.compile(r"[+-]?[0-9]+")
_FRACTION = re.compile(r"[0-9]+")


class PaxTimeError(ValueError):
    """Raised when a PAX time record cannot be parsed."""


def parse_pax_time(text: str) -> int:
    """Parse a PAX time of the form ``%d.%d`` into nanoseconds since the Unix epoch.

    Negative timestamps are accepted; digits beyond nanosecond precision are truncated.
    """
    seconds_text, _, fraction = text.partition(".")
    if not _SECONDS.fullmatch(seconds_text):
        raise PaxTimeError(f"invalid PAX time {text!r}")
    seconds = int(seconds_text)
    if not _INT64_MIN <= seconds <= _INT64_MAX:
        raise PaxTimeError(f"PAX time {text!r} is out of range")
    if not fraction:
        return seconds * _NS_PER_SECOND

    if not _FRACTION.fullmatch(fraction):
        raise PaxTimeError(f"invalid PAX time {text!r}")
    digits = fraction[:_MAX_NANOSECOND_DIGITS].ljust(_MAX_NANOSECOND_DIGITS, "0")
    nanoseconds = int(digits)
    if seconds_text.startswith("-"):
        return seconds * _NS_PER_SECOND - nanoseconds
    return seconds * _NS_PER_SECOND + nanoseconds


def format_pax_time(ns: int) -> str:
    """Format nanoseconds since the Unix epoch as a PAX time string."""
    seconds, nanoseconds = divmod(ns, _NS_PER_SECOND)
    if nanoseconds == 0:
        return str(seconds)

    sign = ""
    if seconds < 0:
        sign = "-"
        seconds = -(seconds + 1)
        nanoseconds = _NS_PER_SECOND - nanoseconds
    return f"{sign}{seconds}.{nanoseconds:09d}".rstrip("0")