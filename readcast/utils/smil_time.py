"""SMIL clock value parsing.

Converts the clock values used in ``clipBegin``/``clipEnd`` attributes to
seconds. Allowed forms:

    5:34:31.396  full clock    (hours:minutes:seconds.fraction)
    09:58        partial clock (minutes:seconds.fraction)
    12.345       bare seconds
    76.2s, 7.75h, 13min, 2345ms   timecount with a unit suffix

Parsing is lenient: a numeric fragment that cannot be read counts as 0,
so a malformed value degrades to an early offset instead of raising.
"""
import re

_FLOAT_PREFIX = re.compile(r'^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')
_INT_PREFIX = re.compile(r'^\s*([+-]?\d+)')


def _lenient_float(text: str) -> float:
    """Read the leading decimal number of ``text``; 0.0 when there is none."""
    match = _FLOAT_PREFIX.match(text)
    return float(match.group(1)) if match else 0.0


def _lenient_int(text: str) -> int:
    """Read the leading integer of ``text``; 0 when there is none."""
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def smil_time_to_seconds(time_str) -> float:
    """Convert a SMIL clock value to seconds.

    >>> smil_time_to_seconds("5:34:31.396")
    20071.396
    >>> smil_time_to_seconds("13min")
    780.0
    """
    if not time_str:
        return 0.0

    time_str = time_str.strip()

    if time_str.endswith('ms'):
        return _lenient_float(time_str[:-2]) / 1000
    if time_str.endswith('min'):
        return _lenient_float(time_str[:-3]) * 60
    if time_str.endswith('h'):
        return _lenient_float(time_str[:-1]) * 3600

    if time_str.endswith('s'):
        time_str = time_str[:-1]

    if ':' in time_str:
        parts = time_str.split(':')
        if len(parts) == 2:
            minutes = _lenient_int(parts[0])
            secs = _lenient_float(parts[1])
            return minutes * 60 + secs
        if len(parts) == 3:
            hours = _lenient_int(parts[0])
            minutes = _lenient_int(parts[1])
            secs = _lenient_float(parts[2])
            return hours * 3600 + minutes * 60 + secs
        return 0.0

    return _lenient_float(time_str)


__all__ = ['smil_time_to_seconds']
