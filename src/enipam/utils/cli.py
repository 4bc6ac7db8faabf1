"""Parsers for CLI argument formats."""

import re
from datetime import timedelta

from enipam.errors import ValidationError

_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")


def parse_filter(text: str | None) -> dict[str, str]:
    """
    Parse a ``k=v,k=v`` subnet filter.

    An empty or missing filter matches every subnet and parses to ``{}``.

    Raises:
        ValidationError: On a tuple without exactly one ``=`` or with an empty
            key or value.
    """
    if not text:
        return {}

    filters = {}
    for pair in text.split(","):
        parts = pair.split("=")
        if len(parts) != 2:
            raise ValidationError(f"Invalid filter specified: {pair!r}")
        key, value = parts
        if not key or not value:
            raise ValidationError(f"Zero length filter specified: {pair!r}")
        filters[key] = value
    return filters


def parse_duration(text: str) -> timedelta:
    """
    Parse a duration such as ``90s``, ``10m``, ``1h30m`` or ``1.5h``.

    A bare number is taken as seconds. A leading ``-`` negates the result;
    rejecting non-positive durations is left to the caller.

    Raises:
        ValidationError: If the text is not a duration.
    """
    raw = text.strip()
    if not raw:
        raise ValidationError("empty duration")

    sign = 1
    if raw[0] in "+-":
        sign = -1 if raw[0] == "-" else 1
        raw = raw[1:]

    try:
        return sign * timedelta(seconds=float(raw))
    except (ValueError, OverflowError):
        pass

    total = timedelta()
    pos = 0
    for match in _DURATION_PART.finditer(raw):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(raw):
        raise ValidationError(f"invalid duration: {text!r}")
    return sign * total
