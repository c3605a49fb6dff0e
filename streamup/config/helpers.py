"""Helpers for parsing byte-sized and duration CLI arguments."""

from datetime import timedelta

BYTE_UNITS: dict[str, int] = {
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
    "t": 1024**4,
    "tb": 1024**4,
}

DURATION_UNITS: dict[str, int] = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}


def parse_bytes(value: int | str) -> int:
    """Parse a part or stream size such as ``5MB``, ``64 mb`` or ``1tb``.

    Units are binary and case-insensitive; a bare number is bytes.

    Raises:
        ValueError: If there is no leading number or the unit is unknown.
    """
    if isinstance(value, int):
        return value

    text = str(value).strip().lower()
    unit = text.lstrip("0123456789")
    digits = text[: len(text) - len(unit)]
    unit = unit.strip()

    if not digits:
        raise ValueError(f"Invalid byte value: {value!r}")
    if not unit:
        return int(digits)
    if unit not in BYTE_UNITS:
        raise ValueError(f"Unknown byte unit in value: {value!r}")
    return int(digits) * BYTE_UNITS[unit]


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``90s``, ``24h``, ``7d`` or ``1h30m``.

    Args:
        value: Sequence of integer and unit pairs, units s, m, h, d, w.

    Returns:
        The parsed duration.

    Raises:
        ValueError: If the value is empty, malformed or uses an unknown unit.
    """
    normalized_value = value.strip().lower()
    if not normalized_value:
        raise ValueError("Empty duration")

    total_seconds = 0
    numeric_part = ""
    for character in normalized_value:
        if character.isdigit():
            numeric_part += character
            continue
        if character not in DURATION_UNITS or not numeric_part:
            raise ValueError(f"Invalid duration: {value!r}")
        total_seconds += int(numeric_part) * DURATION_UNITS[character]
        numeric_part = ""

    if numeric_part:
        raise ValueError(f"Duration is missing a unit: {value!r}")

    return timedelta(seconds=total_seconds)
