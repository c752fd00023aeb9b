"""Ordered probing of loosely structured provider responses.

Each provider keeps its candidate paths as a module-level tuple such as
("data.id", "request_id", "id"); a new field-name variant is one more entry.
Path segments that are digits index into lists.
"""
from typing import Any, Iterable


def dig(data: Any, path: str) -> Any:
    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def probe(data: Any, paths: Iterable[str]) -> Any:
    """First non-empty value found along `paths`."""
    for path in paths:
        value = dig(data, path)
        if value not in (None, "", [], {}):
            return value
    return None


def as_text(value: Any) -> str | None:
    """Flatten a probed value to a string: lists yield their first element."""
    if isinstance(value, list):
        return as_text(value[0]) if value else None
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return str(value)
    return None


def probe_text(data: Any, paths: Iterable[str]) -> str | None:
    for path in paths:
        text = as_text(dig(data, path))
        if text:
            return text
    return None
