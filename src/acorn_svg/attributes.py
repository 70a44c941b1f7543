"""Typed accessors over loosely-typed attribute dictionaries.

Acorn stores layer and graphic properties as property-list dictionaries whose
values may be numbers, booleans, strings or nested containers. The helpers
here coerce those values without ever raising, and report anything they do
not understand to a Diagnostics sink.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

logger = logging.getLogger(__name__)

# Keys that name the class of a record, in lookup order
CLASS_KEYS = ("Class", "class")

TRUE_STRINGS = frozenset(["true", "yes", "1"])


@dataclass
class Diagnostics:
    """Sink for non-fatal conversion messages.

    One instance is threaded through a conversion so callers can inspect
    exactly which messages were produced.
    """

    messages: list[str] = field(default_factory=list)

    def warns(self, message: str) -> None:
        """Record a message."""
        logger.debug("diagnostic: %s", message)
        self.messages.append(message)

    def warnf(self, fmt: str, *args: Any) -> None:
        """Record a printf-style formatted message."""
        self.warns(fmt % args if args else fmt)

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[str]:
        return iter(self.messages)


def bool_for_string(value: str) -> bool:
    """Convert a string to a boolean.

    Matching is case-insensitive. "true", "yes" and "1" (and any string
    starting with "t" or "y") are true; everything else is false.

    Examples:
        >>> bool_for_string("YES")
        True
        >>> bool_for_string("0")
        False
    """
    text = value.strip().lower()
    if text in TRUE_STRINGS:
        return True
    return text[:1] in ("t", "y")


def bool_for_key(
    data: dict,
    key: str,
    default: bool,
    diagnostics: Diagnostics | None = None,
) -> bool:
    """Get a boolean value, applying default if the key is absent.

    Args:
        data: Attribute dictionary.
        key: Key to look up.
        default: Value used when the key is missing or unusable.
        diagnostics: Sink for unexpected value types.

    Returns:
        The boolean value.
    """
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return bool_for_string(value)
    if isinstance(value, bytes):
        return bool_for_string(value.decode("utf-8", "replace"))
    if diagnostics is not None:
        diagnostics.warnf(
            'boolean key "%s" has unexpected value %r, using %s', key, value, default
        )
    return default


def float_for_key(data: dict, key: str, default: float = 0.0) -> float:
    """Get a numeric value as float; default if absent or non-numeric."""
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, (str, bytes)):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def string_for_key(data: dict, key: str) -> str | None:
    """Get a string value, decoding bytes as UTF-8."""
    value = data.get(key)
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return None


def dict_for_key(data: dict, key: str) -> dict | None:
    """Get a nested dictionary value."""
    value = data.get(key)
    return value if isinstance(value, dict) else None


def list_for_key(data: dict, key: str) -> list | None:
    """Get a nested array value."""
    value = data.get(key)
    if isinstance(value, (list, tuple)):
        return list(value)
    return None


def record_class(data: dict) -> str | None:
    """Return the class name of a graphic or layer record."""
    for key in CLASS_KEYS:
        value = data.get(key)
        if isinstance(value, str):
            return value
    return None


def warn_if_unknown_keys(
    data: dict,
    known_keys: Iterable[str],
    diagnostics: Diagnostics,
    context: str | None = None,
) -> list[str]:
    """Report every key of data not listed in known_keys.

    Args:
        data: Attribute dictionary (not modified).
        known_keys: Keys the caller understands.
        diagnostics: Sink receiving one message per unknown key.
        context: Fallback description when the record has no class.

    Returns:
        The unknown keys, in dictionary order.
    """
    known = set(known_keys)
    owner = record_class(data) or context or "record"
    unknown = [key for key in data if key not in known]
    for key in unknown:
        diagnostics.warnf('unknown key "%s" (in %s), ignoring', key, owner)
    return unknown
