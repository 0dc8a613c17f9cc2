import json
import logging
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def safe_json_loads(text: str | bytes | None, fallback: T) -> Any | T:
    """Parse ``text`` as JSON returning ``fallback`` when it is empty or malformed.

    Args:
        text: Raw JSON column content, possibly ``None``.
        fallback: Value returned when parsing is not possible.

    Returns:
        The decoded JSON value, or ``fallback``.
    """

    if text is None:
        return fallback
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    if not text.strip():
        return fallback
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        logger.debug("JSON_PARSE_FALLBACK chars=%d", len(text))
        return fallback


def load_typed(
    text: str | bytes | None,
    check: Callable[[Any], bool],
    fallback: T,
) -> Any | T:
    """Parse ``text`` and return it only when ``check`` accepts the result."""

    parsed = safe_json_loads(text, None)
    if parsed is None or not check(parsed):
        return fallback
    return parsed


def load_string_list(text: str | bytes | None) -> list[str]:
    """Return the list of non-empty strings stored in a JSON array column."""

    parsed = load_typed(text, lambda value: isinstance(value, list), [])
    collected: list[str] = []
    for entry in parsed:
        if entry is None:
            continue
        value = str(entry).strip()
        if value:
            collected.append(value)
    return collected


def load_int_list(text: str | bytes | None) -> list[int]:
    """Return the integers stored in a JSON array column, skipping junk entries."""

    parsed = load_typed(text, lambda value: isinstance(value, list), [])
    collected: list[int] = []
    for entry in parsed:
        if isinstance(entry, bool):
            continue
        try:
            collected.append(int(entry))
        except (TypeError, ValueError):
            continue
    return collected
