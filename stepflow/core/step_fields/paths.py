"""Encoding of value-tree paths into form keys and document types."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence
from urllib.parse import quote, unquote

from stepflow.config import get_step_engine_config

from .schema import ChoiceField, FileField, GroupField, StepFieldSchema

__all__ = [
    "PATH_SEPARATOR",
    "FIELD_INPUT_PREFIX",
    "FIELD_REMOVAL_PREFIX",
    "StepFieldDocRef",
    "encode_field_path",
    "decode_field_path",
    "is_index_segment",
    "field_input_name",
    "field_removal_name",
    "step_field_doc_type",
    "parse_step_field_doc_type",
    "describe_field_path",
    "find_field_at_path",
    "is_file_field_required",
]

PATH_SEPARATOR = "."
FIELD_INPUT_PREFIX = "field:"
FIELD_REMOVAL_PREFIX = "field-remove:"

_INDEX_RE = re.compile(r"[0-9]+")
_SEGMENT_SAFE = "!*'()"


@dataclass(frozen=True)
class StepFieldDocRef:
    step_id: int
    path: str


def is_index_segment(segment: Optional[str]) -> bool:
    """Return ``True`` when ``segment`` looks like a list index."""

    return bool(segment) and _INDEX_RE.fullmatch(segment) is not None


def _encode_segment(segment: str) -> str:
    # ``quote`` never escapes "." so the separator is escaped by hand.
    return quote(segment, safe=_SEGMENT_SAFE).replace(PATH_SEPARATOR, "%2E")


def encode_field_path(segments: Sequence[str]) -> str:
    """Join ``segments`` into a single storage key.

    Each segment is percent-encoded, separator included, so that
    ``decode_field_path(encode_field_path(p)) == p`` for every path made of
    non-empty segments.
    """

    return PATH_SEPARATOR.join(_encode_segment(str(segment)) for segment in segments)


def decode_field_path(path: Optional[str]) -> list[str]:
    """Split an encoded path back into its segments."""

    if not path:
        return []
    return [unquote(segment) for segment in path.split(PATH_SEPARATOR)]


def field_input_name(segments: Sequence[str]) -> str:
    return f"{FIELD_INPUT_PREFIX}{encode_field_path(segments)}"


def field_removal_name(segments: Sequence[str]) -> str:
    return f"{FIELD_REMOVAL_PREFIX}{encode_field_path(segments)}"


def step_field_doc_type(step_id: int, encoded_path: str) -> str:
    """Return the document type under which a file field's upload is registered."""

    prefix = get_step_engine_config().doc_prefix
    return f"{prefix}{step_id}:{encoded_path}"


def parse_step_field_doc_type(doc_type: str) -> StepFieldDocRef | None:
    """Inverse of :func:`step_field_doc_type`; ``None`` for other document types."""

    prefix = get_step_engine_config().doc_prefix
    if not doc_type or not doc_type.startswith(prefix):
        return None
    step_part, sep, path = doc_type[len(prefix):].partition(":")
    if not sep:
        return None
    try:
        step_id = int(step_part)
    except ValueError:
        return None
    return StepFieldDocRef(step_id=step_id, path=path)


def describe_field_path(schema: StepFieldSchema, segments: Sequence[str]) -> str | None:
    """Render a path as the human readable chain of labels it walks through.

    Numeric segments are only read as item indexes below a repeatable group;
    anywhere else they are matched against field ids like any other segment.
    """

    labels: list[str] = []
    fields = list(schema.fields)
    idx = 0
    while idx < len(segments):
        segment = segments[idx]
        field = next((f for f in fields if f.id == segment), None)
        if field is None:
            break
        labels.append(field.label or field.id)

        if isinstance(field, GroupField):
            idx += 1
            if field.repeatable and idx < len(segments) and is_index_segment(segments[idx]):
                labels.append(f"Item {int(segments[idx]) + 1}")
                idx += 1
            fields = list(field.fields)
            continue
        if isinstance(field, ChoiceField):
            idx += 1
            option_id = segments[idx] if idx < len(segments) else None
            option = next((o for o in field.options if o.id == option_id), None)
            if option is None:
                break
            labels.append(option.label or option.id)
            fields = list(option.fields)
            idx += 1
            continue
        idx += 1

    if not labels:
        return None
    return " / ".join(labels)


def find_field_at_path(schema: StepFieldSchema, segments: Sequence[str]):
    """Return the field definition addressed by ``segments`` or ``None``."""

    fields = list(schema.fields)
    idx = 0
    while idx < len(segments):
        field = next((f for f in fields if f.id == segments[idx]), None)
        if field is None:
            return None
        if idx == len(segments) - 1:
            return field
        idx += 1
        if isinstance(field, GroupField):
            if field.repeatable:
                if not is_index_segment(segments[idx]):
                    return None
                idx += 1
                if idx == len(segments):
                    return None
            fields = list(field.fields)
            continue
        if isinstance(field, ChoiceField):
            option = next((o for o in field.options if o.id == segments[idx]), None)
            if option is None:
                return None
            idx += 1
            if idx == len(segments):
                return None
            fields = list(option.fields)
            continue
        return None
    return None


def is_file_field_required(schema: StepFieldSchema, segments: Sequence[str]) -> bool:
    field = find_field_at_path(schema, segments)
    return isinstance(field, FileField) and field.required
