"""Propagate linked date fields into the shipment's global variables."""

from __future__ import annotations

import logging
from typing import Any, AbstractSet, Dict, Iterator, List, Mapping, Optional, Tuple

from .merge import live_item_indices
from .schema import ChoiceField, DateField, GroupField, StepFieldSchema
from .values import as_mapping, has_string_value

logger = logging.getLogger(__name__)

__all__ = ["collect_linked_date_values", "sync_global_values"]


def _walk(fields, values: Mapping[str, Any]) -> Iterator[Tuple[str, str]]:
    for fdef in fields:
        value = values.get(fdef.id)
        if isinstance(fdef, DateField):
            if fdef.link_to_global and has_string_value(value):
                yield fdef.link_to_global, str(value).strip()
        elif isinstance(fdef, GroupField):
            if fdef.repeatable:
                for index in live_item_indices(value):
                    yield from _walk(fdef.fields, value[index])
            else:
                yield from _walk(fdef.fields, as_mapping(value))
        elif isinstance(fdef, ChoiceField):
            choice_values = as_mapping(value)
            for option in fdef.options:
                yield from _walk(option.fields, as_mapping(choice_values.get(option.id)))


def collect_linked_date_values(
    schema: StepFieldSchema, values: Mapping[str, Any]
) -> List[Tuple[str, str]]:
    """``(global_id, value)`` pairs for linked date fields holding a value, in schema order."""

    return list(_walk(schema.fields, as_mapping(values)))


def sync_global_values(
    schema: StepFieldSchema,
    values: Mapping[str, Any],
    current: Mapping[str, str],
    allowed_ids: AbstractSet[str],
) -> Optional[Dict[str, str]]:
    """Write linked date values into the shipment's global map.

    Later occurrences overwrite earlier ones. Globals outside ``allowed_ids``
    are ignored. Returns the new map, or ``None`` when nothing changed.
    """

    updated: Dict[str, str] = dict(current)
    for global_id, value in collect_linked_date_values(schema, values):
        if global_id not in allowed_ids:
            logger.debug("GLOBAL_LINK_IGNORED global_id=%s reason=not_declared", global_id)
            continue
        updated[global_id] = value
    if updated == dict(current):
        return None
    return updated
