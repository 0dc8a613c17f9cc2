"""Merging partial form submissions into a stored value tree."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .paths import encode_field_path, is_index_segment
from .schema import ChoiceField, GroupField, StepFieldSchema
from .values import clone_tree

logger = logging.getLogger(__name__)

__all__ = [
    "StepFieldUpdate",
    "apply_step_field_updates",
    "apply_step_field_removals",
    "merge_step_values",
    "collect_removed_indices",
    "compact_repeatable_groups",
    "gapped_list_paths",
    "live_item_indices",
]

# Container type to create below each path position, keyed by position.
ContainerPlan = Dict[int, type]


@dataclass(frozen=True)
class StepFieldUpdate:
    path: Tuple[str, ...]
    value: str


def _container_plan(schema: Optional[StepFieldSchema], path: Sequence[str]) -> ContainerPlan:
    """Resolve from the schema which intermediate positions hold lists or maps.

    Only repeatable groups hold lists; every other container is a map, even
    when a field or option id looks numeric. Positions the schema does not
    describe are left out of the plan.
    """

    plan: ContainerPlan = {}
    if schema is None:
        return plan
    fields = list(schema.fields)
    last = len(path) - 1
    i = 0
    while i < last:
        fdef = next((f for f in fields if f.id == path[i]), None)
        if isinstance(fdef, GroupField):
            if fdef.repeatable:
                plan[i] = list
                i += 1
                if i < last:
                    plan[i] = dict
            else:
                plan[i] = dict
            fields = list(fdef.fields)
            i += 1
        elif isinstance(fdef, ChoiceField):
            plan[i] = dict
            i += 1
            option = next((o for o in fdef.options if o.id == path[i]), None)
            if option is None:
                break
            if i < last:
                plan[i] = dict
            fields = list(option.fields)
            i += 1
        else:
            break
    return plan


def _new_container(plan: ContainerPlan, position: int, next_segment: str | None) -> Any:
    kind = plan.get(position)
    if kind is not None:
        return kind()
    return [] if is_index_segment(next_segment) else {}


def _fits(plan: ContainerPlan, position: int, child: Any) -> bool:
    kind = plan.get(position)
    if kind is not None:
        return isinstance(child, kind)
    return isinstance(child, (list, dict))


def _set_path_value(
    values: Dict[str, Any], path: Sequence[str], value: Any, plan: ContainerPlan
) -> None:
    current: Any = values
    last = len(path) - 1
    for i, segment in enumerate(path):
        next_segment = path[i + 1] if i < last else None

        if isinstance(current, list):
            if not is_index_segment(segment):
                logger.debug("STEP_FIELD_UPDATE_DROPPED path=%s reason=index_expected", path)
                return
            index = int(segment)
            while len(current) <= index:
                current.append({})
            if i == last:
                current[index] = value
                return
            if not _fits(plan, i, current[index]):
                current[index] = _new_container(plan, i, next_segment)
            current = current[index]
            continue

        if i == last:
            current[segment] = value
            return
        # A leaf (or a container of the wrong kind) in the middle of the path
        # is replaced by a fresh container.
        if not _fits(plan, i, current.get(segment)):
            current[segment] = _new_container(plan, i, next_segment)
        current = current[segment]


def _remove_path_value(values: Dict[str, Any], path: Sequence[str]) -> None:
    current: Any = values
    for segment in path[:-1]:
        if isinstance(current, list):
            if not is_index_segment(segment) or int(segment) >= len(current):
                return
            current = current[int(segment)]
            continue
        if not isinstance(current, dict):
            return
        current = current.get(segment)

    last = path[-1]
    if isinstance(current, list):
        if is_index_segment(last) and int(last) < len(current):
            # Leave a gap so sibling indexes stay stable within the request.
            current[int(last)] = None
        return
    if isinstance(current, dict):
        current.pop(last, None)


def apply_step_field_updates(
    existing: Dict[str, Any],
    updates: Iterable[StepFieldUpdate],
    schema: Optional[StepFieldSchema] = None,
) -> Dict[str, Any]:
    """Return a copy of ``existing`` with every update written in order.

    Missing intermediate containers are created. With a ``schema`` only
    repeatable groups become lists; without one a numeric next segment
    creates a list and anything else a map. Writing past the end of a list
    pads it with empty maps.
    """

    merged = clone_tree(existing) if isinstance(existing, dict) else {}
    for update in updates:
        if not update.path:
            continue
        plan = _container_plan(schema, update.path)
        _set_path_value(merged, update.path, update.value, plan)
    return merged


def apply_step_field_removals(
    existing: Dict[str, Any], removals: Iterable[Sequence[str]]
) -> Dict[str, Any]:
    """Return a copy of ``existing`` with the given paths removed.

    Map entries are deleted. List entries are replaced by ``None`` rather than
    spliced out.
    """

    pruned = clone_tree(existing) if isinstance(existing, dict) else {}
    for removal in removals:
        if not removal:
            continue
        _remove_path_value(pruned, removal)
    return pruned


def collect_removed_indices(removals: Iterable[Sequence[str]]) -> Dict[str, set[int]]:
    """Group index removals by the encoded path of the list they belong to."""

    removed: Dict[str, set[int]] = defaultdict(set)
    for removal in removals:
        if removal and is_index_segment(removal[-1]):
            removed[encode_field_path(removal[:-1])].add(int(removal[-1]))
    return dict(removed)


def live_item_indices(items: Any) -> List[int]:
    """Indexes of a repeatable group's list that are not removal gaps."""

    if not isinstance(items, list):
        return []
    return [index for index, item in enumerate(items) if isinstance(item, dict)]


def _compact_fields(fields, values: Dict[str, Any]) -> Dict[str, Any]:
    compacted = dict(values)
    for field in fields:
        value = values.get(field.id)
        if isinstance(field, GroupField):
            if field.repeatable and isinstance(value, list):
                compacted[field.id] = [
                    _compact_fields(field.fields, item) for item in value if isinstance(item, dict)
                ]
            elif isinstance(value, dict):
                compacted[field.id] = _compact_fields(field.fields, value)
        elif isinstance(field, ChoiceField) and isinstance(value, dict):
            options = dict(value)
            for option in field.options:
                option_value = value.get(option.id)
                if isinstance(option_value, dict):
                    options[option.id] = _compact_fields(option.fields, option_value)
            compacted[field.id] = options
    return compacted


def compact_repeatable_groups(schema: StepFieldSchema, values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop removal gaps from every repeatable group list, renumbering items."""

    if not isinstance(values, dict):
        return {}
    return _compact_fields(schema.fields, values)


def _renumbers(items: List[Any]) -> bool:
    live = live_item_indices(items)
    return live != list(range(len(live)))


def gapped_list_paths(schema: StepFieldSchema, values: Dict[str, Any]) -> List[Tuple[str, ...]]:
    """Paths of repeatable lists whose items would be renumbered by compaction."""

    found: List[Tuple[str, ...]] = []

    def walk(fields, current: Dict[str, Any], base: Tuple[str, ...]) -> None:
        for fdef in fields:
            value = current.get(fdef.id)
            path = (*base, fdef.id)
            if isinstance(fdef, GroupField):
                if fdef.repeatable and isinstance(value, list):
                    if _renumbers(value):
                        found.append(path)
                    for index in live_item_indices(value):
                        walk(fdef.fields, value[index], (*path, str(index)))
                elif isinstance(value, dict):
                    walk(fdef.fields, value, path)
            elif isinstance(fdef, ChoiceField) and isinstance(value, dict):
                for option in fdef.options:
                    option_value = value.get(option.id)
                    if isinstance(option_value, dict):
                        walk(option.fields, option_value, (*path, option.id))

    if isinstance(values, dict):
        walk(schema.fields, values, ())
    return found


def merge_step_values(
    existing: Dict[str, Any],
    updates: Sequence[StepFieldUpdate],
    removals: Sequence[Sequence[str]],
    *,
    schema: StepFieldSchema | None = None,
    compact: bool = False,
) -> Dict[str, Any]:
    """Apply ``updates`` then ``removals``; optionally compact repeatable lists."""

    merged = apply_step_field_updates(existing, updates, schema)
    merged = apply_step_field_removals(merged, removals)
    if compact and schema is not None:
        merged = compact_repeatable_groups(schema, merged)
    return merged
