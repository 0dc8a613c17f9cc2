"""Cross-step countdown timers and their freeze/resume lifecycle.

A number field that declares both ``linkToGlobal`` and ``stopCountdownPath``
counts the days elapsed since a shipment-wide date. Counting stops once the
referenced checkbox becomes truthy: the moment is recorded in the step's
freeze map and removed again if the checkbox is cleared.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from .merge import live_item_indices
from .paths import decode_field_path, encode_field_path
from .schema import ChoiceField, GroupField, NumberField, StepFieldSchema
from .values import StepValues, as_mapping, get_value_at_path, is_truthy

logger = logging.getLogger(__name__)

__all__ = [
    "StopCountdownRef",
    "CountdownField",
    "SiblingStep",
    "FreezeUpdate",
    "CountdownDisplay",
    "StepLookup",
    "parse_stop_countdown_path",
    "collect_countdown_fields",
    "map_stop_countdown_paths",
    "recompute_freeze_map",
    "cascade_freeze_updates",
    "parse_date_value",
    "days_since",
    "remaining_days",
    "format_countdown",
    "describe_countdown",
]

StepLookup = Callable[[int], Optional[Mapping[str, Any]]]


@dataclass(frozen=True)
class StopCountdownRef:
    """Weak reference to the checkbox that stops a countdown.

    ``step_id`` is ``None`` when the checkbox lives on the same step.
    """

    step_id: Optional[int]
    path: Tuple[str, ...]


@dataclass(frozen=True)
class CountdownField:
    encoded_path: str
    field: NumberField
    stop: StopCountdownRef


@dataclass(frozen=True)
class SiblingStep:
    step_id: int
    schema: StepFieldSchema
    values: StepValues


@dataclass(frozen=True)
class FreezeUpdate:
    step_id: int
    values: StepValues


@dataclass(frozen=True)
class CountdownDisplay:
    remaining_days: int
    frozen: bool
    text: str

    @property
    def overdue(self) -> bool:
        return self.remaining_days < 0


def parse_stop_countdown_path(raw: Optional[str]) -> Optional[StopCountdownRef]:
    """Parse ``path`` or ``<stepId>:path`` into a :class:`StopCountdownRef`."""

    if not raw or not raw.strip():
        return None
    text = raw.strip()
    step_part, sep, path_part = text.partition(":")
    if sep:
        try:
            step_id = int(step_part)
        except ValueError:
            logger.debug("STOP_COUNTDOWN_PATH_INVALID value=%s", text)
            return None
        segments = decode_field_path(path_part)
        return StopCountdownRef(step_id=step_id, path=tuple(segments)) if segments else None
    return StopCountdownRef(step_id=None, path=tuple(decode_field_path(text)))


def _walk_countdown_fields(fields, values: Mapping[str, Any], base: List[str]) -> Iterator[CountdownField]:
    for fdef in fields:
        path = [*base, fdef.id]
        value = values.get(fdef.id)
        if isinstance(fdef, NumberField) and fdef.is_countdown:
            stop = parse_stop_countdown_path(fdef.stop_countdown_path)
            if stop is not None:
                yield CountdownField(encode_field_path(path), fdef, stop)
        elif isinstance(fdef, GroupField):
            if fdef.repeatable:
                for index in live_item_indices(value):
                    yield from _walk_countdown_fields(fdef.fields, value[index], [*path, str(index)])
            else:
                yield from _walk_countdown_fields(fdef.fields, as_mapping(value), path)
        elif isinstance(fdef, ChoiceField):
            choice_values = as_mapping(value)
            for option in fdef.options:
                yield from _walk_countdown_fields(
                    option.fields, as_mapping(choice_values.get(option.id)), [*path, option.id]
                )


def collect_countdown_fields(
    schema: StepFieldSchema, values: Mapping[str, Any]
) -> List[CountdownField]:
    """Every countdown field reachable in ``values``, with repeatable items expanded."""

    return list(_walk_countdown_fields(schema.fields, as_mapping(values), []))


StepIdMapper = Callable[[int], Optional[int]]


def _remap_stop_path(raw: Optional[str], map_step_id: StepIdMapper) -> Optional[str]:
    if not raw or ":" not in raw:
        return raw
    step_part, _, path_part = raw.strip().partition(":")
    try:
        step_id = int(step_part)
    except ValueError:
        return raw
    mapped = map_step_id(step_id)
    if mapped is None:
        logger.debug("STOP_COUNTDOWN_STEP_UNMAPPED step_id=%s", step_id)
        return raw
    return f"{mapped}:{path_part}"


def _remap_fields(fields, map_step_id: StepIdMapper) -> list:
    remapped = []
    for fdef in fields:
        if isinstance(fdef, NumberField) and fdef.stop_countdown_path:
            stop = _remap_stop_path(fdef.stop_countdown_path, map_step_id)
            if stop != fdef.stop_countdown_path:
                fdef = fdef.model_copy(update={"stop_countdown_path": stop})
        elif isinstance(fdef, GroupField):
            fdef = fdef.model_copy(update={"fields": _remap_fields(fdef.fields, map_step_id)})
        elif isinstance(fdef, ChoiceField):
            options = [
                option.model_copy(update={"fields": _remap_fields(option.fields, map_step_id)})
                for option in fdef.options
            ]
            fdef = fdef.model_copy(update={"options": options})
        remapped.append(fdef)
    return remapped


def map_stop_countdown_paths(schema: StepFieldSchema, map_step_id: StepIdMapper) -> StepFieldSchema:
    """Point cross-step stop references at new step ids.

    Used when template steps are copied onto shipment steps: every
    ``<stepId>:path`` reference is rewritten through ``map_step_id``. Local
    paths and ids the mapper does not know (``None``) are left unchanged.
    """

    return schema.model_copy(update={"fields": _remap_fields(schema.fields, map_step_id)})


def _format_timestamp(now: datetime) -> str:
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.isoformat()


def _stop_value(
    stop: StopCountdownRef,
    step_id: int,
    own_values: Mapping[str, Any],
    lookup: Optional[StepLookup],
) -> Any:
    if stop.step_id is None or stop.step_id == step_id:
        tree = own_values
    elif lookup is None:
        return None
    else:
        tree = lookup(stop.step_id)
        if tree is None:
            logger.debug("STOP_COUNTDOWN_STEP_MISSING step_id=%s", stop.step_id)
            return None
    return get_value_at_path(tree, stop.path)


def recompute_freeze_map(
    schema: StepFieldSchema,
    step_values: StepValues,
    *,
    step_id: int,
    now: datetime,
    lookup: Optional[StepLookup] = None,
) -> Dict[str, str]:
    """Return the freeze map ``step_values`` should carry after this edit.

    A truthy stop value freezes the countdown at ``now`` unless it is already
    frozen, in which case the original timestamp is kept. A falsy stop value
    clears the freeze. Entries that no longer belong to a countdown field are
    dropped.
    """

    freeze: Dict[str, str] = {}
    for countdown in collect_countdown_fields(schema, step_values.values):
        stop_value = _stop_value(countdown.stop, step_id, step_values.values, lookup)
        existing = step_values.freeze.get(countdown.encoded_path)
        if is_truthy(stop_value):
            freeze[countdown.encoded_path] = existing or _format_timestamp(now)
        elif existing:
            logger.info(
                "COUNTDOWN_RESUMED step_id=%s path=%s", step_id, countdown.encoded_path
            )
    return freeze


def cascade_freeze_updates(
    edited_step_id: int,
    edited_values: Mapping[str, Any],
    siblings: Mapping[int, SiblingStep],
    *,
    now: datetime,
) -> List[FreezeUpdate]:
    """Recompute freeze maps of sibling steps whose stop condition lives on the edited step.

    Only siblings whose freeze map actually changes are returned. Siblings do
    not share state, so the order of evaluation does not matter.
    """

    trees: Dict[int, Mapping[str, Any]] = {
        step_id: sibling.values.values for step_id, sibling in siblings.items()
    }
    trees[edited_step_id] = edited_values

    updates: List[FreezeUpdate] = []
    for step_id, sibling in siblings.items():
        if step_id == edited_step_id:
            continue
        countdowns = collect_countdown_fields(sibling.schema, sibling.values.values)
        if not any(c.stop.step_id == edited_step_id for c in countdowns):
            continue
        freeze = recompute_freeze_map(
            sibling.schema,
            sibling.values,
            step_id=step_id,
            now=now,
            lookup=trees.get,
        )
        if freeze != sibling.values.freeze:
            updates.append(FreezeUpdate(step_id=step_id, values=sibling.values.with_freeze(freeze)))
    return updates


def parse_date_value(value: Any) -> Optional[date]:
    """Parse an ISO date or datetime string, ``None`` when it cannot be read."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def days_since(start: Any, anchor: Any) -> Optional[int]:
    """Whole days between two dates, both truncated to midnight."""

    start_date = parse_date_value(start)
    anchor_date = parse_date_value(anchor)
    if start_date is None or anchor_date is None:
        return None
    return (anchor_date - start_date).days


def _parse_total(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        total = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(total) or math.isinf(total):
        return None
    return total


def remaining_days(
    total: Any,
    global_date: Any,
    *,
    now: datetime,
    frozen_at: Optional[str] = None,
) -> Optional[int]:
    """``ceil(total - days since the global date)``, measured at the freeze time if frozen."""

    total_days = _parse_total(total)
    if total_days is None:
        return None
    elapsed = days_since(global_date, frozen_at or now)
    if elapsed is None:
        return None
    return math.ceil(total_days - elapsed)


def format_countdown(remaining: int) -> str:
    if remaining == 0:
        return "Countdown: today"
    if remaining > 0:
        return f"Countdown: {remaining} day{'' if remaining == 1 else 's'}"
    overdue = abs(remaining)
    return f"Overdue by {overdue} day{'' if overdue == 1 else 's'}"


def describe_countdown(
    countdown: CountdownField,
    step_values: StepValues,
    global_values: Mapping[str, str],
    *,
    now: datetime,
) -> Optional[CountdownDisplay]:
    """Remaining-days view of one countdown field, or ``None`` when it cannot be computed."""

    total = get_value_at_path(step_values.values, decode_field_path(countdown.encoded_path))
    frozen_at = step_values.freeze.get(countdown.encoded_path)
    remaining = remaining_days(
        total,
        global_values.get(countdown.field.link_to_global or ""),
        now=now,
        frozen_at=frozen_at,
    )
    if remaining is None:
        return None
    return CountdownDisplay(
        remaining_days=remaining,
        frozen=frozen_at is not None,
        text=format_countdown(remaining),
    )
