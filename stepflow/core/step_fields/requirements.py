"""Walk a step field schema against its value tree to find what is missing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import AbstractSet, Any, Dict, Iterable, List, Mapping, Sequence

from .choices import ChoiceResolution, decide_choice
from .merge import live_item_indices
from .paths import PATH_SEPARATOR, encode_field_path, step_field_doc_type
from .schema import (
    BooleanField,
    ChoiceField,
    ChoiceOption,
    DateField,
    FileField,
    GroupField,
    NumberField,
    StepFieldSchema,
    TextField,
)
from .values import as_mapping, has_string_value, is_truthy

logger = logging.getLogger(__name__)

__all__ = [
    "RequirementContext",
    "BooleanFieldOption",
    "collect_missing_field_paths",
    "has_missing_under_path",
    "has_any_field_value",
    "is_option_complete",
    "resolve_choice_field",
    "collect_step_file_doc_types",
    "collect_choice_resolutions",
    "collect_flat_field_values",
    "collect_boolean_field_options",
]

_TEXT_LIKE = (TextField, NumberField, DateField)


@dataclass(frozen=True)
class RequirementContext:
    step_id: int
    values: Mapping[str, Any]
    doc_types: AbstractSet[str] = field(default_factory=frozenset)

    def with_values(self, values: Any) -> "RequirementContext":
        return replace(self, values=as_mapping(values))

    def has_document(self, segments: Sequence[str]) -> bool:
        return step_field_doc_type(self.step_id, encode_field_path(segments)) in self.doc_types


@dataclass(frozen=True)
class BooleanFieldOption:
    encoded_path: str
    label: str


def has_any_field_value(
    fields: Sequence[Any],
    context: RequirementContext,
    base_path: Sequence[str],
    values: Any,
) -> bool:
    """Whether any field below ``base_path`` holds an actual value.

    File fields count as holding a value when their document was received.
    """

    container = as_mapping(values)
    for fdef in fields:
        field_path = [*base_path, fdef.id]
        value = container.get(fdef.id)
        if isinstance(fdef, _TEXT_LIKE):
            if has_string_value(value):
                return True
        elif isinstance(fdef, BooleanField):
            if is_truthy(value):
                return True
        elif isinstance(fdef, FileField):
            if context.has_document(field_path):
                return True
        elif isinstance(fdef, GroupField):
            if fdef.repeatable:
                for index in live_item_indices(value):
                    item_path = [*field_path, str(index)]
                    if has_any_field_value(fdef.fields, context, item_path, value[index]):
                        return True
            elif has_any_field_value(fdef.fields, context, field_path, value):
                return True
        elif isinstance(fdef, ChoiceField):
            choice_values = as_mapping(value)
            for option in fdef.options:
                option_path = [*field_path, option.id]
                if has_any_field_value(
                    option.fields, context, option_path, choice_values.get(option.id)
                ):
                    return True
    return False


def is_option_complete(
    option: ChoiceOption,
    context: RequirementContext,
    choice_path: Sequence[str],
    choice_values: Mapping[str, Any],
) -> bool:
    """An option is complete when it holds data and nothing required under it is missing."""

    option_path = [*choice_path, option.id]
    option_values = as_mapping(choice_values.get(option.id))
    if not has_any_field_value(option.fields, context, option_path, option_values):
        return False
    missing: set[str] = set()
    _collect_missing(option.fields, context, option_values, option_path, missing)
    return not missing


def resolve_choice_field(
    fdef: ChoiceField,
    context: RequirementContext,
    choice_path: Sequence[str],
    choice_values: Any,
) -> ChoiceResolution:
    """Compute the active/alternative/superseded status of each option."""

    choice_values = as_mapping(choice_values)
    has_data: Dict[str, bool] = {}
    complete: Dict[str, bool] = {}
    for option in fdef.options:
        option_path = [*choice_path, option.id]
        has_data[option.id] = has_any_field_value(
            option.fields, context, option_path, choice_values.get(option.id)
        )
        complete[option.id] = has_data[option.id] and is_option_complete(
            option, context, choice_path, choice_values
        )
    return decide_choice(fdef.options, has_data, complete)


def _collect_missing(
    fields: Sequence[Any],
    context: RequirementContext,
    values: Mapping[str, Any],
    base_path: Sequence[str],
    missing: set[str],
) -> None:
    for fdef in fields:
        field_path = [*base_path, fdef.id]
        encoded = encode_field_path(field_path)
        value = values.get(fdef.id)

        if isinstance(fdef, _TEXT_LIKE):
            if fdef.required and not has_string_value(value):
                missing.add(encoded)
            continue

        if isinstance(fdef, BooleanField):
            if fdef.required and not is_truthy(value):
                missing.add(encoded)
            continue

        if isinstance(fdef, FileField):
            if fdef.required and not context.has_document(field_path):
                missing.add(encoded)
            continue

        if isinstance(fdef, GroupField):
            if fdef.repeatable:
                indices = live_item_indices(value)
                any_data = False
                for index in indices:
                    item_path = [*field_path, str(index)]
                    item = value[index]
                    if has_any_field_value(fdef.fields, context, item_path, item):
                        any_data = True
                    _collect_missing(fdef.fields, context, item, item_path, missing)
            else:
                group_values = as_mapping(value)
                any_data = has_any_field_value(fdef.fields, context, field_path, group_values)
                _collect_missing(fdef.fields, context, group_values, field_path, missing)
            if fdef.required and not any_data:
                missing.add(encoded)
            continue

        if isinstance(fdef, ChoiceField):
            choice_values = as_mapping(value)
            resolution = resolve_choice_field(fdef, context, field_path, choice_values)
            if fdef.required and not resolution.any_data:
                missing.add(encoded)
            option = next(
                (o for o in fdef.options if o.id == resolution.active_option_id), None
            )
            if option is not None:
                _collect_missing(
                    option.fields,
                    context,
                    as_mapping(choice_values.get(option.id)),
                    [*field_path, option.id],
                    missing,
                )
            continue

        # shipment_goods carries no requirement of its own.


def collect_missing_field_paths(
    schema: StepFieldSchema, context: RequirementContext
) -> set[str]:
    """Return the encoded path of every required leaf that has no value.

    Superseded and alternative choice options are skipped, so only the active
    option of each choice contributes.
    """

    missing: set[str] = set()
    _collect_missing(schema.fields, context, as_mapping(context.values), [], missing)
    return missing


def has_missing_under_path(missing: Iterable[str], prefix: str) -> bool:
    """Whether ``prefix`` itself or any path below it is missing."""

    nested = f"{prefix}{PATH_SEPARATOR}"
    for path in missing:
        if path == prefix or path.startswith(nested):
            return True
    return False


def collect_choice_resolutions(
    schema: StepFieldSchema, context: RequirementContext
) -> Dict[str, ChoiceResolution]:
    """Map the encoded path of every reachable choice field to its resolution."""

    resolutions: Dict[str, ChoiceResolution] = {}

    def walk(fields: Sequence[Any], values: Mapping[str, Any], base: List[str]) -> None:
        for fdef in fields:
            path = [*base, fdef.id]
            value = values.get(fdef.id)
            if isinstance(fdef, GroupField):
                if fdef.repeatable:
                    for index in live_item_indices(value):
                        walk(fdef.fields, value[index], [*path, str(index)])
                else:
                    walk(fdef.fields, as_mapping(value), path)
            elif isinstance(fdef, ChoiceField):
                choice_values = as_mapping(value)
                resolutions[encode_field_path(path)] = resolve_choice_field(
                    fdef, context, path, choice_values
                )
                for option in fdef.options:
                    walk(option.fields, as_mapping(choice_values.get(option.id)), [*path, option.id])

    walk(schema.fields, as_mapping(context.values), [])
    return resolutions


def collect_flat_field_values(schema: StepFieldSchema, values: Mapping[str, Any]) -> Dict[str, str]:
    """Flatten non-blank text/number/date leaves into a ``label -> value`` map."""

    flat: Dict[str, str] = {}

    def walk(fields: Sequence[Any], current: Mapping[str, Any]) -> None:
        for fdef in fields:
            value = current.get(fdef.id)
            if isinstance(fdef, _TEXT_LIKE):
                if has_string_value(value):
                    flat[fdef.label or fdef.id] = str(value)
            elif isinstance(fdef, GroupField):
                if fdef.repeatable:
                    for index in live_item_indices(value):
                        walk(fdef.fields, value[index])
                elif isinstance(value, dict):
                    walk(fdef.fields, value)
            elif isinstance(fdef, ChoiceField):
                choice_values = as_mapping(value)
                for option in fdef.options:
                    option_value = choice_values.get(option.id)
                    if isinstance(option_value, dict):
                        walk(option.fields, option_value)

    walk(schema.fields, as_mapping(values))
    return flat


def collect_boolean_field_options(schema: StepFieldSchema) -> List[BooleanFieldOption]:
    """List checkbox fields that can serve as a countdown stop condition.

    Fields inside repeatable groups are left out since their path depends on
    an item index.
    """

    options: List[BooleanFieldOption] = []

    def walk(fields: Sequence[Any], path: List[str], labels: List[str]) -> None:
        for fdef in fields:
            field_path = [*path, fdef.id]
            field_labels = [*labels, fdef.label or fdef.id]
            if isinstance(fdef, BooleanField):
                options.append(
                    BooleanFieldOption(
                        encoded_path=encode_field_path(field_path),
                        label=" / ".join(field_labels),
                    )
                )
            elif isinstance(fdef, GroupField) and not fdef.repeatable:
                walk(fdef.fields, field_path, field_labels)
            elif isinstance(fdef, ChoiceField):
                for option in fdef.options:
                    walk(
                        option.fields,
                        [*field_path, option.id],
                        [*field_labels, option.label or option.id],
                    )

    walk(schema.fields, [], [])
    return options


def collect_step_file_doc_types(
    step_id: int, schema: StepFieldSchema, values: Mapping[str, Any]
) -> set[str]:
    """Document types of every file field a step can receive.

    Repeatable groups contribute one set per live item; an empty repeatable
    group still contributes its item ``0`` so the first upload has a target.
    """

    doc_types: set[str] = set()

    def walk(fields: Sequence[Any], current: Mapping[str, Any], base: List[str]) -> None:
        for fdef in fields:
            field_path = [*base, fdef.id]
            value = current.get(fdef.id)
            if isinstance(fdef, FileField):
                doc_types.add(step_field_doc_type(step_id, encode_field_path(field_path)))
            elif isinstance(fdef, GroupField):
                if fdef.repeatable:
                    indices = live_item_indices(value)
                    if not indices:
                        walk(fdef.fields, {}, [*field_path, "0"])
                    for index in indices:
                        walk(fdef.fields, value[index], [*field_path, str(index)])
                else:
                    walk(fdef.fields, as_mapping(value), field_path)
            elif isinstance(fdef, ChoiceField):
                choice_values = as_mapping(value)
                for option in fdef.options:
                    walk(
                        option.fields,
                        as_mapping(choice_values.get(option.id)),
                        [*field_path, option.id],
                    )

    walk(schema.fields, as_mapping(values), [])
    return doc_types
