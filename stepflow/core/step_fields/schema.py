"""Typed step field schema and tolerant parsing of stored schema JSON."""

from __future__ import annotations

import logging
from typing import Annotated, Any, Iterable, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stepflow.config import get_step_engine_config
from stepflow.util.json_tools import load_string_list, safe_json_loads

logger = logging.getLogger(__name__)

__all__ = [
    "FREEZE_KEY",
    "FIELD_TYPES",
    "TextField",
    "NumberField",
    "DateField",
    "BooleanField",
    "FileField",
    "GroupField",
    "ChoiceOption",
    "ChoiceField",
    "ShipmentGoodsField",
    "StepFieldDefinition",
    "StepFieldSchema",
    "parse_step_field_schema",
    "schema_from_legacy_fields",
    "resolve_step_schema",
]

# Reserved top-level key under which the countdown freeze map is persisted.
FREEZE_KEY = "__countdown_freeze__"


class _FieldBase(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    id: str
    label: str = ""
    required: bool = False

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("field id must not be blank")
        return value

    @field_validator("label", mode="before")
    @classmethod
    def _label_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("required", mode="before")
    @classmethod
    def _required_flag(cls, value: Any) -> bool:
        return bool(value)


class TextField(_FieldBase):
    type: Literal["text"] = "text"
    link_to_global: Optional[str] = Field(default=None, alias="linkToGlobal")


class DateField(_FieldBase):
    type: Literal["date"] = "date"
    link_to_global: Optional[str] = Field(default=None, alias="linkToGlobal")


class NumberField(_FieldBase):
    type: Literal["number"] = "number"
    link_to_global: Optional[str] = Field(default=None, alias="linkToGlobal")
    stop_countdown_path: Optional[str] = Field(default=None, alias="stopCountdownPath")

    @property
    def is_countdown(self) -> bool:
        """Whether this field counts days since a global date until a stop flag."""

        return bool(self.link_to_global) and bool(self.stop_countdown_path)


class BooleanField(_FieldBase):
    type: Literal["boolean"] = "boolean"


class FileField(_FieldBase):
    type: Literal["file"] = "file"


class ShipmentGoodsField(_FieldBase):
    type: Literal["shipment_goods"] = "shipment_goods"


class GroupField(_FieldBase):
    type: Literal["group"] = "group"
    repeatable: bool = False
    fields: List["StepFieldDefinition"] = Field(default_factory=list)


class ChoiceOption(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    label: str = ""
    is_final: bool = False
    fields: List["StepFieldDefinition"] = Field(default_factory=list)
    customer_message: Optional[str] = None
    customer_message_visible: bool = False

    @field_validator("is_final", "customer_message_visible", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return bool(value)


class ChoiceField(_FieldBase):
    type: Literal["choice"] = "choice"
    options: List[ChoiceOption] = Field(default_factory=list)


StepFieldDefinition = Annotated[
    Union[
        TextField,
        NumberField,
        DateField,
        BooleanField,
        FileField,
        GroupField,
        ChoiceField,
        ShipmentGoodsField,
    ],
    Field(discriminator="type"),
]

FIELD_TYPES = {
    "text": TextField,
    "number": NumberField,
    "date": DateField,
    "boolean": BooleanField,
    "file": FileField,
    "group": GroupField,
    "choice": ChoiceField,
    "shipment_goods": ShipmentGoodsField,
}

GroupField.model_rebuild()
ChoiceOption.model_rebuild()
ChoiceField.model_rebuild()


class StepFieldSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: Literal[1] = 1
    fields: List[StepFieldDefinition] = Field(default_factory=list)

    def to_json_dict(self) -> dict[str, Any]:
        """Return the storage representation (camelCase keys, no ``None`` values)."""

        return self.model_dump(by_alias=True, exclude_none=True)


def _reject(raw: Any, reason: str) -> None:
    if not get_step_engine_config().log_schema_rejections:
        return
    field_id = raw.get("id") if isinstance(raw, Mapping) else None
    field_type = raw.get("type") if isinstance(raw, Mapping) else None
    logger.warning(
        "STEP_FIELD_SCHEMA_SKIPPED id=%s type=%s reason=%s", field_id, field_type, reason
    )


def _parse_fields(raw_fields: Any) -> list:
    if not isinstance(raw_fields, list):
        return []

    parsed: list = []
    seen: set[str] = set()
    for raw in raw_fields:
        field = _parse_field(raw)
        if field is None:
            continue
        if field.id in seen:
            _reject(raw, "duplicate_id")
            continue
        seen.add(field.id)
        parsed.append(field)
    return parsed


def _parse_option(raw: Any) -> ChoiceOption | None:
    if not isinstance(raw, Mapping):
        return None
    payload = dict(raw)
    payload["fields"] = _parse_fields(raw.get("fields"))
    try:
        return ChoiceOption.model_validate(payload)
    except ValidationError as exc:
        _reject(raw, f"invalid_option:{exc.error_count()}")
        return None


def _parse_field(raw: Any):
    if not isinstance(raw, Mapping):
        _reject(raw, "not_mapping")
        return None

    model = FIELD_TYPES.get(raw.get("type"))
    if model is None:
        _reject(raw, "unknown_type")
        return None
    if raw.get("id") == FREEZE_KEY:
        _reject(raw, "reserved_id")
        return None

    payload = dict(raw)
    if model is GroupField:
        payload["fields"] = _parse_fields(raw.get("fields"))
    elif model is ChoiceField:
        options: list[ChoiceOption] = []
        seen: set[str] = set()
        raw_options = raw.get("options")
        for raw_option in raw_options if isinstance(raw_options, list) else []:
            option = _parse_option(raw_option)
            if option is None or option.id in seen:
                continue
            seen.add(option.id)
            options.append(option)
        payload["options"] = options

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        _reject(raw, f"invalid:{exc.error_count()}")
        return None


def parse_step_field_schema(value: str | bytes | Mapping[str, Any] | None) -> StepFieldSchema:
    """Parse stored schema JSON into a :class:`StepFieldSchema`.

    Malformed JSON yields an empty schema. Entries with an unknown ``type`` tag
    or an invalid shape are dropped; the rest of the schema is kept.
    """

    parsed = value if isinstance(value, Mapping) else safe_json_loads(value, None)
    if not isinstance(parsed, Mapping):
        return StepFieldSchema()
    return StepFieldSchema(fields=_parse_fields(parsed.get("fields")))


def schema_from_legacy_fields(labels: Iterable[str]) -> StepFieldSchema:
    """Synthesize a schema of required text fields from legacy field names."""

    fields = []
    seen: set[str] = set()
    for label in labels:
        if not label or label in seen or label == FREEZE_KEY:
            continue
        seen.add(label)
        fields.append(TextField(id=label, label=label, required=True))
    return StepFieldSchema(fields=fields)


def resolve_step_schema(
    schema_json: str | bytes | None,
    legacy_required_fields_json: str | bytes | None,
) -> StepFieldSchema:
    """Return the stored schema, or the legacy fallback when it has no fields."""

    schema = parse_step_field_schema(schema_json)
    if schema.fields:
        return schema
    return schema_from_legacy_fields(load_string_list(legacy_required_fields_json))
