"""Pick shipment identifiers out of a step's flattened field values."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Optional

_SEPARATORS_RE = re.compile(r"[_/\\-]+")
_NON_WORD_RE = re.compile(r"[^a-z0-9 ]+")
_SPACES_RE = re.compile(r"\s+")

_CONTAINER_LABELS = frozenset({"container", "container number", "container no"})
_BL_LABELS = frozenset(
    {
        "bl",
        "b l",
        "bl number",
        "b l number",
        "bill of lading",
        "bill of lading number",
        "bol",
        "bol number",
    }
)


@dataclass(frozen=True)
class ShipmentIdentifiers:
    container_number: Optional[str] = None
    bl_number: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.container_number or self.bl_number)


def normalize_field_label(label: str) -> str:
    text = _SEPARATORS_RE.sub(" ", label.lower())
    text = _NON_WORD_RE.sub(" ", text)
    return _SPACES_RE.sub(" ", text).strip()


def extract_shipment_identifiers(field_values: Mapping[str, str]) -> ShipmentIdentifiers:
    """First container number and bill of lading number found by field label."""

    container_number: Optional[str] = None
    bl_number: Optional[str] = None
    for label, raw_value in field_values.items():
        value = raw_value.strip()
        if not value:
            continue
        key = normalize_field_label(label)
        if container_number is None and key in _CONTAINER_LABELS:
            container_number = value
            continue
        if bl_number is None and key in _BL_LABELS:
            bl_number = value
    return ShipmentIdentifiers(container_number=container_number, bl_number=bl_number)
