"""Checklist groups attached to a step: date plus received document per item."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import AbstractSet, Any, Dict, Iterable, List, Mapping, Optional, Tuple

from stepflow.core.step_fields.form_data import FormEntry, UploadedFile
from stepflow.util.json_tools import safe_json_loads

from .record_schemas import valid_records

logger = logging.getLogger(__name__)

__all__ = [
    "ChecklistItem",
    "ChecklistGroup",
    "ChecklistUpload",
    "checklist_doc_type",
    "checklist_date_key",
    "checklist_file_key",
    "get_final_checklist_item",
    "parse_checklist_groups_json",
    "parse_checklist_groups_input",
    "format_checklist_groups",
    "is_checklist_item_complete",
    "missing_checklist_groups",
    "extract_checklist_dates",
    "extract_checklist_uploads",
]

_NON_KEY_RE = re.compile(r"[^A-Z0-9]+")
_FINAL_SUFFIX_RE = re.compile(r"\(final\)$", re.IGNORECASE)


@dataclass(frozen=True)
class ChecklistItem:
    label: str
    is_final: bool = False


@dataclass(frozen=True)
class ChecklistGroup:
    name: str
    items: Tuple[ChecklistItem, ...] = ()

    def to_json_dict(self) -> Dict[str, Any]:
        items = []
        for item in self.items:
            entry: Dict[str, Any] = {"label": item.label}
            if item.is_final:
                entry["is_final"] = True
            items.append(entry)
        return {"name": self.name, "items": items}


@dataclass(frozen=True)
class ChecklistUpload:
    document_type: str
    file: UploadedFile


def _to_key(value: str) -> str:
    return _NON_KEY_RE.sub("_", value.strip().upper()).strip("_")


def checklist_doc_type(group_name: str, item_label: str) -> str:
    group_key = _to_key(group_name)
    item_key = _to_key(item_label)
    if group_key and item_key:
        return f"{group_key}_{item_key}"
    return group_key or item_key or "CHECKLIST_ITEM"


def checklist_date_key(group_name: str, item_label: str) -> str:
    return f"checklist:{_to_key(group_name)}:{_to_key(item_label)}:date"


def checklist_file_key(group_name: str, item_label: str) -> str:
    return f"checklist:{_to_key(group_name)}:{_to_key(item_label)}:file"


def get_final_checklist_item(items: Iterable[ChecklistItem]) -> Optional[ChecklistItem]:
    """The explicitly flagged final item, else the last one."""

    items = list(items)
    if not items:
        return None
    return next((item for item in items if item.is_final), items[-1])


def parse_checklist_groups_json(value: str | bytes | None) -> List[ChecklistGroup]:
    """Decode stored checklist groups, dropping malformed groups and items."""

    parsed = safe_json_loads(value, [])
    if not isinstance(parsed, list):
        return []

    groups: List[ChecklistGroup] = []
    for raw_group in valid_records("checklist_group", parsed):
        items = tuple(
            ChecklistItem(label=raw["label"].strip(), is_final=bool(raw.get("is_final")))
            for raw in valid_records("checklist_item", raw_group["items"])
            if raw["label"].strip()
        )
        groups.append(ChecklistGroup(name=raw_group["name"].strip(), items=items))
    return groups


def _parse_checklist_item(raw: str) -> Optional[ChecklistItem]:
    label = raw.strip()
    if not label:
        return None

    is_final = False
    if label.endswith("*"):
        is_final = True
        label = label.rstrip("*").strip()
    elif _FINAL_SUFFIX_RE.search(label):
        is_final = True
        label = _FINAL_SUFFIX_RE.sub("", label).strip()

    if not label:
        return None
    return ChecklistItem(label=label, is_final=is_final)


def parse_checklist_groups_input(text: str) -> List[ChecklistGroup]:
    """Parse the designer's text format, one ``Group: item, final item*`` per line."""

    groups: List[ChecklistGroup] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        name, sep, items_part = line.partition(":")
        name = name.strip()
        items_part = items_part.strip()
        if not sep or not name or not items_part:
            continue
        items = tuple(
            item for item in (_parse_checklist_item(raw) for raw in items_part.split(",")) if item
        )
        if items:
            groups.append(ChecklistGroup(name=name, items=items))
    return groups


def format_checklist_groups(groups: Iterable[ChecklistGroup]) -> str:
    lines = []
    for group in groups:
        items = ", ".join(f"{item.label}{'*' if item.is_final else ''}" for item in group.items)
        lines.append(f"{group.name}: {items}")
    return "\n".join(lines)


def is_checklist_item_complete(
    group: ChecklistGroup,
    item: ChecklistItem,
    values: Mapping[str, Any],
    doc_types: AbstractSet[str],
) -> bool:
    """An item needs both a date and a received document."""

    date_value = values.get(checklist_date_key(group.name, item.label))
    has_date = isinstance(date_value, str) and bool(date_value.strip())
    return has_date and checklist_doc_type(group.name, item.label) in doc_types


def missing_checklist_groups(
    groups: Iterable[ChecklistGroup],
    values: Mapping[str, Any],
    doc_types: AbstractSet[str],
) -> List[ChecklistGroup]:
    """Groups that are not yet satisfied.

    A group is satisfied when its final item is complete or, failing that,
    when any of its items is.
    """

    missing: List[ChecklistGroup] = []
    for group in groups:
        if not group.items:
            continue
        final_item = get_final_checklist_item(group.items)
        if final_item and is_checklist_item_complete(group, final_item, values, doc_types):
            continue
        if any(is_checklist_item_complete(group, item, values, doc_types) for item in group.items):
            continue
        missing.append(group)
    return missing


def extract_checklist_dates(
    groups: Iterable[ChecklistGroup], entries: Iterable[FormEntry]
) -> Dict[str, str]:
    """Submitted checklist dates keyed by their value-tree key."""

    submitted = {key: value for key, value in entries if isinstance(value, str)}
    dates: Dict[str, str] = {}
    for group in groups:
        for item in group.items:
            key = checklist_date_key(group.name, item.label)
            if key in submitted:
                dates[key] = submitted[key].strip()
    return dates


def extract_checklist_uploads(
    groups: Iterable[ChecklistGroup], entries: Iterable[FormEntry]
) -> List[ChecklistUpload]:
    files = {key: value for key, value in entries if isinstance(value, UploadedFile)}
    uploads: List[ChecklistUpload] = []
    for group in groups:
        for item in group.items:
            upload = files.get(checklist_file_key(group.name, item.label))
            if upload is not None and upload.size > 0:
                uploads.append(
                    ChecklistUpload(
                        document_type=checklist_doc_type(group.name, item.label), file=upload
                    )
                )
    return uploads
