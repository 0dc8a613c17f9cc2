"""Value trees stored against a step and the envelope that carries them."""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Sequence

from stepflow.util.json_tools import safe_json_loads

from .paths import is_index_segment
from .schema import FREEZE_KEY

logger = logging.getLogger(__name__)

__all__ = [
    "TRUTHY_VALUES",
    "StepValues",
    "is_truthy",
    "has_string_value",
    "get_value_at_path",
    "as_mapping",
    "parse_step_field_values",
    "clone_tree",
]

TRUTHY_VALUES = frozenset({"1", "true", "yes", "on"})


def is_truthy(value: Any) -> bool:
    """Checkbox semantics: ``1``/``true``/``yes``/``on`` in any case."""

    if isinstance(value, bool):
        return value
    if value is None or isinstance(value, (dict, list)):
        return False
    return str(value).strip().lower() in TRUTHY_VALUES


def has_string_value(value: Any) -> bool:
    """Whether a leaf holds a non-blank scalar."""

    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, float))


def as_mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def get_value_at_path(values: Any, segments: Sequence[str]) -> Any:
    """Walk ``segments`` from ``values``; ``None`` wherever the shape does not match."""

    current = values
    for segment in segments:
        if current is None:
            return None
        if isinstance(current, list):
            if not is_index_segment(segment):
                return None
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
            continue
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


def clone_tree(values: Any) -> Any:
    return copy.deepcopy(values)


def parse_step_field_values(value: str | bytes | None) -> Dict[str, Any]:
    """Decode a stored value tree, defaulting to an empty map."""

    parsed = safe_json_loads(value, None)
    return parsed if isinstance(parsed, dict) else {}


def _coerce_freeze_map(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    freeze: Dict[str, str] = {}
    for key, stamp in raw.items():
        if isinstance(key, str) and isinstance(stamp, str) and stamp.strip():
            freeze[key] = stamp
    return freeze


@dataclass(frozen=True)
class StepValues:
    """A step's answers plus its countdown freeze map.

    On storage both travel in a single JSON object, with the freeze map under
    the reserved ``__countdown_freeze__`` key.
    """

    values: Dict[str, Any] = field(default_factory=dict)
    freeze: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_tree(cls, tree: Mapping[str, Any] | None) -> "StepValues":
        if not isinstance(tree, Mapping):
            return cls()
        values = {key: value for key, value in tree.items() if key != FREEZE_KEY}
        return cls(values=values, freeze=_coerce_freeze_map(tree.get(FREEZE_KEY)))

    @classmethod
    def from_json(cls, text: str | bytes | None) -> "StepValues":
        return cls.from_tree(parse_step_field_values(text))

    def with_values(self, values: Dict[str, Any]) -> "StepValues":
        return replace(self, values=values)

    def with_freeze(self, freeze: Dict[str, str]) -> "StepValues":
        return replace(self, freeze=dict(freeze))

    def to_tree(self) -> Dict[str, Any]:
        tree = dict(self.values)
        if self.freeze:
            tree[FREEZE_KEY] = dict(self.freeze)
        return tree

    def to_json(self) -> str:
        return json.dumps(self.to_tree(), ensure_ascii=False)
