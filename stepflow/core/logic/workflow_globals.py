"""Workflow-level global variables and a shipment's values for them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Literal, Optional

from stepflow.util.json_tools import safe_json_loads

from .record_schemas import valid_records

__all__ = [
    "WorkflowGlobalVariable",
    "parse_workflow_global_variables",
    "parse_workflow_global_values",
    "global_variable_ids",
]

GlobalVariableType = Literal["text", "date", "number"]


@dataclass(frozen=True)
class WorkflowGlobalVariable:
    id: str
    label: str
    type: GlobalVariableType


def parse_workflow_global_variables(value: str | bytes | None) -> List[WorkflowGlobalVariable]:
    parsed = safe_json_loads(value, [])
    if not isinstance(parsed, list):
        return []
    return [
        WorkflowGlobalVariable(id=raw["id"], label=raw["label"], type=raw["type"])
        for raw in valid_records("global_variable", parsed)
    ]


def parse_workflow_global_values(value: str | bytes | None) -> Dict[str, str]:
    """Decode the shipment's global values, coercing every value to a string."""

    parsed = safe_json_loads(value, {})
    if not isinstance(parsed, dict):
        return {}
    result: Dict[str, str] = {}
    for key, raw in parsed.items():
        if raw is None:
            result[str(key)] = ""
        else:
            result[str(key)] = raw if isinstance(raw, str) else str(raw)
    return result


def global_variable_ids(
    variables: Iterable[WorkflowGlobalVariable], *, kind: Optional[GlobalVariableType] = None
) -> FrozenSet[str]:
    """The declared variable ids, optionally restricted to one type."""

    return frozenset(var.id for var in variables if kind is None or var.type == kind)
