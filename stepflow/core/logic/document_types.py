"""Document types a shipment can receive across all of its steps."""

from __future__ import annotations

from typing import Iterable, List

from stepflow.core.models.step import StepRecord
from stepflow.core.step_fields.requirements import collect_step_file_doc_types
from stepflow.core.step_fields.schema import parse_step_field_schema
from stepflow.core.step_fields.values import StepValues
from stepflow.util.json_tools import load_string_list

__all__ = ["list_shipment_document_type_options"]


def list_shipment_document_type_options(steps: Iterable[StepRecord]) -> List[str]:
    """Required document types plus every step field document type, sorted."""

    options: set[str] = set()
    for step in steps:
        options.update(load_string_list(step.required_document_types_json))
        schema = parse_step_field_schema(step.field_schema_json)
        if not schema.fields:
            continue
        values = StepValues.from_json(step.field_values_json).values
        options.update(collect_step_file_doc_types(step.id, schema, values))
    return sorted(options)
