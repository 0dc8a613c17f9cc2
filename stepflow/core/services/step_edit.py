"""Process one edit of a shipment step.

The pipeline merges the submitted values, recomputes countdown freezes for
this step and for siblings that depend on it, syncs linked global dates,
evaluates requirements, decides the status change and extracts goods
allocations. It performs no I/O: every input is a pre-fetched snapshot and
every product is returned in a :class:`StepEditOutcome`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from stepflow.config import get_step_engine_config
from stepflow.core.logic.checklists import (
    ChecklistUpload,
    extract_checklist_dates,
    extract_checklist_uploads,
    parse_checklist_groups_json,
)
from stepflow.core.logic.identifiers import ShipmentIdentifiers, extract_shipment_identifiers
from stepflow.core.logic.step_status import (
    RequirementReport,
    decide_status_change,
    evaluate_step_requirements,
    unmet_dependencies,
)
from stepflow.core.models.step import StatusBlockReason, StatusDecision, StepRecord, StepStatus
from stepflow.core.step_fields.countdown import (
    FreezeUpdate,
    SiblingStep,
    cascade_freeze_updates,
    recompute_freeze_map,
)
from stepflow.core.step_fields.form_data import (
    FormEntry,
    StepFieldUpload,
    UploadedFile,
    extract_step_field_removals,
    extract_step_field_updates,
    extract_step_field_uploads,
)
from stepflow.core.step_fields.global_links import sync_global_values
from stepflow.core.step_fields.goods import GoodsAllocation, collect_shipment_goods_allocations
from stepflow.core.step_fields.merge import (
    StepFieldUpdate,
    collect_removed_indices,
    compact_repeatable_groups,
    gapped_list_paths,
    merge_step_values,
)
from stepflow.core.step_fields.paths import (
    PATH_SEPARATOR,
    encode_field_path,
    is_file_field_required,
    step_field_doc_type,
)
from stepflow.core.step_fields.requirements import collect_flat_field_values
from stepflow.core.step_fields.schema import StepFieldSchema, resolve_step_schema
from stepflow.core.step_fields.values import StepValues
from stepflow.core.telemetry.metrics import emit_counter
from stepflow.util.json_tools import load_int_list, load_string_list

from .errors import INVALID_REQUEST, NOT_FOUND, StepEditError

logger = logging.getLogger(__name__)

__all__ = [
    "StepEditRequest",
    "ShipmentSnapshot",
    "DocumentRegistration",
    "StepEditOutcome",
    "build_step_edit_request",
    "process_step_edit",
]


@dataclass(frozen=True)
class StepEditRequest:
    step_id: int
    status: str
    notes: Optional[str] = None
    updates: Tuple[StepFieldUpdate, ...] = ()
    removals: Tuple[Tuple[str, ...], ...] = ()
    uploads: Tuple[StepFieldUpload, ...] = ()
    checklist_dates: Mapping[str, str] = field(default_factory=dict)
    checklist_uploads: Tuple[ChecklistUpload, ...] = ()


@dataclass(frozen=True)
class ShipmentSnapshot:
    """What the edit needs to know about the rest of the shipment."""

    shipment_id: int
    received_doc_types: FrozenSet[str] = frozenset()
    steps: Mapping[int, StepRecord] = field(default_factory=dict)
    global_variable_ids: FrozenSet[str] = frozenset()
    global_values: Mapping[str, str] = field(default_factory=dict)
    has_blocking_exception: bool = False


@dataclass(frozen=True)
class DocumentRegistration:
    document_type: str
    file: UploadedFile
    is_required: bool
    source: str
    path: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class StepEditOutcome:
    step_id: int
    shipment_id: int
    step_name: str
    decision: StatusDecision
    values: StepValues
    notes: Optional[str]
    requirements: RequirementReport
    documents: Tuple[DocumentRegistration, ...] = ()
    sibling_updates: Tuple[FreezeUpdate, ...] = ()
    global_values: Optional[Dict[str, str]] = None
    allocations: Tuple[GoodsAllocation, ...] = ()
    identifiers: ShipmentIdentifiers = ShipmentIdentifiers()
    removed_indices: Mapping[str, set[int]] = field(default_factory=dict)

    @property
    def values_json(self) -> str:
        return self.values.to_json()

    @property
    def error_code(self) -> Optional[str]:
        reason = self.decision.reason
        return reason.value if reason else None

    @property
    def activity_message(self) -> str:
        name = self.step_name or f"#{self.step_id}"
        if self.decision.applied is not None:
            return f'Step "{name}" → {self.decision.applied.label}'
        if self.decision.reason is StatusBlockReason.BLOCKED_BY_EXCEPTION:
            return f'Step "{name}" saved (blocked by exception)'
        if self.decision.reason is StatusBlockReason.BLOCKED_BY_DEPENDENCIES:
            return f'Step "{name}" saved (waiting on dependencies)'
        return f'Step "{name}" requirements saved'


def _form_value(entries: List[FormEntry], key: str) -> Optional[str]:
    for entry_key, value in entries:
        if entry_key == key and isinstance(value, str):
            return value
    return None


def build_step_edit_request(entries: Iterable[FormEntry], step: StepRecord) -> StepEditRequest:
    """Build a request from raw form entries (``stepId``, ``status``, ``notes``, fields)."""

    entries = list(entries)
    try:
        step_id = int((_form_value(entries, "stepId") or "").strip())
    except ValueError as exc:
        raise StepEditError(code=INVALID_REQUEST, message="stepId is not a number") from exc

    checklist_groups = parse_checklist_groups_json(step.checklist_groups_json)
    notes = (_form_value(entries, "notes") or "").strip() or None
    return StepEditRequest(
        step_id=step_id,
        status=_form_value(entries, "status") or "",
        notes=notes,
        updates=tuple(extract_step_field_updates(entries)),
        removals=tuple(extract_step_field_removals(entries)),
        uploads=tuple(extract_step_field_uploads(entries)),
        checklist_dates=extract_checklist_dates(checklist_groups, entries),
        checklist_uploads=tuple(extract_checklist_uploads(checklist_groups, entries)),
    )


def _validate(request: StepEditRequest, step: StepRecord, shipment: ShipmentSnapshot) -> StepStatus:
    if not request.step_id or request.step_id != step.id:
        raise StepEditError(code=INVALID_REQUEST, message="step id does not match the request")
    if step.shipment_id != shipment.shipment_id:
        raise StepEditError(code=NOT_FOUND, message=f"step {step.id} is not on this shipment")
    requested = StepStatus.parse(request.status)
    if requested is None:
        raise StepEditError(code=INVALID_REQUEST, message=f"unknown status {request.status!r}")
    return requested


def _sibling_steps(step: StepRecord, shipment: ShipmentSnapshot) -> Dict[int, SiblingStep]:
    siblings: Dict[int, SiblingStep] = {}
    for step_id, record in shipment.steps.items():
        if step_id == step.id:
            continue
        siblings[step_id] = SiblingStep(
            step_id=step_id,
            schema=resolve_step_schema(record.field_schema_json, record.required_fields_json),
            values=StepValues.from_json(record.field_values_json),
        )
    return siblings


def _compact_values(
    schema: StepFieldSchema, values: Dict[str, Any], step_id: int, doc_types: FrozenSet[str]
) -> Dict[str, Any]:
    """Compact removal gaps unless renumbering would move items away from their documents.

    Step field documents are keyed by item index, so a list that holds any
    such document keeps its gaps.
    """

    for path in gapped_list_paths(schema, values):
        prefix = step_field_doc_type(step_id, encode_field_path(path)) + PATH_SEPARATOR
        if any(doc_type.startswith(prefix) for doc_type in doc_types):
            logger.info(
                "STEP_VALUES_COMPACTION_SKIPPED step_id=%s path=%s reason=indexed_documents",
                step_id,
                encode_field_path(path),
            )
            return values
    return compact_repeatable_groups(schema, values)


def process_step_edit(
    request: StepEditRequest,
    step: StepRecord,
    shipment: ShipmentSnapshot,
    *,
    now: Optional[datetime] = None,
) -> StepEditOutcome:
    """Run the whole edit pipeline for ``step`` and return what must be persisted.

    Raises :class:`StepEditError` only for a malformed request. A refused
    status change is reported on ``outcome.decision``; values, uploads and
    notes are part of the outcome either way.
    """

    requested = _validate(request, step, shipment)
    now = now or datetime.now(timezone.utc)
    config = get_step_engine_config()

    schema = resolve_step_schema(step.field_schema_json, step.required_fields_json)
    existing = StepValues.from_json(step.field_values_json)

    documents: List[DocumentRegistration] = [
        DocumentRegistration(
            document_type=upload.document_type,
            file=upload.file,
            is_required=True,
            source="checklist",
        )
        for upload in request.checklist_uploads
    ]
    for upload in request.uploads:
        documents.append(
            DocumentRegistration(
                document_type=step_field_doc_type(step.id, encode_field_path(upload.path)),
                file=upload.file,
                is_required=is_file_field_required(schema, upload.path),
                source="field",
                path=upload.path,
            )
        )
    doc_types = frozenset(shipment.received_doc_types) | {d.document_type for d in documents}

    merged = merge_step_values(existing.values, request.updates, request.removals, schema=schema)
    if config.compact_removed_items:
        merged = _compact_values(schema, merged, step.id, doc_types)
    merged.update(request.checklist_dates)

    siblings = _sibling_steps(step, shipment)
    sibling_trees = {step_id: sibling.values.values for step_id, sibling in siblings.items()}
    freeze = recompute_freeze_map(
        schema,
        existing.with_values(merged),
        step_id=step.id,
        now=now,
        lookup=sibling_trees.get,
    )
    step_values = StepValues(values=merged, freeze=freeze)
    sibling_updates = cascade_freeze_updates(step.id, merged, siblings, now=now)

    global_values = sync_global_values(
        schema, merged, shipment.global_values, shipment.global_variable_ids
    )

    requirements = evaluate_step_requirements(
        step_id=step.id,
        schema=schema,
        values=merged,
        doc_types=doc_types,
        required_document_types=load_string_list(step.required_document_types_json),
        checklist_groups=parse_checklist_groups_json(step.checklist_groups_json),
    )
    statuses = {step_id: record.status for step_id, record in shipment.steps.items()}
    decision = decide_status_change(
        step.status,
        requested,
        has_blocking_exception=shipment.has_blocking_exception,
        unmet_dependency_ids=unmet_dependencies(
            load_int_list(step.depends_on_step_ids_json), statuses
        ),
        requirements=requirements,
    )

    allocations: Tuple[GoodsAllocation, ...] = ()
    if decision.newly_done:
        allocations = tuple(collect_shipment_goods_allocations(schema, merged))

    if decision.applied is not None:
        emit_counter("step_edit.status_applied")
    else:
        emit_counter(f"step_edit.refused.{decision.reason.value}")

    logger.info(
        "STEP_EDIT_PROCESSED step_id=%s requested=%s applied=%s missing_fields=%d "
        "missing_docs=%d sibling_updates=%d",
        step.id,
        requested.value,
        decision.applied.value if decision.applied else None,
        len(requirements.missing_field_paths),
        len(requirements.missing_documents),
        len(sibling_updates),
    )

    return StepEditOutcome(
        step_id=step.id,
        shipment_id=shipment.shipment_id,
        step_name=step.name,
        decision=decision,
        values=step_values,
        notes=request.notes,
        requirements=requirements,
        documents=tuple(documents),
        sibling_updates=tuple(sibling_updates),
        global_values=global_values,
        allocations=allocations,
        identifiers=extract_shipment_identifiers(collect_flat_field_values(schema, merged)),
        removed_indices=collect_removed_indices(request.removals),
    )
