"""Persistence-side collaborators that receive the result of a step edit."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence

from stepflow.core.logic.identifiers import ShipmentIdentifiers
from stepflow.core.models.step import StepStatus
from stepflow.core.step_fields.goods import GoodsAllocation

from .step_edit import DocumentRegistration, StepEditOutcome

logger = logging.getLogger(__name__)

__all__ = ["StepEditSink", "commit_step_edit"]


class StepEditSink(Protocol):
    def store_document(self, shipment_id: int, document: DocumentRegistration) -> Any: ...

    def save_step(
        self,
        step_id: int,
        *,
        status: Optional[StepStatus],
        notes: Optional[str],
        values_json: str,
    ) -> None: ...

    def save_step_values(self, step_id: int, values_json: str) -> None: ...

    def save_global_values(self, shipment_id: int, values: Mapping[str, str]) -> None: ...

    def apply_goods_allocations(
        self, shipment_id: int, step_id: int, allocations: Sequence[GoodsAllocation]
    ) -> None: ...

    def update_shipment_identifiers(
        self, shipment_id: int, identifiers: ShipmentIdentifiers
    ) -> None: ...

    def log_activity(
        self, shipment_id: int, kind: str, message: str, data: Dict[str, Any]
    ) -> None: ...


def commit_step_edit(outcome: StepEditOutcome, sink: StepEditSink) -> None:
    """Hand every product of a step edit to ``sink``.

    Values, uploads and notes are persisted whether or not the requested
    status change was applied.
    """

    shipment_id = outcome.shipment_id
    for document in outcome.documents:
        sink.store_document(shipment_id, document)
        sink.log_activity(
            shipment_id,
            "DOCUMENT_UPLOADED",
            f"{document.source.title()} document uploaded: {document.document_type}",
            {"documentType": document.document_type},
        )

    sink.save_step(
        outcome.step_id,
        status=outcome.decision.applied if outcome.decision.changed else None,
        notes=outcome.notes,
        values_json=outcome.values_json,
    )
    for update in outcome.sibling_updates:
        sink.save_step_values(update.step_id, update.values.to_json())

    if outcome.global_values is not None:
        sink.save_global_values(shipment_id, outcome.global_values)
    if outcome.allocations:
        sink.apply_goods_allocations(shipment_id, outcome.step_id, outcome.allocations)
    if outcome.identifiers:
        sink.update_shipment_identifiers(shipment_id, outcome.identifiers)

    sink.log_activity(
        shipment_id,
        "STEP_UPDATED",
        outcome.activity_message,
        {
            "stepId": outcome.step_id,
            "statusRequested": outcome.decision.requested.value,
            "statusApplied": outcome.decision.applied.value if outcome.decision.applied else None,
        },
    )
    logger.debug(
        "STEP_EDIT_COMMITTED step_id=%s documents=%d siblings=%d",
        outcome.step_id,
        len(outcome.documents),
        len(outcome.sibling_updates),
    )
