"""Gating of step status changes on requirements, dependencies and exceptions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AbstractSet, Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from stepflow.config import get_step_engine_config
from stepflow.core.models.step import StatusBlockReason, StatusDecision, StepStatus
from stepflow.core.step_fields.requirements import (
    RequirementContext,
    collect_missing_field_paths,
)
from stepflow.core.step_fields.schema import StepFieldSchema

from .checklists import ChecklistGroup, missing_checklist_groups

logger = logging.getLogger(__name__)

__all__ = [
    "RequirementReport",
    "evaluate_step_requirements",
    "unmet_dependencies",
    "decide_status_change",
]


@dataclass(frozen=True)
class RequirementReport:
    missing_field_paths: frozenset[str] = frozenset()
    missing_documents: Tuple[str, ...] = ()
    missing_checklist_groups: Tuple[str, ...] = ()

    @property
    def satisfied(self) -> bool:
        return not (
            self.missing_field_paths or self.missing_documents or self.missing_checklist_groups
        )


def evaluate_step_requirements(
    *,
    step_id: int,
    schema: StepFieldSchema,
    values: Mapping[str, Any],
    doc_types: AbstractSet[str],
    required_document_types: Sequence[str] = (),
    checklist_groups: Sequence[ChecklistGroup] = (),
) -> RequirementReport:
    """Collect missing field paths, documents and checklist groups for one step."""

    context = RequirementContext(step_id=step_id, values=values, doc_types=doc_types)
    missing_paths = collect_missing_field_paths(schema, context)
    missing_docs = tuple(doc for doc in required_document_types if doc not in doc_types)
    missing_groups = tuple(
        group.name for group in missing_checklist_groups(checklist_groups, values, doc_types)
    )
    return RequirementReport(
        missing_field_paths=frozenset(missing_paths),
        missing_documents=missing_docs,
        missing_checklist_groups=missing_groups,
    )


def unmet_dependencies(
    depends_on: Iterable[int], step_statuses: Mapping[int, StepStatus]
) -> List[int]:
    """Dependencies whose step is not DONE; unknown steps count as unmet."""

    return [step_id for step_id in depends_on if step_statuses.get(step_id) is not StepStatus.DONE]


def decide_status_change(
    current: StepStatus,
    requested: StepStatus,
    *,
    has_blocking_exception: bool = False,
    unmet_dependency_ids: Sequence[int] = (),
    requirements: Optional[RequirementReport] = None,
) -> StatusDecision:
    """Apply or drop a requested status change.

    Keeping the current status always succeeds. Any other change is refused
    while the shipment has an open blocking exception. Moving to DONE further
    requires every dependency to be DONE and every requirement to be met.
    """

    if requested == current:
        return StatusDecision(previous=current, requested=requested, applied=requested)

    reason: Optional[StatusBlockReason] = None
    if has_blocking_exception:
        reason = StatusBlockReason.BLOCKED_BY_EXCEPTION
    elif requested is StepStatus.DONE:
        if unmet_dependency_ids and get_step_engine_config().enforce_dependencies:
            reason = StatusBlockReason.BLOCKED_BY_DEPENDENCIES
        elif requirements is not None and not requirements.satisfied:
            reason = StatusBlockReason.MISSING_REQUIREMENTS

    if reason is not None:
        logger.info(
            "STEP_STATUS_REFUSED from=%s to=%s reason=%s",
            current.value,
            requested.value,
            reason.value,
        )
        return StatusDecision(previous=current, requested=requested, applied=None, reason=reason)

    logger.info("STEP_STATUS_APPLIED from=%s to=%s", current.value, requested.value)
    return StatusDecision(previous=current, requested=requested, applied=requested)
