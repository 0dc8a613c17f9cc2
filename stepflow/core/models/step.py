"""Domain types for shipment steps and the outcome of status change requests."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StepStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    BLOCKED = "BLOCKED"

    @classmethod
    def parse(cls, value: object) -> Optional["StepStatus"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class StatusBlockReason(str, Enum):
    MISSING_REQUIREMENTS = "missing_requirements"
    BLOCKED_BY_EXCEPTION = "blocked_by_exception"
    BLOCKED_BY_DEPENDENCIES = "blocked_by_dependencies"


@dataclass(frozen=True)
class StepRecord:
    """Snapshot of a shipment step row as loaded by the persistence layer."""

    id: int
    shipment_id: int
    status: StepStatus
    name: str = ""
    field_schema_json: Optional[str] = None
    field_values_json: Optional[str] = None
    required_fields_json: Optional[str] = None
    required_document_types_json: Optional[str] = None
    checklist_groups_json: Optional[str] = None
    depends_on_step_ids_json: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class StatusDecision:
    """Outcome of a requested status change.

    ``applied`` is ``None`` when the change was dropped, in which case
    ``reason`` says which gate refused it.
    """

    previous: StepStatus
    requested: StepStatus
    applied: Optional[StepStatus]
    reason: Optional[StatusBlockReason] = None

    @property
    def resulting_status(self) -> StepStatus:
        return self.applied or self.previous

    @property
    def changed(self) -> bool:
        return self.applied is not None and self.applied != self.previous

    @property
    def newly_done(self) -> bool:
        return self.changed and self.applied is StepStatus.DONE
