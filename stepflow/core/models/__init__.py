"""Typed records for shipment steps."""

from .step import StatusBlockReason, StatusDecision, StepRecord, StepStatus

__all__ = ["StatusBlockReason", "StatusDecision", "StepRecord", "StepStatus"]
