"""Errors raised by the step edit service."""

from dataclasses import dataclass


@dataclass
class StepEditError(Exception):
    code: str
    message: str


# Known error codes
INVALID_REQUEST = "INVALID_REQUEST"
NOT_FOUND = "NOT_FOUND"


__all__ = ["StepEditError", "INVALID_REQUEST", "NOT_FOUND"]
