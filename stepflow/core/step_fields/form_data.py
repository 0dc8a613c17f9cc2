"""Read step field updates, removals and uploads out of submitted form entries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from .merge import StepFieldUpdate
from .paths import FIELD_INPUT_PREFIX, FIELD_REMOVAL_PREFIX, decode_field_path

__all__ = [
    "UploadedFile",
    "StepFieldUpload",
    "FormEntry",
    "extract_step_field_updates",
    "extract_step_field_uploads",
    "extract_step_field_removals",
]


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class StepFieldUpload:
    path: Tuple[str, ...]
    file: UploadedFile


FormEntry = Tuple[str, Union[str, UploadedFile]]


def extract_step_field_updates(entries: Iterable[FormEntry]) -> List[StepFieldUpdate]:
    """Text entries named ``field:<path>``, values trimmed, in submission order."""

    updates: List[StepFieldUpdate] = []
    for key, value in entries:
        if not key.startswith(FIELD_INPUT_PREFIX) or not isinstance(value, str):
            continue
        path = decode_field_path(key[len(FIELD_INPUT_PREFIX):])
        if path:
            updates.append(StepFieldUpdate(path=tuple(path), value=value.strip()))
    return updates


def extract_step_field_uploads(entries: Iterable[FormEntry]) -> List[StepFieldUpload]:
    """Non-empty file entries named ``field:<path>``."""

    uploads: List[StepFieldUpload] = []
    for key, value in entries:
        if not key.startswith(FIELD_INPUT_PREFIX) or not isinstance(value, UploadedFile):
            continue
        if value.size <= 0:
            continue
        path = decode_field_path(key[len(FIELD_INPUT_PREFIX):])
        if path:
            uploads.append(StepFieldUpload(path=tuple(path), file=value))
    return uploads


def extract_step_field_removals(entries: Iterable[FormEntry]) -> List[Tuple[str, ...]]:
    """Paths named by ``field-remove:<path>`` entries."""

    removals: List[Tuple[str, ...]] = []
    for key, _value in entries:
        if not key.startswith(FIELD_REMOVAL_PREFIX):
            continue
        path = decode_field_path(key[len(FIELD_REMOVAL_PREFIX):])
        if path:
            removals.append(tuple(path))
    return removals
