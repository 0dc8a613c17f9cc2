"""Load and apply the JSON schemas for stored template records."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, List, Mapping

import yaml
from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

_SCHEMAS_PATH = Path(__file__).with_name("record_schemas.yaml")


@lru_cache(maxsize=1)
def _load_schemas() -> Mapping[str, Any]:
    data = yaml.safe_load(_SCHEMAS_PATH.read_text(encoding="utf-8"))
    for schema in data.values():
        Draft7Validator.check_schema(schema)
    return data


@lru_cache(maxsize=None)
def get_validator(name: str) -> Draft7Validator:
    """Return the validator for the record kind ``name``."""

    return Draft7Validator(_load_schemas()[name])


def record_errors(name: str, record: Any) -> List[str]:
    """Validation messages for ``record``; empty when it conforms."""

    validator = get_validator(name)
    errors = sorted(validator.iter_errors(record), key=lambda error: list(error.path))
    return [error.message for error in errors]


def valid_records(name: str, records: Iterable[Any]) -> List[Mapping[str, Any]]:
    """Keep the records that conform to schema ``name``, logging the rest."""

    kept: List[Mapping[str, Any]] = []
    for index, record in enumerate(records):
        errors = record_errors(name, record)
        if errors:
            logger.warning(
                "RECORD_SKIPPED kind=%s index=%d errors=%s", name, index, "; ".join(errors)
            )
            continue
        kept.append(record)
    return kept
