import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from environs import Env

env = Env()
env.read_env()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepEngineConfig:
    """Environment-backed configuration for the step field engine."""

    doc_prefix: str
    compact_removed_items: bool
    enforce_dependencies: bool
    log_schema_rejections: bool


_WARNED_DEFAULT_KEYS: set[str] = set()


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    val = os.getenv(name)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "on"}


def _warn_default(key: str, raw: object, default: object, reason: str) -> None:
    """Emit a structured warning when falling back to a default value."""

    if key in _WARNED_DEFAULT_KEYS:
        return

    _WARNED_DEFAULT_KEYS.add(key)
    payload = {
        "key": key,
        "value": "" if raw is None else str(raw),
        "default": default,
        "reason": reason,
    }
    logger.warning("STEPFLOW_CONFIG_DEFAULT %s", json.dumps(payload, sort_keys=True))


def _coerce_doc_prefix(key: str, default: str) -> str:
    """Return a document-type prefix that ends with ``:``."""

    raw = os.getenv(key)
    if raw is None:
        return default

    value = str(raw).strip()
    if not value:
        _warn_default(key, raw, default, "empty")
        return default
    if not value.endswith(":"):
        value = f"{value}:"
    return value


def _load_step_engine_config() -> StepEngineConfig:
    return StepEngineConfig(
        doc_prefix=_coerce_doc_prefix("STEPFLOW_DOC_PREFIX", "STEP_FIELD:"),
        compact_removed_items=env_bool("STEPFLOW_COMPACT_REMOVED_ITEMS", False),
        enforce_dependencies=env_bool("STEPFLOW_ENFORCE_DEPENDENCIES", True),
        log_schema_rejections=env_bool("STEPFLOW_SCHEMA_VALIDATION_LOG", True),
    )


@lru_cache(maxsize=1)
def get_step_engine_config() -> StepEngineConfig:
    """Return the parsed step engine configuration."""

    return _load_step_engine_config()


def reload_step_engine_config() -> StepEngineConfig:
    """Drop the cached configuration and parse the environment again."""

    get_step_engine_config.cache_clear()
    return get_step_engine_config()
