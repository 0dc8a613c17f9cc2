"""In-process counters for step edit outcomes."""

from typing import Dict

# Counter values keyed by metric name.
_COUNTERS: Dict[str, float] = {}


def emit_counter(name: str, increment: float = 1) -> None:
    """Increment a named metric."""

    _COUNTERS[name] = _COUNTERS.get(name, 0) + increment


def get_counters() -> Dict[str, float]:
    """Return current metrics (for tests)."""

    return _COUNTERS.copy()


def reset_counters() -> None:
    """Reset metrics (for tests)."""

    _COUNTERS.clear()
