import pytest

from stepflow import config
from stepflow.core.telemetry.metrics import reset_counters


@pytest.fixture(autouse=True)
def _fresh_engine_state():
    config.get_step_engine_config.cache_clear()
    config._WARNED_DEFAULT_KEYS.clear()
    reset_counters()
    yield
    config.get_step_engine_config.cache_clear()
    reset_counters()
