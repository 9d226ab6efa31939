"""Root conftest for test suite.

Resets the process singletons and the cached settings around every test
so tests can install their own bus, config store and simulator.

Slow tests are skipped unless requested with: pytest -m slow
"""

import pytest

from quotestream.config import get_settings
from quotestream.services.collectors.registry import set_collector_manager
from quotestream.services.config_store import set_config_store
from quotestream.services.events.bus import reset_event_bus
from quotestream.services.streaming import set_broadcaster
from quotestream.services.trading import set_order_simulator


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless explicitly requested."""
    markexpr = config.getoption("-m", default="")
    if "slow" in markexpr:
        return

    skip_slow = pytest.mark.skip(
        reason="slow tests skipped by default. Run with: pytest -m slow"
    )
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def _reset_singletons() -> None:
    get_settings.cache_clear()
    reset_event_bus()
    set_config_store(None)
    set_broadcaster(None)
    set_order_simulator(None)
    set_collector_manager(None)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Fresh singletons for every test."""
    _reset_singletons()
    yield
    _reset_singletons()
