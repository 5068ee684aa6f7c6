"""pytest configuration file."""

import logging
from datetime import datetime

import pytest

from mesmerclock.engine import CallbackFeatureGateway, InMemoryParameterStore, ManualClock, ManualTimerService
from mesmerclock.features import FEATURE_CATALOG
from mesmerclock.logging_utils import LogMode, set_log_mode


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (may take several seconds)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


@pytest.fixture(autouse=True, scope="session")
def _quiet_logs():
    set_log_mode(LogMode.NORMAL)
    logging.getLogger("asyncio").setLevel(logging.ERROR)
    yield


class RecordingGateway(CallbackFeatureGateway):
    """Gateway that registers every catalog feature and records transitions."""

    def __init__(self):
        super().__init__()
        self.calls: list[tuple[str, str]] = []
        for feature_id in FEATURE_CATALOG:
            self.register(
                feature_id,
                on_enable=lambda fid=feature_id: self.calls.append(("enable", fid)),
                on_disable=lambda fid=feature_id: self.calls.append(("disable", fid)),
            )


@pytest.fixture
def clock():
    # Monday 2024-01-01 12:00
    return ManualClock(datetime(2024, 1, 1, 12, 0, 0))


@pytest.fixture
def timers(clock):
    return ManualTimerService(clock)


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def store():
    return InMemoryParameterStore(
        {
            "flash_opacity": 30.0,
            "spiral_opacity": 20.0,
            "master_volume": 40.0,
            "x": 10.0,
        }
    )
