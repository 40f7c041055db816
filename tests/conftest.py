"""
pytest configuration for relay tests.

Adds src directory to Python path for imports and provides shared
factories for configs and deliveries.
"""

import os
import sys
from pathlib import Path

import pytest

# Set test environment variables BEFORE any imports
os.environ.setdefault("TEST_MODE", "true")

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from config.config import (  # noqa: E402
    BrokerSettings,
    HealthSettings,
    ProcessingSettings,
    RelayConfig,
    StoreSettings,
    TailerSettings,
    TrafficSettings,
)
from core.logging.context import clear_log_context  # noqa: E402
from core.logging.message_context import clear_message_context  # noqa: E402


def make_config(**processing) -> RelayConfig:
    """RelayConfig with fast reconnects, health disabled and processing overrides."""
    return RelayConfig(
        broker=BrokerSettings(host="localhost", reconnect_delay_seconds=0.01),
        store=StoreSettings(uri="mongodb://localhost:27017/", reconnect_delay_seconds=0.01),
        processing=ProcessingSettings(**processing),
        health=HealthSettings(enabled=False, port=0),
        traffic=TrafficSettings(operations=4, interval_seconds=0, concurrency=2),
        tailer=TailerSettings(poll_interval_seconds=0.01),
    )


@pytest.fixture
def relay_config() -> RelayConfig:
    return make_config()


@pytest.fixture(autouse=True)
def _reset_log_context():
    yield
    clear_log_context()
    clear_message_context()


@pytest.fixture
def config_factory():
    """make_config for tests that need processing overrides."""
    return make_config
