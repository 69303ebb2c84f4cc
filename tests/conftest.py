"""
Shared fixtures for the weatherstation gateway test-suite.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, Mock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from weatherstation.ble.address import BluetoothAddress
from weatherstation.sensor import SensorValues
from weatherstation.storage.store import Store
from weatherstation.utils.config import Config
from weatherstation.utils.logging import PerformanceMonitor


@pytest.fixture
def mock_config(tmp_path):
    """Config double with Bluetooth, demo sensors and MQTT switched off."""
    config = Mock(spec=Config)

    config.host = "127.0.0.1"
    config.port = 8080
    config.db_path = tmp_path / "db"
    config.flush_interval = 60
    config.bluetooth_enabled = False
    config.ble_poll_interval = 30.0
    config.ble_connect_poll_interval = 5.0
    config.demo = 0
    config.mqtt_server_url = None
    config.mqtt_options = None
    config.mqtt_publish_interval = 60

    config.log_level = "DEBUG"
    config.log_dir = tmp_path / "logs"
    config.log_max_file_size = 256 * 1024
    config.log_backup_count = 1
    config.log_enable_console = False

    return config


@pytest.fixture
def mock_logger():
    return Mock()


@pytest.fixture
def mock_performance_monitor():
    """PerformanceMonitor double whose measure_time() is a no-op context."""
    monitor = Mock(spec=PerformanceMonitor)
    timing = MagicMock()
    timing.__enter__.return_value = timing
    timing.__exit__.return_value = None
    monitor.measure_time.return_value = timing
    monitor.summary.return_value = {}
    return monitor


@pytest.fixture
def store(tmp_path):
    """Freshly opened store in a temporary directory."""
    store = Store.open(tmp_path / "db")
    yield store
    store.close()


@pytest.fixture
def station_address():
    return BluetoothAddress.parse("AA:BB:CC:DD:EE:FF")


@pytest.fixture
def sample_values():
    """21.37°C, 45.67%, 101325.0Pa"""
    return SensorValues.from_raw(temperature=2137, humidity=4567, pressure=1013250)


def pytest_collection_modifyitems(config, items):
    # tests/integration/* carry the integration marker so `-m "not integration"` works
    for item in items:
        if "integration" in item.path.parts:
            item.add_marker(pytest.mark.integration)
