"""
BLE Weatherstation Gateway - sensor polling, storage and publishing.

Discovers Bluetooth Low Energy weatherstations through BlueZ, polls their
temperature, humidity and pressure characteristics and keeps a per-sensor
time series in an embedded database. Current values are served over HTTP
and optionally published to an MQTT broker.
"""

__version__ = "1.0.0"
__author__ = "Weatherstation Gateway Team"
__description__ = "BLE weatherstation gateway"

# Package imports for convenience
from .utils.config import Config
from .utils.logging import ProductionLogger, PerformanceMonitor
from .ble.address import BluetoothAddress
from .sensor import SensorValues, SensorState
from .storage.schema import AddrDbEntry
from .storage.store import Store, StorageError

__all__ = [
    "Config",
    "ProductionLogger",
    "PerformanceMonitor",
    "BluetoothAddress",
    "SensorValues",
    "SensorState",
    "AddrDbEntry",
    "Store",
    "StorageError",
]
