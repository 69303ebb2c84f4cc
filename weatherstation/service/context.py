"""
Shared state of a running gateway.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

from ..ble.address import BluetoothAddress
from ..sensor import SensorState
from ..storage.store import Store
from ..utils.rwlock import RWLock


class GatewayContext:
    """
    The opened store plus the in-memory map of current sensor states.

    `sensors` must only be touched while holding `lock`: readers take
    ``lock.read()``, the update coordinator takes ``lock.write()``.
    """

    def __init__(self, store: Store, sensors: Optional[Dict[BluetoothAddress, SensorState]] = None):
        self.store = store
        self.sensors: Dict[BluetoothAddress, SensorState] = dict(sensors or {})
        self.lock = RWLock()

    @classmethod
    def create(cls, db_path: Union[str, Path], logger: Optional[logging.Logger] = None) -> 'GatewayContext':
        """Open the store and mark every known address as unconnected."""
        store = Store.open(db_path, logger=logger)
        with store.read_txn() as txn:
            sensors = {addr: SensorState.unconnected() for addr in txn.known_addrs()}
        return cls(store, sensors)

    def sorted_sensors(self):
        """Current states ordered by address. Caller holds the read lock."""
        return sorted(self.sensors.items())

    def close(self):
        self.store.close()
