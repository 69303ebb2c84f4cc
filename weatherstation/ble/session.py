"""
Weatherstation session management.
Drives the discover/connect state machine over the BlueZ object graph, keeps the
set of connected weatherstations and reads their characteristics every cycle.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from bleak.exc import BleakDBusError

from ..sensor import SensorState, SensorValueError, SensorValues
from ..utils.logging import PerformanceMonitor
from .address import BluetoothAddress
from .bluez import BluezClient
from .interpreter import AdapterEntity, BluezEntity, DeviceEntity, characteristic_paths, interpret_object


Snapshot = Dict[BluetoothAddress, SensorState]

DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_CONNECT_POLL_INTERVAL = 5.0


@dataclass(frozen=True)
class Weatherstation:
    """A connected weatherstation and its fixed characteristic object paths."""
    address: BluetoothAddress
    device_path: str
    temperature_path: str
    humidity_path: str
    pressure_path: str

    @classmethod
    def from_device(cls, device: DeviceEntity) -> 'Weatherstation':
        paths = characteristic_paths(device.object_path)
        return cls(
            address=device.address,
            device_path=device.object_path,
            temperature_path=paths["temperature"],
            humidity_path=paths["humidity"],
            pressure_path=paths["pressure"],
        )

    def read(self, bluez: BluezClient) -> SensorValues:
        """
        Read and decode all three characteristics.

        Raises:
            SensorValueError: If a value does not decode
        """
        return SensorValues.from_characteristics(
            temperature=bluez.read_value(self.temperature_path),
            humidity=bluez.read_value(self.humidity_path),
            pressure=bluez.read_value(self.pressure_path),
        )

    def disconnect(self, bluez: BluezClient):
        bluez.disconnect_device(self.device_path)


class SessionManager:
    """
    Owns the connect/discover polling loop.

    Every cycle re-reads the BlueZ object graph, starts discovery on idle
    adapters, connects to disconnected weatherstations, tracks the ones whose
    services are resolved and reads a snapshot from all tracked sessions.
    """

    def __init__(self,
                 bluez: BluezClient,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 connect_poll_interval: float = DEFAULT_CONNECT_POLL_INTERVAL,
                 logger: Optional[logging.Logger] = None,
                 performance_monitor: Optional[PerformanceMonitor] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.bluez = bluez
        self.poll_interval = poll_interval
        self.connect_poll_interval = connect_poll_interval
        self.logger = logger or logging.getLogger('weatherstation.ble')
        self.performance_monitor = performance_monitor or PerformanceMonitor(self.logger)
        self._clock = clock
        self.sessions: Dict[BluetoothAddress, Weatherstation] = {}

    def handle_entity(self, entity: BluezEntity) -> bool:
        """
        Act on one classified object.

        Returns:
            bool: True if a connect was issued
        """
        if isinstance(entity, AdapterEntity):
            if not entity.discovering:
                self.logger.info(f"Starting discovery on {entity.identifier}")
                self.bluez.start_discovery(entity.object_path)
            return False

        if not entity.connected:
            self.logger.info(f"Connecting to {entity.address}")
            try:
                self.bluez.connect_device(entity.object_path)
            except BleakDBusError as e:
                self.logger.warning(f"Connect to {entity.address} refused, retrying next cycle: {e}")
            return True

        if entity.services_resolved and entity.address not in self.sessions:
            self.sessions[entity.address] = Weatherstation.from_device(entity)
            self.logger.info(f"Weatherstation {entity.address} connected")
        return False

    def read_sessions(self) -> Snapshot:
        """Read every tracked session. Sessions that fail to decode are left out."""
        snapshot: Snapshot = {}
        for address, station in self.sessions.items():
            try:
                values = station.read(self.bluez)
            except SensorValueError as e:
                self.logger.warning(f"Discarding reading from {address}: {e}")
                continue
            self.logger.debug(f"{address}: {values}")
            snapshot[address] = SensorState.connected(values)
        return snapshot

    def poll_once(self) -> Tuple[Snapshot, bool]:
        """
        Run one poll cycle.

        Returns:
            Tuple[Snapshot, bool]: Snapshot of tracked sessions and whether a connect was issued
        """
        connect_issued = False
        objects = self.bluez.get_managed_objects()
        for object_path, interfaces in objects.items():
            entity = interpret_object(object_path, interfaces)
            if entity is not None and self.handle_entity(entity):
                connect_issued = True
        return self.read_sessions(), connect_issued

    def disconnect_all(self):
        """Disconnect tracked sessions, stopping at the first failure."""
        while self.sessions:
            address, station = next(iter(self.sessions.items()))
            self.logger.info(f"Disconnecting {address}")
            station.disconnect(self.bluez)
            del self.sessions[address]

    def run(self, stop: threading.Event, emit: Callable[[Snapshot], None]):
        """
        Poll until the stop event is set, then disconnect every session.

        Args:
            stop: Set to request an orderly shutdown
            emit: Receives the snapshot of every cycle
        """
        self.logger.info("Bluetooth poll loop started")
        while True:
            started = self._clock()
            with self.performance_monitor.measure_time("ble_poll_cycle"):
                snapshot, connect_issued = self.poll_once()
            emit(snapshot)

            interval = self.connect_poll_interval if connect_issued else self.poll_interval
            elapsed = self._clock() - started
            if stop.wait(max(0.0, interval - elapsed)):
                break

        self.logger.info("Stop requested, disconnecting weatherstations")
        self.disconnect_all()
        self.logger.info("Bluetooth poll loop stopped")
