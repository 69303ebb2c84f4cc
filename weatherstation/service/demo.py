"""
Simulated weatherstations for demo mode.
"""

import asyncio
import logging
import random
from typing import Iterator, Optional

from ..ble.address import BluetoothAddress
from ..sensor import SensorState, SensorValues


DEMO_INTERVAL = 30.0


def clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(value, hi))


class FluctuatingSensor:
    """Random walk of plausible sensor values."""

    TEMPERATURE_RANGE = (0, 30_00)
    HUMIDITY_RANGE = (20_00, 90_00)
    PRESSURE_RANGE = (10000, 100000)

    def __init__(self, temperature: int = 20_00, humidity: int = 50_00, pressure: int = 100000,
                 rng: Optional[random.Random] = None):
        self.temperature = temperature
        self.humidity = humidity
        self.pressure = pressure
        self._rng = rng or random.Random()

    def _step(self, lo: int, hi: int) -> int:
        step = self._rng.randrange(lo, hi)
        return step if self._rng.random() < 0.5 else -step

    def __iter__(self) -> Iterator[SensorValues]:
        return self

    def __next__(self) -> SensorValues:
        self.temperature = clamp(self.temperature + self._rng.randrange(-1_00, 1_00),
                                 *self.TEMPERATURE_RANGE)
        self.pressure = clamp(self.pressure + self._step(100, 1000), *self.PRESSURE_RANGE)
        self.humidity = clamp(self.humidity + self._step(20, 90), *self.HUMIDITY_RANGE)
        return SensorValues.from_raw(self.temperature, self.humidity, self.pressure)


async def run_demo_sensor(address: BluetoothAddress, updates: asyncio.Queue,
                          interval: float = DEMO_INTERVAL,
                          sensor: Optional[FluctuatingSensor] = None):
    """Feed single-entry snapshots for `address` into `updates` until cancelled."""
    sensor = sensor or FluctuatingSensor()
    for values in sensor:
        await updates.put({address: SensorState.connected(values)})
        await asyncio.sleep(interval)


def start_demo_sensors(count: int, updates: asyncio.Queue,
                       interval: float = DEMO_INTERVAL,
                       logger: Optional[logging.Logger] = None) -> list:
    """Spawn `count` demo sensors with addresses 00:00:00:00:00:00 upward."""
    logger = logger or logging.getLogger(__name__)
    logger.info(f"Simulating {count} demo sensors")
    return [
        asyncio.create_task(run_demo_sensor(BluetoothAddress(i), updates, interval),
                            name=f"demo-{BluetoothAddress(i)}")
        for i in range(count)
    ]
