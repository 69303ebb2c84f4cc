"""
Update coordinator.

Consumes state snapshots, registers addresses seen for the first time, merges
snapshots into the shared sensor map and periodically appends the values of
connected sensors to their logs. It is the only task that flushes, so its
write transactions never overlap each other.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from ..ble.address import BluetoothAddress
from ..sensor import SensorState
from ..storage.schema import AddrDbEntry
from ..utils import timestamp
from ..utils.logging import PerformanceMonitor
from .context import GatewayContext


Snapshot = Dict[BluetoothAddress, SensorState]

DEFAULT_FLUSH_INTERVAL = 60


class UpdateCoordinator:
    """Merges snapshots from `updates` into a gateway context."""

    def __init__(self,
                 ctx: GatewayContext,
                 updates: asyncio.Queue,
                 flush_interval: float = DEFAULT_FLUSH_INTERVAL,
                 logger: Optional[logging.Logger] = None,
                 performance_monitor: Optional[PerformanceMonitor] = None,
                 clock: Callable[[], int] = timestamp.now):
        self.ctx = ctx
        self.updates = updates
        self.flush_interval = flush_interval
        self.logger = logger or logging.getLogger(__name__)
        self.performance_monitor = performance_monitor or PerformanceMonitor(self.logger)
        self._clock = clock

    def register_new(self, snapshot: Snapshot) -> list:
        """
        Create registry entries (and logs) for addresses not registered yet.

        Returns:
            list: The newly registered addresses
        """
        store = self.ctx.store
        with store.read_txn() as txn:
            new_sensors = [addr for addr in sorted(snapshot) if txn.get_addr(addr) is None]

        if new_sensors:
            with store.write_txn() as txn:
                for addr in new_sensors:
                    txn.put_addr(addr, AddrDbEntry())
                txn.commit()
            for addr in new_sensors:
                self.logger.info(f"Memorized new sensor {addr}")
        return new_sensors

    async def apply(self, snapshot: Snapshot):
        """Register new addresses and merge one snapshot into the shared map."""
        self.register_new(snapshot)
        async with self.ctx.lock.write():
            self.ctx.sensors.update(snapshot)

    async def flush(self) -> int:
        """
        Append the values of every connected sensor to its log.

        Returns:
            int: Number of samples written
        """
        written = 0
        async with self.ctx.lock.read():
            now = self._clock()
            with self.performance_monitor.measure_time("flush"):
                with self.ctx.store.write_txn() as txn:
                    for addr, state in self.ctx.sorted_sensors():
                        if state.is_connected and txn.log(addr, now, state.values):
                            written += 1
                    txn.commit()
        self.logger.debug(f"Flushed {written} samples at {now}")
        return written

    async def run(self):
        """
        Run until cancelled.

        Storage errors propagate and end the task.
        """
        loop = asyncio.get_running_loop()
        next_flush = loop.time() + self.flush_interval
        self.logger.info("Update coordinator started")
        while True:
            timeout = max(0.0, next_flush - loop.time())
            try:
                snapshot = await asyncio.wait_for(self.updates.get(), timeout)
            except asyncio.TimeoutError:
                await self.flush()
                next_flush += self.flush_interval
                continue
            await self.apply(snapshot)


async def run_updates(ctx: GatewayContext, updates: asyncio.Queue,
                      flush_interval: float = DEFAULT_FLUSH_INTERVAL, **kwargs):
    """Run an UpdateCoordinator for `ctx` until cancelled."""
    await UpdateCoordinator(ctx, updates, flush_interval=flush_interval, **kwargs).run()
