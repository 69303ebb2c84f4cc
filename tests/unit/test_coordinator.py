"""
Unit tests for the update coordinator and the shared gateway context.
"""

import asyncio
import itertools

import pytest

from weatherstation.ble.address import BluetoothAddress
from weatherstation.sensor import SensorState, SensorValues
from weatherstation.service.context import GatewayContext
from weatherstation.service.coordinator import UpdateCoordinator
from weatherstation.storage.schema import AddrDbEntry
from weatherstation.storage.store import LogOrderError


ADDR = BluetoothAddress.parse("AA:BB:CC:DD:EE:FF")
OTHER = BluetoothAddress.parse("00:00:00:00:00:01")


def counting_clock(start=1000, step=60):
    counter = itertools.count(start, step)
    return lambda: next(counter)


@pytest.fixture
def ctx(store):
    return GatewayContext(store)


class TestGatewayContext:
    """Test context creation."""

    def test_known_addresses_start_unconnected(self, tmp_path):
        ctx = GatewayContext.create(tmp_path / "db")
        with ctx.store.write_txn() as txn:
            txn.put_addr(ADDR, AddrDbEntry(label="Garden"))
            txn.commit()
        ctx.close()

        ctx = GatewayContext.create(tmp_path / "db")
        try:
            assert ctx.sensors == {ADDR: SensorState.unconnected()}
        finally:
            ctx.close()


class TestSnapshotMerge:
    """Test registration and merging of snapshots."""

    @pytest.mark.asyncio
    async def test_new_address_is_registered_once(self, ctx, mock_logger, sample_values):
        coordinator = UpdateCoordinator(ctx, asyncio.Queue(maxsize=1), logger=mock_logger)
        snapshot = {ADDR: SensorState.connected(sample_values)}

        await coordinator.apply(snapshot)
        await coordinator.apply(snapshot)

        with ctx.store.read_txn() as txn:
            assert txn.known_addrs() == [ADDR]
            assert txn.get_addr(ADDR) == AddrDbEntry()
        mock_logger.info.assert_called_once_with(f"Memorized new sensor {ADDR}")
        assert ADDR in ctx.store.open_logs

    @pytest.mark.asyncio
    async def test_labels_survive_later_snapshots(self, ctx, mock_logger, sample_values):
        with ctx.store.write_txn() as txn:
            txn.put_addr(ADDR, AddrDbEntry(label="Garden"))
            txn.commit()
        coordinator = UpdateCoordinator(ctx, asyncio.Queue(maxsize=1), logger=mock_logger)

        assert coordinator.register_new({ADDR: SensorState.connected(sample_values)}) == []
        with ctx.store.read_txn() as txn:
            assert txn.get_addr(ADDR).label == "Garden"

    @pytest.mark.asyncio
    async def test_snapshot_extends_state(self, ctx, mock_logger, sample_values):
        ctx.sensors[OTHER] = SensorState.unconnected()
        coordinator = UpdateCoordinator(ctx, asyncio.Queue(maxsize=1), logger=mock_logger)

        await coordinator.apply({ADDR: SensorState.connected(sample_values)})

        assert ctx.sensors == {
            OTHER: SensorState.unconnected(),
            ADDR: SensorState.connected(sample_values),
        }


class TestFlush:
    """Test periodic flushing into the logs."""

    @pytest.mark.asyncio
    async def test_flush_logs_connected_sensors_only(self, ctx, mock_logger, mock_performance_monitor,
                                                     sample_values):
        coordinator = UpdateCoordinator(ctx, asyncio.Queue(maxsize=1), logger=mock_logger,
                                        performance_monitor=mock_performance_monitor,
                                        clock=counting_clock())
        await coordinator.apply({
            ADDR: SensorState.connected(sample_values),
            OTHER: SensorState.unconnected(),
        })

        assert await coordinator.flush() == 1
        assert await coordinator.flush() == 1

        with ctx.store.read_txn() as txn:
            assert txn.get_log(ADDR, 0, 2000) == [(1000, sample_values), (1060, sample_values)]
            assert txn.get_log(OTHER, 0, 2000) == []
        mock_performance_monitor.measure_time.assert_called_with("flush")

    @pytest.mark.asyncio
    async def test_clock_going_backwards_is_fatal(self, ctx, mock_logger, sample_values):
        ticks = iter([2000, 1990])
        coordinator = UpdateCoordinator(ctx, asyncio.Queue(maxsize=1), logger=mock_logger,
                                        clock=lambda: next(ticks))
        await coordinator.apply({ADDR: SensorState.connected(sample_values)})

        await coordinator.flush()
        with pytest.raises(LogOrderError):
            await coordinator.flush()

        # the failed flush released the writer
        ctx.store.write_txn().close()


class TestRun:
    """Test the coordinator task."""

    @pytest.mark.asyncio
    async def test_run_merges_and_flushes(self, ctx, mock_logger, sample_values):
        updates = asyncio.Queue(maxsize=1)
        coordinator = UpdateCoordinator(ctx, updates, flush_interval=0.05, logger=mock_logger,
                                        clock=counting_clock())
        task = asyncio.create_task(coordinator.run())
        try:
            await updates.put({ADDR: SensorState.connected(sample_values)})
            for _ in range(100):
                await asyncio.sleep(0.02)
                with ctx.store.read_txn() as txn:
                    entries = txn.get_log(ADDR, 0, 1_000_000)
                if entries:
                    break
            assert entries and entries[0][1] == sample_values
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

    @pytest.mark.asyncio
    async def test_run_ends_on_storage_error(self, ctx, mock_logger, sample_values):
        updates = asyncio.Queue(maxsize=1)
        coordinator = UpdateCoordinator(ctx, updates, flush_interval=0.02, logger=mock_logger,
                                        clock=lambda: 5000)
        await updates.put({ADDR: SensorState.connected(sample_values)})

        with pytest.raises(LogOrderError):
            await asyncio.wait_for(coordinator.run(), timeout=5)
