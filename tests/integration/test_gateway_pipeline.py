"""
Integration tests wiring the Bluetooth worker, the update coordinator, the
store and the daemon together without hardware or network.
"""

import asyncio
import functools
import itertools
from unittest.mock import Mock, patch

import pytest

from weatherstation.ble.address import BluetoothAddress
from weatherstation.ble.worker import BluetoothWorker
from weatherstation.sensor import SensorState
from weatherstation.service.context import GatewayContext
from weatherstation.service.coordinator import UpdateCoordinator
from weatherstation.service.daemon import GatewayDaemon, GatewayDaemonError
from weatherstation.storage.store import Store
from tests.fixtures.bluez_objects import STATION_ADDRESS, characteristic_values, station_graph
from tests.mocks.mock_bluez import FakeBluez, refusal


STATION = BluetoothAddress.parse(STATION_ADDRESS)


def stepping_clock(start=1000):
    # flushes come faster than the wall clock ticks, so hand out whole seconds
    counter = itertools.count(start)
    return lambda: next(counter)


class FakeServer:
    """Stands in for the uvicorn server; serves until asked to exit."""

    def __init__(self, config):
        self.config = config
        self.should_exit = False

    async def serve(self):
        while not self.should_exit:
            await asyncio.sleep(0.01)


async def wait_for_log(store, address, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        with store.read_txn() as txn:
            entries = txn.get_log(address, 0, 2 ** 32)
        if entries:
            return entries
        await asyncio.sleep(0.02)
    raise AssertionError(f"no samples logged for {address}")


@pytest.mark.asyncio
async def test_discovered_station_is_registered_and_logged(store, mock_logger, sample_values):
    bluez = FakeBluez(station_graph(), characteristic_values(STATION_ADDRESS, 2137, 4567, 1013250))
    bluez.fail("connect_device", refusal())
    ctx = GatewayContext(store)
    updates = asyncio.Queue(maxsize=1)
    worker = BluetoothWorker(updates, client_factory=lambda: bluez,
                             poll_interval=0.02, connect_poll_interval=0.02, logger=mock_logger)
    coordinator = UpdateCoordinator(ctx, updates, flush_interval=0.05, logger=mock_logger,
                                    clock=stepping_clock())

    worker.start()
    task = asyncio.create_task(coordinator.run())
    try:
        entries = await wait_for_log(store, STATION)
    finally:
        task.cancel()
        worker.stop()
        await asyncio.get_running_loop().run_in_executor(None, worker.join, 5)

    assert entries[0][1] == sample_values
    assert ctx.sensors[STATION] == SensorState.connected(sample_values)
    # first connect was refused, the retry succeeded
    assert len(bluez.calls_to("connect_device")) == 2
    assert not worker.failed.is_set()


@pytest.mark.asyncio
async def test_daemon_runs_demo_sensors_until_shutdown(mock_config):
    mock_config.demo = 2
    mock_config.flush_interval = 0.05

    coordinator_class = functools.partial(UpdateCoordinator, clock=stepping_clock())

    with patch("weatherstation.service.daemon.ApiServer", FakeServer), \
            patch("weatherstation.service.daemon.UpdateCoordinator", coordinator_class):
        daemon = GatewayDaemon(mock_config, logger=Mock())
        run = asyncio.create_task(daemon.start())

        for _ in range(250):
            await asyncio.sleep(0.02)
            if daemon.ctx is not None and len(daemon.ctx.sensors) == 2:
                break
        assert set(daemon.ctx.sensors) == {BluetoothAddress(0), BluetoothAddress(1)}

        daemon.request_shutdown()
        await asyncio.wait_for(run, timeout=5)

    store = Store.open(mock_config.db_path)
    try:
        with store.read_txn() as txn:
            assert txn.known_addrs() == [BluetoothAddress(0), BluetoothAddress(1)]
    finally:
        store.close()


@pytest.mark.asyncio
async def test_daemon_stops_on_bluetooth_failure(mock_config):
    mock_config.bluetooth_enabled = True
    bluez = FakeBluez().fail("connect", ConnectionError("system bus unavailable"))
    worker_class = functools.partial(BluetoothWorker, client_factory=lambda: bluez)

    with patch("weatherstation.service.daemon.ApiServer", FakeServer), \
            patch("weatherstation.service.daemon.BluetoothWorker", worker_class):
        daemon = GatewayDaemon(mock_config, logger=Mock())
        with pytest.raises(GatewayDaemonError) as exc_info:
            await asyncio.wait_for(daemon.start(), timeout=5)

    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert daemon.server.should_exit


class UnbindableServer(FakeServer):
    """Behaves like uvicorn when the port is taken."""

    async def serve(self):
        await asyncio.sleep(0.05)
        raise SystemExit(1)


@pytest.mark.asyncio
async def test_daemon_joins_worker_when_http_server_cannot_bind(mock_config):
    mock_config.bluetooth_enabled = True
    bluez = FakeBluez(station_graph())
    worker_class = functools.partial(BluetoothWorker, client_factory=lambda: bluez)

    with patch("weatherstation.service.daemon.ApiServer", UnbindableServer), \
            patch("weatherstation.service.daemon.BluetoothWorker", worker_class):
        daemon = GatewayDaemon(mock_config, logger=Mock())
        with pytest.raises(GatewayDaemonError, match="could not start"):
            await asyncio.wait_for(daemon.start(), timeout=5)

    assert not daemon.worker.is_alive()
    assert bluez.closed


@pytest.mark.asyncio
async def test_daemon_joins_worker_when_startup_fails_midway(mock_config):
    mock_config.bluetooth_enabled = True
    mock_config.mqtt_options = Mock()
    bluez = FakeBluez(station_graph())
    worker_class = functools.partial(BluetoothWorker, client_factory=lambda: bluez)

    with patch("weatherstation.service.daemon.ApiServer", FakeServer), \
            patch("weatherstation.service.daemon.BluetoothWorker", worker_class), \
            patch("weatherstation.service.daemon.MqttPublisher", side_effect=RuntimeError("broken options")):
        daemon = GatewayDaemon(mock_config, logger=Mock())
        with pytest.raises(RuntimeError, match="broken options"):
            await asyncio.wait_for(daemon.start(), timeout=5)

    assert not daemon.worker.is_alive()
    assert daemon.server.should_exit
