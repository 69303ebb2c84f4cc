"""
Gateway daemon.
Wires the store, the Bluetooth worker, demo sensors, the update coordinator,
the MQTT publisher and the HTTP API together and orchestrates shutdown.
"""

import asyncio
import contextlib
import signal
import sys
from typing import List, Optional

import uvicorn

from ..ble.worker import BluetoothWorker
from ..utils.config import Config, ConfigurationError
from ..utils.logging import PerformanceMonitor, ProductionLogger, setup_logging
from .context import GatewayContext
from .coordinator import UpdateCoordinator
from .demo import start_demo_sensors
from .http import create_app
from .mqtt import MqttPublisher


class GatewayDaemonError(Exception):
    """Raised when the daemon fails to start or stops on a fatal error."""
    pass


class ApiServer(uvicorn.Server):
    """Uvicorn server that leaves signal handling to the daemon."""

    def install_signal_handlers(self):
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class GatewayDaemon:
    """
    Runs the gateway until a termination signal, a Bluetooth worker failure
    or an update coordinator failure.
    """

    def __init__(self, config: Optional[Config] = None, logger: Optional[ProductionLogger] = None):
        self.config = config or Config()
        self.production_logger = logger
        self.logger = None
        self.performance_monitor: Optional[PerformanceMonitor] = None

        self.ctx: Optional[GatewayContext] = None
        self.worker: Optional[BluetoothWorker] = None
        self.server: Optional[ApiServer] = None
        self._tasks: List[asyncio.Task] = []
        self._shutdown = asyncio.Event()
        self._running = False

    def request_shutdown(self, signum: Optional[int] = None):
        """Ask the daemon to stop. Safe to call from a signal handler."""
        if signum is not None and self.logger:
            self.logger.info(f"Received {signal.Signals(signum).name}, initiating graceful shutdown...")
        self._shutdown.set()

    def _setup_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self.request_shutdown, signum)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop):
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(signum)

    def _initialize_components(self, updates: asyncio.Queue):
        self.config.validate_configuration()
        if self.production_logger is None:
            self.production_logger = setup_logging(self.config)
        self.logger = self.production_logger.get_logger('weatherstation.daemon')
        self.performance_monitor = PerformanceMonitor(self.logger)
        self.logger.debug(f"Configuration: {self.config.get_summary()}")

        self.ctx = GatewayContext.create(self.config.db_path)

        if self.config.bluetooth_enabled:
            self.worker = BluetoothWorker(
                updates,
                poll_interval=self.config.ble_poll_interval,
                connect_poll_interval=self.config.ble_connect_poll_interval,
                performance_monitor=self.performance_monitor,
            )

        server_config = uvicorn.Config(
            create_app(self.ctx),
            host=self.config.host,
            port=self.config.port,
            log_config=None,
        )
        self.server = ApiServer(server_config)

    async def _serve(self):
        try:
            await self.server.serve()
        except SystemExit as e:
            # uvicorn exits the process when it cannot bind
            raise GatewayDaemonError(f"HTTP server could not start (exit code {e.code})") from e

    async def start(self):
        """Start every component and run until shutdown."""
        if self._running:
            raise GatewayDaemonError("Daemon is already running")

        loop = asyncio.get_running_loop()
        updates: asyncio.Queue = asyncio.Queue(maxsize=1)

        try:
            self._initialize_components(updates)
        except ConfigurationError as e:
            raise GatewayDaemonError(f"Invalid configuration: {e}") from e
        except Exception as e:
            raise GatewayDaemonError(f"Startup failed: {e}") from e

        self._running = True
        self._setup_signal_handlers(loop)
        self.logger.info("Starting weatherstation gateway...")

        coordinator = UpdateCoordinator(
            self.ctx,
            updates,
            flush_interval=self.config.flush_interval,
            performance_monitor=self.performance_monitor,
        )
        server_task: Optional[asyncio.Task] = None
        watched = set()
        failure: Optional[BaseException] = None
        try:
            coordinator_task = asyncio.create_task(coordinator.run(), name="coordinator")
            server_task = asyncio.create_task(self._serve(), name="http")
            shutdown_task = asyncio.create_task(self._shutdown.wait(), name="shutdown")
            watched.update((coordinator_task, server_task, shutdown_task))

            if self.worker is not None:
                self.worker.start()
                watched.add(asyncio.create_task(self.worker.failed.wait(), name="bluetooth-failed"))

            if self.config.demo:
                self._tasks.extend(start_demo_sensors(self.config.demo, updates, logger=self.logger))

            mqtt_options = self.config.mqtt_options
            if mqtt_options is not None:
                publisher = MqttPublisher(self.ctx, mqtt_options, interval=self.config.mqtt_publish_interval)
                watched.add(asyncio.create_task(publisher.run(), name="mqtt"))

            self.logger.info(f"Started server on {self.config.host}:{self.config.port}")

            done, _ = await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)

            for task in done:
                if task is shutdown_task:
                    continue
                error = task.exception() if not task.cancelled() else None
                if task.get_name() == "bluetooth-failed":
                    self.logger.error(f"Bluetooth worker failed: {task.result()}")
                    failure = task.result()
                elif error is not None:
                    self.logger.error(f"{task.get_name()} task failed: {error}")
                    failure = error
                elif task is server_task:
                    self.logger.info("HTTP server exited")
        finally:
            # also reached on startup errors and cancellation, so the worker is always joined
            for task in watched:
                if task is not server_task and not task.done():
                    task.cancel()
            self._tasks.extend(t for t in watched if t is not server_task)
            worker_error = await self.stop(server_task)

        failure = failure or worker_error
        if failure is not None:
            raise GatewayDaemonError(f"Gateway stopped on fatal error: {failure}") from failure

    async def stop(self, server_task: Optional[asyncio.Task] = None) -> Optional[BaseException]:
        """
        Stop the daemon gracefully.

        Returns:
            The error the Bluetooth worker exited with, if any
        """
        if not self._running:
            return None

        self.logger.info("Stopping weatherstation gateway...")
        self._running = False
        loop = asyncio.get_running_loop()
        self._remove_signal_handlers(loop)

        if self.worker is not None:
            self.worker.stop()

        if self.server is not None:
            self.server.should_exit = True
        if server_task is not None:
            (result,) = await asyncio.gather(server_task, return_exceptions=True)
            if isinstance(result, Exception):
                self.logger.error(f"HTTP server failed: {result}")

        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        worker_error = None
        if self.worker is not None:
            try:
                await loop.run_in_executor(None, self.worker.join)
            except Exception as e:
                self.logger.error(f"Bluetooth worker exited with error: {e}")
                worker_error = e

        if self.ctx is not None:
            self.ctx.close()

        if self.performance_monitor is not None:
            for name, stats in self.performance_monitor.summary().items():
                self.logger.info(
                    f"{name}: {stats['count']} runs, mean {stats['mean']:.3f}s, max {stats['max']:.3f}s")

        self.logger.info("Weatherstation gateway stopped")
        return worker_error


async def run_daemon(config: Optional[Config] = None):
    """Run the daemon from command line."""
    daemon = GatewayDaemon(config)

    try:
        await daemon.start()
    except GatewayDaemonError as e:
        print(f"Gateway failed: {e}", file=sys.stderr)
        sys.exit(1)
