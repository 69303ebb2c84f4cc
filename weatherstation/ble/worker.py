"""
Dedicated Bluetooth worker thread.
Runs the blocking session manager off the event loop and talks to the rest of the
process only through a one-slot snapshot queue and a one-shot fatal-error signal.
"""

import asyncio
import logging
import threading
from typing import Callable, List, Optional

from ..utils.logging import PerformanceMonitor
from .bluez import BluezClient
from .session import (
    DEFAULT_CONNECT_POLL_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    SessionManager,
    Snapshot,
)


class FatalSignal:
    """One-shot signal carrying the error that ended a worker. Fires at most once."""

    def __init__(self):
        self._lock = threading.Lock()
        self._fired = threading.Event()
        self._error: Optional[BaseException] = None
        self._callbacks: List[Callable[[BaseException], None]] = []

    def fire(self, error: BaseException) -> bool:
        """
        Fire the signal.

        Returns:
            bool: False if it had already fired
        """
        with self._lock:
            if self._fired.is_set():
                return False
            self._error = error
            self._fired.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(error)
        return True

    def is_set(self) -> bool:
        return self._fired.is_set()

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def add_callback(self, callback: Callable[[BaseException], None]):
        with self._lock:
            if not self._fired.is_set():
                self._callbacks.append(callback)
                return
        callback(self._error)

    async def wait(self) -> BaseException:
        """Wait on the event loop until the signal fires and return the error."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def resolve(error):
            if not future.done():
                future.set_result(error)

        self.add_callback(lambda error: loop.call_soon_threadsafe(resolve, error))
        return await future


class BluetoothWorker:
    """
    Owns the Bluetooth thread.

    Snapshots are offered to `updates` (maxsize 1); when the consumer has not
    taken the previous one yet the new snapshot is dropped.
    """

    def __init__(self,
                 updates: asyncio.Queue,
                 client_factory: Callable[[], BluezClient] = BluezClient,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 connect_poll_interval: float = DEFAULT_CONNECT_POLL_INTERVAL,
                 logger: Optional[logging.Logger] = None,
                 performance_monitor: Optional[PerformanceMonitor] = None):
        self.updates = updates
        self.client_factory = client_factory
        self.poll_interval = poll_interval
        self.connect_poll_interval = connect_poll_interval
        self.logger = logger or logging.getLogger('weatherstation.ble')
        self.performance_monitor = performance_monitor

        self.failed = FatalSignal()
        self.error: Optional[BaseException] = None
        self._stop = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0

    def start(self):
        """Start the worker. Must be called from the event loop thread."""
        if self._thread is not None:
            raise RuntimeError("Bluetooth worker already started")
        self._loop = asyncio.get_running_loop()
        # non-daemon: interpreter exit waits for the orderly disconnect
        self._thread = threading.Thread(target=self._run, name="bluetooth")
        self._thread.start()

    def stop(self):
        """Request an orderly shutdown (disconnects every session)."""
        self._stop.set()

    def join(self, timeout: Optional[float] = None):
        """
        Wait for the thread to exit.

        Raises:
            BaseException: The fatal error the worker exited with, if any
        """
        if self._thread is not None:
            self._thread.join(timeout)
        if self.error is not None:
            raise self.error

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _offer(self, snapshot: Snapshot):
        try:
            self.updates.put_nowait(snapshot)
        except asyncio.QueueFull:
            self._dropped += 1
            self.logger.debug(f"Update consumer busy, dropped snapshot ({self._dropped} total)")

    def _emit(self, snapshot: Snapshot):
        self._loop.call_soon_threadsafe(self._offer, snapshot)

    def _run(self):
        try:
            client = self.client_factory()
            client.connect()
            try:
                manager = SessionManager(
                    client,
                    poll_interval=self.poll_interval,
                    connect_poll_interval=self.connect_poll_interval,
                    logger=self.logger,
                    performance_monitor=self.performance_monitor,
                )
                manager.run(self._stop, self._emit)
            finally:
                client.close()
        except Exception as e:
            self.error = e
            self.logger.error(f"Bluetooth worker failed: {e}")
            self.failed.fire(e)
