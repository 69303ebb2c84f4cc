"""
Blocking BlueZ client.
Wraps an asyncio D-Bus system-bus connection behind synchronous calls so the
poll loop can run on its own thread. Error replies from the daemon surface as
BleakDBusError, everything else (lost bus, I/O) propagates unchanged.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from bleak.backends.bluezdbus import defs
from bleak.backends.bluezdbus.utils import assert_reply
from dbus_fast import BusType, Message, unpack_variants
from dbus_fast.aio import MessageBus


ManagedObjects = Dict[str, Dict[str, Dict[str, Any]]]


class BluezClient:
    """
    Synchronous access to the parts of the BlueZ object graph the gateway uses.

    Must be created, used and closed on the same thread.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('weatherstation.ble')
        self._loop = asyncio.new_event_loop()
        self._bus: Optional[MessageBus] = None

    def _run(self, coro):
        return self._loop.run_until_complete(coro)

    def connect(self) -> 'BluezClient':
        """Open the system bus connection."""
        self._bus = self._run(MessageBus(bus_type=BusType.SYSTEM).connect())
        self.logger.debug("Connected to system bus")
        return self

    def _call(self, path: str, interface: str, member: str,
              signature: str = "", body: Optional[List[Any]] = None) -> List[Any]:
        if self._bus is None:
            raise RuntimeError("BluezClient is not connected")
        message = Message(
            destination=defs.BLUEZ_SERVICE,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=body or [],
        )
        reply = self._run(self._bus.call(message))
        assert_reply(reply)
        return reply.body

    def get_managed_objects(self) -> ManagedObjects:
        """All objects exported by BlueZ with their unpacked properties."""
        body = self._call("/", defs.OBJECT_MANAGER_INTERFACE, "GetManagedObjects")
        return unpack_variants(body[0])

    def start_discovery(self, adapter_path: str):
        self._call(adapter_path, defs.ADAPTER_INTERFACE, "StartDiscovery")

    def connect_device(self, device_path: str):
        self._call(device_path, defs.DEVICE_INTERFACE, "Connect")

    def disconnect_device(self, device_path: str):
        self._call(device_path, defs.DEVICE_INTERFACE, "Disconnect")

    def read_value(self, characteristic_path: str) -> bytes:
        body = self._call(
            characteristic_path,
            defs.GATT_CHARACTERISTIC_INTERFACE,
            "ReadValue",
            "a{sv}",
            [{}],
        )
        return bytes(body[0])

    def close(self):
        """Disconnect from the bus and release the private event loop."""
        try:
            if self._bus is not None:
                self._bus.disconnect()
                self._run(self._bus.wait_for_disconnect())
                self._bus = None
        finally:
            self._loop.close()
