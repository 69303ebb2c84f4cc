"""
Scripted in-memory BlueZ daemon for testing the session manager without hardware.
Records every call, can refuse connects and inject transport failures.
"""

import copy
import threading
from typing import Any, Dict, List, Optional, Tuple

from bleak.backends.bluezdbus import defs
from bleak.exc import BleakDBusError

from tests.fixtures.bluez_objects import ADAPTER_PATH


def refusal(message: str = "Software caused connection abort") -> BleakDBusError:
    return BleakDBusError("org.bluez.Error.Failed", [message])


class FakeBluez:
    """
    Stand-in for BluezClient.

    `objects` is what GetManagedObjects returns. A successful connect marks the
    device connected and, with `resolve_on_connect`, services resolved.
    Entries in `failures` are raised by the named method (one per call, in order).
    """

    def __init__(self,
                 objects: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None,
                 values: Optional[Dict[str, bytes]] = None,
                 resolve_on_connect: bool = True):
        self.objects = objects or {}
        self.values = dict(values or {})
        self.resolve_on_connect = resolve_on_connect
        self.failures: Dict[str, List[BaseException]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.connected = False
        self.closed = False
        self.polled = threading.Event()
        self._lock = threading.Lock()

    def fail(self, method: str, *errors: BaseException) -> 'FakeBluez':
        self.failures.setdefault(method, []).extend(errors)
        return self

    def _record(self, method: str, path: str = ""):
        with self._lock:
            self.calls.append((method, path))
            pending = self.failures.get(method)
            if pending:
                raise pending.pop(0)

    def calls_to(self, method: str) -> List[str]:
        with self._lock:
            return [path for name, path in self.calls if name == method]

    def connect(self) -> 'FakeBluez':
        self._record("connect")
        self.connected = True
        return self

    def get_managed_objects(self):
        self._record("get_managed_objects")
        self.polled.set()
        with self._lock:
            return copy.deepcopy(self.objects)

    def start_discovery(self, adapter_path: str = ADAPTER_PATH):
        self._record("start_discovery", adapter_path)
        with self._lock:
            self.objects[adapter_path][defs.ADAPTER_INTERFACE]["Discovering"] = True

    def connect_device(self, device_path: str):
        self._record("connect_device", device_path)
        with self._lock:
            device = self.objects[device_path][defs.DEVICE_INTERFACE]
            device["Connected"] = True
            if self.resolve_on_connect:
                device["ServicesResolved"] = True

    def disconnect_device(self, device_path: str):
        self._record("disconnect_device", device_path)
        with self._lock:
            device = self.objects[device_path][defs.DEVICE_INTERFACE]
            device["Connected"] = False
            device["ServicesResolved"] = False

    def read_value(self, characteristic_path: str) -> bytes:
        self._record("read_value", characteristic_path)
        return self.values[characteristic_path]

    def close(self):
        self._record("close")
        self.closed = True
