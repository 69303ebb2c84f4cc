"""
Interpretation of BlueZ managed objects.
Classifies an object path and its interface/property bag into a typed adapter or
weatherstation device entity. Anything else is ignored.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from bleak.backends.bluezdbus import defs

from .address import AddressParseError, BluetoothAddress


BLUEZ_ROOT = "/org/bluez"

# A weatherstation advertises both of these. Treated purely as a required pair.
BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
WEATHERSTATION_SERVICE_UUID = "e7364bd3-a1c5-4924-847d-3a9cd6e343ef"
REQUIRED_SERVICE_UUIDS = frozenset({BATTERY_SERVICE_UUID, WEATHERSTATION_SERVICE_UUID})

# GATT object sub-paths below a device path
WEATHERSTATION_SERVICE_PATH = "service000a"
TEMPERATURE_CHARACTERISTIC_PATH = "char000b"
HUMIDITY_CHARACTERISTIC_PATH = "char000d"
PRESSURE_CHARACTERISTIC_PATH = "char000f"


@dataclass(frozen=True)
class AdapterEntity:
    """Local Bluetooth controller."""
    object_path: str
    identifier: str
    discovering: bool


@dataclass(frozen=True)
class DeviceEntity:
    """Remote device advertising the weatherstation services."""
    object_path: str
    address: BluetoothAddress
    connected: bool
    services_resolved: bool


BluezEntity = Union[AdapterEntity, DeviceEntity]
InterfaceMap = Mapping[str, Mapping[str, Any]]


def path_segments(object_path: str):
    """Path segments below the BlueZ root, or None for paths outside it."""
    if object_path != BLUEZ_ROOT and not object_path.startswith(BLUEZ_ROOT + "/"):
        return None
    rest = object_path[len(BLUEZ_ROOT):].strip("/")
    return rest.split("/") if rest else []


def _get_bool(properties: Mapping[str, Any], name: str) -> Optional[bool]:
    value = properties.get(name)
    return value if isinstance(value, bool) else None


def interpret_object(object_path: str, interfaces: InterfaceMap) -> Optional[BluezEntity]:
    """
    Classify one managed object.

    Args:
        object_path: D-Bus object path
        interfaces: Interface name to property mapping, variants already unpacked

    Returns:
        Optional[BluezEntity]: Adapter, weatherstation device or None if irrelevant
    """
    segments = path_segments(object_path)
    if segments is None or any(not segment for segment in segments):
        return None

    if len(segments) == 1:
        return _interpret_adapter(object_path, segments[0], interfaces)
    if len(segments) == 2:
        return _interpret_device(object_path, interfaces)
    return None


def _interpret_adapter(object_path: str, name: str, interfaces: InterfaceMap) -> Optional[AdapterEntity]:
    adapter = interfaces.get(defs.ADAPTER_INTERFACE)
    if adapter is None:
        return None
    discovering = _get_bool(adapter, "Discovering")
    if discovering is None:
        return None
    return AdapterEntity(object_path=object_path, identifier=name, discovering=discovering)


def _interpret_device(object_path: str, interfaces: InterfaceMap) -> Optional[DeviceEntity]:
    device = interfaces.get(defs.DEVICE_INTERFACE)
    if device is None:
        return None

    uuids = device.get("UUIDs")
    if not isinstance(uuids, (list, tuple)):
        return None
    advertised = {uuid for uuid in uuids if isinstance(uuid, str)}
    if not REQUIRED_SERVICE_UUIDS <= advertised:
        return None

    connected = _get_bool(device, "Connected")
    services_resolved = _get_bool(device, "ServicesResolved")
    if connected is None or services_resolved is None:
        return None

    try:
        address = BluetoothAddress.parse(device.get("Address"))
    except AddressParseError:
        return None

    return DeviceEntity(
        object_path=object_path,
        address=address,
        connected=connected,
        services_resolved=services_resolved,
    )


def characteristic_paths(device_path: str) -> Dict[str, str]:
    """Temperature, humidity and pressure characteristic paths of a device."""
    service = f"{device_path}/{WEATHERSTATION_SERVICE_PATH}"
    return {
        "temperature": f"{service}/{TEMPERATURE_CHARACTERISTIC_PATH}",
        "humidity": f"{service}/{HUMIDITY_CHARACTERISTIC_PATH}",
        "pressure": f"{service}/{PRESSURE_CHARACTERISTIC_PATH}",
    }
