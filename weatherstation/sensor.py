"""
Weatherstation sensor values.
Fixed-point domain quantities decoded from raw GATT characteristic bytes, the
fixed-size record stored in the per-device logs, and the in-memory sensor state.
"""

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class SensorValueError(ValueError):
    """Raised when a raw value is outside its physical range or wrongly sized."""
    pass


# Absolute zero in hundredths of a degree
ABSOLUTE_ZERO = -273_15
MAX_RELATIVE_HUMIDITY = 100_00

_I16 = struct.Struct('<h')
_U16 = struct.Struct('<H')
_U32 = struct.Struct('<I')


def _fixed_point(value: int, scale: int, digits: int) -> str:
    sign = '-' if value < 0 else ''
    whole, frac = divmod(abs(value), scale)
    return f"{sign}{whole}.{frac:0{digits}d}"


@dataclass(frozen=True)
class Celsius:
    """Temperature in hundredths of a degree Celsius."""
    raw: int

    def __post_init__(self):
        if not -0x8000 <= self.raw <= 0x7FFF:
            raise SensorValueError(f"Temperature {self.raw} does not fit in 16 bits")
        if self.raw < ABSOLUTE_ZERO:
            raise SensorValueError(
                f"Received temperature lower than absolute zero: {self.raw}"
            )

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Celsius':
        return cls(_unpack(_I16, data, "temperature"))

    def __str__(self) -> str:
        return f"{_fixed_point(self.raw, 100, 2)}°C"


@dataclass(frozen=True)
class RelativeHumidity:
    """Relative humidity in hundredths of a percent."""
    raw: int

    def __post_init__(self):
        if self.raw < 0:
            raise SensorValueError(f"Relative humidity can't be negative, received {self.raw}")
        if self.raw > MAX_RELATIVE_HUMIDITY:
            raise SensorValueError(
                f"Invalid relative humidity, can't be higher than 100%, received {self.raw}"
            )

    @classmethod
    def from_bytes(cls, data: bytes) -> 'RelativeHumidity':
        return cls(_unpack(_U16, data, "humidity"))

    def __str__(self) -> str:
        return f"{_fixed_point(self.raw, 100, 2)}%"


@dataclass(frozen=True)
class Pascal:
    """Pressure in tenths of a pascal. Every u32 is a valid pressure."""
    raw: int

    def __post_init__(self):
        if not 0 <= self.raw <= 0xFFFFFFFF:
            raise SensorValueError(f"Pressure {self.raw} does not fit in 32 bits")

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Pascal':
        return cls(_unpack(_U32, data, "pressure"))

    def __str__(self) -> str:
        return f"{_fixed_point(self.raw, 10, 1)}Pa"


def _unpack(fmt: struct.Struct, data: bytes, name: str) -> int:
    if len(data) != fmt.size:
        raise SensorValueError(
            f"Expected {fmt.size} bytes for {name}, received {len(data)}"
        )
    return fmt.unpack(bytes(data))[0]


@dataclass(frozen=True)
class SensorValues:
    """One validated reading of all three weatherstation characteristics."""
    temperature: Celsius
    pressure: Pascal
    humidity: RelativeHumidity

    @classmethod
    def from_raw(cls, temperature: int, humidity: int, pressure: int) -> 'SensorValues':
        """Build validated values from raw fixed-point integers."""
        return cls(
            temperature=Celsius(temperature),
            pressure=Pascal(pressure),
            humidity=RelativeHumidity(humidity),
        )

    @classmethod
    def from_characteristics(cls, temperature: bytes, humidity: bytes, pressure: bytes) -> 'SensorValues':
        """
        Decode the three raw characteristic values.

        Raises:
            SensorValueError: If any value is wrongly sized or out of range
        """
        return cls(
            temperature=Celsius.from_bytes(temperature),
            pressure=Pascal.from_bytes(pressure),
            humidity=RelativeHumidity.from_bytes(humidity),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "temperature": self.temperature.raw,
            "pressure": self.pressure.raw,
            "humidity": self.humidity.raw,
        }

    def __str__(self) -> str:
        return f"Humidity: {self.humidity}, Temperature: {self.temperature}, pressure: {self.pressure}"


@dataclass(frozen=True)
class RawSensorValues:
    """Byte-exact log payload: temperature i16, humidity u16, pressure u32."""
    temperature: int
    humidity: int
    pressure: int

    FORMAT = struct.Struct('<hHI')
    SIZE = FORMAT.size

    @classmethod
    def from_values(cls, values: SensorValues) -> 'RawSensorValues':
        return cls(values.temperature.raw, values.humidity.raw, values.pressure.raw)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'RawSensorValues':
        if len(data) != cls.SIZE:
            raise SensorValueError(f"Expected {cls.SIZE} byte sample, received {len(data)}")
        return cls(*cls.FORMAT.unpack(bytes(data)))

    def to_bytes(self) -> bytes:
        return self.FORMAT.pack(self.temperature, self.humidity, self.pressure)

    def to_values(self) -> SensorValues:
        """
        Validate into domain values.

        Raises:
            SensorValueError: If a stored component is out of range
        """
        return SensorValues.from_raw(self.temperature, self.humidity, self.pressure)


class SensorStatus(str, Enum):
    """Tag of a sensor state."""
    CONNECTED = "Connected"
    UNCONNECTED = "Unconnected"


@dataclass(frozen=True)
class SensorState:
    """Connected(values) or Unconnected."""
    status: SensorStatus
    values: Optional[SensorValues] = None

    @classmethod
    def connected(cls, values: SensorValues) -> 'SensorState':
        return cls(SensorStatus.CONNECTED, values)

    @classmethod
    def unconnected(cls) -> 'SensorState':
        return cls(SensorStatus.UNCONNECTED)

    @property
    def is_connected(self) -> bool:
        return self.status is SensorStatus.CONNECTED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"state": self.status.value}
        if self.values is not None:
            data.update(self.values.to_dict())
        return data
