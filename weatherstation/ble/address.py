"""
Bluetooth device address codec.
Converts 48-bit device identities to and from their canonical colon-hex text form.
"""

import re
from dataclasses import dataclass


class AddressParseError(ValueError):
    """Raised when a string is not a six-octet colon-separated address."""
    pass


_OCTET_RE = re.compile(r'^[0-9A-Fa-f]{2}$')

EXAMPLE_ADDRESS = "00:11:22:33:FF:EE"
MAX_ADDRESS = (1 << 48) - 1


@dataclass(frozen=True, order=True)
class BluetoothAddress:
    """48-bit Bluetooth device address, ordered by numeric value."""
    value: int

    def __post_init__(self):
        if not 0 <= self.value <= MAX_ADDRESS:
            raise AddressParseError(f"Bluetooth address {self.value:#x} does not fit in 48 bits")

    @classmethod
    def parse(cls, text: str) -> 'BluetoothAddress':
        """
        Parse the canonical `AA:BB:CC:DD:EE:FF` form.

        Args:
            text: Six colon-separated two-digit hex octets

        Returns:
            BluetoothAddress: Parsed address

        Raises:
            AddressParseError: If the text has any other shape
        """
        if not isinstance(text, str) or len(text) != len(EXAMPLE_ADDRESS):
            raise AddressParseError(f"Bluetooth address {text!r} has the wrong length")

        value = 0
        segments = text.split(':')
        if len(segments) != 6:
            raise AddressParseError(f"Invalid bluetooth address {text!r}")
        for segment in segments:
            if not _OCTET_RE.match(segment):
                raise AddressParseError(f"Invalid bluetooth address {text!r}")
            value = (value << 8) | int(segment, 16)

        return cls(value)

    def octets(self) -> bytes:
        """Address octets, most significant first."""
        return self.value.to_bytes(6, 'big')

    def __str__(self) -> str:
        return ':'.join(f'{b:02X}' for b in self.octets())

    def __repr__(self) -> str:
        return f"BluetoothAddress('{self}')"
