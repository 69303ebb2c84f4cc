"""
Unit tests for sensor value decoding, validation and display.
"""

import struct

import pytest

from weatherstation.sensor import (
    Celsius,
    Pascal,
    RawSensorValues,
    RelativeHumidity,
    SensorState,
    SensorValueError,
    SensorValues,
)


class TestCelsius:
    """Test temperature validation and formatting."""

    def test_absolute_zero_is_valid(self):
        assert str(Celsius(-27315)) == "-273.15°C"

    def test_below_absolute_zero_rejected(self):
        with pytest.raises(SensorValueError):
            Celsius(-27316)

    @pytest.mark.parametrize("raw, text", [
        (0, "0.00°C"),
        (2137, "21.37°C"),
        (5, "0.05°C"),
        (-150, "-1.50°C"),
        (-5, "-0.05°C"),
        (32767, "327.67°C"),
    ])
    def test_display(self, raw, text):
        assert str(Celsius(raw)) == text

    def test_decode_little_endian_signed(self):
        assert Celsius.from_bytes(struct.pack('<h', -150)).raw == -150
        assert Celsius.from_bytes(b'\x59\x08').raw == 0x0859

    def test_decode_below_absolute_zero_is_error(self):
        with pytest.raises(SensorValueError):
            Celsius.from_bytes(struct.pack('<h', -30000))

    @pytest.mark.parametrize("data", [b'', b'\x01', b'\x01\x02\x03'])
    def test_decode_wrong_length(self, data):
        with pytest.raises(SensorValueError):
            Celsius.from_bytes(data)


class TestRelativeHumidity:
    """Test humidity validation and formatting."""

    def test_upper_bound(self):
        assert str(RelativeHumidity(10000)) == "100.00%"
        with pytest.raises(SensorValueError):
            RelativeHumidity(10001)

    def test_display_keeps_fixed_point_scale(self):
        assert str(RelativeHumidity(8001)) == "80.01%"
        assert str(RelativeHumidity(0)) == "0.00%"

    def test_decode_out_of_range_is_error_not_clamped(self):
        with pytest.raises(SensorValueError):
            RelativeHumidity.from_bytes(struct.pack('<H', 65535))

    def test_negative_rejected(self):
        with pytest.raises(SensorValueError):
            RelativeHumidity(-1)


class TestPascal:
    """Test pressure decoding and formatting."""

    def test_display_in_tenths(self):
        assert str(Pascal(1000)) == "100.0Pa"
        assert str(Pascal(1013253)) == "101325.3Pa"

    def test_every_u32_is_valid(self):
        assert Pascal.from_bytes(b'\xff\xff\xff\xff').raw == 0xFFFFFFFF
        assert Pascal.from_bytes(b'\x00\x00\x00\x00').raw == 0

    def test_decode_wrong_length(self):
        with pytest.raises(SensorValueError):
            Pascal.from_bytes(b'\x00\x00')


class TestSensorValues:
    """Test the combined reading and its storage record."""

    def test_from_characteristics(self):
        values = SensorValues.from_characteristics(
            temperature=struct.pack('<h', 2137),
            humidity=struct.pack('<H', 4567),
            pressure=struct.pack('<I', 1013250),
        )
        assert values == SensorValues.from_raw(2137, 4567, 1013250)

    def test_one_bad_characteristic_fails_whole_reading(self):
        with pytest.raises(SensorValueError):
            SensorValues.from_characteristics(
                temperature=struct.pack('<h', 2137),
                humidity=struct.pack('<H', 20000),
                pressure=struct.pack('<I', 1013250),
            )

    def test_to_dict_uses_raw_units(self, sample_values):
        assert sample_values.to_dict() == {
            "temperature": 2137,
            "pressure": 1013250,
            "humidity": 4567,
        }

    def test_str(self, sample_values):
        assert str(sample_values) == "Humidity: 45.67%, Temperature: 21.37°C, pressure: 101325.0Pa"

    def test_raw_record_layout(self, sample_values):
        raw = RawSensorValues.from_values(sample_values)
        data = raw.to_bytes()
        assert len(data) == RawSensorValues.SIZE == 8
        assert data == struct.pack('<hHI', 2137, 4567, 1013250)
        assert RawSensorValues.from_bytes(data).to_values() == sample_values

    def test_raw_record_out_of_range_does_not_validate(self):
        raw = RawSensorValues.from_bytes(struct.pack('<hHI', 2000, 10001, 0))
        with pytest.raises(SensorValueError):
            raw.to_values()

    def test_raw_record_wrong_size(self):
        with pytest.raises(SensorValueError):
            RawSensorValues.from_bytes(b'\x00' * 7)


class TestSensorState:
    """Test the connected/unconnected state."""

    def test_connected(self, sample_values):
        state = SensorState.connected(sample_values)
        assert state.is_connected
        assert state.to_dict() == {
            "state": "Connected",
            "temperature": 2137,
            "pressure": 1013250,
            "humidity": 4567,
        }

    def test_unconnected(self):
        state = SensorState.unconnected()
        assert not state.is_connected
        assert state.values is None
        assert state.to_dict() == {"state": "Unconnected"}
