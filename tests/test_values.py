"""Tests for the option value codec.

Test Categories:
1. Word helpers - packing, range checks, fixed-point conversion
2. decode() - raw buffers to value variants
3. encode() - value variants to raw buffers, string truncation
4. coerce_value() - plain Python values to variants
5. to_python() - variants back to plain values
"""

import struct

import pytest

from sane_scan.devices.values import (
    AUTO,
    Auto,
    BoolValue,
    FixedValue,
    FixedVector,
    IntValue,
    IntVector,
    StringValue,
    coerce_value,
    decode,
    encode,
    fixed_to_float,
    float_to_fixed,
    pack_words,
    to_python,
    unpack_words,
)
from sane_scan.drivers.backends.types import ValueType
from sane_scan.errors import InvalidArgumentError


def words(*values: int) -> bytes:
    return struct.pack(f"={len(values)}i", *values)


# =============================================================================
# Word Helpers
# =============================================================================


class TestWordHelpers:
    """Tests for word packing and fixed-point conversion."""

    def test_pack_uses_native_order(self):
        assert pack_words([1, -1]) == words(1, -1)

    def test_pack_rejects_overflow(self):
        with pytest.raises(InvalidArgumentError, match="32-bit"):
            pack_words([1 << 31])

    def test_unpack_short_buffer(self):
        with pytest.raises(InvalidArgumentError, match="too short"):
            unpack_words(b"\x00\x00", 1)

    def test_fixed_scale(self):
        assert float_to_fixed(1.0) == 65536
        assert fixed_to_float(98304) == 1.5

    def test_fixed_truncates_toward_zero(self):
        """Sub-unit fractions are cut, never rounded, in both directions."""
        assert float_to_fixed(1.00001) == 65536
        assert float_to_fixed(-1.00001) == -65536
        assert float_to_fixed(-0.00001) == 0


# =============================================================================
# Decode
# =============================================================================


class TestDecode:
    """Tests for decode()."""

    def test_bool_nonzero_is_true(self):
        assert decode(words(7), ValueType.BOOL, 1) == BoolValue(True)
        assert decode(words(0), ValueType.BOOL, 1) == BoolValue(False)

    def test_int_scalar(self):
        assert decode(words(-42), ValueType.INT, 1) == IntValue(-42)

    def test_int_vector(self):
        assert decode(words(1, 2, 3), ValueType.INT, 3) == IntVector((1, 2, 3))

    def test_fixed_scalar_and_vector(self):
        assert decode(words(3 << 15), ValueType.FIXED, 1) == FixedValue(1.5)
        assert decode(words(65536, -65536), ValueType.FIXED, 2) == FixedVector(
            (1.0, -1.0)
        )

    def test_string_stops_at_nul(self):
        raw = b"Color\x00garbage"
        assert decode(raw, ValueType.STRING, 1) == StringValue("Color")

    def test_string_without_nul_uses_whole_buffer(self):
        assert decode(b"Gray", ValueType.STRING, 1) == StringValue("Gray")

    @pytest.mark.parametrize("vtype", [ValueType.BUTTON, ValueType.GROUP])
    def test_valueless_types_rejected(self, vtype):
        with pytest.raises(InvalidArgumentError, match="carry no value"):
            decode(b"", vtype, 1)

    def test_short_buffer_rejected(self):
        with pytest.raises(InvalidArgumentError):
            decode(words(1), ValueType.INT, 2)

    def test_non_positive_length_rejected(self):
        with pytest.raises(InvalidArgumentError, match="invalid option length"):
            decode(words(1), ValueType.INT, 0)


# =============================================================================
# Encode
# =============================================================================


class TestEncode:
    """Tests for encode()."""

    def test_bool(self):
        assert encode(BoolValue(True), ValueType.BOOL, 1, 4) == words(1)

    def test_int_vector(self):
        raw = encode(IntVector((4, 5)), ValueType.INT, 2, 8)
        assert raw == words(4, 5)

    def test_fixed_scalar(self):
        assert encode(FixedValue(-1.5), ValueType.FIXED, 1, 4) == words(-98304)

    def test_numeric_payload_zero_padded_to_size(self):
        assert encode(IntValue(9), ValueType.INT, 1, 8) == words(9, 0)

    def test_vector_length_mismatch(self):
        """A vector must match the option length exactly."""
        with pytest.raises(InvalidArgumentError, match="expects 3 values, got 2"):
            encode(IntVector((1, 2)), ValueType.INT, 3, 12)

    def test_scalar_for_vector_option(self):
        with pytest.raises(InvalidArgumentError, match="got a scalar"):
            encode(FixedValue(1.0), ValueType.FIXED, 4, 16)

    def test_variant_mismatch(self):
        with pytest.raises(InvalidArgumentError, match="cannot take StringValue"):
            encode(StringValue("1"), ValueType.INT, 1, 4)

    def test_string_padded_with_nul(self):
        assert encode(StringValue("ab"), ValueType.STRING, 1, 5) == b"ab\x00\x00\x00"

    def test_string_filling_buffer_loses_last_byte(self):
        """The final byte of a string buffer is always NUL."""
        raw = encode(StringValue("abcd"), ValueType.STRING, 1, 4)
        assert raw == b"abc\x00"
        assert decode(raw, ValueType.STRING, 1) == StringValue("abc")

    def test_string_utf8(self):
        raw = encode(StringValue("größe"), ValueType.STRING, 1, 16)
        assert decode(raw, ValueType.STRING, 1) == StringValue("größe")

    def test_button_rejected(self):
        with pytest.raises(InvalidArgumentError):
            encode(IntValue(1), ValueType.BUTTON, 1, 0)


# =============================================================================
# Coercion
# =============================================================================


class TestCoerceValue:
    """Tests for coerce_value()."""

    def test_auto_passes_through(self):
        assert coerce_value(AUTO, ValueType.INT, 1) is AUTO

    def test_auto_is_singleton(self):
        assert Auto() is AUTO
        assert repr(AUTO) == "AUTO"

    def test_typed_value_passes_through(self):
        value = IntValue(3)
        assert coerce_value(value, ValueType.INT, 1) is value

    def test_bool(self):
        assert coerce_value(False, ValueType.BOOL, 1) == BoolValue(False)

    def test_bool_option_rejects_int(self):
        with pytest.raises(InvalidArgumentError, match="bool option cannot take int"):
            coerce_value(1, ValueType.BOOL, 1)

    def test_int_option_rejects_bool(self):
        """bool is an int subclass in Python but never a valid int value."""
        with pytest.raises(InvalidArgumentError, match="int option cannot take bool"):
            coerce_value(True, ValueType.INT, 1)

    def test_int_vector_from_list(self):
        assert coerce_value([1, 2, 3], ValueType.INT, 3) == IntVector((1, 2, 3))

    def test_int_vector_length_checked(self):
        with pytest.raises(InvalidArgumentError):
            coerce_value([1, 2], ValueType.INT, 3)

    def test_int_scalar_for_vector_option(self):
        with pytest.raises(InvalidArgumentError, match="got a scalar"):
            coerce_value(5, ValueType.INT, 6)

    def test_fixed_accepts_int(self):
        assert coerce_value(300, ValueType.FIXED, 1) == FixedValue(300.0)

    def test_fixed_vector(self):
        assert coerce_value((1, 2.5), ValueType.FIXED, 2) == FixedVector((1.0, 2.5))

    def test_string(self):
        assert coerce_value("Color", ValueType.STRING, 1) == StringValue("Color")

    def test_string_option_rejects_bytes(self):
        with pytest.raises(InvalidArgumentError):
            coerce_value(b"Color", ValueType.STRING, 1)

    def test_button_takes_none(self):
        assert coerce_value(None, ValueType.BUTTON, 1) is None
        with pytest.raises(InvalidArgumentError, match="button"):
            coerce_value(1, ValueType.BUTTON, 1)


class TestToPython:
    """Tests for to_python()."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (BoolValue(True), True),
            (IntValue(5), 5),
            (FixedValue(2.5), 2.5),
            (StringValue("Gray"), "Gray"),
            (IntVector((1, 2)), [1, 2]),
            (FixedVector((0.5,)), [0.5]),
        ],
    )
    def test_unwraps(self, value, expected):
        assert to_python(value) == expected
