"""Option value model and raw buffer codec.

An option value travels between this package and a backend as a raw byte
buffer whose layout is known only from the option descriptor (type,
length, size). This module owns both directions of that translation.

Value model (closed set, immutable):
    BoolValue, IntValue, FixedValue, StringValue: scalars
    IntVector, FixedVector: fixed-length vectors
    AUTO: sentinel asking the device to pick its own value

Wire rules:
    - Numeric values are 32-bit signed words in native byte order; a
      vector of length n occupies n consecutive words.
    - Fixed-point words hold value * 65536, truncated toward zero.
    - Bool is a word, non-zero meaning True.
    - Strings are UTF-8, NUL terminated inside a buffer of ``size`` bytes;
      the final byte is always NUL, so a string filling the buffer loses
      its last byte.

Type or length mismatches raise InvalidArgumentError here, before the
device is ever involved.

Example:
    >>> raw = encode(FixedValue(1.5), ValueType.FIXED, 1, 4)
    >>> decode(raw, ValueType.FIXED, 1)
    FixedValue(value=1.5)
    >>> coerce_value([1, 2, 3], ValueType.INT, 3)
    IntVector(values=(1, 2, 3))
"""

from __future__ import annotations

import struct
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Final, final

from sane_scan.drivers.backends.types import FIXED_SCALE, WORD_SIZE, ValueType
from sane_scan.errors import InvalidArgumentError

__all__ = [
    "AUTO",
    "Auto",
    "BoolValue",
    "FixedValue",
    "FixedVector",
    "IntValue",
    "IntVector",
    "StringValue",
    "Value",
    "coerce_value",
    "decode",
    "encode",
    "fixed_to_float",
    "float_to_fixed",
    "pack_words",
    "to_python",
    "unpack_words",
]

_WORD_MIN = -(1 << 31)
_WORD_MAX = (1 << 31) - 1


# =============================================================================
# Value Variants
# =============================================================================


@dataclass(frozen=True)
class BoolValue:
    """Boolean option value."""

    value: bool


@dataclass(frozen=True)
class IntValue:
    """Scalar integer option value."""

    value: int


@dataclass(frozen=True)
class FixedValue:
    """Scalar fixed-point option value, exposed as float."""

    value: float


@dataclass(frozen=True)
class StringValue:
    """String option value."""

    value: str


@dataclass(frozen=True)
class IntVector:
    """Integer vector value; length must equal the option length."""

    values: tuple[int, ...]


@dataclass(frozen=True)
class FixedVector:
    """Fixed-point vector value; length must equal the option length."""

    values: tuple[float, ...]


@final
class Auto:
    """Type of the AUTO sentinel. Use the AUTO instance, never construct."""

    _instance: Auto | None = None

    def __new__(cls) -> Auto:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "AUTO"


AUTO: Final = Auto()

Value = BoolValue | IntValue | FixedValue | StringValue | IntVector | FixedVector


# =============================================================================
# Word Helpers
# =============================================================================


def pack_words(words: Sequence[int]) -> bytes:
    """Pack integers as consecutive native-order 32-bit words.

    Raises:
        InvalidArgumentError: If any word does not fit in 32 signed bits.
    """
    for w in words:
        if not _WORD_MIN <= w <= _WORD_MAX:
            raise InvalidArgumentError(f"value {w} does not fit in a 32-bit word")
    return struct.pack(f"={len(words)}i", *words)


def unpack_words(raw: bytes | bytearray | memoryview, count: int) -> tuple[int, ...]:
    """Unpack ``count`` native-order 32-bit words from the start of raw.

    Raises:
        InvalidArgumentError: If raw holds fewer than count words.
    """
    needed = count * WORD_SIZE
    if len(raw) < needed:
        raise InvalidArgumentError(
            f"buffer of {len(raw)} bytes too short for {count} words"
        )
    return struct.unpack_from(f"={count}i", raw)


def fixed_to_float(word: int) -> float:
    """Convert a fixed-point word to float."""
    return word / FIXED_SCALE


def float_to_fixed(value: float) -> int:
    """Convert a float to a fixed-point word, truncating toward zero."""
    return int(value * FIXED_SCALE)


# =============================================================================
# Codec
# =============================================================================


def decode(raw: bytes | bytearray | memoryview, type: ValueType, length: int) -> Value:
    """Decode a raw option buffer into a typed value.

    Business context: The device hands back untyped bytes; the option
    descriptor says how to read them. Integer and fixed options with
    length 1 decode to scalars, longer ones to vectors.

    Args:
        raw: Buffer filled by the backend.
        type: Option value type.
        length: Number of elements (1 for bool and string).

    Returns:
        The matching Value variant.

    Raises:
        InvalidArgumentError: For button/group types, non-positive lengths
            or buffers too short for the declared length.

    Example:
        >>> decode(b"\\x34\\x12\\x00\\x00", ValueType.INT, 1)  # little-endian host
        IntValue(value=4660)
    """
    if length < 1:
        raise InvalidArgumentError(f"invalid option length {length}")

    if type == ValueType.BOOL:
        return BoolValue(unpack_words(raw, 1)[0] != 0)
    if type == ValueType.INT:
        words = unpack_words(raw, length)
        return IntValue(words[0]) if length == 1 else IntVector(words)
    if type == ValueType.FIXED:
        floats = tuple(fixed_to_float(w) for w in unpack_words(raw, length))
        return FixedValue(floats[0]) if length == 1 else FixedVector(floats)
    if type == ValueType.STRING:
        text = bytes(raw).split(b"\0", 1)[0]
        return StringValue(text.decode("utf-8", errors="replace"))

    raise InvalidArgumentError(f"options of type {ValueType(type).name} carry no value")


def encode(value: Value, type: ValueType, length: int, size: int) -> bytes:
    """Encode a typed value into a raw buffer of ``size`` bytes.

    Args:
        value: Value to encode; its variant must match type.
        type: Option value type.
        length: Element count of the option.
        size: Buffer size in bytes declared by the descriptor.

    Returns:
        Buffer of exactly ``size`` bytes (numeric payloads are zero padded
        if size exceeds the words written).

    Raises:
        InvalidArgumentError: On variant/type mismatch, vector length
            mismatch, or words that overflow 32 bits.

    Example:
        >>> encode(StringValue("abcd"), ValueType.STRING, 1, 4)
        b'abc\\x00'
    """
    if type == ValueType.BOOL:
        if not isinstance(value, BoolValue):
            raise _mismatch(value, type)
        return _fit(pack_words([1 if value.value else 0]), size)

    if type == ValueType.INT:
        if isinstance(value, IntValue) and length == 1:
            words = [value.value]
        elif isinstance(value, IntVector):
            _check_length(len(value.values), length)
            words = list(value.values)
        elif isinstance(value, IntValue):
            raise InvalidArgumentError(
                f"option expects {length} integers, got a scalar"
            )
        else:
            raise _mismatch(value, type)
        return _fit(pack_words(words), size)

    if type == ValueType.FIXED:
        if isinstance(value, FixedValue) and length == 1:
            words = [float_to_fixed(value.value)]
        elif isinstance(value, FixedVector):
            _check_length(len(value.values), length)
            words = [float_to_fixed(v) for v in value.values]
        elif isinstance(value, FixedValue):
            raise InvalidArgumentError(
                f"option expects {length} fixed-point values, got a scalar"
            )
        else:
            raise _mismatch(value, type)
        return _fit(pack_words(words), size)

    if type == ValueType.STRING:
        if not isinstance(value, StringValue):
            raise _mismatch(value, type)
        if size < 1:
            raise InvalidArgumentError(f"invalid string buffer size {size}")
        data = value.value.encode("utf-8")
        buf = bytearray(size)
        n = min(len(data), size - 1)
        buf[:n] = data[:n]
        buf[size - 1] = 0
        return bytes(buf)

    raise InvalidArgumentError(f"options of type {ValueType(type).name} carry no value")


def _fit(payload: bytes, size: int) -> bytes:
    if len(payload) > size:
        raise InvalidArgumentError(
            f"value needs {len(payload)} bytes but option holds {size}"
        )
    return payload + bytes(size - len(payload))


def _check_length(got: int, expected: int) -> None:
    if got != expected:
        raise InvalidArgumentError(f"option expects {expected} values, got {got}")


def _mismatch(value: object, type: ValueType) -> InvalidArgumentError:
    return InvalidArgumentError(
        f"{ValueType(type).name.lower()} option cannot take "
        f"{value.__class__.__name__}"
    )


# =============================================================================
# Python Interop
# =============================================================================


def coerce_value(obj: Any, type: ValueType, length: int) -> Value | Auto | None:
    """Convert a plain Python value into the variant an option expects.

    Already-typed values and AUTO pass through unchanged (encode() still
    checks them). Buttons take only None, which is returned as is.

    Rules:
        - bool options take bool only
        - int options take int (length 1) or a sequence of ints; bool is
          rejected
        - fixed options take int or float (length 1) or a sequence of them
        - string options take str

    Args:
        obj: Caller-supplied value.
        type: Option value type.
        length: Element count of the option.

    Returns:
        Value variant, AUTO, or None for buttons.

    Raises:
        InvalidArgumentError: If obj cannot represent a value of type.

    Example:
        >>> coerce_value(300, ValueType.FIXED, 1)
        FixedValue(value=300.0)
        >>> coerce_value(True, ValueType.INT, 1)
        Traceback (most recent call last):
        ...
        sane_scan.errors.InvalidArgumentError: int option cannot take bool
    """
    if obj is AUTO or isinstance(
        obj, BoolValue | IntValue | FixedValue | StringValue | IntVector | FixedVector
    ):
        return obj

    if type == ValueType.BUTTON:
        if obj is not None:
            raise InvalidArgumentError("button options take no value")
        return None

    if type == ValueType.BOOL:
        if isinstance(obj, bool):
            return BoolValue(obj)
    elif type == ValueType.INT:
        if _is_int(obj):
            if length != 1:
                raise InvalidArgumentError(
                    f"option expects {length} integers, got a scalar"
                )
            return IntValue(obj)
        if _is_sequence(obj) and all(_is_int(v) for v in obj):
            _check_length(len(obj), length)
            return IntVector(tuple(obj))
    elif type == ValueType.FIXED:
        if _is_real(obj):
            if length != 1:
                raise InvalidArgumentError(
                    f"option expects {length} fixed-point values, got a scalar"
                )
            return FixedValue(float(obj))
        if _is_sequence(obj) and all(_is_real(v) for v in obj):
            _check_length(len(obj), length)
            return FixedVector(tuple(float(v) for v in obj))
    elif type == ValueType.STRING:
        if isinstance(obj, str):
            return StringValue(obj)

    raise InvalidArgumentError(
        f"{ValueType(type).name.lower()} option cannot take {obj.__class__.__name__}"
    )


def to_python(value: Value) -> bool | int | float | str | list[int] | list[float]:
    """Unwrap a Value into the plain Python equivalent."""
    if isinstance(value, IntVector | FixedVector):
        return list(value.values)
    return value.value


def _is_int(obj: Any) -> bool:
    return isinstance(obj, int) and not isinstance(obj, bool)


def _is_real(obj: Any) -> bool:
    return isinstance(obj, int | float) and not isinstance(obj, bool)


def _is_sequence(obj: Any) -> bool:
    return isinstance(obj, Sequence) and not isinstance(obj, str | bytes | bytearray)
