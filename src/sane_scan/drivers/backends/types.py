"""Backend type definitions and protocols.

Wire-level vocabulary shared by every backend (native libsane binding and
digital twin) and by the device layer above them. Kept in its own module
so implementation modules can import it without circular imports.

Types defined here:
- ValueType, Unit, ConstraintType, Capability, Info, Action, Format:
  numeric codes of the SANE protocol
- OptionDescriptor: raw option metadata as reported by a backend
- Params: frame parameters for the acquisition in progress
- DeviceInfo: one entry of the device list
- SaneHandle: protocol for an opened device
- SaneBackend: protocol for the process-wide library

Example:
    from sane_scan.drivers.backends.types import SaneBackend, SaneHandle

    class MyBackend:
        def open(self, name: str) -> tuple[Status, SaneHandle | None]:
            ...
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Protocol, runtime_checkable

from sane_scan.errors import Status

__all__ = [
    "FIXED_SCALE",
    "WORD_SIZE",
    "Action",
    "Capability",
    "ConstraintType",
    "DeviceInfo",
    "Format",
    "Info",
    "OptionDescriptor",
    "Params",
    "SaneBackend",
    "SaneHandle",
    "Unit",
    "ValueType",
]

#: Size in bytes of one protocol word (a signed 32-bit integer).
WORD_SIZE = 4

#: Scale factor between fixed-point words and real numbers.
FIXED_SCALE = 1 << 16


# =============================================================================
# Protocol Codes
# =============================================================================


class ValueType(IntEnum):
    """Option value type. GROUP marks a group header, not a real option."""

    BOOL = 0
    INT = 1
    FIXED = 2
    STRING = 3
    BUTTON = 4
    GROUP = 5


class Unit(IntEnum):
    """Physical unit of an option value (informational)."""

    NONE = 0
    PIXEL = 1
    BIT = 2
    MM = 3
    DPI = 4
    PERCENT = 5
    MICROSECOND = 6


class ConstraintType(IntEnum):
    """Shape of the constraint attached to an option descriptor."""

    NONE = 0
    RANGE = 1
    WORD_LIST = 2
    STRING_LIST = 3


class Capability(IntFlag):
    """Option capability bits."""

    SOFT_SELECT = 1  # settable by software
    HARD_SELECT = 2  # settable by a physical switch
    SOFT_DETECT = 4  # readable by software
    EMULATED = 8
    AUTOMATIC = 16
    INACTIVE = 32
    ADVANCED = 64


class Info(IntFlag):
    """Side-effect flags reported by a set operation."""

    INEXACT = 1
    RELOAD_OPTIONS = 2
    RELOAD_PARAMS = 4


class Action(IntEnum):
    """Option control actions."""

    GET_VALUE = 0
    SET_VALUE = 1
    SET_AUTO = 2


class Format(IntEnum):
    """Frame format. RED, GREEN and BLUE are single-channel color planes."""

    GRAY = 0
    RGB = 1
    RED = 2
    GREEN = 3
    BLUE = 4


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class OptionDescriptor:
    """Raw option descriptor as reported by a backend.

    Constraint payloads are left in wire form so that the value codec is
    the single place that interprets words:
    - RANGE: 3 packed words (min, max, quant)
    - WORD_LIST: packed count word followed by count words
    - STRING_LIST: list of raw byte strings

    Attributes:
        name: Stable option key (empty for group headers).
        title: Short human-readable title.
        desc: Longer description.
        type: ValueType code.
        unit: Unit code.
        size: Value size in bytes (word multiple for numeric types).
        cap: Capability bits.
        constraint_type: ConstraintType code.
        constraint: Constraint payload in wire form, or None.
    """

    name: str
    title: str
    desc: str
    type: ValueType
    unit: Unit
    size: int
    cap: Capability
    constraint_type: ConstraintType = ConstraintType.NONE
    constraint: bytes | list[bytes] | None = None


@dataclass(frozen=True)
class Params:
    """Parameters of the frame being acquired.

    Only accurate between a successful start and the end of the frame.

    Attributes:
        format: Frame format.
        last_frame: True if this frame is the last one of the image.
        bytes_per_line: Stride of one line in bytes, including padding.
        pixels_per_line: Width in pixels.
        lines: Advertised line count; zero or negative when unknown
            (hand scanners).
        depth: Bits per sample.
    """

    format: Format
    last_frame: bool
    bytes_per_line: int
    pixels_per_line: int
    lines: int
    depth: int


@dataclass(frozen=True)
class DeviceInfo:
    """One entry in the device list.

    Attributes:
        name: Unique name used to open the device, e.g. 'test:0'.
        vendor: Manufacturer name.
        model: Model name.
        type: Device type, e.g. 'flatbed scanner'.
    """

    name: str
    vendor: str
    model: str
    type: str


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class SaneHandle(Protocol):  # pragma: no cover
    """Protocol for an opened device.

    The narrow transport surface the device layer drives. Implemented by
    NativeHandle (libsane) and TwinHandle (simulation). Status codes are
    returned, not raised, so the device layer owns the error mapping.

    Business context: Everything above this protocol is backend-agnostic,
    which lets the full option and acquisition pipeline run in tests
    against the digital twin or a scripted fake.
    """

    def get_option_descriptor(self, index: int) -> OptionDescriptor | None:
        """Return descriptor at index, or None past the last option."""
        ...

    def control_option(
        self, index: int, action: Action, buffer: bytearray | None
    ) -> tuple[Status, Info]:
        """Get, set or auto-set an option through a raw buffer.

        GET_VALUE fills buffer in place. SET_VALUE reads from buffer and
        may write back the value actually applied. SET_AUTO ignores it.
        """
        ...

    def start(self) -> Status:
        """Start acquiring the next frame."""
        ...

    def read(self, max_length: int) -> tuple[bytes, Status]:
        """Read up to max_length sample bytes; EOF status at frame end."""
        ...

    def cancel(self) -> None:
        """Request cancellation of the current acquisition; never blocks."""
        ...

    def get_parameters(self) -> tuple[Status, Params | None]:
        """Return parameters of the current (or next) frame."""
        ...

    def close(self) -> None:
        """Close the device."""
        ...


@runtime_checkable
class SaneBackend(Protocol):  # pragma: no cover
    """Protocol for the process-wide library lifecycle.

    Implemented by NativeBackend and TwinBackend.
    """

    def init(self) -> tuple[Status, int]:
        """Initialize the library; returns status and backend version code."""
        ...

    def exit(self) -> None:
        """Release every library resource."""
        ...

    def get_devices(self, local_only: bool = False) -> tuple[Status, list[DeviceInfo]]:
        """List available devices."""
        ...

    def open(self, name: str) -> tuple[Status, SaneHandle | None]:
        """Open a device by name."""
        ...
