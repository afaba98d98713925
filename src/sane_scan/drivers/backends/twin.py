"""Digital Twin Backend - Simulated Scanner for Testing.

Provides a simulated SANE device for development and testing without
libsane or physical hardware. Follows the SaneBackend/SaneHandle
protocols for drop-in replacement of the native backend.

The simulated device mirrors the behaviour of the SANE "test" backend:

Scan options:
    mode              Gray | Color                     (reloads options)
    depth             1 | 8 | 16
    three-pass        deliver color as red/green/blue frames
    three-pass-order  RGB, RBG, GBR, GRB, BRG, BGR
    hand-scanner      unknown line count (lines = -1)
    resolution        fixed, 1..1200 dpi, automatic
    source            Flatbed | Automatic Document Feeder

Special options:
    test-picture       Solid black | Solid white | Color pattern
    read-return-value  status forced on the first read ("Default" = none)
    ppl-loss           pixels per line hidden as line padding
    fuzzy-parameters   inexact line count before start
    read-limit(-size)  cap on bytes returned per read
    read-delay(-duration)  reads block until the delay elapses or cancel

Test options (inactive until enable-test-options is set): one option for
each value type, capability and constraint shape.

Color pattern:
    4x4 pixel areas one pixel apart on a 0x55 background. Even area rows
    ramp from black up, odd rows ramp down. In color, area rows 0-1 are
    red, 2-3 green, 4-5 blue, repeating.

Example:
    backend = TwinBackend()
    backend.init()
    status, handle = backend.open("test:0")
    ...
"""

from __future__ import annotations

import struct
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, final

import numpy as np

from sane_scan.drivers.backends.types import (
    FIXED_SCALE,
    WORD_SIZE,
    Action,
    Capability,
    ConstraintType,
    DeviceInfo,
    Format,
    Info,
    OptionDescriptor,
    Params,
    Unit,
    ValueType,
)
from sane_scan.errors import Status
from sane_scan.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_DEVICES",
    "THREE_PASS_ORDERS",
    "DigitalTwinConfig",
    "TwinBackend",
    "TwinHandle",
    "pattern_rgb",
]

#: Version code reported by init(): major 1, minor 0, build 0.
TWIN_VERSION_CODE = 1 << 24

#: Devices advertised by the twin.
DEFAULT_DEVICES: tuple[DeviceInfo, ...] = (
    DeviceInfo("test:0", "Noname", "frontend-tester", "virtual device"),
    DeviceInfo("test:1", "Noname", "frontend-tester", "virtual device"),
)

THREE_PASS_ORDERS = ("RGB", "RBG", "GBR", "GRB", "BRG", "BGR")

_READ_RETURN_VALUES = (
    "Default",
    "SANE_STATUS_UNSUPPORTED",
    "SANE_STATUS_CANCELLED",
    "SANE_STATUS_DEVICE_BUSY",
    "SANE_STATUS_INVAL",
    "SANE_STATUS_EOF",
    "SANE_STATUS_JAMMED",
    "SANE_STATUS_NO_DOCS",
    "SANE_STATUS_COVER_OPEN",
    "SANE_STATUS_IO_ERROR",
    "SANE_STATUS_NO_MEM",
    "SANE_STATUS_ACCESS_DENIED",
)

_PICTURES = ("Solid black", "Solid white", "Color pattern")
_SOURCES = ("Flatbed", "Automatic Document Feeder")

_BACKGROUND = 0x55
_STRING_SIZE = 128


@dataclass(frozen=True)
class DigitalTwinConfig:
    """Configuration of the simulated device.

    Attributes:
        width: Scan width in pixels.
        height: Scan height in lines.
        adf_pages: Pages loaded in the simulated document feeder.
        devices: Device list reported by get_devices().
    """

    width: int = 64
    height: int = 40
    adf_pages: int = 10
    devices: tuple[DeviceInfo, ...] = DEFAULT_DEVICES


# =============================================================================
# Word Helpers
# =============================================================================


def _words(*values: int) -> bytes:
    return struct.pack(f"={len(values)}i", *values)


def _word_list(values: tuple[int, ...]) -> bytes:
    return _words(len(values), *values)


def _fix(value: float) -> int:
    return int(value * FIXED_SCALE)


def _string(text: str, size: int = _STRING_SIZE) -> bytearray:
    buf = bytearray(size)
    data = text.encode("utf-8")[: size - 1]
    buf[: len(data)] = data
    return buf


# =============================================================================
# Test Picture
# =============================================================================


def pattern_rgb(width: int, height: int, color: bool) -> NDArray[np.uint8]:
    """Render the color test pattern as an (height, width, 3) uint8 array.

    Gray patterns carry the same value in all three channels.

    Args:
        width: Pattern width in pixels.
        height: Pattern height in lines.
        color: Spread area rows over red, green and blue.

    Returns:
        RGB array of 8-bit samples.
    """
    x = np.arange(width)
    y = np.arange(height)
    ramp = (x // 5) % 0xFF
    rows = (y // 5)[:, np.newaxis]
    value = np.where(rows % 2 == 0, ramp[np.newaxis, :], 0xFF - ramp[np.newaxis, :])
    border = (x % 5 == 0)[np.newaxis, :] | (y % 5 == 0)[:, np.newaxis]

    rgb = np.zeros((height, width, 3), dtype=np.uint8)
    if color:
        channel = (rows % 6) // 2
        for ch in range(3):
            rgb[..., ch] = np.where(channel == ch, value, 0)
    else:
        rgb[...] = value[..., np.newaxis]
    rgb[border] = _BACKGROUND
    return rgb


def _pack(
    samples: NDArray[np.uint8], depth: int, invert_bits: bool
) -> tuple[bytes, int]:
    """Pack (h, w, c) 8-bit samples at depth; return data and bytes per line."""
    h, w, c = samples.shape
    if depth == 8:
        return samples.reshape(h, w * c).tobytes(), w * c
    if depth == 16:
        wide = (samples.astype(np.uint16) * 257).astype("<u2")
        return wide.reshape(h, w * c).tobytes(), 2 * w * c
    # depth 1: bit x % 8 of byte channels*(x//8) + ch
    bits = samples < 0x80 if invert_bits else samples >= 0x80
    groups = (w + 7) // 8
    padded = np.zeros((h, groups * 8, c), dtype=np.uint8)
    padded[:, :w, :] = bits
    grouped = padded.reshape(h, groups, 8, c).transpose(0, 1, 3, 2)
    packed = np.packbits(grouped, axis=-1, bitorder="little")
    return packed.reshape(h, groups * c).tobytes(), groups * c


# =============================================================================
# Option Slots
# =============================================================================


@dataclass
class _Slot:
    """One simulated option: its static descriptor plus current raw value."""

    descriptor: OptionDescriptor
    value: bytearray = field(default_factory=bytearray)
    # Returns extra info bits after a successful set.
    on_set: Callable[[], Info] | None = None
    is_test_option: bool = False


def _opt(
    name: str,
    vtype: ValueType,
    cap: Capability,
    value: bytearray | bytes = b"",
    *,
    title: str = "",
    desc: str = "",
    unit: Unit = Unit.NONE,
    size: int | None = None,
    constraint_type: ConstraintType = ConstraintType.NONE,
    constraint: bytes | list[bytes] | None = None,
) -> _Slot:
    if size is None:
        size = _STRING_SIZE if vtype == ValueType.STRING else WORD_SIZE
        if vtype in (ValueType.BUTTON, ValueType.GROUP):
            size = 0
    return _Slot(
        OptionDescriptor(
            name=name,
            title=title or name.replace("-", " ").capitalize(),
            desc=desc or f"Simulated {name} option.",
            type=vtype,
            unit=unit,
            size=size,
            cap=cap,
            constraint_type=constraint_type,
            constraint=constraint,
        ),
        bytearray(value),
    )


def _group(title: str) -> _Slot:
    return _opt("", ValueType.GROUP, Capability(0), title=title, desc="")


_RW = Capability.SOFT_SELECT | Capability.SOFT_DETECT
_RW_ADV = _RW | Capability.ADVANCED
_INT_LIST = (-42, -8, 0, 17, 42, 256, 65536, 16777216, 1073741824)
_FIXED_LIST = (-32.7, 12.1, 42.0, 129.5)


# =============================================================================
# Twin Handle
# =============================================================================


@final
class TwinHandle:
    """Opened simulated device implementing SaneHandle.

    Attributes:
        descriptor_queries: Number of get_option_descriptor() calls, for
            asserting cache behaviour in tests.
    """

    def __init__(self, name: str, config: DigitalTwinConfig | None = None) -> None:
        """Create the device with every option at its default value.

        Args:
            name: Device name.
            config: Geometry and feeder settings.
        """
        self.name = name
        self._config = config or DigitalTwinConfig()
        self._slots = self._build_options()
        self._index = {
            s.descriptor.name: i for i, s in enumerate(self._slots) if s.descriptor.name
        }
        self._lock = threading.Lock()
        self._cancel_event = threading.Event()
        self.descriptor_queries = 0

        self._pages_left = self._config.adf_pages
        self._pass = 0
        self._scanning = False
        self._cancelled = False
        self._image_done = False
        self._forced_status_pending = False
        self._params: Params | None = None
        self._data = b""
        self._offset = 0
        self._closed = False

    # -------------------------------------------------------------------------
    # Option table
    # -------------------------------------------------------------------------

    def _build_options(self) -> list[_Slot]:
        picture_list = [p.encode() for p in _PICTURES]
        slots = [
            _opt(
                "",
                ValueType.INT,
                Capability.SOFT_DETECT,
                title="Number of options",
                desc="Read-only option that specifies how many options exist.",
            ),
            _group("Scan Mode"),
            _opt(
                "mode",
                ValueType.STRING,
                _RW,
                _string("Gray"),
                title="Scan mode",
                desc="Selects the scan mode (e.g., lineart, monochrome, or color).",
                constraint_type=ConstraintType.STRING_LIST,
                constraint=[b"Gray", b"Color"],
            ),
            _opt(
                "depth",
                ValueType.INT,
                _RW,
                _words(8),
                title="Bit depth",
                desc="Number of bits per sample.",
                unit=Unit.BIT,
                constraint_type=ConstraintType.WORD_LIST,
                constraint=_word_list((1, 8, 16)),
            ),
            _opt("hand-scanner", ValueType.BOOL, _RW_ADV, _words(0)),
            _opt(
                "three-pass", ValueType.BOOL, _RW_ADV | Capability.INACTIVE, _words(0)
            ),
            _opt(
                "three-pass-order",
                ValueType.STRING,
                _RW_ADV | Capability.INACTIVE,
                _string("RGB"),
                constraint_type=ConstraintType.STRING_LIST,
                constraint=[o.encode() for o in THREE_PASS_ORDERS],
            ),
            _opt(
                "resolution",
                ValueType.FIXED,
                _RW | Capability.AUTOMATIC,
                _words(_fix(50.0)),
                title="Scan resolution",
                desc="Sets the resolution of the scanned image.",
                unit=Unit.DPI,
                constraint_type=ConstraintType.RANGE,
                constraint=_words(_fix(1.0), _fix(1200.0), _fix(1.0)),
            ),
            _opt(
                "source",
                ValueType.STRING,
                _RW,
                _string("Flatbed"),
                title="Scan source",
                desc="Selects the scan source (such as a document feeder).",
                constraint_type=ConstraintType.STRING_LIST,
                constraint=[s.encode() for s in _SOURCES],
            ),
            _group("Special Options"),
            _opt(
                "test-picture",
                ValueType.STRING,
                _RW,
                _string("Solid black"),
                constraint_type=ConstraintType.STRING_LIST,
                constraint=picture_list,
            ),
            _opt(
                "read-return-value",
                ValueType.STRING,
                _RW_ADV,
                _string("Default"),
                constraint_type=ConstraintType.STRING_LIST,
                constraint=[v.encode() for v in _READ_RETURN_VALUES],
            ),
            _opt(
                "ppl-loss",
                ValueType.INT,
                _RW_ADV,
                _words(0),
                unit=Unit.PIXEL,
                constraint_type=ConstraintType.RANGE,
                constraint=_words(-128, 128, 1),
            ),
            _opt("fuzzy-parameters", ValueType.BOOL, _RW_ADV, _words(0)),
            _opt("read-limit", ValueType.BOOL, _RW_ADV, _words(0)),
            _opt(
                "read-limit-size",
                ValueType.INT,
                _RW_ADV | Capability.INACTIVE,
                _words(1),
                unit=Unit.NONE,
                constraint_type=ConstraintType.RANGE,
                constraint=_words(1, 64 * 1024, 1),
            ),
            _opt("read-delay", ValueType.BOOL, _RW_ADV, _words(0)),
            _opt(
                "read-delay-duration",
                ValueType.INT,
                _RW_ADV | Capability.INACTIVE,
                _words(1000),
                unit=Unit.MICROSECOND,
                constraint_type=ConstraintType.RANGE,
                constraint=_words(1000, 60_000_000, 1000),
            ),
            _group("Test Options"),
            _opt("enable-test-options", ValueType.BOOL, _RW_ADV, _words(0)),
        ]

        hidden = Capability.INACTIVE
        test_slots = [
            _opt(
                "bool-soft-select-soft-detect",
                ValueType.BOOL,
                _RW_ADV | hidden,
                _words(0),
            ),
            _opt(
                "bool-hard-select-soft-detect",
                ValueType.BOOL,
                Capability.HARD_SELECT
                | Capability.SOFT_DETECT
                | Capability.ADVANCED
                | hidden,
                _words(0),
            ),
            _opt(
                "bool-hard-select",
                ValueType.BOOL,
                Capability.HARD_SELECT | Capability.ADVANCED | hidden,
                _words(0),
            ),
            _opt(
                "bool-soft-detect",
                ValueType.BOOL,
                Capability.SOFT_DETECT | Capability.ADVANCED | hidden,
                _words(0),
            ),
            _opt(
                "bool-soft-select-soft-detect-auto",
                ValueType.BOOL,
                _RW_ADV | Capability.AUTOMATIC | hidden,
                _words(0),
            ),
            _opt(
                "bool-soft-select-soft-detect-emulated",
                ValueType.BOOL,
                _RW_ADV | Capability.EMULATED | hidden,
                _words(0),
            ),
            _opt("int", ValueType.INT, _RW_ADV | hidden, _words(42)),
            _opt(
                "int-constraint-range",
                ValueType.INT,
                _RW_ADV | hidden,
                _words(26),
                unit=Unit.PIXEL,
                constraint_type=ConstraintType.RANGE,
                constraint=_words(4, 192, 2),
            ),
            _opt(
                "int-constraint-word-list",
                ValueType.INT,
                _RW_ADV | hidden,
                _words(42),
                unit=Unit.BIT,
                constraint_type=ConstraintType.WORD_LIST,
                constraint=_word_list(_INT_LIST),
            ),
            _opt(
                "int-constraint-array",
                ValueType.INT,
                _RW_ADV | hidden,
                _words(*([0] * 6)),
                unit=Unit.MM,
                size=6 * WORD_SIZE,
            ),
            _opt(
                "int-constraint-array-constraint-word-list",
                ValueType.INT,
                _RW_ADV | hidden,
                _words(*([42] * 6)),
                unit=Unit.PERCENT,
                size=6 * WORD_SIZE,
                constraint_type=ConstraintType.WORD_LIST,
                constraint=_word_list(_INT_LIST),
            ),
            _opt("fixed", ValueType.FIXED, _RW_ADV | hidden, _words(_fix(42.0))),
            _opt(
                "fixed-constraint-range",
                ValueType.FIXED,
                _RW_ADV | hidden,
                _words(_fix(42.0)),
                unit=Unit.MICROSECOND,
                constraint_type=ConstraintType.RANGE,
                constraint=_words(_fix(-42.17), _fix(32767.9999), _fix(2.0)),
            ),
            _opt(
                "fixed-constraint-word-list",
                ValueType.FIXED,
                _RW_ADV | hidden,
                _words(_fix(42.0)),
                constraint_type=ConstraintType.WORD_LIST,
                constraint=_word_list(tuple(_fix(v) for v in _FIXED_LIST)),
            ),
            _opt(
                "string",
                ValueType.STRING,
                _RW | hidden,
                _string("This is the basic string."),
            ),
            _opt(
                "string-constraint-string-list",
                ValueType.STRING,
                _RW | hidden,
                _string("First entry"),
                constraint_type=ConstraintType.STRING_LIST,
                constraint=[
                    b"First entry",
                    b"Second entry",
                    b"This is the very long third entry. Maybe the frontend has "
                    b"an idea how to display it",
                ],
            ),
            _opt("button", ValueType.BUTTON, _RW_ADV | hidden),
        ]
        for slot in test_slots:
            slot.is_test_option = True
        slots.extend(test_slots)

        slots[0].value = bytearray(_words(len(slots)))
        by_name = {s.descriptor.name: s for s in slots if s.descriptor.name}
        by_name["mode"].on_set = self._on_mode_set
        by_name["three-pass"].on_set = self._on_three_pass_set
        by_name["source"].on_set = self._on_source_set
        by_name["read-limit"].on_set = lambda: self._toggle(
            "read-limit", "read-limit-size"
        )
        by_name["read-delay"].on_set = lambda: self._toggle(
            "read-delay", "read-delay-duration"
        )
        by_name["enable-test-options"].on_set = self._on_enable_test_options
        return slots

    # -------------------------------------------------------------------------
    # Option side effects
    # -------------------------------------------------------------------------

    def _slot(self, name: str) -> _Slot:
        return self._slots[self._index[name]]

    def _set_active(self, name: str, active: bool) -> None:
        slot = self._slot(name)
        cap = slot.descriptor.cap
        cap = cap & ~Capability.INACTIVE if active else cap | Capability.INACTIVE
        slot.descriptor = replace(slot.descriptor, cap=Capability(cap))

    def _str(self, name: str) -> str:
        raw = bytes(self._slot(name).value)
        return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")

    def _int(self, name: str) -> int:
        return struct.unpack_from("=i", self._slot(name).value)[0]

    def _on_mode_set(self) -> Info:
        color = self._str("mode") == "Color"
        self._set_active("three-pass", color)
        self._set_active("three-pass-order", color and self._int("three-pass") != 0)
        return Info.RELOAD_OPTIONS | Info.RELOAD_PARAMS

    def _on_three_pass_set(self) -> Info:
        self._set_active("three-pass-order", self._int("three-pass") != 0)
        return Info.RELOAD_OPTIONS | Info.RELOAD_PARAMS

    def _on_source_set(self) -> Info:
        self._pages_left = self._config.adf_pages
        return Info(0)

    def _toggle(self, flag: str, dependent: str) -> Info:
        self._set_active(dependent, self._int(flag) != 0)
        return Info.RELOAD_OPTIONS

    def _on_enable_test_options(self) -> Info:
        enabled = self._int("enable-test-options") != 0
        for slot in self._slots:
            if slot.is_test_option:
                self._set_active(slot.descriptor.name, enabled)
        return Info.RELOAD_OPTIONS

    # -------------------------------------------------------------------------
    # SaneHandle: options
    # -------------------------------------------------------------------------

    def get_option_descriptor(self, index: int) -> OptionDescriptor | None:
        """Return the descriptor at index, None past the end."""
        with self._lock:
            self.descriptor_queries += 1
            if 0 <= index < len(self._slots):
                return self._slots[index].descriptor
            return None

    def control_option(
        self, index: int, action: Action, buffer: bytearray | None
    ) -> tuple[Status, Info]:
        """Get, set or auto-set an option through a raw buffer.

        Values are checked the way a backend would: inactive, read-only
        or undetectable options are rejected with INVAL, ranges and word
        lists are snapped to the nearest allowed value (reported as
        INEXACT), string lists require an exact entry.
        """
        with self._lock:
            if not 0 <= index < len(self._slots):
                return Status.INVAL, Info(0)
            slot = self._slots[index]
            desc = slot.descriptor
            if desc.type == ValueType.GROUP or desc.cap & Capability.INACTIVE:
                return Status.INVAL, Info(0)
            if self._scanning and action != Action.GET_VALUE:
                return Status.DEVICE_BUSY, Info(0)

            if action == Action.GET_VALUE:
                if not desc.cap & Capability.SOFT_DETECT or buffer is None:
                    return Status.INVAL, Info(0)
                n = min(len(buffer), len(slot.value))
                buffer[:n] = slot.value[:n]
                return Status.GOOD, Info(0)

            if not desc.cap & Capability.SOFT_SELECT:
                return Status.INVAL, Info(0)

            if action == Action.SET_AUTO:
                if not desc.cap & Capability.AUTOMATIC:
                    return Status.INVAL, Info(0)
                slot.value[:] = self._auto_value(desc)
                info = Info(0)
            elif action == Action.SET_VALUE:
                if desc.type == ValueType.BUTTON:
                    logger.debug("Button pressed", device=self.name, option=desc.name)
                    return Status.GOOD, Info(0)
                if buffer is None or len(buffer) < desc.size:
                    return Status.INVAL, Info(0)
                status, value, info = self._constrain(desc, bytes(buffer[: desc.size]))
                if status != Status.GOOD:
                    return status, Info(0)
                slot.value[:] = value
                buffer[: desc.size] = value
            else:
                return Status.INVAL, Info(0)

            if slot.on_set is not None:
                info |= slot.on_set()
            return Status.GOOD, info

    def _auto_value(self, desc: OptionDescriptor) -> bytes:
        if desc.type == ValueType.FIXED:
            return _words(_fix(75.0))
        return _words(1)

    def _constrain(
        self, desc: OptionDescriptor, raw: bytes
    ) -> tuple[Status, bytes, Info]:
        ctype = desc.constraint_type
        if desc.type == ValueType.STRING:
            text = raw.split(b"\0", 1)[0]
            if ctype == ConstraintType.STRING_LIST:
                assert isinstance(desc.constraint, list)
                if text not in desc.constraint:
                    return Status.INVAL, raw, Info(0)
            value = _string(text.decode("utf-8", "replace"), desc.size)
            return Status.GOOD, bytes(value), Info(0)

        count = desc.size // WORD_SIZE
        words = list(struct.unpack_from(f"={count}i", raw))
        if desc.type == ValueType.BOOL:
            if words[0] not in (0, 1):
                return Status.INVAL, raw, Info(0)
            return Status.GOOD, raw, Info(0)

        snapped = list(words)
        if ctype == ConstraintType.RANGE and isinstance(desc.constraint, bytes):
            lo, hi, quant = struct.unpack_from("=3i", desc.constraint)
            for i, w in enumerate(words):
                v = min(max(w, lo), hi)
                if quant:
                    v = lo + round((v - lo) / quant) * quant
                    v = min(v, hi)
                snapped[i] = v
        elif ctype == ConstraintType.WORD_LIST and isinstance(desc.constraint, bytes):
            n = struct.unpack_from("=i", desc.constraint)[0]
            allowed = struct.unpack_from(f"={n}i", desc.constraint, WORD_SIZE)
            snapped = [min(allowed, key=lambda a, w=w: abs(a - w)) for w in words]

        info = Info.INEXACT if snapped != words else Info(0)
        return Status.GOOD, _words(*snapped), info

    # -------------------------------------------------------------------------
    # SaneHandle: acquisition
    # -------------------------------------------------------------------------

    def _frame_formats(self) -> list[Format]:
        if self._str("mode") != "Color":
            return [Format.GRAY]
        if self._int("three-pass"):
            planes = {"R": Format.RED, "G": Format.GREEN, "B": Format.BLUE}
            return [planes[c] for c in self._str("three-pass-order")]
        return [Format.RGB]

    def _render(self, fmt: Format) -> tuple[Params, bytes]:
        width, height = self._config.width, self._config.height
        picture = self._str("test-picture")
        color = self._str("mode") == "Color"
        if picture == "Color pattern":
            rgb = pattern_rgb(width, height, color)
        else:
            fill = 0xFF if picture == "Solid white" else 0x00
            rgb = np.full((height, width, 3), fill, dtype=np.uint8)

        depth = self._int("depth")
        if fmt == Format.RGB:
            samples = rgb
        elif fmt == Format.GRAY:
            samples = rgb[..., :1]
        else:
            ch = {Format.RED: 0, Format.GREEN: 1, Format.BLUE: 2}[fmt]
            samples = rgb[..., ch : ch + 1]
        data, bpl = _pack(np.ascontiguousarray(samples), depth, fmt == Format.GRAY)

        ppl_loss = self._int("ppl-loss")
        formats = self._frame_formats()
        params = Params(
            format=fmt,
            last_frame=self._pass == len(formats) - 1,
            bytes_per_line=bpl,
            pixels_per_line=max(width - max(ppl_loss, 0), 1),
            lines=-1 if self._int("hand-scanner") else height,
            depth=depth,
        )
        return params, data

    def start(self) -> Status:
        """Start the next frame, or a new image after cancel."""
        with self._lock:
            if self._closed:
                return Status.INVAL
            if self._scanning or self._image_done:
                return Status.DEVICE_BUSY

            if self._pass == 0 and self._str("source") == _SOURCES[1]:
                if self._pages_left <= 0:
                    return Status.NO_DOCS
                self._pages_left -= 1

            fmt = self._frame_formats()[self._pass]
            self._params, self._data = self._render(fmt)
            self._offset = 0
            self._scanning = True
            self._cancelled = False
            self._cancel_event.clear()
            self._forced_status_pending = self._str("read-return-value") != "Default"
            logger.debug(
                "Twin frame started",
                device=self.name,
                format=fmt.name,
                frame_pass=self._pass,
                nbytes=len(self._data),
            )
            return Status.GOOD

    def get_parameters(self) -> tuple[Status, Params | None]:
        """Return current frame parameters, or an estimate before start."""
        with self._lock:
            if self._scanning and self._params is not None:
                return Status.GOOD, self._params
            formats = self._frame_formats()
            fmt = formats[min(self._pass, len(formats) - 1)]
            params, _ = self._render(fmt)
            if self._int("fuzzy-parameters") and params.lines > 0:
                params = replace(params, lines=params.lines + params.lines // 10)
            return Status.GOOD, params

    def read(self, max_length: int) -> tuple[bytes, Status]:
        """Return the next chunk of the current frame."""
        with self._lock:
            if self._cancelled:
                return b"", Status.CANCELLED
            if not self._scanning:
                return b"", Status.INVAL
            if self._forced_status_pending:
                name = self._str("read-return-value").removeprefix("SANE_STATUS_")
                forced = Status[name]
                self._forced_status_pending = False
                if forced != Status.EOF:
                    self._end_image()
                    return b"", forced
            delay = self._int("read-delay-duration") if self._int("read-delay") else 0

        if delay and self._cancel_event.wait(delay / 1_000_000):
            return b"", Status.CANCELLED

        with self._lock:
            if self._cancelled:
                return b"", Status.CANCELLED
            if not self._scanning:
                return b"", Status.INVAL
            if self._offset >= len(self._data):
                self._scanning = False
                self._pass += 1
                if self._pass >= len(self._frame_formats()):
                    self._pass = 0
                    self._image_done = True
                return b"", Status.EOF
            limit = max_length
            if self._int("read-limit"):
                limit = min(limit, self._int("read-limit-size"))
            chunk = self._data[self._offset : self._offset + limit]
            self._offset += len(chunk)
            return chunk, Status.GOOD

    def _end_image(self) -> None:
        self._scanning = False
        self._pass = 0
        self._image_done = False

    def cancel(self) -> None:
        """Abort the acquisition; a blocked read returns CANCELLED."""
        self._cancel_event.set()
        with self._lock:
            self._cancelled = True
            self._end_image()

    def close(self) -> None:
        """Close the device, cancelling any acquisition."""
        self.cancel()
        with self._lock:
            self._closed = True
        logger.debug("Twin device closed", device=self.name)


# =============================================================================
# Twin Backend
# =============================================================================


@final
class TwinBackend:
    """Simulated library implementing SaneBackend.

    Example:
        backend = TwinBackend(DigitalTwinConfig(width=32, height=16))
        backend.init()
        status, handle = backend.open("test:0")
    """

    def __init__(self, config: DigitalTwinConfig | None = None) -> None:
        self._config = config or DigitalTwinConfig()
        self._initialized = False
        self.handles: list[TwinHandle] = []

    @property
    def config(self) -> DigitalTwinConfig:
        return self._config

    def init(self) -> tuple[Status, int]:
        self._initialized = True
        return Status.GOOD, TWIN_VERSION_CODE

    def exit(self) -> None:
        for handle in self.handles:
            handle.close()
        self.handles.clear()
        self._initialized = False

    def get_devices(self, local_only: bool = False) -> tuple[Status, list[DeviceInfo]]:
        if not self._initialized:
            return Status.INVAL, []
        return Status.GOOD, list(self._config.devices)

    def open(self, name: str) -> tuple[Status, TwinHandle | None]:
        """Open a device by exact name; empty name opens the first device."""
        if not self._initialized:
            return Status.INVAL, None
        names = [d.name for d in self._config.devices]
        if not name and names:
            name = names[0]
        if name not in names:
            return Status.INVAL, None
        handle = TwinHandle(name, self._config)
        self.handles.append(handle)
        return Status.GOOD, handle
