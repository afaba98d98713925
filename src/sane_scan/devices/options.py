"""Option descriptors, constraints and the per-connection option registry.

A device describes its configuration as a numbered list of option
descriptors. The registry walks that list once, turns each descriptor
into an immutable Option (group headers become the ``group`` label of
the options that follow them), and caches the result until a set reports
that the option list changed.

Example:
    registry = OptionRegistry(handle)
    for opt in registry.list():
        print(opt.group, opt.name, opt.type.name, opt.choices or opt.range)

    result = registry.set("resolution", 300)
    if result.reload_options:
        registry.list()  # re-queried from the device
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from sane_scan.devices.values import (
    AUTO,
    Value,
    coerce_value,
    decode,
    encode,
    to_python,
    unpack_words,
)
from sane_scan.drivers.backends.types import (
    WORD_SIZE,
    Action,
    Capability,
    ConstraintType,
    Info,
    OptionDescriptor,
    SaneHandle,
    Unit,
    ValueType,
)
from sane_scan.errors import (
    InvalidArgumentError,
    OptionNotFoundError,
    raise_for_status,
)
from sane_scan.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "Option",
    "OptionRegistry",
    "Range",
    "SetResult",
    "option_from_descriptor",
]


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Range:
    """Numeric range constraint.

    Attributes:
        min: Smallest allowed value.
        max: Largest allowed value.
        quant: Step between allowed values; 0 means any value.
    """

    min: int | float
    max: int | float
    quant: int | float


@dataclass(frozen=True)
class Option:
    """One device option.

    At most one of ``range`` and ``choices`` is set.

    Attributes:
        index: Position in the device option list (1-based).
        name: Stable key used for get/set.
        title: Short display title.
        desc: Longer description.
        group: Title of the enclosing option group ('' if none).
        type: Value type.
        unit: Physical unit (informational).
        length: Element count: size / word size for int and fixed
            options, 1 otherwise.
        size: Raw value size in bytes.
        capabilities: Capability bits.
        range: Range constraint, if any.
        choices: Allowed values for list constraints, in device order.
    """

    index: int
    name: str
    title: str
    desc: str
    group: str
    type: ValueType
    unit: Unit
    length: int
    size: int
    capabilities: Capability
    range: Range | None = None
    choices: tuple[int | float | str, ...] | None = None

    @property
    def is_settable(self) -> bool:
        """Value can be changed by software."""
        return bool(self.capabilities & Capability.SOFT_SELECT)

    @property
    def is_detectable(self) -> bool:
        """Value can be read by software."""
        return bool(self.capabilities & Capability.SOFT_DETECT)

    @property
    def is_hard_select(self) -> bool:
        """Value is controlled by a physical switch on the device."""
        return bool(self.capabilities & Capability.HARD_SELECT)

    @property
    def is_automatic(self) -> bool:
        """Device can choose the value itself (set with AUTO)."""
        return bool(self.capabilities & Capability.AUTOMATIC)

    @property
    def is_emulated(self) -> bool:
        """Option is emulated in software by the backend."""
        return bool(self.capabilities & Capability.EMULATED)

    @property
    def is_advanced(self) -> bool:
        """Option is meant for advanced users."""
        return bool(self.capabilities & Capability.ADVANCED)

    @property
    def is_active(self) -> bool:
        """Option currently takes part in configuration."""
        return not self.capabilities & Capability.INACTIVE


@dataclass(frozen=True)
class SetResult:
    """Outcome of setting an option.

    Attributes:
        inexact: Device rounded the value; ``value`` holds what it applied.
        reload_options: Option list changed; the registry cache was dropped.
        reload_params: Frame parameters changed.
        value: Value as written back by the device, None for buttons and
            automatic sets.
    """

    inexact: bool = False
    reload_options: bool = False
    reload_params: bool = False
    value: Value | None = None

    @classmethod
    def from_info(cls, info: Info, value: Value | None = None) -> SetResult:
        """Build from the info bits of a control call."""
        return cls(
            inexact=bool(info & Info.INEXACT),
            reload_options=bool(info & Info.RELOAD_OPTIONS),
            reload_params=bool(info & Info.RELOAD_PARAMS),
            value=value,
        )


# =============================================================================
# Descriptor Parsing
# =============================================================================


def option_from_descriptor(
    index: int, descriptor: OptionDescriptor, group: str = ""
) -> Option:
    """Turn a raw descriptor into an Option, decoding its constraint.

    Constraint payloads arrive in wire form and are decoded one element
    at a time by the value codec, so fixed-point bounds come out as floats
    and string lists as str.

    Args:
        index: Descriptor position in the device list.
        descriptor: Raw descriptor from the backend.
        group: Title of the current option group.

    Returns:
        Immutable Option.

    Raises:
        InvalidArgumentError: If the constraint payload is malformed.
    """
    vtype = ValueType(descriptor.type)
    if vtype in (ValueType.INT, ValueType.FIXED):
        length = max(descriptor.size // WORD_SIZE, 1)
    else:
        length = 1

    range_: Range | None = None
    choices: tuple[int | float | str, ...] | None = None
    payload = descriptor.constraint
    ctype = ConstraintType(descriptor.constraint_type)

    if ctype == ConstraintType.RANGE and isinstance(payload, bytes | bytearray):
        bounds = [
            to_python(decode(_word_at(payload, i), vtype, 1)) for i in range(3)
        ]
        range_ = Range(*bounds)
    elif ctype == ConstraintType.WORD_LIST and isinstance(payload, bytes | bytearray):
        count = unpack_words(payload, 1)[0]
        choices = tuple(
            to_python(decode(_word_at(payload, i + 1), vtype, 1)) for i in range(count)
        )
    elif ctype == ConstraintType.STRING_LIST and isinstance(payload, list):
        choices = tuple(
            to_python(decode(item, ValueType.STRING, 1)) for item in payload
        )
    elif ctype != ConstraintType.NONE:
        raise InvalidArgumentError(
            f"option {descriptor.name!r} has malformed {ctype.name} constraint"
        )

    return Option(
        index=index,
        name=descriptor.name,
        title=descriptor.title,
        desc=descriptor.desc,
        group=group,
        type=vtype,
        unit=Unit(descriptor.unit),
        length=length,
        size=descriptor.size,
        capabilities=Capability(descriptor.cap),
        range=range_,
        choices=choices,
    )


def _word_at(payload: bytes | bytearray, i: int) -> bytes:
    chunk = bytes(payload[i * WORD_SIZE : (i + 1) * WORD_SIZE])
    if len(chunk) < WORD_SIZE:
        raise InvalidArgumentError("constraint payload truncated")
    return chunk


# =============================================================================
# Registry
# =============================================================================


class OptionRegistry:
    """Cached, name-indexed view of a device's options.

    Thread Safety:
        The cache is guarded by a lock. Invalidation drops the cache and
        the next reader refetches every descriptor synchronously.
    """

    def __init__(self, handle: SaneHandle, device: str = "") -> None:
        """Create a registry for an opened device.

        Args:
            handle: Opened backend handle.
            device: Device name, used only in log fields.
        """
        self._handle = handle
        self._device = device
        self._lock = threading.Lock()
        self._options: list[Option] | None = None

    def list(self) -> list[Option]:
        """Return every option, querying the device on first use.

        Descriptors are fetched by increasing index starting at 1 until
        the backend reports none. Group headers set the group label for
        the following options and are not returned themselves.

        Returns:
            New list of options in device order.
        """
        with self._lock:
            if self._options is None:
                self._options = self._fetch()
            return list(self._options)

    def invalidate(self) -> None:
        """Drop the cached option list."""
        with self._lock:
            self._options = None

    def _fetch(self) -> list[Option]:
        options: list[Option] = []
        group = ""
        index = 1
        while True:
            descriptor = self._handle.get_option_descriptor(index)
            if descriptor is None:
                break
            if descriptor.type == ValueType.GROUP:
                group = descriptor.title
            else:
                options.append(option_from_descriptor(index, descriptor, group))
            index += 1
        logger.debug("Option list fetched", device=self._device, count=len(options))
        return options

    def find(self, name: str) -> Option:
        """Return the option called name.

        Raises:
            OptionNotFoundError: If the device has no such option.
        """
        for opt in self.list():
            if opt.name == name:
                return opt
        raise OptionNotFoundError(f"no option named {name!r}")

    def get(self, name: str) -> Value:
        """Read an option's current value from the device.

        Args:
            name: Option name.

        Returns:
            Decoded value.

        Raises:
            OptionNotFoundError: Unknown name.
            InvalidArgumentError: Option is a button (nothing to read).
            SaneError: Device status from the read, unchanged.
        """
        opt = self.find(name)
        if opt.type == ValueType.BUTTON:
            raise InvalidArgumentError(f"button option {name!r} has no value")

        buf = bytearray(opt.size)
        status, _ = self._handle.control_option(opt.index, Action.GET_VALUE, buf)
        raise_for_status(status, f"get {name}")
        return decode(buf, opt.type, opt.length)

    def set(self, name: str, value: Any) -> SetResult:
        """Write an option value to the device.

        Plain Python values are coerced to the option's variant first
        (see coerce_value). AUTO asks the device to choose the value and
        is only accepted for automatic options. Buttons take None.

        Args:
            name: Option name.
            value: New value, AUTO, or None for buttons.

        Returns:
            SetResult with the device's info flags. When reload_options is
            set the cache has already been invalidated.

        Raises:
            OptionNotFoundError: Unknown name.
            InvalidArgumentError: Type or length mismatch, or AUTO on a
                non-automatic option. Raised before any device call.
            SaneError: Device status from the write, unchanged.
        """
        opt = self.find(name)

        applied: Value | None = None
        if value is AUTO:
            if not opt.is_automatic:
                raise InvalidArgumentError(
                    f"option {name!r} does not support automatic values"
                )
            status, info = self._handle.control_option(
                opt.index, Action.SET_AUTO, None
            )
        else:
            typed = coerce_value(value, opt.type, opt.length)
            if typed is None:
                status, info = self._handle.control_option(
                    opt.index, Action.SET_VALUE, None
                )
            else:
                buf = bytearray(encode(typed, opt.type, opt.length, opt.size))
                status, info = self._handle.control_option(
                    opt.index, Action.SET_VALUE, buf
                )
                if status == 0:
                    applied = decode(buf, opt.type, opt.length)

        raise_for_status(status, f"set {name}")

        result = SetResult.from_info(Info(info), applied)
        if result.reload_options:
            self.invalidate()
        logger.debug(
            "Option set",
            device=self._device,
            option=name,
            auto=value is AUTO,
            inexact=result.inexact,
            reload_options=result.reload_options,
            reload_params=result.reload_params,
        )
        return result

    def press(self, name: str) -> SetResult:
        """Trigger a button option.

        Raises:
            InvalidArgumentError: If the option is not a button.
        """
        opt = self.find(name)
        if opt.type != ValueType.BUTTON:
            raise InvalidArgumentError(f"option {name!r} is not a button")
        return self.set(name, None)
