"""Native Backend - libsane via ctypes.

Binds the C SANE API directly so that option values travel as raw
buffers and frame data as raw byte reads, exactly as the device layer
expects. Follows the SaneBackend/SaneHandle protocols.

Classes:
    NativeBackend: library lifecycle, device list, open
    NativeHandle: one opened device

Example:
    from sane_scan.drivers.backends.native import NativeBackend

    backend = NativeBackend()
    status, version = backend.init()
    status, devices = backend.get_devices()
    status, handle = backend.open(devices[0].name)
"""

from __future__ import annotations

import ctypes
import threading
from typing import Any, final

from sane_scan.drivers.backends.types import (
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
from sane_scan.drivers.libsane import get_library_path
from sane_scan.errors import Status
from sane_scan.observability import get_logger

logger = get_logger(__name__)

__all__ = ["NativeBackend", "NativeHandle"]


# =============================================================================
# C Structures
# =============================================================================


class _SaneRange(ctypes.Structure):
    _fields_ = [
        ("min", ctypes.c_int),
        ("max", ctypes.c_int),
        ("quant", ctypes.c_int),
    ]


class _SaneOptionDescriptor(ctypes.Structure):
    _fields_ = [
        ("name", ctypes.c_char_p),
        ("title", ctypes.c_char_p),
        ("desc", ctypes.c_char_p),
        ("type", ctypes.c_int),
        ("unit", ctypes.c_int),
        ("size", ctypes.c_int),
        ("cap", ctypes.c_int),
        ("constraint_type", ctypes.c_int),
        ("constraint", ctypes.c_void_p),
    ]


class _SaneParameters(ctypes.Structure):
    _fields_ = [
        ("format", ctypes.c_int),
        ("last_frame", ctypes.c_int),
        ("bytes_per_line", ctypes.c_int),
        ("pixels_per_line", ctypes.c_int),
        ("lines", ctypes.c_int),
        ("depth", ctypes.c_int),
    ]


class _SaneDevice(ctypes.Structure):
    _fields_ = [
        ("name", ctypes.c_char_p),
        ("vendor", ctypes.c_char_p),
        ("model", ctypes.c_char_p),
        ("type", ctypes.c_char_p),
    ]


def _load_library(path: str) -> ctypes.CDLL:
    """Load libsane and declare the signatures used by this module."""
    lib = ctypes.CDLL(path)

    lib.sane_init.argtypes = [ctypes.POINTER(ctypes.c_int), ctypes.c_void_p]
    lib.sane_init.restype = ctypes.c_int
    lib.sane_exit.argtypes = []
    lib.sane_exit.restype = None
    lib.sane_get_devices.argtypes = [
        ctypes.POINTER(ctypes.POINTER(ctypes.POINTER(_SaneDevice))),
        ctypes.c_int,
    ]
    lib.sane_get_devices.restype = ctypes.c_int
    lib.sane_open.argtypes = [ctypes.c_char_p, ctypes.POINTER(ctypes.c_void_p)]
    lib.sane_open.restype = ctypes.c_int
    lib.sane_close.argtypes = [ctypes.c_void_p]
    lib.sane_close.restype = None
    lib.sane_get_option_descriptor.argtypes = [ctypes.c_void_p, ctypes.c_int]
    lib.sane_get_option_descriptor.restype = ctypes.POINTER(_SaneOptionDescriptor)
    lib.sane_control_option.argtypes = [
        ctypes.c_void_p,
        ctypes.c_int,
        ctypes.c_int,
        ctypes.c_void_p,
        ctypes.POINTER(ctypes.c_int),
    ]
    lib.sane_control_option.restype = ctypes.c_int
    lib.sane_get_parameters.argtypes = [
        ctypes.c_void_p,
        ctypes.POINTER(_SaneParameters),
    ]
    lib.sane_get_parameters.restype = ctypes.c_int
    lib.sane_start.argtypes = [ctypes.c_void_p]
    lib.sane_start.restype = ctypes.c_int
    lib.sane_read.argtypes = [
        ctypes.c_void_p,
        ctypes.c_char_p,
        ctypes.c_int,
        ctypes.POINTER(ctypes.c_int),
    ]
    lib.sane_read.restype = ctypes.c_int
    lib.sane_cancel.argtypes = [ctypes.c_void_p]
    lib.sane_cancel.restype = None
    return lib


def _text(raw: bytes | None) -> str:
    return raw.decode("utf-8", errors="replace") if raw else ""


def _status(code: int) -> Status | int:
    try:
        return Status(code)
    except ValueError:
        return code


# =============================================================================
# Native Handle
# =============================================================================


@final
class NativeHandle:
    """Opened libsane device implementing SaneHandle."""

    __slots__ = ("_lib", "_handle", "name")

    def __init__(self, lib: Any, handle: ctypes.c_void_p, name: str) -> None:
        """Wrap a handle returned by sane_open. Use NativeBackend.open()."""
        self._lib = lib
        self._handle = handle
        self.name = name

    def get_option_descriptor(self, index: int) -> OptionDescriptor | None:
        """Copy the C descriptor at index into an OptionDescriptor.

        The constraint is copied in wire form: a range as three packed
        words, a word list as its count word plus entries, a string list
        as a list of byte strings.
        """
        ptr = self._lib.sane_get_option_descriptor(self._handle, index)
        if not ptr:
            return None
        d = ptr.contents

        ctype = ConstraintType(d.constraint_type)
        constraint: bytes | list[bytes] | None = None
        if d.constraint:
            if ctype == ConstraintType.RANGE:
                constraint = ctypes.string_at(d.constraint, ctypes.sizeof(_SaneRange))
            elif ctype == ConstraintType.WORD_LIST:
                count = ctypes.cast(d.constraint, ctypes.POINTER(ctypes.c_int))[0]
                constraint = ctypes.string_at(d.constraint, (count + 1) * WORD_SIZE)
            elif ctype == ConstraintType.STRING_LIST:
                strings = ctypes.cast(d.constraint, ctypes.POINTER(ctypes.c_char_p))
                items: list[bytes] = []
                i = 0
                while strings[i] is not None:
                    items.append(strings[i])
                    i += 1
                constraint = items

        return OptionDescriptor(
            name=_text(d.name),
            title=_text(d.title),
            desc=_text(d.desc),
            type=ValueType(d.type),
            unit=Unit(d.unit),
            size=d.size,
            cap=Capability(d.cap),
            constraint_type=ctype,
            constraint=constraint,
        )

    def control_option(
        self, index: int, action: Action, buffer: bytearray | None
    ) -> tuple[Status, Info]:
        """Call sane_control_option with buffer as the value pointer."""
        info = ctypes.c_int(0)
        if buffer:
            c_buf = (ctypes.c_char * len(buffer)).from_buffer(buffer)
            ptr = ctypes.cast(c_buf, ctypes.c_void_p)
        else:
            ptr = None
        status = self._lib.sane_control_option(
            self._handle, index, int(action), ptr, ctypes.byref(info)
        )
        return _status(status), Info(info.value & 0x7)

    def start(self) -> Status:
        return _status(self._lib.sane_start(self._handle))

    def read(self, max_length: int) -> tuple[bytes, Status]:
        buf = ctypes.create_string_buffer(max_length)
        length = ctypes.c_int(0)
        status = self._lib.sane_read(
            self._handle, buf, max_length, ctypes.byref(length)
        )
        return buf.raw[: length.value], _status(status)

    def cancel(self) -> None:
        self._lib.sane_cancel(self._handle)

    def get_parameters(self) -> tuple[Status, Params | None]:
        p = _SaneParameters()
        status = _status(self._lib.sane_get_parameters(self._handle, ctypes.byref(p)))
        if status != Status.GOOD:
            return status, None
        try:
            fmt: Format | int = Format(p.format)
        except ValueError:
            fmt = p.format
        return status, Params(
            format=fmt,  # type: ignore[arg-type]
            last_frame=bool(p.last_frame),
            bytes_per_line=p.bytes_per_line,
            pixels_per_line=p.pixels_per_line,
            lines=p.lines,
            depth=p.depth,
        )

    def close(self) -> None:
        self._lib.sane_close(self._handle)


# =============================================================================
# Native Backend
# =============================================================================


@final
class NativeBackend:
    """libsane library lifecycle implementing SaneBackend.

    The shared library is loaded on init(), not at import time.
    """

    def __init__(self, library_path: str | None = None) -> None:
        """Create an unloaded backend.

        Args:
            library_path: Explicit libsane path; discovered when None.
        """
        self._library_path = library_path
        self._lib: Any = None
        self._lock = threading.Lock()

    def init(self) -> tuple[Status, int]:
        """Load libsane and call sane_init without an auth callback.

        Raises:
            RuntimeError: If libsane cannot be located.
            OSError: If the library fails to load.
        """
        with self._lock:
            if self._lib is None:
                path = get_library_path(self._library_path)
                self._lib = _load_library(path)
                logger.debug("libsane loaded", path=path)
            version = ctypes.c_int(0)
            status = self._lib.sane_init(ctypes.byref(version), None)
            return _status(status), version.value

    def exit(self) -> None:
        with self._lock:
            if self._lib is not None:
                self._lib.sane_exit()

    def get_devices(self, local_only: bool = False) -> tuple[Status, list[DeviceInfo]]:
        device_list = ctypes.POINTER(ctypes.POINTER(_SaneDevice))()
        status = _status(
            self._lib.sane_get_devices(ctypes.byref(device_list), int(local_only))
        )
        if status != Status.GOOD:
            return status, []
        devices: list[DeviceInfo] = []
        i = 0
        while device_list[i]:
            d = device_list[i].contents
            devices.append(
                DeviceInfo(
                    _text(d.name), _text(d.vendor), _text(d.model), _text(d.type)
                )
            )
            i += 1
        return status, devices

    def open(self, name: str) -> tuple[Status, NativeHandle | None]:
        handle = ctypes.c_void_p()
        status = _status(
            self._lib.sane_open(name.encode("utf-8"), ctypes.byref(handle))
        )
        if status != Status.GOOD:
            return status, None
        return status, NativeHandle(self._lib, handle, name)
