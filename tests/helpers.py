"""Test helpers for sane-scan.

Provides protocol compliance checks and a scripted SaneHandle that
replays a fixed sequence of frames, for driving the device layer through
situations the digital twin never produces (duplicate color planes,
missing last-frame flags, odd statuses).

Example:
    from tests.helpers import ScriptedHandle, plane_frame

    handle = ScriptedHandle([plane_frame(Format.RED, last=False), ...])
    image = ImageAssembler(FrameReader(handle)).assemble()
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Protocol

from sane_scan.drivers.backends.types import (
    Action,
    Capability,
    ConstraintType,
    Format,
    Info,
    OptionDescriptor,
    Params,
    Unit,
    ValueType,
)
from sane_scan.errors import Status


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance satisfies a runtime-checkable Protocol.

    Business context: Backends are swapped through the driver factory
    without the device layer noticing. A backend missing one method would
    only fail deep inside an acquisition, so tests check the contract
    directly.

    Args:
        instance: Object to check.
        protocol: Protocol class decorated with @runtime_checkable.

    Raises:
        AssertionError: Listing the public members the instance lacks.

    Example:
        >>> assert_implements_protocol(TwinBackend(), SaneBackend)
    """
    if isinstance(instance, protocol):
        return
    wanted = {name for name in dir(protocol) if not name.startswith("_")}
    missing = sorted(name for name in wanted if not hasattr(instance, name))
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {', '.join(missing) or 'unknown'}"
    )


# =============================================================================
# Scripted Handle
# =============================================================================


@dataclass
class ScriptedFrame:
    """One frame a ScriptedHandle delivers.

    Attributes:
        params: Parameters reported once the frame is started.
        data: Sample bytes returned by read() before EOF.
        start_status: Status returned by start() for this frame.
        read_status: Status forced on the first read instead of data.
    """

    params: Params
    data: bytes
    start_status: Status = Status.GOOD
    read_status: Status | None = None


def make_params(
    fmt: Format = Format.GRAY,
    width: int = 8,
    lines: int = 4,
    depth: int = 8,
    last: bool = True,
    padding: int = 0,
) -> Params:
    """Build frame parameters with a bytes-per-line matching the format."""
    channels = 3 if fmt == Format.RGB else 1
    if depth == 1:
        bpl = ((width + 7) // 8) * channels
    else:
        bpl = width * channels * (depth // 8)
    return Params(
        format=fmt,
        last_frame=last,
        bytes_per_line=bpl + padding,
        pixels_per_line=width,
        lines=lines,
        depth=depth,
    )


def plane_frame(
    fmt: Format,
    value: int = 0x80,
    *,
    width: int = 8,
    lines: int = 4,
    last: bool = False,
) -> ScriptedFrame:
    """Build an 8-bit frame filled with one sample value."""
    params = make_params(fmt, width, lines, 8, last)
    return ScriptedFrame(params, bytes([value]) * (params.bytes_per_line * lines))


def descriptor(
    name: str,
    vtype: ValueType = ValueType.INT,
    *,
    cap: Capability = Capability.SOFT_SELECT | Capability.SOFT_DETECT,
    size: int = 4,
    title: str = "",
    constraint_type: ConstraintType = ConstraintType.NONE,
    constraint: bytes | list[bytes] | None = None,
) -> OptionDescriptor:
    """Build an OptionDescriptor with test-friendly defaults."""
    return OptionDescriptor(
        name=name,
        title=title or name,
        desc="",
        type=vtype,
        unit=Unit.NONE,
        size=size,
        cap=cap,
        constraint_type=constraint_type,
        constraint=constraint,
    )


class ScriptedHandle:
    """SaneHandle that replays scripted frames and option responses.

    Frames are consumed in order, one per start(). Once the script runs
    out, start() reports NO_DOCS like an empty document feeder.

    Attributes:
        calls: Names of the handle methods called, in order.
        control_calls: (index, action, buffer bytes) per control_option().
        cancel_count: Number of cancel() calls.
        closed: close() was called.
        set_status: Status returned for every set.
        set_info: Info bits returned for every successful set.
        set_writeback: Bytes written into the buffer on a successful set,
            simulating a device that rounds the value.
        block_reads: Make read() wait until cancel() is called.
    """

    def __init__(
        self,
        frames: list[ScriptedFrame] | None = None,
        descriptors: list[OptionDescriptor] | None = None,
        values: dict[int, bytes] | None = None,
    ) -> None:
        self.frames = list(frames or [])
        self.descriptors = list(descriptors or [])
        self.values = {i: bytearray(v) for i, v in (values or {}).items()}
        self.calls: list[str] = []
        self.control_calls: list[tuple[int, Action, bytes | None]] = []
        self.cancel_count = 0
        self.closed = False
        self.set_status = Status.GOOD
        self.set_info = Info(0)
        self.set_writeback: bytes | None = None
        self.block_reads = False
        self.reading = threading.Event()
        self._cancelled = threading.Event()
        self._current: ScriptedFrame | None = None
        self._offset = 0
        self._first_read = False

    def get_option_descriptor(self, index: int) -> OptionDescriptor | None:
        if 0 <= index < len(self.descriptors):
            return self.descriptors[index]
        return None

    def control_option(
        self, index: int, action: Action, buffer: bytearray | None
    ) -> tuple[Status, Info]:
        self.control_calls.append(
            (index, action, bytes(buffer) if buffer is not None else None)
        )
        if action == Action.GET_VALUE:
            stored = self.values.get(index, bytearray(len(buffer or b"")))
            if buffer is not None:
                buffer[: len(stored)] = stored
            return Status.GOOD, Info(0)
        if self.set_status != Status.GOOD:
            return self.set_status, Info(0)
        if buffer is not None:
            if self.set_writeback is not None:
                buffer[: len(self.set_writeback)] = self.set_writeback
            self.values[index] = bytearray(buffer)
        return Status.GOOD, self.set_info

    def start(self) -> Status:
        self.calls.append("start")
        if not self.frames:
            return Status.NO_DOCS
        frame = self.frames[0]
        if frame.start_status != Status.GOOD:
            return frame.start_status
        self.frames.pop(0)
        self._current = frame
        self._offset = 0
        self._first_read = True
        self._cancelled.clear()
        return Status.GOOD

    def get_parameters(self) -> tuple[Status, Params | None]:
        self.calls.append("get_parameters")
        if self._current is not None:
            return Status.GOOD, self._current.params
        if self.frames:
            return Status.GOOD, self.frames[0].params
        return Status.INVAL, None

    def read(self, max_length: int) -> tuple[bytes, Status]:
        self.calls.append("read")
        if self.block_reads:
            self.reading.set()
            self._cancelled.wait(5)
        if self._cancelled.is_set():
            return b"", Status.CANCELLED
        frame = self._current
        if frame is None:
            return b"", Status.INVAL
        if self._first_read and frame.read_status is not None:
            self._first_read = False
            return b"", frame.read_status
        self._first_read = False
        chunk = frame.data[self._offset : self._offset + max_length]
        if not chunk:
            self._current = None
            return b"", Status.EOF
        self._offset += len(chunk)
        return chunk, Status.GOOD

    def cancel(self) -> None:
        self.calls.append("cancel")
        self.cancel_count += 1
        self._cancelled.set()
        self._current = None

    def close(self) -> None:
        self.calls.append("close")
        self.closed = True
