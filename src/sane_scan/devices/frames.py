"""Frame acquisition and per-sample decoding.

A frame is one acquisition cycle on the device: start, read sample bytes
until end of frame, and (eventually) cancel to release the device. The
FrameReader drives that cycle and tracks its state; Frame holds the
result and knows how to pull one sample out of the packed data.

Sample layout (x, y in pixels, ch in channels):
    depth 1:  byte bytes_per_line*y + channels*(x//8) + ch,
              bit (byte >> (x % 8)) & 1; gray samples are inverted
              (a set bit is black)
    depth 8:  byte bytes_per_line*y + channels*x + ch
    depth 16: little-endian pair at bytes_per_line*y + 2*(channels*x + ch)

Example:
    reader = FrameReader(handle)
    frame = reader.acquire(release=True)
    print(frame.width, frame.height, frame.sample(0, 0, 0))
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from sane_scan.drivers.backends.types import Format, Params, SaneHandle
from sane_scan.errors import (
    ProtocolViolationError,
    SaneError,
    Status,
    UnsupportedDepthError,
    error_for_status,
)
from sane_scan.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_READ_CHUNK_SIZE",
    "SUPPORTED_DEPTHS",
    "AcquisitionState",
    "Format",
    "Frame",
    "FrameReader",
    "Params",
]

#: Bytes requested from the backend per read call.
DEFAULT_READ_CHUNK_SIZE = 32 * 1024

#: Bit depths the sample decoder understands.
SUPPORTED_DEPTHS = frozenset({1, 8, 16})


# =============================================================================
# Frame
# =============================================================================


@dataclass(frozen=True)
class Frame:
    """Raw sample data of one acquired frame.

    Attributes:
        format: Frame format (gray, rgb, or a single color plane).
        width: Pixels per line.
        height: Complete lines received (len(data) // bytes_per_line).
            Never the advertised line count, which may be unknown or wrong.
        channels: 3 for interleaved RGB, 1 otherwise.
        depth: Bits per sample (1, 8 or 16).
        bytes_per_line: Line stride including padding.
        is_last: Device flagged this as the last frame of the image.
        data: Sample bytes.
    """

    format: Format
    width: int
    height: int
    channels: int
    depth: int
    bytes_per_line: int
    is_last: bool
    data: bytes

    def sample(self, x: int, y: int, ch: int) -> int:
        """Return the raw sample at pixel (x, y) for channel ch.

        Out-of-range coordinates or channels yield 0.

        Args:
            x: Column.
            y: Line.
            ch: Channel index, 0 <= ch < channels.

        Returns:
            Sample value: 0/1 at depth 1, 0..255 at depth 8,
            0..65535 at depth 16.

        Example:
            >>> f = Frame(Format.GRAY, 8, 1, 1, 1, 1, True, bytes([0b10000000]))
            >>> f.sample(0, 0, 0)
            1
        """
        if not (
            0 <= x < self.width and 0 <= y < self.height and 0 <= ch < self.channels
        ):
            return 0

        line = self.bytes_per_line * y
        if self.depth == 1:
            i = line + self.channels * (x // 8) + ch
            if i >= len(self.data):
                return 0
            bit = (self.data[i] >> (x % 8)) & 1
            if self.format == Format.GRAY:
                bit ^= 1
            return bit
        if self.depth == 8:
            i = line + self.channels * x + ch
            if i >= len(self.data):
                return 0
            return self.data[i]
        if self.depth == 16:
            i = line + 2 * (self.channels * x + ch)
            if i + 1 >= len(self.data):
                return 0
            return self.data[i] | (self.data[i + 1] << 8)
        return 0

    def to_array(self) -> NDArray[np.uint8] | NDArray[np.uint16]:
        """Decode every sample into an array of shape (height, width, channels).

        Uses the same layout rules as sample(). Depth 1 frames yield 0/1
        values (inverted for gray), depth 8 uint8, depth 16 uint16.

        Returns:
            Array with line padding stripped.

        Raises:
            UnsupportedDepthError: For depths other than 1, 8 and 16.
        """
        h, w, c = self.height, self.width, self.channels
        rows = np.frombuffer(self.data, dtype=np.uint8, count=h * self.bytes_per_line)
        rows = rows.reshape(h, self.bytes_per_line)

        if self.depth == 8:
            return rows[:, : w * c].reshape(h, w, c).copy()
        if self.depth == 16:
            raw = np.ascontiguousarray(rows[:, : 2 * w * c])
            return raw.view("<u2").reshape(h, w, c).astype(np.uint16)
        if self.depth == 1:
            groups = (w + 7) // 8
            packed = rows[:, : groups * c].reshape(h, groups, c)
            bits = np.unpackbits(packed[..., np.newaxis], axis=-1, bitorder="little")
            # (h, groups, c, 8) -> (h, groups * 8, c), pixel x = 8*group + bit
            samples = bits.transpose(0, 1, 3, 2).reshape(h, groups * 8, c)[:, :w, :]
            if self.format == Format.GRAY:
                samples = 1 - samples
            return np.ascontiguousarray(samples, dtype=np.uint8)
        raise UnsupportedDepthError(f"unsupported depth {self.depth}")


# =============================================================================
# Frame Reader
# =============================================================================


class AcquisitionState(Enum):
    """Lifecycle of one frame acquisition."""

    IDLE = "idle"
    STARTED = "started"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class FrameReader:
    """Drives start/read/cancel for frames of one opened device.

    One acquisition is in flight at a time. read() blocks in the backend;
    cancel() is the only call meant to come from another thread while a
    read is blocked, and the blocked read then raises CancelledError.

    Thread Safety:
        State changes are guarded by a lock. Backend calls are made
        outside it so cancel() never waits for a blocked read.
    """

    def __init__(
        self,
        handle: SaneHandle,
        device: str = "",
        chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
    ) -> None:
        """Create a reader bound to an opened handle.

        Args:
            handle: Opened backend handle.
            device: Device name for log fields.
            chunk_size: Bytes requested per backend read.
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._handle = handle
        self._device = device
        self._chunk_size = chunk_size
        self._state = AcquisitionState.IDLE
        self._lock = threading.Lock()
        self._in_sequence = False
        self._cancel_requested = False

    @property
    def state(self) -> AcquisitionState:
        """Current acquisition state."""
        with self._lock:
            return self._state

    @property
    def active(self) -> bool:
        """True between a successful start and the end of the frame."""
        return self.state in (AcquisitionState.STARTED, AcquisitionState.STREAMING)

    def _set_state(self, state: AcquisitionState) -> None:
        with self._lock:
            self._state = state

    def _fail(self, status: Status | int, context: str) -> SaneError:
        self._set_state(
            AcquisitionState.CANCELLED
            if status == Status.CANCELLED
            else AcquisitionState.FAILED
        )
        return error_for_status(status, context)

    def _cancel_pending(self) -> bool:
        with self._lock:
            return self._cancel_requested

    @contextmanager
    def sequence(self) -> Iterator[None]:
        """Scope a multi-frame acquisition such as one image.

        A cancel() inside the scope is remembered even when it lands
        between frames, and the next start() raises CancelledError
        instead of beginning another frame. Leaving the scope forgets
        the request.
        """
        with self._lock:
            self._in_sequence = True
            self._cancel_requested = False
        try:
            yield
        finally:
            with self._lock:
                self._in_sequence = False
                self._cancel_requested = False

    def start(self) -> None:
        """Start acquiring the next frame.

        Raises:
            CancelledError: cancel() was called earlier in the current
                sequence().
            SaneError: Device status, unchanged (e.g. FeederEmptyError,
                CoverOpenError, DeviceBusyError). No retry.
        """
        if self._cancel_pending():
            logger.debug("Start skipped after cancel", device=self._device)
            raise self._fail(Status.CANCELLED, "start")

        status = self._handle.start()
        if status == Status.GOOD and self._cancel_pending():
            # cancel() raced the device start
            self._handle.cancel()
            raise self._fail(Status.CANCELLED, "start")
        if status != Status.GOOD:
            logger.debug("Start failed", device=self._device, status=int(status))
            raise self._fail(status, "start")
        self._set_state(AcquisitionState.STARTED)

    def params(self) -> Params:
        """Return parameters of the frame in progress.

        Accurate right after a successful start().

        Raises:
            SaneError: Device status from the parameter query.
        """
        status, params = self._handle.get_parameters()
        if status != Status.GOOD:
            raise error_for_status(status, "get parameters")
        if params is None:
            raise ProtocolViolationError("device returned no frame parameters")
        return params

    def read(self, size: int | None = None) -> bytes:
        """Read the next chunk of sample bytes.

        Args:
            size: Maximum bytes to read; defaults to the chunk size.

        Returns:
            Sample bytes, or b"" once the frame is complete.

        Raises:
            CancelledError: The acquisition was cancelled.
            SaneError: Any other device status.
        """
        with self._lock:
            if self._state == AcquisitionState.COMPLETED:
                return b""
            if self._state in (AcquisitionState.IDLE, AcquisitionState.STARTED):
                self._state = AcquisitionState.STREAMING

        data, status = self._handle.read(size or self._chunk_size)
        if status == Status.EOF:
            self._set_state(AcquisitionState.COMPLETED)
            return bytes(data)
        if status != Status.GOOD:
            raise self._fail(status, "read")
        return bytes(data)

    def readinto(self, buffer: bytearray | memoryview) -> int:
        """Read sample bytes into buffer.

        Returns:
            Bytes written, 0 once the frame is complete.
        """
        data = self.read(len(buffer))
        n = len(data)
        buffer[:n] = data
        return n

    def cancel(self) -> None:
        """Request cancellation of the current acquisition.

        Never blocks and is safe in any state, including after a failed
        start or read and from another thread while read() is blocked.
        Also used to release the device once an image is complete.
        Inside sequence() the request also stops the next start().
        """
        self._handle.cancel()
        with self._lock:
            if self._in_sequence:
                self._cancel_requested = True
            if self._state in (AcquisitionState.STARTED, AcquisitionState.STREAMING):
                self._state = AcquisitionState.CANCELLED

    def acquire(self, release: bool = False) -> Frame:
        """Run one full frame cycle and return the frame.

        Starts, reads parameters, validates the depth, then reads until
        end of frame into one buffer. The buffer is preallocated to
        lines * bytes_per_line when the line count is known and grows
        when more data arrives (or when the count is unknown).

        Args:
            release: Cancel after the frame to release the device. Leave
                False while more frames of the same image are expected.

        Returns:
            Frame whose height is the number of complete lines received.

        Raises:
            UnsupportedDepthError: Depth is not 1, 8 or 16.
            ProtocolViolationError: Non-positive bytes per line.
            SaneError: Device statuses from start/read.

        The device is cancelled whenever this raises.
        """
        started = time.monotonic()
        self.start()
        try:
            params = self.params()
            if params.format not in Format._value2member_map_:
                raise ProtocolViolationError(f"unknown frame format {params.format}")
            if params.depth not in SUPPORTED_DEPTHS:
                raise UnsupportedDepthError(f"unsupported depth {params.depth}")
            if params.bytes_per_line <= 0:
                raise ProtocolViolationError(
                    f"invalid bytes per line {params.bytes_per_line}"
                )

            bpl = params.bytes_per_line
            buf = bytearray(params.lines * bpl if params.lines > 0 else 0)
            total = 0
            while True:
                data = self.read()
                if not data:
                    if self.state == AcquisitionState.COMPLETED:
                        break
                    continue
                # slice assignment grows the buffer past its preallocation
                buf[total : total + len(data)] = data
                total += len(data)
            del buf[total:]
        except BaseException:
            self.cancel()
            raise

        if release:
            self.cancel()

        frame = Frame(
            format=Format(params.format),
            width=params.pixels_per_line,
            height=total // bpl,
            channels=3 if params.format == Format.RGB else 1,
            depth=params.depth,
            bytes_per_line=bpl,
            is_last=bool(params.last_frame),
            data=bytes(buf),
        )
        logger.debug(
            "Frame acquired",
            device=self._device,
            format=frame.format.name,
            width=frame.width,
            height=frame.height,
            advertised_lines=params.lines,
            depth=frame.depth,
            nbytes=total,
            last=frame.is_last,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )
        return frame
