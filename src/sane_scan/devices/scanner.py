"""Scanner device abstraction.

This module provides a backend-agnostic Scanner class wrapping one opened
device handle. It combines the option registry, the frame reader and the
image assembler behind one object and adds the lifecycle, logging and
statistics around them.

Example:
    from sane_scan.devices import ScannerLibrary

    with ScannerLibrary() as lib, lib.open("test:0") as scanner:
        scanner.set_option("mode", "Color")
        scanner.set_option("resolution", 300)
        image = scanner.read_image(timeout=60)
        print(image.width, image.height)
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from typing import Any

from sane_scan.devices.frames import (
    DEFAULT_READ_CHUNK_SIZE,
    Frame,
    FrameReader,
    Params,
)
from sane_scan.devices.image import Image, ImageAssembler, LastFramePolicy
from sane_scan.devices.options import Option, OptionRegistry, SetResult
from sane_scan.devices.values import Value
from sane_scan.drivers.backends.types import SaneHandle
from sane_scan.errors import (
    CancelledError,
    DeviceBusyError,
    FeederEmptyError,
    ScannerClosedError,
)
from sane_scan.observability import LogContext, ScanStats, get_logger

logger = get_logger(__name__)

__all__ = ["Scanner"]


class _Deadline:
    """Timer that runs on_expire once unless finish() is called first.

    The expiry callback and finish() share a lock, so a timer firing as the
    acquisition completes either runs entirely before finish() or not at
    all.
    """

    def __init__(self, timeout: float, on_expire: Callable[[], None]) -> None:
        self._lock = threading.Lock()
        self._finished = False
        self._expired = False
        self._on_expire = on_expire
        self._timer = threading.Timer(timeout, self._expire)
        self._timer.daemon = True

    @property
    def expired(self) -> bool:
        with self._lock:
            return self._expired

    def start(self) -> None:
        self._timer.start()

    def finish(self) -> None:
        with self._lock:
            self._finished = True
        self._timer.cancel()

    def _expire(self) -> None:
        with self._lock:
            if self._finished:
                return
            self._expired = True
            self._on_expire()


class Scanner:
    """Logical scanner over an opened device handle.

    Injectable Dependencies:
        - handle: Opened backend handle (required)
        - stats: Shared ScanStats collector (optional)

    Can be used as a context manager for automatic close:

        with library.open("test:0") as scanner:
            image = scanner.read_image()

    Thread Safety:
        One acquisition at a time. cancel() may be called from any thread,
        including while read_image() is blocked in the backend. Options
        cannot be changed while an acquisition is active.
    """

    def __init__(
        self,
        handle: SaneHandle,
        name: str,
        *,
        chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        policy: LastFramePolicy = LastFramePolicy.TRUST_FORMAT,
        stats: ScanStats | None = None,
        on_close: Callable[[Scanner], None] | None = None,
    ) -> None:
        """Wrap an opened handle. Normally created by ScannerLibrary.open().

        Args:
            handle: Opened backend handle; the scanner takes ownership.
            name: Device name.
            chunk_size: Bytes requested per backend read.
            policy: Last-frame handling for gray/RGB frames.
            stats: Collector recording every read_image() call.
            on_close: Called once after the handle is closed.
        """
        self._handle = handle
        self._name = name
        self._registry = OptionRegistry(handle, name)
        self._reader = FrameReader(handle, name, chunk_size)
        self._assembler = ImageAssembler(self._reader, policy)
        self._stats: ScanStats | None = stats
        self._on_close = on_close
        self._closed = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        """Device name the scanner was opened with."""
        return self._name

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def policy(self) -> LastFramePolicy:
        return self._assembler.policy

    @property
    def is_acquiring(self) -> bool:
        """True while a frame is being acquired."""
        return self._reader.active

    def _check_open(self) -> None:
        if self._closed:
            raise ScannerClosedError(f"scanner {self._name} is closed")

    # -------------------------------------------------------------------------
    # Options
    # -------------------------------------------------------------------------

    def options(self) -> list[Option]:
        """Return every option of the device (cached until a reload)."""
        self._check_open()
        return self._registry.list()

    def option(self, name: str) -> Option:
        """Return one option by name.

        Raises:
            OptionNotFoundError: Unknown name.
        """
        self._check_open()
        return self._registry.find(name)

    def get_option(self, name: str) -> Value:
        """Read an option's current value.

        Raises:
            OptionNotFoundError: Unknown name.
            InvalidArgumentError: Button option.
            SaneError: Device status, unchanged.
        """
        self._check_open()
        return self._registry.get(name)

    def set_option(self, name: str, value: Any) -> SetResult:
        """Write an option value.

        Business context: Resolution, mode and source are set before every
        scan. Devices may round the value (inexact) or change which other
        options exist (reload_options); both are reported in the result
        and the option cache is refreshed automatically.

        Args:
            name: Option name.
            value: Value variant, plain Python value, AUTO, or None for
                buttons.

        Returns:
            SetResult with the device's info flags and applied value.

        Raises:
            DeviceBusyError: An acquisition is in progress.
            OptionNotFoundError: Unknown name.
            InvalidArgumentError: Local type/length mismatch.
            SaneError: Device status, unchanged.

        Example:
            >>> result = scanner.set_option("resolution", 301)
            >>> result.inexact, result.value
            (True, FixedValue(value=300.0))
        """
        self._check_open()
        if self._reader.active:
            raise DeviceBusyError(f"cannot set {name!r} during an acquisition")
        return self._registry.set(name, value)

    def press(self, name: str) -> SetResult:
        """Trigger a button option."""
        self._check_open()
        if self._reader.active:
            raise DeviceBusyError(f"cannot press {name!r} during an acquisition")
        return self._registry.press(name)

    # -------------------------------------------------------------------------
    # Acquisition
    # -------------------------------------------------------------------------

    def params(self) -> Params:
        """Return frame parameters (estimates until start())."""
        self._check_open()
        return self._reader.params()

    def start(self) -> None:
        """Start a frame for streaming with read()."""
        self._check_open()
        self._reader.start()

    def read(self, size: int | None = None) -> bytes:
        """Read raw sample bytes of the started frame; b"" at its end."""
        self._check_open()
        return self._reader.read(size)

    def readinto(self, buffer: bytearray | memoryview) -> int:
        self._check_open()
        return self._reader.readinto(buffer)

    def cancel(self) -> None:
        """Cancel the current acquisition. Never blocks; safe from any thread."""
        if not self._closed:
            self._reader.cancel()

    def read_frame(self, release: bool = False) -> Frame:
        """Acquire one whole frame.

        Args:
            release: Cancel afterwards. Leave False when reading the
                planes of a three-pass image one by one.
        """
        self._check_open()
        return self._reader.acquire(release=release)

    def read_image(self, timeout: float | None = None) -> Image:
        """Acquire one complete image.

        Reads one frame, or the three color planes of a three-pass scan,
        and composes them. The device is always released afterwards.

        Business context: The main entry point for scanning. A deadline
        can be layered on top of the blocking reads: when it expires the
        acquisition is cancelled from a timer thread.

        Args:
            timeout: Seconds before the acquisition is cancelled; None waits
                indefinitely.

        Returns:
            The assembled Image.

        Raises:
            TimeoutError: The deadline expired (CancelledError chained).
            FeederEmptyError: No document in the feeder.
            ProtocolViolationError: Frames do not form an image.
            SaneError: Any other device status, unchanged.

        Example:
            >>> image = scanner.read_image(timeout=30)
            >>> image.at(10, 10)
            Gray(y=0)
        """
        self._check_open()

        deadline: _Deadline | None = None
        if timeout is not None:

            def expire() -> None:
                logger.warning(
                    "Acquisition deadline expired", device=self._name, timeout=timeout
                )
                self._reader.cancel()

            deadline = _Deadline(timeout, expire)
            deadline.start()

        start_time = time.monotonic()
        try:
            with LogContext(device=self._name):
                try:
                    image = self._assembler.assemble()
                finally:
                    if deadline is not None:
                        deadline.finish()
        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            if self._stats:
                self._stats.record_scan(
                    self._name,
                    duration_ms=duration_ms,
                    success=False,
                    error_type=type(e).__name__,
                )
            if isinstance(e, FeederEmptyError):
                logger.info("Document feeder empty", device=self._name)
            else:
                logger.warning(
                    "Image acquisition failed",
                    device=self._name,
                    error=str(e),
                    error_type=type(e).__name__,
                    status=getattr(e, "status", None),
                )
            if isinstance(e, CancelledError) and deadline and deadline.expired:
                raise TimeoutError(
                    f"image acquisition on {self._name} exceeded {timeout}s"
                ) from e
            raise

        duration_ms = (time.monotonic() - start_time) * 1000
        nbytes = sum(len(f.data) for f in image.frames)
        if self._stats:
            self._stats.record_scan(
                self._name,
                duration_ms=duration_ms,
                success=True,
                frames=len(image.frames),
                nbytes=nbytes,
            )
        logger.info(
            "Image acquired",
            device=self._name,
            width=image.width,
            height=image.height,
            depth=image.depth,
            frames=len(image.frames),
            nbytes=nbytes,
            duration_ms=round(duration_ms, 1),
        )
        return image

    def read_images(
        self, max_images: int | None = None, timeout: float | None = None
    ) -> Iterator[Image]:
        """Yield images until the document feeder runs empty.

        FeederEmptyError ends the batch normally; every other error
        propagates. With a flatbed source the device never reports an empty
        feeder, so pass max_images there.

        Args:
            max_images: Stop after this many images (None = no limit).
            timeout: Per-image deadline passed to read_image().

        Example:
            >>> scanner.set_option("source", "Automatic Document Feeder")
            >>> pages = list(scanner.read_images())
        """
        count = 0
        while max_images is None or count < max_images:
            try:
                image = self.read_image(timeout=timeout)
            except FeederEmptyError:
                logger.info("Batch complete", device=self._name, images=count)
                return
            count += 1
            yield image

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the device handle.

        Safe to call more than once. Errors from the backend are logged,
        not raised, so close() can run in cleanup code without masking the
        original exception.
        """
        if self._closed:
            return
        self._closed = True
        logger.info("Closing scanner", device=self._name)
        try:
            self._reader.cancel()
            self._handle.close()
        except Exception as e:
            logger.warning(
                "Error during scanner close", device=self._name, error=str(e)
            )
        finally:
            if self._on_close is not None:
                self._on_close(self)

    def __enter__(self) -> Scanner:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"<Scanner({self._name}, {status})>"
