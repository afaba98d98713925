"""Library lifecycle and device enumeration.

ScannerLibrary owns one backend (native libsane or the digital twin) for
its lifetime: init() before anything else, exit() when done. Nothing is
initialized at import time.

Example:
    from sane_scan.devices import ScannerLibrary

    with ScannerLibrary() as lib:
        for device in lib.devices():
            print(device.name, device.vendor, device.model)
        with lib.open("") as scanner:  # first device
            image = scanner.read_image()
"""

from __future__ import annotations

import threading

from sane_scan.devices.frames import DEFAULT_READ_CHUNK_SIZE
from sane_scan.devices.image import LastFramePolicy
from sane_scan.devices.scanner import Scanner
from sane_scan.drivers.backends.types import DeviceInfo, SaneBackend
from sane_scan.drivers.config import DriverConfig, DriverFactory, get_factory
from sane_scan.errors import (
    NotInitializedError,
    ProtocolViolationError,
    Status,
    error_for_status,
    raise_for_status,
)
from sane_scan.observability import ScanStats, get_logger

logger = get_logger(__name__)

__all__ = ["ScannerLibrary", "version_tuple"]


def version_tuple(code: int) -> tuple[int, int, int]:
    """Split a backend version code into (major, minor, build).

    Example:
        >>> version_tuple((1 << 24) | (2 << 16) | 3)
        (1, 2, 3)
    """
    return (code >> 24) & 0xFF, (code >> 16) & 0xFF, code & 0xFFFF


class ScannerLibrary:
    """Process-wide SANE library lifecycle.

    Injectable Dependencies:
        - backend: SaneBackend implementation (default: from the driver
          factory, i.e. the digital twin unless configured otherwise)
        - config: DriverConfig for chunk size and last-frame policy
        - stats: ScanStats shared by every scanner opened here

    Thread Safety:
        init(), exit() and open() are serialized by a lock. Scanners are
        independent once opened.
    """

    def __init__(
        self,
        backend: SaneBackend | None = None,
        config: DriverConfig | None = None,
        stats: ScanStats | None = None,
    ) -> None:
        """Create an uninitialized library.

        Args:
            backend: Backend to drive. None creates one from config.
            config: Driver config. None uses the global factory's config.
            stats: Optional statistics collector passed to scanners.

        Example:
            >>> lib = ScannerLibrary()  # digital twin by default
            >>> lib = ScannerLibrary(config=DriverConfig(mode=DriverMode.HARDWARE))
        """
        self._config = config or get_factory().config
        self._backend = backend or DriverFactory(self._config).create_backend()
        self._stats = stats
        self._lock = threading.Lock()
        self._initialized = False
        self._version = 0
        self._scanners: list[Scanner] = []

    @property
    def backend(self) -> SaneBackend:
        return self._backend

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def version(self) -> tuple[int, int, int]:
        """Backend version as (major, minor, build); zeros before init()."""
        return version_tuple(self._version)

    @property
    def stats(self) -> ScanStats | None:
        return self._stats

    def init(self) -> None:
        """Initialize the backend. Calling it again is a no-op.

        Raises:
            SaneError: Backend status from initialization.
        """
        with self._lock:
            if self._initialized:
                return
            status, version = self._backend.init()
            raise_for_status(status, "init")
            self._version = version
            self._initialized = True
        logger.info(
            "SANE library initialized",
            backend=type(self._backend).__name__,
            version=".".join(str(v) for v in self.version),
        )

    def exit(self) -> None:
        """Close every open scanner and release the backend.

        Safe to call when not initialized.
        """
        with self._lock:
            if not self._initialized:
                return
            scanners = list(self._scanners)
        for scanner in scanners:
            scanner.close()
        with self._lock:
            self._backend.exit()
            self._initialized = False
        logger.info("SANE library exited", backend=type(self._backend).__name__)

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("library not initialized; call init() first")

    def devices(self, local_only: bool = False) -> list[DeviceInfo]:
        """List available devices.

        Args:
            local_only: Skip network devices (backend permitting).

        Raises:
            NotInitializedError: Before init().
            SaneError: Backend status.
        """
        self._check_initialized()
        status, devices = self._backend.get_devices(local_only)
        raise_for_status(status, "get devices")
        return devices

    def open(self, name: str = "") -> Scanner:
        """Open a device and return a Scanner for it.

        An empty name opens the first available device. When no device has
        exactly the given name, the first device whose name contains it is
        opened instead, so "test" finds "test:0".

        Args:
            name: Device name, name fragment, or "".

        Returns:
            Open Scanner, closed automatically by exit().

        Raises:
            NotInitializedError: Before init().
            SaneError: Backend status when no device matches.
            ValueError: The configured last-frame policy is unknown.

        Example:
            >>> scanner = lib.open("test")
            >>> scanner.name
            'test:0'
        """
        self._check_initialized()
        try:
            policy = LastFramePolicy(self._config.last_frame_policy)
        except ValueError:
            valid = ", ".join(p.value for p in LastFramePolicy)
            raise ValueError(
                f"last_frame_policy={self._config.last_frame_policy!r} is not a "
                f"policy (expected: {valid})"
            ) from None

        status, handle = self._backend.open(name)
        opened = name
        if status != Status.GOOD and name:
            match = next((d.name for d in self.devices() if name in d.name), None)
            if match is not None:
                logger.debug("Opening by substring match", requested=name, device=match)
                status, handle = self._backend.open(match)
                opened = match
        if status != Status.GOOD:
            logger.error("Failed to open device", device=name, status=int(status))
            raise error_for_status(status, f"open {name or '<first device>'}")
        if handle is None:
            raise ProtocolViolationError(f"backend returned no handle for {name!r}")
        if not opened:
            opened = getattr(handle, "name", "")

        scanner = Scanner(
            handle,
            opened,
            chunk_size=self._config.read_chunk_size or DEFAULT_READ_CHUNK_SIZE,
            policy=policy,
            stats=self._stats,
            on_close=self._forget,
        )
        with self._lock:
            self._scanners.append(scanner)
        logger.info("Scanner opened", device=opened)
        return scanner

    def _forget(self, scanner: Scanner) -> None:
        with self._lock:
            if scanner in self._scanners:
                self._scanners.remove(scanner)

    def __enter__(self) -> ScannerLibrary:
        self.init()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.exit()

    def __repr__(self) -> str:
        state = "initialized" if self._initialized else "uninitialized"
        return f"<ScannerLibrary({type(self._backend).__name__}, {state})>"
