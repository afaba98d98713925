"""Status codes and exception hierarchy for sane-scan.

Every status a SANE backend can report maps to exactly one exception
class. Device statuses are surfaced verbatim: no layer of this package
retries or reinterprets them. Errors detected locally (a value of the
wrong type, an unknown option name, a malformed frame sequence) use the
same hierarchy so callers only ever catch ``SaneError``.

Example:
    from sane_scan.errors import FeederEmptyError, SaneError

    try:
        image = scanner.read_image()
    except FeederEmptyError:
        pass  # normal end of a document-feeder batch
    except SaneError as e:
        print(f"scan failed: {e} (status={e.status})")
"""

from __future__ import annotations

from enum import IntEnum

__all__ = [
    "Status",
    "SaneError",
    "UnsupportedError",
    "CancelledError",
    "DeviceBusyError",
    "InvalidArgumentError",
    "EndOfDataError",
    "JammedError",
    "FeederEmptyError",
    "CoverOpenError",
    "IoError",
    "OutOfMemoryError",
    "AccessDeniedError",
    "OptionNotFoundError",
    "ProtocolViolationError",
    "UnsupportedDepthError",
    "NotInitializedError",
    "ScannerClosedError",
    "error_for_status",
    "raise_for_status",
]


class Status(IntEnum):
    """Status codes returned by every SANE backend call."""

    GOOD = 0
    UNSUPPORTED = 1
    CANCELLED = 2
    DEVICE_BUSY = 3
    INVAL = 4
    EOF = 5
    JAMMED = 6
    NO_DOCS = 7
    COVER_OPEN = 8
    IO_ERROR = 9
    NO_MEM = 10
    ACCESS_DENIED = 11


_STATUS_MESSAGES: dict[Status, str] = {
    Status.GOOD: "success",
    Status.UNSUPPORTED: "operation not supported",
    Status.CANCELLED: "operation cancelled",
    Status.DEVICE_BUSY: "device busy",
    Status.INVAL: "invalid argument",
    Status.EOF: "no more data available",
    Status.JAMMED: "document feeder jammed",
    Status.NO_DOCS: "document feeder out of documents",
    Status.COVER_OPEN: "scanner cover is open",
    Status.IO_ERROR: "error during device I/O",
    Status.NO_MEM: "out of memory",
    Status.ACCESS_DENIED: "access to resource has been denied",
}


# =============================================================================
# Exception Hierarchy
# =============================================================================


class SaneError(Exception):
    """Base exception for all scanner errors.

    Attributes:
        status: Originating device status, or None for errors that are
            detected locally and have no device counterpart.
    """

    default_status: Status | None = None

    def __init__(self, message: str = "", status: Status | int | None = None) -> None:
        """Create an error carrying an optional device status.

        Args:
            message: Human-readable description. Defaults to the standard
                text for the status when empty.
            status: Status code reported by the backend. Falls back to the
                class default when None.
        """
        if status is None:
            status = self.default_status
        elif not isinstance(status, Status) and status in Status._value2member_map_:
            status = Status(status)
        self.status = status
        if not message:
            message = (
                _STATUS_MESSAGES.get(status, f"unknown status {int(status)}")
                if status is not None
                else self.__class__.__name__
            )
        super().__init__(message)


class UnsupportedError(SaneError):
    """Operation is not supported by the device or option."""

    default_status = Status.UNSUPPORTED


class CancelledError(SaneError):
    """Operation was cancelled, normally by ``cancel()``."""

    default_status = Status.CANCELLED


class DeviceBusyError(SaneError):
    """Device is busy, for example while an acquisition is in flight."""

    default_status = Status.DEVICE_BUSY


class InvalidArgumentError(SaneError):
    """Value rejected locally or by the device (wrong type, length, range)."""

    default_status = Status.INVAL


class EndOfDataError(SaneError):
    """No more data is available for the current frame."""

    default_status = Status.EOF


class JammedError(SaneError):
    """Document feeder is jammed."""

    default_status = Status.JAMMED


class FeederEmptyError(SaneError):
    """Document feeder is out of documents.

    This is the normal way a batch scan from a feeder ends.
    """

    default_status = Status.NO_DOCS


class CoverOpenError(SaneError):
    """Scanner cover is open."""

    default_status = Status.COVER_OPEN


class IoError(SaneError):
    """Error during device I/O."""

    default_status = Status.IO_ERROR


class OutOfMemoryError(SaneError):
    """Backend ran out of memory."""

    default_status = Status.NO_MEM


class AccessDeniedError(SaneError):
    """Access to the device was denied."""

    default_status = Status.ACCESS_DENIED


class OptionNotFoundError(SaneError):
    """No option with the requested name exists on the device."""

    pass


class ProtocolViolationError(SaneError):
    """Device produced a frame sequence that cannot form an image."""

    pass


class UnsupportedDepthError(SaneError):
    """Frame uses a bit depth other than 1, 8 or 16."""

    pass


class NotInitializedError(SaneError):
    """The library was used before init() or after exit()."""

    pass


class ScannerClosedError(SaneError):
    """The scanner was used after close()."""

    pass


_STATUS_ERRORS: dict[Status, type[SaneError]] = {
    Status.UNSUPPORTED: UnsupportedError,
    Status.CANCELLED: CancelledError,
    Status.DEVICE_BUSY: DeviceBusyError,
    Status.INVAL: InvalidArgumentError,
    Status.EOF: EndOfDataError,
    Status.JAMMED: JammedError,
    Status.NO_DOCS: FeederEmptyError,
    Status.COVER_OPEN: CoverOpenError,
    Status.IO_ERROR: IoError,
    Status.NO_MEM: OutOfMemoryError,
    Status.ACCESS_DENIED: AccessDeniedError,
}


# =============================================================================
# Status Mapping
# =============================================================================


def error_for_status(status: Status | int, message: str = "") -> SaneError:
    """Build the exception matching a non-GOOD device status.

    Business context: Backends speak in integer status codes while callers
    want to catch specific conditions (feeder empty, cover open, jammed).
    Centralizing the mapping keeps every layer surfacing the same class
    for the same status.

    Args:
        status: Status code reported by the backend.
        message: Optional context prefix, e.g. the operation name.

    Returns:
        SaneError subclass instance. Codes outside the known table produce
        a plain SaneError whose message names the numeric code.

    Raises:
        ValueError: If status is GOOD (there is no error to build).

    Example:
        >>> err = error_for_status(7, "start")
        >>> type(err).__name__
        'FeederEmptyError'
        >>> str(err)
        'start: document feeder out of documents'
    """
    if status == Status.GOOD:
        raise ValueError("GOOD status does not describe an error")
    try:
        status = Status(status)
    except ValueError:
        text = f"unknown status {int(status)}"
        return SaneError(f"{message}: {text}" if message else text, status=status)
    text = _STATUS_MESSAGES[status]
    cls = _STATUS_ERRORS[status]
    return cls(f"{message}: {text}" if message else text, status=status)


def raise_for_status(status: Status | int, context: str = "") -> None:
    """Raise the matching exception unless status is GOOD.

    Args:
        status: Status code reported by the backend.
        context: Operation name included in the error message.

    Raises:
        SaneError: Subclass selected by error_for_status().
    """
    if status != Status.GOOD:
        raise error_for_status(status, context)
