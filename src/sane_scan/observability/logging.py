"""Structured logging for sane-scan.

Thin layer over the standard logging module that adds:
- Keyword arguments on log calls recorded as structured fields
- A human-readable ``message | key=value`` formatter
- A single-line JSON formatter for log collectors
- Scoped context fields (device name, acquisition number) via contextvars

Untrusted values such as device names reported by a backend belong in
keyword fields, never interpolated into the message text:

    # fields are rendered separately from the message
    logger.info("Device opened", device=name)

Example:
    logger = get_logger(__name__)

    logger.info("Library initialized")
    logger.debug("Frame acquired", width=850, height=1100, depth=8)

    with LogContext(device="test:0"):
        logger.info("Acquisition started")  # includes device=test:0

    configure_logging(level="DEBUG", json_format=True, force=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any, cast

__all__ = [
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

#: Name of the package root logger that owns the handler.
ROOT_LOGGER_NAME = "sane_scan"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "sane_scan_log_context", default={}
)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger that turns keyword arguments into structured fields.

    Usage:
        logger = get_logger("sane_scan.devices.scanner")
        logger.info("Option set", option="resolution", value=300)
    """

    def debug(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at DEBUG with optional structured fields."""
        if self.isEnabledFor(logging.DEBUG):
            self._log_structured(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at INFO with optional structured fields."""
        if self.isEnabledFor(logging.INFO):
            self._log_structured(logging.INFO, msg, args, kwargs)

    def warning(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at WARNING with optional structured fields."""
        if self.isEnabledFor(logging.WARNING):
            self._log_structured(logging.WARNING, msg, args, kwargs)

    def error(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at ERROR with optional structured fields."""
        if self.isEnabledFor(logging.ERROR):
            self._log_structured(logging.ERROR, msg, args, kwargs)

    def critical(self, msg: object, *args: Any, **kwargs: Any) -> None:
        """Log at CRITICAL with optional structured fields."""
        if self.isEnabledFor(logging.CRITICAL):
            self._log_structured(logging.CRITICAL, msg, args, kwargs)

    def _log_structured(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any],
        kwargs: dict[str, Any],
    ) -> None:
        """Split standard logging arguments from structured fields and log.

        The standard keywords (exc_info, stack_info, stacklevel, extra) are
        passed through to logging.Logger._log; everything else becomes a
        structured field. Fields from an active LogContext are merged
        first so explicit keyword arguments win on key collisions.

        Args:
            level: Numeric log level.
            msg: Log message, may contain % placeholders.
            args: Arguments for % formatting.
            kwargs: Standard logging keywords plus structured fields.

        Returns:
            None.
        """
        exc_info = kwargs.pop("exc_info", None)
        stack_info = kwargs.pop("stack_info", False)
        stacklevel = kwargs.pop("stacklevel", 1)
        extra = kwargs.pop("extra", None)

        extra = dict(extra) if extra else {}
        extra["structured_data"] = {**_log_context.get(), **kwargs}

        self._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 2,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Console formatter: ``time - name - level - message | key=value``."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Create the formatter.

        Args:
            fmt: Format string; defaults to
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'.
            datefmt: Date format for %(asctime)s.
            include_structured: Append structured fields after the message.
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format the record and append its structured fields.

        Args:
            record: Record to format. A missing or empty structured_data
                attribute yields only the base format.

        Returns:
            Formatted line, e.g.
            '... - INFO - Frame acquired | width=850 height=1100'.
        """
        base = super().format(record)
        if not self.include_structured:
            return base

        structured = getattr(record, "structured_data", {})
        if not structured:
            return base

        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per line with structured fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the record as a JSON line.

        Output keys are timestamp (ISO 8601, UTC), level, logger, message,
        exception (only when exc_info is set) plus every structured field.
        Values that JSON cannot encode fall back to str().

        Args:
            record: Record to format.

        Returns:
            JSON string without trailing newline.
        """
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_dict.update(getattr(record, "structured_data", {}))

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Render one structured value for the console formatter.

    None becomes 'null', strings containing spaces are quoted, bytes are
    shown as their repr, dicts and lists are JSON encoded and everything
    else uses str().

    Example:
        >>> _format_value("Automatic Document Feeder")
        '"Automatic Document Feeder"'
        >>> _format_value([1, 8, 16])
        '[1, 8, 16]'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value:
            return f'"{value}"'
        return value
    if isinstance(value, bytes | bytearray):
        return repr(bytes(value))
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


class LogContext:
    """Context manager adding structured fields to every log call inside it.

    Nested contexts merge, inner values override outer ones. Uses
    contextvars so each thread sees its own context.

    Usage:
        with LogContext(device="test:0"):
            with LogContext(acquisition=3):
                logger.info("Frame acquired")  # device and acquisition
    """

    def __init__(self, **kwargs: Any) -> None:
        """Store the fields to activate on enter.

        Args:
            **kwargs: Structured fields, e.g. device="test:0".
        """
        self._kwargs = kwargs
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        """Activate the fields, merged over any outer context."""
        self._token = _log_context.set({**_log_context.get(), **self._kwargs})
        return self

    def __exit__(self, *args: Any) -> None:
        """Restore the outer context. Exceptions propagate."""
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Install the package handler on the ``sane_scan`` logger.

    Idempotent: later calls are ignored unless force=True, which removes
    the existing handler first. Protected by a lock so concurrent first
    use from several threads configures exactly once.

    Args:
        level: Minimum level, as int or name ('DEBUG', 'INFO', ...).
        json_format: Use JSONFormatter instead of StructuredFormatter.
        stream: Output stream; defaults to sys.stderr.
        include_structured: Append fields in the console format. Ignored
            for JSON output, which always includes them.
        force: Reconfigure even if already configured.

    Returns:
        None.

    Example:
        >>> import io
        >>> buffer = io.StringIO()
        >>> configure_logging(level="DEBUG", stream=buffer, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Internal implementation of configure_logging (lock held)."""
    global _configured, _handler

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.addHandler(handler)
    root.propagate = False

    _handler = handler
    _configured = True


def _reset_logging_impl() -> None:
    """Internal implementation of reset_logging (lock held)."""
    global _configured, _handler

    # handlers attached by others (e.g. log capture) are left in place
    if _handler is not None:
        logging.getLogger(ROOT_LOGGER_NAME).removeHandler(_handler)
        _handler.close()
        _handler = None

    _configured = False


def reset_logging() -> None:
    """Remove the package handler and mark logging unconfigured.

    Intended for tests; the next configure_logging() or get_logger()
    call installs a fresh handler.
    """
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Return a structured logger, configuring defaults on first use.

    Args:
        name: Logger name, normally __name__ so records carry the module
            path (e.g. 'sane_scan.devices.frames').

    Returns:
        StructuredLogger accepting keyword fields on every level method.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Device opened", device="test:0")
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    logger = logging.getLogger(name)
    if not isinstance(logger, StructuredLogger):
        # Logger created before setLoggerClass (e.g. by a third party).
        logger.__class__ = StructuredLogger
    return cast(StructuredLogger, logger)
