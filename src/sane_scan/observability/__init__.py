"""Observability for sane-scan: structured logging and scan statistics.

Example:
    from sane_scan.observability import LogContext, get_logger

    logger = get_logger(__name__)
    with LogContext(device="test:0"):
        logger.info("Acquisition started", resolution=300)

Statistics Example:
    from sane_scan.observability import ScanStats

    stats = ScanStats()
    with ScannerLibrary(stats=stats) as lib, lib.open("test:0") as scanner:
        scanner.read_image()
    print(stats.get_summary("test:0").success_rate)
"""

from sane_scan.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from sane_scan.observability.stats import (
    ScanStats,
    StatsSummary,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "ScanStats",
    "StatsSummary",
]
