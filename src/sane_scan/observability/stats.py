"""Acquisition statistics for scanners.

Collects per-device metrics about image acquisitions:
- Success/failure counts and rates
- Duration statistics (min, max, avg, p95)
- Failures broken down by error class
- Frame and byte totals

Thread-safe: a Scanner records from the thread running the acquisition
while another thread may read summaries.

Example:
    stats = ScanStats()
    with ScannerLibrary(stats=stats) as lib, lib.open("test:0") as scanner:
        scanner.read_image()

    summary = stats.get_summary("test:0")
    print(f"Success rate: {summary.success_rate:.1%}")
    print(f"p95 duration: {summary.p95_duration_ms:.1f}ms")
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

__all__ = ["ScanStats", "ScanStatsCollector", "StatsSummary"]

#: Acquisition records kept per device for duration statistics.
DEFAULT_STATS_WINDOW_SIZE: int = 1000


def _utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class StatsSummary:
    """Summary statistics for one device.

    Attributes:
        device: Device name the statistics belong to.
        total_scans: Acquisition attempts.
        successful_scans: Acquisitions that produced an image.
        failed_scans: Acquisitions that raised.
        success_rate: successful / total (0.0 when nothing recorded).
        min_duration_ms: Fastest successful acquisition in the window.
        max_duration_ms: Slowest successful acquisition in the window.
        avg_duration_ms: Mean successful duration in the window.
        p95_duration_ms: 95th percentile successful duration.
        total_frames: Frames read across successful acquisitions.
        total_bytes: Sample bytes read across successful acquisitions.
        error_counts: Failures keyed by error class name.
        last_scan_time: UTC time of the most recent record.
        uptime_seconds: Seconds since the collector was created or reset.
    """

    device: str
    total_scans: int = 0
    successful_scans: int = 0
    failed_scans: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    total_frames: int = 0
    total_bytes: int = 0
    error_counts: dict[str, int] = field(default_factory=dict)
    last_scan_time: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary.

        Returns:
            Dict with every attribute; last_scan_time as ISO string or None.

        Example:
            >>> json.dumps(stats.get_summary("test:0").to_dict())
        """
        return {
            "device": self.device,
            "total_scans": self.total_scans,
            "successful_scans": self.successful_scans,
            "failed_scans": self.failed_scans,
            "success_rate": self.success_rate,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "total_frames": self.total_frames,
            "total_bytes": self.total_bytes,
            "error_counts": self.error_counts.copy(),
            "last_scan_time": (
                self.last_scan_time.isoformat() if self.last_scan_time else None
            ),
            "uptime_seconds": self.uptime_seconds,
        }


@dataclass
class ScanRecord:
    """One acquisition attempt."""

    timestamp: float  # monotonic
    duration_ms: float
    success: bool
    frames: int = 0
    nbytes: int = 0
    error_type: str | None = None


class ScanStatsCollector:
    """Rolling statistics for a single device."""

    def __init__(
        self,
        device: str,
        window_size: int = DEFAULT_STATS_WINDOW_SIZE,
    ) -> None:
        """Create an empty collector.

        Cumulative counters cover every record ever made; duration
        statistics only cover the last window_size records so memory stays
        bounded during long batch runs.

        Args:
            device: Device name used to label the summary.
            window_size: Records retained for duration statistics.
        """
        self.device = device
        self._records: deque[ScanRecord] = deque(maxlen=window_size)
        self._error_counts: dict[str, int] = {}
        self._total = 0
        self._successful = 0
        self._frames = 0
        self._bytes = 0
        self._start_time = time.monotonic()
        self._last_scan_time: datetime | None = None
        self._lock = threading.Lock()

    def record(
        self,
        duration_ms: float,
        success: bool,
        frames: int = 0,
        nbytes: int = 0,
        error_type: str | None = None,
    ) -> None:
        """Record one acquisition attempt.

        Args:
            duration_ms: Wall time from start to image (or failure).
            success: True if an image was assembled.
            frames: Frames read; only counted for successes.
            nbytes: Sample bytes read; only counted for successes.
            error_type: Error class name for failures, e.g. 'JammedError'.
        """
        entry = ScanRecord(
            timestamp=time.monotonic(),
            duration_ms=duration_ms,
            success=success,
            frames=frames,
            nbytes=nbytes,
            error_type=error_type,
        )

        with self._lock:
            self._records.append(entry)
            self._total += 1
            if success:
                self._successful += 1
                self._frames += frames
                self._bytes += nbytes
            elif error_type:
                self._error_counts[error_type] = (
                    self._error_counts.get(error_type, 0) + 1
                )
            self._last_scan_time = _utc_now()

    def get_summary(self) -> StatsSummary:
        """Compute a snapshot summary.

        Counters are copied under the lock; sorting for the percentile
        happens outside it.

        Returns:
            StatsSummary for this device.
        """
        with self._lock:
            total = self._total
            successful = self._successful
            frames = self._frames
            nbytes = self._bytes
            error_counts = self._error_counts.copy()
            last_scan_time = self._last_scan_time
            start_time = self._start_time
            durations = [r.duration_ms for r in self._records if r.success]

        if durations:
            min_dur = min(durations)
            max_dur = max(durations)
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(sorted(durations), 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0

        return StatsSummary(
            device=self.device,
            total_scans=total,
            successful_scans=successful,
            failed_scans=total - successful,
            success_rate=successful / total if total > 0 else 0.0,
            min_duration_ms=min_dur,
            max_duration_ms=max_dur,
            avg_duration_ms=avg_dur,
            p95_duration_ms=p95_dur,
            total_frames=frames,
            total_bytes=nbytes,
            error_counts=error_counts,
            last_scan_time=last_scan_time,
            uptime_seconds=time.monotonic() - start_time,
        )

    def reset(self) -> None:
        """Clear all records and counters and restart the uptime clock."""
        with self._lock:
            self._records.clear()
            self._error_counts.clear()
            self._total = 0
            self._successful = 0
            self._frames = 0
            self._bytes = 0
            self._start_time = time.monotonic()
            self._last_scan_time = None


class ScanStats:
    """Statistics for every device, keyed by device name.

    Injected into Scanner instances; one ScanStats can be shared between
    several scanners.
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create an empty registry of per-device collectors.

        Args:
            window_size: Window size for each collector created.
        """
        self._window_size = window_size
        self._collectors: dict[str, ScanStatsCollector] = {}
        self._lock = threading.Lock()

    def _get_collector(self, device: str) -> ScanStatsCollector:
        with self._lock:
            if device not in self._collectors:
                self._collectors[device] = ScanStatsCollector(
                    device, self._window_size
                )
            return self._collectors[device]

    def record_scan(
        self,
        device: str,
        duration_ms: float,
        success: bool,
        frames: int = 0,
        nbytes: int = 0,
        error_type: str | None = None,
    ) -> None:
        """Record one acquisition for a device.

        Args:
            device: Device name.
            duration_ms: Acquisition wall time.
            success: True if an image was produced.
            frames: Frames read.
            nbytes: Sample bytes read.
            error_type: Error class name on failure.
        """
        self._get_collector(device).record(
            duration_ms=duration_ms,
            success=success,
            frames=frames,
            nbytes=nbytes,
            error_type=error_type,
        )

    def get_summary(self, device: str) -> StatsSummary:
        """Summary for one device; empty summary if never recorded."""
        return self._get_collector(device).get_summary()

    def get_all_summaries(self) -> dict[str, StatsSummary]:
        """Summaries for every device seen so far."""
        with self._lock:
            collectors = list(self._collectors.items())
        return {name: c.get_summary() for name, c in collectors}

    def reset(self, device: str | None = None) -> None:
        """Reset one device, or every device when device is None."""
        with self._lock:
            targets = (
                list(self._collectors.values())
                if device is None
                else [self._collectors[device]]
                if device in self._collectors
                else []
            )
        for collector in targets:
            collector.reset()

    def to_dict(self) -> dict[str, Any]:
        """Export every summary plus a timestamp as plain data."""
        return {
            "devices": {
                name: summary.to_dict()
                for name, summary in self.get_all_summaries().items()
            },
            "timestamp": _utc_now().isoformat(),
        }


def _percentile(sorted_data: list[float], p: float) -> float:
    """Linear-interpolated percentile of pre-sorted data.

    Args:
        sorted_data: Ascending values; empty input yields 0.0.
        p: Percentile in [0, 100].

    Returns:
        The interpolated value.

    Raises:
        ValueError: If p is outside [0, 100].

    Example:
        >>> _percentile([100.0, 150.0, 200.0], 95)
        195.0
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")
    if not sorted_data:
        return 0.0

    k = (len(sorted_data) - 1) * (p / 100)
    lo = int(k)
    hi = min(lo + 1, len(sorted_data) - 1)
    if lo == hi:
        return sorted_data[lo]
    fraction = k - lo
    return sorted_data[lo] * (1 - fraction) + sorted_data[hi] * fraction
