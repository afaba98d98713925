"""Pytest configuration and fixtures for sane-scan tests.

Every test runs against the digital twin backend; nothing here needs
libsane or a scanner. The global driver factory and the logging setup
are reset around each test so tests cannot leak configuration into each
other.
"""

from __future__ import annotations

import io
import sys
from collections.abc import Iterator
from unittest.mock import MagicMock

import pytest

from sane_scan.devices import Scanner, ScannerLibrary
from sane_scan.drivers import use_digital_twin
from sane_scan.drivers.backends import DigitalTwinConfig, TwinBackend, TwinHandle
from sane_scan.observability import configure_logging, reset_logging

# =============================================================================
# Global State
# =============================================================================


@pytest.fixture(autouse=True)
def reset_driver_factory() -> Iterator[None]:
    """Reset the global driver factory to digital twin defaults.

    Business context:
    The CLI and ScannerLibrary() without arguments read the global factory.
    A test switching to hardware mode must not leave later tests trying to
    load libsane.

    Yields:
        None. Factory is reset before and after the test.
    """
    use_digital_twin()
    yield
    use_digital_twin()


@pytest.fixture
def log_stream() -> Iterator[io.StringIO]:
    """Capture sane_scan log output at DEBUG level.

    The package logger does not propagate to the root logger, so caplog
    never sees its records. This fixture routes them into a buffer
    instead and restores default logging afterwards.

    Yields:
        io.StringIO receiving one formatted line per record.

    Example:
        >>> def test_logs(log_stream):
        ...     scanner.read_image()
        ...     assert "Image acquired" in log_stream.getvalue()
    """
    stream = io.StringIO()
    configure_logging(level="DEBUG", stream=stream, force=True)
    yield stream
    reset_logging()


# =============================================================================
# Digital Twin Fixtures
# =============================================================================


@pytest.fixture
def twin_config() -> DigitalTwinConfig:
    """Small twin geometry keeping per-pixel checks fast.

    Business context:
    34 x 23 pixels still covers several pattern areas, partial areas at
    the right and bottom edges and a width that is not a multiple of 8,
    which exercises 1-bit padding.

    Returns:
        DigitalTwinConfig with a 34 x 23 scan area and 10 feeder pages.
    """
    return DigitalTwinConfig(width=34, height=23, adf_pages=10)


@pytest.fixture
def backend(twin_config: DigitalTwinConfig) -> Iterator[TwinBackend]:
    """Initialized TwinBackend, exited after the test."""
    twin = TwinBackend(twin_config)
    twin.init()
    yield twin
    twin.exit()


@pytest.fixture
def handle(backend: TwinBackend) -> TwinHandle:
    """Opened handle on test:0 of the twin backend."""
    status, opened = backend.open("test:0")
    assert status == 0 and opened is not None
    return opened


@pytest.fixture
def library(twin_config: DigitalTwinConfig) -> Iterator[ScannerLibrary]:
    """Initialized ScannerLibrary over a fresh twin backend.

    Business context:
    The library is the public entry point. Tests of scanner behaviour go
    through it so lifecycle bookkeeping (open scanners closed by exit)
    is exercised along the way.

    Yields:
        ScannerLibrary, exited after the test.
    """
    with ScannerLibrary(backend=TwinBackend(twin_config)) as lib:
        yield lib


@pytest.fixture
def scanner(library: ScannerLibrary) -> Iterator[Scanner]:
    """Scanner opened on test:0, closed after the test."""
    with library.open("test:0") as opened:
        yield opened


@pytest.fixture
def color_pattern(scanner: Scanner) -> Scanner:
    """Scanner set to Color mode with the color test pattern."""
    scanner.set_option("mode", "Color")
    scanner.set_option("test-picture", "Color pattern")
    return scanner


@pytest.fixture
def gray_pattern(scanner: Scanner) -> Scanner:
    """Scanner set to Gray mode with the (gray) test pattern."""
    scanner.set_option("mode", "Gray")
    scanner.set_option("test-picture", "Color pattern")
    return scanner


# =============================================================================
# OpenCV
# =============================================================================


@pytest.fixture
def mock_cv2_module() -> Iterator[MagicMock]:
    """Provide a mocked cv2 module for encoder tests.

    Temporarily replaces cv2 in sys.modules so CV2ImageEncoder picks up
    the mock through its lazy import.

    Business context:
    Encoder tests check which OpenCV calls are made (color conversion,
    JPEG quality flags) rather than the encoded bytes, and must not depend
    on the codecs compiled into the installed OpenCV build.

    Yields:
        MagicMock standing in for cv2 with IMWRITE_JPEG_QUALITY,
        COLOR_RGB2BGR and an imencode returning b"encoded".
    """
    original_cv2 = sys.modules.get("cv2")

    mock_cv2 = MagicMock()
    mock_cv2.__version__ = "4.10.0"
    mock_cv2.IMWRITE_JPEG_QUALITY = 1
    mock_cv2.COLOR_RGB2BGR = 4
    mock_cv2.cvtColor = MagicMock(side_effect=lambda img, code: img[..., ::-1])
    mock_cv2.imencode = MagicMock(
        return_value=(True, MagicMock(tobytes=lambda: b"encoded"))
    )

    sys.modules["cv2"] = mock_cv2
    yield mock_cv2

    if original_cv2 is not None:
        sys.modules["cv2"] = original_cv2
    else:
        del sys.modules["cv2"]
