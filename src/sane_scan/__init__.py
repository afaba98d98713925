"""sane-scan - scanner access over the SANE protocol.

Example:
    from sane_scan import ScannerLibrary

    with ScannerLibrary() as lib, lib.open("test:0") as scanner:
        scanner.set_option("mode", "Color")
        image = scanner.read_image()
"""

from sane_scan.devices import (
    AUTO,
    Image,
    LastFramePolicy,
    Scanner,
    ScannerLibrary,
)
from sane_scan.errors import SaneError, Status

__version__ = "0.1.0"

__all__ = [
    "AUTO",
    "Image",
    "LastFramePolicy",
    "SaneError",
    "Scanner",
    "ScannerLibrary",
    "Status",
    "__version__",
]
