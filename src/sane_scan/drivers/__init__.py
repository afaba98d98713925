"""Backends for scanner access.

Supports two modes:
- HARDWARE: libsane through ctypes
- DIGITAL_TWIN: Simulated scanner for testing without hardware

Use drivers.config to switch modes:
    from sane_scan.drivers import config
    config.use_digital_twin()  # or config.use_hardware()
"""

from sane_scan.drivers import backends, config
from sane_scan.drivers.config import (
    DriverConfig,
    DriverFactory,
    DriverMode,
    configure,
    get_factory,
    use_digital_twin,
    use_hardware,
)

__all__ = [
    # Submodules
    "backends",
    "config",
    # Configuration
    "DriverMode",
    "DriverConfig",
    "DriverFactory",
    "get_factory",
    "configure",
    "use_digital_twin",
    "use_hardware",
]
