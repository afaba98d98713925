"""SANE backends.

- types: protocol codes, descriptors and the SaneBackend/SaneHandle protocols
- twin: simulated scanner (no hardware or libsane needed)
- native: libsane binding via ctypes (imported on demand)
"""

from sane_scan.drivers.backends.twin import (
    DigitalTwinConfig,
    TwinBackend,
    TwinHandle,
)
from sane_scan.drivers.backends.types import (
    Action,
    Capability,
    ConstraintType,
    DeviceInfo,
    Format,
    Info,
    OptionDescriptor,
    Params,
    SaneBackend,
    SaneHandle,
    Unit,
    ValueType,
)

__all__ = [
    # Protocols
    "SaneBackend",
    "SaneHandle",
    # Codes
    "Action",
    "Capability",
    "ConstraintType",
    "Format",
    "Info",
    "Unit",
    "ValueType",
    # Data
    "DeviceInfo",
    "OptionDescriptor",
    "Params",
    # Digital twin
    "DigitalTwinConfig",
    "TwinBackend",
    "TwinHandle",
]
