"""Driver configuration and factory.

Supports switching between the native libsane backend and the digital twin
(simulated) backend for testing and development without a scanner.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum

from sane_scan.drivers.backends.twin import DigitalTwinConfig, TwinBackend
from sane_scan.drivers.backends.types import SaneBackend

# =============================================================================
# Constants
# =============================================================================

#: Environment variable selecting the driver mode ("hardware"/"digital_twin").
MODE_ENV = "SANE_SCAN_MODE"

#: Environment variable pointing at a specific libsane build.
LIBRARY_PATH_ENV = "SANE_LIBRARY_PATH"

#: Bytes requested from the backend per read call.
DEFAULT_READ_CHUNK_SIZE = 32 * 1024


class DriverMode(Enum):
    """Driver mode selection."""

    HARDWARE = "hardware"  # libsane via ctypes
    DIGITAL_TWIN = "digital_twin"  # Simulated scanner for testing


@dataclass
class DriverConfig:
    """Configuration for backend selection and acquisition settings.

    Attributes:
        mode: HARDWARE for libsane, DIGITAL_TWIN for simulation.
        library_path: Explicit libsane path (None = discover).
        twin: Geometry and feeder settings of the simulated device.
        read_chunk_size: Bytes requested per backend read.
        last_frame_policy: Name of the LastFramePolicy for gray/RGB frames
            not flagged last ("trust_format", "require_flag" or
            "until_flag").
    """

    mode: DriverMode = DriverMode.DIGITAL_TWIN

    # Hardware settings
    library_path: str | None = None

    # Digital twin settings
    twin: DigitalTwinConfig = field(default_factory=DigitalTwinConfig)

    # Acquisition settings
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    last_frame_policy: str = "trust_format"

    @classmethod
    def from_env(cls) -> DriverConfig:
        """Build a config from SANE_SCAN_MODE and SANE_LIBRARY_PATH.

        Business context: Lets deployments and CI pick the backend without
        code or CLI changes, e.g. SANE_SCAN_MODE=hardware on a workstation
        with a real scanner, the default twin everywhere else.

        Returns:
            DriverConfig with mode and library path from the environment,
            defaults for everything else.

        Raises:
            ValueError: If SANE_SCAN_MODE holds an unknown mode.

        Example:
            >>> os.environ["SANE_SCAN_MODE"] = "hardware"
            >>> DriverConfig.from_env().mode
            <DriverMode.HARDWARE: 'hardware'>
        """
        raw_mode = os.environ.get(MODE_ENV, "").strip().lower()
        try:
            mode = DriverMode(raw_mode) if raw_mode else DriverMode.DIGITAL_TWIN
        except ValueError:
            valid = ", ".join(m.value for m in DriverMode)
            raise ValueError(
                f"{MODE_ENV}={raw_mode!r} is not a driver mode (expected: {valid})"
            ) from None
        return cls(mode=mode, library_path=os.environ.get(LIBRARY_PATH_ENV) or None)


class DriverFactory:
    """Factory for creating the SANE backend based on configuration.

    Thread Safety:
        Not thread-safe. The global factory singleton should be configured
        once at startup before concurrent access.

    Hardware Mode Limitations:
        create_backend() succeeds without libsane; the library is loaded
        and may fail on the backend's init().
    """

    def __init__(self, config: DriverConfig | None = None):
        """Initialize the factory.

        Business context: Central configuration point deciding whether the
        application drives a real scanner or the simulation. Set once at
        startup; ScannerLibrary then obtains its backend from here.

        Args:
            config: DriverConfig; None defaults to DriverConfig() (digital
                twin).

        Example:
            >>> factory = DriverFactory()
            >>> backend = factory.create_backend()  # TwinBackend
        """
        self.config = config or DriverConfig()

    def create_backend(self) -> SaneBackend:
        """Create the backend for the configured mode.

        Returns:
            NativeBackend in HARDWARE mode, TwinBackend in DIGITAL_TWIN mode.
            Neither is initialized yet.

        Example:
            >>> factory = DriverFactory(DriverConfig(mode=DriverMode.HARDWARE))
            >>> backend = factory.create_backend()
            >>> status, version = backend.init()
        """
        if self.config.mode == DriverMode.HARDWARE:
            from sane_scan.drivers.backends.native import NativeBackend

            return NativeBackend(self.config.library_path)
        return TwinBackend(self.config.twin)


# =============================================================================
# Global Singletons
# =============================================================================
# Thread Safety: These globals are NOT thread-safe. Configure once at startup
# before spawning threads.

_factory: DriverFactory | None = None


def get_factory() -> DriverFactory:
    """Get the global driver factory, creating a digital twin one on first use.

    Returns:
        DriverFactory singleton.

    Example:
        >>> factory = get_factory()  # Default digital twin
        >>> use_hardware()
        >>> factory = get_factory()  # Hardware mode
    """
    global _factory
    if _factory is None:
        _factory = DriverFactory()
    return _factory


def configure(config: DriverConfig) -> None:
    """Replace the global factory with one using config.

    Args:
        config: New driver configuration.

    Example:
        >>> configure(DriverConfig.from_env())
    """
    global _factory
    _factory = DriverFactory(config)


def _copy_config_with_mode(mode: DriverMode) -> DriverConfig:
    """Copy the current config with a different mode."""
    return replace(get_factory().config, mode=mode)


def use_digital_twin(preserve_config: bool = False) -> None:
    """Switch to the simulated scanner.

    Business context: Used by tests and CI, where no scanner or libsane
    exists, and for demos of the CLI.

    Args:
        preserve_config: Keep library path, twin and acquisition settings.
            If False (default), reset everything to defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.DIGITAL_TWIN))
    else:
        configure(DriverConfig(mode=DriverMode.DIGITAL_TWIN))


def use_hardware(preserve_config: bool = False) -> None:
    """Switch to the native libsane backend.

    Args:
        preserve_config: Keep library path, twin and acquisition settings.
            If False (default), reset everything to defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.HARDWARE))
    else:
        configure(DriverConfig(mode=DriverMode.HARDWARE))
