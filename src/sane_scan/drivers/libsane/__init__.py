"""Location of the SANE shared library.

The native backend loads ``libsane`` with ctypes. Distributions install
it under different sonames, so the path is resolved at runtime.

Usage:
    import ctypes
    from sane_scan.drivers.libsane import get_library_path

    lib = ctypes.CDLL(get_library_path())

Installation:
    Debian/Ubuntu: sudo apt install libsane1
    Fedora:        sudo dnf install sane-backends-libs
    macOS:         brew install sane-backends
"""

from __future__ import annotations

import ctypes.util
import os

#: Environment variable overriding library discovery.
LIBRARY_PATH_ENV = "SANE_LIBRARY_PATH"

# Sonames tried when find_library() comes back empty (e.g. no ldconfig).
_FALLBACK_NAMES = ("libsane.so.1", "libsane.1.dylib", "libsane.so")


def get_library_path(override: str | None = None) -> str:
    """Resolve the path or soname of the SANE library.

    Resolution order: explicit override, SANE_LIBRARY_PATH, then
    ctypes.util.find_library("sane"), then the first well-known soname
    that ctypes can load.

    Business context: The native backend is the only part of the package
    that touches libsane. Resolving the library lazily keeps imports and
    tests working on machines without SANE installed, and lets users
    point at a custom build (e.g. a backend development tree) without
    code changes.

    Args:
        override: Explicit path, typically from DriverConfig.library_path.

    Returns:
        A path or soname accepted by ctypes.CDLL.

    Raises:
        RuntimeError: If no SANE library can be found.

    Example:
        >>> get_library_path()
        'libsane.so.1'
    """
    if override:
        return override

    env_path = os.environ.get(LIBRARY_PATH_ENV)
    if env_path:
        return env_path

    found = ctypes.util.find_library("sane")
    if found:
        return found

    for name in _FALLBACK_NAMES:
        try:
            ctypes.CDLL(name)
        except OSError:
            continue
        return name

    raise RuntimeError(
        "SANE library not found. Install sane-backends or set "
        f"{LIBRARY_PATH_ENV} to the path of libsane."
    )
