"""Tests for ScannerLibrary lifecycle and device enumeration."""

import pytest

from sane_scan.devices import ScannerLibrary, version_tuple
from sane_scan.devices.image import LastFramePolicy
from sane_scan.drivers import DriverConfig, use_digital_twin
from sane_scan.drivers.backends.twin import DEFAULT_DEVICES, TwinBackend
from sane_scan.errors import (
    InvalidArgumentError,
    NotInitializedError,
    ProtocolViolationError,
    Status,
)
from sane_scan.observability import ScanStats


class NoHandleBackend(TwinBackend):
    """Twin reporting success on open but returning no handle."""

    def open(self, name):
        return Status.GOOD, None


class TestVersionTuple:
    """Tests for version_tuple()."""

    def test_split(self):
        assert version_tuple((1 << 24) | (2 << 16) | 3) == (1, 2, 3)

    def test_zero(self):
        assert version_tuple(0) == (0, 0, 0)


class TestLifecycle:
    """Test suite for init()/exit().

    Categories:
    1. Initialization - version, idempotence, state
    2. Misuse - calls before init()
    3. Shutdown - open scanners closed by exit()
    """

    def test_init_sets_version(self):
        lib = ScannerLibrary(backend=TwinBackend())
        assert lib.version == (0, 0, 0)
        lib.init()
        assert lib.is_initialized
        assert lib.version == (1, 0, 0)
        lib.exit()

    def test_init_twice_is_noop(self):
        lib = ScannerLibrary(backend=TwinBackend())
        lib.init()
        lib.init()
        assert lib.is_initialized
        lib.exit()

    def test_devices_before_init(self):
        with pytest.raises(NotInitializedError, match="call init"):
            ScannerLibrary(backend=TwinBackend()).devices()

    def test_open_before_init(self):
        with pytest.raises(NotInitializedError):
            ScannerLibrary(backend=TwinBackend()).open("test:0")

    def test_exit_without_init(self):
        ScannerLibrary(backend=TwinBackend()).exit()

    def test_exit_closes_scanners(self, library):
        """exit() closes every scanner still open.

        Business context:
        Applications that forget to close a scanner must not leave the
        device claimed once the library shuts down.

        Arrangement:
        1. Open test:0 and test:1.
        2. Close test:1 explicitly.

        Action:
        Call library.exit().

        Assertion Strategy:
        - Both scanners closed afterwards.
        - Library reports uninitialized.
        """
        first = library.open("test:0")
        second = library.open("test:1")
        second.close()

        library.exit()

        assert not first.is_open
        assert not second.is_open
        assert not library.is_initialized

    def test_context_manager(self):
        with ScannerLibrary(backend=TwinBackend()) as lib:
            assert lib.is_initialized
        assert not lib.is_initialized

    def test_repr(self):
        lib = ScannerLibrary(backend=TwinBackend())
        assert repr(lib) == "<ScannerLibrary(TwinBackend, uninitialized)>"
        lib.init()
        assert repr(lib) == "<ScannerLibrary(TwinBackend, initialized)>"
        lib.exit()


class TestDevices:
    """Tests for ScannerLibrary.devices()."""

    def test_lists_twin_devices(self, library):
        devices = library.devices()
        assert [d.name for d in devices] == ["test:0", "test:1"]
        assert devices == list(DEFAULT_DEVICES)

    def test_local_only(self, library):
        assert library.devices(local_only=True) == list(DEFAULT_DEVICES)


class TestOpen:
    """Tests for ScannerLibrary.open()."""

    def test_exact_name(self, library):
        with library.open("test:1") as scanner:
            assert scanner.name == "test:1"

    def test_empty_name_opens_first(self, library):
        with library.open("") as scanner:
            assert scanner.name == "test:0"

    def test_substring_match(self, library):
        """A name fragment opens the first device containing it."""
        with library.open("test") as scanner:
            assert scanner.name == "test:0"

    def test_unknown_device(self, library, log_stream):
        with pytest.raises(InvalidArgumentError, match="open epson"):
            library.open("epson")
        assert "Failed to open device" in log_stream.getvalue()

    def test_no_handle(self):
        with ScannerLibrary(backend=NoHandleBackend()) as lib:
            with pytest.raises(ProtocolViolationError, match="no handle"):
                lib.open("test:0")

    def test_default_policy(self, library):
        with library.open("test:0") as scanner:
            assert scanner.policy == LastFramePolicy.TRUST_FORMAT

    @pytest.mark.parametrize("policy", list(LastFramePolicy))
    def test_configured_policy(self, policy):
        config = DriverConfig(last_frame_policy=policy.value)
        with ScannerLibrary(backend=TwinBackend(), config=config) as lib:
            with lib.open("test:0") as scanner:
                assert scanner.policy == policy

    def test_unknown_policy(self, monkeypatch):
        """A bad policy name fails before any device is opened."""
        backend = TwinBackend()
        opened = []
        monkeypatch.setattr(backend, "open", lambda name: opened.append(name))
        config = DriverConfig(last_frame_policy="newest")
        with ScannerLibrary(backend=backend, config=config) as lib:
            with pytest.raises(ValueError, match="expected: trust_format"):
                lib.open("test:0")
        assert opened == []

    def test_stats_shared_with_scanners(self):
        stats = ScanStats()
        with ScannerLibrary(backend=TwinBackend(), stats=stats) as lib:
            assert lib.stats is stats
            lib.open("test:0").read_image()
            lib.open("test:1").read_image()
        assert set(stats.get_all_summaries()) == {"test:0", "test:1"}


class TestDefaultBackend:
    """Without a backend argument the global driver factory decides."""

    def test_twin_by_default(self):
        use_digital_twin()
        lib = ScannerLibrary()
        assert isinstance(lib.backend, TwinBackend)
