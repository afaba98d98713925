"""Tests for image assembly and pixel access.

Test Categories:
1. Test pattern - gray and color images match the expected pattern
2. Depths - 1-bit scaling, 16-bit color models
3. Three-pass - every plane order yields the same image
4. Protocol violations - duplicate, missing and misplaced frames
5. Last-frame policy - trusting the format, requiring or awaiting the flag
6. Cancellation - cancel between three-pass planes
7. Image API - bounds, arrays, construction checks
"""

import numpy as np
import pytest

from sane_scan.devices.frames import AcquisitionState, Frame, FrameReader
from sane_scan.devices.image import (
    RGBA,
    RGBA64,
    ColorModel,
    Gray,
    Gray16,
    Image,
    ImageAssembler,
    LastFramePolicy,
)
from sane_scan.drivers.backends.twin import THREE_PASS_ORDERS
from sane_scan.drivers.backends.types import Format
from sane_scan.errors import (
    CancelledError,
    FeederEmptyError,
    JammedError,
    ProtocolViolationError,
    Status,
)
from tests.helpers import ScriptedFrame, ScriptedHandle, make_params, plane_frame

# =============================================================================
# Expected Pattern
# =============================================================================


def pattern_value(x: int, y: int) -> int | None:
    """Expected 8-bit sample of the test pattern, None on the background.

    Areas of 4 x 4 pixels sit one pixel apart on a 0x55 background. Even
    area rows ramp up from black, odd rows ramp down from white.
    """
    if x % 5 == 0 or y % 5 == 0:
        return None
    ramp = (x // 5) % 0xFF
    return ramp if (y // 5) % 2 == 0 else 0xFF - ramp


def expected_rgb(x: int, y: int) -> tuple[int, int, int]:
    """Expected color pattern pixel: area rows cycle red, green, blue."""
    value = pattern_value(x, y)
    if value is None:
        return 0x55, 0x55, 0x55
    rgb = [0, 0, 0]
    rgb[((y // 5) % 6) // 2] = value
    return rgb[0], rgb[1], rgb[2]


def check_gray(image: Image) -> None:
    assert image.color_model == ColorModel.GRAY
    for y in range(image.height):
        for x in range(image.width):
            value = pattern_value(x, y)
            expected = Gray(0x55 if value is None else value)
            assert image.at(x, y) == expected, f"pixel ({x},{y})"


def check_color(image: Image) -> None:
    assert image.color_model == ColorModel.RGBA
    for y in range(image.height):
        for x in range(image.width):
            expected = RGBA(*expected_rgb(x, y), 0xFF)
            assert image.at(x, y) == expected, f"pixel ({x},{y})"


def assemble(frames, policy=LastFramePolicy.TRUST_FORMAT):
    handle = ScriptedHandle(frames)
    image = ImageAssembler(FrameReader(handle), policy).assemble()
    return image, handle


# =============================================================================
# Test Pattern
# =============================================================================


class TestPattern:
    """Images from the twin match the test pattern pixel for pixel."""

    def test_gray(self, gray_pattern):
        check_gray(gray_pattern.read_image())

    def test_gray_twice(self, gray_pattern):
        """The device is released after each image, so a second works."""
        check_gray(gray_pattern.read_image())
        check_gray(gray_pattern.read_image())

    def test_color(self, color_pattern):
        image = color_pattern.read_image()
        assert len(image.frames) == 1
        check_color(image)

    def test_color_twice(self, color_pattern):
        check_color(color_pattern.read_image())
        check_color(color_pattern.read_image())

    def test_hand_scanner(self, gray_pattern, twin_config):
        gray_pattern.set_option("hand-scanner", True)
        image = gray_pattern.read_image()
        assert image.height == twin_config.height
        check_gray(image)

    def test_padding(self, color_pattern, twin_config):
        color_pattern.set_option("ppl-loss", 7)
        image = color_pattern.read_image()
        assert image.width == twin_config.width - 7
        check_color(image)

    def test_fuzzy_parameters(self, gray_pattern):
        gray_pattern.set_option("fuzzy-parameters", True)
        check_gray(gray_pattern.read_image())


class TestDepths:
    """Pixel values at 1 and 16 bits per sample."""

    def test_one_bit_gray_scaled(self, gray_pattern):
        gray_pattern.set_option("depth", 1)
        image = gray_pattern.read_image()
        assert image.color_model == ColorModel.GRAY
        for y in range(image.height):
            for x in range(image.width):
                value = pattern_value(x, y)
                value = 0x55 if value is None else value
                assert image.at(x, y) == Gray(0xFF if value >= 0x80 else 0)

    def test_one_bit_color_scaled(self, color_pattern):
        color_pattern.set_option("depth", 1)
        image = color_pattern.read_image()
        for y in range(image.height):
            for x in range(image.width):
                r, g, b = (0xFF if v >= 0x80 else 0 for v in expected_rgb(x, y))
                assert image.at(x, y) == RGBA(r, g, b, 0xFF)

    def test_sixteen_bit_gray(self, gray_pattern):
        gray_pattern.set_option("depth", 16)
        image = gray_pattern.read_image()
        assert image.color_model == ColorModel.GRAY16
        assert image.at(1, 1) == Gray16(0)
        assert image.at(0, 0) == Gray16(0x5555)

    def test_sixteen_bit_color(self, color_pattern):
        color_pattern.set_option("depth", 16)
        image = color_pattern.read_image()
        assert image.color_model == ColorModel.RGBA64
        assert image.at(0, 0) == RGBA64(0x5555, 0x5555, 0x5555, 0xFFFF)
        # area row 1 is red, ramping down from white
        assert image.at(1, 6) == RGBA64(0xFFFF, 0, 0, 0xFFFF)


# =============================================================================
# Three-Pass
# =============================================================================


class TestThreePass:
    """Color delivered as separate red, green and blue frames."""

    @pytest.mark.parametrize("order", THREE_PASS_ORDERS)
    def test_every_order_gives_same_image(self, color_pattern, order):
        """Planes are placed by format tag, never by arrival order.

        Arrangement:
        1. Twin in Color mode with three-pass enabled.
        2. three-pass-order set to one of the six permutations.

        Action:
        Read one image.

        Assertion Strategy:
        - Exactly three frames, stored red, green, blue.
        - Pixels match the color pattern, so all orders agree.
        """
        color_pattern.set_option("three-pass", True)
        color_pattern.set_option("three-pass-order", order)

        image = color_pattern.read_image()

        assert [f.format for f in image.frames] == [
            Format.RED,
            Format.GREEN,
            Format.BLUE,
        ]
        check_color(image)

    def test_repeated_three_pass(self, color_pattern):
        color_pattern.set_option("three-pass", True)
        color_pattern.set_option("three-pass-order", "BGR")
        first = color_pattern.read_image().to_array()
        second = color_pattern.read_image().to_array()
        np.testing.assert_array_equal(first, second)

    def test_device_released_once_per_image(self):
        """No cancel between planes; one cancel after the image."""
        image, handle = assemble(
            [
                plane_frame(Format.BLUE, 3),
                plane_frame(Format.RED, 1),
                plane_frame(Format.GREEN, 2, last=True),
            ]
        )
        assert handle.cancel_count == 1
        assert handle.calls[-1] == "cancel"
        assert image.at(0, 0) == RGBA(1, 2, 3, 0xFF)


# =============================================================================
# Protocol Violations
# =============================================================================


class TestProtocolViolations:
    """Frame sequences that cannot form an image."""

    def test_duplicate_plane(self):
        handle = ScriptedHandle(
            [plane_frame(Format.RED), plane_frame(Format.RED, last=True)]
        )
        with pytest.raises(ProtocolViolationError, match="duplicate RED"):
            ImageAssembler(FrameReader(handle)).assemble()
        assert handle.calls[-1] == "cancel"

    def test_missing_plane(self):
        handle = ScriptedHandle(
            [plane_frame(Format.RED), plane_frame(Format.BLUE, last=True)]
        )
        with pytest.raises(ProtocolViolationError, match="without GREEN"):
            ImageAssembler(FrameReader(handle)).assemble()

    def test_gray_inside_plane_sequence(self):
        gray = ScriptedFrame(make_params(Format.GRAY), bytes(32))
        handle = ScriptedHandle([plane_frame(Format.GREEN), gray])
        with pytest.raises(ProtocolViolationError, match="color-plane sequence"):
            ImageAssembler(FrameReader(handle)).assemble()

    def test_plane_geometry_mismatch(self):
        handle = ScriptedHandle(
            [
                plane_frame(Format.RED),
                plane_frame(Format.GREEN, width=4),
                plane_frame(Format.BLUE, last=True),
            ]
        )
        with pytest.raises(ProtocolViolationError, match="geometry"):
            ImageAssembler(FrameReader(handle)).assemble()

    def test_device_error_between_planes(self):
        failing = plane_frame(Format.GREEN)
        failing.read_status = Status.JAMMED
        handle = ScriptedHandle([plane_frame(Format.RED), failing])
        with pytest.raises(JammedError):
            ImageAssembler(FrameReader(handle)).assemble()
        assert handle.calls[-1] == "cancel"


class TestLastFramePolicy:
    """Gray/RGB frames that are not flagged last."""

    def test_trust_format_accepts_unflagged_gray(self):
        frame = ScriptedFrame(make_params(Format.GRAY, last=False), bytes(32))
        image, _ = assemble([frame])
        assert image.is_gray

    def test_require_flag_rejects_unflagged_gray(self):
        frame = ScriptedFrame(make_params(Format.GRAY, last=False), bytes(32))
        with pytest.raises(ProtocolViolationError, match="not flagged as last"):
            assemble([frame], LastFramePolicy.REQUIRE_FLAG)

    def test_require_flag_accepts_flagged_rgb(self):
        frame = ScriptedFrame(make_params(Format.RGB, last=True), bytes(96))
        image, _ = assemble([frame], LastFramePolicy.REQUIRE_FLAG)
        assert image.color_model == ColorModel.RGBA

    def test_until_flag_keeps_reading(self):
        """Frames are acquired until one carries the last flag.

        Arrangement:
        1. Unflagged gray frame of value 1, then flagged gray of value 2.

        Action:
        Assemble with UNTIL_FLAG.

        Assertion Strategy:
        - The flagged frame wins; both frames were started.
        - One cancel releases the device at the end.
        """
        frames = [
            plane_frame(Format.GRAY, 1, last=False),
            plane_frame(Format.GRAY, 2, last=True),
        ]
        image, handle = assemble(frames, LastFramePolicy.UNTIL_FLAG)
        assert image.at(0, 0) == Gray(2)
        assert len(image.frames) == 1
        assert handle.calls.count("start") == 2
        assert handle.cancel_count == 1

    def test_until_flag_accepts_flagged_first_frame(self):
        frames = [plane_frame(Format.GRAY, 1, last=True), plane_frame(Format.GRAY, 2)]
        image, handle = assemble(frames, LastFramePolicy.UNTIL_FLAG)
        assert image.at(0, 0) == Gray(1)
        assert handle.calls.count("start") == 1

    def test_until_flag_rejects_plane_after_gray(self):
        frames = [
            plane_frame(Format.GRAY, last=False),
            plane_frame(Format.RED, last=True),
        ]
        with pytest.raises(ProtocolViolationError, match="RED frame after a GRAY"):
            assemble(frames, LastFramePolicy.UNTIL_FLAG)

    def test_until_flag_runs_out_of_frames(self):
        frames = [plane_frame(Format.RGB, last=False)]
        with pytest.raises(FeederEmptyError):
            assemble(frames, LastFramePolicy.UNTIL_FLAG)

    def test_policy_property(self):
        assembler = ImageAssembler(FrameReader(ScriptedHandle()))
        assert assembler.policy == LastFramePolicy.TRUST_FORMAT


# =============================================================================
# Cancellation
# =============================================================================


class TestCancelBetweenFrames:
    """A cancel landing between the planes of a three-pass image."""

    @staticmethod
    def three_planes(*extra):
        return ScriptedHandle(
            [
                *extra,
                plane_frame(Format.RED),
                plane_frame(Format.GREEN),
                plane_frame(Format.BLUE, last=True),
            ]
        )

    def test_cancel_after_first_plane(self):
        """The next plane is never started once cancel() has been called.

        Arrangement:
        1. Scripted red, green and blue planes.
        2. cancel() issued as the red plane reaches end of frame, so no
           frame is in flight when the assembler moves on.

        Assertion Strategy:
        - assemble() raises CancelledError, not a protocol violation.
        - The device saw a single start.
        """
        handle = self.three_planes()
        reader = FrameReader(handle)
        device_read = handle.read

        def read(max_length):
            data, status = device_read(max_length)
            if status == Status.EOF and handle.calls.count("start") == 1:
                reader.cancel()
            return data, status

        handle.read = read

        with pytest.raises(CancelledError):
            ImageAssembler(reader).assemble()
        assert handle.calls.count("start") == 1
        assert reader.state == AcquisitionState.CANCELLED

    def test_cancel_during_device_start(self):
        """A cancel racing the second start stops that plane too."""
        handle = self.three_planes()
        reader = FrameReader(handle)
        device_start = handle.start

        def start():
            if handle.calls.count("start") == 1:
                reader.cancel()
            return device_start()

        handle.start = start

        with pytest.raises(CancelledError):
            ImageAssembler(reader).assemble()
        second = len(handle.calls) - handle.calls[::-1].index("start") - 1
        assert handle.calls.count("start") == 2
        assert "read" not in handle.calls[second:]
        assert handle.calls[-1] == "cancel"

    def test_next_image_after_cancel(self):
        """A cancelled image does not poison the following one."""
        handle = self.three_planes(plane_frame(Format.RED), plane_frame(Format.GREEN))
        reader = FrameReader(handle)
        assembler = ImageAssembler(reader)
        device_start = handle.start

        def start():
            if handle.calls.count("start") == 1:
                reader.cancel()
            return device_start()

        handle.start = start
        with pytest.raises(CancelledError):
            assembler.assemble()

        image = assembler.assemble()
        assert image.at(0, 0) == RGBA(0x80, 0x80, 0x80, 0xFF)

    def test_release_cancel_outside_image_is_forgotten(self):
        handle = ScriptedHandle([plane_frame(Format.GRAY, last=True)] * 2)
        reader = FrameReader(handle)
        reader.acquire(release=True)
        assert reader.acquire(release=True).is_last


# =============================================================================
# Image API
# =============================================================================


def gray_frame(data: bytes, width: int = 2, height: int = 2, depth: int = 8):
    bpl = len(data) // height
    return Frame(Format.GRAY, width, height, 1, depth, bpl, True, data)


class TestImage:
    """Tests for the Image class."""

    @pytest.mark.parametrize("x,y", [(-1, 0), (0, -1), (2, 0), (0, 2)])
    def test_out_of_bounds_is_transparent_black(self, x, y):
        image = Image([gray_frame(bytes([1, 2, 3, 4]))])
        assert image.at(x, y) == RGBA()
        assert image.at(x, y) == RGBA(0, 0, 0, 0)

    def test_gray_to_array(self):
        image = Image([gray_frame(bytes([1, 2, 3, 4]))])
        array = image.to_array()
        assert array.shape == (2, 2)
        np.testing.assert_array_equal(array, [[1, 2], [3, 4]])

    def test_one_bit_to_array_scaled(self):
        # gray 1-bit: a clear bit is white
        image = Image([gray_frame(bytes([0b10, 0b01]), width=2, depth=1)])
        np.testing.assert_array_equal(image.to_array(), [[255, 0], [0, 255]])

    def test_planes_to_array(self):
        frames = [
            Frame(fmt, 1, 1, 1, 8, 1, fmt == Format.BLUE, bytes([v]))
            for fmt, v in ((Format.RED, 10), (Format.GREEN, 20), (Format.BLUE, 30))
        ]
        image = Image(frames)
        assert image.to_array().tolist() == [[[10, 20, 30]]]
        assert image.channels == 3
        assert image.sample(0, 0, 3) == 0

    def test_color_to_array_matches_at(self, color_pattern):
        image = color_pattern.read_image()
        array = image.to_array()
        assert array.shape == (image.height, image.width, 3)
        pixel = image.at(7, 12)
        assert tuple(array[12, 7]) == (pixel.r, pixel.g, pixel.b)

    def test_two_frames_rejected(self):
        frame = gray_frame(bytes(4))
        with pytest.raises(ProtocolViolationError, match="1 or 3 frames"):
            Image([frame, frame])

    def test_single_plane_rejected(self):
        frame = Frame(Format.RED, 1, 1, 1, 8, 1, True, b"\x00")
        with pytest.raises(ProtocolViolationError, match="not an image"):
            Image([frame])

    def test_planes_out_of_order_rejected(self):
        frames = [
            Frame(fmt, 1, 1, 1, 8, 1, True, b"\x00")
            for fmt in (Format.GREEN, Format.RED, Format.BLUE)
        ]
        with pytest.raises(ProtocolViolationError, match="red, green, blue"):
            Image(frames)

    def test_repr(self):
        image = Image([gray_frame(bytes(4))])
        assert repr(image) == "Image(2x2, depth=8, model=GRAY, frames=1)"
