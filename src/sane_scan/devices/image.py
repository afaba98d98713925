"""Image assembly from one or three frames.

A device delivers an image either as one frame (gray, or interleaved
RGB) or as three single-channel frames (red, green, blue) in whatever
order it likes, the last one flagged. ImageAssembler drives the frame
reader until the image is complete, places each plane by its format tag
rather than arrival order, and always releases the device afterwards.

Color models:
    GRAY    gray, depth 1 or 8       -> Gray(y) with 1-bit scaled to 0xFF
    GRAY16  gray, depth 16           -> Gray16(y)
    RGBA    color, depth 1 or 8      -> RGBA(r, g, b, 0xFF)
    RGBA64  color, depth 16          -> RGBA64(r, g, b, 0xFFFF)

Example:
    assembler = ImageAssembler(FrameReader(handle))
    image = assembler.assemble()
    print(image.width, image.height, image.color_model, image.at(0, 0))
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from sane_scan.devices.frames import Format, Frame, FrameReader
from sane_scan.errors import ProtocolViolationError
from sane_scan.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "RGBA",
    "RGBA64",
    "Color",
    "ColorModel",
    "Gray",
    "Gray16",
    "Image",
    "ImageAssembler",
    "LastFramePolicy",
]

_PLANES = (Format.RED, Format.GREEN, Format.BLUE)


# =============================================================================
# Pixel Types
# =============================================================================


class ColorModel(Enum):
    """Pixel representation of an image."""

    GRAY = "gray"
    GRAY16 = "gray16"
    RGBA = "rgba"
    RGBA64 = "rgba64"


@dataclass(frozen=True)
class Gray:
    """8-bit gray pixel."""

    y: int


@dataclass(frozen=True)
class Gray16:
    """16-bit gray pixel."""

    y: int


@dataclass(frozen=True)
class RGBA:
    """8-bit color pixel. The zero value is transparent black."""

    r: int = 0
    g: int = 0
    b: int = 0
    a: int = 0


@dataclass(frozen=True)
class RGBA64:
    """16-bit color pixel."""

    r: int = 0
    g: int = 0
    b: int = 0
    a: int = 0


Color = Gray | Gray16 | RGBA | RGBA64


class LastFramePolicy(Enum):
    """How a single-frame format interacts with the last-frame flag.

    TRUST_FORMAT: a gray or RGB frame completes the image whatever its
        flag says.
    REQUIRE_FLAG: a gray or RGB frame must also be flagged last,
        otherwise the sequence is a protocol violation.
    UNTIL_FLAG: frames are acquired until one is flagged last; a later
        gray or RGB frame replaces an earlier unflagged one.
    """

    TRUST_FORMAT = "trust_format"
    REQUIRE_FLAG = "require_flag"
    UNTIL_FLAG = "until_flag"


# =============================================================================
# Image
# =============================================================================


class Image:
    """Pixel-addressable image over one or three frames.

    Pixels are decoded lazily from the frame data on each query.
    """

    def __init__(self, frames: Sequence[Frame]) -> None:
        """Create an image.

        Args:
            frames: Either one gray/RGB frame, or red, green and blue
                frames in that order sharing width, height and depth.

        Raises:
            ProtocolViolationError: If frames do not form a valid image.
        """
        frames = tuple(frames)
        if len(frames) == 1:
            if frames[0].format not in (Format.GRAY, Format.RGB):
                raise ProtocolViolationError(
                    f"single {frames[0].format.name} frame is not an image"
                )
        elif len(frames) == 3:
            if tuple(f.format for f in frames) != _PLANES:
                raise ProtocolViolationError("color planes must be red, green, blue")
            first = frames[0]
            for f in frames[1:]:
                if (f.width, f.height, f.depth) != (
                    first.width,
                    first.height,
                    first.depth,
                ):
                    raise ProtocolViolationError(
                        "color planes differ in geometry: "
                        f"{first.width}x{first.height}@{first.depth} vs "
                        f"{f.width}x{f.height}@{f.depth}"
                    )
        else:
            raise ProtocolViolationError(
                f"an image has 1 or 3 frames, got {len(frames)}"
            )
        self._frames = frames

    @property
    def frames(self) -> tuple[Frame, ...]:
        """Frames backing this image."""
        return self._frames

    @property
    def width(self) -> int:
        return self._frames[0].width

    @property
    def height(self) -> int:
        return self._frames[0].height

    @property
    def depth(self) -> int:
        return self._frames[0].depth

    @property
    def is_gray(self) -> bool:
        return self._frames[0].format == Format.GRAY

    @property
    def channels(self) -> int:
        """1 for gray images, 3 for color images."""
        return 1 if self.is_gray else 3

    @property
    def color_model(self) -> ColorModel:
        """Model of the pixels returned by at()."""
        if self.is_gray:
            return ColorModel.GRAY16 if self.depth == 16 else ColorModel.GRAY
        return ColorModel.RGBA64 if self.depth == 16 else ColorModel.RGBA

    def sample(self, x: int, y: int, ch: int) -> int:
        """Raw sample for channel ch of pixel (x, y); 0 when out of range."""
        if len(self._frames) == 3:
            if not 0 <= ch < 3:
                return 0
            return self._frames[ch].sample(x, y, 0)
        return self._frames[0].sample(x, y, ch)

    def at(self, x: int, y: int) -> Color:
        """Return the pixel at (x, y) in the image's color model.

        1-bit samples are scaled to 0xFF. Color pixels are fully opaque.
        Coordinates outside the image yield transparent black RGBA().

        Example:
            >>> image.at(0, 0)
            RGBA(r=255, g=0, b=0, a=255)
            >>> image.at(-1, 0)
            RGBA(r=0, g=0, b=0, a=0)
        """
        if not (0 <= x < self.width and 0 <= y < self.height):
            return RGBA()

        scale = 0xFF if self.depth == 1 else 1
        if self.is_gray:
            s = self.sample(x, y, 0) * scale
            return Gray16(s) if self.depth == 16 else Gray(s)

        r, g, b = (self.sample(x, y, ch) * scale for ch in range(3))
        if self.depth == 16:
            return RGBA64(r, g, b, 0xFFFF)
        return RGBA(r, g, b, 0xFF)

    def to_array(self) -> NDArray[np.uint8] | NDArray[np.uint16]:
        """Decode the whole image into a numpy array.

        Returns:
            (height, width) for gray or (height, width, 3) for color, in
            R, G, B channel order. uint16 at depth 16, uint8 otherwise
            with 1-bit samples scaled to 0/255.
        """
        if len(self._frames) == 3:
            planes = [f.to_array()[:, :, 0] for f in self._frames]
            array = np.stack(planes, axis=-1)
        else:
            array = self._frames[0].to_array()
            if self.is_gray:
                array = array[:, :, 0]
        if self.depth == 1:
            array = (array * 0xFF).astype(np.uint8)
        return np.ascontiguousarray(array)

    def __repr__(self) -> str:
        return (
            f"Image({self.width}x{self.height}, depth={self.depth}, "
            f"model={self.color_model.name}, frames={len(self._frames)})"
        )


# =============================================================================
# Assembler
# =============================================================================


class ImageAssembler:
    """Collects the frames of one image and composes them.

    Business context: Three-pass scanners deliver one color plane per
    pass and are free to choose the pass order, so frames are slotted by
    their format tag. The device is released with cancel() after every
    image, successful or not; between the frames of one image it is left
    alone so the next pass can start.
    """

    def __init__(
        self,
        reader: FrameReader,
        policy: LastFramePolicy = LastFramePolicy.TRUST_FORMAT,
    ) -> None:
        """Create an assembler.

        Args:
            reader: Frame reader of the opened device.
            policy: Handling of gray/RGB frames not flagged last.
        """
        self._reader = reader
        self._policy = policy

    @property
    def policy(self) -> LastFramePolicy:
        return self._policy

    def assemble(self) -> Image:
        """Acquire frames until the image is complete and compose it.

        Returns:
            The assembled Image.

        Raises:
            ProtocolViolationError: Duplicate color plane, gray/RGB frame
                inside a color-plane sequence, missing planes when the last
                frame arrives, mismatched plane geometry, or (with
                REQUIRE_FLAG) a gray/RGB frame not flagged last.
            CancelledError: cancel() was called, including between the
                frames of a three-pass image.
            SaneError: Device statuses from the frame reader.
        """
        with self._reader.sequence():
            try:
                image = self._collect()
            finally:
                self._reader.cancel()
        logger.debug("Image assembled", image=repr(image))
        return image

    def _collect(self) -> Image:
        slots: dict[Format, Frame] = {}
        pending: Frame | None = None
        while True:
            frame = self._reader.acquire()

            if frame.format in (Format.GRAY, Format.RGB):
                if slots:
                    raise ProtocolViolationError(
                        f"{frame.format.name} frame inside a color-plane sequence"
                    )
                if frame.is_last or self._policy == LastFramePolicy.TRUST_FORMAT:
                    return Image([frame])
                if self._policy == LastFramePolicy.REQUIRE_FLAG:
                    raise ProtocolViolationError(
                        f"{frame.format.name} frame not flagged as last"
                    )
                logger.debug(
                    "Unflagged frame held",
                    format=frame.format.name,
                    height=frame.height,
                )
                pending = frame
                continue

            if pending is not None:
                raise ProtocolViolationError(
                    f"{frame.format.name} frame after a {pending.format.name} frame"
                )
            if frame.format not in _PLANES:
                raise ProtocolViolationError(f"unknown frame format {frame.format}")
            if frame.format in slots:
                raise ProtocolViolationError(
                    f"duplicate {frame.format.name} frame"
                )
            slots[frame.format] = frame
            if frame.is_last:
                break

        missing = [p.name for p in _PLANES if p not in slots]
        if missing:
            raise ProtocolViolationError(
                f"last frame arrived without {', '.join(missing)} plane(s)"
            )
        return Image([slots[p] for p in _PLANES])
