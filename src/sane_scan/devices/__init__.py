"""Logical device layer - backend-agnostic scanner abstractions."""

from sane_scan.devices.frames import (
    DEFAULT_READ_CHUNK_SIZE,
    AcquisitionState,
    Frame,
    FrameReader,
)
from sane_scan.devices.image import (
    RGBA,
    RGBA64,
    Color,
    ColorModel,
    Gray,
    Gray16,
    Image,
    ImageAssembler,
    LastFramePolicy,
)
from sane_scan.devices.library import ScannerLibrary, version_tuple
from sane_scan.devices.options import (
    Option,
    OptionRegistry,
    Range,
    SetResult,
)
from sane_scan.devices.scanner import Scanner
from sane_scan.devices.values import (
    AUTO,
    Auto,
    BoolValue,
    FixedValue,
    FixedVector,
    IntValue,
    IntVector,
    StringValue,
    Value,
    coerce_value,
    decode,
    encode,
    to_python,
)

__all__ = [
    # Values
    "AUTO",
    "Auto",
    "BoolValue",
    "FixedValue",
    "FixedVector",
    "IntValue",
    "IntVector",
    "StringValue",
    "Value",
    "coerce_value",
    "decode",
    "encode",
    "to_python",
    # Options
    "Option",
    "OptionRegistry",
    "Range",
    "SetResult",
    # Frames
    "DEFAULT_READ_CHUNK_SIZE",
    "AcquisitionState",
    "Frame",
    "FrameReader",
    # Images
    "RGBA",
    "RGBA64",
    "Color",
    "ColorModel",
    "Gray",
    "Gray16",
    "Image",
    "ImageAssembler",
    "LastFramePolicy",
    # Scanner
    "Scanner",
    "ScannerLibrary",
    "version_tuple",
]
