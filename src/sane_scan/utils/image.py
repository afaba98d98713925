"""Image file encoding abstractions for dependency injection.

This module provides a Protocol-based interface for turning decoded scans
into image files, allowing cv2 to be mocked in tests without sys.modules
manipulation. The CV2ImageEncoder provides the real implementation using
OpenCV.

Usage:
    # Production (default)
    encoder = CV2ImageEncoder()
    png_bytes = encoder.encode(image.to_array(), ".png")

    # Testing
    class MockEncoder:
        def encode(self, img, ext, quality=95):
            return b"\\x89PNGmock"
    encoder = MockEncoder()

Architecture:
    ImageEncoder (Protocol) <- CV2ImageEncoder (real)
                            <- MockImageEncoder (tests)

The cv2 import is deferred to CV2ImageEncoder.__init__ so that importing
this module never loads OpenCV.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "SUPPORTED_EXTENSIONS",
    "CV2ImageEncoder",
    "ImageEncoder",
    "extension_for_path",
    "save_array",
]

#: File extensions accepted by encoders, mapped to their canonical form.
SUPPORTED_EXTENSIONS = {
    ".png": ".png",
    ".jpg": ".jpg",
    ".jpeg": ".jpg",
    ".tif": ".tif",
    ".tiff": ".tif",
}


def extension_for_path(path: str | Path) -> str:
    """Return the canonical encoder extension for an output path.

    Raises:
        ValueError: If the extension is not PNG, JPEG or TIFF.

    Example:
        >>> extension_for_path("scan.JPEG")
        '.jpg'
    """
    ext = Path(path).suffix.lower()
    try:
        return SUPPORTED_EXTENSIONS[ext]
    except KeyError:
        raise ValueError(
            f"unrecognized extension {ext!r} (expected png, jpg or tif)"
        ) from None


@runtime_checkable
class ImageEncoder(Protocol):
    """Protocol defining image file encoding.

    Example:
        >>> class MockEncoder:
        ...     def encode(self, img, ext, quality=95):
        ...         return b"data"
        >>> isinstance(MockEncoder(), ImageEncoder)
        True
    """

    def encode(self, img: NDArray[Any], ext: str, quality: int = 95) -> bytes:
        """Encode an image array into file bytes.

        Business context: The last step of a scan, writing the assembled
        image to disk in the format the user asked for.

        Args:
            img: (H, W) gray or (H, W, 3) RGB array, uint8 or uint16.
            ext: Canonical extension: ".png", ".jpg" or ".tif".
            quality: JPEG quality 1-100; ignored for other formats.

        Returns:
            Encoded file contents.

        Raises:
            ValueError: Unsupported extension, bad quality, or encoding
                failure.
        """
        ...  # pragma: no cover


class CV2ImageEncoder(ImageEncoder):
    """OpenCV-based image encoder implementation.

    PNG and TIFF keep 16-bit samples; JPEG is 8-bit only, so 16-bit
    images are reduced to their high byte first.

    Thread Safety:
        cv2 encoding functions are thread-safe. Multiple encoders can be
        used concurrently.

    Example:
        >>> encoder = CV2ImageEncoder()
        >>> data = encoder.encode(np.zeros((40, 64), dtype=np.uint8), ".png")
        >>> data[:4]
        b'\\x89PNG'
    """

    def __init__(self) -> None:
        """Initialize encoder with lazy cv2 import.

        Raises:
            ImportError: If opencv-python is not installed.
        """
        import cv2

        self._cv2 = cv2

    def encode(self, img: NDArray[Any], ext: str, quality: int = 95) -> bytes:
        """Encode with cv2.imencode, converting RGB to OpenCV's BGR order.

        Raises:
            ValueError: Unsupported extension, bad quality, or encoding
                failure.
        """
        canonical = SUPPORTED_EXTENSIONS.get(ext.lower())
        if canonical is None:
            raise ValueError(f"unsupported extension {ext!r}")
        ext = canonical
        if not 1 <= quality <= 100:
            raise ValueError(f"quality must be 1-100, got {quality}")

        if img.ndim == 3 and img.shape[2] == 3:
            img = self._cv2.cvtColor(img, self._cv2.COLOR_RGB2BGR)

        params: list[int] = []
        if ext == ".jpg":
            if img.dtype == np.uint16:
                img = (img >> 8).astype(np.uint8)
            params = [self._cv2.IMWRITE_JPEG_QUALITY, quality]

        success, data = self._cv2.imencode(ext, img, params)
        if not success:
            raise ValueError(
                f"{ext} encoding failed for image shape={img.shape}, dtype={img.dtype}"
            )
        return data.tobytes()


def save_array(
    img: NDArray[Any],
    path: str | Path,
    encoder: ImageEncoder | None = None,
    quality: int = 95,
) -> int:
    """Encode img by the path's extension and write it.

    The extension is checked before anything is encoded or written.

    Args:
        img: Image array as returned by Image.to_array().
        path: Output file; .png, .jpg/.jpeg or .tif/.tiff.
        encoder: Encoder to use (default: CV2ImageEncoder).
        quality: JPEG quality.

    Returns:
        Bytes written.

    Raises:
        ValueError: Unsupported extension or encoding failure.
        OSError: File could not be written.
    """
    ext = extension_for_path(path)
    encoder = encoder or CV2ImageEncoder()
    data = encoder.encode(img, ext, quality)
    Path(path).write_bytes(data)
    return len(data)
