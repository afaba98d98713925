"""Utility modules for sane-scan.

This package uses lazy imports via __getattr__ so that importing it does
not pull in the image encoding module until an encoder is requested.

Available exports (lazy-loaded):
    ImageEncoder: Protocol for image file encoding
    CV2ImageEncoder: OpenCV-based implementation
    save_array: Encode an array by file extension and write it

Example:
    from sane_scan.utils import CV2ImageEncoder
    encoder = CV2ImageEncoder()
"""

__all__ = ["ImageEncoder", "CV2ImageEncoder", "save_array"]


def __getattr__(name: str) -> object:
    """Lazy import of the image encoding exports.

    Imports are cached in module globals after first access.

    Raises:
        AttributeError: If name is not a public export.
    """
    if name in __all__:
        from sane_scan.utils import image

        for export in __all__:
            globals()[export] = getattr(image, export)
        return globals()[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    """Return public API for introspection and autocomplete."""
    return [*__all__, "__all__", "__doc__", "__name__", "__file__"]
