"""Image format names and what the post-processor can read and write."""

from typing import Any, Dict, Optional, Tuple

# Rendition ``fmt`` values to canonical format names
_ALIASES: Dict[str, str] = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "jpe": "JPEG",
    "mpo": "JPEG",
    "tif": "TIFF",
    "tiff": "TIFF",
    "png": "PNG",
    "gif": "GIF",
    "bmp": "BMP",
    "webp": "WEBP",
    "svg": "SVG",
    "sgi": "SGI",
    "rgb": "RGB",
    "rgba": "RGBA",
    "psd": "PSD",
    "ico": "ICO",
    "pdf": "PDF",
    "tga": "TGA",
    "ppm": "PPM",
}

# Formats the Pillow based post-processor can decode
READABLE_FORMATS = frozenset({"JPEG", "PNG", "TIFF", "GIF", "BMP", "WEBP", "PSD", "ICO", "SGI", "TGA", "PPM"})

# Formats it can encode
WRITABLE_FORMATS = frozenset({"JPEG", "PNG", "TIFF", "GIF", "BMP", "WEBP"})

# Preferred intermediate formats when a worker cannot produce the requested one
WORKER_FORMAT_PRIORITY: Tuple[str, ...] = ("TIFF", "PNG", "JPEG", "GIF", "BMP", "SVG", "SGI", "RGBA", "RGB")

# Formats where the encoder quality setting applies
QUALITY_FORMATS = frozenset({"JPEG", "WEBP"})


def normalize_format(fmt: Any) -> Optional[str]:
    """Canonical name for a rendition fmt or a probed file type, None if empty."""
    if not fmt or not isinstance(fmt, str):
        return None
    key = fmt.strip().lower().lstrip(".")
    return _ALIASES.get(key, key.upper())


def is_readable(fmt: Any) -> bool:
    return normalize_format(fmt) in READABLE_FORMATS


def is_writable(fmt: Any) -> bool:
    return normalize_format(fmt) in WRITABLE_FORMATS


def same_format(a: Any, b: Any) -> bool:
    na, nb = normalize_format(a), normalize_format(b)
    return na is not None and na == nb
