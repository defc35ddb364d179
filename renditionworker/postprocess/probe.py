"""Reads the properties of a generated rendition that drive post-processing."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from PIL import Image, UnidentifiedImageError

from renditionworker.core.logger import setup_logger

from .formats import normalize_format

logger = setup_logger(__name__)

EXIF_ORIENTATION = 0x0112

# Luminance quantization table from the JPEG standard (Annex K). Only its sum
# is used, so the coefficient order of the probed table does not matter
_STD_LUMINANCE = (
    16, 11, 10, 16, 24, 40, 51, 61,
    12, 12, 14, 19, 26, 58, 60, 55,
    14, 13, 16, 24, 40, 57, 69, 56,
    14, 17, 22, 29, 51, 87, 80, 62,
    18, 22, 37, 56, 68, 109, 103, 77,
    24, 35, 55, 64, 81, 104, 113, 92,
    49, 64, 78, 87, 103, 121, 120, 101,
    72, 92, 95, 98, 112, 100, 103, 99,
)


def estimate_jpeg_quality(quantization: Optional[Dict[int, Any]]) -> Optional[int]:
    """Estimate the encoder quality (1-100) from a JPEG's luminance table.

    Inverts the libjpeg quality scaling: tables are the standard ones scaled by
    ``5000 / q`` below quality 50 and by ``200 - 2q`` above.
    """
    if not quantization or 0 not in quantization:
        return None
    table = list(quantization[0])
    if len(table) != len(_STD_LUMINANCE):
        return None

    scale = 100.0 * sum(table) / sum(_STD_LUMINANCE)
    if scale <= 0:
        return None
    if scale <= 100:
        quality = (200.0 - scale) / 2.0
    else:
        quality = 5000.0 / scale
    return max(1, min(100, int(round(quality))))


def probe(path: Path) -> Dict[str, Any]:
    """FileType, ImageWidth, ImageHeight, Orientation and Quality of an image.

    Keys whose value cannot be determined are omitted; an unreadable file
    yields an empty mapping.
    """
    result: Dict[str, Any] = {}
    try:
        with Image.open(path) as img:
            file_type = normalize_format(img.format)
            if file_type:
                result["FileType"] = file_type
            result["ImageWidth"], result["ImageHeight"] = img.size

            orientation = img.getexif().get(EXIF_ORIENTATION)
            if orientation:
                result["Orientation"] = int(orientation)

            if file_type == "JPEG":
                quality = estimate_jpeg_quality(getattr(img, "quantization", None))
                if quality is not None:
                    result["Quality"] = quality
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.debug("Could not probe %s: %s", Path(path).name, e)
        return {}
    return result
