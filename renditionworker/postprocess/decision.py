"""Decides whether a worker generated rendition needs post-processing.

Both functions are pure: they look only at the rendition instructions and at
what was probed from the intermediate file, never at the file itself.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

from renditionworker.core.errors import RenditionFormatUnsupportedError, SourceCorruptError

from .formats import (
    QUALITY_FORMATS,
    WORKER_FORMAT_PRIORITY,
    is_readable,
    is_writable,
    normalize_format,
    same_format,
)

# Instructions that can only be honoured by post-processing
ALWAYS_POST_PROCESS = ("crop", "jpegSize", "interlace", "dpi", "convertToDpi", "watermark", "pdfbgcolor")

# Orientation values other than 1 mean the pixels are stored rotated or flipped
_TRANSFORMED_ORIENTATIONS = range(2, 9)


def _is_set(value: Any) -> bool:
    return value is not None and value is not False and value != "" and value != {}


def _dimensions_mismatch(instructions: Mapping[str, Any], probed: Mapping[str, Any]) -> bool:
    width = instructions.get("width")
    height = instructions.get("height")
    probed_width = probed.get("ImageWidth")
    probed_height = probed.get("ImageHeight")

    if width and height:
        if probed_width is None or probed_height is None:
            return True
        # Fitted into the box: one side matches, the other stays within
        fits_width = probed_width == width and probed_height <= height
        fits_height = probed_height == height and probed_width <= width
        return not (fits_width or fits_height)
    if width:
        return probed_width != width
    if height:
        return probed_height != height
    return False


def _quality_mismatch(fmt: Optional[str], instructions: Mapping[str, Any], probed: Mapping[str, Any]) -> bool:
    quality = instructions.get("quality")
    if not quality or fmt not in QUALITY_FORMATS:
        return False
    probed_quality = probed.get("Quality")
    return probed_quality is not None and int(probed_quality) != int(quality)


def needs_post_process(instructions: Mapping[str, Any], probed: Mapping[str, Any]) -> bool:
    """True when the probed intermediate does not satisfy ``instructions``.

    Raises ``SourceCorruptError`` when the intermediate's type is unknown and
    ``RenditionFormatUnsupportedError`` when post-processing cannot read it, or
    cannot write the requested format which the worker did not produce either.
    """
    file_type = probed.get("FileType")
    if not file_type:
        raise SourceCorruptError("Could not determine the file type of the generated rendition")

    if not is_readable(file_type):
        raise RenditionFormatUnsupportedError(f"Post-processing cannot read {file_type} renditions")

    fmt = normalize_format(instructions.get("fmt"))
    if fmt and not is_writable(fmt):
        if same_format(fmt, file_type):
            return False
        raise RenditionFormatUnsupportedError(f"Post-processing cannot produce {instructions.get('fmt')} renditions")

    if any(_is_set(instructions.get(key)) for key in ALWAYS_POST_PROCESS):
        return True

    if fmt and not same_format(fmt, file_type):
        return True

    if _dimensions_mismatch(instructions, probed):
        return True

    if _quality_mismatch(fmt or normalize_format(file_type), instructions, probed):
        return True

    orientation = probed.get("Orientation")
    if orientation is not None and int(orientation) in _TRANSFORMED_ORIENTATIONS:
        return True

    return False


def adjust_for_worker_capability(
    instructions: Mapping[str, Any], supported_formats: Optional[Iterable[str]]
) -> Optional[Dict[str, Any]]:
    """Instructions for the worker callback when it cannot emit the requested fmt.

    Returns None when no change is needed. Otherwise a copy of ``instructions``
    asking for the best intermediate format the worker supports, which
    post-processing then converts.
    """
    if supported_formats is None:
        return None
    fmt = instructions.get("fmt")
    if not fmt:
        return None

    supported = {}
    for name in supported_formats:
        canonical = normalize_format(name)
        if canonical and canonical not in supported:
            supported[canonical] = name

    if normalize_format(fmt) in supported:
        return None

    if not is_writable(fmt):
        raise RenditionFormatUnsupportedError(f"Unsupported rendition format {fmt}")

    for candidate in WORKER_FORMAT_PRIORITY:
        if candidate in supported and is_readable(candidate):
            adjusted = dict(instructions)
            adjusted["fmt"] = supported[candidate]
            return adjusted

    raise RenditionFormatUnsupportedError(f"Unsupported rendition format {fmt}")
