"""Default image post-processor built on Pillow.

Applies the rendition instructions to the worker's intermediate file and writes
the final rendition. Only the first frame or page is used.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from PIL import Image, ImageColor, ImageOps

from renditionworker.core.errors import GenericError, RenditionFormatUnsupportedError
from renditionworker.core.logger import setup_logger
from renditionworker.core.models import Rendition
from renditionworker.storage import datauri
from renditionworker.storage.http import download_file

from .formats import is_writable, normalize_format

logger = setup_logger(__name__)

DEFAULT_DPI = 72
MIN_JPEG_QUALITY = 5
JPEG_QUALITY_STEP = 5
DEFAULT_JPEG_QUALITY = 90


def _dpi_pair(value: Any) -> Tuple[float, float]:
    if isinstance(value, Mapping):
        return float(value["xdpi"]), float(value["ydpi"])
    return float(value), float(value)


def _crop(img: Image.Image, crop: Mapping[str, Any]) -> Image.Image:
    x, y = int(crop.get("x", 0)), int(crop.get("y", 0))
    w, h = int(crop["w"]), int(crop["h"])
    return img.crop((x, y, x + w, y + h))


def _resize(img: Image.Image, width: Optional[int], height: Optional[int]) -> Image.Image:
    if width and height:
        return ImageOps.contain(img, (int(width), int(height)), Image.Resampling.LANCZOS)
    if width:
        new_height = max(1, round(img.height * int(width) / img.width))
        return img.resize((int(width), new_height), Image.Resampling.LANCZOS)
    if height:
        new_width = max(1, round(img.width * int(height) / img.height))
        return img.resize((new_width, int(height)), Image.Resampling.LANCZOS)
    return img


def _resample_to_dpi(img: Image.Image, target: Any) -> Image.Image:
    """Change resolution keeping the rendered size, i.e. resample the pixels."""
    xdpi, ydpi = _dpi_pair(target)
    current = img.info.get("dpi") or (DEFAULT_DPI, DEFAULT_DPI)
    cur_x, cur_y = (float(current[0]) or DEFAULT_DPI, float(current[1]) or DEFAULT_DPI)
    size = (max(1, round(img.width * xdpi / cur_x)), max(1, round(img.height * ydpi / cur_y)))
    return img.resize(size, Image.Resampling.LANCZOS)


def _flatten(img: Image.Image, color: str) -> Image.Image:
    background = Image.new("RGB", img.size, ImageColor.getrgb(color))
    rgba = img.convert("RGBA")
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def _load_watermark(watermark: Mapping[str, Any], work_dir: Path) -> Image.Image:
    content = watermark.get("image") or watermark.get("watermarkContent") or watermark.get("path")
    if not content:
        raise GenericError("Watermark without image", "sdk_post_process")
    if content.startswith("data:"):
        _, data = datauri.decode(content)
        return Image.open(io.BytesIO(data))
    if content.startswith("https://"):
        path = work_dir / "watermark"
        download_file(content, path)
        return Image.open(path)
    return Image.open(content)


def _apply_watermark(img: Image.Image, watermark: Mapping[str, Any], work_dir: Path) -> Image.Image:
    with _load_watermark(watermark, work_dir) as mark:
        mark = mark.convert("RGBA")
    if "scale" in watermark:
        scale = float(watermark["scale"])
    else:
        scale = float(watermark.get("widthPercent", 100)) / 100.0

    width = max(1, round(img.width * scale))
    height = max(1, round(mark.height * width / mark.width))
    if height > img.height:
        height = img.height
        width = max(1, round(mark.width * height / mark.height))
    mark = mark.resize((width, height), Image.Resampling.LANCZOS)

    base = img.convert("RGBA")
    position = ((base.width - width) // 2, (base.height - height) // 2)
    base.alpha_composite(mark, dest=position)
    return base if img.mode == "RGBA" else base.convert(img.mode if img.mode in ("RGB", "L") else "RGB")


def _prepare_for_format(img: Image.Image, fmt: str) -> Image.Image:
    if fmt == "JPEG" and img.mode not in ("RGB", "L", "CMYK"):
        return _flatten(img, "white") if "A" in img.getbands() else img.convert("RGB")
    if fmt == "BMP" and img.mode not in ("RGB", "L", "P", "1"):
        return img.convert("RGB")
    return img


def _save_options(fmt: str, instructions: Mapping[str, Any], dpi: Optional[Tuple[float, float]]) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    if instructions.get("quality") and fmt in ("JPEG", "WEBP"):
        options["quality"] = int(instructions["quality"])
    if instructions.get("interlace") is True:
        if fmt == "JPEG":
            options["progressive"] = True
        elif fmt in ("PNG", "GIF"):
            options["interlace"] = True
    if dpi:
        options["dpi"] = dpi
    return options


def _enforce_jpeg_size(img: Image.Image, path: Path, limit: int, options: Dict[str, Any]) -> None:
    """Re-encode with decreasing quality until the file fits in ``limit`` bytes."""
    quality = int(options.get("quality", DEFAULT_JPEG_QUALITY))
    while path.stat().st_size > limit and quality > MIN_JPEG_QUALITY:
        quality = max(MIN_JPEG_QUALITY, quality - JPEG_QUALITY_STEP)
        img.save(path, "JPEG", **dict(options, quality=quality))
    logger.debug("JPEG size of %s is %d bytes at quality %d", path.name, path.stat().st_size, quality)


def image_post_process(intermediate: Path, rendition: Rendition, instructions: Mapping[str, Any]) -> None:
    """Convert ``intermediate`` into ``rendition.path`` following ``instructions``."""
    intermediate = Path(intermediate)
    fmt = normalize_format(instructions.get("fmt")) or "PNG"
    if not is_writable(fmt):
        raise RenditionFormatUnsupportedError(f"Post-processing cannot produce {instructions.get('fmt')} renditions")

    with Image.open(intermediate) as source:
        source.seek(0)
        img = ImageOps.exif_transpose(source)
        img.load()
        dpi = source.info.get("dpi")

    if instructions.get("crop"):
        img = _crop(img, instructions["crop"])

    img = _resize(img, instructions.get("width"), instructions.get("height"))

    if instructions.get("convertToDpi"):
        img.info["dpi"] = dpi
        img = _resample_to_dpi(img, instructions["convertToDpi"])
        dpi = _dpi_pair(instructions["convertToDpi"])

    if instructions.get("dpi"):
        dpi = _dpi_pair(instructions["dpi"])

    if instructions.get("watermark"):
        img = _apply_watermark(img, instructions["watermark"], intermediate.parent)

    if instructions.get("pdfbgcolor") and "A" in img.getbands():
        img = _flatten(img, instructions["pdfbgcolor"])

    img = _prepare_for_format(img, fmt)
    options = _save_options(fmt, instructions, dpi)

    output = Path(rendition.path)
    output.parent.mkdir(parents=True, exist_ok=True)
    img.save(output, fmt, **options)

    jpeg_size = instructions.get("jpegSize")
    if jpeg_size and fmt == "JPEG":
        _enforce_jpeg_size(img, output, int(jpeg_size), options)

    logger.info("Post-processed %s => %s", intermediate.name, output.name)
