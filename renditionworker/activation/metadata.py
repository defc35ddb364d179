"""File metadata reported with ``rendition_created`` events."""

from __future__ import annotations

import hashlib
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from renditionworker.core.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
HASH_ALGORITHM = "sha1"
_CHUNK_SIZE = 64 * 1024
_TEXT_SNIFF_BYTES = 8192

# Pillow refuses images above its pixel limit with DecompressionBombError
UNREADABLE_IMAGE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError)

REPO_SIZE = "repo:size"
REPO_SHA1 = "repo:sha1"
DC_FORMAT = "dc:format"
REPO_ENCODING = "repo:encoding"
TIFF_IMAGE_WIDTH = "tiff:imageWidth"
TIFF_IMAGE_HEIGHT = "tiff:imageHeight"


@dataclass
class RenditionMetadata:
    size: Optional[int] = None
    content_hash: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    mime_type: Optional[str] = None
    encoding: Optional[str] = None

    def to_event(self) -> Dict[str, object]:
        meta: Dict[str, object] = {}
        if self.content_hash is not None:
            meta[REPO_SHA1] = self.content_hash
        if self.size is not None:
            meta[REPO_SIZE] = self.size
        if self.width is not None and self.height is not None:
            meta[TIFF_IMAGE_WIDTH] = self.width
            meta[TIFF_IMAGE_HEIGHT] = self.height
        meta[DC_FORMAT] = self.mime_type or DEFAULT_MIME_TYPE
        if self.encoding:
            meta[REPO_ENCODING] = self.encoding
        return meta


def file_hash(path: Path, algorithm: str = HASH_ALGORITHM) -> str:
    digest = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def image_dimensions(path: Path) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(path) as img:
            return img.size
    except UNREADABLE_IMAGE_ERRORS:
        return None


def _text_encoding(path: Path) -> Optional[str]:
    with open(path, "rb") as f:
        head = f.read(_TEXT_SNIFF_BYTES)
    if b"\x00" in head:
        return None
    try:
        head.decode("ascii")
        return "us-ascii"
    except UnicodeDecodeError:
        pass
    try:
        head.decode("utf-8")
        return "utf-8"
    except UnicodeDecodeError:
        return None


def detect_content_type(path: Path) -> Tuple[str, Optional[str]]:
    """Mime type and text charset of a file; charset is None for binary files."""
    path = Path(path)
    try:
        with Image.open(path) as img:
            mime = Image.MIME.get(img.format or "")
            if mime:
                return mime, None
    except UNREADABLE_IMAGE_ERRORS:
        pass

    mime = mimetypes.guess_type(path.name)[0]
    encoding = None
    try:
        if mime is None or mime.startswith("text/") or mime in ("application/json", "application/xml"):
            encoding = _text_encoding(path)
    except OSError as e:
        logger.debug("Could not read %s to detect encoding: %s", path, e)
    if mime is None and encoding is not None:
        mime = "text/plain"
    return mime or DEFAULT_MIME_TYPE, encoding


def content_type(path: Path) -> str:
    """Value for a Content-Type header, including the charset for text files."""
    mime, encoding = detect_content_type(path)
    if encoding:
        return f"{mime}; charset={encoding}"
    return mime


def extract(path: Path) -> RenditionMetadata:
    """Collect metadata of ``path``. Individual failures only drop their fields."""
    path = Path(path)
    meta = RenditionMetadata()
    if not path.exists():
        return meta

    try:
        meta.size = path.stat().st_size
    except OSError as e:
        logger.warning("Could not determine file size of %s: %s", path.name, e)

    try:
        meta.content_hash = file_hash(path)
    except OSError as e:
        logger.warning("Could not determine %s file hash of %s: %s", HASH_ALGORITHM, path.name, e)

    try:
        dimensions = image_dimensions(path)
    except Exception as e:
        logger.warning("Could not read dimensions of %s: %s", path.name, e)
        dimensions = None
    if dimensions:
        meta.width, meta.height = dimensions
    else:
        logger.debug("No dimensions found for %s", path.name)

    try:
        meta.mime_type, meta.encoding = detect_content_type(path)
    except Exception as e:
        logger.debug("Could not determine mime type of %s, using %s: %s", path.name, DEFAULT_MIME_TYPE, e)
        meta.mime_type = DEFAULT_MIME_TYPE

    return meta
