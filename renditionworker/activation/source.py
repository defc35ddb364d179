"""Resolve the activation source into a file inside the ``in/`` directory."""

from __future__ import annotations

import mimetypes
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

from renditionworker.core.errors import GenericError, SourceCorruptError
from renditionworker.core.logger import redact_url, setup_logger
from renditionworker.core.models import Source, source_filename, split_extension

logger = setup_logger(__name__)


def extension(filename: Optional[str], mime_type: Optional[str]) -> str:
    """Extension with leading dot, preferring the filename over the mime type."""
    ext = split_extension(filename)
    if not ext and mime_type:
        ext = mimetypes.guess_extension(mime_type.split(";", 1)[0].strip()) or ""
    return ext


def _declared_mime_type(source: Dict[str, Any]) -> Optional[str]:
    return source.get("mimeType") or source.get("mimetype")


def derive_source_name(source: Dict[str, Any]) -> str:
    """``source<ext>`` from the declared name, the url path or the mime type."""
    mime_type = _declared_mime_type(source)
    if source.get("name"):
        return source_filename(extension(source["name"], mime_type))

    url = source.get("url")
    if isinstance(url, str) and not url.startswith("data:") and urlparse(url).scheme:
        basename = os.path.basename(unquote(urlparse(url).path))
        return source_filename(extension(basename, mime_type))

    return source_filename(extension(None, mime_type))


def _file_is_present(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


class SourcePreparer:
    """Materializes the activation's ``Source``."""

    def __init__(self, storage_factory, disable_download: bool = False):
        self._storage_factory = storage_factory
        self.disable_download = disable_download

    def prepare(self, source: Optional[Dict[str, Any]], directory: Path) -> Optional[Source]:
        if source is None:
            return None

        name = derive_source_name(source)
        path = Path(directory) / name
        url = source.get("url")

        if self.disable_download and not url.startswith("data:"):
            logger.info("Skipping source file download for %s", redact_url(url))
            return self._build(source, name, path, size=source.get("size"))

        storage = self._storage_factory(url)
        logger.info("Downloading source %s to %s", redact_url(url), path)
        storage.download(source, path)

        if not _file_is_present(path):
            if path.exists():
                raise SourceCorruptError(f"Source file is empty: {name}")
            raise GenericError(f"Source file was not downloaded: {name}")

        return self._build(source, name, path, size=path.stat().st_size)

    @staticmethod
    def _build(source: Dict[str, Any], name: str, path: Path, size: Optional[int]) -> Source:
        mime_type = _declared_mime_type(source) or mimetypes.guess_type(name)[0]
        return Source(
            name=name,
            path=path,
            url=source.get("url"),
            type=mime_type,
            size=size,
            headers=dict(source.get("headers") or {}),
        )
