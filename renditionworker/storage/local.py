"""Local files as sources, for development and test runs."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import unquote, urlparse

from renditionworker.config import env as env_config
from renditionworker.core.errors import GenericError, SourceUnsupportedError
from renditionworker.core.logger import setup_logger
from renditionworker.core.models import Rendition

logger = setup_logger(__name__)


def local_path(url: str) -> Path:
    if url.startswith("file://"):
        return Path(unquote(urlparse(url).path))
    return Path(url)


class LocalStorage:
    """Copies local files into the work directory. Nothing is uploaded."""

    def download(self, source: Mapping[str, Any], path: Path) -> None:
        if not env_config.ALLOW_LOCAL_SOURCES:
            raise SourceUnsupportedError("Local file sources are not allowed")
        src = local_path(source["url"])
        if not src.is_file():
            raise GenericError(f"Invalid or missing local file {src.name}", f"{env_config.ACTION_NAME}_download")
        logger.info("Using local file: %s", src)
        shutil.copyfile(src, path)

    def upload(self, rendition: Rendition) -> None:
        logger.debug("Local storage, keeping rendition %s at %s", rendition.name, rendition.path)
