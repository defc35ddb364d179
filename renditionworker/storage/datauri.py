"""Inline ``data:`` urls as sources, and renditions embedded into events."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any, Mapping, Tuple
from urllib.parse import unquote_to_bytes

from renditionworker.activation.metadata import content_type
from renditionworker.config import env as env_config
from renditionworker.core.errors import GenericError, RenditionTooLarge
from renditionworker.core.logger import setup_logger
from renditionworker.core.models import Rendition

logger = setup_logger(__name__)

DATA_URI_LIMIT = 2 * 1024 * 1024 - 100


def decode(url: str) -> Tuple[str, bytes]:
    """Media type and payload of a data url."""
    if not url.startswith("data:") or "," not in url:
        raise ValueError("Not a data url")
    header, payload = url[len("data:"):].split(",", 1)
    params = header.split(";")
    media_type = params[0] or "text/plain;charset=US-ASCII"
    if params[-1] == "base64":
        return media_type, base64.b64decode(payload, validate=False)
    return media_type, unquote_to_bytes(payload)


def encode(data: bytes, media_type: str) -> str:
    return f"data:{media_type.replace(' ', '')};base64,{base64.b64encode(data).decode('ascii')}"


def rendition_as_data_uri(rendition: Rendition) -> str:
    if rendition.size() > DATA_URI_LIMIT:
        raise RenditionTooLarge(f"Rendition too large for data uri {rendition.name}")
    return encode(rendition.path.read_bytes(), content_type(rendition.path))


class DataUriStorage:
    """Writes the payload of a ``data:`` source url to disk."""

    def download(self, source: Mapping[str, Any], path: Path) -> None:
        try:
            _, data = decode(source["url"])
            logger.info("Writing source data uri into %s", path)
            Path(path).write_bytes(data)
        except (ValueError, OSError) as e:
            raise GenericError(str(e), f"{env_config.ACTION_NAME}_download") from e

    def upload(self, rendition: Rendition) -> None:
        raise GenericError("Cannot upload renditions to a data url", f"{env_config.ACTION_NAME}_upload")
