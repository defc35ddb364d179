"""Validation of activation parameters before any work starts."""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from renditionworker.config import env as env_config
from renditionworker.core.errors import (
    GenericError,
    RenditionFormatUnsupportedError,
    SourceCorruptError,
    SourceUnsupportedError,
)
from renditionworker.core.logger import redact_url

_DATA_URL_RE = re.compile(
    r"^data:([a-z]+/[a-z0-9\-+.]+(;[a-z\-]+=[a-z0-9\-]+)?)?(;base64)?,[a-z0-9!$&',()*+;=\-._~:@/?%\s]*$",
    re.IGNORECASE,
)


def validate_location() -> str:
    return f"{env_config.ACTION_NAME}_validate"


def is_https_url(url: Any) -> bool:
    if not isinstance(url, str) or not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme == "https" and bool(parsed.netloc)


def is_valid_data_url(url: Any) -> bool:
    return isinstance(url, str) and bool(_DATA_URL_RE.match(url))


def is_local_path(url: str) -> bool:
    return url.startswith("file://") or not urlparse(url).scheme


def validate_source(source: Any) -> Optional[Dict[str, Any]]:
    """Normalize the source to a mapping with ``url`` and check that url.

    A missing source is allowed; workers may not need one.
    """
    if source is None:
        return None
    if isinstance(source, str):
        source = {"url": source}
    elif isinstance(source, dict):
        source = dict(source)
    else:
        raise SourceUnsupportedError(f"Unsupported source type {type(source).__name__}")

    url = source.get("url")
    if not isinstance(url, str) or not url:
        raise SourceUnsupportedError("Invalid or missing https url None")

    if url.startswith("data:"):
        if not is_valid_data_url(url):
            raise SourceCorruptError(f"Invalid or missing data url {redact_url(url)}")
    elif env_config.ALLOW_LOCAL_SOURCES and is_local_path(url):
        pass
    elif not is_https_url(url):
        raise SourceUnsupportedError(f"Invalid or missing https url {redact_url(url)}")
    return source


def validate_rendition(rendition: Dict[str, Any], index: int, location: Optional[str] = None) -> Dict[str, Any]:
    """Resolve ``target`` of one rendition instruction and check it."""
    location = location or validate_location()
    rendition["target"] = rendition.get("target") or rendition.get("url")
    target = rendition["target"]

    if isinstance(target, str):
        if not is_https_url(target):
            raise GenericError(f"rendition[{index}].target is not a valid https url", location)
    elif isinstance(target, dict):
        for url in target.get("urls") or []:
            if not is_https_url(url):
                raise GenericError(
                    f"at least one of rendition[{index}].target.urls is not a valid https url", location
                )
    else:
        raise GenericError(f"rendition[{index}].target is neither a string nor an object", location)

    watermark = rendition.get("watermark")
    if isinstance(watermark, dict) and watermark.get("watermarkContent") is not None:
        validate_watermark(watermark)
    return rendition


def validate_watermark(watermark: Dict[str, Any]) -> None:
    content = watermark["watermarkContent"]
    if not isinstance(content, str):
        raise RenditionFormatUnsupportedError("Invalid watermark content")
    if content.startswith("data:"):
        if not is_valid_data_url(content):
            raise RenditionFormatUnsupportedError(f"Invalid or missing data url for watermark {redact_url(content)}")
    elif not is_https_url(content):
        raise RenditionFormatUnsupportedError(f"Invalid or missing https url for watermark {redact_url(content)}")


def validate_renditions(renditions: Any) -> List[Dict[str, Any]]:
    location = validate_location()
    if not isinstance(renditions, list):
        raise GenericError("'renditions' is not an array.", location)

    renditions = [copy.deepcopy(r) for r in renditions if r is not None]
    if not renditions:
        raise GenericError("'renditions' array is empty.", location)

    for index, rendition in enumerate(renditions):
        if not isinstance(rendition, dict):
            raise GenericError(f"rendition[{index}] is not an object", location)
        validate_rendition(rendition, index, location)
    return renditions


def declared_renditions(renditions: Any) -> List[Dict[str, Any]]:
    """Best-effort list of rendition instructions, used to report fatal errors."""
    if not isinstance(renditions, list):
        return []
    return [copy.deepcopy(r) for r in renditions if isinstance(r, dict)]


def validate_parameters(source: Any, renditions: Any) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
    return validate_source(source), validate_renditions(renditions)
