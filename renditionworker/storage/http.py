"""HTTP download and upload with retry, including multipart uploads."""

from __future__ import annotations

import math
import random
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import requests
from tqdm import tqdm

from renditionworker.activation.metadata import content_type
from renditionworker.config import env as env_config
from renditionworker.core.errors import GenericError, RenditionTooLarge
from renditionworker.core.logger import redact_url, setup_logger
from renditionworker.core.models import Rendition

logger = setup_logger(__name__)

# Network settings
REQUEST_TIMEOUT = (10, 60)  # (connect, read)
MAX_RETRIES = 5
CHUNK_SIZE = 64 * 1024

RETRYABLE_CODES = (408, 429, 500, 502, 503, 504)
CONNECTION_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout,
                     requests.exceptions.SSLError, requests.exceptions.ChunkedEncodingError)


def _backoff_delay(attempt: int, base: float = 0.25, cap: float = 8.0) -> float:
    """Exponential backoff with jitter."""
    return min(cap, base * (2 ** (attempt - 1))) + random.random() * base


def _get_status_code(e: Exception) -> Optional[int]:
    """Extract HTTP status code from an exception, or None if not applicable."""
    if isinstance(e, requests.exceptions.HTTPError) and e.response is not None:
        return e.response.status_code
    return None


def _is_retryable_error(e: Exception) -> bool:
    if isinstance(e, CONNECTION_ERRORS):
        return True
    status = _get_status_code(e)
    return status is not None and status in RETRYABLE_CODES


def _max_attempts() -> int:
    return 1 if env_config.DISABLE_RETRIES else MAX_RETRIES


def _download_location() -> str:
    return f"{env_config.ACTION_NAME}_download"


def _upload_location() -> str:
    return f"{env_config.ACTION_NAME}_upload"


def download_file(url: str, path: Path, headers: Optional[Mapping[str, str]] = None) -> int:
    """Stream ``url`` into ``path``. Returns the number of bytes written."""
    path = Path(path)
    attempts = _max_attempts()
    attempt = 0
    while True:
        attempt += 1
        try:
            logger.info("Downloading: %s (attempt %d/%d)", redact_url(url), attempt, attempts)
            with requests.get(url, stream=True, timeout=REQUEST_TIMEOUT, headers=dict(headers or {})) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("content-length", 0) or 0)
                bytes_downloaded = 0
                with open(path, "wb") as f, tqdm(
                    total=total_size, unit="B", unit_scale=True, desc="Downloading", disable=None
                ) as pbar:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                            bytes_downloaded += len(chunk)
                            pbar.update(len(chunk))
            logger.debug("Download completed: %d bytes", bytes_downloaded)
            return bytes_downloaded

        except requests.exceptions.RequestException as e:
            if attempt >= attempts or not _is_retryable_error(e):
                status = _get_status_code(e)
                logger.warning("Download failed (%s): %s", status or type(e).__name__, redact_url(url))
                raise GenericError(str(e), _download_location()) from e
            logger.warning("Download error: %s: %s", type(e).__name__, e)
            time.sleep(_backoff_delay(attempt))
        except OSError as e:
            raise GenericError(f"Could not write {path.name}: {e}", _download_location()) from e


def _put(url: str, data: bytes, headers: Mapping[str, str], deadline: float) -> None:
    attempts = _max_attempts()
    attempt = 0
    while True:
        attempt += 1
        try:
            response = requests.put(url, data=data, headers=dict(headers), timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            return
        except requests.exceptions.RequestException as e:
            delay = _backoff_delay(attempt)
            if attempt >= attempts or not _is_retryable_error(e) or time.monotonic() + delay > deadline:
                raise
            logger.warning("Upload error: %s: %s, retrying", type(e).__name__, e)
            time.sleep(delay)


def multipart_plan(file_size: int, target: Mapping[str, Any]) -> List[Tuple[str, int, int]]:
    """Split ``file_size`` bytes over the target urls as ``(url, start, end)`` parts.

    Parts are as even as possible, never smaller than ``minPartSize`` (except
    for the last one) and never larger than ``maxPartSize``.
    """
    urls = list(target.get("urls") or [])
    if not urls:
        raise GenericError("Multipart target has no urls", _upload_location())

    min_part_size = int(target.get("minPartSize") or 0)
    max_part_size = target.get("maxPartSize")

    part_size = max(1, math.ceil(file_size / len(urls)))
    if min_part_size and part_size < min_part_size:
        part_size = min_part_size
    if max_part_size and part_size > int(max_part_size):
        raise RenditionTooLarge(
            f"File of {file_size} bytes is too large to upload in {len(urls)} parts of at most {max_part_size} bytes"
        )

    plan = []
    start = 0
    for url in urls:
        if start >= file_size:
            break
        end = min(start + part_size, file_size)
        plan.append((url, start, end))
        start = end
    if not plan:
        # Empty files still need one request
        plan.append((urls[0], 0, 0))
    return plan


def _upload_single(path: Path, url: str, headers: Mapping[str, str], deadline: float) -> None:
    size = path.stat().st_size
    logger.info("Uploading %s to %s, size = %d", path.name, redact_url(url), size)
    _put(url, path.read_bytes(), headers, deadline)


def _upload_multipart(path: Path, target: Mapping[str, Any], headers: Mapping[str, str], deadline: float) -> None:
    size = path.stat().st_size
    plan = multipart_plan(size, target)
    logger.info(
        "Uploading %s as multi-part to %s and %d more urls, size = %d",
        path.name, redact_url(plan[0][0]), len(plan) - 1, size,
    )
    with open(path, "rb") as f, tqdm(total=size, unit="B", unit_scale=True, desc="Uploading", disable=None) as pbar:
        for url, start, end in plan:
            f.seek(start)
            data = f.read(end - start)
            _put(url, data, headers, deadline)
            pbar.update(len(data))


def upload_file(path: Path, target: Any, headers: Optional[Dict[str, str]] = None) -> None:
    path = Path(path)
    headers = headers or {}
    deadline = time.monotonic() + env_config.MAX_UPLOAD_RETRY_SECONDS
    if isinstance(target, str):
        _upload_single(path, target, headers, deadline)
    elif isinstance(target, Mapping) and isinstance(target.get("urls"), list):
        _upload_multipart(path, target, headers, deadline)
    else:
        raise GenericError("target is neither a string nor a multipart object", _upload_location())


class HttpStorage:
    """Storage client for https sources and targets."""

    def download(self, source: Mapping[str, Any], path: Path) -> None:
        download_file(source["url"], path, headers=source.get("headers"))

    def upload(self, rendition: Rendition) -> None:
        if not rendition.target:
            logger.warning("Rendition %s does not have a target", rendition.id())
            return

        try:
            upload_file(rendition.path, rendition.target, {"Content-Type": content_type(rendition.path)})
            logger.info("Successfully finished uploading rendition %s", rendition.name)
        except RenditionTooLarge:
            raise
        except requests.exceptions.RequestException as e:
            if _get_status_code(e) == 413 or "too large" in str(e):
                raise RenditionTooLarge(
                    f"rendition size of {rendition.size()} for {rendition.name} is too large"
                ) from e
            raise GenericError(str(e), _upload_location()) from e
        except OSError as e:
            raise GenericError(str(e), _upload_location()) from e
