"""Storage clients moving sources in and renditions out of the activation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from renditionworker.core.models import Rendition

from .datauri import DataUriStorage
from .http import HttpStorage
from .local import LocalStorage


class StorageClient(Protocol):
    def download(self, source: Mapping[str, Any], path: Path) -> None:
        ...

    def upload(self, rendition: Rendition) -> None:
        ...


def get_storage_client(url: Optional[str] = None) -> StorageClient:
    """Pick the storage client for a source url, https being the default."""
    if url and url.startswith("data:"):
        return DataUriStorage()
    if url and (url.startswith("file://") or "://" not in url):
        return LocalStorage()
    return HttpStorage()


__all__ = [
    "DataUriStorage",
    "HttpStorage",
    "LocalStorage",
    "StorageClient",
    "get_storage_client",
]
