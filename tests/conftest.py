"""Shared fixtures: recording sinks, a fake storage client and image helpers."""

import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

from renditionworker.activation.events import RecordingSink
from renditionworker.activation.workspace import Workspace
from renditionworker.core.errors import GenericError


class FakeStorage:
    """Storage client that copies a fixture file as the source and records uploads."""

    def __init__(self, source_file: Optional[Path] = None, fail_download: Optional[Exception] = None):
        self.source_file = source_file
        self.fail_download = fail_download
        self.fail_upload_for: Dict[int, Exception] = {}
        self.downloads: List[Dict[str, Any]] = []
        self.uploads: List[Any] = []

    def __call__(self, url=None):
        return self

    def download(self, source, path):
        self.downloads.append(source)
        if self.fail_download is not None:
            raise self.fail_download
        if self.source_file is not None:
            shutil.copyfile(self.source_file, path)
        else:
            Path(path).write_bytes(b"source")

    def upload(self, rendition):
        if rendition.index in self.fail_upload_for:
            raise self.fail_upload_for[rendition.index]
        self.uploads.append(rendition)


@pytest.fixture
def events():
    return RecordingSink()


@pytest.fixture
def metrics():
    return RecordingSink()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def workspace(tmp_path):
    return Workspace.for_activation("activation-1", base_dir=tmp_path / "work")


@pytest.fixture(autouse=True)
def no_background_metrics(monkeypatch):
    """Keep deadline timers and samplers out of unit tests unless asked for."""
    monkeypatch.setattr("renditionworker.config.env.ACTIVATION_DEADLINE", None)
    monkeypatch.setattr("renditionworker.config.env.DISABLE_RESOURCE_METRICS", True)


def make_image(path: Path, size=(100, 100), fmt="PNG", mode="RGB", **save_kwargs) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new(mode, size, (200, 30, 30) if mode == "RGB" else None).save(path, fmt, **save_kwargs)
    return path


def https_params(count: int = 1, **instructions) -> Dict[str, Any]:
    return {
        "source": "https://example.com/images/photo.jpg",
        "renditions": [
            dict({"fmt": "png", "target": f"https://storage.example.com/r{i}"}, **instructions)
            for i in range(count)
        ],
        "requestId": "req-1",
    }


def download_error() -> GenericError:
    return GenericError("404 Client Error: Not Found", "worker_download")
