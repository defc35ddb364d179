"""Tests for source naming and preparation."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from renditionworker.activation.source import SourcePreparer, derive_source_name, extension
from renditionworker.core.errors import GenericError, SourceCorruptError


class TestSourceName:
    def test_declared_name_wins(self):
        assert derive_source_name({"url": "https://a/b/file.png", "name": "photo.jpg"}) == "source.jpg"

    def test_url_path(self):
        assert derive_source_name({"url": "https://a/b/file.png?sig=1"}) == "source.png"

    def test_mime_type_fallback(self):
        assert derive_source_name({"url": "https://a/b/file", "mimeType": "image/png"}) == "source.png"

    def test_lowercase_mimetype_key(self):
        assert derive_source_name({"url": "https://a/b/file", "mimetype": "image/png"}) == "source.png"

    def test_nothing_known(self):
        assert derive_source_name({"url": "https://a/b/file"}) == "source"

    def test_data_url_uses_mime_type(self):
        assert derive_source_name({"url": "data:,abc", "mimeType": "image/png"}) == "source.png"

    def test_extension_prefers_filename(self):
        assert extension("a.tiff", "image/png") == ".tiff"
        assert extension(None, None) == ""


class TestSourcePreparer:
    def test_download_into_directory(self, tmp_path, storage):
        preparer = SourcePreparer(storage)
        source = preparer.prepare({"url": "https://a/b/photo.jpg", "mimeType": "image/jpeg"}, tmp_path)

        assert source.name == "source.jpg"
        assert source.path == tmp_path / "source.jpg"
        assert source.path.read_bytes() == b"source"
        assert source.size == 6
        assert source.type == "image/jpeg"
        assert storage.downloads[0]["url"] == "https://a/b/photo.jpg"

    def test_download_disabled(self, tmp_path):
        factory = MagicMock()
        preparer = SourcePreparer(factory, disable_download=True)
        source = preparer.prepare({"url": "https://a/b/photo.jpg"}, tmp_path)

        factory.assert_not_called()
        assert source.url == "https://a/b/photo.jpg"
        assert not source.path.exists()

    def test_data_url_materialized_even_when_download_disabled(self, tmp_path, storage):
        preparer = SourcePreparer(storage, disable_download=True)
        preparer.prepare({"url": "data:,abc"}, tmp_path)
        assert len(storage.downloads) == 1

    def test_storage_error_propagates(self, tmp_path, storage):
        storage.fail_download = GenericError("boom", "worker_download")
        with pytest.raises(GenericError):
            SourcePreparer(storage).prepare({"url": "https://a/b.png"}, tmp_path)

    def test_empty_download_is_corrupt(self, tmp_path):
        client = MagicMock()
        client.download.side_effect = lambda source, path: Path(path).write_bytes(b"")
        with pytest.raises(SourceCorruptError):
            SourcePreparer(lambda url: client).prepare({"url": "https://a/b.png"}, tmp_path)

    def test_no_source(self, tmp_path, storage):
        assert SourcePreparer(storage).prepare(None, tmp_path) is None
