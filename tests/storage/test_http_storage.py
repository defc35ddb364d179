"""Tests for https downloads, uploads and multipart planning."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import make_image

from renditionworker.core.errors import GenericError, RenditionTooLarge
from renditionworker.core.models import Rendition
from renditionworker.storage.http import HttpStorage, download_file, multipart_plan, upload_file


def _response(status=200, chunks=(b"abc", b"def")):
    response = MagicMock()
    response.status_code = status
    response.headers = {"content-length": str(sum(len(c) for c in chunks))}
    response.iter_content.return_value = list(chunks)
    if status >= 400:
        error_response = MagicMock(status_code=status)
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status} Error", response=error_response
        )
    return response


def _get_returning(*responses):
    mock_get = MagicMock()
    contexts = []
    for response in responses:
        context = MagicMock()
        context.__enter__.return_value = response
        contexts.append(context)
    mock_get.side_effect = contexts
    return mock_get


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("renditionworker.storage.http.time.sleep") as sleep:
        yield sleep


class TestDownload:
    def test_streams_to_file(self, tmp_path):
        mock_get = _get_returning(_response())
        with patch("renditionworker.storage.http.requests.get", mock_get):
            written = download_file("https://example.com/a.jpg", tmp_path / "source.jpg", {"X-Auth": "t"})

        assert written == 6
        assert (tmp_path / "source.jpg").read_bytes() == b"abcdef"
        assert mock_get.call_args.kwargs["headers"] == {"X-Auth": "t"}

    def test_retries_server_errors(self, tmp_path, no_sleep):
        mock_get = _get_returning(_response(503), _response())
        with patch("renditionworker.storage.http.requests.get", mock_get):
            download_file("https://example.com/a.jpg", tmp_path / "source.jpg")

        assert mock_get.call_count == 2
        no_sleep.assert_called_once()

    def test_client_error_is_not_retried(self, tmp_path):
        mock_get = _get_returning(_response(404))
        with patch("renditionworker.storage.http.requests.get", mock_get):
            with pytest.raises(GenericError) as exc_info:
                download_file("https://example.com/a.jpg", tmp_path / "source.jpg")

        assert mock_get.call_count == 1
        assert exc_info.value.location == "worker_download"

    def test_retries_disabled(self, tmp_path, monkeypatch):
        monkeypatch.setattr("renditionworker.config.env.DISABLE_RETRIES", True)
        mock_get = MagicMock(side_effect=requests.exceptions.ConnectionError("refused"))
        with patch("renditionworker.storage.http.requests.get", mock_get):
            with pytest.raises(GenericError):
                download_file("https://example.com/a.jpg", tmp_path / "source.jpg")

        assert mock_get.call_count == 1

    def test_gives_up_after_max_retries(self, tmp_path):
        mock_get = MagicMock(side_effect=requests.exceptions.Timeout("slow"))
        with patch("renditionworker.storage.http.requests.get", mock_get):
            with pytest.raises(GenericError):
                download_file("https://example.com/a.jpg", tmp_path / "source.jpg")

        assert mock_get.call_count == 5


class TestMultipartPlan:
    def test_even_split(self):
        plan = multipart_plan(10, {"urls": ["u1", "u2", "u3"]})
        assert plan == [("u1", 0, 4), ("u2", 4, 8), ("u3", 8, 10)]

    def test_min_part_size_uses_fewer_urls(self):
        plan = multipart_plan(10, {"urls": ["u1", "u2", "u3"], "minPartSize": 6})
        assert plan == [("u1", 0, 6), ("u2", 6, 10)]

    def test_max_part_size_exceeded(self):
        with pytest.raises(RenditionTooLarge):
            multipart_plan(100, {"urls": ["u1", "u2"], "maxPartSize": 10})

    def test_empty_file_gets_one_part(self):
        assert multipart_plan(0, {"urls": ["u1", "u2"]}) == [("u1", 0, 0)]

    def test_no_urls(self):
        with pytest.raises(GenericError):
            multipart_plan(10, {"urls": []})


class TestUpload:
    def test_single_url(self, tmp_path):
        path = tmp_path / "rendition0.txt"
        path.write_bytes(b"hello")
        with patch("renditionworker.storage.http.requests.put") as mock_put:
            upload_file(path, "https://storage.example.com/r0", {"Content-Type": "text/plain"})

        mock_put.assert_called_once()
        assert mock_put.call_args.kwargs["data"] == b"hello"
        assert mock_put.call_args.kwargs["headers"] == {"Content-Type": "text/plain"}

    def test_multipart(self, tmp_path):
        path = tmp_path / "rendition0.txt"
        path.write_bytes(b"0123456789")
        with patch("renditionworker.storage.http.requests.put") as mock_put:
            upload_file(path, {"urls": ["https://s/1", "https://s/2"]})

        sent = [(c.args[0], c.kwargs["data"]) for c in mock_put.call_args_list]
        assert sent == [("https://s/1", b"01234"), ("https://s/2", b"56789")]

    def test_invalid_target(self, tmp_path):
        path = tmp_path / "rendition0.txt"
        path.write_bytes(b"x")
        with pytest.raises(GenericError):
            upload_file(path, 42)


class TestHttpStorage:
    def _rendition(self, tmp_path, target="https://storage.example.com/r0"):
        rendition = Rendition({"fmt": "png", "target": target}, tmp_path)
        make_image(rendition.path, size=(4, 4))
        return rendition

    def test_upload_sets_content_type(self, tmp_path):
        rendition = self._rendition(tmp_path)
        with patch("renditionworker.storage.http.requests.put") as mock_put:
            HttpStorage().upload(rendition)

        assert mock_put.call_args.kwargs["headers"]["Content-Type"] == "image/png"

    def test_payload_too_large(self, tmp_path):
        rendition = self._rendition(tmp_path)
        response = _response(413)
        with patch("renditionworker.storage.http.requests.put", return_value=response):
            with pytest.raises(RenditionTooLarge):
                HttpStorage().upload(rendition)

    def test_other_failures_are_generic(self, tmp_path, monkeypatch):
        monkeypatch.setattr("renditionworker.config.env.DISABLE_RETRIES", True)
        rendition = self._rendition(tmp_path)
        with patch("renditionworker.storage.http.requests.put", return_value=_response(500)):
            with pytest.raises(GenericError) as exc_info:
                HttpStorage().upload(rendition)

        assert exc_info.value.location == "worker_upload"

    def test_missing_target_is_skipped(self, tmp_path):
        rendition = self._rendition(tmp_path, target=None)
        with patch("renditionworker.storage.http.requests.put") as mock_put:
            HttpStorage().upload(rendition)

        mock_put.assert_not_called()

    def test_download_passes_headers(self, tmp_path):
        with patch("renditionworker.storage.http.download_file") as mock_download:
            HttpStorage().download({"url": "https://example.com/a", "headers": {"A": "1"}}, tmp_path / "s")

        mock_download.assert_called_once_with("https://example.com/a", tmp_path / "s", headers={"A": "1"})
