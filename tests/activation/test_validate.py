"""Tests for activation parameter validation."""

from unittest.mock import patch

import pytest

from renditionworker.activation.validate import (
    is_valid_data_url,
    validate_parameters,
    validate_rendition,
    validate_renditions,
    validate_source,
)
from renditionworker.core.errors import (
    GenericError,
    RenditionFormatUnsupportedError,
    SourceCorruptError,
    SourceUnsupportedError,
)


class TestValidateSource:
    def test_string_becomes_mapping(self):
        assert validate_source("https://example.com/a.jpg") == {"url": "https://example.com/a.jpg"}

    def test_missing_source_allowed(self):
        assert validate_source(None) is None

    def test_http_rejected(self):
        with pytest.raises(SourceUnsupportedError):
            validate_source("http://example.com/a.jpg")

    def test_valid_data_url(self):
        assert validate_source("data:text/plain;base64,SGVsbG8=")["url"].startswith("data:")

    def test_invalid_data_url_is_corrupt(self):
        with pytest.raises(SourceCorruptError):
            validate_source("data:not a data url")

    def test_local_path_needs_opt_in(self):
        with pytest.raises(SourceUnsupportedError):
            validate_source("/tmp/file.png")
        with patch("renditionworker.config.env.ALLOW_LOCAL_SOURCES", True):
            assert validate_source("/tmp/file.png") == {"url": "/tmp/file.png"}
            assert validate_source("file:///tmp/file.png")

    def test_does_not_mutate_input(self):
        source = {"url": "https://example.com/a.jpg", "name": "a.jpg"}
        validated = validate_source(source)
        validated["extra"] = 1
        assert "extra" not in source


class TestValidateRenditions:
    def test_not_a_list(self):
        with pytest.raises(GenericError) as exc_info:
            validate_renditions({"fmt": "png"})
        assert str(exc_info.value) == "'renditions' is not an array."
        assert exc_info.value.location == "worker_validate"

    def test_empty_after_dropping_none(self):
        with pytest.raises(GenericError) as exc_info:
            validate_renditions([None, None])
        assert str(exc_info.value) == "'renditions' array is empty."

    def test_none_entries_dropped(self):
        renditions = validate_renditions([None, {"fmt": "png", "target": "https://t/1"}])
        assert len(renditions) == 1

    def test_url_used_as_target(self):
        rendition = validate_rendition({"fmt": "png", "url": "https://t/1"}, 0)
        assert rendition["target"] == "https://t/1"

    def test_non_https_target(self):
        with pytest.raises(GenericError) as exc_info:
            validate_renditions([{"fmt": "png", "target": "https://t/1"}, {"fmt": "png", "target": "ftp://t/2"}])
        assert str(exc_info.value) == "rendition[1].target is not a valid https url"
        assert exc_info.value.location == "worker_validate"

    def test_missing_target(self):
        with pytest.raises(GenericError):
            validate_renditions([{"fmt": "png"}])

    def test_multipart_target(self):
        target = {"minPartSize": 10, "maxPartSize": 100, "urls": ["https://a/1", "https://a/2"]}
        assert validate_rendition({"target": target}, 0)["target"] == target

    def test_multipart_target_with_bad_url(self):
        with pytest.raises(GenericError):
            validate_rendition({"target": {"urls": ["https://a/1", "http://a/2"]}}, 0)

    def test_location_uses_action_name(self):
        with patch("renditionworker.config.env.ACTION_NAME", "imagemagick"):
            with pytest.raises(GenericError) as exc_info:
                validate_renditions("nope")
        assert exc_info.value.location == "imagemagick_validate"


class TestWatermark:
    def test_http_watermark_rejected(self):
        with pytest.raises(RenditionFormatUnsupportedError):
            validate_rendition(
                {"target": "https://t/1", "watermark": {"watermarkContent": "http://w/mark.png"}}, 0
            )

    def test_https_watermark_accepted(self):
        validate_rendition({"target": "https://t/1", "watermark": {"watermarkContent": "https://w/mark.png"}}, 0)


class TestHelpers:
    def test_data_url_regex(self):
        assert is_valid_data_url("data:,hello")
        assert is_valid_data_url("data:image/png;base64,iVBORw0KGgo=")
        assert not is_valid_data_url("https://example.com")

    def test_validate_parameters_returns_copies(self):
        renditions = [{"fmt": "png", "url": "https://t/1"}]
        source, validated = validate_parameters("https://s/1.png", renditions)
        assert source == {"url": "https://s/1.png"}
        assert validated[0]["target"] == "https://t/1"
        assert "target" not in renditions[0]
