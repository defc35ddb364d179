"""Tests for probing intermediate renditions."""

from PIL import Image

from conftest import make_image

from renditionworker.postprocess import estimate_jpeg_quality, probe


class TestProbe:
    def test_png(self, tmp_path):
        path = make_image(tmp_path / "r.png", size=(30, 20))
        assert probe(path) == {"FileType": "PNG", "ImageWidth": 30, "ImageHeight": 20}

    def test_jpeg_quality_estimated(self, tmp_path):
        path = make_image(tmp_path / "r.jpg", fmt="JPEG", quality=75)
        probed = probe(path)
        assert probed["FileType"] == "JPEG"
        assert abs(probed["Quality"] - 75) <= 2

    def test_orientation(self, tmp_path):
        path = tmp_path / "rotated.jpg"
        exif = Image.Exif()
        exif[0x0112] = 6
        Image.new("RGB", (10, 20)).save(path, "JPEG", exif=exif)
        assert probe(path)["Orientation"] == 6

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "r.png"
        path.write_bytes(b"not an image")
        assert probe(path) == {}

    def test_missing_file(self, tmp_path):
        assert probe(tmp_path / "missing.png") == {}

    def test_image_over_pixel_limit(self, tmp_path, monkeypatch):
        path = make_image(tmp_path / "r.png", size=(100, 100))
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        assert probe(path) == {}


class TestQualityEstimate:
    def test_no_tables(self):
        assert estimate_jpeg_quality(None) is None
        assert estimate_jpeg_quality({}) is None

    def test_standard_tables_are_quality_50(self):
        from renditionworker.postprocess.probe import _STD_LUMINANCE

        assert estimate_jpeg_quality({0: list(_STD_LUMINANCE)}) == 50
