import io

import pytest
from PIL import Image
from PIL.TiffImagePlugin import IFDRational

from colors import extract_dominant_colors, rgb_to_color_name
from exif import _to_float, extract_camera_info, format_shutter_speed
from metadata import extract_metadata
from models import CameraInfo


def _make_test_image(width, height, color, fmt="PNG"):
    img = Image.new("RGB", (width, height), color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def _make_split_image():
    """Left two thirds red, right third blue."""
    img = Image.new("RGB", (300, 100), color=(220, 30, 30))
    img.paste((30, 60, 200), (200, 0, 300, 100))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _make_jpeg_with_exif():
    img = Image.new("RGB", (64, 48), color=(120, 140, 90))
    exif = Image.Exif()
    exif[0x010F] = "Canon"
    exif[0x0110] = "Canon EOS R5"
    exif[0x920A] = IFDRational(50, 1)  # FocalLength
    exif[0x829D] = IFDRational(28, 10)  # FNumber
    exif[0x829A] = IFDRational(1, 80)  # ExposureTime
    exif[0x8827] = 400  # ISOSpeedRatings
    buf = io.BytesIO()
    img.save(buf, format="JPEG", exif=exif)
    return buf.getvalue()


class TestColorNames:
    @pytest.mark.parametrize("rgb,name", [
        ((10, 10, 10), "black"),
        ((250, 250, 250), "white"),
        ((128, 128, 128), "gray"),
        ((220, 30, 30), "red"),
        ((230, 100, 20), "orange"),
        ((220, 200, 30), "yellow"),
        ((30, 200, 60), "green"),
        ((30, 60, 200), "blue"),
        ((120, 30, 220), "purple"),
        ((200, 30, 220), "pink"),
    ])
    def test_rgb_to_color_name(self, rgb, name):
        assert rgb_to_color_name(*rgb) == name


class TestDominantColors:
    def test_single_color(self):
        assert extract_dominant_colors(_make_test_image(50, 50, (220, 30, 30))) == ["red"]

    def test_orders_by_frequency(self):
        assert extract_dominant_colors(_make_split_image()) == ["red", "blue"]

    def test_skips_near_black_and_white(self):
        assert extract_dominant_colors(_make_test_image(50, 50, (0, 0, 0))) == []
        assert extract_dominant_colors(_make_test_image(50, 50, (255, 255, 255))) == []

    def test_respects_max_colors(self):
        assert extract_dominant_colors(_make_split_image(), max_colors=1) == ["red"]


class TestExif:
    def test_reads_camera_fields(self):
        info = extract_camera_info(_make_jpeg_with_exif())
        assert info.make == "Canon"
        assert info.model == "Canon EOS R5"
        assert info.focal_length_mm == 50.0
        assert info.aperture == 2.8
        assert info.shutter_speed == "1/80"
        assert info.iso == 400

    def test_image_without_exif(self):
        assert extract_camera_info(_make_test_image(10, 10, "red")) == CameraInfo()

    @pytest.mark.parametrize("seconds,expected", [
        (1 / 250, "1/250"),
        (0.5, "1/2"),
        (2.0, "2s"),
        (0, None),
        (None, None),
    ])
    def test_format_shutter_speed(self, seconds, expected):
        assert format_shutter_speed(seconds) == expected

    def test_to_float_handles_rational_forms(self):
        assert _to_float((9, 1)) == 9.0
        assert _to_float(IFDRational(1, 80)) == pytest.approx(0.0125)
        assert _to_float((1, 0)) is None
        assert _to_float("abc") is None


class TestExtractMetadata:
    @pytest.mark.asyncio
    async def test_runs_both_extractors(self):
        metadata = await extract_metadata(_make_jpeg_with_exif())
        assert metadata.camera.make == "Canon"
        assert metadata.dominant_colors

    @pytest.mark.asyncio
    async def test_degrades_to_empty_on_garbage(self):
        metadata = await extract_metadata(b"definitely not an image")
        assert metadata.dominant_colors == []
        assert metadata.camera == CameraInfo()
