import pytest

from models import (
    CameraInfo,
    ExtractedMetadata,
    UploadJob,
    Variant,
    VariantSet,
    resolve_display_url,
    resolve_poster_url,
)
from record import (
    build_catalog_record,
    normalize_category,
    parse_tags,
    record_urls,
    validate_coordinates,
)

CDN = "https://cdn.example.com/photo-app-images"
CATEGORY = "64b7f0c2a1b2c3d4e5f60718"


def _raster_variants():
    return VariantSet(
        public_id="pid",
        urls={
            Variant.THUMBNAIL: f"{CDN}/pid-thumbnail.webp",
            Variant.SMALL: f"{CDN}/pid-small.webp",
            Variant.REGULAR: f"{CDN}/pid-regular.webp",
            Variant.FULL_SIZE_DISPLAY: f"{CDN}/pid.webp",
            Variant.ORIGINAL: f"{CDN}/pid-original.jpg",
        },
        inline_preview="data:image/png;base64,AAAA",
        width=4000,
        height=3000,
    )


def _video_variants(poster=True):
    video = f"{CDN}/clip.mp4"
    urls = {slot: video for slot in (Variant.SMALL, Variant.REGULAR, Variant.ORIGINAL,
                                     Variant.FULL_SIZE_DISPLAY)}
    if poster:
        urls[Variant.THUMBNAIL] = urls[Variant.POSTER_FRAME] = f"{CDN}/clip-thumb.jpg"
    return VariantSet(public_id="clip", urls=urls, is_video=True, video_url=video,
                      duration_seconds=3.5)


def _job(**overrides):
    fields = dict(staging_key="photo-app-raw/image-1-abcdef12.jpg", upload_id="image-1-abcdef12",
                  owner_id="user-1")
    fields.update(overrides)
    return UploadJob(**fields)


class TestParseTags:
    def test_normalises_and_dedupes_keeping_first(self):
        assert parse_tags(["Red", "red", " Blue ", "red"]) == ["red", "blue"]

    def test_accepts_json_string(self):
        assert parse_tags('["Sunset", "beach"]') == ["sunset", "beach"]

    def test_caps_at_twenty(self):
        tags = [f"tag{i}" for i in range(30)]
        assert parse_tags(tags) == tags[:20]

    def test_drops_empty_and_overlong(self):
        assert parse_tags(["", "   ", "x" * 51, "ok"]) == ["ok"]

    @pytest.mark.parametrize("value", [None, "", "not json", '{"a": 1}', 42])
    def test_invalid_input_yields_empty(self, value):
        assert parse_tags(value) == []


class TestValidateCoordinates:
    def test_accepts_in_range(self):
        assert validate_coordinates({"latitude": 45.5, "longitude": -73.6}) == {
            "latitude": 45.5, "longitude": -73.6,
        }

    def test_accepts_json_string(self):
        assert validate_coordinates('{"latitude": "10", "longitude": "20"}') == {
            "latitude": 10.0, "longitude": 20.0,
        }

    def test_accepts_zero(self):
        assert validate_coordinates({"latitude": 0, "longitude": 0}) == {
            "latitude": 0.0, "longitude": 0.0,
        }

    @pytest.mark.parametrize("value", [
        {"latitude": 95, "longitude": 0},
        {"latitude": 0, "longitude": 181},
        {"latitude": "north", "longitude": 0},
        {"latitude": 10},
        "garbage",
        [1, 2],
    ])
    def test_rejects_invalid(self, value):
        assert validate_coordinates(value) is None


class TestNormalizeCategory:
    def test_valid_object_id(self):
        assert normalize_category(f"  {CATEGORY} ") == CATEGORY

    @pytest.mark.parametrize("value", [None, "", "  ", "nature", "zz" * 12])
    def test_invalid(self, value):
        assert normalize_category(value) is None


class TestUrlResolution:
    def test_display_prefers_regular(self):
        assert resolve_display_url(_raster_variants()).endswith("pid-regular.webp")

    def test_display_falls_back_to_original_then_small(self):
        variants = _raster_variants()
        urls = dict(variants.urls)
        del urls[Variant.REGULAR]
        no_regular = VariantSet(public_id="pid", urls=urls)
        assert resolve_display_url(no_regular).endswith("pid-original.jpg")

        only_small = VariantSet(public_id="pid", urls={Variant.SMALL: f"{CDN}/pid-small.webp"})
        assert resolve_display_url(only_small).endswith("pid-small.webp")

    def test_poster_falls_back_to_video(self):
        assert resolve_poster_url(_video_variants()).endswith("clip-thumb.jpg")
        assert resolve_poster_url(_video_variants(poster=False)).endswith("clip.mp4")


class TestBuildCatalogRecord:
    def test_raster_record(self):
        metadata = ExtractedMetadata(
            dominant_colors=["red", "blue"],
            camera=CameraInfo(make="Canon", model="EOS R5", focal_length_mm=50.0,
                              aperture=2.8, shutter_speed="1/80", iso=400),
        )
        job = _job(title="  Sunset  ", category_ref=CATEGORY, tags=["Beach", "beach"],
                   coordinates={"latitude": 45.5, "longitude": -73.6}, location="Montreal")

        record = build_catalog_record(job, _raster_variants(), metadata)

        assert record["publicId"] == "pid"
        assert record["imageUrl"].endswith("pid-original.jpg")
        assert record["regularUrl"].endswith("pid-regular.webp")
        assert record["imageAvifUrl"].endswith("pid.webp")
        assert record["imageTitle"] == "Sunset"
        assert record["imageCategory"] == CATEGORY
        assert record["uploadedBy"] == "user-1"
        assert record["tags"] == ["beach"]
        assert record["dominantColors"] == ["red", "blue"]
        assert record["cameraModel"] == "EOS R5"
        assert record["shutterSpeed"] == "1/80"
        assert record["width"] == 4000
        assert record["moderationStatus"] == "pending"
        assert record["isModerated"] is False
        assert record["isVideo"] is False
        assert "videoUrl" not in record
        assert "moderatedBy" not in record

    def test_empty_fields_are_omitted(self):
        record = build_catalog_record(_job(), _raster_variants(), ExtractedMetadata())
        for name in ("imageTitle", "imageCategory", "tags", "dominantColors",
                     "coordinates", "cameraMake", "iso"):
            assert name not in record

    def test_camera_model_falls_back_to_submitted_value(self):
        record = build_catalog_record(_job(camera_model=" Pixel 8 "), _raster_variants(),
                                      ExtractedMetadata())
        assert record["cameraModel"] == "Pixel 8"

    def test_privileged_upload_is_pre_approved(self):
        record = build_catalog_record(_job(is_privileged=True, category_ref=CATEGORY),
                                      _raster_variants(), ExtractedMetadata())
        assert record["moderationStatus"] == "approved"
        assert record["isModerated"] is True
        assert record["moderatedBy"] == "user-1"
        assert "moderatedAt" in record

    def test_title_is_truncated(self):
        record = build_catalog_record(_job(title="x" * 300), _raster_variants(), ExtractedMetadata())
        assert len(record["imageTitle"]) == 255

    def test_video_record(self):
        record = build_catalog_record(_job(), _video_variants(), ExtractedMetadata())
        assert record["isVideo"] is True
        assert record["videoUrl"].endswith("clip.mp4")
        assert record["videoThumbnail"].endswith("clip-thumb.jpg")
        assert record["videoDuration"] == 3.5

    def test_record_urls(self):
        record = build_catalog_record(_job(), _video_variants(), ExtractedMetadata())
        assert record_urls(record) == {f"{CDN}/clip.mp4", f"{CDN}/clip-thumb.jpg"}
