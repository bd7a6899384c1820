"""
Variant generation - turns one raw upload into the set of stored renditions.

Policy by detected kind:

  ANIMATED > 2 MB, transcoding on   transcode to MP4; on any failure fall
                                    through to the next row
  ANIMATED otherwise                upload as-is, same URL in every slot
  VECTOR_OR_LEGACY (svg/bmp/ico)    upload as-is, renderers scale natively
  RASTER                            thumbnail 200 (square crop), small 500
                                    (square crop), regular 1000 (bounded),
                                    full-size WebP, original verbatim
                                    (re-encoded to PNG if exotic)
  VIDEO                             upload as-is, then poster + duration

Every branch also tries to attach a tiny inline PNG preview, rasterizing SVG
with cairosvg first. All writes go through the job's StorageLedger so the
orchestrator can roll them back.
"""

import asyncio
import base64
import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from ingest_shared.errors import FatalInputError, SoftDegradation, TransientExternalError
from ledger import StorageLedger
from media_types import VIDEO_FORMATS, DeclaredType, MediaKind, ResolvedType, resolve_media_type
from models import Variant, VariantSet
from settings import IMAGE_FOLDER, MB
from transcoder import Transcoder

logger = logging.getLogger(__name__)

LARGE_ANIMATED_BYTES = 2 * MB
THUMBNAIL_SIZE = 200
SMALL_SIZE = 500
REGULAR_MAX = 1000
PREVIEW_MAX = 20

ORIGINAL_FORMATS = {
    "PNG": ("png", "image/png"),
    "JPEG": ("jpg", "image/jpeg"),
    "MPO": ("jpg", "image/jpeg"),
    "WEBP": ("webp", "image/webp"),
    "TIFF": ("tiff", "image/tiff"),
}

# Originals in any other format are re-encoded so browsers can open them
FALLBACK_ORIGINAL = ("png", "image/png")

_DECODE_ERRORS = (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError)
# cairosvg reports malformed XML as ParseError, a SyntaxError
_PREVIEW_ERRORS = _DECODE_ERRORS + (SyntaxError,)


@dataclass(frozen=True)
class RasterRenditions:
    thumbnail: bytes
    small: bytes
    regular: bytes
    full: bytes
    width: int
    height: int
    original_ext: str
    original_mime: str
    # None means the uploaded bytes are stored verbatim
    original: bytes | None = None


def is_large_animated(resolved: ResolvedType, size: int) -> bool:
    return resolved.kind is MediaKind.ANIMATED and size > LARGE_ANIMATED_BYTES


def _encode_webp(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="WEBP")
    return buf.getvalue()


def _encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


def _webp_ready(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        return img.convert("RGBA")
    return img.convert("RGB")


def render_raster(data: bytes) -> RasterRenditions:
    """Produce the four resized WebP renditions of an ordinary photo.

    Thumbnail and small are center-cropped squares; regular is bounded to
    1000px on its longest side without enlarging; full is the whole image
    re-encoded. The original is kept verbatim when it is PNG, JPEG, WebP or
    TIFF and re-encoded to PNG otherwise. Raises FatalInputError if Pillow
    cannot decode the input.
    """
    try:
        with Image.open(io.BytesIO(data)) as src:
            pil_format = src.format
            img = _webp_ready(ImageOps.exif_transpose(src))
    except _DECODE_ERRORS as e:
        raise FatalInputError(f"Corrupt or unsupported image: {e}") from e

    width, height = img.size
    regular = img.copy()
    regular.thumbnail((REGULAR_MAX, REGULAR_MAX))
    if pil_format in ORIGINAL_FORMATS:
        ext, mime = ORIGINAL_FORMATS[pil_format]
        original = None
    else:
        ext, mime = FALLBACK_ORIGINAL
        original = _encode_png(img)

    return RasterRenditions(
        thumbnail=_encode_webp(ImageOps.fit(img, (THUMBNAIL_SIZE, THUMBNAIL_SIZE))),
        small=_encode_webp(ImageOps.fit(img, (SMALL_SIZE, SMALL_SIZE))),
        regular=_encode_webp(regular),
        full=_encode_webp(img),
        width=width,
        height=height,
        original_ext=ext,
        original_mime=mime,
        original=original,
    )


def _rasterize_svg(data: bytes) -> bytes:
    # cairosvg loads libcairo on import, so only SVG previews pay for it
    import cairosvg

    return cairosvg.svg2png(bytestring=data, output_width=PREVIEW_MAX * 4)


def make_inline_preview(data: bytes, is_svg: bool = False) -> str:
    """Tiny (<=20px) PNG as a data URI for blur-up placeholders.

    SVG is rasterized with cairosvg first. A missing libcairo surfaces as
    OSError and, like malformed XML, only costs the preview.
    """
    try:
        if is_svg:
            data = _rasterize_svg(data)
        with Image.open(io.BytesIO(data)) as img:
            img = img.convert("RGBA")
            img.thumbnail((PREVIEW_MAX, PREVIEW_MAX))
            buf = io.BytesIO()
            img.save(buf, format="PNG", optimize=True, compress_level=9)
    except _PREVIEW_ERRORS as e:
        raise SoftDegradation(f"Inline preview failed: {e}") from e
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def read_dimensions(data: bytes) -> tuple[int | None, int | None]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except _DECODE_ERRORS:
        return None, None


async def _gather_uploads(*uploads):
    """Run uploads concurrently but let every one settle before raising.

    A plain gather would raise on the first failure while siblings are
    still writing, and their keys would reach the ledger after rollback.
    """
    results = await asyncio.gather(*uploads, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class VariantGenerator:
    def __init__(self, transcoder: Transcoder, enable_gif_to_video: bool = True,
                 folder: str = IMAGE_FOLDER):
        self.transcoder = transcoder
        self.enable_gif_to_video = enable_gif_to_video
        self.folder = folder

    def _key(self, public_id: str, suffix: str) -> str:
        return f"{self.folder}/{public_id}{suffix}"

    async def _preview(self, data: bytes, is_svg: bool = False) -> str | None:
        try:
            return await asyncio.to_thread(make_inline_preview, data, is_svg)
        except SoftDegradation as e:
            logger.warning(str(e))
            return None

    async def generate(self, data: bytes, declared: DeclaredType | None, public_id: str,
                       ledger: StorageLedger, filename: str | None = None) -> VariantSet:
        resolved = resolve_media_type(declared, data, filename)
        size_mb = len(data) / MB
        logger.info(
            f"Generating variants for {public_id}: kind={resolved.kind.value}, "
            f"format={resolved.format}, size={size_mb:.2f}MB"
        )

        if resolved.kind is MediaKind.VIDEO:
            return await self._video(data, resolved, public_id, ledger)
        if resolved.kind is MediaKind.ANIMATED:
            if is_large_animated(resolved, len(data)):
                if self.enable_gif_to_video:
                    result = await self._transcoded(data, public_id, ledger)
                    if result is not None:
                        return result
                    logger.warning(f"Transcode unavailable for {public_id}, uploading as GIF")
                else:
                    logger.info(f"GIF is {size_mb:.2f}MB but conversion is disabled, uploading as GIF")
            return await self._as_is(data, resolved, public_id, ledger)
        if resolved.kind is MediaKind.VECTOR_OR_LEGACY:
            return await self._as_is(data, resolved, public_id, ledger)
        return await self._raster(data, resolved, public_id, ledger)

    async def _as_is(self, data: bytes, resolved: ResolvedType, public_id: str,
                     ledger: StorageLedger) -> VariantSet:
        url = await ledger.put(data, self._key(public_id, f".{resolved.format}"), resolved.mime)
        preview = await self._preview(data, is_svg=resolved.format == "svg")
        width, height = await asyncio.to_thread(read_dimensions, data)
        slots = (Variant.THUMBNAIL, Variant.SMALL, Variant.REGULAR,
                 Variant.ORIGINAL, Variant.FULL_SIZE_DISPLAY)
        return VariantSet(
            public_id=public_id,
            urls={slot: url for slot in slots},
            inline_preview=preview,
            width=width,
            height=height,
        )

    async def _transcoded(self, data: bytes, public_id: str,
                          ledger: StorageLedger) -> VariantSet | None:
        result = await self.transcoder.transcode_animated(data, public_id, self.folder, ledger)
        if result is None:
            return None
        preview = await self._preview(data)
        width, height = await asyncio.to_thread(read_dimensions, data)
        video = result.video_url
        return VariantSet(
            public_id=public_id,
            urls={
                Variant.THUMBNAIL: result.poster_url,
                Variant.POSTER_FRAME: result.poster_url,
                Variant.SMALL: video,
                Variant.REGULAR: video,
                Variant.ORIGINAL: video,
                Variant.FULL_SIZE_DISPLAY: video,
            },
            inline_preview=preview,
            width=width,
            height=height,
            is_video=True,
            video_url=video,
            duration_seconds=result.duration_seconds,
        )

    async def _raster(self, data: bytes, resolved: ResolvedType, public_id: str,
                      ledger: StorageLedger) -> VariantSet:
        # Decode everything before the first write so corrupt input leaves nothing behind.
        renditions = await asyncio.to_thread(render_raster, data)
        preview = await self._preview(data)

        thumb, small, regular, full, original = await _gather_uploads(
            ledger.put(renditions.thumbnail, self._key(public_id, "-thumbnail.webp"), "image/webp"),
            ledger.put(renditions.small, self._key(public_id, "-small.webp"), "image/webp"),
            ledger.put(renditions.regular, self._key(public_id, "-regular.webp"), "image/webp"),
            ledger.put(renditions.full, self._key(public_id, ".webp"), "image/webp"),
            ledger.put(
                data if renditions.original is None else renditions.original,
                self._key(public_id, f"-original.{renditions.original_ext}"),
                renditions.original_mime,
            ),
        )
        logger.info(
            f"Uploaded {public_id}: original {len(data) / MB:.2f}MB, "
            f"webp {len(renditions.full) / MB:.2f}MB"
        )
        return VariantSet(
            public_id=public_id,
            urls={
                Variant.THUMBNAIL: thumb,
                Variant.SMALL: small,
                Variant.REGULAR: regular,
                Variant.FULL_SIZE_DISPLAY: full,
                Variant.ORIGINAL: original,
            },
            inline_preview=preview,
            width=renditions.width,
            height=renditions.height,
        )

    async def _video(self, data: bytes, resolved: ResolvedType, public_id: str,
                     ledger: StorageLedger) -> VariantSet:
        ext = resolved.format if resolved.format in VIDEO_FORMATS else "mp4"
        video_url = await ledger.put(data, self._key(public_id, f".{ext}"), resolved.mime)

        poster_bytes, duration = await asyncio.gather(
            self.transcoder.extract_poster(data, suffix=f".{ext}"),
            self.transcoder.probe_duration(data, suffix=f".{ext}"),
        )

        poster_url = video_url
        preview = None
        if poster_bytes:
            try:
                poster_url = await ledger.put(
                    poster_bytes, self._key(public_id, "-thumb.jpg"), "image/jpeg"
                )
            except TransientExternalError as e:
                logger.warning(f"Uploading poster for {public_id} failed: {e}")
            preview = await self._preview(poster_bytes)

        return VariantSet(
            public_id=public_id,
            urls={
                Variant.THUMBNAIL: poster_url,
                Variant.POSTER_FRAME: poster_url,
                Variant.SMALL: video_url,
                Variant.REGULAR: video_url,
                Variant.ORIGINAL: video_url,
                Variant.FULL_SIZE_DISPLAY: video_url,
            },
            inline_preview=preview,
            is_video=True,
            video_url=video_url,
            duration_seconds=duration,
        )
