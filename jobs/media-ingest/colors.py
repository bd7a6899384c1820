"""Dominant color extraction by quantized hue sampling."""

import io
import logging

from PIL import Image

logger = logging.getLogger(__name__)

SAMPLE_DIMENSION = 100
SAMPLE_STEP = 5
MAX_COLORS = 3

# (upper bound of hue in degrees, name), checked in order
HUE_NAMES = (
    (15, "red"),
    (30, "orange"),
    (60, "yellow"),
    (150, "green"),
    (240, "blue"),
    (270, "purple"),
    (300, "pink"),
    (360, "red"),
)


def rgb_to_color_name(r: int, g: int, b: int) -> str:
    """Map an RGB triple to a coarse color name."""
    nr, ng, nb = r / 255, g / 255, b / 255
    brightness = (nr + ng + nb) / 3
    hi = max(nr, ng, nb)
    lo = min(nr, ng, nb)
    saturation = 0 if hi == 0 else (hi - lo) / hi

    if brightness < 0.1:
        return "black"
    if brightness > 0.9 and saturation < 0.1:
        return "white"
    if saturation < 0.2:
        return "gray"

    delta = hi - lo
    if hi == nr:
        hue = ((ng - nb) / delta) * 60
    elif hi == ng:
        hue = (2 + (nb - nr) / delta) * 60
    else:
        hue = (4 + (nr - ng) / delta) * 60
    if hue < 0:
        hue += 360

    for upper, name in HUE_NAMES:
        if hue < upper:
            return name
    return "gray"


def extract_dominant_colors(image_bytes: bytes, max_colors: int = MAX_COLORS) -> list[str]:
    """Return up to max_colors color names, most frequent first.

    Works on a <=100px copy and samples every 5th pixel in both directions.
    Near-black and near-white pixels are skipped as likely background.
    Raises whatever Pillow raises on undecodable input; the caller decides
    how to degrade.
    """
    with Image.open(io.BytesIO(image_bytes)) as img:
        img = img.convert("RGB")
        img.thumbnail((SAMPLE_DIMENSION, SAMPLE_DIMENSION))
        width, height = img.size
        pixels = img.load()

        counts: dict[str, int] = {}
        for y in range(0, height, SAMPLE_STEP):
            for x in range(0, width, SAMPLE_STEP):
                r, g, b = pixels[x, y]
                brightness = (r + g + b) / 3
                if brightness < 20 or brightness > 235:
                    continue
                name = rgb_to_color_name(r, g, b)
                counts[name] = counts.get(name, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [name for name, _ in ranked[:max_colors]]
