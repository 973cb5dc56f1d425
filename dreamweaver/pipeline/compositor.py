"""
Reference compositor: merges character reference sheets into a single lineup image.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from io import BytesIO
from pathlib import Path
from typing import Callable, Sequence

import requests
from PIL import Image

from dreamweaver.common import CompositeError

logger = logging.getLogger(__name__)

TARGET_HEIGHT = 1024
GAP_PIXELS = 20
BACKGROUND = (255, 255, 255)

ImageLoader = Callable[[str], Image.Image]


def load_image_source(source: str, *, timeout: int = 30) -> Image.Image:
    """
    Decode an image from a data URI, an http(s) URL or a local path.
    """
    if source.startswith("data:"):
        _, _, encoded = source.partition(",")
        raw = base64.b64decode(encoded)
    elif source.lower().startswith(("http://", "https://")):
        response = requests.get(source, timeout=timeout)
        response.raise_for_status()
        raw = response.content
    else:
        raw = Path(source).expanduser().read_bytes()

    image = Image.open(BytesIO(raw))
    image.load()
    return flatten_onto_background(image)


def flatten_onto_background(image: Image.Image) -> Image.Image:
    """Return an RGB copy; transparent areas become the white background."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        flat = Image.new("RGB", rgba.size, BACKGROUND)
        flat.paste(rgba, mask=rgba.getchannel("A"))
        return flat
    return image.convert("RGB")


def build_lineup(
    images: Sequence[Image.Image],
    *,
    target_height: int = TARGET_HEIGHT,
    gap: int = GAP_PIXELS,
) -> Image.Image:
    """
    Scale every image to ``target_height`` and lay them out left to right.
    """
    if not images:
        raise ValueError("build_lineup needs at least one image.")

    widths = [max(1, round(image.width * target_height / image.height)) for image in images]
    total_width = sum(widths) + gap * (len(images) - 1)

    canvas = Image.new("RGB", (total_width, target_height), BACKGROUND)
    offset = 0
    for image, width in zip(images, widths):
        image = flatten_onto_background(image)
        canvas.paste(image.resize((width, target_height), Image.Resampling.LANCZOS), (offset, 0))
        offset += width + gap
    return canvas


def encode_png_data_uri(image: Image.Image) -> str:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


async def compose_reference(
    sources: Sequence[str],
    *,
    loader: ImageLoader = load_image_source,
) -> str:
    """
    Merge reference images into one lineup, preserving the given order.

    No sources yields ``""`` and a single source is returned untouched. If any
    source fails to load the whole composite fails with :class:`CompositeError`.
    """
    if not sources:
        return ""
    if len(sources) == 1:
        return sources[0]

    results = await asyncio.gather(
        *(asyncio.to_thread(loader, source) for source in sources),
        return_exceptions=True,
    )
    for source, result in zip(sources, results):
        if isinstance(result, BaseException):
            raise CompositeError(f"Failed to load reference image {source[:80]!r}: {result}") from result

    logger.debug("Composing %d reference images.", len(sources))
    lineup = await asyncio.to_thread(build_lineup, results)
    return await asyncio.to_thread(encode_png_data_uri, lineup)
