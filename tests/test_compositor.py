from __future__ import annotations

import asyncio
import base64
from io import BytesIO

import pytest
from PIL import Image

from dreamweaver.common import CompositeError
from dreamweaver.pipeline import build_lineup, compose_reference, load_image_source

RED = (255, 0, 0)
BLUE = (0, 0, 255)


def _data_uri(color: tuple[int, int, int], size: tuple[int, int]) -> str:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _decode(data_uri: str) -> Image.Image:
    _, _, encoded = data_uri.partition(",")
    return Image.open(BytesIO(base64.b64decode(encoded))).convert("RGB")


def test_no_sources_means_no_reference() -> None:
    assert asyncio.run(compose_reference([])) == ""


def test_single_source_is_returned_unchanged() -> None:
    def loader(source: str) -> Image.Image:
        raise AssertionError("single sources must not be decoded")

    assert asyncio.run(compose_reference(["https://ref/remy.png"], loader=loader)) == "https://ref/remy.png"


def test_lineup_keeps_order_left_to_right() -> None:
    red = _data_uri(RED, (50, 100))
    blue = _data_uri(BLUE, (100, 100))

    composite = asyncio.run(compose_reference([red, blue]))
    image = _decode(composite)

    # 50x100 -> 512x1024, 100x100 -> 1024x1024, plus a 20px gap.
    assert image.size == (512 + 20 + 1024, 1024)
    assert image.getpixel((10, 512)) == RED
    assert image.getpixel((512 + 5, 512)) == (255, 255, 255)
    assert image.getpixel((512 + 20 + 10, 512)) == BLUE


def test_any_failed_source_fails_the_whole_composite() -> None:
    red = _data_uri(RED, (10, 10))

    def loader(source: str) -> Image.Image:
        if source == "broken":
            raise OSError("404")
        return load_image_source(source)

    with pytest.raises(CompositeError):
        asyncio.run(compose_reference([red, "broken"], loader=loader))


def test_build_lineup_scales_to_target_height() -> None:
    lineup = build_lineup(
        [Image.new("RGB", (30, 60), RED), Image.new("RGB", (60, 30), BLUE)],
        target_height=120,
        gap=4,
    )

    assert lineup.size == (60 + 4 + 240, 120)


def test_load_image_source_reads_local_files(tmp_path) -> None:
    path = tmp_path / "ref.png"
    Image.new("RGBA", (8, 4), (0, 255, 0, 255)).save(path)

    image = load_image_source(str(path))

    assert image.mode == "RGB"
    assert image.size == (8, 4)


def test_transparent_areas_become_white() -> None:
    sheet = Image.new("RGBA", (100, 100), (0, 0, 0, 0))
    sheet.paste((255, 0, 0, 255), (40, 40, 60, 60))
    buffer = BytesIO()
    sheet.save(buffer, format="PNG")
    uri = "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")

    image = _decode(asyncio.run(compose_reference([uri, uri])))

    assert image.getpixel((2, 2)) == (255, 255, 255)
    assert image.getpixel((512, 512)) == RED


def test_lineup_flattens_rgba_images_passed_directly() -> None:
    lineup = build_lineup([Image.new("RGBA", (10, 10), (0, 0, 0, 0))], target_height=10, gap=0)

    assert lineup.getpixel((5, 5)) == (255, 255, 255)
