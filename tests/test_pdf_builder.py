from __future__ import annotations

import base64
from io import BytesIO
from pathlib import Path

from PIL import Image

from dreamweaver.pdf_generation import PAGE_SIZES, SocialStoryPDFBuilder
from dreamweaver.persistence import SavedSocialStory
from dreamweaver.pipeline import SocialSceneStep
from dreamweaver.story_generation import SocialScene


def _png_data_uri() -> str:
    buffer = BytesIO()
    Image.new("RGB", (40, 30), (120, 200, 80)).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def _story() -> SavedSocialStory:
    first = SocialScene(
        scene_number=1,
        scene_title="Arriving <early>",
        scene_text="You walk in & say hello.",
        image_description="A waiting room",
        educational_note="Visit the office beforehand.",
    )
    second = SocialScene(
        scene_number=2,
        scene_title="All done",
        scene_text="You did it!",
        image_description="A sticker",
        is_final_scene=True,
    )
    return SavedSocialStory(
        id="s1",
        child_name="Maya",
        created_at=1,
        last_viewed=1,
        scenes=(
            SocialSceneStep(first, _png_data_uri(), "prompt"),
            SocialSceneStep(second, "", "FAILED: down \n\n ATTEMPTED PROMPT: A sticker"),
        ),
        template_id="dentist",
    )


def test_build_writes_cover_and_two_pages_per_scene(tmp_path: Path) -> None:
    builder = SocialStoryPDFBuilder(page_size=PAGE_SIZES["a4"])

    output = builder.build(_story(), tmp_path / "out" / "story.pdf", title="Going to the Dentist")

    data = output.read_bytes()
    assert data.startswith(b"%PDF")
    assert b"/Count 5" in data
