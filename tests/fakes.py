from __future__ import annotations

from typing import Any, Sequence

from dreamweaver.ai_generation import ImageResult
from dreamweaver.story_generation import Scene, SocialScene


class FakeSceneClient:
    """Serves queued branching scenes per choice and social scenes per number."""

    def __init__(
        self,
        scenes: dict[str | None, Scene | Exception] | None = None,
        social: dict[int, SocialScene | Exception] | None = None,
    ) -> None:
        self.scenes = dict(scenes or {})
        self.social = dict(social or {})
        self.story_calls: list[dict[str, Any]] = []
        self.social_calls: list[dict[str, Any]] = []

    def generate_story_step(self, **kwargs: Any) -> Scene:
        self.story_calls.append(kwargs)
        result = self.scenes[kwargs.get("choice")]
        if isinstance(result, Exception):
            raise result
        return result

    def generate_social_scene(self, **kwargs: Any) -> SocialScene:
        self.social_calls.append(kwargs)
        result = self.social[kwargs["scene_number"]]
        if isinstance(result, Exception):
            raise result
        return result


class FakeImageClient:
    """Returns deterministic URLs and records every request."""

    def __init__(self, *, failing_references: Sequence[str] = ()) -> None:
        self.scene_calls: list[tuple[str, str, str | None]] = []
        self.reference_calls: list[tuple[str, str]] = []
        self._failing_references = set(failing_references)

    def generate_scene_image(
        self,
        description: str,
        art_style: str,
        reference_image: str | None = None,
    ) -> ImageResult:
        self.scene_calls.append((description, art_style, reference_image))
        return ImageResult(
            image_url=f"scene-{len(self.scene_calls)}.png",
            debug_prompt=f"prompt for {description}",
        )

    def generate_character_reference(self, description: str, art_style: str) -> ImageResult:
        self.reference_calls.append((description, art_style))
        if description in self._failing_references:
            return ImageResult(image_url="", debug_prompt=f"FAILED: boom \n\n ATTEMPTED PROMPT: {description}")
        return ImageResult(
            image_url=f"ref-{len(self.reference_calls)}.png",
            debug_prompt=f"sheet for {description}",
        )


async def fake_compositor(sources: Sequence[str]) -> str:
    if not sources:
        return ""
    if len(sources) == 1:
        return sources[0]
    return "composite:" + "|".join(sources)
