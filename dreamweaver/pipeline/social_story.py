"""
Orchestrates linear social stories: one child, a handful of real-world helpers, N scenes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Mapping, Sequence

from dreamweaver.ai_generation import ImageGenerationClient
from dreamweaver.common import CompositeError
from dreamweaver.story_generation import (
    PersonIntroduced,
    SceneGenerationClient,
    SocialScenario,
    SocialScene,
)

from .compositor import compose_reference
from .identity import mentions_character

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]
Compositor = Callable[[Sequence[str]], Awaitable[str]]


@dataclass(frozen=True)
class SocialStoryConfig:
    """Details about the child the story is written for."""

    child_name: str
    child_appearance: str
    art_style: str
    child_age: int | None = None
    template_id: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SocialStoryConfig":
        missing = [
            key
            for key in ("child_name", "child_appearance", "art_style")
            if not str(data.get(key) or "").strip()
        ]
        if missing:
            raise ValueError(f"Social story config missing required fields: {', '.join(missing)}")

        raw_age = data.get("child_age")
        try:
            child_age = int(raw_age) if raw_age not in (None, "") else None
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Expected an integer age, got {raw_age!r}") from exc

        template_id = data.get("template_id")
        return cls(
            child_name=str(data["child_name"]).strip(),
            child_appearance=str(data["child_appearance"]).strip(),
            art_style=str(data["art_style"]).strip(),
            child_age=child_age,
            template_id=str(template_id).strip() if template_id else None,
        )


@dataclass(frozen=True)
class SocialSceneStep:
    """A generated social scene together with its illustration."""

    scene: SocialScene
    image_url: str
    debug_prompt: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "scene": self.scene.as_dict(),
            "image_url": self.image_url,
            "debug_prompt": self.debug_prompt,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SocialSceneStep":
        if "scene" not in data:
            raise ValueError("Scene step entries must include 'scene'.")
        return cls(
            scene=SocialScene.from_mapping(data["scene"]),
            image_url=str(data.get("image_url") or data.get("imageUrl") or ""),
            debug_prompt=str(data.get("debug_prompt") or data.get("debugPrompt") or ""),
        )


@dataclass(frozen=True)
class SocialStoryState:
    """
    Snapshot of a social story. ``people_refs`` holds one reference per role.
    """

    scenes: tuple[SocialSceneStep, ...] = ()
    child_character_ref: str | None = None
    people_refs: Mapping[str, str] = field(default_factory=dict)
    is_complete: bool = False
    is_generating: bool = False


def visible_people(
    scene: SocialScene,
    introduced: Sequence[PersonIntroduced],
) -> list[PersonIntroduced]:
    """
    Helpers who appear in a scene: the person it introduces first, then every
    previously introduced person whose role or name the scene mentions.
    """
    text = f"{scene.scene_text} {scene.image_description}"
    people = [scene.person_introduced] if scene.person_introduced is not None else []
    for person in introduced:
        if any(known.role == person.role for known in people):
            continue
        if mentions_character(text, person.role) or mentions_character(text, person.name):
            people.append(person)
    return people


def relevant_person(
    scene: SocialScene,
    introduced: Sequence[PersonIntroduced],
) -> PersonIntroduced | None:
    """The one helper whose reference joins the child's in the scene lineup."""
    people = visible_people(scene, introduced)
    return people[0] if people else None


def build_enhanced_prompt(
    config: SocialStoryConfig,
    scene: SocialScene,
    people: Sequence[PersonIntroduced] = (),
) -> str:
    """Spell out each visible character's appearance ahead of the scene description."""
    prompt = f"{config.child_name} is {config.child_appearance}. "
    for person in people:
        prompt += f"{person.name} ({person.role}) is {person.description}. "
    return prompt + scene.image_description


class SocialStoryOrchestrator:
    """
    Generates a social story scene by scene.

    Each helper role gets exactly one reference image. Every scene is illustrated
    against a lineup of the child and, at most, the one helper that scene is about.
    Text generation errors abort the run; image failures only leave a blank page.
    """

    def __init__(
        self,
        *,
        scene_client: SceneGenerationClient,
        image_client: ImageGenerationClient,
        compositor: Compositor = compose_reference,
    ) -> None:
        self._scene_client = scene_client
        self._image_client = image_client
        self._compositor = compositor

    async def generate(
        self,
        config: SocialStoryConfig,
        scenario: SocialScenario,
        *,
        progress_callback: ProgressCallback | None = None,
        on_update: Callable[[SocialStoryState], None] | None = None,
    ) -> SocialStoryState:
        total_scenes = scenario.estimated_scenes
        state = SocialStoryState(is_generating=True)
        self._publish(on_update, state)

        try:
            self._notify(progress_callback, "child:reference", child_name=config.child_name)
            child_result = await asyncio.to_thread(
                self._image_client.generate_character_reference,
                config.child_appearance,
                config.art_style,
            )
            child_ref = child_result.image_url or None
            state = replace(state, child_character_ref=child_ref)
            self._publish(on_update, state)

            people_refs: dict[str, str] = {}
            introduced: list[PersonIntroduced] = []

            for scene_number in range(1, total_scenes + 1):
                self._notify(
                    progress_callback,
                    "scene:generating",
                    scene_number=scene_number,
                    total_scenes=total_scenes,
                )
                scene = await asyncio.to_thread(
                    self._scene_client.generate_social_scene,
                    scene_number=scene_number,
                    total_scenes=total_scenes,
                    scenario=scenario,
                    child_name=config.child_name,
                    previous_scenes=tuple(step.scene for step in state.scenes),
                )

                person = scene.person_introduced
                if person is not None:
                    if not any(known.role == person.role for known in introduced):
                        introduced.append(person)
                    if person.role in people_refs:
                        logger.info("Reusing reference for %s.", person.role)
                    else:
                        await self._create_person_reference(person, config, people_refs, progress_callback)
                        state = replace(state, people_refs=dict(people_refs))
                        self._publish(on_update, state)

                people = visible_people(scene, introduced)
                focus = people[0] if people else None
                sources = [ref for ref in (child_ref, people_refs.get(focus.role) if focus else None) if ref]
                reference = await self._compose(sources)

                self._notify(progress_callback, "scene:illustrating", scene_number=scene_number)
                image = await asyncio.to_thread(
                    self._image_client.generate_scene_image,
                    build_enhanced_prompt(config, scene, people),
                    config.art_style,
                    reference,
                )
                state = replace(
                    state,
                    scenes=state.scenes + (SocialSceneStep(scene, image.image_url, image.debug_prompt),),
                    is_generating=scene_number < total_scenes,
                )
                self._publish(on_update, state)
                self._notify(
                    progress_callback,
                    "scene:done",
                    scene_number=scene_number,
                    total_scenes=total_scenes,
                    image_ok=image.succeeded,
                )
        except Exception:
            self._publish(on_update, replace(state, is_generating=False))
            raise

        state = replace(state, is_complete=True, is_generating=False)
        self._publish(on_update, state)
        self._notify(progress_callback, "story:complete", total_scenes=len(state.scenes))
        return state

    async def _create_person_reference(
        self,
        person: PersonIntroduced,
        config: SocialStoryConfig,
        people_refs: dict[str, str],
        progress_callback: ProgressCallback | None,
    ) -> None:
        self._notify(progress_callback, "person:reference", role=person.role, name=person.name)
        result = await asyncio.to_thread(
            self._image_client.generate_character_reference,
            person.description or f"{person.name}, a friendly {person.role}",
            config.art_style,
        )
        if result.succeeded:
            people_refs[person.role] = result.image_url
        else:
            logger.warning("Reference for %s failed; it will be retried if the role returns.", person.role)

    async def _compose(self, sources: Sequence[str]) -> str | None:
        try:
            return await self._compositor(sources) or None
        except CompositeError as exc:
            logger.warning("Reference composite failed, continuing without a reference: %s", exc)
            return None

    @staticmethod
    def _publish(
        listener: Callable[[SocialStoryState], None] | None,
        state: SocialStoryState,
    ) -> None:
        if listener is not None:
            listener(state)

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        if callback is not None:
            callback(stage, payload)
