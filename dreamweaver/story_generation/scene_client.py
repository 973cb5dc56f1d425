"""
Scene generation client: turns narrative context into structured scene objects.
"""

from __future__ import annotations

import json
import logging
import os
from functools import partial
from typing import Any, Sequence

from dreamweaver.common import (
    ChatResult,
    CompletionCallable,
    InvalidContentError,
    Settings,
    call_chat_completion,
    call_text_endpoint,
)

from .prompting import (
    DEFAULT_MAX_DEPTH,
    StoryPrompt,
    build_social_scene_prompt,
    build_story_step_prompt,
)
from .scenes import KnownCharacterHint, Scene, SocialScenario, SocialScene

logger = logging.getLogger(__name__)


def parse_json_payload(text: str) -> dict[str, Any]:
    """
    Parse the model's reply as a bare JSON object.

    Surrounding prose or markdown fencing is rejected rather than repaired.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidContentError("Model did not return valid JSON.") from exc
    if not isinstance(payload, dict):
        raise InvalidContentError("Model returned JSON that is not an object.")
    return payload


class SceneGenerationClient:
    """
    Requests branching and social story scenes from the text generation service.

    The client is a plain request/response layer: no retries, no caching. Transport,
    upstream and parse failures propagate to the caller.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: CompletionCallable | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self._api_key = api_key or os.getenv("DREAMWEAVER_TEXT_KEY") or os.getenv("LITELLM_API_KEY")
        self._model = (
            model
            or os.getenv("DREAMWEAVER_TEXT_MODEL")
            or os.getenv("LITELLM_MODEL")
            or "gpt-5.1-chat"
        )
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._max_depth = max_depth

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "SceneGenerationClient":
        completion_fn: CompletionCallable = call_chat_completion
        if settings.text_endpoint:
            completion_fn = partial(call_text_endpoint, endpoint=settings.text_endpoint)
        return cls(
            api_key=settings.text_api_key,
            model=settings.text_model,
            completion_fn=completion_fn,
            **kwargs,
        )

    @property
    def model(self) -> str:
        return self._model

    def generate_story_step(
        self,
        *,
        starting_prompt: str,
        art_style: str,
        previous_scenes: Sequence[Scene] = (),
        path: Sequence[str] = (),
        choice: str | None = None,
        known_characters: Sequence[KnownCharacterHint] = (),
    ) -> Scene:
        """
        Generate the next branching scene (the opening scene when ``choice`` is None).
        """
        prompt = build_story_step_prompt(
            starting_prompt=starting_prompt,
            art_style=art_style,
            previous_scenes=previous_scenes,
            path=path,
            choice=choice,
            known_characters=known_characters,
            max_depth=self._max_depth,
        )
        return Scene.from_mapping(self._request_json(prompt))

    def generate_social_scene(
        self,
        *,
        scene_number: int,
        total_scenes: int,
        scenario: SocialScenario,
        child_name: str,
        previous_scenes: Sequence[SocialScene] = (),
    ) -> SocialScene:
        """
        Generate one scene of a linear social story.
        """
        prompt = build_social_scene_prompt(
            scene_number=scene_number,
            total_scenes=total_scenes,
            scenario=scenario,
            child_name=child_name,
            previous_scenes=previous_scenes,
        )
        return SocialScene.from_mapping(self._request_json(prompt), default_number=scene_number)

    def _request_json(self, prompt: StoryPrompt) -> dict[str, Any]:
        result: ChatResult = self._completion_fn(
            model=self._model,
            messages=[
                {"role": "system", "content": prompt.system},
                {"role": "user", "content": prompt.user},
            ],
            api_key=self._api_key,
        )
        try:
            return parse_json_payload(result.text)
        except InvalidContentError:
            logger.error("Failed to parse JSON from model: %s", result.text[:500])
            raise
