"""
Story text generation for DreamWeaver branching and social stories.
"""

from .prompting import StoryPrompt, build_social_scene_prompt, build_story_step_prompt
from .scene_client import SceneGenerationClient, parse_json_payload
from .scenes import (
    KnownCharacterHint,
    NewCharacter,
    PersonIntroduced,
    Scene,
    SocialScenario,
    SocialScene,
)

__all__ = [
    "KnownCharacterHint",
    "NewCharacter",
    "PersonIntroduced",
    "Scene",
    "SceneGenerationClient",
    "SocialScenario",
    "SocialScene",
    "StoryPrompt",
    "build_social_scene_prompt",
    "build_story_step_prompt",
    "parse_json_payload",
]
