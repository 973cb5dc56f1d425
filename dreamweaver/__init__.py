"""
DreamWeaver package exposing branching stories, social stories, persistence and PDF tooling.
"""

from .common import Settings, load_settings
from .pdf_generation import SocialStoryPDFBuilder
from .persistence import SavedSocialStory, StoryLibrary
from .pipeline import (
    BranchingStoryEngine,
    CharacterRegistry,
    SocialStoryConfig,
    SocialStoryOrchestrator,
    StoryConfig,
    YamlCharacterStore,
)

__all__ = [
    "BranchingStoryEngine",
    "CharacterRegistry",
    "SavedSocialStory",
    "Settings",
    "SocialStoryConfig",
    "SocialStoryOrchestrator",
    "SocialStoryPDFBuilder",
    "StoryConfig",
    "StoryLibrary",
    "YamlCharacterStore",
    "load_settings",
]
