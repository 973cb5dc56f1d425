"""
Story orchestration: character identity, reference lineups and the narrative engines.
"""

from .compositor import build_lineup, compose_reference, load_image_source
from .engine import BranchingStoryEngine
from .identity import (
    Character,
    CharacterRegistry,
    YamlCharacterStore,
    mentions_character,
    names_match,
    resolve_character,
    scan_prompt,
)
from .machine import (
    BackRequested,
    ChoiceMade,
    ImageGenerated,
    PartyResolved,
    SceneFetched,
    StartRequested,
    StepFailed,
    Transition,
    initial_state,
    store_prefetched,
    transition,
)
from .prefetch import SpeculativePrefetcher, trigger_signature
from .social_story import (
    SocialSceneStep,
    SocialStoryConfig,
    SocialStoryOrchestrator,
    SocialStoryState,
)
from .state import (
    NarrativeState,
    Phase,
    StoryConfig,
    StoryStep,
    cache_key,
    reference_fingerprint,
)

__all__ = [
    "BackRequested",
    "BranchingStoryEngine",
    "Character",
    "CharacterRegistry",
    "ChoiceMade",
    "ImageGenerated",
    "NarrativeState",
    "PartyResolved",
    "Phase",
    "SceneFetched",
    "SocialSceneStep",
    "SocialStoryConfig",
    "SocialStoryOrchestrator",
    "SocialStoryState",
    "SpeculativePrefetcher",
    "StartRequested",
    "StepFailed",
    "StoryConfig",
    "StoryStep",
    "Transition",
    "YamlCharacterStore",
    "build_lineup",
    "cache_key",
    "compose_reference",
    "initial_state",
    "load_image_source",
    "mentions_character",
    "names_match",
    "reference_fingerprint",
    "resolve_character",
    "scan_prompt",
    "store_prefetched",
    "transition",
]
