"""
Immutable snapshots describing a branching story session.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

from dreamweaver.story_generation import Scene

from .identity import Character


class Phase(str, Enum):
    IDLE = "idle"
    LOADING_TEXT = "loading_text"
    LOADING_UNLOCK = "loading_unlock"
    LOADING_IMAGE = "loading_image"
    READY = "ready"
    ENDING = "ending"

    @property
    def is_loading(self) -> bool:
        return self in {Phase.LOADING_TEXT, Phase.LOADING_UNLOCK, Phase.LOADING_IMAGE}

    @property
    def is_settled(self) -> bool:
        return self in {Phase.READY, Phase.ENDING}


def cache_key(depth: int, choice: str) -> str:
    return f"{depth}-{choice}"


def reference_fingerprint(reference_image_url: str | None) -> str:
    """Short BLAKE2b digest of a reference image; empty when there is no reference."""
    if not reference_image_url:
        return ""
    return hashlib.blake2b(reference_image_url.encode("utf-8"), digest_size=16).hexdigest()


@dataclass(frozen=True)
class StoryConfig:
    """What the reader asked for when starting a branching story."""

    starting_prompt: str
    art_style: str
    selected_character_ids: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryConfig":
        prompt = str(data.get("starting_prompt") or data.get("prompt") or "").strip()
        if not prompt:
            raise ValueError("Story config requires a non-empty 'starting_prompt'.")
        art_style = str(data.get("art_style") or "").strip()
        if not art_style:
            raise ValueError("Story config requires a non-empty 'art_style'.")
        raw_ids = data.get("selected_character_ids") or ()
        if isinstance(raw_ids, str):
            raw_ids = [raw_ids]
        return cls(
            starting_prompt=prompt,
            art_style=art_style,
            selected_character_ids=tuple(str(item) for item in raw_ids),
        )


@dataclass(frozen=True)
class StoryStep:
    """
    One committed (or prefetched) step of the story.

    The party and reference are captured with the step so that navigating back
    restores the exact lineup that was active when it was first shown.
    """

    scene: Scene
    image_url: str
    debug_prompt: str
    active_party: tuple[str, ...] = ()
    reference_image_url: str | None = None
    reference_debug_prompt: str = ""

    @property
    def reference_fingerprint(self) -> str:
        return reference_fingerprint(self.reference_image_url)


@dataclass(frozen=True)
class PendingStep:
    """The step being assembled while the machine is in a loading phase."""

    choice: str | None
    key: str | None = None
    scene: Scene | None = None
    preloaded: tuple[Character, ...] = ()
    active_party: tuple[str, ...] = ()
    reference_image_url: str | None = None
    reference_debug_prompt: str = ""
    image_url: str | None = None
    debug_prompt: str = ""

    @property
    def is_opening(self) -> bool:
        return self.choice is None


@dataclass(frozen=True)
class NarrativeState:
    """
    Whole-session snapshot; every change produces a new instance.

    ``history[current_index]`` is the displayed step and ``len(path) == current_index``.
    Steps beyond ``current_index`` are a forward branch left behind by going back;
    they are discarded on the next commit.
    """

    phase: Phase = Phase.IDLE
    config: StoryConfig | None = None
    current_depth: int = 0
    current_index: int = -1
    path: tuple[str, ...] = ()
    history: tuple[StoryStep, ...] = ()
    current_scene: Scene | None = None
    current_image_url: str = ""
    current_debug_prompt: str = ""
    reference_image_url: str | None = None
    ref_debug_prompt: str = ""
    active_party: tuple[str, ...] = ()
    is_ending: bool = False
    prefetch_cache: Mapping[str, StoryStep] = field(default_factory=dict)
    pending: PendingStep | None = None
    just_unlocked: Character | None = None
    last_error: str | None = None

    @property
    def current_step(self) -> StoryStep | None:
        if 0 <= self.current_index < len(self.history):
            return self.history[self.current_index]
        return None

    @property
    def visible_scenes(self) -> Sequence[Scene]:
        return [step.scene for step in self.history[: self.current_index + 1]]
