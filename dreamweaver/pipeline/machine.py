"""
Finite-state machine for the branching story.

:func:`transition` is pure: it maps a state snapshot and an event to the next
snapshot plus at most one effect describing the I/O the caller must perform.
The engine performs the effect and feeds the outcome back as a new event.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Union

from dreamweaver.common import NarrativeTransitionError
from dreamweaver.story_generation import KnownCharacterHint, NewCharacter, Scene

from .identity import Character
from .state import (
    NarrativeState,
    PendingStep,
    Phase,
    StoryConfig,
    StoryStep,
    cache_key,
    reference_fingerprint,
)


# Events


@dataclass(frozen=True)
class StartRequested:
    config: StoryConfig
    preloaded: tuple[Character, ...] = ()


@dataclass(frozen=True)
class ChoiceMade:
    choice: str


@dataclass(frozen=True)
class SceneFetched:
    scene: Scene


@dataclass(frozen=True)
class PartyResolved:
    active_party: tuple[str, ...]
    reference_image_url: str | None
    reference_debug_prompt: str = ""
    changed: bool = False
    unlocked: Character | None = None


@dataclass(frozen=True)
class ImageGenerated:
    image_url: str
    debug_prompt: str


@dataclass(frozen=True)
class StepFailed:
    error: str


@dataclass(frozen=True)
class BackRequested:
    pass


Event = Union[
    StartRequested,
    ChoiceMade,
    SceneFetched,
    PartyResolved,
    ImageGenerated,
    StepFailed,
    BackRequested,
]


# Effects


@dataclass(frozen=True)
class FetchScene:
    config: StoryConfig
    previous_scenes: tuple[Scene, ...]
    path: tuple[str, ...]
    choice: str | None
    known_characters: tuple[KnownCharacterHint, ...] = ()


@dataclass(frozen=True)
class AssembleOpeningParty:
    config: StoryConfig
    scene: Scene
    preloaded: tuple[Character, ...]


@dataclass(frozen=True)
class ResolveNewCharacter:
    config: StoryConfig
    new_character: NewCharacter
    active_party: tuple[str, ...]
    reference_image_url: str | None
    reference_debug_prompt: str = ""


@dataclass(frozen=True)
class GenerateSceneImage:
    description: str
    art_style: str
    reference_image_url: str | None


Effect = Union[FetchScene, AssembleOpeningParty, ResolveNewCharacter, GenerateSceneImage]


@dataclass(frozen=True)
class Transition:
    state: NarrativeState
    effect: Effect | None = None


def transition(state: NarrativeState, event: Event) -> Transition:
    """Compute the next snapshot for ``event``; raises when the event is not valid now."""
    match event:
        case StartRequested():
            return _start(state, event)
        case ChoiceMade():
            return _choose(state, event)
        case SceneFetched():
            return _scene_fetched(state, event)
        case PartyResolved():
            return _party_resolved(state, event)
        case ImageGenerated():
            return _image_generated(state, event)
        case StepFailed():
            return _step_failed(state, event)
        case BackRequested():
            return _back(state)
    raise NarrativeTransitionError(f"Unknown event: {event!r}")


def initial_state() -> NarrativeState:
    return NarrativeState()


def store_prefetched(state: NarrativeState, key: str, step: StoryStep) -> NarrativeState:
    """Add a speculative step to the cache; a later write for the same key replaces it."""
    cache = dict(state.prefetch_cache)
    cache[key] = step
    return replace(state, prefetch_cache=cache)


def _require_phase(state: NarrativeState, event: Event, *phases: Phase) -> None:
    if state.phase not in phases:
        raise NarrativeTransitionError(
            f"{type(event).__name__} is not valid while {state.phase.value}."
        )


def _require_pending(state: NarrativeState) -> PendingStep:
    if state.pending is None or state.config is None:
        raise NarrativeTransitionError("No step is being generated.")
    return state.pending


def _require_scene(state: NarrativeState, pending: PendingStep) -> tuple[Scene, StoryConfig]:
    if pending.scene is None or state.config is None:
        raise NarrativeTransitionError("The pending step has no scene yet.")
    return pending.scene, state.config


def _start(state: NarrativeState, event: StartRequested) -> Transition:
    _require_phase(state, event, Phase.IDLE, Phase.READY, Phase.ENDING)

    preloaded: list[Character] = []
    seen: set[str] = set()
    for character in event.preloaded:
        if character.id not in seen:
            preloaded.append(character)
            seen.add(character.id)

    pending = PendingStep(choice=None, preloaded=tuple(preloaded))
    next_state = replace(
        initial_state(),
        phase=Phase.LOADING_TEXT,
        config=event.config,
        pending=pending,
    )
    hints = tuple(
        KnownCharacterHint(name=character.name, description=character.description)
        for character in preloaded
    )
    return Transition(
        next_state,
        FetchScene(
            config=event.config,
            previous_scenes=(),
            path=(),
            choice=None,
            known_characters=hints,
        ),
    )


def _choose(state: NarrativeState, event: ChoiceMade) -> Transition:
    _require_phase(state, event, Phase.READY)
    if state.config is None:
        raise NarrativeTransitionError("Cannot choose before a story has started.")
    choice = event.choice.strip()
    if not choice:
        raise NarrativeTransitionError("A choice must be a non-empty string.")

    key = cache_key(state.current_depth, choice)
    pending = PendingStep(
        choice=choice,
        key=key,
        active_party=state.active_party,
        reference_image_url=state.reference_image_url,
        reference_debug_prompt=state.ref_debug_prompt,
    )
    state = replace(state, just_unlocked=None, last_error=None)

    cached = state.prefetch_cache.get(key)
    if cached is not None:
        pending = replace(pending, scene=cached.scene)
        if cached.image_url and cached.reference_fingerprint == reference_fingerprint(
            state.reference_image_url
        ):
            pending = replace(pending, image_url=cached.image_url, debug_prompt=cached.debug_prompt)
        return _after_scene(state, pending)

    return Transition(
        replace(state, phase=Phase.LOADING_TEXT, pending=pending),
        FetchScene(
            config=state.config,
            previous_scenes=tuple(state.visible_scenes),
            path=state.path,
            choice=choice,
        ),
    )


def _scene_fetched(state: NarrativeState, event: SceneFetched) -> Transition:
    _require_phase(state, event, Phase.LOADING_TEXT)
    pending = replace(_require_pending(state), scene=event.scene)
    return _after_scene(state, pending)


def _after_scene(state: NarrativeState, pending: PendingStep) -> Transition:
    scene, config = _require_scene(state, pending)
    if pending.is_opening:
        return Transition(
            replace(state, phase=Phase.LOADING_UNLOCK, pending=pending),
            AssembleOpeningParty(config=config, scene=scene, preloaded=pending.preloaded),
        )
    if scene.new_character is not None:
        return Transition(
            replace(state, phase=Phase.LOADING_UNLOCK, pending=pending),
            ResolveNewCharacter(
                config=config,
                new_character=scene.new_character,
                active_party=pending.active_party,
                reference_image_url=pending.reference_image_url,
                reference_debug_prompt=pending.reference_debug_prompt,
            ),
        )
    return _after_party(state, pending)


def _party_resolved(state: NarrativeState, event: PartyResolved) -> Transition:
    _require_phase(state, event, Phase.LOADING_UNLOCK)
    pending = replace(
        _require_pending(state),
        active_party=event.active_party,
        reference_image_url=event.reference_image_url,
        reference_debug_prompt=event.reference_debug_prompt,
    )
    if event.changed:
        # A new lineup means any prefetched image was conditioned on the wrong reference.
        pending = replace(pending, image_url=None, debug_prompt="")
    state = replace(state, just_unlocked=event.unlocked)
    return _after_party(state, pending)


def _after_party(state: NarrativeState, pending: PendingStep) -> Transition:
    scene, config = _require_scene(state, pending)
    if pending.image_url:
        return Transition(_commit(state, pending))
    return Transition(
        replace(state, phase=Phase.LOADING_IMAGE, pending=pending),
        GenerateSceneImage(
            description=scene.image_description,
            art_style=config.art_style,
            reference_image_url=pending.reference_image_url,
        ),
    )


def _image_generated(state: NarrativeState, event: ImageGenerated) -> Transition:
    _require_phase(state, event, Phase.LOADING_IMAGE)
    pending = replace(
        _require_pending(state),
        image_url=event.image_url,
        debug_prompt=event.debug_prompt,
    )
    return Transition(_commit(state, pending))


def _commit(state: NarrativeState, pending: PendingStep) -> NarrativeState:
    scene, _ = _require_scene(state, pending)
    step = StoryStep(
        scene=scene,
        image_url=pending.image_url or "",
        debug_prompt=pending.debug_prompt,
        active_party=pending.active_party,
        reference_image_url=pending.reference_image_url,
        reference_debug_prompt=pending.reference_debug_prompt,
    )
    index = state.current_index
    history = state.history[: index + 1] + (step,)
    path = state.path[: max(index, 0)]
    if pending.choice is not None:
        path = path + (pending.choice,)

    return replace(
        state,
        phase=Phase.ENDING if step.scene.is_ending else Phase.READY,
        current_depth=state.current_depth + 1,
        current_index=index + 1,
        path=path,
        history=history,
        pending=None,
        **_displayed_fields(step),
    )


def _displayed_fields(step: StoryStep) -> dict:
    return {
        "current_scene": step.scene,
        "current_image_url": step.image_url,
        "current_debug_prompt": step.debug_prompt,
        "active_party": step.active_party,
        "reference_image_url": step.reference_image_url,
        "ref_debug_prompt": step.reference_debug_prompt,
        "is_ending": step.scene.is_ending,
    }


def _step_failed(state: NarrativeState, event: StepFailed) -> Transition:
    if not state.phase.is_loading:
        raise NarrativeTransitionError(f"StepFailed is not valid while {state.phase.value}.")

    if state.current_step is None:
        phase = Phase.IDLE
    else:
        phase = Phase.ENDING if state.is_ending else Phase.READY
    return Transition(replace(state, phase=phase, pending=None, last_error=event.error))


def _back(state: NarrativeState) -> Transition:
    if state.phase.is_loading:
        raise NarrativeTransitionError("BackRequested is not valid while a step is loading.")
    if state.current_index <= 0:
        return Transition(initial_state())

    index = state.current_index - 1
    step = state.history[index]
    return Transition(
        replace(
            state,
            phase=Phase.ENDING if step.scene.is_ending else Phase.READY,
            current_index=index,
            current_depth=max(state.current_depth - 1, 0),
            path=state.path[:index],
            just_unlocked=None,
            last_error=None,
            **_displayed_fields(step),
        )
    )
