from __future__ import annotations

from dataclasses import replace

import pytest

from dreamweaver.common import NarrativeTransitionError
from dreamweaver.pipeline import (
    BackRequested,
    Character,
    ChoiceMade,
    ImageGenerated,
    NarrativeState,
    PartyResolved,
    Phase,
    SceneFetched,
    StartRequested,
    StepFailed,
    StoryConfig,
    StoryStep,
    cache_key,
    initial_state,
    store_prefetched,
    transition,
)
from dreamweaver.pipeline.machine import (
    AssembleOpeningParty,
    FetchScene,
    GenerateSceneImage,
    ResolveNewCharacter,
)
from dreamweaver.story_generation import NewCharacter, Scene

CONFIG = StoryConfig(starting_prompt="A fox explores a cave", art_style="watercolor")


def _scene(text: str, *options: str, **kwargs) -> Scene:
    padded = list(options) + [None, None]
    return Scene(
        scene_text=text,
        image_description=f"{text} picture",
        option_1=padded[0],
        option_2=padded[1],
        **kwargs,
    )


def _ready_state() -> NarrativeState:
    """A story settled on its opening scene with a one-character party."""
    state = transition(initial_state(), StartRequested(config=CONFIG)).state
    state = transition(state, SceneFetched(_scene("Opening", "Left", "Right"))).state
    state = transition(
        state,
        PartyResolved(active_party=("remy.png",), reference_image_url="remy.png", changed=True),
    ).state
    return transition(state, ImageGenerated("open.png", "open prompt")).state


def test_start_requests_opening_scene_with_known_character_hints() -> None:
    benny = Character(name="Benny", description="a gummy bear", image_url="benny.png", id="b")

    result = transition(initial_state(), StartRequested(config=CONFIG, preloaded=(benny, benny)))

    assert result.state.phase is Phase.LOADING_TEXT
    assert isinstance(result.effect, FetchScene)
    assert result.effect.choice is None
    assert [hint.name for hint in result.effect.known_characters] == ["Benny"]
    assert result.state.pending is not None and len(result.state.pending.preloaded) == 1


def test_opening_flow_commits_first_step() -> None:
    state = transition(initial_state(), StartRequested(config=CONFIG)).state
    fetched = transition(state, SceneFetched(_scene("Opening", "Left", "Right")))
    assert isinstance(fetched.effect, AssembleOpeningParty)

    resolved = transition(
        fetched.state,
        PartyResolved(active_party=("remy.png",), reference_image_url="remy.png", changed=True),
    )
    assert isinstance(resolved.effect, GenerateSceneImage)
    assert resolved.effect.reference_image_url == "remy.png"

    state = transition(resolved.state, ImageGenerated("open.png", "open prompt")).state

    assert state.phase is Phase.READY
    assert state.current_index == 0
    assert state.current_depth == 1
    assert state.path == ()
    assert state.history[0] == state.current_step
    assert state.current_image_url == "open.png"
    assert state.active_party == ("remy.png",)
    assert state.pending is None


def test_choice_without_cache_fetches_scene_with_history() -> None:
    state = _ready_state()

    result = transition(state, ChoiceMade("Left"))

    assert result.state.phase is Phase.LOADING_TEXT
    assert isinstance(result.effect, FetchScene)
    assert result.effect.choice == "Left"
    assert result.effect.known_characters == ()
    assert [scene.scene_text for scene in result.effect.previous_scenes] == ["Opening"]


def test_cache_hit_with_matching_reference_commits_immediately() -> None:
    state = _ready_state()
    cached = StoryStep(
        scene=_scene("Left path", "A", "B"),
        image_url="left.png",
        debug_prompt="left prompt",
        active_party=("remy.png",),
        reference_image_url="remy.png",
    )
    state = store_prefetched(state, cache_key(1, "Left"), cached)

    result = transition(state, ChoiceMade("Left"))

    assert result.effect is None
    assert result.state.phase is Phase.READY
    assert result.state.current_image_url == "left.png"
    assert result.state.path == ("Left",)
    assert result.state.current_index == 1
    assert result.state.current_depth == 2


def test_cache_hit_against_a_different_reference_regenerates_image() -> None:
    state = _ready_state()
    stale = StoryStep(
        scene=_scene("Left path", "A", "B"),
        image_url="left.png",
        debug_prompt="left prompt",
        reference_image_url="someone-else.png",
    )
    state = store_prefetched(state, cache_key(1, "Left"), stale)

    result = transition(state, ChoiceMade("Left"))

    assert isinstance(result.effect, GenerateSceneImage)
    assert result.effect.description == "Left path picture"
    assert result.effect.reference_image_url == "remy.png"


def test_new_character_changes_party_and_invalidates_cached_image() -> None:
    state = _ready_state()
    cached = StoryStep(
        scene=_scene("Benny appears", "A", "B", new_character=NewCharacter("Benny", "a bear")),
        image_url="",
        debug_prompt="",
        reference_image_url="remy.png",
    )
    state = store_prefetched(state, cache_key(1, "Left"), cached)

    result = transition(state, ChoiceMade("Left"))
    assert isinstance(result.effect, ResolveNewCharacter)
    assert result.effect.active_party == ("remy.png",)

    benny = Character(name="Benny", description="a bear", image_url="benny.png")
    result = transition(
        result.state,
        PartyResolved(
            active_party=("remy.png", "benny.png"),
            reference_image_url="composite",
            changed=True,
            unlocked=benny,
        ),
    )

    assert isinstance(result.effect, GenerateSceneImage)
    assert result.effect.reference_image_url == "composite"
    assert result.state.just_unlocked == benny


def test_choice_while_loading_is_rejected() -> None:
    state = transition(_ready_state(), ChoiceMade("Left")).state

    with pytest.raises(NarrativeTransitionError):
        transition(state, ChoiceMade("Right"))
    with pytest.raises(NarrativeTransitionError):
        transition(state, BackRequested())


def test_failed_step_restores_previous_ready_state() -> None:
    ready = _ready_state()
    loading = transition(ready, ChoiceMade("Left")).state

    failed = transition(loading, StepFailed("Text API Error (500): boom")).state

    assert failed.phase is Phase.READY
    assert failed.pending is None
    assert failed.last_error == "Text API Error (500): boom"
    assert replace(failed, last_error=None) == replace(ready, last_error=None)


def test_back_at_first_step_restarts() -> None:
    result = transition(_ready_state(), BackRequested())

    assert result.state == initial_state()
    assert result.state.config is None


def test_back_restores_party_and_reference_of_previous_step() -> None:
    state = _ready_state()
    state = transition(state, ChoiceMade("Left")).state
    state = transition(
        state,
        SceneFetched(_scene("Benny", "A", "B", new_character=NewCharacter("Benny", "bear"))),
    ).state
    state = transition(
        state,
        PartyResolved(active_party=("remy.png", "benny.png"), reference_image_url="lineup", changed=True),
    ).state
    state = transition(state, ImageGenerated("benny-scene.png", "p")).state
    assert state.active_party == ("remy.png", "benny.png")

    back = transition(state, BackRequested()).state

    first = back.history[0]
    assert back.current_index == 0
    assert back.current_depth == 1
    assert back.path == ()
    assert back.active_party == first.active_party == ("remy.png",)
    assert back.reference_image_url == first.reference_image_url == "remy.png"
    assert back.current_image_url == "open.png"


def test_commit_after_back_discards_forward_branch() -> None:
    state = _ready_state()
    state = transition(state, ChoiceMade("Left")).state
    state = transition(state, SceneFetched(_scene("Left path", "A", "B"))).state
    state = transition(state, ImageGenerated("left.png", "p")).state
    state = transition(state, BackRequested()).state
    assert len(state.history) == 2

    state = transition(state, ChoiceMade("Right")).state
    state = transition(state, SceneFetched(_scene("Right path", "C", "D"))).state
    state = transition(state, ImageGenerated("right.png", "p")).state

    assert [step.scene.scene_text for step in state.history] == ["Opening", "Right path"]
    assert state.path == ("Right",)
    assert len(state.path) == state.current_index


def test_ending_scene_settles_in_ending_phase() -> None:
    state = transition(_ready_state(), ChoiceMade("Left")).state
    state = transition(state, SceneFetched(_scene("The end", is_ending=True))).state
    state = transition(state, ImageGenerated("end.png", "p")).state

    assert state.phase is Phase.ENDING
    assert state.is_ending
    with pytest.raises(NarrativeTransitionError):
        transition(state, ChoiceMade("Again"))


def test_prefetch_writes_for_the_same_key_keep_the_last() -> None:
    state = _ready_state()
    first = StoryStep(scene=_scene("One"), image_url="1.png", debug_prompt="")
    second = StoryStep(scene=_scene("Two"), image_url="2.png", debug_prompt="")

    state = store_prefetched(store_prefetched(state, "1-Left", first), "1-Left", second)

    assert list(state.prefetch_cache) == ["1-Left"]
    assert state.prefetch_cache["1-Left"] == second
