"""
Async driver for the branching story state machine.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from dreamweaver.ai_generation import ImageGenerationClient
from dreamweaver.common import CompositeError
from dreamweaver.story_generation import SceneGenerationClient

from .compositor import compose_reference
from .identity import Character, CharacterRegistry, resolve_character, scan_prompt
from .machine import (
    AssembleOpeningParty,
    BackRequested,
    ChoiceMade,
    Effect,
    Event,
    FetchScene,
    GenerateSceneImage,
    ImageGenerated,
    PartyResolved,
    ResolveNewCharacter,
    SceneFetched,
    StartRequested,
    StepFailed,
    initial_state,
    store_prefetched,
    transition,
)
from .prefetch import DEFAULT_PREFETCH_DELAY, SpeculativePrefetcher
from .state import NarrativeState, StoryConfig, StoryStep

logger = logging.getLogger(__name__)

StateListener = Callable[[NarrativeState], None]
Compositor = Callable[[Sequence[str]], Awaitable[str]]

GENERIC_HERO_NAME = "Hero"


class BranchingStoryEngine:
    """
    Runs a branching story: performs the machine's effects and publishes each snapshot.

    Foreground calls must not overlap; the machine rejects a choice or back request
    while a step is loading. Text failures restore the last displayed step, are
    recorded in ``last_error`` and re-raised.
    """

    def __init__(
        self,
        *,
        scene_client: SceneGenerationClient,
        image_client: ImageGenerationClient,
        registry: CharacterRegistry | None = None,
        compositor: Compositor = compose_reference,
        prefetch: bool = True,
        prefetch_delay: float = DEFAULT_PREFETCH_DELAY,
        on_update: StateListener | None = None,
    ) -> None:
        self._scene_client = scene_client
        self._image_client = image_client
        self._registry = registry or CharacterRegistry()
        self._compositor = compositor
        self._on_update = on_update
        self._state = initial_state()
        self._prefetcher: SpeculativePrefetcher | None = None
        if prefetch:
            self._prefetcher = SpeculativePrefetcher(
                scene_client=scene_client,
                image_client=image_client,
                store=self._store_prefetched,
                delay=prefetch_delay,
            )

    @property
    def state(self) -> NarrativeState:
        return self._state

    @property
    def registry(self) -> CharacterRegistry:
        return self._registry

    @property
    def just_unlocked(self) -> Character | None:
        return self._state.just_unlocked

    @property
    def last_error(self) -> str | None:
        return self._state.last_error

    async def start_story(self, config: StoryConfig) -> NarrativeState:
        """Begin a new story; explicitly selected characters join first, then prompt mentions."""
        preloaded: list[Character] = []
        for character_id in config.selected_character_ids:
            character = self._registry.get(character_id)
            if character is None:
                logger.warning("Selected character %s is not in the collection.", character_id)
                continue
            preloaded.append(character)
        preloaded.extend(scan_prompt(config.starting_prompt, self._registry))

        self._cancel_prefetch()
        return await self._drive(StartRequested(config=config, preloaded=tuple(preloaded)))

    async def handle_choice(self, choice: str) -> NarrativeState:
        return await self._drive(ChoiceMade(choice=choice))

    async def handle_back(self) -> NarrativeState:
        """Step back one scene, or restart entirely from the first scene."""
        self._cancel_prefetch()
        return await self._drive(BackRequested())

    def restart(self) -> NarrativeState:
        self._cancel_prefetch()
        self._set_state(initial_state())
        return self._state

    async def wait_for_prefetch(self) -> None:
        if self._prefetcher is not None:
            await self._prefetcher.wait()

    async def aclose(self) -> None:
        if self._prefetcher is not None:
            await self._prefetcher.aclose()

    async def _drive(self, event: Event) -> NarrativeState:
        step = transition(self._state, event)
        self._set_state(step.state)

        while step.effect is not None:
            try:
                next_event = await self._perform(step.effect)
            except asyncio.CancelledError:
                logger.warning("Story step cancelled; keeping the last displayed step.")
                self._set_state(transition(self._state, StepFailed(error="Story step cancelled.")).state)
                raise
            except Exception as exc:
                logger.error("Story step failed: %s", exc)
                self._set_state(transition(self._state, StepFailed(error=str(exc))).state)
                raise
            step = transition(self._state, next_event)
            self._set_state(step.state)

        if self._prefetcher is not None:
            self._prefetcher.schedule(self._state)
        return self._state

    async def _perform(self, effect: Effect) -> Event:
        match effect:
            case FetchScene():
                scene = await asyncio.to_thread(
                    self._scene_client.generate_story_step,
                    starting_prompt=effect.config.starting_prompt,
                    art_style=effect.config.art_style,
                    previous_scenes=effect.previous_scenes,
                    path=effect.path,
                    choice=effect.choice,
                    known_characters=effect.known_characters,
                )
                return SceneFetched(scene=scene)
            case AssembleOpeningParty():
                return await self._assemble_opening_party(effect)
            case ResolveNewCharacter():
                return await self._resolve_new_character(effect)
            case GenerateSceneImage():
                result = await asyncio.to_thread(
                    self._image_client.generate_scene_image,
                    effect.description,
                    effect.art_style,
                    effect.reference_image_url,
                )
                return ImageGenerated(image_url=result.image_url, debug_prompt=result.debug_prompt)
        raise TypeError(f"Unsupported effect: {effect!r}")

    async def _assemble_opening_party(self, effect: AssembleOpeningParty) -> PartyResolved:
        party = _unique([character.image_url for character in effect.preloaded])
        scene = effect.scene
        unlocked: Character | None = None
        debug_prompt = ""

        if scene.character_concept:
            name = scene.character_name or GENERIC_HERO_NAME
            existing = resolve_character(name, self._registry, party)
            if existing is not None:
                if existing.image_url not in party:
                    party.append(existing.image_url)
            else:
                unlocked, debug_prompt = await self._unlock(
                    name, scene.character_concept, effect.config.art_style
                )
                if unlocked is not None:
                    party.append(unlocked.image_url)
        elif not party:
            result = await asyncio.to_thread(
                self._image_client.generate_character_reference,
                f"The main character of this story: {effect.config.starting_prompt}",
                effect.config.art_style,
            )
            debug_prompt = result.debug_prompt
            if result.succeeded:
                party.append(result.image_url)

        reference = await self._compose(party)
        return PartyResolved(
            active_party=tuple(party),
            reference_image_url=reference,
            reference_debug_prompt=debug_prompt,
            changed=True,
            unlocked=unlocked,
        )

    async def _resolve_new_character(self, effect: ResolveNewCharacter) -> PartyResolved:
        party = list(effect.active_party)
        new_character = effect.new_character
        existing = resolve_character(new_character.name, self._registry, party)

        if existing is not None and existing.image_url in party:
            return PartyResolved(
                active_party=effect.active_party,
                reference_image_url=effect.reference_image_url,
                reference_debug_prompt=effect.reference_debug_prompt,
                changed=False,
                unlocked=existing,
            )

        debug_prompt = effect.reference_debug_prompt
        if existing is not None:
            unlocked: Character | None = existing
        else:
            unlocked, debug_prompt = await self._unlock(
                new_character.name, new_character.description, effect.config.art_style
            )
        if unlocked is None:
            return PartyResolved(
                active_party=effect.active_party,
                reference_image_url=effect.reference_image_url,
                reference_debug_prompt=debug_prompt,
                changed=False,
            )

        party.append(unlocked.image_url)
        reference = await self._compose(party)
        return PartyResolved(
            active_party=tuple(party),
            reference_image_url=reference,
            reference_debug_prompt=debug_prompt,
            changed=True,
            unlocked=unlocked,
        )

    async def _unlock(
        self,
        name: str,
        description: str,
        art_style: str,
    ) -> tuple[Character | None, str]:
        result = await asyncio.to_thread(
            self._image_client.generate_character_reference, description, art_style
        )
        if not result.succeeded:
            logger.warning("Could not create a reference sheet for %s.", name)
            return None, result.debug_prompt
        character = self._registry.add(
            Character(name=name, description=description, image_url=result.image_url)
        )
        return character, result.debug_prompt

    async def _compose(self, party: Sequence[str]) -> str | None:
        try:
            return await self._compositor(party) or None
        except CompositeError as exc:
            logger.warning("Reference composite failed, continuing without a reference: %s", exc)
            return None

    def _store_prefetched(self, key: str, step: StoryStep) -> None:
        self._set_state(store_prefetched(self._state, key, step))

    def _cancel_prefetch(self) -> None:
        if self._prefetcher is not None:
            self._prefetcher.cancel()

    def _set_state(self, state: NarrativeState) -> None:
        self._state = state
        if self._on_update is not None:
            self._on_update(state)


def _unique(values: Sequence[str]) -> list[str]:
    collected: list[str] = []
    for value in values:
        if value and value not in collected:
            collected.append(value)
    return collected
