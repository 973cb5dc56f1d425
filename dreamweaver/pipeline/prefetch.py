"""
Speculative background generation of the steps behind each visible option.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from dreamweaver.ai_generation import ImageGenerationClient
from dreamweaver.story_generation import SceneGenerationClient

from .state import NarrativeState, Phase, StoryStep, cache_key, reference_fingerprint

logger = logging.getLogger(__name__)

DEFAULT_PREFETCH_DELAY = 1.0

TriggerSignature = tuple[int, str, str, bool]
StoreCallback = Callable[[str, StoryStep], None]


def trigger_signature(state: NarrativeState) -> TriggerSignature | None:
    """What a prefetch run depends on; ``None`` when nothing should be prefetched."""
    if state.phase is not Phase.READY or state.current_scene is None or state.config is None:
        return None
    return (
        state.current_depth,
        state.current_scene.scene_text,
        reference_fingerprint(state.reference_image_url),
        state.is_ending,
    )


@dataclass
class _Ticket:
    signature: TriggerSignature
    started: bool = False
    discarded: bool = False


class SpeculativePrefetcher:
    """
    Debounced prefetcher keyed by trigger signature.

    When the signature changes, a run that is still waiting out its quiet delay is
    cancelled; a run already talking to the services is left to finish but its
    results are dropped. Speculation never creates character references: a branch
    that introduces a new character is cached without an image.
    """

    def __init__(
        self,
        *,
        scene_client: SceneGenerationClient,
        image_client: ImageGenerationClient,
        store: StoreCallback,
        delay: float = DEFAULT_PREFETCH_DELAY,
    ) -> None:
        self._scene_client = scene_client
        self._image_client = image_client
        self._store = store
        self._delay = delay
        self._ticket: _Ticket | None = None
        self._task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def signature(self) -> TriggerSignature | None:
        return self._ticket.signature if self._ticket else None

    def schedule(self, state: NarrativeState) -> None:
        signature = trigger_signature(state)
        if signature is not None and self._ticket is not None and self._ticket.signature == signature:
            return

        self.cancel()
        if signature is None:
            return

        ticket = _Ticket(signature=signature)
        task = asyncio.create_task(self._run(state, ticket))
        self._ticket = ticket
        self._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel(self) -> None:
        ticket, task = self._ticket, self._task
        self._ticket = None
        self._task = None
        if ticket is None or task is None:
            return
        if ticket.started:
            ticket.discarded = True
        else:
            task.cancel()

    async def wait(self) -> None:
        """Wait for every outstanding prefetch run, including discarded ones."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self.cancel()
        for task in list(self._tasks):
            task.cancel()
        await self.wait()

    async def _run(self, state: NarrativeState, ticket: _Ticket) -> None:
        if self._delay > 0:
            await asyncio.sleep(self._delay)
        ticket.started = True

        if state.current_scene is None or state.config is None:
            return
        options = [
            option
            for option in state.current_scene.options
            if cache_key(state.current_depth, option) not in state.prefetch_cache
        ]
        if not options:
            return

        logger.debug("Prefetching %d option(s) at depth %d.", len(options), state.current_depth)
        await asyncio.gather(*(self._prefetch_option(state, option, ticket) for option in options))

    async def _prefetch_option(self, state: NarrativeState, option: str, ticket: _Ticket) -> None:
        config = state.config
        if config is None:
            return
        key = cache_key(state.current_depth, option)
        try:
            scene = await asyncio.to_thread(
                self._scene_client.generate_story_step,
                starting_prompt=config.starting_prompt,
                art_style=config.art_style,
                previous_scenes=tuple(state.visible_scenes),
                path=state.path,
                choice=option,
            )
            image_url, debug_prompt = "", ""
            if scene.new_character is None:
                result = await asyncio.to_thread(
                    self._image_client.generate_scene_image,
                    scene.image_description,
                    config.art_style,
                    state.reference_image_url,
                )
                image_url, debug_prompt = result.image_url, result.debug_prompt
        except Exception as exc:
            logger.warning("Prefetch for %r failed: %s", key, exc)
            return

        if ticket.discarded:
            logger.debug("Dropping stale prefetch result for %r.", key)
            return

        self._store(
            key,
            StoryStep(
                scene=scene,
                image_url=image_url,
                debug_prompt=debug_prompt,
                active_party=state.active_party,
                reference_image_url=state.reference_image_url,
                reference_debug_prompt=state.ref_debug_prompt,
            ),
        )
