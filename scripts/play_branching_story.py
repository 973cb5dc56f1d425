"""
Play a branching DreamWeaver story in the terminal.

Usage:
    python scripts/play_branching_story.py \
        --prompt "A fox named Remy explores a glowing cave" \
        --art-style "bright cartoon"

Pick an option by number, type ``b`` to go back and ``q`` to quit.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dreamweaver import (  # noqa: E402
    BranchingStoryEngine,
    CharacterRegistry,
    StoryConfig,
    YamlCharacterStore,
    load_settings,
)
from dreamweaver.ai_generation import ImageGenerationClient  # noqa: E402
from dreamweaver.common import StoryGenerationError  # noqa: E402
from dreamweaver.pipeline import NarrativeState, Phase  # noqa: E402
from dreamweaver.story_generation import SceneGenerationClient  # noqa: E402

_PHASE_MESSAGES = {
    Phase.LOADING_TEXT: "Writing the next scene...",
    Phase.LOADING_UNLOCK: "Checking who joins the adventure...",
    Phase.LOADING_IMAGE: "Painting the picture...",
}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Play a branching DreamWeaver story.")
    parser.add_argument("--prompt", required=True, help="Story premise.")
    parser.add_argument(
        "--art-style",
        default="Whimsical cartoon",
        help="Art style for every illustration.",
    )
    parser.add_argument(
        "--character",
        action="append",
        default=[],
        metavar="ID",
        help="Id of a collected character to bring along (repeatable).",
    )
    parser.add_argument(
        "--settings",
        default="local.settings.json",
        help="Optional local settings JSON overlay (default: local.settings.json).",
    )
    parser.add_argument(
        "--characters-file",
        default=None,
        help="Character collection YAML (default: from settings).",
    )
    parser.add_argument(
        "--no-prefetch",
        action="store_true",
        help="Disable speculative generation of upcoming scenes.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


class PhaseReporter:
    """Prints a line whenever the engine enters a loading phase."""

    def __init__(self) -> None:
        self._last: Phase | None = None

    def __call__(self, state: NarrativeState) -> None:
        if state.phase is self._last:
            return
        self._last = state.phase
        message = _PHASE_MESSAGES.get(state.phase)
        if message:
            tqdm.write(message)


def render(state: NarrativeState) -> None:
    scene = state.current_scene
    if scene is None:
        return
    tqdm.write("")
    tqdm.write(f"--- Scene {state.current_index + 1} ---")
    tqdm.write(scene.scene_text)
    if state.current_image_url:
        preview = state.current_image_url
        tqdm.write(f"[image] {preview[:80]}{'...' if len(preview) > 80 else ''}")
    else:
        tqdm.write("[image] generation failed")
    if state.just_unlocked is not None:
        tqdm.write(f"* {state.just_unlocked.name} is in your party!")
    if state.is_ending:
        tqdm.write("THE END")
        return
    for number, option in enumerate(scene.options, start=1):
        tqdm.write(f"  {number}. {option}")


async def play(engine: BranchingStoryEngine, config: StoryConfig) -> int:
    try:
        render(await engine.start_story(config))
    except StoryGenerationError as exc:
        tqdm.write(f"Could not start the story: {exc}")
        return 1

    try:
        while engine.state.current_scene is not None:
            answer = (await asyncio.to_thread(input, "> ")).strip().lower()
            if answer == "q":
                break
            try:
                if answer == "b":
                    state = await engine.handle_back()
                    if state.current_scene is None:
                        tqdm.write("Back at the beginning. Goodbye!")
                        break
                    render(state)
                    continue
                options = engine.state.current_scene.options
                if not answer.isdigit() or not 1 <= int(answer) <= len(options):
                    tqdm.write("Pick an option number, 'b' or 'q'.")
                    continue
                render(await engine.handle_choice(options[int(answer) - 1]))
            except StoryGenerationError as exc:
                tqdm.write(f"That did not work ({exc}). Try again.")
    finally:
        await engine.aclose()
    return 0


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    settings = load_settings(Path(args.settings))
    store = YamlCharacterStore(args.characters_file or settings.characters_file)
    engine = BranchingStoryEngine(
        scene_client=SceneGenerationClient.from_settings(settings),
        image_client=ImageGenerationClient.from_settings(settings),
        registry=CharacterRegistry.from_store(store),
        prefetch=not args.no_prefetch,
        on_update=PhaseReporter(),
    )
    config = StoryConfig(
        starting_prompt=args.prompt,
        art_style=args.art_style,
        selected_character_ids=tuple(args.character),
    )
    return asyncio.run(play(engine, config))


if __name__ == "__main__":
    raise SystemExit(main())
