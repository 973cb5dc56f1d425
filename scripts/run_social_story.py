"""
CLI to generate a complete social story and save it to the story library.

Usage:
    python scripts/run_social_story.py \
        --scenario scenarios/dentist.yaml \
        --child-name Maya \
        --child-appearance "a 5 year old girl with curly brown hair and a yellow raincoat" \
        --art-style "soft watercolor" \
        --output maya_dentist.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dreamweaver import (  # noqa: E402
    SocialStoryConfig,
    SocialStoryOrchestrator,
    StoryLibrary,
    load_settings,
)
from dreamweaver.ai_generation import ImageGenerationClient  # noqa: E402
from dreamweaver.common import StoryGenerationError  # noqa: E402
from dreamweaver.story_generation import SceneGenerationClient, SocialScenario  # noqa: E402


class ProgressTracker:
    """
    Command-line progress for a social story run.
    """

    def __init__(self) -> None:
        self._scene_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "child:reference":
                name = payload.get("child_name", "the child")
                self._write(f"[1/3] Drawing a reference sheet for {name}...")
            case "scene:generating":
                if self._scene_bar is None:
                    total = payload.get("total_scenes", 0)
                    self._write(f"[2/3] Writing and illustrating {total} scenes...")
                    self._scene_bar = tqdm(total=total, desc="Scenes", unit="scene")
                self._scene_bar.set_description(f"Scene {payload.get('scene_number')}: writing")
            case "person:reference":
                self._write(f"      New helper: {payload.get('name')} ({payload.get('role')})")
            case "scene:illustrating":
                if self._scene_bar is not None:
                    self._scene_bar.set_description(f"Scene {payload.get('scene_number')}: illustrating")
            case "scene:done":
                if self._scene_bar is not None:
                    self._scene_bar.update(1)
                if not payload.get("image_ok", True):
                    self._write(f"      Scene {payload.get('scene_number')} image failed; continuing.")
            case "story:complete":
                self.close()
                self._write(f"[3/3] Story complete ({payload.get('total_scenes')} scenes).")

    def close(self) -> None:
        if self._scene_bar is not None:
            self._scene_bar.close()
            self._scene_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a DreamWeaver social story.")
    parser.add_argument(
        "--scenario",
        required=True,
        help="Path to the scenario YAML/JSON file (template or custom scenario).",
    )
    parser.add_argument("--child-name", required=True, help="The child's name.")
    parser.add_argument(
        "--child-appearance",
        required=True,
        help="Physical description of the child used for the reference sheet.",
    )
    parser.add_argument(
        "--art-style",
        default="Children's book illustration",
        help="Art style for every illustration.",
    )
    parser.add_argument("--child-age", type=int, default=None, help="Optional age of the child.")
    parser.add_argument(
        "--scenes",
        type=int,
        default=None,
        help="Override the number of scenes from the scenario file.",
    )
    parser.add_argument(
        "--settings",
        default="local.settings.json",
        help="Optional local settings JSON overlay (default: local.settings.json).",
    )
    parser.add_argument(
        "--library",
        default=None,
        help="Story library YAML path (default: from settings).",
    )
    parser.add_argument(
        "--no-save",
        action="store_true",
        help="Do not add the finished story to the library.",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Optional YAML file for a standalone copy of the generated story.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def load_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError("Unsupported scenario file format. Use YAML or JSON.")

    if not isinstance(data, dict):
        raise ValueError("Scenario file must deserialize to a mapping.")
    return data


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    settings = load_settings(Path(args.settings))
    scenario_data = load_mapping(Path(args.scenario))
    if args.scenes is not None:
        scenario_data["estimated_scenes"] = args.scenes
    scenario = SocialScenario.from_mapping(scenario_data)

    config = SocialStoryConfig(
        child_name=args.child_name,
        child_appearance=args.child_appearance,
        art_style=args.art_style,
        child_age=args.child_age,
        template_id=scenario.template_id,
    )
    orchestrator = SocialStoryOrchestrator(
        scene_client=SceneGenerationClient.from_settings(settings),
        image_client=ImageGenerationClient.from_settings(settings),
    )

    tracker = ProgressTracker()
    try:
        state = asyncio.run(orchestrator.generate(config, scenario, progress_callback=tracker))
    except StoryGenerationError as exc:
        tqdm.write(f"Story generation failed: {exc}")
        return 1
    finally:
        tracker.close()

    if not args.no_save:
        library = StoryLibrary(args.library or settings.library_file)
        saved = library.save(state, config, scenario)
        tqdm.write(f"Saved story {saved.id} to {library.path}")

    if args.output:
        output_path = Path(args.output)
        payload = {
            "title": scenario.title,
            "child_name": config.child_name,
            "child_character_ref": state.child_character_ref,
            "people_refs": dict(state.people_refs),
            "scenes": [step.as_dict() for step in state.scenes],
        }
        output_path.write_text(
            yaml.safe_dump(payload, sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
        tqdm.write(f"Wrote story snapshot to {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
