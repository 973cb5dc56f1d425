"""
YAML-backed library of saved social stories.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from dreamweaver.pipeline import SocialSceneStep, SocialStoryConfig, SocialStoryState
from dreamweaver.story_generation import SocialScenario

PathLike = str | Path
Clock = Callable[[], float]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SavedSocialStory:
    """A finished social story as stored on disk. Timestamps are epoch milliseconds."""

    id: str
    child_name: str
    created_at: int
    last_viewed: int
    scenes: tuple[SocialSceneStep, ...]
    child_character_ref: str = ""
    people_refs: Mapping[str, str] = field(default_factory=dict)
    template_id: str | None = None
    custom_title: str | None = None
    thumbnail: str | None = None

    @property
    def title(self) -> str:
        return self.custom_title or self.template_id or f"{self.child_name}'s story"

    def to_state(self) -> SocialStoryState:
        return SocialStoryState(
            scenes=self.scenes,
            child_character_ref=self.child_character_ref or None,
            people_refs=dict(self.people_refs),
            is_complete=True,
            is_generating=False,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "custom_title": self.custom_title,
            "child_name": self.child_name,
            "created_at": self.created_at,
            "last_viewed": self.last_viewed,
            "scenes": [step.as_dict() for step in self.scenes],
            "child_character_ref": self.child_character_ref,
            "people_refs": dict(self.people_refs),
            "thumbnail": self.thumbnail,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SavedSocialStory":
        try:
            story_id = str(payload["id"])
            child_name = str(payload["child_name"]).strip()
            created_at = int(payload["created_at"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid saved story entry: {payload!r:.200}") from exc

        raw_refs = payload.get("people_refs") or {}
        if not isinstance(raw_refs, Mapping):
            raise ValueError("Saved story 'people_refs' must be a mapping.")

        return cls(
            id=story_id,
            template_id=payload.get("template_id"),
            custom_title=payload.get("custom_title"),
            child_name=child_name,
            created_at=created_at,
            last_viewed=int(payload.get("last_viewed", created_at)),
            scenes=tuple(SocialSceneStep.from_mapping(entry) for entry in payload.get("scenes") or ()),
            child_character_ref=str(payload.get("child_character_ref") or ""),
            people_refs={str(role): str(url) for role, url in raw_refs.items()},
            thumbnail=payload.get("thumbnail"),
        )


class StoryLibrary:
    """
    Saved social stories kept in a single YAML document.

    Listing returns the most recently viewed story first.
    """

    def __init__(self, path: PathLike, *, clock: Clock = time.time) -> None:
        self._path = Path(path).expanduser()
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    def save(
        self,
        state: SocialStoryState,
        config: SocialStoryConfig,
        scenario: SocialScenario | None = None,
    ) -> SavedSocialStory:
        now = self._now_ms()
        story = SavedSocialStory(
            id=uuid.uuid4().hex,
            template_id=(scenario.template_id if scenario else None) or config.template_id,
            custom_title=scenario.title if scenario and scenario.is_custom else None,
            child_name=config.child_name,
            created_at=now,
            last_viewed=now,
            scenes=state.scenes,
            child_character_ref=state.child_character_ref or "",
            people_refs=dict(state.people_refs),
            thumbnail=state.scenes[0].image_url if state.scenes else None,
        )
        self._write([story, *self._read()])
        logger.info("Saved story %s for %s.", story.id, story.child_name)
        return story

    def list(self) -> list[SavedSocialStory]:
        return sorted(self._read(), key=lambda story: story.last_viewed, reverse=True)

    def get(self, story_id: str) -> SavedSocialStory | None:
        for story in self._read():
            if story.id == story_id:
                return story
        return None

    def delete(self, story_id: str) -> bool:
        stories = self._read()
        remaining = [story for story in stories if story.id != story_id]
        if len(remaining) == len(stories):
            return False
        self._write(remaining)
        return True

    def touch(self, story_id: str) -> SavedSocialStory | None:
        """Mark a story as just viewed."""
        stories = self._read()
        for index, story in enumerate(stories):
            if story.id == story_id:
                stories[index] = replace(story, last_viewed=self._now_ms())
                self._write(stories)
                return stories[index]
        return None

    def count(self) -> int:
        return len(self._read())

    def restore(self, story_id: str) -> SocialStoryState:
        story = self.touch(story_id)
        if story is None:
            raise KeyError(f"No saved story with id {story_id!r}.")
        return story.to_state()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _read(self) -> list[SavedSocialStory]:
        if not self._path.exists():
            return []
        data = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError(f"Story library {self._path} must contain a YAML list.")
        return [SavedSocialStory.from_dict(entry) for entry in data]

    def _write(self, stories: list[SavedSocialStory]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            yaml.safe_dump(
                [story.to_dict() for story in stories],
                sort_keys=False,
                allow_unicode=True,
            ),
            encoding="utf-8",
        )
