"""
Character identity resolution and the persistent character collection.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence

import yaml

PathLike = str | Path

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Character:
    """A collected character and the reference image that pins its look."""

    name: str
    description: str
    image_url: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    collected_at: int = field(default_factory=_now_ms)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Character":
        try:
            name = str(data["name"]).strip()
            image_url = str(data.get("image_url") or data["imageUrl"]).strip()
        except KeyError as exc:
            raise ValueError(f"Character entry missing field: {exc.args[0]}") from exc
        if not name or not image_url:
            raise ValueError("Character entries need a non-empty name and image_url.")

        collected_at = data.get("collected_at", data.get("collectedAt"))
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            name=name,
            description=str(data.get("description") or name).strip(),
            image_url=image_url,
            collected_at=int(collected_at) if collected_at is not None else _now_ms(),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "collected_at": self.collected_at,
        }


def _normalize(text: str) -> str:
    return text.strip().lower()


def names_match(candidate: str, stored: str) -> bool:
    """
    Relaxed name comparison: equal after trimming/lowercasing, or either contains the other.

    "Benny" matches "Benny the Gummy Bear" and vice versa.
    """
    left, right = _normalize(candidate), _normalize(stored)
    if not left or not right:
        return False
    return left == right or left in right or right in left


def mentions_character(text: str, name: str) -> bool:
    """Word-boundary check so that "Cat" is not found inside "Catherine"."""
    needle = _normalize(name)
    if not needle:
        return False
    return re.search(rf"\b{re.escape(needle)}\b", _normalize(text)) is not None


def scan_prompt(prompt: str, characters: Iterable[Character]) -> list[Character]:
    """Return the collected characters named in a free-text prompt, deduplicated by id."""
    found: list[Character] = []
    seen: set[str] = set()
    for character in characters:
        if character.id in seen:
            continue
        if mentions_character(prompt, character.name):
            found.append(character)
            seen.add(character.id)
    return found


def resolve_character(
    name: str,
    characters: Iterable[Character],
    party: Sequence[str] = (),
) -> Character | None:
    """
    Find the collected character a generated name refers to.

    Characters already in the active party (by image URL) win over the rest of the
    collection. ``None`` means the name belongs to someone new.
    """
    candidates = [character for character in characters if names_match(name, character.name)]
    for character in candidates:
        if character.image_url in party:
            return character
    return candidates[0] if candidates else None


LoadCharacters = Callable[[], Sequence[Character]]
SaveCharacters = Callable[[Sequence[Character]], None]


class CharacterRegistry:
    """
    In-memory character collection backed by injected load/save callables.

    Newest characters come first. A failing save is logged and the in-memory
    collection is kept, so the running story never loses a character it unlocked.
    """

    def __init__(
        self,
        *,
        load: LoadCharacters | None = None,
        save: SaveCharacters | None = None,
    ) -> None:
        self._save = save
        self._characters: list[Character] = list(load()) if load is not None else []

    @classmethod
    def from_store(cls, store: "YamlCharacterStore") -> "CharacterRegistry":
        return cls(load=store.load, save=store.save)

    def __iter__(self) -> Iterator[Character]:
        return iter(tuple(self._characters))

    def __len__(self) -> int:
        return len(self._characters)

    @property
    def characters(self) -> tuple[Character, ...]:
        return tuple(self._characters)

    def get(self, character_id: str) -> Character | None:
        for character in self._characters:
            if character.id == character_id:
                return character
        return None

    def find_matching(self, name: str) -> Character | None:
        return resolve_character(name, self._characters)

    def add(self, character: Character) -> Character:
        self._characters.insert(0, character)
        logger.info("Unlocked character %s (%s).", character.name, character.id)
        self._persist()
        return character

    def remove(self, character_id: str) -> bool:
        remaining = [character for character in self._characters if character.id != character_id]
        if len(remaining) == len(self._characters):
            return False
        self._characters = remaining
        self._persist()
        return True

    def _persist(self) -> None:
        if self._save is None:
            return
        try:
            self._save(tuple(self._characters))
        except Exception:
            logger.exception("Failed to persist character collection.")


class YamlCharacterStore:
    """Reads and writes the character collection as a YAML list."""

    def __init__(self, path: PathLike) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[Character]:
        if not self._path.exists():
            return []

        data = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError(f"Character collection in {self._path} must be a YAML list.")

        characters: list[Character] = []
        for entry in data:
            try:
                characters.append(Character.from_mapping(entry))
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping invalid character entry in %s: %s", self._path, exc)
        return characters

    def save(self, characters: Sequence[Character]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [character.as_dict() for character in characters]
        self._path.write_text(
            yaml.safe_dump(payload, sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
