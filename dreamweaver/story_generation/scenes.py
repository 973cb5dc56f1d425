"""
Structured scene payloads returned by the text generation service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from dreamweaver.common import InvalidContentError


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def _require_str(data: Mapping[str, Any], key: str, kind: str) -> str:
    text = _coerce_optional_str(data.get(key))
    if not text:
        raise InvalidContentError(f"{kind} response missing '{key}'.")
    return text


def _normalize_strings(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()

    if isinstance(value, str):
        parts = [item.strip() for item in value.split(",")]
    elif isinstance(value, Sequence):
        parts = [str(item).strip() for item in value]
    else:
        raise TypeError("Expected a string or sequence of strings.")

    return tuple(filter(None, parts))


@dataclass(frozen=True)
class NewCharacter:
    """A character the text generator introduced mid-story."""

    name: str
    description: str

    @classmethod
    def from_mapping(cls, data: Any) -> "NewCharacter | None":
        if not isinstance(data, Mapping):
            return None
        name = _coerce_optional_str(data.get("name"))
        if not name:
            return None
        return cls(name=name, description=_coerce_optional_str(data.get("description")) or name)


@dataclass(frozen=True)
class Scene:
    """
    One step of a branching story.

    ``character_concept``/``character_name`` describe the main character and only
    appear on the opening scene; ``new_character`` appears when a new friend joins.
    """

    scene_text: str
    image_description: str
    option_1: str | None = None
    option_2: str | None = None
    is_ending: bool = False
    character_concept: str | None = None
    character_name: str | None = None
    new_character: NewCharacter | None = None

    @property
    def options(self) -> tuple[str, ...]:
        return tuple(option for option in (self.option_1, self.option_2) if option)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Scene":
        if not isinstance(data, Mapping):
            raise InvalidContentError("Scene response must be a JSON object.")

        return cls(
            scene_text=_require_str(data, "scene_text", "Scene"),
            image_description=_require_str(data, "image_description", "Scene"),
            option_1=_coerce_optional_str(data.get("option_1")),
            option_2=_coerce_optional_str(data.get("option_2")),
            is_ending=_coerce_bool(data.get("is_ending", False)),
            character_concept=_coerce_optional_str(data.get("character_concept")),
            character_name=_coerce_optional_str(data.get("character_name")),
            new_character=NewCharacter.from_mapping(data.get("new_character")),
        )

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "scene_text": self.scene_text,
            "image_description": self.image_description,
            "option_1": self.option_1,
            "option_2": self.option_2,
            "is_ending": self.is_ending,
        }
        if self.character_concept:
            payload["character_concept"] = self.character_concept
        if self.character_name:
            payload["character_name"] = self.character_name
        if self.new_character:
            payload["new_character"] = {
                "name": self.new_character.name,
                "description": self.new_character.description,
            }
        return payload


@dataclass(frozen=True)
class PersonIntroduced:
    """A real-world person the child will meet, keyed by role."""

    role: str
    name: str
    description: str
    what_they_do: str = ""

    @classmethod
    def from_mapping(cls, data: Any) -> "PersonIntroduced | None":
        if not isinstance(data, Mapping):
            return None
        role = _coerce_optional_str(data.get("role"))
        if not role:
            return None
        return cls(
            role=role,
            name=_coerce_optional_str(data.get("name")) or role,
            description=_coerce_optional_str(data.get("description")) or "",
            what_they_do=_coerce_optional_str(data.get("what_they_do")) or "",
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "name": self.name,
            "description": self.description,
            "what_they_do": self.what_they_do,
        }


@dataclass(frozen=True)
class SocialScene:
    """One scene of a linear social story."""

    scene_number: int
    scene_title: str
    scene_text: str
    image_description: str
    educational_note: str | None = None
    person_introduced: PersonIntroduced | None = None
    is_final_scene: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, default_number: int | None = None) -> "SocialScene":
        if not isinstance(data, Mapping):
            raise InvalidContentError("Social scene response must be a JSON object.")

        raw_number = data.get("scene_number", default_number)
        try:
            scene_number = int(raw_number)
        except (TypeError, ValueError) as exc:
            raise InvalidContentError(
                f"Social scene response has an invalid 'scene_number': {raw_number!r}"
            ) from exc

        return cls(
            scene_number=scene_number,
            scene_title=_coerce_optional_str(data.get("scene_title")) or f"Scene {scene_number}",
            scene_text=_require_str(data, "scene_text", "Social scene"),
            image_description=_require_str(data, "image_description", "Social scene"),
            educational_note=_coerce_optional_str(data.get("educational_note")),
            person_introduced=PersonIntroduced.from_mapping(data.get("person_introduced")),
            is_final_scene=_coerce_bool(data.get("is_final_scene", False)),
        )

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "scene_number": self.scene_number,
            "scene_title": self.scene_title,
            "scene_text": self.scene_text,
            "image_description": self.image_description,
            "is_final_scene": self.is_final_scene,
        }
        if self.educational_note:
            payload["educational_note"] = self.educational_note
        if self.person_introduced:
            payload["person_introduced"] = self.person_introduced.as_dict()
        return payload


@dataclass(frozen=True)
class SocialScenario:
    """
    The situation a social story prepares the child for.

    Attributes
    ----------
    title:
        Short scenario title (e.g., "Going to the Dentist").
    description:
        What happens in the scenario.
    estimated_scenes:
        Number of scenes to generate.
    key_people:
        Roles the child is likely to meet.
    common_concerns:
        Worries the story should gently address.
    specific_details:
        Free-form notes supplied by a parent for custom scenarios.
    is_custom:
        True for parent-authored scenarios, False for library templates.
    """

    title: str
    description: str
    estimated_scenes: int = 6
    key_people: tuple[str, ...] = ()
    common_concerns: tuple[str, ...] = ()
    specific_details: str | None = None
    category: str | None = None
    template_id: str | None = None
    is_custom: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SocialScenario":
        """
        Build a scenario from a dict-like object (e.g., parsed JSON/YAML).

        Template-style keys (``id``, ``commonFears``) and custom-style keys
        (``commonConcerns``, ``specificDetails``) are both accepted.
        """
        if "title" not in data or not str(data["title"]).strip():
            raise ValueError("Scenario data must include a non-empty 'title' field.")

        raw_scenes = data.get("estimated_scenes") or data.get("estimatedScenes") or 6
        try:
            estimated_scenes = int(raw_scenes)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Expected an integer scene count, got {raw_scenes!r}") from exc
        if estimated_scenes < 1:
            raise ValueError("A social story needs at least one scene.")

        template_id = _coerce_optional_str(data.get("template_id") or data.get("id"))
        return cls(
            title=str(data["title"]).strip(),
            description=_coerce_optional_str(data.get("description")) or "",
            estimated_scenes=estimated_scenes,
            key_people=_normalize_strings(data.get("key_people") or data.get("keyPeople")),
            common_concerns=_normalize_strings(
                data.get("common_concerns")
                or data.get("commonConcerns")
                or data.get("common_fears")
                or data.get("commonFears")
            ),
            specific_details=_coerce_optional_str(
                data.get("specific_details") or data.get("specificDetails")
            ),
            category=_coerce_optional_str(data.get("category")),
            template_id=template_id,
            is_custom=_coerce_bool(data.get("is_custom", template_id is None)),
        )


@dataclass(frozen=True)
class KnownCharacterHint:
    """Name and description of an existing character passed to the text model."""

    name: str
    description: str
