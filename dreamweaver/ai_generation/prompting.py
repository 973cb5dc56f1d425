"""
Prompt construction utilities for DreamWeaver image generation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

ImageMode = Literal["generation", "edit"]

NO_TEXT_GUARDRAIL = "Do not include any artist signatures, watermarks, or text."


@dataclass(frozen=True)
class ImagePrompt:
    """The prompt text together with the image-service mode it targets."""

    mode: ImageMode
    text: str


def build_reference_sheet_prompt(character_description: str, art_style: str) -> ImagePrompt:
    """
    Build the prompt for a character reference sheet.

    Reference sheets pin a character's look for later conditioned generation, so the
    prompt asks for a single neutral full-body view with flat, faithful colors.
    """
    if not character_description or not character_description.strip():
        raise ValueError("character_description must be a non-empty string.")

    intro = (
        "Create a clean character reference sheet in a simple cartoon children's-book style "
        "with crisp black outlines and flat colors.\n"
        "Show the character standing in a neutral pose on a plain white background.\n"
        "Include: A single full-body front view (large, centered).\n"
        f"The character should follow this description: {character_description.strip()}"
    )
    requirements = _format_bullet_section(
        "Requirements:",
        [
            "Clear, bold outlines",
            "Simple shapes and proportions",
            "Flat colors or very light cel shading (Avoid complex lighting that alters colors)",
            "Ensure colors are distinct and accurate to the description",
            "No scenery, no props, no background details",
            "No text of any kind",
            "Keep layout simple",
            f"Art style: {art_style}",
            NO_TEXT_GUARDRAIL,
        ],
    )
    return ImagePrompt(mode="generation", text=f"{intro}\n\n{requirements}")


def build_scene_prompt(
    scene_description: str,
    art_style: str,
    *,
    with_reference: bool,
) -> ImagePrompt:
    """
    Build the prompt for a story scene.

    With a reference lineup the prompt targets ``edit`` mode and demands strict color
    and identity fidelity to the reference; without one it is a plain generation prompt.
    """
    if not with_reference:
        return ImagePrompt(
            mode="generation",
            text=f"{scene_description}. Art style: {art_style}. {NO_TEXT_GUARDRAIL}",
        )

    identity_lock = _format_bullet_section(
        "STRICT COLOR AND IDENTITY CONSISTENCY REQUIRED.\n"
        "Use the attached reference image as the absolute source of truth for the characters.",
        [
            "The reference image contains a lineup of one or more characters on a white background.",
            "You MUST use the exact colors from the reference image for the characters.",
            "Keep facial features, body proportions, and markings identical to the reference.",
        ],
    )
    requirements = _format_bullet_section(
        "Requirements:",
        [
            "Background should match the scene but stay consistent with the art style",
            "Keep the characters fully recognizable and matching the reference",
            "No text",
            "No speech bubbles",
            f"Art style: {art_style}",
            NO_TEXT_GUARDRAIL,
        ],
    )
    text = (
        f"{identity_lock}\n\n"
        "Do not redesign the characters. Only adjust pose, lighting, and the new environment.\n\n"
        "Now create the story scene in the same simple cartoon children's-book style "
        "with clean outlines and flat or lightly-shaded colors.\n\n"
        f"Scene description: {scene_description}\n\n"
        f"{requirements}"
    )
    return ImagePrompt(mode="edit", text=text)


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"
