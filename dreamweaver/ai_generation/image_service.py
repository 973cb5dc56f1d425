"""
Image generation client shared by the branching and social story flows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from dreamweaver.common import Settings, UnparseableResponseError

from .prompting import ImageMode, ImagePrompt, build_reference_sheet_prompt, build_scene_prompt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageResult:
    """
    Outcome of one image request.

    ``image_url`` is empty when generation failed; ``debug_prompt`` always holds the
    prompt that was sent, prefixed with the failure reason in that case.
    """

    image_url: str
    debug_prompt: str

    @property
    def succeeded(self) -> bool:
        return bool(self.image_url)


class ImageBackend(Protocol):
    def __call__(self, *, mode: ImageMode, prompt: str, image: str | None) -> Any:
        ...


def _as_data_uri(b64_payload: str) -> str:
    return f"data:image/png;base64,{b64_payload}"


def _field(container: Any, key: str) -> Any:
    return container.get(key) if isinstance(container, Mapping) else None


def extract_image_reference(payload: Any) -> str:
    """
    Find the image reference in an image service response.

    Checked in order: ``output_url``, ``url``, ``data[0].url``, ``data[0].b64_json``
    (wrapped into a PNG data URI) and ``images[0]`` (a URL, raw base64, or ``{url}``).
    """
    for key in ("output_url", "url"):
        value = _field(payload, key)
        if isinstance(value, str) and value:
            return value

    data = _field(payload, "data")
    if isinstance(data, Sequence) and not isinstance(data, (str, bytes)) and data:
        first = data[0]
        if _field(first, "url"):
            return str(first["url"])
        if _field(first, "b64_json"):
            return _as_data_uri(str(first["b64_json"]))

    images = _field(payload, "images")
    if isinstance(images, Sequence) and not isinstance(images, (str, bytes)) and images:
        first = images[0]
        if isinstance(first, str) and first:
            if first.startswith(("http", "data:")):
                return first
            return _as_data_uri(first)
        if _field(first, "url"):
            return str(first["url"])

    raise UnparseableResponseError("No image URL found in response.")


class ImageGenerationClient:
    """
    Turns scene and character descriptions into images through a pluggable backend.

    Failures never propagate out of this client: a failed request yields an
    :class:`ImageResult` with an empty URL so text progress is never lost to an
    image-only failure.
    """

    def __init__(self, backend: ImageBackend) -> None:
        self._backend = backend

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImageGenerationClient":
        if settings.uses_image_endpoints:
            from .flux_endpoint import FluxEndpointBackend

            return cls(
                FluxEndpointBackend(
                    generation_endpoint=settings.image_generation_endpoint,
                    edit_endpoint=settings.image_edit_endpoint,
                    api_key=settings.image_api_key,
                )
            )

        from .replicate_service import ReplicateImageBackend

        return cls(
            ReplicateImageBackend(
                api_token=settings.replicate_api_token,
                generation_model=settings.replicate_generation_model,
                edit_model=settings.replicate_edit_model,
            )
        )

    def generate_scene_image(
        self,
        description: str,
        art_style: str,
        reference_image: str | None = None,
    ) -> ImageResult:
        """Render a story scene, conditioned on the reference lineup when one is given."""
        prompt = build_scene_prompt(
            description,
            art_style,
            with_reference=bool(reference_image),
        )
        return self._request(prompt, reference_image or None)

    def generate_character_reference(self, description: str, art_style: str) -> ImageResult:
        """Render a reference sheet for a single character."""
        return self._request(build_reference_sheet_prompt(description, art_style), None)

    def _request(self, prompt: ImagePrompt, image: str | None) -> ImageResult:
        try:
            payload = self._backend(mode=prompt.mode, prompt=prompt.text, image=image)
            image_url = extract_image_reference(payload)
        except Exception as exc:
            logger.warning("Image generation failed (%s mode): %s", prompt.mode, exc)
            return ImageResult(
                image_url="",
                debug_prompt=f"FAILED: {exc} \n\n ATTEMPTED PROMPT: {prompt.text}",
            )
        return ImageResult(image_url=image_url, debug_prompt=prompt.text)
