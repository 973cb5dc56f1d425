"""
Replicate-hosted image backend: plain FLUX for new images, Kontext for reference edits.
"""

from __future__ import annotations

import base64
import os
from collections.abc import Iterable
from contextlib import ExitStack
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, BinaryIO

import replicate

from .prompting import ImageMode

DEFAULT_GENERATION_MODEL = "black-forest-labs/flux-schnell"
DEFAULT_EDIT_MODEL = "black-forest-labs/flux-kontext-pro"


@dataclass(frozen=True)
class ModelProfile:
    """How a Replicate model expects its input; ``image_key`` is None for text-only models."""

    image_key: str | None = None
    defaults: dict[str, Any] = field(default_factory=dict)

    def payload(self, prompt: str, image: str | BinaryIO | None) -> dict[str, Any]:
        payload = {"prompt": prompt, **self.defaults}
        if image is not None and self.image_key:
            payload[self.image_key] = image
            payload["aspect_ratio"] = "match_input_image"
        return payload


_TEXT_TO_IMAGE = ModelProfile(defaults={"aspect_ratio": "1:1", "output_format": "png"})
_KONTEXT = ModelProfile(
    image_key="input_image",
    defaults={"aspect_ratio": "1:1", "output_format": "png", "safety_tolerance": 2},
)

MODEL_PROFILES: dict[str, ModelProfile] = {
    "black-forest-labs/flux-schnell": _TEXT_TO_IMAGE,
    "black-forest-labs/flux-dev": _TEXT_TO_IMAGE,
    "black-forest-labs/flux-1.1-pro": _TEXT_TO_IMAGE,
    "black-forest-labs/flux-kontext-pro": _KONTEXT,
    "black-forest-labs/flux-kontext-max": _KONTEXT,
}


def profile_for(model: str) -> ModelProfile:
    """Look up a model profile, ignoring case and any ``:version`` pin."""
    name = model.strip().lower().split(":", maxsplit=1)[0]
    try:
        return MODEL_PROFILES[name]
    except KeyError:
        known = ", ".join(sorted(MODEL_PROFILES))
        raise ValueError(f"No input profile for Replicate model '{model}'. Known models: {known}.") from None


class ReplicateImageBackend:
    """
    Send ``generation`` requests to a text-to-image model and ``edit`` requests
    (a scene conditioned on a lineup) to an image-editing model.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN``.
    generation_model / edit_model:
        Model identifiers; fall back to ``DREAMWEAVER_REPLICATE_GENERATION_MODEL`` and
        ``DREAMWEAVER_REPLICATE_EDIT_MODEL``, then to FLUX schnell and Kontext pro.
    client:
        Pre-built :class:`replicate.Client`, e.g. a fake in tests.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        generation_model: str | None = None,
        edit_model: str | None = None,
        client: replicate.Client | None = None,
    ) -> None:
        token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if client is None and not token:
            raise ValueError("A Replicate API token is required (REPLICATE_API_TOKEN or api_token).")

        self._client = client or replicate.Client(api_token=token)
        self._models: dict[str, str] = {
            "generation": generation_model
            or os.getenv("DREAMWEAVER_REPLICATE_GENERATION_MODEL")
            or DEFAULT_GENERATION_MODEL,
            "edit": edit_model or os.getenv("DREAMWEAVER_REPLICATE_EDIT_MODEL") or DEFAULT_EDIT_MODEL,
        }

    def model_for(self, mode: ImageMode) -> str:
        return self._models[mode]

    def __call__(self, *, mode: ImageMode, prompt: str, image: str | None) -> dict[str, Any]:
        model = self.model_for(mode)
        profile = profile_for(model)
        with ExitStack() as stack:
            upload = _open_reference(image, stack) if mode == "edit" and image else None
            output = self._client.run(model, input=profile.payload(prompt, upload))
            return {"images": normalize_image_outputs(output)}


def _open_reference(reference: str, stack: ExitStack) -> str | BinaryIO:
    """Remote URLs pass through; data URIs and local files become readable streams."""
    if reference.lower().startswith(("http://", "https://")):
        return reference
    if reference.startswith("data:"):
        return BytesIO(base64.b64decode(reference.partition(",")[2]))

    path = Path(reference).expanduser()
    if not path.is_file():
        raise FileNotFoundError(f"Reference image not found: {path}")
    return stack.enter_context(path.open("rb"))


def normalize_image_outputs(raw: Any) -> list[str]:
    """
    Flatten whatever ``replicate.run`` returned into a list of URL strings.

    Handles ``FileOutput`` objects (their ``url``), strings, bytes, nested lists and
    the case of a single URL that was iterated character by character.
    """
    if raw is None:
        return []
    if hasattr(raw, "url") and not isinstance(raw, (str, bytes)):
        return [str(raw.url)]
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, bytes):
        return [raw.decode("utf-8", errors="ignore")]
    if not isinstance(raw, Iterable):
        return [str(raw)]

    items = list(raw)
    if items and all(isinstance(item, str) and len(item) == 1 for item in items):
        return ["".join(items)]

    urls: list[str] = []
    for item in items:
        urls.extend(normalize_image_outputs(item))
    return urls
