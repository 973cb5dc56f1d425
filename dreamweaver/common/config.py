"""
Runtime settings for DreamWeaver, read from the environment with an optional local overlay.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

DEFAULT_TEXT_MODEL = "gpt-5.1-chat"
DEFAULT_LOCAL_SETTINGS = Path("local.settings.json")


@dataclass(frozen=True)
class Settings:
    """
    Resolved configuration for the text and image collaborators.

    Attributes
    ----------
    text_endpoint:
        URL of the raw text endpoint. When unset, text generation goes through LiteLLM.
    text_api_key:
        Key sent as the ``api-key`` header (endpoint) or forwarded to LiteLLM.
    text_model:
        Model name placed in every text request.
    image_generation_endpoint / image_edit_endpoint:
        Upstream FLUX-style endpoints used for the two image modes.
    image_api_key:
        Key sent as the ``api-key`` header to the image endpoints.
    replicate_api_token:
        Token for the Replicate transport, used when no image endpoints are configured.
    characters_file / library_file:
        YAML files backing the character collection and the saved stories.
    """

    text_endpoint: str | None = None
    text_api_key: str | None = None
    text_model: str = DEFAULT_TEXT_MODEL
    image_generation_endpoint: str | None = None
    image_edit_endpoint: str | None = None
    image_api_key: str | None = None
    replicate_api_token: str | None = None
    replicate_generation_model: str | None = None
    replicate_edit_model: str | None = None
    characters_file: Path = Path("dreamweaver_characters.yaml")
    library_file: Path = Path("dreamweaver_stories.yaml")

    @property
    def uses_image_endpoints(self) -> bool:
        return bool(self.image_generation_endpoint and self.image_edit_endpoint)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "Settings":
        def pick(*names: str) -> str | None:
            for name in names:
                value = values.get(name)
                if value is not None and str(value).strip():
                    return str(value).strip()
            return None

        return cls(
            text_endpoint=pick("DREAMWEAVER_TEXT_ENDPOINT", "AZURE_TEXT_ENDPOINT"),
            text_api_key=pick("DREAMWEAVER_TEXT_KEY", "AZURE_TEXT_KEY"),
            text_model=pick("DREAMWEAVER_TEXT_MODEL", "LITELLM_MODEL") or DEFAULT_TEXT_MODEL,
            image_generation_endpoint=pick(
                "DREAMWEAVER_IMAGE_GEN_ENDPOINT", "AZURE_FLUX_GEN_ENDPOINT"
            ),
            image_edit_endpoint=pick(
                "DREAMWEAVER_IMAGE_EDIT_ENDPOINT", "AZURE_FLUX_EDIT_ENDPOINT"
            ),
            image_api_key=pick("DREAMWEAVER_IMAGE_KEY", "AZURE_FLUX_KEY"),
            replicate_api_token=pick("REPLICATE_API_TOKEN"),
            replicate_generation_model=pick("DREAMWEAVER_REPLICATE_GENERATION_MODEL"),
            replicate_edit_model=pick("DREAMWEAVER_REPLICATE_EDIT_MODEL"),
            characters_file=Path(
                pick("DREAMWEAVER_CHARACTERS_FILE") or "dreamweaver_characters.yaml"
            ).expanduser(),
            library_file=Path(
                pick("DREAMWEAVER_LIBRARY_FILE") or "dreamweaver_stories.yaml"
            ).expanduser(),
        )


def load_settings(
    local_settings: str | Path | None = DEFAULT_LOCAL_SETTINGS,
    *,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """
    Build settings from the environment, overlaid with ``local.settings.json`` when present.

    The overlay accepts either a flat JSON object or the Azure Functions layout that
    nests everything under ``Values``. A malformed overlay is logged and ignored.
    """
    values: dict[str, Any] = dict(os.environ if environ is None else environ)

    if local_settings is not None:
        path = Path(local_settings).expanduser()
        if path.exists():
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                logger.warning("Failed to parse %s; using environment variables only.", path)
            else:
                overlay = raw.get("Values", raw) if isinstance(raw, Mapping) else {}
                if isinstance(overlay, Mapping):
                    logger.info("Loading configuration overlay from %s", path)
                    values.update(overlay)

    return Settings.from_mapping(values)
