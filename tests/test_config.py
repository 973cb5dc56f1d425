from __future__ import annotations

import json
from pathlib import Path

from dreamweaver.common import load_settings
from dreamweaver.common.config import DEFAULT_TEXT_MODEL


def test_load_settings_reads_environment(tmp_path: Path) -> None:
    settings = load_settings(
        tmp_path / "missing.json",
        environ={
            "DREAMWEAVER_TEXT_ENDPOINT": "https://text.example",
            "DREAMWEAVER_TEXT_KEY": "t-key",
            "DREAMWEAVER_IMAGE_GEN_ENDPOINT": "https://gen.example",
            "DREAMWEAVER_IMAGE_EDIT_ENDPOINT": "https://edit.example",
            "DREAMWEAVER_LIBRARY_FILE": str(tmp_path / "stories.yaml"),
        },
    )

    assert settings.text_endpoint == "https://text.example"
    assert settings.text_api_key == "t-key"
    assert settings.text_model == DEFAULT_TEXT_MODEL
    assert settings.uses_image_endpoints
    assert settings.library_file == tmp_path / "stories.yaml"


def test_load_settings_accepts_azure_names_and_values_overlay(tmp_path: Path) -> None:
    overlay = tmp_path / "local.settings.json"
    overlay.write_text(
        json.dumps(
            {
                "IsEncrypted": False,
                "Values": {
                    "AZURE_TEXT_ENDPOINT": "https://azure-text.example",
                    "AZURE_FLUX_GEN_ENDPOINT": "https://azure-gen.example",
                    "LITELLM_MODEL": "overlay-model",
                },
            }
        ),
        encoding="utf-8",
    )

    settings = load_settings(overlay, environ={"AZURE_TEXT_ENDPOINT": "https://env.example"})

    assert settings.text_endpoint == "https://azure-text.example"
    assert settings.text_model == "overlay-model"
    assert settings.image_generation_endpoint == "https://azure-gen.example"
    assert not settings.uses_image_endpoints


def test_malformed_overlay_is_ignored(tmp_path: Path) -> None:
    overlay = tmp_path / "local.settings.json"
    overlay.write_text("{not json", encoding="utf-8")

    settings = load_settings(overlay, environ={"DREAMWEAVER_TEXT_MODEL": "env-model"})

    assert settings.text_model == "env-model"
