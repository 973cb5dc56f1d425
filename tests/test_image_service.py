from __future__ import annotations

from typing import Any

import pytest
import requests

from dreamweaver.ai_generation import (
    FluxEndpointBackend,
    ImageGenerationClient,
    ReplicateImageBackend,
    extract_image_reference,
    normalize_image_outputs,
)
from dreamweaver.ai_generation.replicate_service import profile_for
from dreamweaver.common import UnparseableResponseError, UpstreamError


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"output_url": "https://a/out.png", "url": "https://b"}, "https://a/out.png"),
        ({"url": "https://b/img.png"}, "https://b/img.png"),
        ({"data": [{"url": "https://c/img.png"}]}, "https://c/img.png"),
        ({"data": [{"b64_json": "QUJD"}]}, "data:image/png;base64,QUJD"),
        ({"images": ["https://d/img.png"]}, "https://d/img.png"),
        ({"images": ["QUJD"]}, "data:image/png;base64,QUJD"),
        ({"images": [{"url": "https://e/img.png"}]}, "https://e/img.png"),
    ],
)
def test_extract_image_reference_shapes(payload: dict[str, Any], expected: str) -> None:
    assert extract_image_reference(payload) == expected


def test_extract_image_reference_rejects_unknown_payload() -> None:
    with pytest.raises(UnparseableResponseError):
        extract_image_reference({"status": "ok"})


class _RecordingBackend:
    def __init__(self, result: Any = None, error: Exception | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self._result = result if result is not None else {"url": "https://img/1.png"}
        self._error = error

    def __call__(self, *, mode: str, prompt: str, image: str | None) -> Any:
        self.calls.append({"mode": mode, "prompt": prompt, "image": image})
        if self._error is not None:
            raise self._error
        return self._result


def test_scene_with_reference_uses_edit_mode_and_identity_lock() -> None:
    backend = _RecordingBackend()
    client = ImageGenerationClient(backend)

    result = client.generate_scene_image("Remy in a cave", "watercolor", "data:image/png;base64,AAA")

    call = backend.calls[0]
    assert call["mode"] == "edit"
    assert call["image"] == "data:image/png;base64,AAA"
    assert "STRICT COLOR AND IDENTITY CONSISTENCY REQUIRED" in call["prompt"]
    assert "Do not redesign the characters" in call["prompt"]
    assert result.image_url == "https://img/1.png"
    assert result.debug_prompt == call["prompt"]


def test_scene_without_reference_uses_generation_mode() -> None:
    backend = _RecordingBackend()
    client = ImageGenerationClient(backend)

    result = client.generate_scene_image("A cave", "crayon")

    assert backend.calls[0]["mode"] == "generation"
    assert backend.calls[0]["image"] is None
    assert result.debug_prompt.startswith("A cave. Art style: crayon.")


def test_image_failures_are_returned_not_raised() -> None:
    backend = _RecordingBackend(error=UpstreamError("Image", 500, "boom"))
    client = ImageGenerationClient(backend)

    result = client.generate_character_reference("a small red fox", "cartoon")

    assert not result.succeeded
    assert result.image_url == ""
    assert result.debug_prompt.startswith("FAILED: Image API Error (500): boom \n\n ATTEMPTED PROMPT: ")
    assert "a small red fox" in result.debug_prompt


def test_unparseable_image_payload_is_a_failed_result() -> None:
    client = ImageGenerationClient(_RecordingBackend(result={"nothing": True}))

    result = client.generate_scene_image("A cave", "crayon")

    assert result.image_url == ""
    assert "No image URL found" in result.debug_prompt


class _Response:
    def __init__(self, status_code: int, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        return self._payload


class _ScriptedSession:
    def __init__(self, outcomes: list[Any]) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> _Response:
        self.calls.append({"url": url, **kwargs})
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _backend(session: _ScriptedSession, sleeps: list[float]) -> FluxEndpointBackend:
    return FluxEndpointBackend(
        generation_endpoint="https://gen",
        edit_endpoint="https://edit",
        api_key="img-key",
        session=session,
        sleep=sleeps.append,
    )


def test_flux_backend_retries_transient_failures() -> None:
    session = _ScriptedSession(
        [
            _Response(503, text="busy"),
            requests.ConnectionError("reset"),
            _Response(200, {"data": [{"b64_json": "QUJD"}]}),
        ]
    )
    sleeps: list[float] = []

    payload = _backend(session, sleeps)(mode="generation", prompt="a fox", image=None)

    assert payload == {"data": [{"b64_json": "QUJD"}]}
    assert len(session.calls) == 3
    assert sleeps == [1.0, 1.0]
    assert session.calls[0]["url"] == "https://gen"
    assert session.calls[0]["json"]["strength"] == 1.0


def test_flux_backend_fails_fast_on_client_errors() -> None:
    session = _ScriptedSession([_Response(400, text="bad prompt")])
    sleeps: list[float] = []

    with pytest.raises(UpstreamError) as excinfo:
        _backend(session, sleeps)(mode="generation", prompt="a fox", image=None)

    assert excinfo.value.status == 400
    assert len(session.calls) == 1
    assert sleeps == []


def test_flux_backend_gives_up_after_three_attempts() -> None:
    session = _ScriptedSession([_Response(429, text="slow")] * 3)
    sleeps: list[float] = []

    with pytest.raises(UpstreamError):
        _backend(session, sleeps)(mode="generation", prompt="a fox", image=None)

    assert len(session.calls) == 3
    assert sleeps == [1.0, 1.0]


def test_flux_backend_strips_data_uri_for_edits() -> None:
    session = _ScriptedSession([_Response(200, {"url": "https://out"})])

    _backend(session, [])(mode="edit", prompt="scene", image="data:image/png;base64,QUJD")

    call = session.calls[0]
    assert call["url"] == "https://edit"
    assert call["json"]["image"] == "QUJD"
    assert call["json"]["strength"] == 0.75
    assert call["headers"]["api-key"] == "img-key"


class _FileOutput:
    def __init__(self, url: str) -> None:
        self.url = url


class _FakeReplicate:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def run(self, model: str, input: dict[str, Any]) -> Any:
        self.calls.append((model, input))
        return [_FileOutput("https://replicate/out.png")]


def test_replicate_backend_routes_modes_to_models() -> None:
    fake = _FakeReplicate()
    backend = ReplicateImageBackend(client=fake)
    client = ImageGenerationClient(backend)

    sheet = client.generate_character_reference("a blue bear", "cartoon")
    scene = client.generate_scene_image("the bear dances", "cartoon", "https://ref/lineup.png")

    assert sheet.image_url == "https://replicate/out.png"
    assert scene.image_url == "https://replicate/out.png"
    assert fake.calls[0][0] == "black-forest-labs/flux-schnell"
    assert "input_image" not in fake.calls[0][1]
    assert fake.calls[1][0] == "black-forest-labs/flux-kontext-pro"
    assert fake.calls[1][1]["input_image"] == "https://ref/lineup.png"


def test_replicate_outputs_are_flattened_to_urls() -> None:
    assert normalize_image_outputs(None) == []
    assert normalize_image_outputs(list("https://x/a.png")) == ["https://x/a.png"]
    assert normalize_image_outputs([_FileOutput("https://x/1.png"), [b"https://x/2.png"]]) == [
        "https://x/1.png",
        "https://x/2.png",
    ]


def test_unknown_replicate_model_is_rejected() -> None:
    assert profile_for("Black-Forest-Labs/FLUX-Kontext-Pro:abc123").image_key == "input_image"
    with pytest.raises(ValueError, match="No input profile"):
        profile_for("someone/other-model")
