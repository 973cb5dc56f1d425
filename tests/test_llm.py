from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
import requests

from dreamweaver.common import (
    TransportError,
    UnparseableResponseError,
    UpstreamError,
    call_chat_completion,
    call_text_endpoint,
    extract_response_text,
)
from dreamweaver.common import llm as llm_module


class _Response:
    def __init__(self, status_code: int, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _Session:
    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> _Response:
        self.calls.append({"url": url, **kwargs})
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def test_extract_prefers_message_output_over_other_shapes() -> None:
    payload = {
        "output": [
            {"type": "reasoning", "content": []},
            {"type": "message", "content": [{"type": "output_text", "text": '{"a": 1}'}]},
        ],
        "choices": [{"message": {"content": "ignored"}}],
        "content": "ignored too",
    }

    assert extract_response_text(payload) == '{"a": 1}'


def test_extract_reads_chat_choices_then_flat_content() -> None:
    assert extract_response_text({"choices": [{"message": {"content": " hi "}}]}) == "hi"
    assert extract_response_text({"content": "flat"}) == "flat"


def test_extract_handles_attribute_style_objects() -> None:
    payload = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="obj"))])

    assert extract_response_text(payload) == "obj"


def test_extract_raises_when_no_shape_matches() -> None:
    with pytest.raises(UnparseableResponseError):
        extract_response_text({"choices": []})


def test_call_text_endpoint_posts_model_and_input() -> None:
    session = _Session(_Response(200, {"content": "done"}))

    result = call_text_endpoint(
        model="gpt-test",
        messages=[{"role": "user", "content": "hello"}],
        endpoint="https://text.example/api",
        api_key="secret",
        session=session,
    )

    assert result.text == "done"
    call = session.calls[0]
    assert call["url"] == "https://text.example/api"
    assert call["json"] == {"model": "gpt-test", "input": [{"role": "user", "content": "hello"}]}
    assert call["headers"]["api-key"] == "secret"


def test_call_text_endpoint_surfaces_upstream_status_and_body() -> None:
    session = _Session(_Response(503, text="overloaded"))

    with pytest.raises(UpstreamError) as excinfo:
        call_text_endpoint(model="m", messages=[], endpoint="https://x", session=session)

    assert excinfo.value.status == 503
    assert excinfo.value.body == "overloaded"
    assert str(excinfo.value) == "Text API Error (503): overloaded"
    assert excinfo.value.is_transient


def test_call_text_endpoint_wraps_network_failures() -> None:
    session = _Session(requests.ConnectionError("refused"))

    with pytest.raises(TransportError):
        call_text_endpoint(model="m", messages=[], endpoint="https://x", session=session)


def test_call_chat_completion_uses_litellm(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def fake_completion(**kwargs: Any) -> dict[str, Any]:
        captured.update(kwargs)
        return {"choices": [{"message": {"content": "from litellm"}}]}

    monkeypatch.setattr(llm_module, "completion", fake_completion)

    result = call_chat_completion(
        model="gpt-test",
        messages=[{"role": "user", "content": "hi"}],
        api_key="k",
    )

    assert result.text == "from litellm"
    assert captured["model"] == "gpt-test"
    assert captured["api_key"] == "k"
    assert "temperature" not in captured


def test_call_chat_completion_maps_status_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    class RateLimited(Exception):
        status_code = 429

    def fake_completion(**kwargs: Any) -> Any:
        raise RateLimited("slow down")

    monkeypatch.setattr(llm_module, "completion", fake_completion)

    with pytest.raises(UpstreamError) as excinfo:
        call_chat_completion(model="m", messages=[])

    assert excinfo.value.status == 429
