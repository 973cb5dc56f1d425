"""
Text generation transports and response-shape extraction helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, MutableMapping, Sequence

import requests
from litellm import completion

from .errors import TransportError, UnparseableResponseError, UpstreamError

ChatMessage = Mapping[str, Any]


@dataclass
class ChatResult:
    """
    Structured response returned from a text generation call.
    """

    text: str
    raw: Any

    @classmethod
    def from_payload(cls, payload: Any) -> "ChatResult":
        return cls(text=extract_response_text(payload), raw=payload)


CompletionCallable = Callable[..., ChatResult]


def _field(container: Any, key: str) -> Any:
    if isinstance(container, Mapping):
        return container.get(key)
    return getattr(container, key, None)


def _first(items: Any) -> Any:
    if isinstance(items, Sequence) and not isinstance(items, (str, bytes)) and items:
        return items[0]
    return None


def _from_message_output(payload: Any) -> str | None:
    output = _field(payload, "output")
    if not isinstance(output, Sequence) or isinstance(output, (str, bytes)):
        return None
    message = next((item for item in output if _field(item, "type") == "message"), None)
    content = _field(message, "content") if message is not None else None
    if not isinstance(content, Sequence) or isinstance(content, (str, bytes)):
        return None
    text_item = next((item for item in content if _field(item, "type") == "output_text"), None)
    text = _field(text_item, "text") if text_item is not None else None
    return text or None


def _from_chat_choices(payload: Any) -> str | None:
    choice = _first(_field(payload, "choices"))
    message = _field(choice, "message") if choice is not None else None
    content = _field(message, "content") if message is not None else None
    return content or None


def _from_flat_content(payload: Any) -> str | None:
    content = _field(payload, "content")
    return content if isinstance(content, str) and content else None


_RESPONSE_SHAPES: tuple[Callable[[Any], str | None], ...] = (
    _from_message_output,
    _from_chat_choices,
    _from_flat_content,
)


def extract_response_text(payload: Any) -> str:
    """
    Pull the generated text out of any of the known upstream response shapes.

    Shapes are tried in a fixed order: a responses-style message output with nested
    content items, a chat-completions ``choices[0].message.content``, and finally a
    flat ``content`` field.
    """
    for extractor in _RESPONSE_SHAPES:
        text = extractor(payload)
        if text:
            return str(text).strip()
    raise UnparseableResponseError(
        "Unable to extract content from API response; no known response shape matched."
    )


def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Invoke LiteLLM's `completion` API and return the consolidated text.
    """
    payload: MutableMapping[str, Any] = {
        "model": model,
        "messages": list(messages),
    }

    if temperature is not None:
        payload["temperature"] = temperature

    if max_tokens is not None:
        payload["max_tokens"] = max_tokens

    if api_key is not None:
        payload["api_key"] = api_key

    payload.update(extra_kwargs)

    try:
        response = completion(**payload)
    except Exception as exc:
        status = getattr(exc, "status_code", None)
        if isinstance(status, int):
            raise UpstreamError("Text", status, str(exc)) from exc
        raise TransportError(f"Text generation request failed: {exc}") from exc

    if hasattr(response, "model_dump"):
        response = response.model_dump()
    return ChatResult.from_payload(response)


def call_text_endpoint(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    endpoint: str,
    api_key: str | None = None,
    timeout: float = 120.0,
    session: requests.Session | None = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    POST ``{model, input}`` to a raw text endpoint and return the consolidated text.

    Non-2xx answers surface as :class:`UpstreamError` carrying the upstream status and
    body verbatim; connection failures surface as :class:`TransportError`.
    """
    body: dict[str, Any] = {"model": model, "input": list(messages)}
    body.update(extra_kwargs)

    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["api-key"] = api_key

    http = session or requests
    try:
        response = http.post(endpoint, json=body, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise TransportError(f"Text endpoint unreachable: {exc}") from exc

    if not response.ok:
        raise UpstreamError("Text", response.status_code, response.text)

    try:
        data = response.json()
    except ValueError as exc:
        raise UnparseableResponseError("Text endpoint did not return JSON.") from exc

    return ChatResult.from_payload(data)
