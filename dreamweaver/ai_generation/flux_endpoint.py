"""
Direct transport to FLUX-style generation and edit endpoints with bounded retry.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable

import requests

from dreamweaver.common import TransportError, UpstreamError

from .prompting import ImageMode

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0


def strip_data_uri(image: str) -> str:
    """Return the raw base64 payload of a data URI; other strings pass through."""
    if image.startswith("data:image") and "," in image:
        return image.split(",", 1)[1]
    return image


class FluxEndpointBackend:
    """
    Posts image requests to the generation or edit endpoint depending on the mode.

    Transient failures (5xx, 429, connection errors) are retried with a fixed backoff;
    any other 4xx fails fast with the upstream status and body.
    """

    def __init__(
        self,
        *,
        generation_endpoint: str | None = None,
        edit_endpoint: str | None = None,
        api_key: str | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        timeout: float = 180.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._generation_endpoint = generation_endpoint or os.getenv(
            "DREAMWEAVER_IMAGE_GEN_ENDPOINT"
        )
        self._edit_endpoint = edit_endpoint or os.getenv("DREAMWEAVER_IMAGE_EDIT_ENDPOINT")
        if not self._generation_endpoint or not self._edit_endpoint:
            raise ValueError(
                "Both image endpoints are required. Set DREAMWEAVER_IMAGE_GEN_ENDPOINT and "
                "DREAMWEAVER_IMAGE_EDIT_ENDPOINT or pass them explicitly."
            )
        self._api_key = api_key or os.getenv("DREAMWEAVER_IMAGE_KEY")
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._timeout = timeout
        self._session = session or requests.Session()
        self._sleep = sleep

    def build_payload(self, *, mode: ImageMode, prompt: str, image: str | None) -> tuple[str, dict[str, Any]]:
        payload: dict[str, Any] = {
            "prompt": prompt,
            "width": 1024,
            "height": 1024,
            "steps": 25,
            "response_format": "b64_json",
        }
        if mode == "edit" and image:
            payload["image"] = strip_data_uri(image)
            payload["strength"] = 0.75
            return self._edit_endpoint, payload

        payload["strength"] = 1.0
        return self._generation_endpoint, payload

    def __call__(self, *, mode: ImageMode, prompt: str, image: str | None) -> Any:
        endpoint, payload = self.build_payload(mode=mode, prompt=prompt, image=image)
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["api-key"] = self._api_key

        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                response = self._session.post(
                    endpoint, json=payload, headers=headers, timeout=self._timeout
                )
            except requests.RequestException as exc:
                last_error = TransportError(f"Image endpoint unreachable: {exc}")
            else:
                if response.ok:
                    return response.json()
                error = UpstreamError("Image", response.status_code, response.text)
                if not error.is_transient:
                    raise error
                last_error = error

            logger.warning("Image attempt %d/%d failed: %s", attempt, self._max_attempts, last_error)
            if attempt < self._max_attempts:
                self._sleep(self._backoff_seconds)

        raise last_error or TransportError("Image endpoint was never attempted.")
