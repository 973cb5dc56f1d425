"""
Error taxonomy shared by the DreamWeaver generation clients and orchestrators.
"""

from __future__ import annotations


class StoryGenerationError(RuntimeError):
    """Base class for failures that abort a narrative step."""


class TransportError(StoryGenerationError):
    """A collaborator could not be reached (network or connection failure)."""


class UpstreamError(StoryGenerationError):
    """A collaborator answered with a non-2xx status."""

    def __init__(self, service: str, status: int, body: str) -> None:
        super().__init__(f"{service} API Error ({status}): {body}")
        self.service = service
        self.status = status
        self.body = body

    @property
    def is_transient(self) -> bool:
        return self.status >= 500 or self.status == 429


class ParseError(StoryGenerationError, ValueError):
    """The response could not be turned into the expected structure."""


class UnparseableResponseError(ParseError):
    """None of the known response shapes carried any text content."""


class InvalidContentError(ParseError):
    """The extracted text was not the strict structured payload we asked for."""


class CompositeError(StoryGenerationError):
    """A reference lineup could not be assembled from its source images."""


class NarrativeTransitionError(StoryGenerationError):
    """An event arrived that is not valid for the current narrative phase."""
