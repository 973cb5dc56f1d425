"""
Common utilities shared across DreamWeaver modules.
"""

from .config import Settings, load_settings
from .errors import (
    CompositeError,
    InvalidContentError,
    NarrativeTransitionError,
    ParseError,
    StoryGenerationError,
    TransportError,
    UnparseableResponseError,
    UpstreamError,
)
from .llm import (
    ChatResult,
    CompletionCallable,
    call_chat_completion,
    call_text_endpoint,
    extract_response_text,
)

__all__ = [
    "ChatResult",
    "CompletionCallable",
    "CompositeError",
    "InvalidContentError",
    "NarrativeTransitionError",
    "ParseError",
    "Settings",
    "StoryGenerationError",
    "TransportError",
    "UnparseableResponseError",
    "UpstreamError",
    "call_chat_completion",
    "call_text_endpoint",
    "extract_response_text",
    "load_settings",
]
