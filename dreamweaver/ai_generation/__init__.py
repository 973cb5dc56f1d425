"""
AI image generation package for DreamWeaver.
"""

from .flux_endpoint import FluxEndpointBackend
from .image_service import (
    ImageBackend,
    ImageGenerationClient,
    ImageResult,
    extract_image_reference,
)
from .prompting import ImagePrompt, build_reference_sheet_prompt, build_scene_prompt
from .replicate_service import ReplicateImageBackend, normalize_image_outputs

__all__ = [
    "FluxEndpointBackend",
    "ImageBackend",
    "ImageGenerationClient",
    "ImagePrompt",
    "ImageResult",
    "ReplicateImageBackend",
    "build_reference_sheet_prompt",
    "build_scene_prompt",
    "extract_image_reference",
    "normalize_image_outputs",
]
