"""
Printable exports for DreamWeaver stories.
"""

from .builder import PAGE_SIZES, SocialStoryPDFBuilder

__all__ = ["PAGE_SIZES", "SocialStoryPDFBuilder"]
