"""
Persistence for saved social stories.
"""

from .library import SavedSocialStory, StoryLibrary

__all__ = ["SavedSocialStory", "StoryLibrary"]
