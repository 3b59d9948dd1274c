"""Core functionality for the Story Image Studio.

- **validation**: turns untrusted request bodies into tagged jobs
- **dispatcher**: performs the single provider call for a job
- **history**: the session-scoped, branchable version history
- **config**: environment-driven settings (Pydantic Settings)
- **errors**: user-facing exception hierarchy
"""

from storyimage.core.config import StoryImageConfig, config
from storyimage.core.dispatcher import ImageDispatcher
from storyimage.core.errors import (
    HistoryError,
    NoImageReturnedError,
    ProviderError,
    RequestValidationError,
    StoryImageError,
)
from storyimage.core.history import HistoryState, HistoryStore, ImageVersion
from storyimage.core.validation import validate_edit_request, validate_generate_request

__all__ = [
    "HistoryError",
    "HistoryState",
    "HistoryStore",
    "ImageDispatcher",
    "ImageVersion",
    "NoImageReturnedError",
    "ProviderError",
    "RequestValidationError",
    "StoryImageConfig",
    "StoryImageError",
    "config",
    "validate_edit_request",
    "validate_generate_request",
]
