"""Exception hierarchy for the Story Image Studio.

Every error that can reach the HTTP boundary derives from
:class:`StoryImageError` and carries the status code it maps to.  The
FastAPI application converts these into ``{"error": message}`` responses,
so the message of each exception is written for the end user and is shown
verbatim in the page's status line.

Hierarchy
---------
::

    StoryImageError
    ├── RequestValidationError   400  malformed or out-of-range client input
    ├── NoImageReturnedError     502  provider answered without image data
    ├── ProviderError            500  provider rejection or transport failure
    └── HistoryError                  misuse of a client-side HistoryStore
"""

from __future__ import annotations

import re

# Best-effort match for content-safety rejections.  The provider reports
# these as free text, not as a structured code.
_SAFETY_PATTERN = re.compile(r"safety|policy violation", re.IGNORECASE)


class StoryImageError(Exception):
    """Base class for all user-facing Story Image errors.

    Attributes:
        status_code: HTTP status the error maps to at the request boundary.
    """

    status_code: int = 500


class RequestValidationError(StoryImageError):
    """Client input failed validation; the provider was never called."""

    status_code = 400


class NoImageReturnedError(StoryImageError):
    """The provider responded successfully but included no image payload."""

    status_code = 502


class ProviderError(StoryImageError):
    """The image provider rejected the request or could not be reached.

    The string form combines the provider message with the status code and
    request correlation id when those are known.  Messages that look like a
    content-safety block get retry guidance appended.

    Args:
        message: Human-readable message from the provider or transport.
        status_code: HTTP status reported by the provider, if any.
        request_id: Provider-issued correlation id, if any.
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        request_id: str | None = None,
    ) -> None:
        self.message = message
        self.provider_status = status_code
        self.request_id = request_id
        super().__init__(self.describe())

    @property
    def is_safety_block(self) -> bool:
        """Whether the message suggests a content-safety rejection."""
        return bool(_SAFETY_PATTERN.search(self.message))

    def describe(self) -> str:
        """Compose the single descriptive string shown to the user."""
        details = []
        if self.provider_status is not None:
            details.append(f"status {self.provider_status}")
        if self.request_id:
            details.append(f"request id {self.request_id}")

        text = self.message
        if details:
            text = f"{text} ({', '.join(details)})"

        if self.is_safety_block:
            text = text.rstrip(".") + (
                ". This looks like a safety system rejection: try again with simpler,"
                " more neutral wording."
            )
            if self.request_id:
                text += f" If you contact the provider, include request id {self.request_id}."
        return text


class HistoryError(StoryImageError, ValueError):
    """Invalid operation on a :class:`~storyimage.core.history.HistoryStore`."""
