"""Python session client for a running Story Image server.

:class:`StoryImageSession` does from Python what the served page does in the
browser: it posts to ``/generate`` and ``/edit``, records every returned image
in its own :class:`~storyimage.core.history.HistoryStore`, lets you select
any earlier version as the base of the next edit, and writes versions to
disk.

One session owns one history.  Closing the session (or leaving its ``with``
block) discards the history along with the HTTP client it created.

Example
-------
::

    with StoryImageSession("http://localhost:3000") as session:
        fox = session.generate("A small fox reading under a lantern")
        session.edit("Make it sunset")
        session.select(fox.id)
        session.edit("Add glowing fireflies")  # branches from the first image
        session.download("fireflies.png")
"""

from __future__ import annotations

import base64
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from storyimage.core.errors import StoryImageError
from storyimage.core.history import HistoryStore, ImageVersion
from storyimage.core.models import DEFAULT_OUTPUT_COMPRESSION, extension_for

logger = logging.getLogger(__name__)


class SessionError(StoryImageError):
    """The session cannot perform the requested action."""


class SessionBusyError(SessionError):
    """A render request is already outstanding on this session."""


class RenderRequestError(SessionError):
    """The server rejected a render request.

    Attributes:
        status_code: HTTP status returned by the server.
    """

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ClientSettings:
    """Render settings as sent by the client.

    The server validates these; nothing is checked here.
    """

    size: str = "1024x1024"
    quality: str = "medium"
    output_format: str = "png"
    output_compression: int = DEFAULT_OUTPUT_COMPRESSION

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "size": self.size,
            "quality": self.quality,
            "output_format": self.output_format,
        }
        if self.output_format == "jpeg":
            payload["output_compression"] = self.output_compression
        return payload


def reference_from_file(path: str | Path) -> dict[str, str]:
    """Build a ``reference_images`` entry from an image file on disk."""
    path = Path(path)
    suffix = path.suffix.lower()
    mime_type = "image/jpeg" if suffix in (".jpg", ".jpeg") else "image/png"
    return {
        "name": path.name,
        "mime_type": mime_type,
        "b64": base64.b64encode(path.read_bytes()).decode("ascii"),
    }


class StoryImageSession:
    """A generate/edit session against a Story Image server.

    Args:
        base_url: Server root, e.g. ``http://localhost:3000``.
        http_client: Existing :class:`httpx.Client` to use.  It is not closed
            by the session.  When omitted, the session creates and owns one.
        timeout: Timeout for a created client; ``None`` waits indefinitely,
            matching the page, which has no cancellation either.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        http_client: httpx.Client | None = None,
        timeout: float | None = None,
    ) -> None:
        self._owns_client = http_client is None
        if http_client is None:
            http_client = httpx.Client(base_url=base_url, timeout=timeout)
        self._http = http_client
        self.history = HistoryStore()
        self._busy = threading.Lock()

    def __enter__(self) -> StoryImageSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """End the session, discarding its history."""
        self.history.close()
        if self._owns_client:
            self._http.close()

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self._busy.acquire(blocking=False):
            raise SessionBusyError("A request is already in progress")
        try:
            response = self._http.post(path, json=payload)
        finally:
            self._busy.release()

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error:
            message = data.get("error") if isinstance(data, dict) else None
            raise RenderRequestError(message or "Request failed", response.status_code)
        return data

    def generate(
        self,
        prompt: str,
        settings: ClientSettings | None = None,
        reference_images: Sequence[dict[str, str]] | None = None,
    ) -> ImageVersion:
        """Generate a new root version from ``prompt``.

        Raises:
            RenderRequestError: If the server answered with an error.
            SessionBusyError: If another request is outstanding.
        """
        payload = {"prompt": prompt, **(settings or ClientSettings()).to_payload()}
        if reference_images:
            payload["reference_images"] = list(reference_images)

        data = self._post("/generate", payload)
        version_id = self.history.add_version(data["b64"], data["mime_type"], prompt)
        return self.history.get(version_id)

    def edit(
        self,
        prompt: str,
        settings: ClientSettings | None = None,
        reference_images: Sequence[dict[str, str]] | None = None,
    ) -> ImageVersion:
        """Edit the selected version and record the result as its child.

        Raises:
            SessionError: If nothing has been generated yet.
            RenderRequestError: If the server answered with an error.
            SessionBusyError: If another request is outstanding.
        """
        base = self.history.get_selected()
        if base is None:
            raise SessionError("Generate an image first, then select one to edit.")

        payload = {
            "prompt": prompt,
            **(settings or ClientSettings()).to_payload(),
            "image_b64": base.image_data,
            "image_mime_type": base.mime_type,
        }
        if reference_images:
            payload["reference_images"] = list(reference_images)

        data = self._post("/edit", payload)
        version_id = self.history.add_version(
            data["b64"], data["mime_type"], prompt, parent_id=base.id
        )
        return self.history.get(version_id)

    def select(self, version_id: str) -> bool:
        """Select a version as the base for the next edit."""
        return self.history.select(version_id)

    def download(self, path: str | Path, version_id: str | None = None) -> Path:
        """Write a version's image to ``path``.

        If ``path`` is a directory the version's own filename is used.  A
        path without a suffix gets the extension matching the image type.

        Raises:
            SessionError: If there is no such version.
        """
        version = (
            self.history.get(version_id)
            if version_id is not None
            else self.history.get_selected()
        )
        if version is None:
            raise SessionError("No image to download")

        target = Path(path)
        if target.is_dir():
            target = target / version.filename
        elif not target.suffix:
            target = target.with_suffix(f".{extension_for(version.mime_type)}")

        target.write_bytes(version.image_bytes())
        logger.info("Saved version %s to %s", version.id, target)
        return target
