"""Session-scoped, append-only history of rendered image versions.

A :class:`HistoryStore` holds every image produced during one editing
session as an :class:`ImageVersion`.  Each version points at the version it
was derived from, so the store is a forest: one root per "Generate New" and
a branch wherever an older version was selected and edited.

Only parent pointers are kept.  Nothing needs to enumerate children, and
lineage is recovered by walking ``parent_id`` up to a root.

Lifecycle
---------
- **Empty**: no versions, editing is not possible.
- **HasSelection**: at least one version exists and exactly one is
  selected.  Each successful generate or edit adds a version and selects it.
  Selecting an older version only changes the base for the next edit.

Versions are never updated or removed.  :meth:`HistoryStore.close` drops the
whole store when the session ends.

Example
-------
::

    store = HistoryStore()
    a = store.add_version(b64_a, "image/png", "a fox in the snow")
    b = store.add_version(b64_b, "image/png", "make it sunset", parent_id=a)
    store.select(a)
    d = store.add_version(b64_d, "image/png", "add fireflies", parent_id=a)
    [v.id for v in store.lineage(d)]  # [d, a]
"""

from __future__ import annotations

import base64
import enum
import logging
import secrets
import time
from collections.abc import Iterator
from dataclasses import dataclass, field

from .errors import HistoryError
from .models import IMAGE_MIME_TYPES, extension_for

logger = logging.getLogger(__name__)


class HistoryState(enum.Enum):
    EMPTY = "empty"
    HAS_SELECTION = "has_selection"


@dataclass(frozen=True)
class ImageVersion:
    """One rendered image and its provenance.

    Attributes:
        id: Unique identifier within the owning store.
        image_data: Base64-encoded image payload.
        mime_type: ``image/png`` or ``image/jpeg``.
        origin_prompt: Prompt for a root, edit instruction for a child.
        parent_id: Id of the version this was derived from, or ``None``.
        created_at: Creation time as epoch seconds.
    """

    id: str
    image_data: str
    mime_type: str
    origin_prompt: str
    parent_id: str | None = None
    created_at: float = field(default_factory=time.time)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def filename(self) -> str:
        return f"story-image-{self.id}.{extension_for(self.mime_type)}"

    def image_bytes(self) -> bytes:
        return base64.b64decode(self.image_data)


class HistoryStore:
    """Forest of :class:`ImageVersion` nodes plus the current selection."""

    def __init__(self) -> None:
        self._versions: list[ImageVersion] = []  # newest first
        self._index: dict[str, ImageVersion] = {}
        self._selected_id: str | None = None

    def __len__(self) -> int:
        return len(self._versions)

    def __contains__(self, version_id: object) -> bool:
        return version_id in self._index

    def __iter__(self) -> Iterator[ImageVersion]:
        return iter(tuple(self._versions))

    @property
    def versions(self) -> tuple[ImageVersion, ...]:
        """All versions in display order, newest first."""
        return tuple(self._versions)

    @property
    def state(self) -> HistoryState:
        return HistoryState.HAS_SELECTION if self._selected_id else HistoryState.EMPTY

    @property
    def can_edit(self) -> bool:
        return self.state is HistoryState.HAS_SELECTION

    @property
    def selected_id(self) -> str | None:
        return self._selected_id

    def _new_id(self) -> str:
        while True:
            candidate = f"{time.time_ns():x}-{secrets.token_hex(3)}"
            if candidate not in self._index:
                return candidate

    def add_version(
        self,
        image_data: str,
        mime_type: str,
        origin_prompt: str,
        parent_id: str | None = None,
    ) -> str:
        """Record a new version, make it the newest entry, and select it.

        Args:
            image_data: Base64-encoded image payload.
            mime_type: ``image/png`` or ``image/jpeg``.
            origin_prompt: Prompt or edit instruction that produced the image.
            parent_id: Version the image was derived from, ``None`` for a root.

        Returns:
            The new version's id.

        Raises:
            HistoryError: If ``parent_id`` is unknown or ``mime_type`` is not
                supported.  The store is left unchanged.
        """
        if mime_type not in IMAGE_MIME_TYPES:
            raise HistoryError(f"Unsupported image type: {mime_type}")
        if parent_id is not None and parent_id not in self._index:
            raise HistoryError(f"Unknown parent version: {parent_id}")

        version = ImageVersion(
            id=self._new_id(),
            image_data=image_data,
            mime_type=mime_type,
            origin_prompt=origin_prompt,
            parent_id=parent_id,
        )
        self._versions.insert(0, version)
        self._index[version.id] = version
        self._selected_id = version.id
        logger.debug("Added version %s (parent=%s)", version.id, parent_id)
        return version.id

    def select(self, version_id: str) -> bool:
        """Select a version as the preview and the base for the next edit.

        Unknown ids leave the selection unchanged.

        Returns:
            ``True`` if ``version_id`` is now selected.
        """
        if version_id not in self._index:
            logger.debug("Ignoring selection of unknown version %s", version_id)
            return False
        self._selected_id = version_id
        return True

    def get(self, version_id: str) -> ImageVersion | None:
        return self._index.get(version_id)

    def get_selected(self) -> ImageVersion | None:
        """Return the selected version, or ``None`` while the store is empty."""
        if self._selected_id is None:
            return None
        return self._index[self._selected_id]

    def lineage(self, version_id: str) -> list[ImageVersion]:
        """Return ``version_id`` followed by its ancestors up to the root.

        Raises:
            HistoryError: If ``version_id`` is unknown.
        """
        node = self._index.get(version_id)
        if node is None:
            raise HistoryError(f"Unknown version: {version_id}")

        chain = [node]
        while node.parent_id is not None:
            node = self._index[node.parent_id]
            chain.append(node)
        return chain

    def close(self) -> None:
        """Discard every version and the selection at the end of a session."""
        self._versions.clear()
        self._index.clear()
        self._selected_id = None
