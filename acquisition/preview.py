from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class PreviewError(RuntimeError):
    """Raised when a preview handle is unknown or was already released."""


@dataclass(frozen=True)
class PreviewHandle:
    """Opaque reference to a displayable copy of an image."""

    id: str

    @property
    def url(self) -> str:
        return f"/previews/{self.id}"


class PreviewRegistry:
    """In-memory store backing preview handles until they are revoked."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[bytes, str]] = {}

    def create(self, data: bytes, mime_type: str) -> PreviewHandle:
        handle = PreviewHandle(id=uuid.uuid4().hex)
        with self._lock:
            self._entries[handle.id] = (bytes(data), mime_type)
        logger.debug("Preview created id=%s bytes=%d", handle.id, len(data))
        return handle

    def open(self, handle: PreviewHandle | str) -> tuple[bytes, str]:
        key = handle.id if isinstance(handle, PreviewHandle) else handle
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            raise PreviewError(f"Unknown preview handle {key!r}")
        return entry

    def revoke(self, handle: PreviewHandle) -> None:
        with self._lock:
            entry = self._entries.pop(handle.id, None)
        if entry is None:
            raise PreviewError(f"Preview handle {handle.id!r} already revoked")
        logger.debug("Preview revoked id=%s", handle.id)

    def is_active(self, handle: PreviewHandle) -> bool:
        with self._lock:
            return handle.id in self._entries

    def active_count(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["PreviewError", "PreviewHandle", "PreviewRegistry"]
