from __future__ import annotations

import io
import logging
import mimetypes
import threading
from dataclasses import dataclass, field
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .capture import Frame
from .preview import PreviewHandle, PreviewRegistry

logger = logging.getLogger(__name__)

GENERIC_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class ImageAsset:
    """A binary image plus metadata, independent of how it was acquired."""

    data: bytes = field(repr=False)
    mime_type: str
    size_bytes: int
    preview: PreviewHandle
    filename: str | None = None


def sniff_mime_type(data: bytes) -> str | None:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
    except (UnidentifiedImageError, OSError, ValueError):
        return None
    if not image_format:
        return None
    return Image.MIME.get(image_format.upper())


def resolve_mime_type(
    data: bytes, filename: str | None = None, content_type: str | None = None
) -> str:
    declared = (content_type or "").split(";", 1)[0].strip().lower()
    if declared and declared != GENERIC_MIME_TYPE:
        return declared
    sniffed = sniff_mime_type(data)
    if sniffed:
        return sniffed
    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        if guessed:
            return guessed
    return GENERIC_MIME_TYPE


class ImageSource:
    """Turns file picks, drops and camera frames into ImageAssets.

    The source owns the asset it produced last: wrapping a new image revokes
    the previous preview before the replacement is published, and ``clear`` or
    ``close`` revoke the current one. Nothing is rejected here; feasibility is
    decided by the Validator.
    """

    def __init__(self, previews: PreviewRegistry) -> None:
        self._previews = previews
        self._lock = threading.Lock()
        self._current: ImageAsset | None = None
        self._closed = False

    @property
    def current(self) -> ImageAsset | None:
        with self._lock:
            return self._current

    def from_upload(
        self,
        data: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> ImageAsset:
        """Wrap bytes received from a browse dialog or a drag-and-drop."""
        mime_type = resolve_mime_type(data, filename, content_type)
        return self._install(data, mime_type, filename)

    def from_file(self, path: Path | str) -> ImageAsset:
        file_path = Path(path)
        data = file_path.read_bytes()
        mime_type = resolve_mime_type(data, file_path.name)
        return self._install(data, mime_type, file_path.name)

    def from_captured_frame(self, frame: Frame) -> ImageAsset:
        filename = f"capture.{frame.encoding.lower()}"
        return self._install(frame.data, frame.mime_type, filename)

    def clear(self) -> None:
        with self._lock:
            previous, self._current = self._current, None
        if previous is not None:
            self._previews.revoke(previous.preview)

    def close(self) -> None:
        self.clear()
        with self._lock:
            self._closed = True

    def _install(self, data: bytes, mime_type: str, filename: str | None) -> ImageAsset:
        with self._lock:
            if self._closed:
                raise RuntimeError("ImageSource is closed")
            previous = self._current
            if previous is not None:
                self._previews.revoke(previous.preview)
                self._current = None
            asset = ImageAsset(
                data=bytes(data),
                mime_type=mime_type,
                size_bytes=len(data),
                preview=self._previews.create(data, mime_type),
                filename=filename,
            )
            self._current = asset
        logger.debug(
            "Image selected filename=%s mime=%s size=%d",
            filename,
            mime_type,
            asset.size_bytes,
        )
        return asset


__all__ = [
    "GENERIC_MIME_TYPE",
    "ImageAsset",
    "ImageSource",
    "resolve_mime_type",
    "sniff_mime_type",
]
