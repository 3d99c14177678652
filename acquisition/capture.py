from __future__ import annotations

import io
import logging
import pathlib
from dataclasses import dataclass
from typing import Any, Protocol

from PIL import Image

logger = logging.getLogger(__name__)

_ENCODING_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "bmp": "image/bmp",
}

# Friendly names accepted for the OpenCV capture API.
OPENCV_BACKENDS = {
    "any": "CAP_ANY",
    "auto": "CAP_ANY",
    "v4l2": "CAP_V4L2",
    "dshow": "CAP_DSHOW",
    "msmf": "CAP_MSMF",
    "avfoundation": "CAP_AVFOUNDATION",
    "gstreamer": "CAP_GSTREAMER",
    "ffmpeg": "CAP_FFMPEG",
}


@dataclass
class Frame:
    """A still image grabbed from a camera, already encoded."""

    data: bytes
    encoding: str = "png"
    width: int | None = None
    height: int | None = None

    @property
    def mime_type(self) -> str:
        key = self.encoding.lower()
        return _ENCODING_MIME_TYPES.get(key, f"image/{key}")


class Camera(Protocol):
    def capture(self) -> Frame: ...

    def release(self) -> None: ...


class StubCamera:
    """Camera stand-in returning a sample image or a generated placeholder."""

    def __init__(
        self,
        sample_path: pathlib.Path | None = None,
        size: tuple[int, int] = (64, 48),
    ) -> None:
        self._sample_path = sample_path
        self._size = size
        self._released = False
        self.captures = 0

    def capture(self) -> Frame:
        if self._released:
            raise RuntimeError("Camera already released")
        self.captures += 1
        if self._sample_path and self._sample_path.exists():
            encoding = self._sample_path.suffix.lstrip(".").lower() or "png"
            return Frame(data=self._sample_path.read_bytes(), encoding=encoding)
        width, height = self._size
        buffer = io.BytesIO()
        Image.new("RGB", (width, height), (86, 130, 3)).save(buffer, format="PNG")
        return Frame(data=buffer.getvalue(), width=width, height=height)

    def release(self) -> None:
        self._released = True

    @property
    def released(self) -> bool:
        return self._released


def resolve_backend(backend: str | int | None, cv2_module: Any) -> int:
    if backend is None:
        return cv2_module.CAP_ANY
    if isinstance(backend, int):
        return backend
    attr_name = OPENCV_BACKENDS.get(backend.strip().lower())
    if attr_name is None:
        raise ValueError(f"Unknown OpenCV backend alias: {backend!r}")
    return getattr(cv2_module, attr_name, cv2_module.CAP_ANY)


class OpenCVCamera:
    """Local or network camera read through OpenCV; frames are encoded as PNG."""

    def __init__(
        self,
        source: int | str = 0,
        *,
        resolution: tuple[int, int] | None = None,
        backend: str | int | None = None,
        warmup_frames: int = 2,
    ) -> None:
        try:
            import cv2  # type: ignore
        except ImportError as exc:  # pragma: no cover - depends on optional dep
            raise RuntimeError("opencv-python is required for OpenCVCamera") from exc

        self._cv2 = cv2
        self.source = source
        capture = cv2.VideoCapture(source, resolve_backend(backend, cv2))
        if not capture.isOpened():
            capture.release()
            raise RuntimeError(f"Unable to open camera source {source!r}")
        self._capture = capture
        # Without an explicit resolution the device keeps its native one.
        if resolution is not None:
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, float(resolution[0]))
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, float(resolution[1]))
        discarded = sum(1 for _ in range(max(0, warmup_frames)) if capture.grab())
        logger.debug("Opened camera source=%r warmup_frames=%d", source, discarded)

    def capture(self) -> Frame:
        if self._capture is None:
            raise RuntimeError("Camera already released")
        ok, image = self._capture.read()
        if not ok or image is None:
            raise RuntimeError("Failed to capture frame from camera")
        encoded, buffer = self._cv2.imencode(".png", image)
        if not encoded:
            raise RuntimeError("OpenCV failed to encode frame as png")
        height, width = image.shape[:2]
        return Frame(data=buffer.tobytes(), encoding="png", width=width, height=height)

    def release(self) -> None:
        capture = getattr(self, "_capture", None)
        self._capture = None
        if capture is not None:
            capture.release()

    def __del__(self) -> None:  # pragma: no cover - destructor best effort
        try:
            self.release()
        except Exception:
            pass


__all__ = ["Frame", "Camera", "StubCamera", "OpenCVCamera", "OPENCV_BACKENDS", "resolve_backend"]
