from __future__ import annotations

import enum
import logging
import threading
from typing import Callable

from classifier.errors import INSECURE_CONTEXT_REASON, CameraUnavailable

from .capture import Camera, Frame
from .image_source import ImageAsset, ImageSource
from .preview import PreviewRegistry

logger = logging.getLogger(__name__)

# Receives the preferred facing ("environment" or "user") and returns an open camera.
CameraFactory = Callable[[str], Camera]


class Readiness(enum.Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"


class CameraSession:
    """Owns one camera device between ``start`` and ``stop``.

    ``stop`` is safe from any state and may be called repeatedly. Using the
    session as a context manager guarantees the device is released on every
    exit path.
    """

    def __init__(
        self,
        factory: CameraFactory,
        previews: PreviewRegistry,
        *,
        secure_context: bool = True,
        facing: str = "environment",
    ) -> None:
        self._factory = factory
        self._source = ImageSource(previews)
        self._secure_context = secure_context
        self._facing = facing
        self._lock = threading.RLock()
        self._camera: Camera | None = None
        self._readiness = Readiness.NOT_STARTED
        self._reason: str | None = None

    @property
    def readiness(self) -> Readiness:
        return self._readiness

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def is_ready(self) -> bool:
        return self._readiness is Readiness.READY

    @property
    def last_capture(self) -> ImageAsset | None:
        return self._source.current

    def start(self) -> Readiness:
        with self._lock:
            if self._readiness is not Readiness.NOT_STARTED:
                return self._readiness
            if not self._secure_context:
                self._fail(INSECURE_CONTEXT_REASON)
                return self._readiness
            self._readiness = Readiness.STARTING
            try:
                camera = self._factory(self._facing)
            except (RuntimeError, OSError, ValueError) as exc:
                logger.warning("Camera error: %s", exc)
                self._fail(CameraUnavailable.message)
                return self._readiness
            self._camera = camera
            self._readiness = Readiness.READY
            self._reason = None
        logger.info("Camera session ready facing=%s", self._facing)
        return self._readiness

    def capture_frame(self) -> ImageAsset:
        """Grab the current frame as a still image; the session stays live."""
        with self._lock:
            frame = self._read_frame()
            return self._source.from_captured_frame(frame)

    def latest_frame(self) -> Frame:
        return self._read_frame()

    def stop(self) -> None:
        with self._lock:
            camera, self._camera = self._camera, None
            try:
                if camera is not None:
                    try:
                        camera.release()
                    except Exception as exc:
                        logger.warning("Failed to release camera: %s", exc)
                    logger.info("Camera session stopped")
            finally:
                self._source.clear()
                self._readiness = Readiness.NOT_STARTED
                self._reason = None

    def __enter__(self) -> "CameraSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _read_frame(self) -> Frame:
        with self._lock:
            if self._readiness is not Readiness.READY or self._camera is None:
                raise CameraUnavailable(self._reason or "Camera is not ready.")
            try:
                return self._camera.capture()
            except RuntimeError as exc:
                logger.warning("Frame capture failed: %s", exc)
                raise CameraUnavailable("Failed to capture frame from camera") from exc

    def _fail(self, reason: str) -> None:
        self._readiness = Readiness.FAILED
        self._reason = reason
        logger.warning("Camera unavailable: %s", reason)


__all__ = ["CameraFactory", "CameraSession", "Readiness"]
