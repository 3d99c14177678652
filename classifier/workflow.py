from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from acquisition.camera_session import CameraFactory, CameraSession
from acquisition.image_source import ImageAsset, ImageSource
from acquisition.preview import PreviewRegistry
from acquisition.validation import Validator

from .errors import CameraUnavailable, SubmissionInProgress
from .state import PredictionSnapshot, PredictionStateMachine
from .types import Pipeline

logger = logging.getLogger(__name__)

MODES = ("upload", "camera")


class WrongMode(RuntimeError):
    """Raised when an action belongs to the other acquisition mode."""


class RipenessWorkflow:
    """Coordinates image selection, camera capture and prediction.

    Switching modes resets the prediction, drops the selected image and
    stops the camera; entering camera mode opens a fresh session.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        camera_factory: CameraFactory,
        *,
        previews: PreviewRegistry | None = None,
        validator: Validator | None = None,
    ) -> None:
        self.previews = previews or PreviewRegistry()
        self._camera_factory = camera_factory
        self._validator = validator or Validator()
        self._uploads = ImageSource(self.previews)
        self._camera: CameraSession | None = None
        self._mode = "upload"
        self._lock = threading.Lock()
        self._submission = threading.Lock()
        self.machine = PredictionStateMachine(pipeline, self._validator)

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def camera(self) -> CameraSession | None:
        return self._camera

    @property
    def selected(self) -> ImageAsset | None:
        if self._mode == "camera":
            return self._camera.last_capture if self._camera else None
        return self._uploads.current

    def snapshot(self) -> PredictionSnapshot:
        return self.machine.snapshot()

    def switch_mode(self, mode: str, *, secure_context: bool = True) -> None:
        if mode not in MODES:
            raise ValueError(f"Unknown mode {mode!r}; expected one of {', '.join(MODES)}")
        with self._lock:
            self._ensure_no_submission()
            self.machine.reset()
            self._uploads.clear()
            self._stop_camera()
            self._mode = mode
            if mode == "camera":
                self._camera = CameraSession(
                    self._camera_factory,
                    self.previews,
                    secure_context=secure_context,
                )
                self._camera.start()
        logger.info("Switched to %s mode", mode)

    def select_upload(
        self,
        data: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> ImageAsset:
        with self._lock:
            if self._mode != "upload":
                raise WrongMode("Uploads are only accepted in upload mode")
            self._ensure_no_submission()
            self.machine.reset()
            return self._uploads.from_upload(data, filename, content_type)

    def clear_upload(self) -> None:
        with self._lock:
            self._ensure_no_submission()
            self.machine.reset()
            self._uploads.clear()

    def predict(self) -> PredictionSnapshot:
        asset = self.selected
        if asset is None:
            raise RuntimeError("No image selected")
        with self._submitting():
            return self.machine.submit(asset)

    def capture_and_predict(self) -> PredictionSnapshot:
        camera = self._camera
        if self._mode != "camera" or camera is None:
            raise CameraUnavailable("Camera mode is not active.")
        with self._submitting():
            # A rejected capture must leave the in-flight image and preview untouched.
            self.machine.ensure_idle()
            try:
                asset = camera.capture_frame()
            except CameraUnavailable as exc:
                self.machine.record_failure(exc)
                raise
            return self.machine.submit(asset)

    def reset(self) -> PredictionSnapshot:
        self._ensure_no_submission()
        return self.machine.reset()

    def close(self) -> None:
        with self._lock:
            self._stop_camera()
            self._uploads.close()
        logger.info("Workflow closed active_previews=%d", self.previews.active_count())

    def __enter__(self) -> "RipenessWorkflow":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def _submitting(self) -> Iterator[None]:
        if not self._submission.acquire(blocking=False):
            raise SubmissionInProgress()
        try:
            yield
        finally:
            self._submission.release()

    def _ensure_no_submission(self) -> None:
        if self._submission.locked():
            raise SubmissionInProgress()

    def _stop_camera(self) -> None:
        camera, self._camera = self._camera, None
        if camera is not None:
            camera.stop()


__all__ = ["MODES", "RipenessWorkflow", "WrongMode"]
