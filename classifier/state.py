from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from acquisition.validation import Validator

from .errors import (
    CameraUnavailable,
    ExhaustedRetries,
    PredictionError,
    SubmissionInProgress,
)
from .types import OutcomeKind, Pipeline, PredictionRequest, PredictionResult

if TYPE_CHECKING:  # pragma: no cover - typing only
    from acquisition.image_source import ImageAsset

logger = logging.getLogger(__name__)


class PredictionState(enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class FailureInfo:
    kind: str
    message: str
    detail: str | None = None


@dataclass(frozen=True)
class PredictionSnapshot:
    state: PredictionState
    result: PredictionResult | None = None
    error: FailureInfo | None = None

    @property
    def loading(self) -> bool:
        return self.state is PredictionState.SUBMITTING


Listener = Callable[[PredictionSnapshot], None]


def describe_failure(exc: PredictionError) -> FailureInfo:
    """Map an error to the message shown to the user plus optional diagnostics."""
    if isinstance(exc, CameraUnavailable):
        return FailureInfo(kind=exc.kind, message=exc.reason)
    detail = str(exc)
    if isinstance(exc, ExhaustedRetries):
        last = exc.last_outcome
        if last is not None and last.kind in (
            OutcomeKind.SERVER_FAILURE,
            OutcomeKind.APPLICATION_FAILURE,
        ):
            detail = last.describe()
    return FailureInfo(kind=exc.kind, message=exc.message, detail=detail)


class PredictionStateMachine:
    """Single source of truth for the idle/submitting/succeeded/failed cycle.

    Only one submission may be in flight; ``submit`` and ``reset`` raise
    :class:`SubmissionInProgress` while one is running.
    """

    def __init__(self, pipeline: Pipeline, validator: Validator | None = None) -> None:
        self._pipeline = pipeline
        self._validator = validator or Validator()
        self._lock = threading.Lock()
        self._snapshot = PredictionSnapshot(PredictionState.IDLE)
        self._listeners: list[Listener] = []

    @property
    def state(self) -> PredictionState:
        return self.snapshot().state

    def snapshot(self) -> PredictionSnapshot:
        with self._lock:
            return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def submit(self, asset: "ImageAsset") -> PredictionSnapshot:
        with self._lock:
            self._ensure_not_submitting()
            validation_error = self._validator.check(asset)
            if validation_error is None:
                self._snapshot = PredictionSnapshot(PredictionState.SUBMITTING)
            else:
                self._snapshot = PredictionSnapshot(
                    PredictionState.FAILED, error=describe_failure(validation_error)
                )
            snapshot = self._snapshot
        if validation_error is not None:
            logger.info("Rejected image before submission: %s", validation_error)
            self._notify(snapshot)
            return snapshot

        try:
            self._notify(snapshot)
            result = self._pipeline.submit(PredictionRequest(asset=asset))
        except PredictionError as exc:
            return self._finish(
                PredictionSnapshot(PredictionState.FAILED, error=describe_failure(exc))
            )
        except Exception as exc:
            logger.exception("Prediction failed unexpectedly")
            self._finish(
                PredictionSnapshot(
                    PredictionState.FAILED,
                    error=FailureInfo(
                        kind=exc.__class__.__name__,
                        message=ExhaustedRetries.message,
                        detail=str(exc),
                    ),
                )
            )
            raise
        return self._finish(PredictionSnapshot(PredictionState.SUCCEEDED, result=result))

    def record_failure(self, error: PredictionError) -> PredictionSnapshot:
        """Surface a failure raised outside the pipeline, such as a camera error."""
        with self._lock:
            self._ensure_not_submitting()
            self._snapshot = PredictionSnapshot(
                PredictionState.FAILED, error=describe_failure(error)
            )
            snapshot = self._snapshot
        self._notify(snapshot)
        return snapshot

    def reset(self) -> PredictionSnapshot:
        with self._lock:
            self._ensure_not_submitting()
            self._snapshot = PredictionSnapshot(PredictionState.IDLE)
            snapshot = self._snapshot
        self._notify(snapshot)
        return snapshot

    def ensure_idle(self) -> None:
        """Raise :class:`SubmissionInProgress` if a submission is running."""
        with self._lock:
            self._ensure_not_submitting()

    def _ensure_not_submitting(self) -> None:
        if self._snapshot.state is PredictionState.SUBMITTING:
            raise SubmissionInProgress()

    def _finish(self, snapshot: PredictionSnapshot) -> PredictionSnapshot:
        with self._lock:
            self._snapshot = snapshot
        self._notify(snapshot)
        return snapshot

    def _notify(self, snapshot: PredictionSnapshot) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(snapshot)


__all__ = [
    "FailureInfo",
    "PredictionSnapshot",
    "PredictionState",
    "PredictionStateMachine",
    "describe_failure",
]
