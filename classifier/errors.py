from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .types import AttemptOutcome, AttemptRecord


class PredictionError(RuntimeError):
    """Base class for failures that end up in the observable prediction state."""

    kind = "PredictionError"
    message = "Something went wrong."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail


class ValidationError(PredictionError):
    kind = "ValidationError"
    message = "The selected file cannot be analyzed."


class UnsupportedType(ValidationError):
    kind = "UnsupportedType"
    message = "Please upload an image file (jpg, png, etc)."

    def __init__(self, mime_type: str) -> None:
        super().__init__(f"Unsupported content type {mime_type!r}")
        self.mime_type = mime_type


class TooLarge(ValidationError):
    kind = "TooLarge"
    message = "File too large! Maximum size is 5MB."

    def __init__(self, size_bytes: int, max_bytes: int) -> None:
        super().__init__(f"Image is {size_bytes} bytes; limit is {max_bytes} bytes")
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


class ExhaustedRetries(PredictionError):
    kind = "ExhaustedRetries"
    message = "Failed to analyze avocado. Model might still be starting up."

    def __init__(self, attempts: Sequence["AttemptRecord"]) -> None:
        self.attempts = tuple(attempts)
        last = self.last_outcome
        summary = last.describe() if last is not None else "no attempts made"
        super().__init__(f"All {len(self.attempts)} attempt(s) failed; last: {summary}")

    @property
    def last_outcome(self) -> "AttemptOutcome | None":
        if not self.attempts:
            return None
        return self.attempts[-1].outcome


class CameraUnavailable(PredictionError):
    kind = "CameraUnavailable"
    message = "Cannot access camera. Please allow permission."

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason or self.message


class SubmissionInProgress(PredictionError):
    kind = "SubmissionInProgress"
    message = "A prediction is already running."


INSECURE_CONTEXT_REASON = "Camera only works over HTTPS (or localhost)."


__all__ = [
    "PredictionError",
    "ValidationError",
    "UnsupportedType",
    "TooLarge",
    "ExhaustedRetries",
    "CameraUnavailable",
    "SubmissionInProgress",
    "INSECURE_CONTEXT_REASON",
]
