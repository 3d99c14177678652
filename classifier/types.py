from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:  # pragma: no cover - typing only
    from acquisition.image_source import ImageAsset

# Labels the remote classifier is known to return.
KNOWN_LABELS: tuple[str, ...] = ("Matang", "Belum Matang", "Mentah", "Busuk")


class Pipeline(Protocol):
    def submit(self, request: "PredictionRequest") -> "PredictionResult": ...


@dataclass(frozen=True)
class PredictionResult:
    label: str
    confidence: float

    @classmethod
    def from_payload(cls, payload: Any) -> "PredictionResult":
        """Build a result from a decoded response body, clamping confidence to [0, 1]."""
        if not isinstance(payload, dict):
            raise ValueError("response body is not a JSON object")
        label = payload.get("label")
        if not isinstance(label, str) or not label.strip():
            raise ValueError("response did not include a label")
        raw_confidence = payload.get("confidence")
        if isinstance(raw_confidence, bool):
            raise ValueError("confidence is not numeric")
        try:
            confidence = float(raw_confidence)
        except (TypeError, ValueError) as exc:
            raise ValueError("confidence is not numeric") from exc
        if math.isnan(confidence):
            raise ValueError("confidence is NaN")
        confidence = max(0.0, min(1.0, confidence))
        return cls(label=label.strip(), confidence=confidence)

    @property
    def is_known_label(self) -> bool:
        return self.label in KNOWN_LABELS


@dataclass(frozen=True)
class PredictionRequest:
    asset: "ImageAsset"


class OutcomeKind(enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    NETWORK_FAILURE = "network_failure"
    SERVER_FAILURE = "server_failure"
    APPLICATION_FAILURE = "application_failure"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class AttemptOutcome:
    kind: OutcomeKind
    result: PredictionResult | None = None
    status: int | None = None
    detail: str | None = None

    @classmethod
    def success(cls, result: PredictionResult) -> "AttemptOutcome":
        return cls(OutcomeKind.SUCCESS, result=result)

    @classmethod
    def network_failure(cls, detail: str) -> "AttemptOutcome":
        return cls(OutcomeKind.NETWORK_FAILURE, detail=detail)

    @classmethod
    def server_failure(cls, status: int, body: str) -> "AttemptOutcome":
        return cls(OutcomeKind.SERVER_FAILURE, status=status, detail=body)

    @classmethod
    def application_failure(cls, status: int, message: str) -> "AttemptOutcome":
        return cls(OutcomeKind.APPLICATION_FAILURE, status=status, detail=message)

    @classmethod
    def timed_out(cls, timeout: float) -> "AttemptOutcome":
        return cls(OutcomeKind.TIMED_OUT, detail=f"no response within {timeout:g}s")

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.kind not in (OutcomeKind.SUCCESS, OutcomeKind.PENDING)

    def describe(self) -> str:
        if self.kind is OutcomeKind.SUCCESS and self.result is not None:
            return f"success label={self.result.label} confidence={self.result.confidence:.2f}"
        parts = [self.kind.value]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.detail:
            parts.append(self.detail)
        return " ".join(parts)


PENDING = AttemptOutcome(OutcomeKind.PENDING)


@dataclass
class AttemptRecord:
    """One bounded exchange with the classifier; its outcome is set once."""

    attempt_number: int
    started_at: float
    outcome: AttemptOutcome = PENDING
    finished_at: float | None = None

    def __post_init__(self) -> None:
        if self.attempt_number < 1:
            raise ValueError("attempt_number must be >= 1")

    def complete(self, outcome: AttemptOutcome, finished_at: float) -> None:
        if self.outcome.kind is not OutcomeKind.PENDING:
            raise RuntimeError(
                f"Attempt {self.attempt_number} already resolved as {self.outcome.kind.value}"
            )
        if outcome.kind is OutcomeKind.PENDING:
            raise ValueError("an attempt cannot be completed as pending")
        self.outcome = outcome
        self.finished_at = finished_at


__all__ = [
    "KNOWN_LABELS",
    "Pipeline",
    "PredictionResult",
    "PredictionRequest",
    "OutcomeKind",
    "AttemptOutcome",
    "AttemptRecord",
    "PENDING",
]
