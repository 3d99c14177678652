from __future__ import annotations

import io
import time
from dataclasses import dataclass, field
from typing import List

from PIL import Image, ImageStat, UnidentifiedImageError

from acquisition.validation import Validator

from .errors import ExhaustedRetries
from .types import AttemptOutcome, AttemptRecord, PredictionRequest, PredictionResult

# (lower bound of mean luma, label); darker skin reads as riper.
_LUMA_BANDS: tuple[tuple[float, str], ...] = (
    (0.6, "Mentah"),
    (0.4, "Belum Matang"),
    (0.2, "Matang"),
    (0.0, "Busuk"),
)


@dataclass
class MockPipeline:
    """Offline classifier endpoint that grades images by mean brightness."""

    validator: Validator = field(default_factory=Validator)
    forced_label: str | None = None
    records: List[PredictionRequest] = field(default_factory=list)

    def submit(self, request: PredictionRequest) -> PredictionResult:
        self.validator.validate(request.asset)
        self.records.append(request)
        if self.forced_label:
            return PredictionResult(label=self.forced_label, confidence=0.9)
        try:
            image = Image.open(io.BytesIO(request.asset.data)).convert("L")
        except (UnidentifiedImageError, OSError) as exc:
            record = AttemptRecord(attempt_number=1, started_at=time.monotonic())
            record.complete(
                AttemptOutcome.application_failure(200, f"cannot read image: {exc}"),
                finished_at=time.monotonic(),
            )
            raise ExhaustedRetries([record]) from exc
        luma = ImageStat.Stat(image).mean[0] / 255.0
        upper = 1.0
        for lower, label in _LUMA_BANDS:
            if luma >= lower:
                position = (luma - lower) / (upper - lower)
                return PredictionResult(label=label, confidence=round(0.55 + 0.4 * position, 2))
            upper = lower
        return PredictionResult(label="Busuk", confidence=0.55)


__all__ = ["MockPipeline"]
