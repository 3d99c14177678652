from __future__ import annotations

import math
from dataclasses import dataclass

from .types import PredictionResult


@dataclass(frozen=True)
class LabelInfo:
    label: str
    tone: str
    description: str
    known: bool = True


_NOT_READY = "Give it a few more days, it's not quite ready yet."

_LABELS: dict[str, LabelInfo] = {
    "Matang": LabelInfo("Matang", "ripe", "This avocado is perfectly ripe and ready to eat."),
    "Belum Matang": LabelInfo("Belum Matang", "unripe", _NOT_READY),
    "Mentah": LabelInfo("Mentah", "unripe", _NOT_READY),
    "Busuk": LabelInfo("Busuk", "rotten", "Unfortunately, this avocado is past its prime."),
}


def describe(label: str) -> LabelInfo:
    info = _LABELS.get(label)
    if info is not None:
        return info
    return LabelInfo(
        label=label,
        tone="unknown",
        description="Unknown classification result.",
        known=False,
    )


def confidence_percent(confidence: float) -> int:
    clamped = max(0.0, min(1.0, confidence))
    return int(math.floor(clamped * 100 + 0.5))


def present(result: PredictionResult) -> dict[str, object]:
    info = describe(result.label)
    return {
        "label": result.label,
        "confidence": result.confidence,
        "confidence_percent": confidence_percent(result.confidence),
        "tone": info.tone,
        "description": info.description,
        "known_label": info.known,
    }


__all__ = ["LabelInfo", "confidence_percent", "describe", "present"]
