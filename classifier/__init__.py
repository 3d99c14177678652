from __future__ import annotations

from .types import PredictionRequest, PredictionResult

__all__ = [
    "PredictionRequest",
    "PredictionResult",
    "SubmissionPipeline",
    "PredictionStateMachine",
    "RipenessWorkflow",
    "MockPipeline",
]


def __getattr__(name: str):
    if name == "SubmissionPipeline":
        from .client import SubmissionPipeline

        return SubmissionPipeline
    if name == "PredictionStateMachine":
        from .state import PredictionStateMachine

        return PredictionStateMachine
    if name == "RipenessWorkflow":
        from .workflow import RipenessWorkflow

        return RipenessWorkflow
    if name == "MockPipeline":
        from .mock import MockPipeline

        return MockPipeline
    raise AttributeError(f"module 'classifier' has no attribute {name!r}")
