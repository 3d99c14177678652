from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import requests

from acquisition.validation import Validator

from .errors import ExhaustedRetries
from .types import AttemptOutcome, AttemptRecord, PredictionRequest, PredictionResult

logger = logging.getLogger(__name__)

DEFAULT_CLASSIFIER_URL = "https://Dawgggggg-AvocadoRipness.hf.space/predict"
MAX_ATTEMPTS = 5
ATTEMPT_TIMEOUT_SECONDS = 30.0
RETRY_DELAY_SECONDS = 5.0
UPLOAD_FIELD_NAME = "file"
# Reads block until a full chunk arrives, so the deadline is checked per byte.
READ_CHUNK_BYTES = 1


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-interval retry budget for a cold-starting classifier."""

    max_attempts: int = MAX_ATTEMPTS
    attempt_timeout: float = ATTEMPT_TIMEOUT_SECONDS
    retry_delay: float = RETRY_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be positive")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must not be negative")

    @property
    def worst_case_seconds(self) -> float:
        return self.max_attempts * (self.attempt_timeout + self.retry_delay)


@dataclass
class SubmissionPipeline:
    """Posts an image to the remote classifier, retrying sequentially.

    Each attempt is a fresh multipart POST with its own deadline of
    ``policy.attempt_timeout`` seconds covering connect, headers and body.
    Transport errors, timeouts, non-2xx responses and bodies carrying an
    ``error`` field all count as a failed attempt and are followed by a fixed
    ``policy.retry_delay`` pause while attempts remain.
    """

    url: str = DEFAULT_CLASSIFIER_URL
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    validator: Validator = field(default_factory=Validator)
    session: requests.Session = field(default_factory=requests.Session)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    last_attempts: list[AttemptRecord] = field(init=False, default_factory=list)

    def submit(self, request: PredictionRequest) -> PredictionResult:
        self.validator.validate(request.asset)

        attempts: list[AttemptRecord] = []
        self.last_attempts = attempts
        for number in range(1, self.policy.max_attempts + 1):
            record = AttemptRecord(attempt_number=number, started_at=self.clock())
            attempts.append(record)
            outcome = self._attempt(request)
            record.complete(outcome, finished_at=self.clock())

            if outcome.is_success and outcome.result is not None:
                logger.info(
                    "Prediction succeeded attempt=%d label=%s confidence=%.2f",
                    number,
                    outcome.result.label,
                    outcome.result.confidence,
                )
                return outcome.result

            logger.warning("Attempt %d failed: %s", number, outcome.describe())
            if number < self.policy.max_attempts:
                self.sleep(self.policy.retry_delay)

        error = ExhaustedRetries(attempts)
        logger.error("Prediction error: %s", error)
        raise error

    def _attempt(self, request: PredictionRequest) -> AttemptOutcome:
        asset = request.asset
        files = {
            UPLOAD_FIELD_NAME: (asset.filename or "image", asset.data, asset.mime_type)
        }
        timeout = self.policy.attempt_timeout
        deadline = self.clock() + timeout
        try:
            response = self.session.post(
                self.url, files=files, timeout=(timeout, timeout), stream=True
            )
        except requests.Timeout:
            return AttemptOutcome.timed_out(timeout)
        except requests.RequestException as exc:
            return AttemptOutcome.network_failure(str(exc) or exc.__class__.__name__)

        try:
            body = self._read_body(response, deadline)
            if body is None:
                logger.debug("Attempt exceeded %.1fs while reading the response", timeout)
                return AttemptOutcome.timed_out(timeout)
            return self._classify_response(response.status_code, body, response.encoding)
        except requests.Timeout:
            return AttemptOutcome.timed_out(timeout)
        except requests.RequestException as exc:
            return AttemptOutcome.network_failure(str(exc) or exc.__class__.__name__)
        finally:
            response.close()

    def _read_body(self, response: requests.Response, deadline: float) -> bytes | None:
        """Read the streamed body, or return None once the attempt deadline passes."""
        if self.clock() >= deadline:
            return None
        chunks: list[bytes] = []
        for chunk in response.iter_content(chunk_size=READ_CHUNK_BYTES):
            if self.clock() >= deadline:
                return None
            chunks.append(chunk)
        return b"".join(chunks)

    def _classify_response(
        self, status: int, body: bytes, encoding: str | None
    ) -> AttemptOutcome:
        text = body.decode(encoding or "utf-8", errors="replace")
        payload = _decode_json(text)
        error_message = _extract_error(payload)

        if error_message is not None:
            return AttemptOutcome.application_failure(status, error_message)
        if not 200 <= status < 300:
            return AttemptOutcome.server_failure(status, text)
        if payload is None:
            return AttemptOutcome.server_failure(status, "response was not valid JSON")
        try:
            result = PredictionResult.from_payload(payload)
        except ValueError as exc:
            return AttemptOutcome.server_failure(status, f"malformed response: {exc}")
        return AttemptOutcome.success(result)


def _decode_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def _extract_error(payload: Any) -> str | None:
    if not isinstance(payload, dict) or "error" not in payload:
        return None
    value = payload["error"]
    if value is None or value is False:
        return None
    return str(value).strip() or "classifier reported an error"


__all__ = [
    "ATTEMPT_TIMEOUT_SECONDS",
    "DEFAULT_CLASSIFIER_URL",
    "MAX_ATTEMPTS",
    "RETRY_DELAY_SECONDS",
    "RetryPolicy",
    "SubmissionPipeline",
]
