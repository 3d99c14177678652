import unittest
from unittest.mock import Mock

import requests

from acquisition.image_source import ImageSource
from acquisition.preview import PreviewRegistry
from classifier.client import RetryPolicy, SubmissionPipeline
from classifier.errors import ExhaustedRetries, TooLarge, UnsupportedType
from classifier.types import OutcomeKind, PredictionRequest
from helpers import FakeClock, fake_response, png_bytes, streamed_response

URL = "https://classifier.test/predict"


class SubmissionPipelineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.session = Mock()
        self.pipeline = SubmissionPipeline(
            url=URL,
            session=self.session,
            sleep=self.clock.sleep,
            clock=self.clock.clock,
        )
        self.source = ImageSource(PreviewRegistry())
        self.data = png_bytes()
        self.request = PredictionRequest(
            asset=self.source.from_upload(self.data, "avocado.png", "image/png")
        )

    def _timeout_after(self, seconds: float):
        def post(*args, **kwargs):
            self.clock.advance(seconds)
            raise requests.Timeout("read timed out")

        return post

    def test_first_attempt_success_posts_multipart_file(self) -> None:
        response = fake_response(200, {"label": "Matang", "confidence": 0.92})
        self.session.post.return_value = response

        result = self.pipeline.submit(self.request)

        self.assertEqual(result.label, "Matang")
        self.assertAlmostEqual(result.confidence, 0.92)
        self.session.post.assert_called_once()
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], URL)
        self.assertEqual(kwargs["files"], {"file": ("avocado.png", self.data, "image/png")})
        self.assertEqual(kwargs["timeout"], (30.0, 30.0))
        self.assertTrue(kwargs["stream"])
        self.assertEqual(self.clock.sleeps, [])
        self.assertEqual(len(self.pipeline.last_attempts), 1)
        response.close.assert_called_once()

    def test_every_attempt_failing_exhausts_after_five_spaced_attempts(self) -> None:
        self.session.post.side_effect = requests.ConnectionError("connection reset")

        with self.assertRaises(ExhaustedRetries) as ctx:
            self.pipeline.submit(self.request)

        attempts = ctx.exception.attempts
        self.assertEqual(self.session.post.call_count, 5)
        self.assertEqual([a.attempt_number for a in attempts], [1, 2, 3, 4, 5])
        self.assertEqual(self.clock.sleeps, [5.0] * 4)
        for previous, current in zip(attempts, attempts[1:]):
            self.assertGreaterEqual(current.started_at - previous.finished_at, 5.0)
        self.assertEqual(ctx.exception.last_outcome.kind, OutcomeKind.NETWORK_FAILURE)
        self.assertIn("connection reset", ctx.exception.last_outcome.detail)
        self.assertEqual(
            ctx.exception.message,
            "Failed to analyze avocado. Model might still be starting up.",
        )

    def test_success_on_attempt_k_stops_immediately(self) -> None:
        for k in range(1, 6):
            with self.subTest(k=k):
                self.clock.sleeps.clear()
                failures = [fake_response(503, text="warming up")] * (k - 1)
                self.session.post.reset_mock()
                self.session.post.side_effect = failures + [
                    fake_response(200, {"label": "Mentah", "confidence": 0.7})
                ]

                result = self.pipeline.submit(self.request)

                self.assertEqual(result.label, "Mentah")
                self.assertEqual(self.session.post.call_count, k)
                self.assertEqual(len(self.clock.sleeps), k - 1)
                self.assertEqual(len(self.pipeline.last_attempts), k)

    def test_timeouts_then_success_on_last_attempt(self) -> None:
        timeout = self._timeout_after(30.0)
        calls = {"count": 0}

        def post(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] < 5:
                return timeout(*args, **kwargs)
            return fake_response(200, {"label": "Busuk", "confidence": 0.55})

        self.session.post.side_effect = post

        result = self.pipeline.submit(self.request)

        self.assertEqual(result.label, "Busuk")
        self.assertAlmostEqual(result.confidence, 0.55)
        attempts = self.pipeline.last_attempts
        self.assertEqual(len(attempts), 5)
        self.assertEqual(
            [a.outcome.kind for a in attempts],
            [OutcomeKind.TIMED_OUT] * 4 + [OutcomeKind.SUCCESS],
        )
        self.assertEqual(self.clock.now, 4 * (30.0 + 5.0))

    def test_server_failure_keeps_status_and_body(self) -> None:
        self.session.post.return_value = fake_response(500, text="Internal Server Error")

        with self.assertRaises(ExhaustedRetries) as ctx:
            self.pipeline.submit(self.request)

        last = ctx.exception.last_outcome
        self.assertEqual(last.kind, OutcomeKind.SERVER_FAILURE)
        self.assertEqual(last.status, 500)
        self.assertEqual(last.detail, "Internal Server Error")

    def test_error_field_in_success_body_is_retried(self) -> None:
        self.session.post.side_effect = [
            fake_response(200, {"error": "model loading"}),
            fake_response(200, {"label": "Belum Matang", "confidence": 0.81}),
        ]

        result = self.pipeline.submit(self.request)

        self.assertEqual(result.label, "Belum Matang")
        first = self.pipeline.last_attempts[0].outcome
        self.assertEqual(first.kind, OutcomeKind.APPLICATION_FAILURE)
        self.assertEqual(first.detail, "model loading")
        self.assertEqual(self.clock.sleeps, [5.0])

    def test_error_field_with_failure_status_is_application_failure(self) -> None:
        self.session.post.return_value = fake_response(422, {"error": "bad image"})

        with self.assertRaises(ExhaustedRetries) as ctx:
            self.pipeline.submit(self.request)

        last = ctx.exception.last_outcome
        self.assertEqual(last.kind, OutcomeKind.APPLICATION_FAILURE)
        self.assertEqual(last.status, 422)

    def test_malformed_success_bodies_are_server_failures(self) -> None:
        bodies = [
            fake_response(200, text="<html>starting</html>"),
            fake_response(200, {"confidence": 0.5}),
            fake_response(200, {"label": "Matang", "confidence": "high"}),
            fake_response(200, {"label": "Matang", "confidence": float("nan")}),
            fake_response(200, ["Matang", 0.5]),
        ]
        self.session.post.side_effect = bodies

        with self.assertRaises(ExhaustedRetries) as ctx:
            self.pipeline.submit(self.request)

        kinds = {a.outcome.kind for a in ctx.exception.attempts}
        self.assertEqual(kinds, {OutcomeKind.SERVER_FAILURE})

    def test_confidence_is_clamped(self) -> None:
        self.session.post.side_effect = [
            fake_response(200, {"label": "Matang", "confidence": 1.7}),
            fake_response(200, {"label": "Matang", "confidence": -0.2}),
        ]

        self.assertEqual(self.pipeline.submit(self.request).confidence, 1.0)
        self.assertEqual(self.pipeline.submit(self.request).confidence, 0.0)

    def test_unrecognised_label_is_accepted(self) -> None:
        self.session.post.return_value = fake_response(200, {"label": "Alpukat?", "confidence": 0.4})

        result = self.pipeline.submit(self.request)

        self.assertEqual(result.label, "Alpukat?")
        self.assertFalse(result.is_known_label)

    def test_validation_failures_make_no_network_calls(self) -> None:
        cases = [
            (self.source.from_upload(b"hello", "notes.txt", "text/plain"), UnsupportedType),
            (
                self.source.from_upload(b"\0" * (5 * 1024 * 1024 + 1), "big.png", "image/png"),
                TooLarge,
            ),
        ]
        for asset, error in cases:
            with self.subTest(error=error.__name__):
                with self.assertRaises(error):
                    self.pipeline.submit(PredictionRequest(asset=asset))
        self.session.post.assert_not_called()

    def test_slow_body_times_out_at_attempt_deadline(self) -> None:
        pipeline = SubmissionPipeline(
            url=URL,
            policy=RetryPolicy(max_attempts=1, attempt_timeout=1.0, retry_delay=0.5),
            session=self.session,
            sleep=self.clock.sleep,
            clock=self.clock.clock,
        )
        body = b'{"label": "Matang", "confidence": 0.92}'
        chunks = [body[i : i + 8] for i in range(0, len(body), 8)]
        response = streamed_response(200, chunks, before_chunk=lambda: self.clock.advance(0.6))
        self.session.post.return_value = response

        with self.assertRaises(ExhaustedRetries) as ctx:
            pipeline.submit(self.request)

        record = ctx.exception.attempts[0]
        self.assertEqual(record.outcome.kind, OutcomeKind.TIMED_OUT)
        # Stops reading at the first chunk past the deadline.
        self.assertAlmostEqual(record.finished_at - record.started_at, 1.2)
        response.close.assert_called_once()

    def test_slow_headers_count_against_the_same_deadline(self) -> None:
        responses = [
            fake_response(200, {"label": "Matang", "confidence": 0.92}),
            fake_response(200, {"label": "Busuk", "confidence": 0.55}),
        ]

        def post(*args, **kwargs):
            if len(responses) == 2:
                self.clock.advance(30.0)
            return responses.pop(0)

        self.session.post.side_effect = post

        result = self.pipeline.submit(self.request)

        self.assertEqual(result.label, "Busuk")
        self.assertEqual(
            [a.outcome.kind for a in self.pipeline.last_attempts],
            [OutcomeKind.TIMED_OUT, OutcomeKind.SUCCESS],
        )

    def test_body_within_deadline_succeeds(self) -> None:
        body = b'{"label": "Mentah", "confidence": 0.7}'
        self.session.post.return_value = streamed_response(
            200, [body[:10], body[10:]], before_chunk=lambda: self.clock.advance(10.0)
        )

        result = self.pipeline.submit(self.request)

        self.assertEqual(result.label, "Mentah")
        self.assertEqual(self.pipeline.last_attempts[0].finished_at, 20.0)

    def test_custom_policy(self) -> None:
        pipeline = SubmissionPipeline(
            url=URL,
            policy=RetryPolicy(max_attempts=2, attempt_timeout=1.0, retry_delay=0.5),
            session=self.session,
            sleep=self.clock.sleep,
            clock=self.clock.clock,
        )
        self.session.post.side_effect = requests.Timeout()

        with self.assertRaises(ExhaustedRetries):
            pipeline.submit(self.request)

        self.assertEqual(self.session.post.call_count, 2)
        self.assertEqual(self.clock.sleeps, [0.5])
        self.assertEqual(self.session.post.call_args.kwargs["timeout"], (1.0, 1.0))


class RetryPolicyTests(unittest.TestCase):
    def test_defaults_and_worst_case(self) -> None:
        policy = RetryPolicy()

        self.assertEqual(
            (policy.max_attempts, policy.attempt_timeout, policy.retry_delay), (5, 30.0, 5.0)
        )
        self.assertEqual(policy.worst_case_seconds, 175.0)

    def test_rejects_invalid_values(self) -> None:
        with self.assertRaises(ValueError):
            RetryPolicy(max_attempts=0)
        with self.assertRaises(ValueError):
            RetryPolicy(attempt_timeout=0)
        with self.assertRaises(ValueError):
            RetryPolicy(retry_delay=-1)


if __name__ == "__main__":
    unittest.main()
