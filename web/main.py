from __future__ import annotations

import argparse
import logging
import platform
import sys
from pathlib import Path
from typing import Sequence

import uvicorn
from dotenv import load_dotenv

from acquisition.camera_session import CameraFactory
from acquisition.capture import Camera, OpenCVCamera, StubCamera
from acquisition.validation import Validator
from classifier.client import SubmissionPipeline
from classifier.mock import MockPipeline
from classifier.types import Pipeline

from .config_loader import AppConfig, CameraConfig, load_config
from .server import create_app

logger = logging.getLogger(__name__)


def _parse_source(value: str) -> int | str:
    try:
        return int(value)
    except ValueError:
        return value


def _parse_backend(value: str | None) -> str | int | None:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        return value.strip()


def _open_opencv(source: str, config: CameraConfig) -> OpenCVCamera:
    backend = _parse_backend(config.backend)
    preferred_attempted = False
    if backend is None and platform.system().lower().startswith("win"):
        backend = "dshow"
        preferred_attempted = True
    try:
        return OpenCVCamera(
            source=_parse_source(source),
            resolution=config.resolution,
            backend=backend,
            warmup_frames=config.warmup_frames,
        )
    except RuntimeError:
        if preferred_attempted:
            return OpenCVCamera(
                source=_parse_source(source),
                resolution=config.resolution,
                backend=None,
                warmup_frames=config.warmup_frames,
            )
        raise


def build_camera_factory(config: CameraConfig) -> CameraFactory:
    """Return a factory opening the environment-facing device when one is configured."""

    def factory(facing: str) -> Camera:
        if config.kind == "opencv":
            if facing == "environment" and config.environment_source is not None:
                try:
                    return _open_opencv(config.environment_source, config)
                except RuntimeError as exc:
                    logger.info(
                        "Environment-facing camera %s unavailable (%s); using %s",
                        config.environment_source,
                        exc,
                        config.source,
                    )
            return _open_opencv(config.source, config)
        sample = Path(config.source) if config.source else None
        return StubCamera(sample_path=sample if sample and sample.is_file() else None)

    return factory


def build_pipeline(kind: str, config: AppConfig) -> Pipeline:
    validator = Validator(max_bytes=config.upload.max_bytes)
    if kind == "http":
        return SubmissionPipeline(
            url=config.classifier.url,
            policy=config.classifier.retry_policy(),
            validator=validator,
        )
    return MockPipeline(validator=validator)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the avocado ripeness API server",
        epilog="Configuration is loaded from config/app.json when present. "
        "CLI arguments override config file settings.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/app.json",
        help="Path to JSON configuration file (default: config/app.json)",
    )
    parser.add_argument("--host", type=str, default=None, help="Override server host")
    parser.add_argument("--port", type=int, default=None, help="Override server port")
    parser.add_argument(
        "--classifier",
        choices=["http", "mock"],
        default="http",
        help="Use the remote classifier or the offline mock",
    )
    parser.add_argument(
        "--classifier-url",
        default=None,
        help="Override the remote classifier endpoint",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s"
        )
    args = build_parser().parse_args(argv)

    config_path = Path(args.config)
    try:
        cfg = load_config(config_path if config_path.exists() else None)
    except (OSError, ValueError) as exc:
        logger.error("Failed to load configuration: %s", exc)
        sys.exit(1)

    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port
    if args.classifier_url:
        cfg.classifier.url = args.classifier_url

    policy = cfg.classifier.retry_policy()
    logger.info("Server configuration: %s:%s", cfg.server.host, cfg.server.port)
    logger.info(
        "Classifier backend=%s url=%s attempts=%d timeout=%.0fs delay=%.0fs worst_case=%.0fs",
        args.classifier,
        cfg.classifier.url,
        policy.max_attempts,
        policy.attempt_timeout,
        policy.retry_delay,
        policy.worst_case_seconds,
    )
    logger.info("Camera backend: %s", cfg.camera.kind)

    app = create_app(
        build_pipeline(args.classifier, cfg),
        build_camera_factory(cfg.camera),
        validator=Validator(max_bytes=cfg.upload.max_bytes),
    )
    uvicorn.run(app, host=cfg.server.host, port=cfg.server.port, log_level="info")


if __name__ == "__main__":
    main()
