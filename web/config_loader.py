"""Application configuration.

Settings are read from an optional JSON file (``config/app.json`` by default)
and fall back to the built-in defaults for anything missing. The classifier
endpoint can also be supplied through the ``CLASSIFIER_URL`` environment
variable, which wins over the file.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from acquisition.validation import MAX_UPLOAD_BYTES
from classifier.client import (
    ATTEMPT_TIMEOUT_SECONDS,
    DEFAULT_CLASSIFIER_URL,
    MAX_ATTEMPTS,
    RETRY_DELAY_SECONDS,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

CLASSIFIER_URL_ENV = "CLASSIFIER_URL"


@dataclass
class ClassifierConfig:
    url: str = DEFAULT_CLASSIFIER_URL
    max_attempts: int = MAX_ATTEMPTS
    attempt_timeout: float = ATTEMPT_TIMEOUT_SECONDS
    retry_delay: float = RETRY_DELAY_SECONDS

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            attempt_timeout=self.attempt_timeout,
            retry_delay=self.retry_delay,
        )


@dataclass
class UploadConfig:
    max_bytes: int = MAX_UPLOAD_BYTES


@dataclass
class CameraConfig:
    kind: str = "stub"
    source: str = "0"
    environment_source: str | None = None
    backend: str | None = None
    resolution: tuple[int, int] | None = None
    warmup_frames: int = 2


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class AppConfig:
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    camera: CameraConfig = field(default_factory=CameraConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def parse_resolution(value: Any) -> tuple[int, int] | None:
    if value is None or value == "":
        return None
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return int(value[0]), int(value[1])
    parts = str(value).lower().split("x")
    if len(parts) != 2:
        raise ValueError("resolution must be WIDTHxHEIGHT")
    width, height = parts
    return int(width), int(height)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"Config section {name!r} must be an object")
    return section


def config_from_dict(data: dict[str, Any]) -> AppConfig:
    classifier = _section(data, "classifier")
    upload = _section(data, "upload")
    camera = _section(data, "camera")
    server = _section(data, "server")
    defaults = AppConfig()

    environment_source = camera.get("environment_source")
    backend = camera.get("backend")
    config = AppConfig(
        classifier=ClassifierConfig(
            url=str(classifier.get("url", defaults.classifier.url)),
            max_attempts=int(classifier.get("max_attempts", defaults.classifier.max_attempts)),
            attempt_timeout=float(
                classifier.get("attempt_timeout", defaults.classifier.attempt_timeout)
            ),
            retry_delay=float(classifier.get("retry_delay", defaults.classifier.retry_delay)),
        ),
        upload=UploadConfig(
            max_bytes=int(upload.get("max_bytes", defaults.upload.max_bytes)),
        ),
        camera=CameraConfig(
            kind=str(camera.get("kind", defaults.camera.kind)),
            source=str(camera.get("source", defaults.camera.source)),
            environment_source=str(environment_source) if environment_source is not None else None,
            backend=str(backend) if backend is not None else None,
            resolution=parse_resolution(camera.get("resolution")),
            warmup_frames=int(camera.get("warmup_frames", defaults.camera.warmup_frames)),
        ),
        server=ServerConfig(
            host=str(server.get("host", defaults.server.host)),
            port=int(server.get("port", defaults.server.port)),
        ),
    )
    # Validates the retry numbers early.
    config.classifier.retry_policy()
    if config.camera.kind not in ("stub", "opencv"):
        raise ValueError(f"Unsupported camera kind {config.camera.kind!r}")
    return config


def load_config(path: Path | str | None = None) -> AppConfig:
    """Load configuration from ``path``; ``None`` means defaults only."""
    if path is None:
        config = AppConfig()
    else:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(config_path)
        data = json.loads(config_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a JSON object")
        config = config_from_dict(data)
        logger.info("Loaded configuration from %s", config_path)

    env_url = os.environ.get(CLASSIFIER_URL_ENV, "").strip()
    if env_url:
        config.classifier.url = env_url
    return config


__all__ = [
    "AppConfig",
    "CameraConfig",
    "ClassifierConfig",
    "ServerConfig",
    "UploadConfig",
    "CLASSIFIER_URL_ENV",
    "config_from_dict",
    "load_config",
    "parse_resolution",
]
