from __future__ import annotations

import io
import json
from unittest.mock import Mock

from PIL import Image


def png_bytes(color: tuple[int, int, int] = (80, 120, 40), size: tuple[int, int] = (8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def fake_response(status: int, payload=None, text: str | None = None) -> Mock:
    body = json.dumps(payload) if payload is not None else (text or "")
    return streamed_response(status, [body.encode("utf-8")])


def streamed_response(status: int, chunks: list[bytes], before_chunk=None) -> Mock:
    """Response whose body arrives as ``chunks``; ``before_chunk`` runs ahead of each one."""
    response = Mock()
    response.status_code = status
    response.encoding = "utf-8"

    def iter_content(chunk_size=1, decode_unicode=False):
        for chunk in chunks:
            if before_chunk is not None:
                before_chunk()
            yield chunk

    response.iter_content.side_effect = iter_content
    return response


class FakeClock:
    """Monotonic clock that only moves when slept on or advanced explicitly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds
