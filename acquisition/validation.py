from __future__ import annotations

from dataclasses import dataclass

from classifier.errors import TooLarge, UnsupportedType, ValidationError

from .image_source import ImageAsset

MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024


@dataclass(frozen=True)
class Validator:
    """Feasibility gate run on every asset before any network activity."""

    max_bytes: int = MAX_UPLOAD_BYTES

    def validate(self, asset: ImageAsset) -> None:
        if not asset.mime_type.lower().startswith("image/"):
            raise UnsupportedType(asset.mime_type)
        if asset.size_bytes > self.max_bytes:
            raise TooLarge(asset.size_bytes, self.max_bytes)

    def check(self, asset: ImageAsset) -> ValidationError | None:
        try:
            self.validate(asset)
        except ValidationError as exc:
            return exc
        return None


__all__ = ["MAX_UPLOAD_BYTES", "Validator"]
