from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

try:
    from django.conf import settings
except Exception:  # pragma: no cover - optional during isolated use
    settings = None  # type: ignore


def _get_setting(name: str, default):
    if settings is None or not settings.configured:
        return default
    return getattr(settings, name, default)


_MAX_BYTES = int(_get_setting("CHARTSCAN_MAX_BYTES", 900_000))
_MAX_WIDTH = int(_get_setting("CHARTSCAN_MAX_WIDTH", 1280))
_MAX_HEIGHT = int(_get_setting("CHARTSCAN_MAX_HEIGHT", 720))


@dataclass(frozen=True, slots=True)
class PixelBuffer:
    """Read-only RGBA pixels, row-major, 4 bytes per pixel."""

    width: int
    height: int
    data: bytes
    _array: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"invalid buffer size {self.width}x{self.height}")
        data = bytes(self.data)
        expected = self.width * self.height * 4
        if len(data) != expected:
            raise ValueError(f"expected {expected} bytes for {self.width}x{self.height}, got {len(data)}")
        array = np.frombuffer(data, dtype=np.uint8).reshape(self.height, self.width, 4)
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "_array", array)

    @property
    def array(self) -> np.ndarray:
        return self._array

    def rgb(self) -> np.ndarray:
        """RGB channels widened to int32 so products and sums cannot wrap."""
        return self._array[:, :, :3].astype(np.int32)

    def luminance(self) -> np.ndarray:
        return self.rgb().sum(axis=2) / 3.0

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        rgba = image.convert("RGBA")
        width, height = rgba.size
        return cls(width=width, height=height, data=rgba.tobytes())

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise ValueError("expected an (height, width, 3|4) array")
        if array.shape[2] == 3:
            alpha = np.full(array.shape[:2] + (1,), 255, dtype=np.uint8)
            array = np.concatenate([array.astype(np.uint8), alpha], axis=2)
        height, width = array.shape[:2]
        return cls(width=width, height=height, data=np.ascontiguousarray(array, dtype=np.uint8).tobytes())


def decode_data_url(data_url: str) -> Tuple[Optional[Image.Image], Dict[str, Any], Optional[str]]:
    diagnostics: Dict[str, Any] = {}
    if not data_url or not isinstance(data_url, str):
        return None, diagnostics, "invalid_image"
    if not data_url.startswith("data:image/"):
        return None, diagnostics, "invalid_image"
    try:
        _, encoded = data_url.split(",", 1)
    except ValueError:
        return None, diagnostics, "invalid_image"
    estimated_bytes = (len(encoded) * 3) // 4
    diagnostics["estimated_bytes"] = int(estimated_bytes)
    if estimated_bytes > _MAX_BYTES:
        return None, diagnostics, "image_too_large"
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None, diagnostics, "invalid_image"
    diagnostics["decoded_bytes"] = int(len(raw))
    try:
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (UnidentifiedImageError, OSError):
        return None, diagnostics, "invalid_image"
    diagnostics["image_width"] = image.size[0]
    diagnostics["image_height"] = image.size[1]
    return image, diagnostics, None


def resize_for_analysis(image: Image.Image) -> Image.Image:
    width, height = image.size
    if width <= _MAX_WIDTH and height <= _MAX_HEIGHT:
        return image
    scale = min(_MAX_WIDTH / max(width, 1), _MAX_HEIGHT / max(height, 1), 1.0)
    new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
    return image.resize(new_size, Image.LANCZOS)


def buffer_from_data_url(data_url: str) -> Tuple[Optional[PixelBuffer], Dict[str, Any], Optional[str]]:
    image, diagnostics, error = decode_data_url(data_url)
    if image is None:
        return None, diagnostics, error
    image = resize_for_analysis(image)
    diagnostics["analysis_width"] = image.size[0]
    diagnostics["analysis_height"] = image.size[1]
    return PixelBuffer.from_image(image), diagnostics, None


__all__ = ["PixelBuffer", "decode_data_url", "resize_for_analysis", "buffer_from_data_url"]
