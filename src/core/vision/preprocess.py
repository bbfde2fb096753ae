"""
Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import cv2
import numpy as np

from shared.errors import ImageDecodeError

INPUT_SIZE = (640, 640)


def decode_image(image_bytes: bytes | bytearray | memoryview) -> np.ndarray:
    if not image_bytes:
        raise ImageDecodeError("empty image payload")
    buffer = np.frombuffer(bytes(image_bytes), dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    except cv2.error as exc:
        raise ImageDecodeError(f"image decode failed: {exc}") from exc
    if image is None:
        raise ImageDecodeError("unsupported or corrupt image data")
    return image


def preprocess(
    image_bytes: bytes | bytearray | memoryview, size: tuple[int, int] = INPUT_SIZE
) -> np.ndarray:
    """Encoded image -> float32 NCHW tensor [1, 3, H, W] in RGB order, scaled to [0, 1]."""
    width, height = size
    image = decode_image(image_bytes)
    resized = cv2.resize(image, (width, height), interpolation=cv2.INTER_LINEAR)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
    planar = (rgb.astype(np.float32) / 255.0).transpose(2, 0, 1)
    return np.ascontiguousarray(planar[np.newaxis, ...])
