# opticalyx/imageops/crop.py
"""
Fixed-size crop around the star plus an optional logarithmic display
stretch. The PNG-encoded crop is the payload handed to the diagnosis
service; the cropped buffer feeds the 3D surface view.
"""
from __future__ import annotations

import base64
import math
from dataclasses import dataclass
from io import BytesIO

import numpy as np
from PIL import Image

from opticalyx.pixel_buffer import PixelBuffer

DEFAULT_CROP_SIZE = 256
LOG_STRETCH_GAIN = 255.0 / math.log(256.0)   # ~45.98


def log_stretch(values) -> np.ndarray:
    """
    out = C * log(1 + in) with C = 255 / log(256).

    Monotonic and one-way: it lifts faint wings for display and does not
    recover linear values. No rounding is applied here.
    """
    v = np.asarray(values, dtype=np.float64)
    return LOG_STRETCH_GAIN * np.log1p(v)


@dataclass(frozen=True)
class CropResult:
    buffer: PixelBuffer
    png_bytes: bytes
    log_stretch: bool

    def base64(self) -> str:
        return base64.b64encode(self.png_bytes).decode("ascii")

    def data_url(self) -> str:
        return "data:image/png;base64," + self.base64()


def crop_buffer(buf: PixelBuffer, center_x: float, center_y: float, size: int = DEFAULT_CROP_SIZE) -> PixelBuffer:
    """
    size×size window with its top-left at round(center - size/2). Pixels that
    fall outside the source come back transparent black.
    """
    size = int(size)
    if size < 1:
        raise ValueError(f"Crop size must be >= 1, got {size}")

    x0 = int(round(center_x - size / 2))
    y0 = int(round(center_y - size / 2))
    out = np.zeros((size, size, 4), dtype=np.uint8)

    sx0, sy0 = max(x0, 0), max(y0, 0)
    sx1, sy1 = min(x0 + size, buf.width), min(y0 + size, buf.height)
    if sx1 > sx0 and sy1 > sy0:
        out[sy0 - y0:sy1 - y0, sx0 - x0:sx1 - x0] = buf.data[sy0:sy1, sx0:sx1]
    return PixelBuffer(size, size, out)


def apply_log_stretch(buf: PixelBuffer) -> PixelBuffer:
    """Stretch R, G and B independently; alpha is left alone."""
    out = np.array(buf.data, copy=True)
    stretched = log_stretch(out[..., :3])
    out[..., :3] = np.clip(np.rint(stretched), 0, 255).astype(np.uint8)
    return PixelBuffer(buf.width, buf.height, out)


def encode_png(buf: PixelBuffer) -> bytes:
    bio = BytesIO()
    Image.fromarray(np.ascontiguousarray(buf.data)).save(bio, format="PNG")
    return bio.getvalue()


def crop_image(
    buf: PixelBuffer,
    center_x: float,
    center_y: float,
    size: int = DEFAULT_CROP_SIZE,
    apply_log: bool = False,
) -> CropResult:
    cropped = crop_buffer(buf, center_x, center_y, size)
    if apply_log:
        cropped = apply_log_stretch(cropped)
    return CropResult(buffer=cropped, png_bytes=encode_png(cropped), log_stretch=bool(apply_log))
