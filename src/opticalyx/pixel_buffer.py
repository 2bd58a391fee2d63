# opticalyx/pixel_buffer.py
"""
Pixel buffer shared by every analysis stage, plus file decoding.

A PixelBuffer is an immutable W×H grid of 8-bit RGBA samples stored
row-major as a (H, W, 4) uint8 array. Decoders normalize whatever the
file holds (mono, RGB, 16-bit, float, FITS with BSCALE/BZERO) into
that single representation.
"""
from __future__ import annotations

import gzip
import logging
import os
from dataclasses import dataclass
from io import BytesIO

import numpy as np
import tifffile as tiff
from astropy.io import fits
from PIL import Image

log = logging.getLogger(__name__)

FITS_EXTS = (".fits", ".fit", ".fts", ".fits.gz", ".fit.gz")
TIFF_EXTS = (".tif", ".tiff")
PIL_EXTS = (".png", ".jpg", ".jpeg", ".bmp")


class ImageLoadError(OSError):
    """Raised when an image file cannot be decoded into a PixelBuffer."""


@dataclass(frozen=True, eq=False)
class PixelBuffer:
    width: int
    height: int
    data: np.ndarray  # (H, W, 4) uint8, read-only

    def __post_init__(self):
        arr = np.asarray(self.data)
        if arr.dtype != np.uint8 or arr.shape != (self.height, self.width, 4):
            raise ValueError(
                f"PixelBuffer expects uint8 data of shape {(self.height, self.width, 4)}, "
                f"got {arr.dtype} {arr.shape}"
            )
        if arr.flags.writeable or not arr.flags.c_contiguous:
            arr = np.array(arr, dtype=np.uint8, order="C", copy=True)
            arr.setflags(write=False)
        object.__setattr__(self, "data", arr)

    # ---------- constructors ----------
    @classmethod
    def from_bytes(cls, width: int, height: int, raw) -> "PixelBuffer":
        width, height = int(width), int(height)
        if width < 0 or height < 0:
            raise ValueError(f"Invalid buffer size {width}x{height}")
        flat = np.frombuffer(bytes(raw), dtype=np.uint8)
        expected = width * height * 4
        if flat.size != expected:
            raise ValueError(f"Expected {expected} RGBA bytes for {width}x{height}, got {flat.size}")
        return cls(width, height, flat.reshape(height, width, 4))

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "PixelBuffer":
        """
        Build a buffer from a mono (H,W) / (H,W,1), RGB (H,W,3) or RGBA (H,W,4)
        array. uint8 is taken as-is, uint16 is scaled by 65535 and float data is
        treated as normalized 0..1.
        """
        a = np.asarray(arr)
        if a.ndim == 3 and a.shape[2] == 1:
            a = a[:, :, 0]
        if a.ndim not in (2, 3) or (a.ndim == 3 and a.shape[2] not in (3, 4)):
            raise ValueError(f"Unsupported image shape: {a.shape}")

        a8 = _to_uint8(a)
        h, w = a8.shape[:2]
        rgba = np.empty((h, w, 4), dtype=np.uint8)
        if a8.ndim == 2:
            rgba[..., 0] = a8
            rgba[..., 1] = a8
            rgba[..., 2] = a8
            rgba[..., 3] = 255
        elif a8.shape[2] == 3:
            rgba[..., :3] = a8
            rgba[..., 3] = 255
        else:
            rgba[...] = a8
        return cls(w, h, rgba)

    # ---------- accessors ----------
    @property
    def shape(self) -> tuple[int, int]:
        return self.height, self.width

    @property
    def size(self) -> int:
        return self.width * self.height

    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def luminosity(self) -> np.ndarray:
        """Per-pixel mean of R, G and B as float64 (H, W)."""
        rgb = self.data[..., :3].astype(np.float64)
        return (rgb[..., 0] + rgb[..., 1] + rgb[..., 2]) / 3.0

    def to_bytes(self) -> bytes:
        return self.data.tobytes()

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, np.array(self.data, copy=True))


def _to_uint8(a: np.ndarray) -> np.ndarray:
    if a.dtype == np.uint8:
        return a
    if a.dtype == np.uint16:
        return np.rint(a.astype(np.float32) / 65535.0 * 255.0).astype(np.uint8)
    if a.dtype == np.bool_:
        return a.astype(np.uint8) * 255
    data = np.nan_to_num(a.astype(np.float32), nan=0.0, posinf=1.0, neginf=0.0)
    if np.issubdtype(a.dtype, np.integer):
        data = _minmax(data)
    elif data.size and (float(data.min()) < 0.0 or float(data.max()) > 1.0):
        data = _minmax(data)
    return np.rint(np.clip(data, 0.0, 1.0) * 255.0).astype(np.uint8)


def _minmax(data: np.ndarray) -> np.ndarray:
    dmin = float(data.min()) if data.size else 0.0
    dmax = float(data.max()) if data.size else 0.0
    if dmax > dmin:
        return (data - dmin) / (dmax - dmin)
    return np.zeros_like(data, dtype=np.float32)


# ---------- decoding ----------
def load_image(path) -> PixelBuffer:
    """Decode PNG/JPEG/BMP, TIFF or FITS into a PixelBuffer."""
    filename = os.fspath(path)
    lower = filename.lower()
    if not os.path.isfile(filename):
        raise ImageLoadError(f"No such image file: {filename}")

    try:
        if lower.endswith(FITS_EXTS):
            arr = _read_fits(filename)
        elif lower.endswith(TIFF_EXTS):
            arr = tiff.imread(filename)
            log.debug("Loaded TIFF %s dtype=%s shape=%s", filename, arr.dtype, arr.shape)
        elif lower.endswith(PIL_EXTS):
            arr = _read_pil(filename)
        else:
            raise ImageLoadError(f"Unsupported image format: {os.path.basename(filename)}")
        return PixelBuffer.from_array(_channels_last(arr))
    except ImageLoadError:
        raise
    except Exception as e:
        raise ImageLoadError(f"Failed to load {os.path.basename(filename)}: {e}") from e


def _read_pil(filename: str) -> np.ndarray:
    with Image.open(filename) as img:
        if img.mode not in ("L", "RGB", "RGBA", "I", "I;16"):
            log.debug("Converting %s from mode %s to RGBA", filename, img.mode)
            img = img.convert("RGBA")
        arr = np.array(img)
    if arr.dtype == np.int32:
        arr = np.clip(arr, 0, 65535).astype(np.uint16)
    return arr


def _read_fits(filename: str) -> np.ndarray:
    if filename.lower().endswith(".gz"):
        with gzip.open(filename, "rb") as f:
            hdul = fits.open(BytesIO(f.read()))
    else:
        hdul = fits.open(filename)

    with hdul:
        hdu = next((h for h in hdul if getattr(h, "data", None) is not None and h.data.ndim >= 2), None)
        if hdu is None:
            raise ImageLoadError(f"No image data found in FITS file {os.path.basename(filename)}")
        header = hdu.header
        raw = np.asarray(hdu.data)
        if raw.dtype.byteorder not in ("=", "|"):
            raw = raw.astype(raw.dtype.newbyteorder("="))

        if raw.dtype in (np.uint8, np.uint16):
            return _drop_leading_axes(raw)
        # astropy applies BSCALE/BZERO on access for scaled integer HDUs; the
        # header check covers files opened with do_not_scale_image_data.
        bzero = float(header.get("BZERO", 0) or 0)
        bscale = float(header.get("BSCALE", 1) or 1)
        data = raw.astype(np.float32)
        if np.issubdtype(raw.dtype, np.integer) and (bzero != 0.0 or bscale != 1.0):
            data = data * bscale + bzero
        return _drop_leading_axes(data)


def _drop_leading_axes(arr: np.ndarray) -> np.ndarray:
    # NAXIS3=1 cubes come back as (1, H, W); a single row or column must stay 2-D
    while arr.ndim > 2 and arr.shape[0] == 1:
        arr = arr[0]
    return arr


def _channels_last(arr: np.ndarray) -> np.ndarray:
    # FITS and some TIFFs store colour planes first: (3, H, W)
    if arr.ndim == 3 and arr.shape[0] in (3, 4) and arr.shape[2] not in (1, 3, 4):
        return np.moveaxis(arr, 0, -1)
    return arr
