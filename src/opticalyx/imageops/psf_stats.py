# opticalyx/imageops/psf_stats.py
"""
Centroid, saturation and FWHM/SNR estimates for a single-star PSF frame.

All functions are pure passes over a PixelBuffer. Degenerate input (a
blank frame) yields sentinel values instead of raising; deciding whether
the star is usable is left to the caller.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from opticalyx.pixel_buffer import PixelBuffer

CENTROID_FRACTION = 0.2      # pixels above this share of the peak feed the center of mass
BACKGROUND_FRACTION = 0.1    # pixels below this share of the peak are background
SATURATION_LEVEL = 250       # near 255 for 8-bit data
SATURATION_MAX_PIXELS = 4    # more than this many clipped pixels in the core => saturated


@dataclass(frozen=True)
class Centroid:
    x: float
    y: float
    max_val: float


@dataclass(frozen=True)
class ProcessingStats:
    centroid: Centroid
    fwhm_pixels: float
    snr: float
    peak_intensity: int
    background_level: int


def calculate_centroid(buf: PixelBuffer, *, running_peak: bool = False) -> Centroid:
    """
    Intensity-weighted center of mass of the star core.

    Only pixels brighter than 20% of the peak take part.

    ``running_peak=True`` is the single-pass streaming rule earlier OptiCalyx
    releases used: the peak is the brightest value seen so far in a row-major
    scan, so background rows scanned before the star pass an early, low
    threshold and pull the centroid toward the top of the frame. The default
    compares against the frame's global peak instead.
    """
    if buf.is_empty():
        return Centroid(buf.width / 2, buf.height / 2, 0.0)

    lum = buf.luminosity().ravel()
    max_val = float(lum.max())

    if running_peak:
        peak = np.maximum.accumulate(lum)
    else:
        peak = max_val
    mask = lum > peak * CENTROID_FRACTION

    total_mass = float(lum[mask].sum())
    if total_mass == 0:
        return Centroid(buf.width / 2, buf.height / 2, 0.0)

    idx = np.flatnonzero(mask)
    ys, xs = np.divmod(idx, buf.width)
    w = lum[mask]
    return Centroid(
        x=float(np.dot(xs, w) / total_mass),
        y=float(np.dot(ys, w) / total_mass),
        max_val=max_val,
    )


def check_saturation(buf: PixelBuffer, center_x: float, center_y: float, radius: float = 3) -> bool:
    """
    True when more than four pixels in the square around the center have any
    channel at or above 250. The window is clipped to the frame.
    """
    y0 = max(int(math.floor(center_y - radius)), 0)
    y1 = min(int(math.ceil(center_y + radius)), buf.height - 1)
    x0 = max(int(math.floor(center_x - radius)), 0)
    x1 = min(int(math.ceil(center_x + radius)), buf.width - 1)
    if y1 < y0 or x1 < x0:
        return False

    window = buf.data[y0:y1 + 1, x0:x1 + 1, :3]
    clipped = np.any(window >= SATURATION_LEVEL, axis=2)
    return int(np.count_nonzero(clipped)) > SATURATION_MAX_PIXELS


def estimate_stats(buf: PixelBuffer, *, running_peak: bool = False) -> ProcessingStats:
    centroid = calculate_centroid(buf, running_peak=running_peak)
    max_val = centroid.max_val
    lum = buf.luminosity()

    # Area = pi * (FWHM/2)^2 with square pixels => FWHM = 2 * sqrt(count / pi)
    half_max_count = int(np.count_nonzero(lum > max_val / 2))
    fwhm = 2.0 * math.sqrt(half_max_count / math.pi)

    bg_mask = lum < max_val * BACKGROUND_FRACTION
    bg = float(lum[bg_mask].mean()) if np.any(bg_mask) else 0.0
    signal = max_val - bg
    noise = math.sqrt(bg + 1.0)  # shot noise, floored at 1
    snr = signal / noise
    if not math.isfinite(snr):
        snr = 0.0

    return ProcessingStats(
        centroid=centroid,
        fwhm_pixels=round(fwhm, 2),
        snr=round(snr, 1),
        peak_intensity=int(math.floor(max_val)),
        background_level=int(math.floor(bg)),
    )
