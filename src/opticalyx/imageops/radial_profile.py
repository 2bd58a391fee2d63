# opticalyx/imageops/radial_profile.py
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from opticalyx.pixel_buffer import PixelBuffer

DEFAULT_MAX_RADIUS = 64


@dataclass(frozen=True)
class RadialDataPoint:
    radius: int
    intensity: float
    ideal_diffraction: float


def ideal_diffraction(radius) -> np.ndarray | float:
    """
    Gaussian-like reference curve exp(-0.1 r^2) drawn next to the measured
    profile. Illustrative only: it is not an Airy pattern and carries no
    information about the instrument.
    """
    r = np.asarray(radius, dtype=np.float64)
    out = np.exp(-0.1 * r * r)
    return float(out) if out.ndim == 0 else out


def calculate_radial_profile(
    buf: PixelBuffer,
    center_x: float,
    center_y: float,
    max_radius: int = DEFAULT_MAX_RADIUS,
) -> tuple[RadialDataPoint, ...]:
    """
    Mean intensity in unit-width rings around (center_x, center_y).

    Returns exactly ``max_radius`` points, radius 0..max_radius-1. Intensities
    are normalized to the center ring (255 when the center ring is empty);
    rings without pixels report 0.
    """
    max_radius = int(max_radius)
    if max_radius < 1:
        raise ValueError(f"max_radius must be >= 1, got {max_radius}")

    sums = np.zeros(max_radius, dtype=np.float64)
    counts = np.zeros(max_radius, dtype=np.int64)

    if not buf.is_empty():
        yy, xx = np.mgrid[0:buf.height, 0:buf.width]
        dist = np.hypot(xx - center_x, yy - center_y)
        inside = dist < max_radius
        bins = np.floor(dist[inside]).astype(np.int64)
        lum = buf.luminosity()[inside]
        sums += np.bincount(bins, weights=lum, minlength=max_radius)[:max_radius]
        counts += np.bincount(bins, minlength=max_radius)[:max_radius]

    means = np.divide(sums, counts, out=np.zeros_like(sums), where=counts > 0)
    peak = means[0] if counts[0] > 0 else 255.0
    if peak > 0:
        norm = means / peak
    else:
        norm = np.zeros_like(means)

    ref = ideal_diffraction(np.arange(max_radius))
    return tuple(
        RadialDataPoint(radius=i, intensity=float(norm[i]), ideal_diffraction=float(ref[i]))
        for i in range(max_radius)
    )
