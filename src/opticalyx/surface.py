# opticalyx/surface.py
"""
Height-field model behind the 3D PSF view.

The cropped buffer is sampled down to an (N+1)×(N+1) grid whose heights
are normalized luminosity. Projection rotates the grid about Z (azimuth)
then X (elevation), exaggerates height, applies a simple perspective
divide and maps to widget pixels. Everything here is numpy; the Qt widget
only paints what these functions return.
"""
from __future__ import annotations

import colorsys
import math
from dataclasses import dataclass, field

import numpy as np

from opticalyx.pixel_buffer import PixelBuffer

GRID_SIZE = 32
HEIGHT_SCALE = 15.0
CAMERA_DISTANCE = 500.0
FOCAL = 400.0
PIXEL_SCALE = 8.0

ELEVATION_MIN = 0.2
ELEVATION_MAX = math.pi / 2.2
ZOOM_MIN = 0.5
ZOOM_MAX = 3.0
ZOOM_STEP = 0.1
DRAG_SENSITIVITY = 0.01   # radians per pixel
IDLE_SPIN = 0.003         # radians per frame

NOISE_FLOOR = 0.1
PEAK_EMPHASIS = 0.5
NOISE_COLOR = (46, 54, 94, 0.5)
GRID_COLOR = (80, 100, 160, 0.3)
PLANE_COLOR = (61, 76, 138, 1.0)


def height_color(h: float) -> tuple[int, int, int]:
    """hsl(240 - 210*h, 100%, 60%): blue for the floor, orange for the peak."""
    hue = (240.0 - 210.0 * float(h)) / 360.0
    r, g, b = colorsys.hls_to_rgb(hue % 1.0, 0.6, 1.0)
    return int(round(r * 255)), int(round(g * 255)), int(round(b * 255))


@dataclass(frozen=True, eq=False)
class SurfaceGrid:
    grid_size: int
    local_x: np.ndarray   # (N+1, N+1), row index = y
    local_y: np.ndarray
    height: np.ndarray    # 0..1
    colors: tuple         # colors[row][col] -> (r, g, b)
    segment_colors: tuple = field(repr=False)   # [col][row] for vertical segment row->row+1
    segment_widths: np.ndarray = field(repr=False)

    @property
    def extent(self) -> float:
        return self.grid_size / 2


def build_surface_grid(buf: PixelBuffer, grid_size: int = GRID_SIZE) -> SurfaceGrid:
    if buf is None or buf.is_empty():
        raise ValueError("Cannot build a surface from an empty buffer")
    n = int(grid_size)
    if n < 1:
        raise ValueError(f"grid_size must be >= 1, got {n}")

    step_x = buf.width / n
    step_y = buf.height / n
    idx = np.arange(n + 1, dtype=np.float64)
    px = np.floor(np.minimum(idx * step_x, buf.width - 1)).astype(np.intp)
    py = np.floor(np.minimum(idx * step_y, buf.height - 1)).astype(np.intp)

    lum = buf.luminosity()
    height = lum[np.ix_(py, px)] / 255.0
    local_y, local_x = np.meshgrid(idx - n / 2, idx - n / 2, indexing="ij")

    colors = tuple(tuple(height_color(h) for h in row) for row in height)

    # vertical strokes: segment (row, col) -> (row + 1, col), tinted by the upper end point
    seg_max = np.maximum(height[:-1, :], height[1:, :])
    seg_colors = []
    for col in range(n + 1):
        column = []
        for row in range(n):
            if seg_max[row, col] < NOISE_FLOOR:
                column.append(NOISE_COLOR)
            else:
                r, g, b = colors[row + 1][col]
                column.append((r, g, b, 1.0))
        seg_colors.append(tuple(column))
    seg_widths = np.where(seg_max > PEAK_EMPHASIS, 2.0, 1.0).T

    return SurfaceGrid(
        grid_size=n,
        local_x=local_x,
        local_y=local_y,
        height=height,
        colors=colors,
        segment_colors=tuple(seg_colors),
        segment_widths=seg_widths,
    )


@dataclass
class ProjectionState:
    azimuth: float = 0.5
    elevation: float = 0.8
    zoom: float = 1.2

    def spin(self, step: float = IDLE_SPIN) -> None:
        self.azimuth += step

    def drag(self, dx: float, dy: float) -> None:
        self.azimuth += dx * DRAG_SENSITIVITY
        self.elevation += dy * DRAG_SENSITIVITY
        self.elevation = max(ELEVATION_MIN, min(ELEVATION_MAX, self.elevation))

    def wheel(self, steps: float) -> float:
        """Positive steps zoom in. Returns the new zoom."""
        if steps:
            delta = math.copysign(ZOOM_STEP, steps)
            self.zoom = min(max(ZOOM_MIN, self.zoom + delta), ZOOM_MAX)
        return self.zoom

    def reset(self) -> None:
        self.azimuth, self.elevation, self.zoom = 0.5, 0.8, 1.2


def project(x, y, z, state: ProjectionState, width: float, height: float):
    """Map grid-space points to widget pixels. Works on scalars or arrays."""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    z = np.asarray(z, dtype=np.float64) * HEIGHT_SCALE

    cos_x, sin_x = math.cos(state.elevation), math.sin(state.elevation)
    cos_z, sin_z = math.cos(state.azimuth), math.sin(state.azimuth)

    x1 = x * cos_z - y * sin_z
    y1 = x * sin_z + y * cos_z
    y2 = y1 * cos_x - z * sin_x
    z2 = y1 * sin_x + z * cos_x

    k = FOCAL / (CAMERA_DISTANCE - y2)
    s = k * PIXEL_SCALE * state.zoom
    return x1 * s + width / 2, -z2 * s + height / 1.5


def project_grid(grid: SurfaceGrid, state: ProjectionState, width: float, height: float):
    return project(grid.local_x, grid.local_y, grid.height, state, width, height)


def project_base_plane(grid: SurfaceGrid, state: ProjectionState, width: float, height: float):
    """Screen corners of the z=0 reference square, in drawing order."""
    e = grid.extent
    cx = np.array([-e, e, e, -e], dtype=np.float64)
    cy = np.array([-e, -e, e, e], dtype=np.float64)
    return project(cx, cy, np.zeros(4), state, width, height)
