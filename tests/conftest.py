"""Shared fixtures: synthetic star frames, an offscreen QApplication, INI-backed settings."""

import os
import sys
from pathlib import Path

import numpy as np
import pytest

TESTS_DIR = Path(__file__).parent
PROJECT_DIR = TESTS_DIR.parent
SRC_DIR = PROJECT_DIR / "src"

# Ensure tests import this checkout (src layout), not an installed package.
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from opticalyx.pixel_buffer import PixelBuffer  # noqa: E402


def gray_buffer(values: np.ndarray) -> PixelBuffer:
    """Mono uint8 (H, W) -> opaque RGBA buffer with R=G=B."""
    v = np.asarray(values, dtype=np.uint8)
    rgba = np.empty(v.shape + (4,), dtype=np.uint8)
    rgba[..., 0] = v
    rgba[..., 1] = v
    rgba[..., 2] = v
    rgba[..., 3] = 255
    return PixelBuffer(v.shape[1], v.shape[0], rgba)


def gaussian_star(size=64, cx=32.0, cy=32.0, sigma=3.0, peak=200.0, background=10.0) -> PixelBuffer:
    yy, xx = np.mgrid[0:size, 0:size]
    img = background + peak * np.exp(-((xx - cx) ** 2 + (yy - cy) ** 2) / (2 * sigma ** 2))
    return gray_buffer(np.clip(np.rint(img), 0, 255))


def plateau_star(size=64, center=32, half=2, value=200, background=10) -> PixelBuffer:
    img = np.full((size, size), background, dtype=np.uint8)
    img[center - half:center + half + 1, center - half:center + half + 1] = value
    return gray_buffer(img)


@pytest.fixture
def blank_buffer():
    return gray_buffer(np.zeros((48, 64), dtype=np.uint8))


@pytest.fixture
def plateau_buffer():
    return plateau_star()


@pytest.fixture
def gaussian_buffer():
    return gaussian_star()


@pytest.fixture(scope="session")
def qapp():
    from PyQt6.QtWidgets import QApplication
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def app_config(tmp_path):
    from PyQt6.QtCore import QSettings
    from opticalyx.config_manager import AppConfig

    settings = QSettings(str(tmp_path / "opticalyx.ini"), QSettings.Format.IniFormat)
    cfg = AppConfig(settings=settings)
    yield cfg
    AppConfig.reset_instance()
