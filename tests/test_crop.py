import base64
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from conftest import gray_buffer
from opticalyx.imageops.crop import (
    LOG_STRETCH_GAIN,
    apply_log_stretch,
    crop_buffer,
    crop_image,
    encode_png,
    log_stretch,
)
from opticalyx.pixel_buffer import PixelBuffer


def _ramp(h=64, w=64):
    yy, xx = np.mgrid[0:h, 0:w]
    return gray_buffer((xx + yy * 2) % 256)


def test_crop_is_square_and_centered():
    src = _ramp()
    out = crop_buffer(src, 32, 32, size=16)
    assert (out.width, out.height) == (16, 16)
    assert np.array_equal(out.data, src.data[24:40, 24:40])


def test_crop_top_left_rounds_center_minus_half():
    src = _ramp()
    out = crop_buffer(src, 20.3, 30.7, size=10)
    # round(15.3) = 15, round(25.7) = 26
    assert np.array_equal(out.data, src.data[26:36, 15:25])


def test_crop_outside_source_is_transparent_black():
    src = gray_buffer(np.full((20, 20), 99, dtype=np.uint8))
    out = crop_buffer(src, 0, 0, size=8)
    assert out.data[0, 0].tolist() == [0, 0, 0, 0]
    assert out.data[4, 4].tolist() == [99, 99, 99, 255]
    assert np.all(out.data[:4, :, 3] == 0)


def test_crop_fully_outside_source():
    src = gray_buffer(np.full((10, 10), 99, dtype=np.uint8))
    out = crop_buffer(src, 500, 500, size=6)
    assert not out.data.any()


def test_crop_default_size_is_256(gaussian_buffer):
    out = crop_buffer(gaussian_buffer, 32, 32)
    assert out.shape == (256, 256)


def test_crop_rejects_zero_size(gaussian_buffer):
    with pytest.raises(ValueError):
        crop_buffer(gaussian_buffer, 32, 32, size=0)


def test_log_stretch_endpoints_and_gain():
    assert log_stretch(0) == pytest.approx(0.0)
    assert log_stretch(255) == pytest.approx(255.0)
    assert LOG_STRETCH_GAIN == pytest.approx(45.985, abs=1e-3)


def test_log_stretch_is_monotonic():
    x = np.arange(256)
    y = log_stretch(x)
    assert np.all(np.diff(y) > 0)
    assert np.all(y >= x - 1e-9)


def test_log_stretch_is_not_idempotent():
    x = np.arange(1, 255, dtype=np.float64)
    once = log_stretch(x)
    twice = log_stretch(once)
    assert np.all(np.abs(twice - once) > 1e-6)
    # 0 and 255 are the fixed points of the curve
    assert log_stretch(log_stretch(0.0)) == pytest.approx(0.0)
    assert log_stretch(log_stretch(255.0)) == pytest.approx(255.0)


def test_apply_log_stretch_keeps_alpha():
    rgba = np.zeros((2, 2, 4), dtype=np.uint8)
    rgba[..., 0] = [[0, 10], [100, 255]]
    rgba[..., 3] = [[0, 50], [128, 255]]
    out = apply_log_stretch(PixelBuffer(2, 2, rgba))
    assert out.data[..., 3].tolist() == [[0, 50], [128, 255]]
    assert out.data[0, 0, 0] == 0
    assert out.data[1, 1, 0] == 255
    assert out.data[0, 1, 0] == int(np.rint(LOG_STRETCH_GAIN * np.log(11)))


def test_encode_png_decodes_to_same_pixels():
    src = _ramp(12, 9)
    png = encode_png(src)
    assert png[:8] == b"\x89PNG\r\n\x1a\n"
    with Image.open(BytesIO(png)) as img:
        assert img.mode == "RGBA"
        assert np.array_equal(np.array(img), src.data)


def test_crop_image_result(gaussian_buffer):
    res = crop_image(gaussian_buffer, 32, 32, size=32)
    assert res.log_stretch is False
    assert res.buffer.shape == (32, 32)
    assert base64.b64decode(res.base64()) == res.png_bytes
    assert res.data_url().startswith("data:image/png;base64,")


def test_crop_image_with_log_stretch_brightens_wings(gaussian_buffer):
    lin = crop_image(gaussian_buffer, 32, 32, size=32)
    stretched = crop_image(gaussian_buffer, 32, 32, size=32, apply_log=True)
    assert stretched.log_stretch is True
    assert stretched.buffer.data[0, 0, 0] > lin.buffer.data[0, 0, 0]
    assert stretched.png_bytes != lin.png_bytes
