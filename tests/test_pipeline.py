import json
import math

import numpy as np
import pytest
from PIL import Image

from conftest import plateau_star
from opticalyx.pipeline import AnalysisSettings, ERROR, WARNING, analyze_buffer, analyze_file, validate
from opticalyx.imageops.psf_stats import estimate_stats


def test_blank_frame_is_blocked(blank_buffer):
    res = analyze_buffer(blank_buffer)
    assert not res.ok
    assert [i.code for i in res.errors] == ["signal_too_weak"]
    assert res.profile is None
    assert res.crop is None
    assert res.stats.snr == 0


def test_plateau_end_to_end(plateau_buffer):
    res = analyze_buffer(plateau_buffer)
    assert res.ok
    assert res.issues == ()
    assert res.stats.peak_intensity == 200
    assert math.isfinite(res.stats.snr) and res.stats.snr > 0
    assert res.stats.centroid.x == pytest.approx(32.0, abs=0.5)
    assert res.stats.centroid.y == pytest.approx(32.0, abs=0.5)
    assert len(res.profile) == 64
    assert res.profile[0].intensity == pytest.approx(1.0)
    assert res.crop.buffer.shape == (256, 256)
    assert res.crop.log_stretch is False


def test_saturated_star_is_a_warning_only():
    res = analyze_buffer(plateau_star(value=255))
    assert res.saturated
    assert res.ok
    assert [i.code for i in res.warnings] == ["saturated"]
    assert res.warnings[0].severity == WARNING
    assert res.crop is not None


def test_low_snr_blocks(plateau_buffer):
    res = analyze_buffer(plateau_buffer, settings=AnalysisSettings(min_snr=100))
    assert [i.code for i in res.errors] == ["snr_too_low"]
    assert res.errors[0].severity == ERROR
    assert res.profile is None and res.crop is None


def test_weak_signal_reported_instead_of_snr(blank_buffer):
    issues = validate(estimate_stats(blank_buffer), False, AnalysisSettings(min_snr=100))
    assert [i.code for i in issues] == ["signal_too_weak"]


def test_settings_from_config(app_config, plateau_buffer):
    app_config.crop_size = 64
    app_config.profile_radius = 16
    res = analyze_buffer(plateau_buffer, config=app_config)
    assert res.settings.crop_size == 64
    assert res.crop.buffer.shape == (64, 64)
    assert len(res.profile) == 16


def test_with_log_stretch_recrops_without_touching_stats(plateau_buffer):
    res = analyze_buffer(plateau_buffer, settings=AnalysisSettings(crop_size=32))
    assert res.with_log_stretch(False) is res

    stretched = res.with_log_stretch(True)
    assert stretched is not res
    assert stretched.log_stretch is True
    assert stretched.crop.log_stretch is True
    assert stretched.stats == res.stats
    assert stretched.profile == res.profile
    assert stretched.crop.buffer.data[0, 0, 0] > res.crop.buffer.data[0, 0, 0]

    back = stretched.with_log_stretch(False)
    assert np.array_equal(back.crop.buffer.data, res.crop.buffer.data)


def test_blocked_analysis_toggle_keeps_no_crop(blank_buffer):
    res = analyze_buffer(blank_buffer).with_log_stretch(True)
    assert res.log_stretch is True
    assert res.crop is None


def test_to_dict_is_json_serializable(plateau_buffer):
    res = analyze_buffer(plateau_buffer)
    d = res.to_dict()
    assert "radial_profile" not in d
    assert d["peak_intensity"] == 200
    assert d["ok"] is True
    full = json.loads(json.dumps(res.to_dict(include_profile=True)))
    assert len(full["radial_profile"]) == 64
    assert full["radial_profile"][0]["radius"] == 0


def test_analyze_file_png(tmp_path, plateau_buffer):
    path = tmp_path / "star.png"
    Image.fromarray(np.asarray(plateau_buffer.data)).save(path)
    res = analyze_file(path, log_stretch=True)
    assert res.ok
    assert res.log_stretch is True
    assert res.stats.peak_intensity == 200
