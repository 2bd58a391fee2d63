# opticalyx/pipeline.py
"""
Per-image analysis: statistics → quality gates → radial profile → crop.

Every product derived from one source image lives in a single frozen
PSFAnalysis. Loading a new image or toggling the log view produces a new
record; nothing is patched in place.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from opticalyx.imageops.crop import CropResult, crop_image
from opticalyx.imageops.psf_stats import ProcessingStats, check_saturation, estimate_stats
from opticalyx.imageops.radial_profile import RadialDataPoint, calculate_radial_profile
from opticalyx.pixel_buffer import PixelBuffer, load_image

log = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    severity: str   # "error" blocks the analysis, "warning" only flags it
    code: str
    message: str


@dataclass(frozen=True)
class AnalysisSettings:
    min_peak_intensity: float = 20.0
    min_snr: float = 3.0
    saturation_radius: int = 3
    profile_radius: int = 64
    crop_size: int = 256

    @classmethod
    def from_config(cls, cfg) -> "AnalysisSettings":
        return cls(
            min_peak_intensity=float(cfg.min_peak_intensity),
            min_snr=float(cfg.min_snr),
            saturation_radius=int(cfg.saturation_radius),
            profile_radius=int(cfg.profile_radius),
            crop_size=int(cfg.crop_size),
        )


@dataclass(frozen=True, eq=False)
class PSFAnalysis:
    buffer: PixelBuffer
    stats: ProcessingStats
    saturated: bool
    issues: tuple[ValidationIssue, ...]
    profile: tuple[RadialDataPoint, ...] | None
    crop: CropResult | None
    log_stretch: bool
    settings: AnalysisSettings

    @property
    def errors(self) -> tuple[ValidationIssue, ...]:
        return tuple(i for i in self.issues if i.severity == ERROR)

    @property
    def warnings(self) -> tuple[ValidationIssue, ...]:
        return tuple(i for i in self.issues if i.severity == WARNING)

    @property
    def ok(self) -> bool:
        return not self.errors

    def with_log_stretch(self, enabled: bool) -> "PSFAnalysis":
        """Same image and statistics, fresh crop in the requested tone mode."""
        enabled = bool(enabled)
        if enabled == self.log_stretch:
            return self
        crop = None
        if self.ok:
            c = self.stats.centroid
            crop = crop_image(self.buffer, c.x, c.y, self.settings.crop_size, enabled)
        return replace(self, crop=crop, log_stretch=enabled)

    def to_dict(self, *, include_profile: bool = False) -> dict:
        s = self.stats
        out = {
            "width": self.buffer.width,
            "height": self.buffer.height,
            "centroid": {"x": s.centroid.x, "y": s.centroid.y},
            "fwhm_pixels": s.fwhm_pixels,
            "snr": s.snr,
            "peak_intensity": s.peak_intensity,
            "background_level": s.background_level,
            "saturated": self.saturated,
            "ok": self.ok,
            "log_stretch": self.log_stretch,
            "issues": [{"severity": i.severity, "code": i.code, "message": i.message} for i in self.issues],
        }
        if include_profile and self.profile is not None:
            out["radial_profile"] = [
                {"radius": p.radius, "intensity": p.intensity, "ideal_diffraction": p.ideal_diffraction}
                for p in self.profile
            ]
        return out


def validate(stats: ProcessingStats, saturated: bool, settings: AnalysisSettings) -> tuple[ValidationIssue, ...]:
    issues = []
    if saturated:
        issues.append(ValidationIssue(
            WARNING, "saturated",
            "The star is saturated (clipped). Strehl and shape estimates will be unreliable; "
            "shorten the exposure.",
        ))
    if stats.peak_intensity < settings.min_peak_intensity:
        issues.append(ValidationIssue(
            ERROR, "signal_too_weak",
            "Signal too weak. Load an image of a brighter star.",
        ))
    elif stats.snr < settings.min_snr:
        issues.append(ValidationIssue(
            ERROR, "snr_too_low",
            "Signal-to-noise ratio too low for a reliable analysis.",
        ))
    return tuple(issues)


def analyze_buffer(buf: PixelBuffer, *, log_stretch: bool = False,
                   settings: AnalysisSettings | None = None, config=None) -> PSFAnalysis:
    if settings is None:
        settings = AnalysisSettings.from_config(config) if config is not None else AnalysisSettings()

    stats = estimate_stats(buf)
    c = stats.centroid
    saturated = check_saturation(buf, c.x, c.y, settings.saturation_radius)
    issues = validate(stats, saturated, settings)
    log.debug("PSF stats %s saturated=%s issues=%s", stats, saturated, [i.code for i in issues])

    profile = None
    crop = None
    if not any(i.severity == ERROR for i in issues):
        profile = calculate_radial_profile(buf, c.x, c.y, settings.profile_radius)
        crop = crop_image(buf, c.x, c.y, settings.crop_size, log_stretch)
    else:
        log.info("Analysis blocked: %s", ", ".join(i.code for i in issues if i.severity == ERROR))

    return PSFAnalysis(
        buffer=buf,
        stats=stats,
        saturated=saturated,
        issues=issues,
        profile=profile,
        crop=crop,
        log_stretch=bool(log_stretch),
        settings=settings,
    )


def analyze_file(path, **kwargs) -> PSFAnalysis:
    return analyze_buffer(load_image(path), **kwargs)
