"""
OptiCalyx - PSF diagnostics for astro-imagers.

Measures a star's point-spread function (centroid, FWHM, SNR, radial
profile, saturation), prepares the crop sent to the diagnosis service and
renders the PSF as an interactive 3D surface.
"""

from .pixel_buffer import ImageLoadError, PixelBuffer, load_image
from .pipeline import PSFAnalysis, ValidationIssue, analyze_buffer, analyze_file

__all__ = [
    "ImageLoadError",
    "PixelBuffer",
    "load_image",
    "PSFAnalysis",
    "ValidationIssue",
    "analyze_buffer",
    "analyze_file",
]
