from opticalyx.imageops.psf_stats import (
    Centroid,
    ProcessingStats,
    calculate_centroid,
    check_saturation,
    estimate_stats,
)
from opticalyx.imageops.radial_profile import RadialDataPoint, calculate_radial_profile
from opticalyx.imageops.crop import CropResult, crop_image, log_stretch

__all__ = [
    "Centroid",
    "ProcessingStats",
    "calculate_centroid",
    "check_saturation",
    "estimate_stats",
    "RadialDataPoint",
    "calculate_radial_profile",
    "CropResult",
    "crop_image",
    "log_stretch",
]
