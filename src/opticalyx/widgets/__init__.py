# opticalyx/widgets/__init__.py
"""
Qt widgets for the PSF diagnostics window.
"""

from opticalyx.widgets.surface_view import PSFSurfaceView, paint_surface

__all__ = [
    'PSFSurfaceView',
    'paint_surface',
]
