# opticalyx/widgets/surface_view.py
from __future__ import annotations

import logging

from PyQt6.QtCore import Qt, QTimer, QPointF, pyqtSignal
from PyQt6.QtGui import QColor, QImage, QPainter, QPen, QPolygonF
from PyQt6.QtWidgets import QLabel, QWidget

from opticalyx.pixel_buffer import PixelBuffer
from opticalyx.surface import (
    GRID_COLOR,
    GRID_SIZE,
    PLANE_COLOR,
    ProjectionState,
    SurfaceGrid,
    build_surface_grid,
    project_base_plane,
    project_grid,
)

log = logging.getLogger(__name__)

BACKGROUND = QColor("#0B0D17")
DEFAULT_FRAME_MS = 16


def _qcolor(rgba) -> QColor:
    r, g, b, a = rgba
    return QColor(int(r), int(g), int(b), int(round(a * 255)))


def paint_surface(p: QPainter, grid: SurfaceGrid, state: ProjectionState, width: int, height: int) -> None:
    """Draw one wireframe frame: grid rows, height-tinted columns, base plane."""
    p.fillRect(0, 0, width, height, BACKGROUND)
    p.setRenderHint(QPainter.RenderHint.Antialiasing)

    sx, sy = project_grid(grid, state, width, height)
    n = grid.grid_size

    # rows: faint constant tint, structure only
    pen = QPen(_qcolor(GRID_COLOR), 1.5)
    pen.setJoinStyle(Qt.PenJoinStyle.RoundJoin)
    p.setPen(pen)
    for row in range(n + 1):
        poly = QPolygonF([QPointF(float(sx[row, c]), float(sy[row, c])) for c in range(n + 1)])
        p.drawPolyline(poly)

    # columns: one stroke per segment so each can carry its own colour
    for col in range(n + 1):
        colors = grid.segment_colors[col]
        widths = grid.segment_widths[col]
        for row in range(n):
            seg_pen = QPen(_qcolor(colors[row]), float(widths[row]))
            seg_pen.setJoinStyle(Qt.PenJoinStyle.RoundJoin)
            p.setPen(seg_pen)
            p.drawLine(
                QPointF(float(sx[row, col]), float(sy[row, col])),
                QPointF(float(sx[row + 1, col]), float(sy[row + 1, col])),
            )

    px, py = project_base_plane(grid, state, width, height)
    p.setPen(QPen(_qcolor(PLANE_COLOR), 2))
    p.setBrush(Qt.BrushStyle.NoBrush)
    p.drawPolygon(QPolygonF([QPointF(float(x), float(y)) for x, y in zip(px, py)]))


class PSFSurfaceView(QWidget):
    """
    Rotating wireframe of the cropped PSF.

    A QTimer drives the render loop: every tick advances the idle spin (unless
    the user is dragging) and schedules a repaint. The loop runs only while the
    widget is visible and has a grid; hiding, closing or stop() cancels it.
    """
    zoomChanged = pyqtSignal(float)

    def __init__(self, buffer: PixelBuffer | None = None, parent=None, *,
                 width: int = 360, height: int = 250,
                 frame_interval_ms: int = DEFAULT_FRAME_MS,
                 grid_size: int = GRID_SIZE):
        super().__init__(parent)
        self.setFixedSize(int(width), int(height))
        self.setCursor(Qt.CursorShape.SizeAllCursor)
        self.setAttribute(Qt.WidgetAttribute.WA_OpaquePaintEvent, True)

        self.state = ProjectionState()
        self.grid_size = int(grid_size)
        self._grid: SurfaceGrid | None = None
        self._dragging = False
        self._last_pos: tuple[float, float] | None = None

        self._timer = QTimer(self)
        self._timer.setInterval(max(1, int(frame_interval_ms)))
        self._timer.timeout.connect(self._on_frame)

        self._legend = QLabel(self.tr("INTENSITY"), self)
        self._legend.setStyleSheet(
            "QLabel { color: #8FA1E0; font: 9px monospace; padding: 2px 26px 2px 2px;"
            " background: qlineargradient(x1:0.7, y1:0, x2:1, y2:0,"
            " stop:0 transparent, stop:0.01 #1D4ED8, stop:0.5 #22C55E, stop:1 #F97316); }"
        )
        self._legend.setAttribute(Qt.WidgetAttribute.WA_TransparentForMouseEvents, True)
        self._legend.adjustSize()
        self._legend.move(self.width() - self._legend.width() - 8, 8)

        self.zoom_label = QLabel(self)
        self.zoom_label.setStyleSheet(
            "QLabel { color: #8FA1E0; background: rgba(21,25,43,200); border: 1px solid #3D4C8A;"
            " border-radius: 3px; font: 10px monospace; padding: 1px 4px; }"
        )
        self.zoom_label.setAttribute(Qt.WidgetAttribute.WA_TransparentForMouseEvents, True)
        self._update_zoom_label()

        if buffer is not None:
            self.set_buffer(buffer)

    # ---------- data ----------
    @property
    def grid(self) -> SurfaceGrid | None:
        return self._grid

    def set_buffer(self, buffer: PixelBuffer | None, *, keep_view: bool = False) -> bool:
        """
        Rebuild the height field from a new crop. A new image resets the
        camera; a tone-map toggle passes keep_view=True to hold it.
        Returns False (and leaves the loop stopped) when nothing can be drawn.
        """
        try:
            grid = build_surface_grid(buffer, self.grid_size) if buffer is not None else None
        except ValueError as e:
            log.debug("Surface build skipped: %s", e)
            grid = None

        self._grid = grid
        self._dragging = False
        if not keep_view:
            self.state.reset()
            self._update_zoom_label()
            self.zoomChanged.emit(self.state.zoom)

        if grid is None:
            self.stop()
            self.update()
            return False
        if self.isVisible():
            self.start()
        self.update()
        return True

    def clear(self) -> None:
        self.set_buffer(None)

    # ---------- render loop ----------
    def start(self) -> bool:
        if self._grid is None:
            return False
        if not self._timer.isActive():
            self._timer.start()
        return True

    def stop(self) -> None:
        if self._timer.isActive():
            self._timer.stop()

    def is_running(self) -> bool:
        return self._timer.isActive()

    def _on_frame(self):
        if self._grid is None:
            self.stop()
            return
        if not self._dragging:
            self.state.spin()
        self.update()

    def render_image(self) -> QImage | None:
        """Paint the current frame into an off-screen image."""
        if self._grid is None:
            return None
        img = QImage(self.width(), self.height(), QImage.Format.Format_RGB32)
        img.fill(BACKGROUND)
        p = QPainter(img)
        try:
            paint_surface(p, self._grid, self.state, self.width(), self.height())
        finally:
            p.end()
        return img

    # ---------- interaction ----------
    def pointer_down(self, x: float, y: float) -> None:
        self._dragging = True
        self._last_pos = (float(x), float(y))

    def pointer_move(self, x: float, y: float) -> None:
        if not self._dragging or self._last_pos is None:
            return
        lx, ly = self._last_pos
        self.state.drag(float(x) - lx, float(y) - ly)
        self._last_pos = (float(x), float(y))
        self.update()

    def pointer_up(self) -> None:
        self._dragging = False

    def wheel_step(self, direction: float) -> float:
        """One wheel notch; positive zooms in."""
        before = self.state.zoom
        z = self.state.wheel(direction)
        if z != before:
            self._update_zoom_label()
            self.zoomChanged.emit(z)
            self.update()
        return z

    @property
    def dragging(self) -> bool:
        return self._dragging

    def _update_zoom_label(self):
        self.zoom_label.setText(self.tr("ZOOM: {0:.1f}x").format(self.state.zoom))
        self.zoom_label.adjustSize()
        self.zoom_label.move(8, self.height() - self.zoom_label.height() - 8)

    # ---------- Qt events ----------
    def mousePressEvent(self, e):
        if e.button() == Qt.MouseButton.LeftButton:
            pos = e.position()
            self.pointer_down(pos.x(), pos.y())
            e.accept()
            return
        super().mousePressEvent(e)

    def mouseMoveEvent(self, e):
        if self._dragging:
            pos = e.position()
            self.pointer_move(pos.x(), pos.y())
            e.accept()
            return
        super().mouseMoveEvent(e)

    def mouseReleaseEvent(self, e):
        self.pointer_up()
        super().mouseReleaseEvent(e)

    def leaveEvent(self, e):
        self.pointer_up()
        super().leaveEvent(e)

    def wheelEvent(self, e):
        dy = e.angleDelta().y() or e.pixelDelta().y()
        if dy:
            self.wheel_step(1 if dy > 0 else -1)
        e.accept()

    def paintEvent(self, e):
        p = QPainter(self)
        if not p.isActive():
            log.debug("Surface view: paint device unavailable, frame skipped")
            return
        try:
            if self._grid is None:
                p.fillRect(self.rect(), BACKGROUND)
                p.setPen(QColor("#3D4C8A"))
                p.drawText(self.rect(), Qt.AlignmentFlag.AlignCenter, self.tr("No PSF loaded"))
            else:
                paint_surface(p, self._grid, self.state, self.width(), self.height())
        finally:
            p.end()

    def showEvent(self, e):
        super().showEvent(e)
        self.start()

    def hideEvent(self, e):
        self.stop()
        super().hideEvent(e)

    def closeEvent(self, e):
        self.stop()
        super().closeEvent(e)
