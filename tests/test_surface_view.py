import pytest
from PyQt6.QtCore import QEvent, QPoint, QPointF, Qt
from PyQt6.QtGui import QMouseEvent, QWheelEvent
from PyQt6.QtWidgets import QApplication

from opticalyx.surface import ELEVATION_MAX, ELEVATION_MIN
from opticalyx.widgets.surface_view import PSFSurfaceView


@pytest.fixture
def view(qapp):
    w = PSFSurfaceView(width=200, height=150, frame_interval_ms=5)
    yield w
    w.stop()
    w.deleteLater()


def test_empty_view_does_not_run(view):
    assert view.grid is None
    assert view.start() is False
    assert not view.is_running()
    assert view.render_image() is None


def test_set_buffer_builds_grid_and_loop_can_start(view, gaussian_buffer):
    assert view.set_buffer(gaussian_buffer) is True
    assert view.grid is not None
    assert not view.is_running()   # hidden widgets don't animate
    assert view.start() is True
    assert view.is_running()
    view.stop()
    assert not view.is_running()


def test_frame_tick_spins_unless_dragging(view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    az = view.state.azimuth
    view._on_frame()
    assert view.state.azimuth == pytest.approx(az + 0.003)

    view.pointer_down(10, 10)
    assert view.dragging
    az = view.state.azimuth
    view._on_frame()
    assert view.state.azimuth == az


def test_drag_updates_rotation(view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    view.pointer_down(50, 50)
    view.pointer_move(70, 40)
    assert view.state.azimuth == pytest.approx(0.5 + 0.2)
    assert view.state.elevation == pytest.approx(0.8 - 0.1)
    view.pointer_up()
    assert not view.dragging
    view.pointer_move(200, 200)
    assert view.state.azimuth == pytest.approx(0.7)


def test_wheel_updates_zoom_label_and_signal(view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    seen = []
    view.zoomChanged.connect(seen.append)
    assert view.wheel_step(1) == pytest.approx(1.3)
    assert seen == [pytest.approx(1.3)]
    assert view.zoom_label.text() == "ZOOM: 1.3x"
    for _ in range(40):
        view.wheel_step(1)
    assert view.zoom_label.text() == "ZOOM: 3.0x"
    n = len(seen)
    view.wheel_step(1)   # clamped, no change
    assert len(seen) == n


def test_new_image_resets_view_but_tone_toggle_keeps_it(view, gaussian_buffer, plateau_buffer):
    view.set_buffer(gaussian_buffer)
    view.wheel_step(1)
    view.pointer_down(0, 0)
    view.pointer_move(30, 0)
    view.pointer_up()
    az, zoom = view.state.azimuth, view.state.zoom

    view.set_buffer(plateau_buffer, keep_view=True)
    assert (view.state.azimuth, view.state.zoom) == (az, zoom)

    view.set_buffer(plateau_buffer)
    assert (view.state.azimuth, view.state.elevation, view.state.zoom) == (0.5, 0.8, 1.2)
    assert view.zoom_label.text() == "ZOOM: 1.2x"


def test_clear_stops_loop(view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    view.start()
    view.clear()
    assert view.grid is None
    assert not view.is_running()


def test_render_image_paints_frame(view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    img = view.render_image()
    assert img is not None
    assert (img.width(), img.height()) == (200, 150)
    # something other than the background got drawn
    bg = img.pixel(0, 0)
    assert any(img.pixel(x, y) != bg for x in range(0, 200, 4) for y in range(0, 150, 4))


def test_show_and_hide_control_loop(view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    view.show()
    assert view.is_running()
    view.hide()
    assert not view.is_running()


def _mouse(kind, x, y, button=Qt.MouseButton.LeftButton):
    pos = QPointF(x, y)
    if kind == QEvent.Type.MouseMove:
        # moves without a held button only reach widgets that track the mouse
        button, held = Qt.MouseButton.NoButton, Qt.MouseButton.LeftButton
    elif kind == QEvent.Type.MouseButtonRelease:
        held = Qt.MouseButton.NoButton
    else:
        held = button
    return QMouseEvent(kind, pos, pos, button, held, Qt.KeyboardModifier.NoModifier)


def _wheel(angle_y=0, pixel_y=0):
    pos = QPointF(20, 20)
    return QWheelEvent(
        pos, pos, QPoint(0, pixel_y), QPoint(0, angle_y),
        Qt.MouseButton.NoButton, Qt.KeyboardModifier.NoModifier,
        Qt.ScrollPhase.NoScrollPhase, False,
    )


def test_mouse_drag_events_rotate_and_clamp(qapp, view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    QApplication.sendEvent(view, _mouse(QEvent.Type.MouseButtonPress, 50, 50))
    assert view.dragging
    QApplication.sendEvent(view, _mouse(QEvent.Type.MouseMove, 70, 40))
    assert view.state.azimuth == pytest.approx(0.7)
    assert view.state.elevation == pytest.approx(0.7)

    QApplication.sendEvent(view, _mouse(QEvent.Type.MouseMove, 70, 5040))
    assert view.state.elevation == pytest.approx(ELEVATION_MAX)
    QApplication.sendEvent(view, _mouse(QEvent.Type.MouseMove, 70, -9000))
    assert view.state.elevation == pytest.approx(ELEVATION_MIN)

    QApplication.sendEvent(view, _mouse(QEvent.Type.MouseButtonRelease, 70, -9000))
    assert not view.dragging


def test_leave_event_ends_drag(qapp, view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    QApplication.sendEvent(view, _mouse(QEvent.Type.MouseButtonPress, 10, 10))
    QApplication.sendEvent(view, QEvent(QEvent.Type.Leave))
    assert not view.dragging
    az = view.state.azimuth
    QApplication.sendEvent(view, _mouse(QEvent.Type.MouseMove, 90, 10))
    assert view.state.azimuth == az


def test_right_button_does_not_drag(qapp, view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    QApplication.sendEvent(view, _mouse(QEvent.Type.MouseButtonPress, 10, 10, Qt.MouseButton.RightButton))
    assert not view.dragging


def test_wheel_events_step_zoom_once_per_event(qapp, view, gaussian_buffer):
    view.set_buffer(gaussian_buffer)
    QApplication.sendEvent(view, _wheel(angle_y=120))
    assert view.state.zoom == pytest.approx(1.3)
    assert view.zoom_label.text() == "ZOOM: 1.3x"

    QApplication.sendEvent(view, _wheel(angle_y=-480))
    assert view.state.zoom == pytest.approx(1.2)

    # touchpads may report only a pixel delta
    QApplication.sendEvent(view, _wheel(pixel_y=6))
    assert view.zoom_label.text() == "ZOOM: 1.3x"

    QApplication.sendEvent(view, _wheel())
    assert view.state.zoom == pytest.approx(1.3)

    for _ in range(30):
        QApplication.sendEvent(view, _wheel(angle_y=120))
    assert view.zoom_label.text() == "ZOOM: 3.0x"
