# opticalyx/psf_dialog.py
from __future__ import annotations

import logging
import os

from PyQt6.QtCore import QObject, Qt, QThread, pyqtSignal
from PyQt6.QtGui import QImage, QPixmap
from PyQt6.QtWidgets import (
    QDialog, QFileDialog, QHBoxLayout, QLabel, QMessageBox, QPushButton,
    QTableWidget, QTableWidgetItem, QTextEdit, QVBoxLayout,
)

from opticalyx.config_manager import AppConfig, get_app_config
from opticalyx.diagnosis import (
    AnalysisReport, DiagnosisClient, DiagnosisError, InstrumentConfig, format_report,
)
from opticalyx.pipeline import AnalysisSettings, PSFAnalysis, analyze_buffer
from opticalyx.pixel_buffer import ImageLoadError, PixelBuffer, load_image
from opticalyx.widgets.surface_view import PSFSurfaceView

log = logging.getLogger(__name__)

IMAGE_FILTER = "Images (*.png *.jpg *.jpeg *.bmp *.tif *.tiff *.fit *.fits *.fts *.fits.gz)"


def buffer_to_qimage(buf: PixelBuffer) -> QImage:
    data = buf.to_bytes()
    img = QImage(data, buf.width, buf.height, buf.width * 4, QImage.Format.Format_RGBA8888)
    return img.copy()  # detach from the temporary bytes


class _DiagnosisWorker(QObject):
    finished = pyqtSignal(object)   # AnalysisReport
    failed = pyqtSignal(str)

    def __init__(self, client: DiagnosisClient, payload: str, instrument: InstrumentConfig):
        super().__init__()
        self.client = client
        self.payload = payload
        self.instrument = instrument

    def run(self):
        try:
            self.finished.emit(self.client.analyze(self.payload, self.instrument))
        except DiagnosisError as e:
            self.failed.emit(str(e))


class _DiagnosisJob(QObject):
    """
    One diagnosis request: a worker on its own QThread.

    Jobs keep themselves alive in ``_alive`` until the thread has stopped,
    so a dialog closed mid-request never destroys a running thread.
    """
    _alive: set = set()

    def __init__(self, client, payload: str, instrument: InstrumentConfig, source: PSFAnalysis):
        super().__init__()
        self.source = source
        self.thread = QThread()
        self.worker = _DiagnosisWorker(client, payload, instrument)
        self.worker.moveToThread(self.thread)
        self.thread.started.connect(self.worker.run)
        self.worker.finished.connect(self.thread.quit)
        self.worker.failed.connect(self.thread.quit)
        self.thread.finished.connect(self._release)

    def start(self):
        _DiagnosisJob._alive.add(self)
        self.thread.start()

    def _release(self):
        # finished is emitted from the thread just before it exits
        self.thread.wait()
        _DiagnosisJob._alive.discard(self)


class PSFDiagnosticsDialog(QDialog):
    """
    Load a star image, check it, and show the crop, its statistics and the
    3D intensity surface. "Run Diagnosis" sends the current crop to the
    diagnosis service on a worker thread.
    """
    analysisChanged = pyqtSignal(object)   # PSFAnalysis or None

    def __init__(self, parent=None, config: AppConfig | None = None, client: DiagnosisClient | None = None):
        super().__init__(parent)
        self.setWindowTitle(self.tr("OptiCalyx – PSF Diagnostics"))
        self.setAttribute(Qt.WidgetAttribute.WA_DeleteOnClose, True)

        self.config = config if config is not None else get_app_config()
        self.client = client if client is not None else DiagnosisClient(
            api_key=self.config.api_key(),
            model=self.config.diagnosis_model,
            timeout=self.config.diagnosis_timeout_s,
        )
        self.analysis: PSFAnalysis | None = None
        self.report: AnalysisReport | None = None
        self.source_path: str | None = None

        self._diag_job: _DiagnosisJob | None = None

        self.finished.connect(self._cleanup)
        self._build_ui()
        self.config.add_listener("view/log_stretch", self._on_log_setting)

    # ---------- UI ----------
    def _build_ui(self):
        main = QVBoxLayout(self)

        top = QHBoxLayout()
        self.btn_open = QPushButton(self.tr("Load PSF Image…"), self)
        self.btn_open.clicked.connect(self._choose_file)
        top.addWidget(self.btn_open)
        top.addStretch(1)
        main.addLayout(top)

        mid = QHBoxLayout()
        self.preview = QLabel(self)
        self.preview.setFixedSize(160, 160)
        self.preview.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.preview.setStyleSheet("QLabel { background: black; border: 1px solid #3D4C8A; }")
        mid.addWidget(self.preview)

        col = QVBoxLayout()
        self.stats_table = QTableWidget(4, 1, self)
        self.stats_table.setVerticalHeaderLabels(["FWHM (px)", "SNR", "Peak", "Background"])
        self.stats_table.setHorizontalHeaderLabels([self.tr("Value")])
        self.stats_table.setFixedWidth(220)
        col.addWidget(self.stats_table)

        self.log_toggle = QPushButton(self.tr("Log View"), self)
        self.log_toggle.setCheckable(True)
        self.log_toggle.setChecked(bool(self.config.log_stretch))
        self.log_toggle.setToolTip(self.tr("Toggle between linear and logarithmic crop."))
        self.log_toggle.toggled.connect(self._on_log_toggled)
        col.addWidget(self.log_toggle)
        mid.addLayout(col)
        main.addLayout(mid)

        self.warning_label = QLabel("", self)
        self.warning_label.setWordWrap(True)
        self.warning_label.setStyleSheet("QLabel { color: #FDE68A; }")
        self.warning_label.hide()
        main.addWidget(self.warning_label)

        self.error_label = QLabel("", self)
        self.error_label.setWordWrap(True)
        self.error_label.setStyleSheet("QLabel { color: #FCA5A5; }")
        self.error_label.hide()
        main.addWidget(self.error_label)

        self.surface = PSFSurfaceView(
            parent=self,
            frame_interval_ms=self.config.frame_interval_ms,
            grid_size=self.config.grid_size,
        )
        main.addWidget(self.surface, 0, Qt.AlignmentFlag.AlignHCenter)
        hint = QLabel(self.tr("Drag to rotate, wheel to zoom"), self)
        hint.setAlignment(Qt.AlignmentFlag.AlignCenter)
        main.addWidget(hint)

        self.btn_diagnose = QPushButton(self.tr("Run Diagnosis"), self)
        self.btn_diagnose.setEnabled(False)
        self.btn_diagnose.clicked.connect(self.run_diagnosis)
        main.addWidget(self.btn_diagnose)

        self.report_view = QTextEdit(self)
        self.report_view.setReadOnly(True)
        self.report_view.setMinimumHeight(140)
        main.addWidget(self.report_view)

        self.status_label = QLabel(self.tr("Status: Ready"), self)
        self.status_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        main.addWidget(self.status_label)

    # ---------- loading ----------
    def _choose_file(self):
        path, _ = QFileDialog.getOpenFileName(
            self, self.tr("Open PSF Image"), self.config.last_open_dir or "", IMAGE_FILTER
        )
        if path:
            self.config.last_open_dir = os.path.dirname(path)
            self.open_file(path)

    def open_file(self, path: str) -> bool:
        try:
            buf = load_image(path)
        except ImageLoadError as e:
            log.warning("Image load failed: %s", e)
            self.status_label.setText(self.tr("Status: Load failed"))
            QMessageBox.warning(self, self.tr("Load Image"), str(e))
            return False
        self.source_path = path
        self.set_buffer(buf)
        self.status_label.setText(self.tr("Status: Loaded {0}").format(os.path.basename(path)))
        return True

    def set_buffer(self, buf: PixelBuffer) -> PSFAnalysis:
        self.report = None
        self.report_view.clear()
        analysis = analyze_buffer(
            buf,
            log_stretch=self.log_toggle.isChecked(),
            settings=AnalysisSettings.from_config(self.config),
        )
        self._apply_analysis(analysis, new_image=True)
        return analysis

    # ---------- view updates ----------
    def _on_log_setting(self, value):
        # keep the toggle in step when the setting changes elsewhere
        if self.log_toggle.isChecked() != bool(value):
            self.log_toggle.setChecked(bool(value))

    def _on_log_toggled(self, checked: bool):
        self.config.log_stretch = bool(checked)
        if self.analysis is None:
            return
        self._apply_analysis(self.analysis.with_log_stretch(checked), new_image=False)

    def _apply_analysis(self, analysis: PSFAnalysis, *, new_image: bool):
        self.analysis = analysis
        s = analysis.stats
        values = [f"{s.fwhm_pixels:.2f}", f"{s.snr:.1f}", str(s.peak_intensity), str(s.background_level)]
        for row, v in enumerate(values):
            it = QTableWidgetItem(v)
            it.setTextAlignment(Qt.AlignmentFlag.AlignCenter)
            self.stats_table.setItem(row, 0, it)

        self._show_message(self.warning_label, analysis.warnings)
        self._show_message(self.error_label, analysis.errors)

        if analysis.crop is not None:
            pm = QPixmap.fromImage(buffer_to_qimage(analysis.crop.buffer))
            self.preview.setPixmap(pm.scaled(
                self.preview.size(),
                Qt.AspectRatioMode.KeepAspectRatio,
                Qt.TransformationMode.SmoothTransformation,
            ))
            self.surface.set_buffer(analysis.crop.buffer, keep_view=not new_image)
        else:
            self.preview.clear()
            self.surface.clear()

        self._update_enable()
        self.analysisChanged.emit(analysis)

    @staticmethod
    def _show_message(label: QLabel, issues):
        if issues:
            label.setText("\n".join(i.message for i in issues))
            label.show()
        else:
            label.clear()
            label.hide()

    def _update_enable(self):
        ready = self.analysis is not None and self.analysis.ok and self.analysis.crop is not None
        self.btn_diagnose.setEnabled(ready and self._diag_job is None)

    # ---------- diagnosis ----------
    def run_diagnosis(self):
        if self.analysis is None or self.analysis.crop is None or self._diag_job is not None:
            return
        instrument = InstrumentConfig.from_config(self.config)
        self.status_label.setText(self.tr("Status: Analysis running…"))

        job = _DiagnosisJob(self.client, self.analysis.crop.base64(), instrument, self.analysis)
        job.worker.finished.connect(self._on_report)
        job.worker.failed.connect(self._on_report_failed)
        job.thread.finished.connect(self._on_job_done)
        self._diag_job = job
        self._update_enable()
        job.start()

    def _is_current(self, job) -> bool:
        # a log toggle keeps the source buffer; a new image does not
        return (job is not None and self.analysis is not None
                and job.source.buffer is self.analysis.buffer)

    def _on_report(self, report: AnalysisReport):
        if not self._is_current(self._diag_job):
            log.debug("Dropping diagnosis report for a previous image")
            return
        self.report = report
        self.report_view.setPlainText(format_report(report))
        suffix = self.tr(" (sample report, no API key)") if report.is_mock else ""
        self.status_label.setText(self.tr("Status: Diagnosis complete") + suffix)

    def _on_report_failed(self, msg: str):
        if not self._is_current(self._diag_job):
            log.debug("Dropping diagnosis failure for a previous image: %s", msg)
            return
        self.error_label.setText(msg)
        self.error_label.show()
        self.status_label.setText(self.tr("Status: Diagnosis failed"))

    def _on_job_done(self):
        self._diag_job = None
        self._update_enable()

    def _detach_diag_job(self):
        """Stop listening to a running request; the job finishes on its own."""
        job, self._diag_job = self._diag_job, None
        if job is None:
            return
        job.worker.finished.disconnect(self._on_report)
        job.worker.failed.disconnect(self._on_report_failed)
        job.thread.finished.disconnect(self._on_job_done)

    # ---------- lifecycle ----------
    def _cleanup(self, *_):
        self.surface.stop()
        self.config.remove_listener("view/log_stretch", self._on_log_setting)
        self._detach_diag_job()

    def closeEvent(self, e):
        self._cleanup()
        super().closeEvent(e)
