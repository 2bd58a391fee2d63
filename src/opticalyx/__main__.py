# opticalyx/__main__.py
"""
GUI entry point: ``python -m opticalyx [IMAGE]`` or ``opticalyx gui [IMAGE]``.
"""
from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_log_file_path() -> str:
    """Per-user log location, falling back to the temp folder."""
    if sys.platform.startswith('win'):
        log_dir = Path(os.path.expandvars('%APPDATA%')) / 'OptiCalyx' / 'logs'
    elif sys.platform.startswith('darwin'):
        log_dir = Path.home() / 'Library' / 'Logs' / 'OptiCalyx'
    else:
        log_dir = Path.home() / '.local' / 'share' / 'OptiCalyx' / 'logs'
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'opticalyx.log')
    except OSError:
        return str(Path(tempfile.gettempdir()) / 'opticalyx.log')


def setup_logging(level: int = logging.INFO) -> str | None:
    log_file_path = get_log_file_path()
    try:
        logging.basicConfig(
            filename=log_file_path,
            level=level,
            format=LOG_FORMAT,
            filemode='a'
        )
        logging.info(f"Logging to: {log_file_path}")
        logging.info(f"Platform: {sys.platform}")
        return log_file_path
    except Exception as e:
        # console-only fallback
        logging.basicConfig(
            level=level,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)]
        )
        print(f"Warning: Could not write to log file {log_file_path}: {e}")
        print("Using console-only logging")
        return None


def main(argv: list[str] | None = None) -> int:
    from PyQt6.QtWidgets import QApplication
    from opticalyx.config_manager import get_app_config
    from opticalyx.psf_dialog import PSFDiagnosticsDialog

    args = list(sys.argv[1:] if argv is None else argv)
    setup_logging()

    app = QApplication.instance() or QApplication([sys.argv[0]])
    app.setOrganizationName("OptiCalyx")
    app.setApplicationName("OptiCalyx")

    dlg = PSFDiagnosticsDialog()
    dlg.show()
    if args:
        dlg.open_file(args[0])
    rc = int(app.exec())
    get_app_config().sync()
    return rc


if __name__ == "__main__":
    sys.exit(main())
