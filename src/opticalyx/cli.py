# opticalyx/cli.py
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from opticalyx.pixel_buffer import ImageLoadError

EXIT_OK = 0
EXIT_LOAD_FAILED = 1
EXIT_BLOCKED = 2


def _launch_gui(open_paths: list[str] | None = None) -> int:
    from opticalyx.__main__ import main as gui_main
    return int(gui_main(open_paths or []) or 0)


def _looks_like_path_token(tok: str) -> bool:
    if not tok or tok.startswith("-"):
        return False
    try:
        return Path(tok).exists()
    except OSError:
        return False


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {text!r}")
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="opticalyx",
        description="OptiCalyx PSF diagnostics",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("analyze", help="Measure a star image without opening the GUI")
    p.add_argument("image", help="PNG/JPEG/TIFF/FITS image of a single star")
    p.add_argument("--log-stretch", action="store_true", default=False,
                   help="Apply the logarithmic stretch to the crop")
    p.add_argument("--json", action="store_true", default=False, help="Print the result as JSON")
    p.add_argument("--profile", action="store_true", default=False, help="Include the radial profile")
    p.add_argument("--crop-out", metavar="PNG", help="Write the cropped PSF to this PNG")
    p.add_argument("--surface-out", metavar="PNG", help="Write a snapshot of the 3D surface to this PNG")
    p.add_argument("--diagnose", action="store_true", default=False,
                   help="Send the crop to the diagnosis service (sample report without an API key)")
    p.add_argument("--min-peak", type=float, default=20.0)
    p.add_argument("--min-snr", type=float, default=3.0)
    p.add_argument("--crop-size", type=_positive_int, default=256)
    p.add_argument("--profile-radius", type=_positive_int, default=64)
    p.add_argument("-v", "--verbose", action="store_true", default=False)

    p = sub.add_parser("gui", help="Open the diagnostics window")
    p.add_argument("image", nargs="?", help="Image to open on startup")
    return ap


def _print_text(analysis, include_profile: bool, out) -> None:
    s = analysis.stats
    print(f"Image:       {analysis.buffer.width}x{analysis.buffer.height}", file=out)
    print(f"Centroid:    ({s.centroid.x:.2f}, {s.centroid.y:.2f})", file=out)
    print(f"FWHM:        {s.fwhm_pixels:.2f} px", file=out)
    print(f"SNR:         {s.snr:.1f}", file=out)
    print(f"Peak:        {s.peak_intensity}", file=out)
    print(f"Background:  {s.background_level}", file=out)
    for issue in analysis.issues:
        print(f"{issue.severity.upper()}: {issue.message}", file=out)
    if include_profile and analysis.profile is not None:
        print("radius  intensity  reference", file=out)
        for pt in analysis.profile:
            print(f"{pt.radius:6d}  {pt.intensity:9.4f}  {pt.ideal_diffraction:9.4f}", file=out)


def _write_surface(crop_buffer, path: str) -> bool:
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    from PyQt6.QtWidgets import QApplication
    from opticalyx.widgets.surface_view import PSFSurfaceView

    app = QApplication.instance() or QApplication([sys.argv[0]])
    view = PSFSurfaceView(crop_buffer)
    img = view.render_image()
    ok = img is not None and img.save(path, "PNG")
    view.deleteLater()
    return bool(ok)


def _run_analyze(args, out=None) -> int:
    out = out if out is not None else sys.stdout
    from opticalyx.config_manager import AppConfig
    from opticalyx.diagnosis import DEFAULT_INSTRUMENT, DiagnosisClient, DiagnosisError, format_report
    from opticalyx.pipeline import AnalysisSettings, analyze_file

    settings = AnalysisSettings(
        min_peak_intensity=args.min_peak,
        min_snr=args.min_snr,
        crop_size=args.crop_size,
        profile_radius=args.profile_radius,
    )
    try:
        analysis = analyze_file(args.image, log_stretch=args.log_stretch, settings=settings)
    except ImageLoadError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_LOAD_FAILED

    result = analysis.to_dict(include_profile=args.profile)

    if analysis.crop is not None:
        if args.crop_out:
            Path(args.crop_out).write_bytes(analysis.crop.png_bytes)
        if args.surface_out and not _write_surface(analysis.crop.buffer, args.surface_out):
            print(f"warning: could not write surface snapshot to {args.surface_out}", file=sys.stderr)
        if args.diagnose:
            client = DiagnosisClient(api_key=AppConfig.api_key())
            try:
                report = client.analyze(analysis.crop.base64(), DEFAULT_INSTRUMENT)
                result["diagnosis"] = report.to_dict()
            except DiagnosisError as e:
                print(f"error: {e}", file=sys.stderr)
                result["diagnosis_error"] = str(e)

    if args.json:
        json.dump(result, out, indent=2)
        out.write("\n")
    else:
        _print_text(analysis, args.profile, out)
        if "diagnosis" in result:
            print("", file=out)
            print(format_report(report), file=out)

    return EXIT_OK if analysis.ok else EXIT_BLOCKED


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)

    if not argv:
        return _launch_gui()
    if _looks_like_path_token(argv[0]):
        return _launch_gui(open_paths=[argv[0]])

    args = build_parser().parse_args(argv)
    if args.cmd == "gui":
        return _launch_gui([args.image] if args.image else None)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )
    return _run_analyze(args)


if __name__ == "__main__":
    sys.exit(main())
