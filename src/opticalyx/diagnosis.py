# opticalyx/diagnosis.py
"""
Client for the external PSF diagnosis service.

The core never estimates aberrations itself: it forwards the PNG crop and
the instrument description to a vision model and gets back a structured
report (Zernike-style terms, Strehl estimate, diagnosis, correction steps).
Without an API key a fixed sample report is returned so the rest of the
application can be exercised offline.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum

import requests

log = logging.getLogger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-2.5-flash"


class DiagnosisError(RuntimeError):
    """The diagnosis service could not be reached or returned garbage."""


class TelescopeType(Enum):
    NEWTONIAN = "Newtonian"
    REFRACTOR = "Refractor"
    SCT = "Schmidt-Cassegrain"
    RCT = "Ritchey-Chrétien"
    CDK = "Corrected Dall-Kirkham"


class Wavelength(Enum):
    BROADBAND = "Broadband (L)"
    RED = "Red"
    GREEN = "Green"
    BLUE = "Blue"
    HA = "H-Alpha (656nm)"
    OIII = "O-III (500nm)"
    SII = "S-II (672nm)"
    IR850 = "IR Pass (850nm+)"


@dataclass(frozen=True)
class InstrumentConfig:
    type: TelescopeType = TelescopeType.REFRACTOR
    aperture_mm: float = 100.0
    focal_length_mm: float = 600.0
    pixel_size_um: float = 3.76   # IMX571/533
    obstruction_pct: float = 0.0
    wavelength: Wavelength = Wavelength.BROADBAND
    spider_vanes: bool = False

    @property
    def focal_ratio(self) -> float:
        return self.focal_length_mm / self.aperture_mm if self.aperture_mm else 0.0

    def to_dict(self) -> dict:
        d = asdict(self)
        d["type"] = self.type.value
        d["wavelength"] = self.wavelength.value
        return d

    @classmethod
    def from_config(cls, cfg) -> "InstrumentConfig":
        """Build from an AppConfig; unknown enum names fall back to the defaults."""
        return cls(
            type=TelescopeType.__members__.get(str(cfg.telescope_type).upper(), TelescopeType.REFRACTOR),
            aperture_mm=float(cfg.aperture_mm),
            focal_length_mm=float(cfg.focal_length_mm),
            pixel_size_um=float(cfg.pixel_size_um),
            obstruction_pct=float(cfg.obstruction_pct),
            wavelength=Wavelength.__members__.get(str(cfg.wavelength).upper(), Wavelength.BROADBAND),
            spider_vanes=bool(cfg.spider_vanes),
        )


DEFAULT_INSTRUMENT = InstrumentConfig()


@dataclass(frozen=True)
class ZernikeTerm:
    name: str
    value: float              # RMS, waves
    description: str = ""
    azimuth: float | None = None   # degrees


@dataclass(frozen=True)
class AnalysisReport:
    timestamp: str
    instrument: InstrumentConfig
    primary_aberrations: tuple[ZernikeTerm, ...]
    strehl_ratio: float
    diagnosis: str
    correction_steps: tuple[str, ...]
    turbulence_assessment: str
    is_mock: bool = field(default=False, compare=False)

    @property
    def diffraction_limited(self) -> bool:
        return self.strehl_ratio > 0.8

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "instrument": self.instrument.to_dict(),
            "primary_aberrations": [asdict(t) for t in self.primary_aberrations],
            "strehl_ratio": self.strehl_ratio,
            "diagnosis": self.diagnosis,
            "correction_steps": list(self.correction_steps),
            "turbulence_assessment": self.turbulence_assessment,
            "is_mock": self.is_mock,
        }


RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "primaryAberrations": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "value": {"type": "NUMBER", "description": "Amplitude in RMS waves"},
                    "description": {"type": "STRING"},
                },
                "required": ["name", "value", "description"],
            },
        },
        "strehlRatio": {"type": "NUMBER"},
        "diagnosis": {"type": "STRING"},
        "turbulenceAssessment": {"type": "STRING"},
        "correctionSteps": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["primaryAberrations", "strehlRatio", "diagnosis", "correctionSteps", "turbulenceAssessment"],
}


def build_prompt(instrument: InstrumentConfig) -> str:
    return f"""
You are an optical engineer specialised in astrophotography and wavefront analysis.
Analyse the attached point-spread function (PSF) image.

Instrument:
- Type: {instrument.type.value}
- Aperture: {instrument.aperture_mm:g} mm
- Focal length: {instrument.focal_length_mm:g} mm
- Pixel size: {instrument.pixel_size_um:g} um
- Central obstruction: {instrument.obstruction_pct:g} %
- Spider vanes: {"yes" if instrument.spider_vanes else "no"}
- Wavelength: {instrument.wavelength.value}

Give a qualitative wavefront assessment from the PSF morphology.
Assume focus is PERFECT.

1. Estimate the main Zernike aberrations. Give "Defocus" a value close to 0;
   concentrate on astigmatism, coma, spherical and trefoil.
2. Estimate the Strehl ratio (0.0 to 1.0).
3. Where possible separate local seeing (turbulence) from optical misalignment.
4. Give concrete collimation or correction steps.

Answer ONLY with valid JSON matching the requested schema.
""".strip()


def build_request_body(image_base64: str, instrument: InstrumentConfig) -> dict:
    # tolerate a full data URL
    data = image_base64.split(",", 1)[1] if image_base64.startswith("data:") else image_base64
    return {
        "contents": [{
            "parts": [
                {"inline_data": {"mime_type": "image/png", "data": data}},
                {"text": build_prompt(instrument)},
            ]
        }],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": RESPONSE_SCHEMA,
        },
    }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_report(payload: dict, instrument: InstrumentConfig) -> AnalysisReport:
    try:
        terms = tuple(
            ZernikeTerm(
                name=str(t["name"]),
                value=float(t["value"]),
                description=str(t.get("description", "")),
                azimuth=float(t["azimuth"]) if t.get("azimuth") is not None else None,
            )
            for t in payload["primaryAberrations"]
        )
        return AnalysisReport(
            timestamp=_now(),
            instrument=instrument,
            primary_aberrations=terms,
            strehl_ratio=float(payload["strehlRatio"]),
            diagnosis=str(payload["diagnosis"]),
            correction_steps=tuple(str(s) for s in payload["correctionSteps"]),
            turbulence_assessment=str(payload["turbulenceAssessment"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DiagnosisError(f"Malformed diagnosis report: {e}") from e


def mock_report(instrument: InstrumentConfig) -> AnalysisReport:
    return AnalysisReport(
        timestamp=_now(),
        instrument=instrument,
        primary_aberrations=(
            ZernikeTerm("Coma", 0.35, "Asymmetric radial energy distribution."),
            ZernikeTerm("Astigmatism", 0.15, "Elongated PSF core."),
            ZernikeTerm("Defocus", 0.02, "Negligible (perfect focus assumed)."),
            ZernikeTerm("Spherical", 0.10, "Energy moved into the rings."),
        ),
        strehl_ratio=0.68,
        diagnosis=("Significant coma detected. The optical axis appears misaligned "
                   "with respect to the sensor centre."),
        turbulence_assessment=("Moderate seeing, but the directional tail of the PSF points to "
                               "optical misalignment rather than atmospheric turbulence alone."),
        correction_steps=(
            "Adjust the secondary mirror tilt screws (Newtonian/RC) or the primary cell (SCT).",
            "Make sure the camera is orthogonal to the optical axis (check tilt).",
            "Repeat the star test at the field centre to separate collimation from field curvature.",
        ),
        is_mock=True,
    )


class DiagnosisClient:
    def __init__(self, api_key: str | None = None, model: str = DEFAULT_MODEL,
                 timeout: float = 60.0, session: requests.Session | None = None):
        self.api_key = (api_key or "").strip()
        self.model = model or DEFAULT_MODEL
        self.timeout = float(timeout)
        self.session = session if session is not None else requests.Session()

    @property
    def offline(self) -> bool:
        return not self.api_key

    def analyze(self, image_base64: str, instrument: InstrumentConfig = DEFAULT_INSTRUMENT) -> AnalysisReport:
        if self.offline:
            log.warning("No diagnosis API key configured; returning sample report.")
            return mock_report(instrument)

        url = GEMINI_ENDPOINT.format(model=self.model)
        body = build_request_body(image_base64, instrument)
        log.info("Requesting PSF diagnosis from %s", self.model)
        try:
            r = self.session.post(
                url,
                json=body,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout,
            )
            r.raise_for_status()
            js = r.json()
            text = js["candidates"][0]["content"]["parts"][0].get("text") or "{}"
            payload = json.loads(text)
        except requests.RequestException as e:
            log.error("Diagnosis request failed: %s", e)
            raise DiagnosisError(f"PSF analysis failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            log.error("Diagnosis response could not be read: %s", e)
            raise DiagnosisError(f"PSF analysis returned an unreadable response: {e}") from e

        return parse_report(payload, instrument)


def format_report(report: AnalysisReport) -> str:
    """Plain-text rendering for the dialog and the CLI."""
    lines = [
        f"Strehl ratio: {report.strehl_ratio:.2f}"
        + ("  (diffraction limited)" if report.diffraction_limited else "  (aberrations present)"),
        "",
        report.diagnosis,
        "",
        "Aberrations (RMS waves):",
    ]
    for t in report.primary_aberrations:
        lines.append(f"  {t.name:<14} {t.value:5.2f}  {t.description}")
    lines += ["", f"Seeing: {report.turbulence_assessment}", "", "Correction steps:"]
    lines += [f"  {i}. {step}" for i, step in enumerate(report.correction_steps, 1)]
    return "\n".join(lines)
