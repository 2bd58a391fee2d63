# opticalyx/config_manager.py
"""
Typed, persisted settings for OptiCalyx.

Wraps QSettings with defaults, type conversion, a small read cache and
change notifications. Analysis thresholds, crop/profile sizes, renderer
settings and the default instrument all live here.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from PyQt6.QtCore import QObject, QSettings, pyqtSignal

log = logging.getLogger(__name__)

T = TypeVar('T')

API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")


class ConfigValue(Generic[T]):
    """
    Descriptor for a typed configuration value.

    Usage:
        class MyConfig(ConfigManager):
            crop_size = ConfigValue("analysis/crop_size", default=256, type_=int)
    """
    def __init__(
        self,
        key: str,
        default: T,
        type_: type = str,
        validator: Callable[[T], bool] | None = None,
        description: str = ""
    ):
        self.key = key
        self.default = default
        self.type_ = type_
        self.validator = validator
        self.description = description

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, obj, objtype=None) -> T:
        if obj is None:
            return self  # type: ignore
        return obj.get(self.key, self.default, self.type_)

    def __set__(self, obj, value: T):
        if self.validator and not self.validator(value):
            raise ValueError(f"Invalid value for {self.key}: {value}")
        obj.set(self.key, value)


class ConfigManager(QObject):
    """
    QSettings with type-safe get/set, defaults and change notifications.

    Pass ``settings`` to back the manager with a specific store (an INI file
    in tests); otherwise the per-user native store is used.
    """

    _instance: Optional['ConfigManager'] = None

    settingChanged = pyqtSignal(str, object)  # key, new_value

    def __init__(self, organization: str = "OptiCalyx", application: str = "OptiCalyx",
                 settings: QSettings | None = None):
        super().__init__()
        self._settings = settings if settings is not None else QSettings(organization, application)
        self._cache: Dict[str, Any] = {}
        self._listeners: Dict[str, List[Callable]] = {}

    @classmethod
    def reset_instance(cls):
        """Drop the singleton (tests)."""
        cls._instance = None

    def get(self, key: str, default: T = None, type_: type = str) -> T:
        cache_key = f"{key}:{type_.__name__}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        value = self._settings.value(key, default)
        if value is None:
            return default

        try:
            if type_ == bool:
                # QSettings hands bools back as strings from INI/registry stores
                if isinstance(value, str):
                    value = value.lower() in ('true', '1', 'yes')
                else:
                    value = bool(value)
            else:
                value = type_(value)
        except (ValueError, TypeError):
            log.debug("Config %s: could not convert %r to %s, using default", key, value, type_.__name__)
            value = default

        self._cache[cache_key] = value
        return value

    def set(self, key: str, value: Any) -> None:
        self._invalidate(key)
        self._settings.setValue(key, value)

        self.settingChanged.emit(key, value)
        for callback in list(self._listeners.get(key, ())):
            try:
                callback(value)
            except Exception:
                log.exception("Config listener for %s failed", key)

    def sync(self) -> None:
        self._settings.sync()

    def add_listener(self, key: str, callback: Callable[[Any], None]) -> None:
        self._listeners.setdefault(key, []).append(callback)

    def remove_listener(self, key: str, callback: Callable[[Any], None]) -> None:
        if key in self._listeners and callback in self._listeners[key]:
            self._listeners[key].remove(callback)

    def _invalidate(self, key: str) -> None:
        for cache_key in list(self._cache.keys()):
            if cache_key.startswith(f"{key}:"):
                del self._cache[cache_key]


def _positive(v) -> bool:
    return v is not None and v > 0


def _non_negative(v) -> bool:
    return v is not None and v >= 0


class AppConfig(ConfigManager):
    """
    Application configuration with typed properties.

    Usage:
        config = get_app_config()
        config.min_snr = 5.0
    """

    # Validation gates
    min_peak_intensity = ConfigValue("analysis/min_peak_intensity", default=20.0, type_=float,
                                     validator=_non_negative)
    min_snr = ConfigValue("analysis/min_snr", default=3.0, type_=float, validator=_non_negative)
    saturation_radius = ConfigValue("analysis/saturation_radius", default=3, type_=int,
                                    validator=_non_negative)

    # Geometry
    profile_radius = ConfigValue("analysis/profile_radius", default=64, type_=int, validator=_positive)
    crop_size = ConfigValue("analysis/crop_size", default=256, type_=int, validator=_positive)
    log_stretch = ConfigValue("view/log_stretch", default=False, type_=bool)

    # 3D view
    grid_size = ConfigValue("surface/grid_size", default=32, type_=int, validator=_positive)
    frame_interval_ms = ConfigValue("surface/frame_interval_ms", default=16, type_=int, validator=_positive)

    # Diagnosis service
    diagnosis_model = ConfigValue("diagnosis/model", default="gemini-2.5-flash", type_=str)
    diagnosis_timeout_s = ConfigValue("diagnosis/timeout_s", default=60.0, type_=float, validator=_positive)

    # Default instrument
    telescope_type = ConfigValue("instrument/type", default="REFRACTOR", type_=str)
    aperture_mm = ConfigValue("instrument/aperture_mm", default=100.0, type_=float, validator=_positive)
    focal_length_mm = ConfigValue("instrument/focal_length_mm", default=600.0, type_=float, validator=_positive)
    pixel_size_um = ConfigValue("instrument/pixel_size_um", default=3.76, type_=float, validator=_positive)
    obstruction_pct = ConfigValue("instrument/obstruction_pct", default=0.0, type_=float,
                                  validator=lambda v: v is not None and 0 <= v < 100)
    wavelength = ConfigValue("instrument/wavelength", default="BROADBAND", type_=str)
    spider_vanes = ConfigValue("instrument/spider_vanes", default=False, type_=bool)

    # Paths
    last_open_dir = ConfigValue("paths/last_open_dir", default="", type_=str)

    @staticmethod
    def api_key() -> str:
        """Diagnosis API key from the environment; never persisted."""
        for name in API_KEY_ENV_VARS:
            v = os.environ.get(name, "").strip()
            if v:
                return v
        return ""


def get_app_config() -> AppConfig:
    if AppConfig._instance is None:
        AppConfig._instance = AppConfig()
    return AppConfig._instance  # type: ignore
