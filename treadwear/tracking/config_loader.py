"""Load, validate, and hot-reload the treadwear tracking policy.

The policy lives in ``tracking_config.yaml`` alongside this module.  It is
loaded once on first use and cached.  Call ``reload_tracking_config()`` to
re-read it from disk without restarting.

Usage::

    from treadwear.tracking.config_loader import get_tracking_config

    config = get_tracking_config()
    config.sessions.inactivity_threshold      # timedelta(hours=6)
    config.calendar.tz                        # tzinfo for "today"
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta, timezone, tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

logger = logging.getLogger("treadwear.tracking.config")

_CONFIG_PATH = Path(__file__).parent / "tracking_config.yaml"

RECENCY_POLICIES = ("provider", "fixed_window")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class SessionPolicyConfig:
    """Auto-close settings."""

    inactivity_threshold_hours: float
    recency_policy: str
    recency_window_hours: float

    @property
    def inactivity_threshold(self) -> timedelta:
        return timedelta(hours=self.inactivity_threshold_hours)

    @property
    def recency_window(self) -> timedelta:
        return timedelta(hours=self.recency_window_hours)


@dataclass
class AutoManagementConfig:
    """Periodic auto-management settings."""

    enabled: bool
    tick_interval_seconds: float
    auto_close_inactive_sessions: bool
    auto_start_default_item: bool


@dataclass
class ItemDefaultsConfig:
    default_lifespan_km: float
    km_per_step: float


@dataclass
class CalendarConfig:
    timezone: str

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone)


@dataclass
class TrackingConfig:
    """Complete, validated tracking policy.

    Attributes:
        version:         Config schema version string.
        sessions:        Auto-close and recency settings.
        auto_management: Scheduler and auto-start/close switches.
        items:           Defaults applied when creating items.
        calendar:        Timezone used for day boundaries.
    """

    version: str
    sessions: SessionPolicyConfig
    auto_management: AutoManagementConfig
    items: ItemDefaultsConfig
    calendar: CalendarConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when tracking_config.yaml fails validation."""


def resolve_timezone(name: str) -> tzinfo:
    """Return the tzinfo for an IANA zone name.  ``UTC`` needs no tz database."""
    if name.upper() in ("UTC", "Z"):
        return timezone.utc
    return ZoneInfo(name)


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Tracking config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigValidationError(f"{path} must contain a mapping at the top level")
    return raw


def _validate_and_build(raw: dict) -> TrackingConfig:
    """Validate the raw YAML dict and construct a TrackingConfig.

    Every problem is collected before raising, so one run reports them all.

    Raises:
        ConfigValidationError: If any value is missing, mistyped or out of range.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, default: float, path: str, minimum: float = 0.0) -> float:
        value = section.get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be a number, got {value!r}")
            return default
        if number <= minimum:
            errors.append(f"{path}.{key} must be greater than {minimum}, got {number}")
        return number

    def _section(key: str) -> dict:
        value = raw.get(key, {}) or {}
        if not isinstance(value, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return value

    version = str(raw.get("version", "1.0"))

    # ── Sessions ──
    s_raw = _section("sessions")
    recency_policy = str(s_raw.get("recency_policy", "provider"))
    if recency_policy not in RECENCY_POLICIES:
        errors.append(
            f"sessions.recency_policy must be one of {', '.join(RECENCY_POLICIES)}, "
            f"got {recency_policy!r}"
        )
    sessions = SessionPolicyConfig(
        inactivity_threshold_hours=_number(s_raw, "inactivity_threshold_hours", 6, "sessions"),
        recency_policy=recency_policy,
        recency_window_hours=_number(s_raw, "recency_window_hours", 6, "sessions"),
    )

    # ── Auto-management ──
    am_raw = _section("auto_management")
    auto_management = AutoManagementConfig(
        enabled=bool(am_raw.get("enabled", True)),
        tick_interval_seconds=_number(am_raw, "tick_interval_seconds", 300, "auto_management"),
        auto_close_inactive_sessions=bool(am_raw.get("auto_close_inactive_sessions", True)),
        auto_start_default_item=bool(am_raw.get("auto_start_default_item", True)),
    )

    # ── Items ──
    i_raw = _section("items")
    items = ItemDefaultsConfig(
        default_lifespan_km=_number(i_raw, "default_lifespan_km", 800, "items"),
        km_per_step=_number(i_raw, "km_per_step", 0.0007, "items"),
    )

    # ── Calendar ──
    c_raw = _section("calendar")
    tz_name = str(c_raw.get("timezone", "UTC"))
    try:
        resolve_timezone(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"calendar.timezone {tz_name!r} is not a known IANA timezone")
    calendar = CalendarConfig(timezone=tz_name)

    if errors:
        raise ConfigValidationError(
            f"tracking_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return TrackingConfig(
        version=version,
        sessions=sessions,
        auto_management=auto_management,
        items=items,
        calendar=calendar,
        _raw=raw,
    )


def build_tracking_config(raw: dict[str, Any]) -> TrackingConfig:
    """Validate an in-memory mapping, e.g. overrides in tests."""
    return _validate_and_build(raw)


def load_tracking_config(path: Path | None = None) -> TrackingConfig:
    """Load and validate the tracking config from disk.

    Args:
        path: Override path to YAML.  Uses the bundled tracking_config.yaml by default.

    Returns:
        Validated TrackingConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded tracking config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global instance with hot-reload support
# ---------------------------------------------------------------------------

_config: TrackingConfig | None = None
_config_lock = threading.Lock()


def get_tracking_config() -> TrackingConfig:
    """Return the cached TrackingConfig, loading it on first call.  Thread-safe."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_tracking_config()
    return _config


def reload_tracking_config(path: Path | None = None) -> TrackingConfig:
    """Reload the tracking config from disk and replace the cached instance.

    If validation fails the previous config is kept and the error re-raised.
    """
    global _config
    new_config = load_tracking_config(path)
    with _config_lock:
        _config = new_config
    logger.info("Tracking config reloaded (v%s)", new_config.version)
    return new_config
