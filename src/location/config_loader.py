"""Load, validate, and hot-reload the location categorizer configuration.

The config lives in ``categorizer_config.yaml`` alongside this module.  It is
loaded once and cached; ``reload_categorizer_config()`` re-reads it from disk.

Usage::

    from src.location.config_loader import get_categorizer_config

    config = get_categorizer_config()
    config.thresholds.anchor_match_radius_m     # 150.0
    config.keywords[LocationCategory.DINING]    # ["restaurant", "cafe", ...]
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.location.base import LocationCategory

logger = logging.getLogger("qolmonitor.location.config")

_CONFIG_PATH = Path(__file__).parent / "categorizer_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class Thresholds:
    """Distance, speed and visit thresholds."""

    anchor_match_radius_m: float = 150.0
    cluster_radius_m: float = 100.0
    transit_speed_mps: float = 2.0
    stationary_speed_mps: float = 0.5
    visit_gap_seconds: float = 7200.0
    frequent_visit_count: int = 3


@dataclass
class HourPattern:
    """A recurring-visit pattern over a set of local hours."""

    hours: frozenset[int]
    min_ratio: float
    min_avg_dwell_seconds: float
    min_weekday_ratio: float = 0.0


@dataclass
class InfrequentRules:
    """Hour windows used when a place has too few visits for pattern matching."""

    late_night_start_hour: int = 22
    late_night_end_hour: int = 6
    work_start_hour: int = 9
    work_end_hour: int = 17
    work_min_dwell_seconds: float = 1800.0
    weekend_start_hour: int = 10
    weekend_end_hour: int = 20


@dataclass
class CategorizerConfig:
    """Complete, validated categorizer configuration.

    Attributes:
        version:    Config schema version string.
        thresholds: Distance/speed/visit thresholds.
        night:      Pattern that marks a frequent place as home.
        work:       Pattern that marks a frequent place as work.
        infrequent: Hour rules for places with few visits.
        keywords:   Category → keyword list, in match priority order.
    """

    version: str
    thresholds: Thresholds
    night: HourPattern
    work: HourPattern
    infrequent: InfrequentRules
    keywords: dict[LocationCategory, list[str]]
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when categorizer_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Categorizer config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _number(section: dict, key: str, default: float, path: str, errors: list[str]) -> float:
    value = section.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        errors.append(f"{path}.{key} must be a number, got {value!r}")
        return default
    if number < 0:
        errors.append(f"{path}.{key} = {number} must not be negative")
    return number


def _hour(section: dict, key: str, default: int, path: str, errors: list[str]) -> int:
    value = section.get(key, default)
    if not isinstance(value, int) or not 0 <= value <= 23:
        errors.append(f"{path}.{key} must be an hour in 0..23, got {value!r}")
        return default
    return value


def _ratio(section: dict, key: str, default: float, path: str, errors: list[str]) -> float:
    value = _number(section, key, default, path, errors)
    if value > 1.0:
        errors.append(f"{path}.{key} = {value} is out of range [0.0, 1.0]")
    return value


def _build_pattern(raw: Any, name: str, defaults: HourPattern, errors: list[str]) -> HourPattern:
    path = f"patterns.{name}"
    if not isinstance(raw, dict):
        errors.append(f"'{path}' section is missing or not a mapping")
        return defaults
    hours_raw = raw.get("hours")
    if not isinstance(hours_raw, list) or not hours_raw:
        errors.append(f"{path}.hours must be a non-empty list of hours")
        hours = defaults.hours
    else:
        bad = [h for h in hours_raw if not isinstance(h, int) or not 0 <= h <= 23]
        if bad:
            errors.append(f"{path}.hours contains invalid hours: {bad}")
        hours = frozenset(h for h in hours_raw if h not in bad)
    return HourPattern(
        hours=hours,
        min_ratio=_ratio(raw, "min_ratio", defaults.min_ratio, path, errors),
        min_avg_dwell_seconds=_number(
            raw, "min_avg_dwell_seconds", defaults.min_avg_dwell_seconds, path, errors
        ),
        min_weekday_ratio=_ratio(
            raw, "min_weekday_ratio", defaults.min_weekday_ratio, path, errors
        ),
    )


def _validate_and_build(raw: dict) -> CategorizerConfig:
    """Validate the raw YAML dict and construct a CategorizerConfig.

    Raises:
        ConfigValidationError: If any section is missing or invalid.
    """
    errors: list[str] = []
    version = str(raw.get("version", "1.0"))

    # ── Thresholds ──
    th_raw = raw.get("thresholds") or {}
    defaults = Thresholds()
    thresholds = Thresholds(
        anchor_match_radius_m=_number(
            th_raw, "anchor_match_radius_m", defaults.anchor_match_radius_m, "thresholds", errors
        ),
        cluster_radius_m=_number(
            th_raw, "cluster_radius_m", defaults.cluster_radius_m, "thresholds", errors
        ),
        transit_speed_mps=_number(
            th_raw, "transit_speed_mps", defaults.transit_speed_mps, "thresholds", errors
        ),
        stationary_speed_mps=_number(
            th_raw, "stationary_speed_mps", defaults.stationary_speed_mps, "thresholds", errors
        ),
        visit_gap_seconds=_number(
            th_raw, "visit_gap_seconds", defaults.visit_gap_seconds, "thresholds", errors
        ),
        frequent_visit_count=int(
            _number(th_raw, "frequent_visit_count", defaults.frequent_visit_count,
                    "thresholds", errors)
        ),
    )
    if thresholds.stationary_speed_mps > thresholds.transit_speed_mps:
        errors.append("thresholds.stationary_speed_mps must not exceed transit_speed_mps")

    # ── Behavioural patterns ──
    patterns = raw.get("patterns") or {}
    night = _build_pattern(
        patterns.get("night"),
        "night",
        HourPattern(frozenset({22, 23, 0, 1, 2, 3, 4, 5, 6, 7}), 0.5, 3600.0),
        errors,
    )
    work = _build_pattern(
        patterns.get("work"),
        "work",
        HourPattern(frozenset(range(8, 19)), 0.6, 1800.0, 0.6),
        errors,
    )
    inf_raw = patterns.get("infrequent") or {}
    inf_defaults = InfrequentRules()
    path = "patterns.infrequent"
    infrequent = InfrequentRules(
        late_night_start_hour=_hour(
            inf_raw, "late_night_start_hour", inf_defaults.late_night_start_hour, path, errors
        ),
        late_night_end_hour=_hour(
            inf_raw, "late_night_end_hour", inf_defaults.late_night_end_hour, path, errors
        ),
        work_start_hour=_hour(inf_raw, "work_start_hour", inf_defaults.work_start_hour, path, errors),
        work_end_hour=_hour(inf_raw, "work_end_hour", inf_defaults.work_end_hour, path, errors),
        work_min_dwell_seconds=_number(
            inf_raw, "work_min_dwell_seconds", inf_defaults.work_min_dwell_seconds, path, errors
        ),
        weekend_start_hour=_hour(
            inf_raw, "weekend_start_hour", inf_defaults.weekend_start_hour, path, errors
        ),
        weekend_end_hour=_hour(
            inf_raw, "weekend_end_hour", inf_defaults.weekend_end_hour, path, errors
        ),
    )

    # ── Keywords ──
    kw_raw = raw.get("keywords") or {}
    if not kw_raw:
        errors.append("'keywords' section is missing or empty")
    keywords: dict[LocationCategory, list[str]] = {}
    for name, words in kw_raw.items():
        try:
            category = LocationCategory(name)
        except ValueError:
            errors.append(f"keywords.{name} is not a known location category")
            continue
        if not isinstance(words, list) or not all(isinstance(w, str) and w for w in words):
            errors.append(f"keywords.{name} must be a list of non-empty strings")
            continue
        keywords[category] = [w.lower() for w in words]

    if errors:
        raise ConfigValidationError(
            f"categorizer_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return CategorizerConfig(
        version=version,
        thresholds=thresholds,
        night=night,
        work=work,
        infrequent=infrequent,
        keywords=keywords,
        _raw=raw,
    )


def load_categorizer_config(path: Path | None = None) -> CategorizerConfig:
    """Load and validate the categorizer config from disk.

    Args:
        path: Override path to YAML. Uses the bundled file by default.
    """
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.info("Loaded categorizer config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: CategorizerConfig | None = None
_config_lock = threading.Lock()


def get_categorizer_config() -> CategorizerConfig:
    """Return the global CategorizerConfig, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_categorizer_config()
    return _config


def reload_categorizer_config(path: Path | None = None) -> CategorizerConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails the old config is kept and the error re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_categorizer_config(path)
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded categorizer config: %s → %s", old_version, new_config.version)
    return new_config
