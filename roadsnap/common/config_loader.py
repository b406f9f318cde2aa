"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from roadsnap.common.errors import ConfigError
from roadsnap.common.fs import read_yaml
from roadsnap.common.http import RetryConfig, TimeoutConfig
from roadsnap.common.schema import validate_engine_config

CONFIG_FILENAME = "snapping.yml"


@dataclass(frozen=True)
class MatchingConfig:
    extrapolation_distance_m: float = 50.0
    heading_tolerance_deg: float = 45.0
    initial_radius_m: float = 50.0
    max_radius_m: float = 200.0
    radius_growth: float = 1.5
    retry_delay_seconds: float = 2.0
    default_country: str = "IND"

    def radius_schedule(self) -> list[float]:
        """Search radii from the initial radius, growing geometrically, never past the maximum."""
        radii: list[float] = []
        radius = self.initial_radius_m
        while radius <= self.max_radius_m:
            radii.append(radius)
            radius *= self.radius_growth
        return radii


@dataclass(frozen=True)
class OverpassConfig:
    endpoint: str = "https://overpass-api.de/api/interpreter"
    query_timeout_seconds: int = 30
    timeout: TimeoutConfig = TimeoutConfig()
    rate_per_sec: float = 2.0


@dataclass(frozen=True)
class RegionalProviderConfig:
    name: str
    countries: tuple[str, ...]
    base_url: str
    timeout: TimeoutConfig = TimeoutConfig()
    rate_per_sec: float = 0.0


@dataclass(frozen=True)
class EngineConfig:
    matching: MatchingConfig = MatchingConfig()
    overpass: OverpassConfig = OverpassConfig()
    regional: tuple[RegionalProviderConfig, ...] = ()
    http_retry: RetryConfig = RetryConfig()
    max_workers: int = 8
    store_dsn_env: str = "OVERRIDE_STORE_DSN"

    def rate_limits(self) -> dict[str, float]:
        limits = {"overpass": self.overpass.rate_per_sec}
        for provider in self.regional:
            limits[provider.name] = provider.rate_per_sec
        return limits


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    return _deep_merge(base, overlay)


def _timeout(cfg: dict) -> TimeoutConfig:
    return TimeoutConfig(connect=float(cfg["connect"]), read=float(cfg["read"]))


def build_engine_config(cfg: dict, *, allow_unknown: bool = False) -> EngineConfig:
    cfg = validate_engine_config(cfg, allow_unknown=allow_unknown)
    matching = cfg["matching"]
    overpass = cfg["providers"]["overpass"]

    return EngineConfig(
        matching=MatchingConfig(
            extrapolation_distance_m=float(matching["extrapolation_distance_m"]),
            heading_tolerance_deg=float(matching["heading_tolerance_deg"]),
            initial_radius_m=float(matching["initial_radius_m"]),
            max_radius_m=float(matching["max_radius_m"]),
            radius_growth=float(matching["radius_growth"]),
            retry_delay_seconds=float(matching["retry_delay_seconds"]),
            default_country=str(matching["default_country"]).upper(),
        ),
        overpass=OverpassConfig(
            endpoint=str(overpass["endpoint"]),
            query_timeout_seconds=int(overpass["query_timeout_seconds"]),
            timeout=_timeout(overpass["timeout"]),
            rate_per_sec=float(overpass["rate_per_sec"]),
        ),
        regional=tuple(
            RegionalProviderConfig(
                name=str(provider["name"]),
                countries=tuple(str(code).upper() for code in provider["countries"]),
                base_url=str(provider["base_url"]),
                timeout=_timeout(provider["timeout"]),
                rate_per_sec=float(provider["rate_per_sec"]),
            )
            for provider in (cfg["providers"]["regional"] or [])
        ),
        http_retry=RetryConfig(max_attempts=int(cfg["http"]["max_attempts"])),
        max_workers=int(cfg["concurrency"]["max_workers"]),
        store_dsn_env=str(cfg["store"]["dsn_env"]),
    )


def load_engine_config(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> EngineConfig:
    path = config_dir / CONFIG_FILENAME
    overlay_path = (overlay_config_dir / CONFIG_FILENAME) if overlay_config_dir is not None else None
    return build_engine_config(_load_yaml_with_overlay(path, overlay_path), allow_unknown=allow_unknown)
