"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from roadsnap.common.errors import ConfigError


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_number(value, ctx: str, *, minimum: float | None = None, exclusive: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{ctx} must be a number, got {value!r}")
    if minimum is not None:
        if exclusive and value <= minimum:
            raise ConfigError(f"{ctx} must be > {minimum}, got {value}")
        if not exclusive and value < minimum:
            raise ConfigError(f"{ctx} must be >= {minimum}, got {value}")
    return float(value)


def _validate_timeout(cfg: dict, ctx: str) -> None:
    _assert_required_keys(cfg, {"connect", "read"}, ctx)
    _assert_number(cfg["connect"], f"{ctx}.connect", minimum=0, exclusive=True)
    _assert_number(cfg["read"], f"{ctx}.read", minimum=0, exclusive=True)


def validate_matching_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    required = {
        "extrapolation_distance_m",
        "heading_tolerance_deg",
        "initial_radius_m",
        "max_radius_m",
        "radius_growth",
        "retry_delay_seconds",
        "default_country",
    }
    _assert_required_keys(cfg, required, "matching")
    _assert_no_unknown_keys(cfg, required, "matching", allow_unknown)

    _assert_number(cfg["extrapolation_distance_m"], "matching.extrapolation_distance_m", minimum=0)
    tolerance = _assert_number(cfg["heading_tolerance_deg"], "matching.heading_tolerance_deg", minimum=0)
    if tolerance > 180:
        raise ConfigError("matching.heading_tolerance_deg must be <= 180")
    initial = _assert_number(cfg["initial_radius_m"], "matching.initial_radius_m", minimum=0, exclusive=True)
    maximum = _assert_number(cfg["max_radius_m"], "matching.max_radius_m", minimum=0, exclusive=True)
    if initial > maximum:
        raise ConfigError("matching.initial_radius_m must not exceed matching.max_radius_m")
    _assert_number(cfg["radius_growth"], "matching.radius_growth", minimum=1, exclusive=True)
    _assert_number(cfg["retry_delay_seconds"], "matching.retry_delay_seconds", minimum=0)
    return cfg


def validate_providers_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_required_keys(cfg, {"overpass", "regional"}, "providers")
    _assert_no_unknown_keys(cfg, {"overpass", "regional"}, "providers", allow_unknown)

    overpass_keys = {"endpoint", "query_timeout_seconds", "timeout", "rate_per_sec"}
    _assert_required_keys(cfg["overpass"], overpass_keys, "providers.overpass")
    _assert_no_unknown_keys(cfg["overpass"], overpass_keys, "providers.overpass", allow_unknown)
    _validate_timeout(cfg["overpass"]["timeout"], "providers.overpass.timeout")

    regional = cfg["regional"] or []
    if not isinstance(regional, list):
        raise ConfigError("providers.regional must be a list")

    regional_keys = {"name", "countries", "base_url", "timeout", "rate_per_sec"}
    seen_countries: set[str] = set()
    for idx, provider in enumerate(regional):
        ctx = f"providers.regional[{idx}]"
        _assert_required_keys(provider, regional_keys, ctx)
        _assert_no_unknown_keys(provider, regional_keys, ctx, allow_unknown)
        _validate_timeout(provider["timeout"], f"{ctx}.timeout")
        if not isinstance(provider["countries"], list) or not provider["countries"]:
            raise ConfigError(f"{ctx}.countries must be a non-empty list")
        for country in provider["countries"]:
            code = str(country).upper()
            if code in seen_countries:
                raise ConfigError(f"Country {code} is mapped to more than one regional provider")
            seen_countries.add(code)
    return cfg


def validate_engine_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    top_required = {"matching", "providers", "http", "concurrency", "store"}
    _assert_required_keys(cfg, top_required, "engine config")
    _assert_no_unknown_keys(cfg, top_required, "engine config", allow_unknown)

    validate_matching_config(cfg["matching"], allow_unknown=allow_unknown)
    validate_providers_config(cfg["providers"], allow_unknown=allow_unknown)

    _assert_required_keys(cfg["http"], {"max_attempts"}, "http")
    if int(cfg["http"]["max_attempts"]) < 1:
        raise ConfigError("http.max_attempts must be >= 1")

    _assert_required_keys(cfg["concurrency"], {"max_workers"}, "concurrency")
    if int(cfg["concurrency"]["max_workers"]) < 1:
        raise ConfigError("concurrency.max_workers must be >= 1")

    _assert_required_keys(cfg["store"], {"dsn_env"}, "store")
    return cfg
