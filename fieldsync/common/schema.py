"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from fieldsync.common.errors import ConfigError

SECTION_KEYS = {
    "api": {
        "base_url",
        "endpoints",
        "timeout",
        "retry",
        "auth_token",
        "rate_per_sec",
    },
    "dataset": {
        "page_size",
        "concurrency",
        "source_epsg",
        "search_batch_size",
        "freshness_check_seconds",
    },
    "queue": {
        "drain_interval_seconds",
        "max_attempts",
        "backoff_initial_seconds",
        "backoff_max_seconds",
    },
    "drafts": {"autosave_interval_seconds"},
    "session": {"idle_timeout_seconds", "idle_check_interval_seconds"},
    "storage": {"dir"},
}
OPTIONAL_KEYS = {"api": {"auth_token", "rate_per_sec"}}
ENDPOINT_KEYS = {"records", "submit", "health"}
POSITIVE_INTS = {
    "dataset": ("page_size", "concurrency", "search_batch_size"),
    "queue": ("max_attempts",),
}
POSITIVE_NUMBERS = {
    "dataset": ("freshness_check_seconds",),
    "queue": ("drain_interval_seconds", "backoff_initial_seconds", "backoff_max_seconds"),
    "drafts": ("autosave_interval_seconds",),
    "session": ("idle_timeout_seconds", "idle_check_interval_seconds"),
}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
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


def _assert_mapping(obj, ctx: str) -> dict:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    return obj


def _assert_positive(section: dict, keys: tuple[str, ...], ctx: str, *, integer: bool) -> None:
    for key in keys:
        value = section[key]
        kinds = (int,) if integer else (int, float)
        if isinstance(value, bool) or not isinstance(value, kinds) or value <= 0:
            kind = "integer" if integer else "number"
            raise ConfigError(f"{ctx}.{key} must be a positive {kind}")


def validate_app_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_mapping(cfg, "fieldsync config")
    _assert_required_keys(cfg, set(SECTION_KEYS), "fieldsync config")
    _assert_no_unknown_keys(cfg, set(SECTION_KEYS), "fieldsync config", allow_unknown)

    for name, known in SECTION_KEYS.items():
        section = _assert_mapping(cfg[name], name)
        _assert_required_keys(section, known - OPTIONAL_KEYS.get(name, set()), name)
        _assert_no_unknown_keys(section, known, name, allow_unknown)

    api = cfg["api"]
    _assert_required_keys(_assert_mapping(api["endpoints"], "api.endpoints"), ENDPOINT_KEYS, "api.endpoints")
    _assert_required_keys(_assert_mapping(api["timeout"], "api.timeout"), {"connect", "read"}, "api.timeout")
    _assert_required_keys(
        _assert_mapping(api["retry"], "api.retry"),
        {"max_attempts", "multiplier", "max_wait"},
        "api.retry",
    )

    for name, keys in POSITIVE_INTS.items():
        _assert_positive(cfg[name], keys, name, integer=True)
    for name, keys in POSITIVE_NUMBERS.items():
        _assert_positive(cfg[name], keys, name, integer=False)

    epsg = cfg["dataset"]["source_epsg"]
    if isinstance(epsg, bool) or not isinstance(epsg, int):
        raise ConfigError("dataset.source_epsg must be an EPSG integer code")

    return cfg
