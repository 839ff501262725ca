"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fieldsync.common.errors import ConfigError
from fieldsync.common.fs import read_yaml
from fieldsync.common.schema import validate_app_config

CONFIG_FILENAME = "fieldsync.yml"


@dataclass(frozen=True)
class AppConfig:
    api: dict
    dataset: dict
    queue: dict
    drafts: dict
    session: dict
    storage: dict

    def storage_dir(self, data_dir: Path | None = None) -> Path:
        path = Path(self.storage["dir"])
        if data_dir is not None and not path.is_absolute():
            return data_dir / path
        return path


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
    if overlay is None:
        return base
    if not isinstance(overlay, dict):
        raise ConfigError(f"Overlay config must be a mapping: {overlay_path}")
    return _deep_merge(base, overlay)


def load_config(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> AppConfig:
    overlay_path = None
    if overlay_config_dir is not None:
        overlay_path = overlay_config_dir / CONFIG_FILENAME
    raw = _load_yaml_with_overlay(config_dir / CONFIG_FILENAME, overlay_path)
    cfg = validate_app_config(raw, allow_unknown=allow_unknown)
    return AppConfig(
        api=cfg["api"],
        dataset=cfg["dataset"],
        queue=cfg["queue"],
        drafts=cfg["drafts"],
        session=cfg["session"],
        storage=cfg["storage"],
    )
