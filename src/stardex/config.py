"""YAML configuration loader and path resolution for stardex."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml


DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"
USER_CONFIG_PATH = Path("~/.config/stardex/config.yaml").expanduser()

APP_NAME = "stardex"
DB_FILENAME = "stars.db"


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load config, merging user overrides on top of defaults."""
    defaults = _load_yaml(DEFAULT_CONFIG_PATH)

    user_path = Path(config_path).expanduser() if config_path else USER_CONFIG_PATH
    if user_path.exists():
        user_cfg = _load_yaml(user_path)
        return _deep_merge(defaults, user_cfg)

    return defaults


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_source_config(config: dict, source_name: str) -> dict[str, Any]:
    return config.get("sources", {}).get(source_name) or {}


def get_sync_config(config: dict) -> dict[str, Any]:
    return config.get("sync", {})


def get_filter_config(config: dict) -> dict[str, Any]:
    return config.get("filters", {})


def get_github_token(env: Mapping[str, str] | None = None) -> str | None:
    env = os.environ if env is None else env
    return env.get("GITHUB_TOKEN") or env.get("GH_TOKEN") or None


@dataclass(frozen=True)
class Paths:
    """Filesystem locations used by the store.

    Built once at startup and handed to the storage engine and syncer, so
    nothing deeper in the pipeline looks at the environment.
    """

    data_dir: Path
    db_path: Path
    backups_dir: Path
    legacy_db_path: Path

    @classmethod
    def from_data_dir(
        cls, data_dir: str | Path, legacy_db_path: str | Path | None = None
    ) -> Paths:
        data_dir = Path(data_dir).expanduser()
        legacy = (
            Path(legacy_db_path).expanduser()
            if legacy_db_path
            else Path("~/.stardex").expanduser() / DB_FILENAME
        )
        return cls(
            data_dir=data_dir,
            db_path=data_dir / DB_FILENAME,
            backups_dir=data_dir / "backups",
            legacy_db_path=legacy,
        )

    @classmethod
    def from_config(
        cls, config: dict, env: Mapping[str, str] | None = None
    ) -> Paths:
        """Resolve paths from config, falling back to the XDG data directory."""
        env = os.environ if env is None else env
        storage = config.get("storage", {})
        data_dir = storage.get("data_dir")
        if not data_dir:
            xdg = env.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
            data_dir = Path(xdg) / APP_NAME
        return cls.from_data_dir(data_dir, storage.get("legacy_db_path"))
