"""Configuration management utilities."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from ..schemas.config import AppConfig, load_config, merge_settings, settings_from_env


class ConfigManager:
    """YAML-backed configuration loader with environment overrides."""

    def __init__(self, base_path: str | Path = "."):
        self._base_path = Path(base_path)

    def load(self, name: str) -> dict[str, Any]:
        """Load a YAML configuration by name without file extension."""
        return self.load_file(self._base_path / f"{name}.yaml")

    @staticmethod
    def load_file(path: str | Path) -> dict[str, Any]:
        with Path(path).open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            raise ValueError(f"{path}: configuration must be a YAML mapping")
        return loaded

    def resolve(
        self,
        path: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> AppConfig:
        """File settings first, then environment variables on top."""
        settings = self.load_file(path) if path else {}
        env = settings_from_env(os.environ if environ is None else environ)
        return load_config(merge_settings(settings, env))


__all__ = ["ConfigManager"]
