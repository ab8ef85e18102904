#!/usr/bin/env python3
"""
APM SETTINGS
------------
Resolves everything the tool needs to know about its environment once,
at start-up: where the flake lives, where the cache goes and how long to
wait on remote services. The resulting Settings value is passed down
explicitly; nothing below the CLI reads these files again.

  ~/.config/apm/flakelocation.txt   absolute path of the flake root
  ~/.config/apm/config.yaml         optional tool settings
  ~/.cache/apm/apm.db               package index

Author: APM Team
Date: 2026-10-17
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ruamel.yaml import YAML, YAMLError

from apm.core.errors import ApmError
from apm.index.channels import DEFAULT_TIMEOUT as DEFAULT_VERSION_TIMEOUT
from apm.index.flathub import DEFAULT_FLATHUB_URL, DEFAULT_TIMEOUT as DEFAULT_FLATHUB_TIMEOUT

logger = logging.getLogger("apm.settings")

DEFAULT_FLAKE_LOCATION = "/etc/nixos"
LOCATION_FILE = "flakelocation.txt"
CONFIG_FILE = "config.yaml"
INDEX_FILE = "apm.db"


def default_config_dir() -> Path:
    return Path.home() / ".config" / "apm"


def default_cache_dir() -> Path:
    return Path.home() / ".cache" / "apm"


@dataclass
class Settings:
    config_dir: Path
    cache_dir: Path
    flathub_url: str = DEFAULT_FLATHUB_URL
    flathub_timeout: float = DEFAULT_FLATHUB_TIMEOUT
    version_timeout: float = DEFAULT_VERSION_TIMEOUT
    log_level: str = "WARNING"

    @property
    def location_file(self) -> Path:
        return self.config_dir / LOCATION_FILE

    @property
    def config_file(self) -> Path:
        return self.config_dir / CONFIG_FILE

    @property
    def index_path(self) -> Path:
        return self.cache_dir / INDEX_FILE


def _apply(settings: Settings, data: Dict[str, Any]) -> None:
    if "cache_dir" in data:
        settings.cache_dir = Path(str(data["cache_dir"])).expanduser()
    if "flathub_url" in data:
        settings.flathub_url = str(data["flathub_url"])
    for key in ("flathub_timeout", "version_timeout"):
        if key in data:
            try:
                setattr(settings, key, float(data[key]))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring invalid {key}: {data[key]!r}")
    if "log_level" in data:
        settings.log_level = str(data["log_level"]).upper()


def load_settings(config_dir: Optional[Path] = None, cache_dir: Optional[Path] = None) -> Settings:
    settings = Settings(
        config_dir=Path(config_dir) if config_dir else default_config_dir(),
        cache_dir=Path(cache_dir) if cache_dir else default_cache_dir(),
    )
    config_file = settings.config_file
    if not config_file.exists():
        return settings

    try:
        data = YAML(typ="safe").load(config_file.read_text(encoding="utf-8"))
    except (YAMLError, OSError) as e:
        logger.warning(f"Could not read {config_file}, using defaults: {e}")
        return settings

    if data is None:
        return settings
    if not isinstance(data, dict):
        logger.warning(f"{config_file} is not a mapping, using defaults")
        return settings
    _apply(settings, data)
    return settings


def read_flake_location(settings: Settings) -> Path:
    """The configured flake root; the location file is created on first use."""
    location_file = settings.location_file
    try:
        if not location_file.exists():
            location_file.parent.mkdir(parents=True, exist_ok=True)
            location_file.write_text(DEFAULT_FLAKE_LOCATION + "\n", encoding="utf-8")
            logger.info(f"Created {location_file} with default location {DEFAULT_FLAKE_LOCATION}")
        raw = location_file.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ApmError(f"Error reading flake location from {location_file}: {e}") from e

    if not raw:
        raise ApmError(f"Flake location file {location_file} is empty; run 'apm set-location <path>'")
    return Path(raw).expanduser()


def write_flake_location(settings: Settings, path: Union[str, Path]) -> Path:
    resolved = Path(path).expanduser().resolve()
    if not resolved.is_dir():
        raise ApmError(f"'{path}' is not a directory")
    try:
        settings.location_file.parent.mkdir(parents=True, exist_ok=True)
        settings.location_file.write_text(f"{resolved}\n", encoding="utf-8")
    except OSError as e:
        raise ApmError(f"Error writing {settings.location_file}: {e}") from e
    return resolved
