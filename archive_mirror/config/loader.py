"""
Config Loader — Load and validate mirror.yml.

The config path is resolved in this order:
1. Explicit path (``--config`` on the CLI)
2. MIRROR_CONFIG environment variable
3. ``mirror.yml`` in the current working directory

Relative ``settings.data_dir`` / ``settings.tmp_dir`` are resolved against
the directory that holds the config file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .models import MirrorConfig
from .registry import Registry

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "mirror.yml"


def default_config_path() -> Path:
    """Path used when no explicit config is given."""
    env_path = os.environ.get("MIRROR_CONFIG")
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_NAME


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return its contents."""
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_config(path: Optional[Path] = None) -> MirrorConfig:
    """
    Load and validate the mirror configuration.

    Raises:
        ConfigError: If the file is unreadable, unparsable, invalid,
            or declares zero mirrors.
    """
    config_path = Path(path) if path is not None else default_config_path()
    logger.debug(f"Loading config from {config_path}")

    try:
        data = load_yaml(config_path)
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {config_path}") from None
    except OSError as e:
        raise ConfigError(f"cannot read {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {config_path}: {e}") from e

    if data is None:
        raise ConfigError("No mirror found.", field="mirrors")
    if not isinstance(data, dict):
        raise ConfigError(f"expected a mapping at the top of {config_path}")

    try:
        config = MirrorConfig(**data)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e

    base = config_path.resolve().parent
    settings = config.settings
    resolved = settings.model_copy(update={
        "data_dir": _resolve(base, settings.data_dir),
        "tmp_dir": _resolve(base, settings.tmp_dir),
    })
    config = config.model_copy(update={"settings": resolved})

    logger.info(f"Loaded {len(config.mirrors)} mirror(s) from {config_path}")
    return config


def load_registry(path: Optional[Path] = None) -> Registry:
    """Load the config and build the process registry."""
    return Registry.from_config(load_config(path))


def _resolve(base: Path, path: Path) -> Path:
    return path if path.is_absolute() else base / path


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        msg = item.get("msg", "invalid value")
        # pydantic prefixes errors raised from validators
        msg = msg.removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)
