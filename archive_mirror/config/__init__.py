"""
Configuration — mirror.yml models, loader and the read-only registry.
"""

from .loader import default_config_path, load_config, load_registry, load_yaml
from .models import AdminServerSpec, MirrorConfig, MirrorSpec, Settings, parse_listen
from .registry import Registry

__all__ = [
    "AdminServerSpec",
    "MirrorConfig",
    "MirrorSpec",
    "Registry",
    "Settings",
    "default_config_path",
    "load_config",
    "load_registry",
    "load_yaml",
    "parse_listen",
]
