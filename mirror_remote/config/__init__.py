"""Configuration module for mirror-remote."""

from mirror_remote.config.document import ConfigDocument, ModuleEntry
from mirror_remote.config.loader import get_config_path, load_config
from mirror_remote.config.schema import Settings
from mirror_remote.config.store import ConfigStore, SaveResult, merge_defaults

__all__ = [
    "Settings",
    "load_config",
    "get_config_path",
    "ConfigDocument",
    "ModuleEntry",
    "ConfigStore",
    "SaveResult",
    "merge_defaults",
]
