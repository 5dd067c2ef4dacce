"""Extension catalog and git helpers."""

from mirror_remote.extensions.catalog import ExtensionCatalog, ExtensionDescriptor
from mirror_remote.extensions.git_tools import (
    clone_repository,
    extension_help_url,
    normalize_remote_url,
    repo_dir_name,
)

__all__ = [
    "ExtensionCatalog",
    "ExtensionDescriptor",
    "clone_repository",
    "extension_help_url",
    "normalize_remote_url",
    "repo_dir_name",
]
