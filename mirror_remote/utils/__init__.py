"""Utility helpers."""

from mirror_remote.utils.helpers import ensure_dir, get_data_path, get_ip_addresses

__all__ = ["ensure_dir", "get_data_path", "get_ip_addresses"]
