"""Utility functions for runtime paths and host information."""

import os
import socket
from pathlib import Path

import psutil

DATA_DIR_NAME = ".mirror_remote"


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """
    Get the runtime data directory.

    Priority:
    1. `MIRROR_REMOTE_DATA_DIR` env override
    2. `~/.mirror_remote`
    """
    env_path = str(os.environ.get("MIRROR_REMOTE_DATA_DIR") or "").strip()
    if env_path:
        return ensure_dir(Path(env_path).expanduser())
    return ensure_dir(Path.home() / DATA_DIR_NAME)


def get_ip_addresses() -> list[str]:
    """Return non-internal IPv4 addresses of this host."""
    addresses: list[str] = []
    for _, entries in psutil.net_if_addrs().items():
        for entry in entries:
            if entry.family != socket.AF_INET:
                continue
            if entry.address.startswith("127."):
                continue
            addresses.append(entry.address)
    return addresses


def capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:]
